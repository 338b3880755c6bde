"""
tests/test_profile_parsing.py — Provider Payload Parsing Tests
===============================================================
HiScores CSV, RuneMetrics JSON and clan roster CSV → dataclasses.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime

import pytest

from runewatch.constants import DEFAULT_CLAN_RANK, SKILLS
from runewatch.engine.profile import (
    clean_player_name,
    parse_activity_date,
    parse_hiscores,
    parse_int,
    parse_roster,
    parse_runemetrics,
)
from runewatch.errors import NotFound, ParseError


def _hiscores_body(total_xp: int = 250_000_000, rows: int = len(SKILLS)) -> str:
    lines = [f"1234,2500,{total_xp}"]
    for i in range(rows):
        lines.append(f"{1000 + i},99,{13_034_431 + i}")
    return "\n".join(lines) + "\n"


# ===========================================================================
# Field helpers
# ===========================================================================
class TestParseInt:
    @pytest.mark.parametrize("raw, expected", [
        (1234, 1234),
        ("1,234", 1234),
        (" 42 ", 42),
        ("1234.0", 1234),
        (12.9, 12),
    ])
    def test_coerces(self, raw, expected):
        assert parse_int(raw) == expected

    def test_defaults(self):
        assert parse_int(None) == 0
        assert parse_int("n/a") == 0
        assert parse_int("n/a", default=None) is None
        assert parse_int(True, default=None) is None

    @pytest.mark.parametrize("raw", [float("nan"), float("inf"), "1e400", "-inf"])
    def test_non_finite_falls_back(self, raw):
        assert parse_int(raw) == 0
        assert parse_int(raw, default=None) is None


class TestParseActivityDate:
    def test_runemetrics_string(self):
        assert parse_activity_date("15-Oct-2026 12:34") == datetime(
            2026, 10, 15, 12, 34, tzinfo=UTC
        )

    def test_epoch_millis(self):
        expected = datetime.fromtimestamp(1_700_000_000, tz=UTC)
        assert parse_activity_date(1_700_000_000_000) == expected
        assert parse_activity_date("1700000000000") == expected

    def test_iso_without_zone_is_utc(self):
        assert parse_activity_date("2026-10-15T12:34:00") == datetime(
            2026, 10, 15, 12, 34, tzinfo=UTC
        )

    @pytest.mark.parametrize("raw", [10**20, "99999999999999999999", float("nan"), -10**20])
    def test_out_of_range_epoch(self, raw):
        with pytest.raises(ParseError):
            parse_activity_date(raw)

    @pytest.mark.parametrize("raw", ["yesterday", None, {"a": 1}])
    def test_garbage(self, raw):
        with pytest.raises(ParseError):
            parse_activity_date(raw)


class TestCleanPlayerName:
    def test_odd_spaces(self):
        assert clean_player_name("Bob\u00a0Smith") == "Bob Smith"
        assert clean_player_name("Iron_Man ") == "Iron Man"
        assert clean_player_name("  A\ufffdB  ") == "A B"


# ===========================================================================
# HiScores
# ===========================================================================
class TestParseHiscores:
    def test_full_profile(self):
        profile = parse_hiscores("Zezima", _hiscores_body())
        assert profile.name == "Zezima"
        assert profile.total_xp == 250_000_000
        assert profile.total_level == 2500
        assert profile.total_rank == 1234
        assert len(profile.skills) == len(SKILLS)
        attack = profile.skills[0]
        assert (attack.skill_id, attack.name, attack.level, attack.xp, attack.rank) == (
            0, "Attack", 99, 13_034_431, 1000
        )

    def test_unranked_rows(self):
        body = "-1,-1,-1\n-1,1,-1\n"
        profile = parse_hiscores("Newbie", body)
        assert profile.total_xp == 0
        assert profile.total_rank is None
        assert profile.skills[0].level == 1
        assert profile.skills[0].xp == 0
        assert profile.skills[0].rank is None

    def test_short_body_keeps_parsed_skills(self):
        profile = parse_hiscores("Zezima", _hiscores_body(rows=3))
        assert [s.name for s in profile.skills] == list(SKILLS[:3])

    @pytest.mark.parametrize("body", ["", "   \n", "garbage", "1,2,lots"])
    def test_unusable_body(self, body):
        with pytest.raises(ParseError):
            parse_hiscores("Zezima", body)


# ===========================================================================
# RuneMetrics
# ===========================================================================
class TestParseRuneMetrics:
    def test_profile(self):
        feed = parse_runemetrics({
            "name": "Zezima",
            "combatlevel": 138,
            "rank": "1,234",
            "clanXp": "12,345,678",
            "kills": 42,
            "activities": [
                {"date": "15-Oct-2026 12:34", "text": "I found a Zamorak hilt ",
                 "details": "I found a Zamorak hilt in the God Wars Dungeon."},
                {"date": "garbage", "text": "I levelled up Attack."},
                {"date": "15-Oct-2026 12:00", "text": ""},
                "not an object",
            ],
        })
        assert feed.display_name == "Zezima"
        assert feed.combat_level == 138
        assert feed.total_rank == 1234
        assert feed.clan_xp == 12_345_678
        assert feed.kills == 42
        assert feed.skipped == 3
        assert len(feed.activities) == 1
        activity = feed.activities[0]
        assert activity.text == "I found a Zamorak hilt"
        assert activity.date == datetime(2026, 10, 15, 12, 34, tzinfo=UTC)
        assert activity.details.startswith("I found")

    def test_missing_fields_default(self):
        feed = parse_runemetrics({})
        assert feed.activities == []
        assert feed.display_name is None
        assert feed.combat_level is None
        assert feed.private is False

    def test_bad_numbers_do_not_fail_the_feed(self):
        feed = parse_runemetrics(json.loads(
            '{"kills": NaN, "clanXp": 1e400, "combatlevel": Infinity, "activities": ['
            '{"date": 100000000000000000000, "text": "bad one"},'
            '{"date": "15-Oct-2026 12:34", "text": "I found a Zamorak hilt"}]}'
        ))
        assert feed.kills is None
        assert feed.clan_xp is None
        assert feed.combat_level is None
        assert feed.skipped == 1
        assert [a.text for a in feed.activities] == ["I found a Zamorak hilt"]

    def test_private(self):
        feed = parse_runemetrics({"error": "PROFILE_PRIVATE"})
        assert feed.private is True
        assert feed.activities == []

    def test_not_found(self):
        with pytest.raises(NotFound):
            parse_runemetrics({"error": "NO_PROFILE", "loggedIn": "false"})

    def test_unknown_error(self):
        with pytest.raises(ParseError):
            parse_runemetrics({"error": "SOMETHING_ELSE"})

    def test_not_an_object(self):
        with pytest.raises(ParseError):
            parse_runemetrics(["nope"])


# ===========================================================================
# Roster
# ===========================================================================
class TestParseRoster:
    def test_rows(self):
        body = (
            "Clanmate, Clan Rank, Total XP, Kills\n"
            "Zezima,Owner,1000,5\n"
            "Bob\u00a0Smith,Captain,20,0\n"
            "Weird,Banana,1,1\n"
            "\n"
        )
        entries = parse_roster(body)
        assert [e.name for e in entries] == ["Zezima", "Bob Smith", "Weird"]
        assert entries[0].rank == "Owner"
        assert entries[0].clan_xp == 1000
        assert entries[0].kills == 5
        assert entries[1].rank == "Captain"
        assert entries[2].rank == DEFAULT_CLAN_RANK

    def test_header_only(self):
        assert parse_roster("Clanmate, Clan Rank, Total XP, Kills\n") == []
        assert parse_roster("") == []
