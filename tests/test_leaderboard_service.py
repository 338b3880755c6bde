"""
tests/test_leaderboard_service.py — Period Gains & Leaderboard Tests
=====================================================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select

from runewatch.database.models import Member, Skill
from runewatch.engine.gains import SkillGain
from runewatch.errors import NotFound, ValidationError
from runewatch.services.leaderboard_service import (
    Period,
    gain_since,
    leaderboard,
    parse_period,
    period_start,
    reset_gains,
)

T0 = datetime(2026, 10, 15, 12, 0, tzinfo=UTC)


def _gain(store, member_id: int, skill_id: int, delta: int) -> None:
    with store.session() as session:
        store.upsert_skill(
            session, member_id, SkillGain(skill_id, f"S{skill_id}", 50, 1_000 + delta, None, delta),
            T0,
        )


class TestPeriods:
    @pytest.mark.parametrize("raw, period", [
        ("daily", Period.DAILY), ("WEEKLY", Period.WEEKLY), (" monthly ", Period.MONTHLY),
    ])
    def test_parse(self, raw, period):
        assert parse_period(raw) is period

    def test_parse_unknown(self):
        with pytest.raises(ValidationError):
            parse_period("yearly")

    def test_period_start(self):
        now = datetime(2026, 10, 17, 15, 30, tzinfo=UTC)   # a Saturday
        assert period_start(Period.DAILY, now) == datetime(2026, 10, 17, tzinfo=UTC)
        assert period_start(Period.WEEKLY, now) == datetime(2026, 10, 12, tzinfo=UTC)
        assert period_start(Period.MONTHLY, now) == datetime(2026, 10, 1, tzinfo=UTC)


class TestLeaderboard:
    def test_ranking(self, store):
        a = store.upsert_member("Alpha")
        b = store.upsert_member("Bravo")
        c = store.upsert_member("Charlie")
        _gain(store, a.id, 0, 100)
        _gain(store, a.id, 1, 50)
        _gain(store, b.id, 0, 400)
        _gain(store, c.id, 0, 0)

        entries = leaderboard(store, "daily")

        assert [(e["rank"], e["name"], e["xpGain"]) for e in entries] == [
            (1, "Bravo", 400), (2, "Alpha", 150),
        ]
        assert entries[0]["memberId"] == b.id

    def test_inactive_members_excluded(self, store):
        a = store.upsert_member("Alpha")
        _gain(store, a.id, 0, 100)
        with store.session() as session:
            session.get(Member, a.id).is_active = False
        assert leaderboard(store, Period.WEEKLY) == []

    def test_limit(self, store):
        for i in range(5):
            member = store.upsert_member(f"m{i}")
            _gain(store, member.id, 0, 10 * (i + 1))
        assert len(leaderboard(store, Period.MONTHLY, limit=3)) == 3

    def test_reset_only_touches_one_period(self, store):
        a = store.upsert_member("Alpha")
        _gain(store, a.id, 0, 100)

        assert reset_gains(store, Period.DAILY) == 1
        assert reset_gains(store, Period.DAILY) == 0

        with store.session() as session:
            skill = session.scalars(select(Skill)).one()
            assert skill.daily_xp_gain == 0
            assert skill.weekly_xp_gain == 100
            assert skill.monthly_xp_gain == 100
        assert leaderboard(store, Period.DAILY) == []
        assert leaderboard(store, Period.WEEKLY)[0]["xpGain"] == 100


class TestGainSince:
    def _snapshots(self, store, member_id: int, *points: tuple[datetime, int]) -> None:
        with store.session() as session:
            for when, total in points:
                store.append_snapshot_if_changed(session, member_id, total, when)

    def test_from_baseline_before_window(self, store):
        member = store.upsert_member("Zezima")
        self._snapshots(
            store, member.id,
            (T0, 100), (T0 + timedelta(hours=2), 150), (T0 + timedelta(hours=4), 400),
        )
        assert gain_since(store, member.id, T0 + timedelta(hours=3)) == 250
        assert gain_since(store, member.id, T0 + timedelta(hours=5)) == 0

    def test_first_snapshot_inside_window(self, store):
        member = store.upsert_member("Zezima")
        self._snapshots(store, member.id, (T0, 100), (T0 + timedelta(hours=1), 130))
        assert gain_since(store, member.id, T0 - timedelta(days=1)) == 30

    def test_no_history(self, store):
        member = store.upsert_member("Zezima")
        assert gain_since(store, member.id, T0) == 0

    def test_unknown_member(self, store):
        with pytest.raises(NotFound):
            gain_since(store, 404, T0)
