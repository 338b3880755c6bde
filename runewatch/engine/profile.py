"""
runewatch.engine.profile — Provider Payload Parsing
=====================================================

Turns raw HiScores CSV, RuneMetrics JSON and clan roster CSV into plain
dataclasses.  Parsing is defensive: a missing field takes its default,
a malformed activity is counted in ``skipped`` and dropped, and only a
payload with no usable totals at all raises :class:`ParseError`.

Nothing here touches the network or the database.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from runewatch.constants import (
    PROFILE_NOT_FOUND_CODES,
    PROFILE_PRIVATE_CODE,
    RUNEMETRICS_DATE_FORMAT,
    SKILLS,
    normalize_rank_name,
)
from runewatch.errors import NotFound, ParseError

logger = logging.getLogger(__name__)

__all__ = [
    "RawSkill",
    "RawProfile",
    "RawActivity",
    "RawFeed",
    "RosterEntry",
    "parse_int",
    "parse_activity_date",
    "parse_hiscores",
    "parse_runemetrics",
    "parse_roster",
    "clean_player_name",
]


# ---------------------------------------------------------------------------
# Parsed shapes
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class RawSkill:
    skill_id: int
    name: str
    level: int
    xp: int
    rank: int | None = None


@dataclass(frozen=True, slots=True)
class RawProfile:
    """Stats snapshot for one player (HiScores)."""

    name: str
    total_xp: int
    total_level: int = 0
    total_rank: int | None = None
    skills: list[RawSkill] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class RawActivity:
    date: datetime
    text: str
    details: str | None = None


@dataclass(frozen=True, slots=True)
class RawFeed:
    """RuneMetrics profile: display name, clan stats and recent activities."""

    display_name: str | None = None
    combat_level: int | None = None
    total_rank: int | None = None
    clan_xp: int | None = None
    kills: int | None = None
    activities: list[RawActivity] = field(default_factory=list)
    skipped: int = 0
    private: bool = False


@dataclass(frozen=True, slots=True)
class RosterEntry:
    name: str
    rank: str
    clan_xp: int = 0
    kills: int = 0


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------
def parse_int(value: Any, default: int | None = 0) -> int | None:
    """Coerce ``1234``, ``"1,234"`` or ``"1234.0"`` to int; else *default*."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    try:
        number = value if isinstance(value, float) else float(str(value).replace(",", ""))
        return int(number) if math.isfinite(number) else default
    except (TypeError, ValueError, OverflowError):
        return default


def _from_epoch_ms(value: float) -> datetime:
    try:
        return datetime.fromtimestamp(value / 1000, tz=UTC)
    except (OverflowError, OSError, ValueError) as exc:
        raise ParseError(f"Activity timestamp out of range: {value!r}") from exc


def parse_activity_date(raw: Any) -> datetime:
    """Parse a RuneMetrics activity date into an aware UTC datetime.

    Accepts the provider's ``"15-Oct-2026 12:34"`` strings and epoch
    milliseconds (the format older rows were stored in).
    """
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return _from_epoch_ms(raw)
    if isinstance(raw, str):
        text = raw.strip()
        if text.isdigit():
            return _from_epoch_ms(int(text))
        try:
            return datetime.strptime(text, RUNEMETRICS_DATE_FORMAT).replace(tzinfo=UTC)
        except ValueError:
            pass
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ParseError(f"Unrecognised activity date {raw!r}") from exc
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    raise ParseError(f"Unrecognised activity date {raw!r}")


_NAME_SPACES = re.compile(r"[\u00a0\u1680\u2000-\u200b\u202f\u205f\u3000\ufeff\ufffd_]")


def clean_player_name(raw: str) -> str:
    """Normalise the odd whitespace the roster CSV uses inside names."""
    return " ".join(_NAME_SPACES.sub(" ", raw).split())


# ---------------------------------------------------------------------------
# HiScores: index_lite.ws
# ---------------------------------------------------------------------------
def _rank(value: Any) -> int | None:
    rank = parse_int(value, default=None)
    if rank is None or rank < 1:
        return None
    return rank


def parse_hiscores(name: str, body: str) -> RawProfile:
    """Parse ``rank,level,xp`` lines: Overall first, then each skill.

    Unranked entries come back as ``-1`` and are stored as level 1 / 0 XP.
    """
    lines = [line.strip() for line in (body or "").strip().splitlines() if line.strip()]
    if not lines:
        raise ParseError(f"Empty HiScores payload for {name!r}")

    overall = lines[0].split(",")
    if len(overall) < 3:
        raise ParseError(f"Malformed HiScores overall row for {name!r}: {lines[0]!r}")
    total_xp = parse_int(overall[2], default=None)
    if total_xp is None:
        raise ParseError(f"Non-numeric total XP for {name!r}: {overall[2]!r}")

    skills: list[RawSkill] = []
    for skill_id, skill_name in enumerate(SKILLS):
        row_index = skill_id + 1
        if row_index >= len(lines):
            break
        parts = lines[row_index].split(",")
        if len(parts) < 3:
            logger.debug("Skipping malformed HiScores row %r for %s", lines[row_index], name)
            continue
        level = parse_int(parts[1], default=1) or 1
        xp = parse_int(parts[2], default=0) or 0
        skills.append(RawSkill(
            skill_id=skill_id,
            name=skill_name,
            level=max(level, 1),
            xp=max(xp, 0),
            rank=_rank(parts[0]),
        ))

    return RawProfile(
        name=name,
        total_xp=max(total_xp, 0),
        total_level=max(parse_int(overall[1], default=0) or 0, 0),
        total_rank=_rank(overall[0]),
        skills=skills,
    )


# ---------------------------------------------------------------------------
# RuneMetrics: profile/profile
# ---------------------------------------------------------------------------
def parse_runemetrics(payload: Any) -> RawFeed:
    """Parse a RuneMetrics profile document.

    Raises :class:`NotFound` for unknown players.  A private profile is
    not an error: it yields an empty feed with ``private=True``.
    """
    if not isinstance(payload, dict):
        raise ParseError("RuneMetrics payload is not a JSON object")

    error_code = payload.get("error")
    if error_code:
        if error_code == PROFILE_PRIVATE_CODE:
            return RawFeed(private=True)
        if error_code in PROFILE_NOT_FOUND_CODES:
            raise NotFound(f"RuneMetrics profile not found ({error_code})")
        raise ParseError(f"RuneMetrics error: {error_code}")

    activities: list[RawActivity] = []
    skipped = 0
    for entry in payload.get("activities") or []:
        try:
            if not isinstance(entry, dict):
                raise ParseError("activity entry is not an object")
            text = entry.get("text")
            if not isinstance(text, str) or not text.strip():
                raise ParseError("activity has no text")
            details = entry.get("details")
            activities.append(RawActivity(
                date=parse_activity_date(entry.get("date")),
                text=text.strip(),
                details=details.strip() if isinstance(details, str) else None,
            ))
        except ParseError as exc:
            skipped += 1
            logger.debug("Skipping malformed activity %r: %s", entry, exc)

    combat = parse_int(payload.get("combatlevel"), default=None)
    name = payload.get("name")
    return RawFeed(
        display_name=name if isinstance(name, str) and name.strip() else None,
        combat_level=combat if combat else None,
        total_rank=_rank(payload.get("rank")),
        clan_xp=parse_int(payload.get("clanXp"), default=None),
        kills=parse_int(payload.get("kills"), default=None),
        activities=activities,
        skipped=skipped,
    )


# ---------------------------------------------------------------------------
# Clan roster: members_lite.ws
# ---------------------------------------------------------------------------
def parse_roster(body: str) -> list[RosterEntry]:
    """Parse ``Clanmate, Clan Rank, Total XP, Kills`` CSV (header skipped)."""
    entries: list[RosterEntry] = []
    lines = (body or "").strip().splitlines()
    for line in lines[1:]:
        parts = [p.strip() for p in line.split(",")]
        if len(parts) < 2:
            continue
        name = clean_player_name(parts[0])
        if not name:
            continue
        entries.append(RosterEntry(
            name=name,
            rank=normalize_rank_name(parts[1]),
            clan_xp=parse_int(parts[2], default=0) if len(parts) > 2 else 0,
            kills=parse_int(parts[3], default=0) if len(parts) > 3 else 0,
        ))
    return entries
