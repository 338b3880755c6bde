"""
runewatch.engine.gains — XP Delta Math
========================================

Pure functions that turn "what we stored last time" plus "what the
provider says now" into the numbers a sync writes.  No I/O.

Rules
-----
* First sync of a member is a **baseline**: gain is 0, the snapshot is
  still written so later syncs have something to diff against.
* A total that went *down* is a provider anomaly.  Gain is reported as 0
  and the stored total is kept, so ``xp_snapshots`` stays non-decreasing.
* Per-skill deltas are clamped at 0 before they are added to the
  daily / weekly / monthly accumulators.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from runewatch.constants import MAX_COMBAT_LEVEL
from runewatch.engine.profile import RawSkill

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TotalDelta:
    """Outcome of comparing a stored total with a fetched total."""

    xp_gained: int
    new_total: int
    baseline: bool = False
    anomaly: bool = False

    @property
    def changed(self) -> bool:
        return self.baseline or self.xp_gained > 0


@dataclass(frozen=True, slots=True)
class SkillGain:
    skill_id: int
    name: str
    level: int
    xp: int
    rank: int | None
    delta: int


def total_delta(
    stored_total: int | None,
    fetched_total: int,
    *,
    first_sync: bool,
    member_name: str = "?",
) -> TotalDelta:
    """Compare totals and decide what to persist."""
    if first_sync or stored_total is None:
        return TotalDelta(xp_gained=0, new_total=fetched_total, baseline=True)

    if fetched_total < stored_total:
        logger.warning(
            "XP anomaly for %s: provider total %d is below stored %d, ignoring",
            member_name, fetched_total, stored_total,
        )
        return TotalDelta(xp_gained=0, new_total=stored_total, anomaly=True)

    return TotalDelta(xp_gained=fetched_total - stored_total, new_total=fetched_total)


def skill_gains(
    previous_xp: Mapping[int, int],
    fetched: Iterable[RawSkill],
    *,
    first_sync: bool,
) -> list[SkillGain]:
    """Per-skill deltas against *previous_xp* (``skill_id → xp``).

    Skills not seen before contribute 0, as does every skill on a
    baseline sync.
    """
    gains: list[SkillGain] = []
    for skill in fetched:
        before = previous_xp.get(skill.skill_id)
        if first_sync or before is None:
            delta = 0
        else:
            delta = max(skill.xp - before, 0)
        gains.append(SkillGain(
            skill_id=skill.skill_id,
            name=skill.name,
            level=skill.level,
            xp=skill.xp,
            rank=skill.rank,
            delta=delta,
        ))
    return gains


def compute_combat_level(levels: Mapping[str, int]) -> int:
    """RS3 combat level from skill levels, capped at 152.

    Missing skills count as level 1 (Constitution as 10).
    """
    def lvl(name: str, default: int = 1) -> int:
        return int(levels.get(name, default) or default)

    base = 1.3 * max(
        lvl("Attack") + lvl("Strength"),
        2 * lvl("Magic"),
        2 * lvl("Ranged"),
    )
    total = base + lvl("Defence") + lvl("Constitution", 10) + lvl("Prayer") + lvl("Summoning")
    return min(math.floor(total / 4), MAX_COMBAT_LEVEL)


def resolve_combat_level(feed_level: int | None, skills: Iterable[RawSkill]) -> int:
    """Prefer the provider's combat level; derive it from skills otherwise."""
    if feed_level:
        return min(feed_level, MAX_COMBAT_LEVEL)
    return compute_combat_level({s.name: s.level for s in skills})
