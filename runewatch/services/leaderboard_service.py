"""
runewatch.services.leaderboard_service — Period gains & leaderboards
=====================================================================

Every sync adds each skill's XP delta to three accumulators on the
``skills`` row (daily / weekly / monthly).  Leaderboards are sums of one
accumulator per member; the scheduler zeroes them at the period
boundary (00:00 UTC, Monday for weekly, the 1st for monthly).

``gain_since`` answers "how much XP since T" from ``xp_snapshots``
instead, so it works for windows that do not line up with a period.
"""

from __future__ import annotations

import enum
import logging
from datetime import datetime, timedelta

from sqlalchemy import desc, func, select, update

from runewatch.database.models import Member, Skill, XpSnapshot, as_utc, utcnow
from runewatch.errors import NotFound, ValidationError
from runewatch.services.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)


class Period(enum.StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


_GAIN_COLUMNS = {
    Period.DAILY: Skill.daily_xp_gain,
    Period.WEEKLY: Skill.weekly_xp_gain,
    Period.MONTHLY: Skill.monthly_xp_gain,
}


def parse_period(raw: str) -> Period:
    try:
        return Period(raw.strip().lower())
    except ValueError as exc:
        raise ValidationError(
            f"Unknown period {raw!r}; expected daily, weekly or monthly"
        ) from exc


def period_start(period: Period, now: datetime | None = None) -> datetime:
    """Start of the period containing *now* (UTC)."""
    now = as_utc(now) if now else utcnow()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period is Period.DAILY:
        return midnight
    if period is Period.WEEKLY:
        return midnight - timedelta(days=midnight.weekday())
    return midnight.replace(day=1)


def leaderboard(store: SnapshotStore, period: Period | str, limit: int = 50) -> list[dict]:
    """Active members ranked by summed skill gain for *period*."""
    period = parse_period(period) if isinstance(period, str) else period
    column = _GAIN_COLUMNS[period]
    xp_gain = func.sum(column).label("xp_gain")

    with store.session() as session:
        rows = session.execute(
            select(
                Member.id,
                Member.name,
                Member.display_name,
                Member.total_xp,
                Member.combat_level,
                Member.last_synced,
                xp_gain,
            )
            .join(Skill, Skill.member_id == Member.id)
            .where(Member.is_active.is_(True), column > 0)
            .group_by(
                Member.id, Member.name, Member.display_name, Member.total_xp,
                Member.combat_level, Member.last_synced,
            )
            .order_by(desc("xp_gain"), Member.name)
            .limit(limit)
        ).all()

    return [
        {
            "rank": position,
            "memberId": row.id,
            "name": row.display_name or row.name,
            "totalXp": row.total_xp,
            "xpGain": int(row.xp_gain or 0),
            "combatLevel": row.combat_level,
            "lastSynced": as_utc(row.last_synced).isoformat() if row.last_synced else None,
        }
        for position, row in enumerate(rows, start=1)
    ]


def reset_gains(store: SnapshotStore, period: Period | str) -> int:
    """Zero one accumulator on every skill row; returns rows touched."""
    period = parse_period(period) if isinstance(period, str) else period
    column = _GAIN_COLUMNS[period]
    with store.session() as session:
        result = session.execute(update(Skill).where(column != 0).values({column.key: 0}))
        count = result.rowcount
    logger.info("Reset %s XP gains on %d skill rows", period.value, count)
    return count


def gain_since(store: SnapshotStore, member_id: int, since: datetime) -> int:
    """Total XP gained since *since*, from snapshots (0 when unknown)."""
    with store.session() as session:
        if session.get(Member, member_id) is None:
            raise NotFound(f"Member {member_id} not found")

        baseline = session.scalars(
            select(XpSnapshot.total_xp)
            .where(XpSnapshot.member_id == member_id, XpSnapshot.timestamp <= since)
            .order_by(XpSnapshot.timestamp.desc(), XpSnapshot.id.desc())
            .limit(1)
        ).first()
        if baseline is None:
            baseline = session.scalars(
                select(XpSnapshot.total_xp)
                .where(XpSnapshot.member_id == member_id, XpSnapshot.timestamp > since)
                .order_by(XpSnapshot.timestamp, XpSnapshot.id)
                .limit(1)
            ).first()
        latest = session.scalars(
            select(XpSnapshot.total_xp)
            .where(XpSnapshot.member_id == member_id)
            .order_by(XpSnapshot.timestamp.desc(), XpSnapshot.id.desc())
            .limit(1)
        ).first()

    if baseline is None or latest is None:
        return 0
    return max(latest - baseline, 0)
