"""
runewatch.api.routes.leaderboard — Period XP leaderboards
===========================================================
"""

from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Depends, Query

from runewatch.api.deps import get_store
from runewatch.database.engine import run_db
from runewatch.database.models import utcnow
from runewatch.services.leaderboard_service import (
    gain_since,
    leaderboard,
    parse_period,
    period_start,
)
from runewatch.services.snapshot_store import SnapshotStore

router = APIRouter(prefix="/leaderboard", tags=["leaderboard"])


@router.get("/gain/{member_id}")
async def member_gain(
    member_id: int,
    hours: int = Query(24, ge=1, le=24 * 90),
    store: SnapshotStore = Depends(get_store),
):
    """XP gained by one member over the last *hours*, from snapshots."""
    since = utcnow() - timedelta(hours=hours)
    gained = await run_db(gain_since, store, member_id, since)
    return {"memberId": member_id, "since": since.isoformat(), "xpGain": gained}


@router.get("/{period}")
async def get_leaderboard(
    period: str,
    limit: int = Query(50, ge=1, le=500),
    store: SnapshotStore = Depends(get_store),
):
    parsed = parse_period(period)
    entries = await run_db(leaderboard, store, parsed, limit)
    return {
        "period": parsed.value,
        "since": period_start(parsed).isoformat(),
        "entries": entries,
    }
