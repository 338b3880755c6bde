"""
runewatch.api.routes.sync — Batch sync jobs, progress polling, sync log
=========================================================================

Clients start a job, then poll ``GET /sync/progress/{syncId}`` every few
seconds.  Progress responses carry ``version`` so the shape can evolve.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query

from runewatch.api.deps import get_client, get_store, get_sync_engine, get_tracker
from runewatch.database.engine import run_db
from runewatch.errors import NotFound
from runewatch.services.clan_service import sync_roster
from runewatch.services.runemetrics import RuneMetricsClient
from runewatch.services.snapshot_store import SnapshotStore
from runewatch.services.sync_jobs import PROGRESS_VERSION, SyncJobTracker
from runewatch.services.sync_service import MemberSyncEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])


def _progress(body: dict) -> dict:
    return {"version": PROGRESS_VERSION, "progress": body}


@router.post("/all/async")
async def sync_all(
    store: SnapshotStore = Depends(get_store),
    tracker: SyncJobTracker = Depends(get_tracker),
):
    member_ids = await run_db(store.active_member_ids)
    sync_id = tracker.start(member_ids, label="all")
    return {
        "syncId": sync_id,
        "total": len(member_ids),
        "message": f"Started sync of {len(member_ids)} members",
    }


@router.post("/unsynced/async")
async def sync_unsynced(
    store: SnapshotStore = Depends(get_store),
    tracker: SyncJobTracker = Depends(get_tracker),
):
    member_ids = await run_db(store.unsynced_member_ids)
    if not member_ids:
        return {"syncId": None, "total": 0, "message": "All members have been synced"}
    sync_id = tracker.start(member_ids, label="unsynced")
    return {
        "syncId": sync_id,
        "total": len(member_ids),
        "message": f"Started sync of {len(member_ids)} unsynced members",
    }


# Job routes stay on the event loop: the tracker and its asyncio.Events are
# loop-bound.
@router.get("/progress")
async def list_progress(tracker: SyncJobTracker = Depends(get_tracker)):
    return {"version": PROGRESS_VERSION, "syncs": tracker.list_jobs()}


@router.get("/progress/{sync_id}")
async def get_progress(sync_id: str, tracker: SyncJobTracker = Depends(get_tracker)):
    return _progress(tracker.get_progress(sync_id))


@router.post("/{sync_id}/cancel")
async def cancel_sync(sync_id: str, tracker: SyncJobTracker = Depends(get_tracker)):
    return _progress(tracker.cancel(sync_id))


@router.get("/throttle")
async def throttle_stats(client: RuneMetricsClient = Depends(get_client)):
    """Current provider allowance, in-flight calls and pause state."""
    return client.throttle.stats()


@router.post("/member/{member_id}")
async def sync_member(
    member_id: int,
    sync_engine: MemberSyncEngine = Depends(get_sync_engine),
):
    outcome = await sync_engine.sync_one(member_id)
    if outcome.member is None and outcome.error_kind == NotFound.kind:
        raise NotFound(outcome.error or f"Member {member_id} not found")
    return outcome.to_dict()


@router.get("/logs")
async def sync_logs(
    limit: int = Query(50, ge=1, le=500),
    store: SnapshotStore = Depends(get_store),
):
    return {"logs": await run_db(store.recent_sync_logs, limit)}


@router.post("/roster")
async def reconcile_roster(
    client: RuneMetricsClient = Depends(get_client),
    store: SnapshotStore = Depends(get_store),
):
    summary = await sync_roster(client, store)
    return summary.to_dict()
