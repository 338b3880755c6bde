"""
runewatch.api.deps — FastAPI dependency injection
===================================================

The engine and config are built once per process (``lru_cache``).  The
sync runtime (provider client, store, sync engine, bingo matcher, guest
feed sync, job tracker, scheduler) is built lazily on first use and torn down by the
app lifespan.  Tests swap any of these through
``app.dependency_overrides``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache

from fastapi import Depends
from sqlalchemy import Engine

from runewatch.config import RuneWatchConfig, load_config
from runewatch.database.engine import create_db_engine
from runewatch.services.bingo_service import BingoMatcher
from runewatch.services.guest_sync import GuestFeedSync
from runewatch.services.runemetrics import RuneMetricsClient
from runewatch.services.scheduler import SyncScheduler
from runewatch.services.snapshot_store import SnapshotStore
from runewatch.services.sync_jobs import SyncJobTracker
from runewatch.services.sync_service import MemberSyncEngine

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> RuneWatchConfig:
    return load_config()


@dataclass(slots=True)
class Runtime:
    """Everything the sync endpoints share for the life of the process."""

    config: RuneWatchConfig
    client: RuneMetricsClient
    store: SnapshotStore
    matcher: BingoMatcher
    sync_engine: MemberSyncEngine
    tracker: SyncJobTracker
    guest_sync: GuestFeedSync
    scheduler: SyncScheduler

    @classmethod
    def build(
        cls,
        engine: Engine,
        config: RuneWatchConfig,
        client: RuneMetricsClient | None = None,
    ) -> Runtime:
        client = client or RuneMetricsClient(config)
        store = SnapshotStore(engine)
        matcher = BingoMatcher(store)
        sync_engine = MemberSyncEngine(client, store, matcher)
        tracker = SyncJobTracker(sync_engine, config)
        guest_sync = GuestFeedSync(client, matcher)
        return cls(
            config=config,
            client=client,
            store=store,
            matcher=matcher,
            sync_engine=sync_engine,
            tracker=tracker,
            guest_sync=guest_sync,
            scheduler=SyncScheduler(store, tracker, config, guest_sync),
        )

    async def aclose(self) -> None:
        self.scheduler.stop()
        await self.tracker.shutdown()
        await self.client.aclose()


_runtime: Runtime | None = None


def get_runtime(
    engine: Engine = Depends(get_engine),
    config: RuneWatchConfig = Depends(get_config),
) -> Runtime:
    global _runtime
    if _runtime is None:
        _runtime = Runtime.build(engine, config)
        logger.info("Sync runtime ready for clan %r", config.clan_name)
    return _runtime


async def close_runtime() -> None:
    global _runtime
    if _runtime is not None:
        await _runtime.aclose()
        _runtime = None


def get_store(runtime: Runtime = Depends(get_runtime)) -> SnapshotStore:
    return runtime.store


def get_tracker(runtime: Runtime = Depends(get_runtime)) -> SyncJobTracker:
    return runtime.tracker


def get_sync_engine(runtime: Runtime = Depends(get_runtime)) -> MemberSyncEngine:
    return runtime.sync_engine


def get_matcher(runtime: Runtime = Depends(get_runtime)) -> BingoMatcher:
    return runtime.matcher


def get_client(runtime: Runtime = Depends(get_runtime)) -> RuneMetricsClient:
    return runtime.client


def get_guest_sync(runtime: Runtime = Depends(get_runtime)) -> GuestFeedSync:
    return runtime.guest_sync
