"""
runewatch.services.scheduler — Background resets and periodic sync
===================================================================

Two long-running tasks, started with the API when ``enable_scheduler``
is set:

- **reset loop**: sleeps until the next 00:00 UTC, then zeroes the daily
  gains, the weekly gains on Mondays and the monthly gains on the 1st.
- **sync loop**: every ``sync_interval_minutes`` (0 disables it) starts a
  batch job for all active members, unless the previous scheduled job is
  still running.  Guests on running bingo boards get their feeds matched
  on the same tick.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta

from runewatch.config import RuneWatchConfig
from runewatch.database.engine import run_db
from runewatch.database.models import as_utc, utcnow
from runewatch.errors import NotFound
from runewatch.services.guest_sync import GuestFeedSync
from runewatch.services.leaderboard_service import Period, reset_gains
from runewatch.services.snapshot_store import SnapshotStore
from runewatch.services.sync_jobs import SyncJobTracker

logger = logging.getLogger(__name__)

SCHEDULED_LABEL = "scheduled"


def seconds_until_midnight(now: datetime | None = None) -> float:
    """Seconds from *now* to the next 00:00 UTC."""
    now = as_utc(now) if now else utcnow()
    tomorrow = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return (tomorrow - now).total_seconds()


def periods_due(day: datetime) -> list[Period]:
    """Which accumulators reset at the start of *day*."""
    due = [Period.DAILY]
    if day.weekday() == 0:
        due.append(Period.WEEKLY)
    if day.day == 1:
        due.append(Period.MONTHLY)
    return due


class SyncScheduler:
    """Owns the reset and periodic-sync tasks."""

    def __init__(
        self,
        store: SnapshotStore,
        tracker: SyncJobTracker,
        config: RuneWatchConfig,
        guest_sync: GuestFeedSync | None = None,
    ) -> None:
        self.store = store
        self.tracker = tracker
        self.config = config
        self.guest_sync = guest_sync
        self._tasks: list[asyncio.Task] = []
        self._last_job: str | None = None

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    async def run_resets(self, day: datetime) -> list[Period]:
        due = periods_due(day)
        for period in due:
            await run_db(reset_gains, self.store, period)
        return due

    async def run_scheduled_sync(self) -> str | None:
        """Start a full sync unless the previous scheduled one is still going."""
        if self._last_job is not None:
            try:
                if self.tracker.get_progress(self._last_job)["status"] in ("pending", "running"):
                    logger.info("Previous scheduled sync %s still running; skipping", self._last_job)
                    return None
            except NotFound:
                pass
        member_ids = await run_db(self.store.active_member_ids)
        if not member_ids:
            return None
        self._last_job = self.tracker.start(member_ids, label=SCHEDULED_LABEL)
        return self._last_job

    def start(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Start the background tasks (idempotent)."""
        if self.running:
            return
        loop = loop or asyncio.get_running_loop()

        async def _reset_loop() -> None:
            while True:
                await asyncio.sleep(seconds_until_midnight())
                try:
                    await self.run_resets(utcnow())
                except Exception:
                    logger.exception("Scheduled gain reset failed")

        async def _sync_loop(interval: float) -> None:
            while True:
                await asyncio.sleep(interval)
                try:
                    await self.run_scheduled_sync()
                except Exception:
                    logger.exception("Scheduled sync failed to start")
                if self.guest_sync is not None:
                    try:
                        await self.guest_sync.sync_all()
                    except Exception:
                        logger.exception("Scheduled guest feed sync failed")

        self._tasks.append(loop.create_task(_reset_loop(), name="gain-reset"))
        if self.config.sync_interval_minutes > 0:
            self._tasks.append(loop.create_task(
                _sync_loop(self.config.sync_interval_minutes * 60), name="scheduled-sync"
            ))
        logger.info(
            "Scheduler started (sync every %s min)",
            self.config.sync_interval_minutes or "never",
        )

    def stop(self) -> None:
        """Cancel the background tasks."""
        for task in self._tasks:
            task.cancel()
        self._tasks.clear()
