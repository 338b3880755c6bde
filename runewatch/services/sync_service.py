"""
runewatch.services.sync_service — One member, end to end
=========================================================

:class:`MemberSyncEngine` runs the per-member pipeline:

    1. stamp ``last_sync_attempt``
    2. fetch HiScores stats, then the RuneMetrics activity feed
    3. ``SnapshotStore.apply_sync`` (one transaction)
    4. hand every new activity to the bingo matcher
    5. append a ``sync_log`` row

Every provider failure becomes a :class:`SyncOutcome`; only
:class:`StoreUnavailable` escapes, because a dead database is fatal for
the whole batch.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from runewatch.database.engine import run_db
from runewatch.engine.profile import RawFeed
from runewatch.errors import (
    NotFound,
    ParseError,
    RateLimited,
    RuneWatchError,
    StoreUnavailable,
)

if TYPE_CHECKING:
    from runewatch.services.bingo_service import BingoMatcher
    from runewatch.services.runemetrics import RuneMetricsClient
    from runewatch.services.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)


class SyncStatus(enum.StrEnum):
    SUCCESS = "success"
    FAILED = "failed"
    RATE_LIMITED = "rate_limited"


@dataclass(frozen=True, slots=True)
class SyncOutcome:
    """Result of syncing a single member."""

    status: SyncStatus
    member_id: int
    member: str | None = None
    xp_gained: int = 0
    new_activity_count: int = 0
    error: str | None = None
    error_kind: str | None = None
    retryable: bool = False
    retry_after: float | None = None

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "memberId": self.member_id,
            "member": self.member,
            "xpGained": self.xp_gained,
            "newActivityCount": self.new_activity_count,
            "error": self.error,
            "errorKind": self.error_kind,
            "retryable": self.retryable,
        }


class MemberSyncEngine:
    """Fetch-then-persist for one member at a time."""

    def __init__(
        self,
        client: RuneMetricsClient,
        store: SnapshotStore,
        matcher: BingoMatcher | None = None,
    ) -> None:
        self.client = client
        self.store = store
        self.matcher = matcher

    async def sync_one(self, member_id: int) -> SyncOutcome:
        try:
            await run_db(self.store.record_attempt, member_id)
        except NotFound as exc:
            logger.warning("Sync requested for unknown member %s", member_id)
            return SyncOutcome(
                SyncStatus.FAILED, member_id, error=exc.message, error_kind=exc.kind
            )

        member = await run_db(self.store.get_member, member_id)
        if member is None:
            return SyncOutcome(
                SyncStatus.FAILED, member_id,
                error=f"Member {member_id} not found", error_kind=NotFound.kind,
            )
        name = member.name

        try:
            profile = await self.client.fetch_stats(name)
            feed = await self._fetch_feed(name)
        except RateLimited as exc:
            logger.warning("Rate limited while syncing %s", name)
            await self._log(member_id, False, f"{exc.kind}: {exc.message}")
            return SyncOutcome(
                SyncStatus.RATE_LIMITED, member_id, member=name,
                error=exc.message, error_kind=exc.kind,
                retryable=True, retry_after=exc.retry_after,
            )
        except RuneWatchError as exc:
            logger.warning("Sync failed for %s: %s", name, exc.message)
            await self._log(member_id, False, f"{exc.kind}: {exc.message}")
            return SyncOutcome(
                SyncStatus.FAILED, member_id, member=name,
                error=exc.message, error_kind=exc.kind, retryable=exc.retryable,
            )

        try:
            applied = await run_db(self.store.apply_sync, member_id, profile, feed)
        except NotFound as exc:
            return SyncOutcome(
                SyncStatus.FAILED, member_id, member=name,
                error=exc.message, error_kind=exc.kind,
            )

        if self.matcher is not None:
            for activity in applied.new_activities:
                try:
                    await run_db(self.matcher.on_activity, activity)
                except StoreUnavailable:
                    raise
                except RuneWatchError as exc:
                    logger.warning(
                        "Bingo matching failed for activity %d: %s", activity.id, exc.message
                    )

        await self._log(member_id, True)
        logger.info(
            "Synced %s: +%d xp, %d new activities",
            name, applied.xp_gained, len(applied.new_activities),
        )
        return SyncOutcome(
            SyncStatus.SUCCESS,
            member_id,
            member=name,
            xp_gained=applied.xp_gained,
            new_activity_count=len(applied.new_activities),
        )

    async def _fetch_feed(self, name: str) -> RawFeed:
        """Activity feed, degraded to empty when the profile is unusable."""
        try:
            return await self.client.fetch_activity_feed(name)
        except (NotFound, ParseError) as exc:
            logger.warning("No activity feed for %s (%s); continuing with stats only",
                           name, exc.message)
            return RawFeed()

    async def _log(self, member_id: int, success: bool, error: str | None = None) -> None:
        await run_db(self.store.record_sync_log, member_id, success, error)
