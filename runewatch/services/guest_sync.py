"""
runewatch.services.guest_sync — Bingo tracking for guest players
=================================================================

Guests play on bingo teams without being clan members, so the member
sync never fetches their feeds.  :class:`GuestFeedSync` fetches the
RuneMetrics feed of every guest on a running board and hands each entry
to :meth:`BingoMatcher.on_guest_activity`.  Guest activities are only
matched, never stored; the ``(item_id, team_id)`` guard makes
re-reading the same feed harmless.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from runewatch.database.engine import run_db
from runewatch.errors import RuneWatchError, StoreUnavailable

if TYPE_CHECKING:
    from runewatch.services.bingo_service import BingoMatcher
    from runewatch.services.runemetrics import RuneMetricsClient

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class GuestSyncSummary:
    guests: int = 0
    synced: list[str] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)
    completions: int = 0

    def to_dict(self) -> dict:
        return {
            "guests": self.guests,
            "synced": list(self.synced),
            "failed": list(self.failed),
            "completions": self.completions,
        }


class GuestFeedSync:
    """Fetch guest feeds and match them against running boards."""

    def __init__(self, client: RuneMetricsClient, matcher: BingoMatcher) -> None:
        self.client = client
        self.matcher = matcher
        self._in_progress: set[str] = set()

    async def sync_guest(self, name: str) -> int | None:
        """Match one guest's feed; ``None`` when a sync of *name* is already running."""
        if name in self._in_progress:
            return None
        self._in_progress.add(name)
        try:
            feed = await self.client.fetch_activity_feed(name)
            count = 0
            for activity in feed.activities:
                count += len(await run_db(self.matcher.on_guest_activity, name, activity))
            return count
        finally:
            self._in_progress.discard(name)

    async def sync_all(self) -> GuestSyncSummary:
        names = await run_db(self.matcher.active_guest_names)
        summary = GuestSyncSummary(guests=len(names))
        for name in names:
            try:
                count = await self.sync_guest(name)
            except StoreUnavailable:
                raise
            except RuneWatchError as exc:
                logger.warning("Guest feed sync failed for %s: %s", name, exc.message)
                summary.failed.append({"guest": name, "error": f"{exc.kind}: {exc.message}"})
                continue
            if count is None:
                continue
            summary.synced.append(name)
            summary.completions += count

        if names:
            logger.info(
                "Guest feeds: %d/%d synced, %d new completions",
                len(summary.synced), summary.guests, summary.completions,
            )
        return summary
