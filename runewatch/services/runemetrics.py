"""
runewatch.services.runemetrics — Provider HTTP client
======================================================

Thin ``httpx.AsyncClient`` wrapper around the three public RuneScape
endpoints the sync pipeline reads:

* HiScores ``index_lite.ws``       → :class:`RawProfile` (skills, total XP)
* RuneMetrics ``profile/profile``  → :class:`RawFeed` (activities, clan stats)
* Clan ``members_lite.ws``         → ``list[RosterEntry]``

Every call runs inside the injected :class:`AdaptiveThrottle`.  HTTP
failures are translated into :mod:`runewatch.errors` types; the client
never retries on its own.
"""

from __future__ import annotations

import logging

import httpx

from runewatch.config import RuneWatchConfig
from runewatch.engine.profile import (
    RawFeed,
    RawProfile,
    RosterEntry,
    parse_hiscores,
    parse_roster,
    parse_runemetrics,
)
from runewatch.errors import NotFound, ParseError, RateLimited, UpstreamUnavailable
from runewatch.services.throttle import AdaptiveThrottle

logger = logging.getLogger(__name__)

_USER_AGENT = "runewatch/0.1 (+clan tracker)"


def _retry_after(raw: str | None) -> float | None:
    if not raw:
        return None
    try:
        return max(float(raw), 0.0)
    except ValueError:
        return None


class RuneMetricsClient:
    """Async client for HiScores, RuneMetrics and the clan roster."""

    def __init__(
        self,
        config: RuneWatchConfig,
        throttle: AdaptiveThrottle | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self.throttle = throttle or AdaptiveThrottle(
            max_concurrency=config.max_concurrency,
            min_interval=config.min_request_interval,
            cooldown=config.rate_limit_cooldown,
            max_pause=config.retry_max_delay,
        )
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.config.request_timeout,
                transport=self._transport,
                headers={"User-Agent": _USER_AGENT},
                follow_redirects=True,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    async def _get(self, url: str, params: dict, what: str) -> httpx.Response:
        async with self.throttle.slot():
            try:
                resp = await self._http().get(url, params=params)
            except httpx.TimeoutException as exc:
                raise UpstreamUnavailable(f"Timed out fetching {what}") from exc
            except httpx.TransportError as exc:
                raise UpstreamUnavailable(f"Network error fetching {what}: {exc}") from exc

            if resp.status_code == 429:
                retry_after = _retry_after(resp.headers.get("Retry-After"))
                self.throttle.penalize(retry_after)
                raise RateLimited(f"Rate limited fetching {what}", retry_after=retry_after)
            if resp.status_code == 404:
                raise NotFound(f"{what} not found")
            if resp.status_code >= 400:
                raise UpstreamUnavailable(f"HTTP {resp.status_code} fetching {what}")

            self.throttle.reward()
            return resp

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------
    async def fetch_stats(self, name: str) -> RawProfile:
        """Skills and total XP from HiScores."""
        resp = await self._get(
            self.config.hiscores_url, {"player": name}, f"HiScores for {name!r}"
        )
        return parse_hiscores(name, resp.text)

    async def fetch_activity_feed(self, name: str) -> RawFeed:
        """Recent activities and clan stats from RuneMetrics."""
        resp = await self._get(
            self.config.runemetrics_url,
            {"user": name, "activities": self.config.activities_per_fetch},
            f"RuneMetrics profile for {name!r}",
        )
        try:
            payload = resp.json()
        except ValueError as exc:
            raise ParseError(f"RuneMetrics returned non-JSON for {name!r}") from exc
        feed = parse_runemetrics(payload)
        if feed.private:
            raise NotFound(f"RuneMetrics profile for {name!r} is private")
        if feed.skipped:
            logger.info("Skipped %d malformed activities for %s", feed.skipped, name)
        return feed

    async def fetch_clan_roster(self, clan: str | None = None) -> list[RosterEntry]:
        """Current clan member list."""
        clan = clan or self.config.clan_name
        resp = await self._get(
            self.config.clan_members_url, {"clanName": clan}, f"roster for clan {clan!r}"
        )
        entries = parse_roster(resp.text)
        if not entries:
            raise ParseError(f"Empty roster for clan {clan!r}")
        return entries
