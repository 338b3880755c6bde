"""
runewatch.services.throttle — Adaptive provider throttle
=========================================================

One :class:`AdaptiveThrottle` guards every outbound call to the RuneScape
endpoints.  It is owned by a :class:`~runewatch.services.runemetrics.RuneMetricsClient`
and shared by all workers of all jobs that use that client.

- At most ``allowed_concurrency`` calls are in flight at once.
- Call starts are spaced at least ``min_interval`` seconds apart.
- ``penalize()`` on a 429 halves the allowance (floor 1) and pauses new
  starts for ``retry_after`` or ``cooldown`` seconds, never longer than
  ``max_pause``.
- ``reward()`` after ``reward_after`` consecutive successes grows the
  allowance by one, up to ``max_concurrency``.


A caller that may be stopped (a batch job worker) sets :data:`stop_signal`
to its stop event.  A wait on a paused throttle then ends as soon as that
event is set, raising :class:`UpstreamUnavailable` instead of sleeping out
the pause.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from contextvars import ContextVar

from runewatch.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

stop_signal: ContextVar[asyncio.Event | None] = ContextVar("stop_signal", default=None)


class AdaptiveThrottle:
    """AIMD concurrency limiter with start-time pacing."""

    def __init__(
        self,
        max_concurrency: int = 4,
        min_interval: float = 0.5,
        cooldown: float = 30.0,
        max_pause: float = 120.0,
        reward_after: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.max_concurrency = max_concurrency
        self.min_interval = min_interval
        self.cooldown = cooldown
        self.max_pause = max_pause
        self.reward_after = reward_after
        self._clock = clock

        self.allowed_concurrency = max_concurrency
        self.in_flight = 0
        self._successes = 0
        self._next_start = 0.0
        self._paused_until = 0.0

        # asyncio primitives are bound to the loop that first awaits them,
        # so they are rebuilt if the throttle moves to another loop.
        self._loop: asyncio.AbstractEventLoop | None = None
        self._cond: asyncio.Condition | None = None
        self._pace: asyncio.Lock | None = None

    # ------------------------------------------------------------------
    # Loop-bound primitives
    # ------------------------------------------------------------------
    def _primitives(self) -> tuple[asyncio.Condition, asyncio.Lock]:
        loop = asyncio.get_running_loop()
        if self._loop is not loop or self._cond is None or self._pace is None:
            self._loop = loop
            self._cond = asyncio.Condition()
            self._pace = asyncio.Lock()
        return self._cond, self._pace

    # ------------------------------------------------------------------
    # Acquire / release
    # ------------------------------------------------------------------
    async def acquire(self) -> None:
        """Wait for a concurrency slot, then for the next allowed start time."""
        cond, pace = self._primitives()
        stop = stop_signal.get()
        async with cond:
            await cond.wait_for(lambda: self.in_flight < self.allowed_concurrency)
            self.in_flight += 1

        try:
            async with pace:
                while True:
                    wait = max(self._paused_until, self._next_start) - self._clock()
                    if wait <= 0:
                        break
                    if stop is None:
                        await asyncio.sleep(wait)
                        continue
                    try:
                        await asyncio.wait_for(stop.wait(), timeout=wait)
                    except TimeoutError:
                        continue
                    raise UpstreamUnavailable("Sync stopped while the provider was paused")
                self._next_start = self._clock() + self.min_interval
        except BaseException:
            await self.release()
            raise

    async def release(self) -> None:
        cond, _ = self._primitives()
        async with cond:
            self.in_flight = max(0, self.in_flight - 1)
            cond.notify_all()

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """``async with throttle.slot(): ...`` around one provider call."""
        await self.acquire()
        try:
            yield
        finally:
            await self.release()

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------
    def penalize(self, retry_after: float | None = None) -> None:
        """Multiplicative decrease plus a pause on a rate-limit signal."""
        pause = retry_after if retry_after and retry_after > 0 else self.cooldown
        pause = min(pause, self.max_pause)
        previous = self.allowed_concurrency
        self.allowed_concurrency = max(1, self.allowed_concurrency // 2)
        self._successes = 0
        self._paused_until = max(self._paused_until, self._clock() + pause)
        logger.warning(
            "Provider rate limit: concurrency %d → %d, pausing %.1fs",
            previous, self.allowed_concurrency, pause,
        )

    def reward(self) -> None:
        """Additive increase after a run of successes."""
        self._successes += 1
        if self._successes < self.reward_after:
            return
        self._successes = 0
        if self.allowed_concurrency < self.max_concurrency:
            self.allowed_concurrency += 1
            logger.debug("Throttle concurrency raised to %d", self.allowed_concurrency)

    @property
    def paused(self) -> bool:
        return self._paused_until > self._clock()

    def stats(self) -> dict:
        return {
            "allowedConcurrency": self.allowed_concurrency,
            "maxConcurrency": self.max_concurrency,
            "inFlight": self.in_flight,
            "paused": self.paused,
        }
