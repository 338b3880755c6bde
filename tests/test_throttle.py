"""
tests/test_throttle.py — Adaptive Throttle Tests
=================================================
Concurrency cap, start pacing, multiplicative decrease on 429 and
additive increase after a run of successes.
"""

from __future__ import annotations

import asyncio
import time

import pytest

from conftest import run_async

from runewatch.errors import UpstreamUnavailable
from runewatch.services.throttle import AdaptiveThrottle, stop_signal


class TestFeedback:
    def test_penalize_halves_with_floor(self):
        throttle = AdaptiveThrottle(max_concurrency=4, cooldown=0.01)
        throttle.penalize()
        assert throttle.allowed_concurrency == 2
        throttle.penalize()
        assert throttle.allowed_concurrency == 1
        throttle.penalize()
        assert throttle.allowed_concurrency == 1

    def test_penalize_pauses(self):
        now = [100.0]
        throttle = AdaptiveThrottle(cooldown=30.0, clock=lambda: now[0])
        throttle.penalize()
        assert throttle.paused
        now[0] += 31
        assert not throttle.paused

    def test_retry_after_overrides_cooldown(self):
        now = [0.0]
        throttle = AdaptiveThrottle(cooldown=30.0, clock=lambda: now[0])
        throttle.penalize(retry_after=5)
        now[0] = 6.0
        assert not throttle.paused

    def test_reward_grows_back_to_max(self):
        throttle = AdaptiveThrottle(max_concurrency=4, reward_after=2, cooldown=0.01)
        throttle.penalize()
        throttle.penalize()
        assert throttle.allowed_concurrency == 1
        for _ in range(10):
            throttle.reward()
        assert throttle.allowed_concurrency == 4

    def test_pause_is_capped(self):
        now = [0.0]
        throttle = AdaptiveThrottle(cooldown=30.0, max_pause=60.0, clock=lambda: now[0])
        throttle.penalize(retry_after=3600)
        now[0] = 61.0
        assert not throttle.paused

    def test_penalize_resets_success_streak(self):
        throttle = AdaptiveThrottle(max_concurrency=4, reward_after=2, cooldown=0.01)
        throttle.penalize()
        throttle.reward()
        throttle.penalize()
        throttle.reward()
        assert throttle.allowed_concurrency == 1

    def test_stats(self):
        stats = AdaptiveThrottle(max_concurrency=3).stats()
        assert stats == {
            "allowedConcurrency": 3, "maxConcurrency": 3, "inFlight": 0, "paused": False,
        }

    def test_rejects_zero_concurrency(self):
        with pytest.raises(ValueError):
            AdaptiveThrottle(max_concurrency=0)


class TestSlots:
    def test_in_flight_never_exceeds_allowance(self):
        throttle = AdaptiveThrottle(max_concurrency=2, min_interval=0)
        peak = 0

        async def call():
            nonlocal peak
            async with throttle.slot():
                peak = max(peak, throttle.in_flight)
                await asyncio.sleep(0.01)

        async def main():
            await asyncio.gather(*(call() for _ in range(6)))

        run_async(main())
        assert peak == 2
        assert throttle.in_flight == 0

    def test_penalized_allowance_applies_to_new_calls(self):
        throttle = AdaptiveThrottle(max_concurrency=4, min_interval=0, cooldown=0.001)
        throttle.penalize()
        throttle.penalize()
        peak = 0

        async def call():
            nonlocal peak
            async with throttle.slot():
                peak = max(peak, throttle.in_flight)
                await asyncio.sleep(0.005)

        async def main():
            await asyncio.sleep(0.002)
            await asyncio.gather(*(call() for _ in range(4)))

        run_async(main())
        assert peak == 1

    def test_min_interval_spaces_starts(self):
        throttle = AdaptiveThrottle(max_concurrency=4, min_interval=0.02)

        async def main():
            for _ in range(3):
                async with throttle.slot():
                    pass

        started = time.monotonic()
        run_async(main())
        assert time.monotonic() - started >= 0.04

    def test_slot_released_on_error(self):
        throttle = AdaptiveThrottle(max_concurrency=1, min_interval=0)

        async def boom():
            async with throttle.slot():
                raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            run_async(boom())
        assert throttle.in_flight == 0

    def test_reusable_across_event_loops(self):
        throttle = AdaptiveThrottle(max_concurrency=1, min_interval=0)

        async def once():
            async with throttle.slot():
                return throttle.in_flight

        assert run_async(once()) == 1
        assert run_async(once()) == 1

    def test_stop_signal_ends_pause(self):
        throttle = AdaptiveThrottle(max_concurrency=1, min_interval=0, cooldown=30.0)
        throttle.penalize()

        async def main():
            stop = asyncio.Event()
            stop_signal.set(stop)
            asyncio.get_running_loop().call_later(0.05, stop.set)
            async with throttle.slot():
                pass

        started = time.monotonic()
        with pytest.raises(UpstreamUnavailable):
            run_async(main())
        assert time.monotonic() - started < 1.0
        assert throttle.in_flight == 0
