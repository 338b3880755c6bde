"""
tests/test_scheduler.py — Background Reset & Periodic Sync Tests
=================================================================
"""

from __future__ import annotations

import asyncio
import dataclasses
from datetime import UTC, datetime

from sqlalchemy import select

from conftest import make_profile, run_async

from runewatch.database.models import Skill
from runewatch.engine.gains import SkillGain
from runewatch.services.leaderboard_service import Period
from runewatch.services.scheduler import SyncScheduler, periods_due, seconds_until_midnight
from runewatch.services.sync_jobs import SyncJobTracker
from runewatch.services.sync_service import MemberSyncEngine


def _scheduler(store, provider, config) -> SyncScheduler:
    tracker = SyncJobTracker(MemberSyncEngine(provider, store), config)
    return SyncScheduler(store, tracker, config)


class TestCalendar:
    def test_seconds_until_midnight(self):
        assert seconds_until_midnight(datetime(2026, 10, 17, 23, 0, tzinfo=UTC)) == 3600
        assert seconds_until_midnight(datetime(2026, 10, 17, 0, 0, tzinfo=UTC)) == 86400

    def test_periods_due(self):
        assert periods_due(datetime(2026, 10, 17, tzinfo=UTC)) == [Period.DAILY]
        assert periods_due(datetime(2026, 10, 12, tzinfo=UTC)) == [Period.DAILY, Period.WEEKLY]
        assert periods_due(datetime(2026, 10, 1, tzinfo=UTC)) == [Period.DAILY, Period.MONTHLY]
        assert periods_due(datetime(2026, 6, 1, tzinfo=UTC)) == [
            Period.DAILY, Period.WEEKLY, Period.MONTHLY,
        ]


class TestResets:
    def test_monday_resets_daily_and_weekly(self, store, provider, test_config):
        member = store.upsert_member("Zezima")
        with store.session() as session:
            store.upsert_skill(
                session, member.id, SkillGain(0, "Attack", 50, 1_000, None, 100),
                datetime(2026, 10, 11, tzinfo=UTC),
            )
        scheduler = _scheduler(store, provider, test_config)

        due = run_async(scheduler.run_resets(datetime(2026, 10, 12, tzinfo=UTC)))

        assert due == [Period.DAILY, Period.WEEKLY]
        with store.session() as session:
            skill = session.scalars(select(Skill)).one()
            assert (skill.daily_xp_gain, skill.weekly_xp_gain, skill.monthly_xp_gain) == (
                0, 0, 100
            )


class TestScheduledSync:
    def test_starts_job_for_active_members(self, store, provider, test_config):
        member = store.upsert_member("Zezima")
        provider.profiles["zezima"] = make_profile("zezima", 10)
        scheduler = _scheduler(store, provider, test_config)

        async def main():
            sync_id = await scheduler.run_scheduled_sync()
            return await scheduler.tracker.wait(sync_id)

        progress = run_async(main())
        assert progress["label"] == "scheduled"
        assert progress["successful"] == 1
        assert store.get_member(member.id).last_synced is not None

    def test_skips_while_previous_job_running(self, store, provider, test_config):
        store.upsert_member("Zezima")
        provider.profiles["zezima"] = make_profile("zezima", 10)
        provider.delay = 0.05
        scheduler = _scheduler(store, provider, test_config)

        async def main():
            first = await scheduler.run_scheduled_sync()
            second = await scheduler.run_scheduled_sync()
            await scheduler.tracker.wait(first)
            third = await scheduler.run_scheduled_sync()
            await scheduler.tracker.wait(third)
            return first, second, third

        first, second, third = run_async(main())
        assert first is not None
        assert second is None
        assert third is not None and third != first

    def test_no_members_no_job(self, store, provider, test_config):
        scheduler = _scheduler(store, provider, test_config)
        assert run_async(scheduler.run_scheduled_sync()) is None
        assert scheduler.tracker.list_jobs() == []


class TestLifecycle:
    def test_start_and_stop(self, store, provider, test_config):
        config = dataclasses.replace(test_config, sync_interval_minutes=60)
        scheduler = _scheduler(store, provider, config)

        async def main():
            scheduler.start()
            scheduler.start()
            tasks = len(scheduler._tasks)
            running = scheduler.running
            scheduler.stop()
            await asyncio.sleep(0)
            return tasks, running

        tasks, running = run_async(main())
        assert tasks == 2
        assert running
        assert not scheduler.running

    def test_sync_loop_disabled_by_default(self, store, provider, test_config):
        scheduler = _scheduler(store, provider, test_config)

        async def main():
            scheduler.start()
            count = len(scheduler._tasks)
            scheduler.stop()
            await asyncio.sleep(0)
            return count

        assert run_async(main()) == 1
