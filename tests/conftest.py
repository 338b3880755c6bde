"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from datetime import UTC, datetime

import pytest
from sqlalchemy import BigInteger, Engine, create_engine
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from runewatch.config import RuneWatchConfig, config_from_dict
from runewatch.constants import SKILLS
from runewatch.database.models import Base
from runewatch.engine.profile import RawActivity, RawFeed, RawProfile, RawSkill, RosterEntry
from runewatch.errors import NotFound
from runewatch.services.snapshot_store import SnapshotStore
from runewatch.services.throttle import AdaptiveThrottle


# ---------------------------------------------------------------------------
# BigInteger → INTEGER so autoincrement works on SQLite.
# ---------------------------------------------------------------------------
@compiles(BigInteger, "sqlite")
def _compile_bigint_as_integer(type_, compiler, **kw):
    return "INTEGER"


def run_async(coro):
    """Run an async coroutine in a new event loop."""
    loop = asyncio.get_event_loop_policy().new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


# ---------------------------------------------------------------------------
# Provider payload builders
# ---------------------------------------------------------------------------
def make_profile(name: str, total_xp: int, skill_xp: dict[str, int] | None = None) -> RawProfile:
    """A HiScores profile; skills not in *skill_xp* sit at level 1 / 0 XP."""
    skill_xp = skill_xp or {}
    skills = [
        RawSkill(skill_id=i, name=s, level=99 if skill_xp.get(s) else 1, xp=skill_xp.get(s, 0))
        for i, s in enumerate(SKILLS)
    ]
    return RawProfile(name=name, total_xp=total_xp, total_level=len(SKILLS), skills=skills)


def make_feed(*texts: str, when: datetime | None = None, **kwargs) -> RawFeed:
    when = when or datetime(2026, 10, 15, 12, 0, tzinfo=UTC)
    return RawFeed(
        activities=[RawActivity(date=when, text=t) for t in texts],
        **kwargs,
    )


class FakeProvider:
    """Scripted stand-in for :class:`RuneMetricsClient`.

    ``stats_errors[name]`` / ``feed_errors[name]`` are consumed one per
    call, so ``[RateLimited()]`` fails the first attempt only.
    """

    def __init__(self, max_concurrency: int = 4) -> None:
        self.throttle = AdaptiveThrottle(
            max_concurrency=max_concurrency, min_interval=0.0, cooldown=0.01
        )
        self.profiles: dict[str, RawProfile] = {}
        self.feeds: dict[str, RawFeed] = {}
        self.roster: list[RosterEntry] = []
        self.stats_errors: dict[str, list[Exception]] = defaultdict(list)
        self.feed_errors: dict[str, list[Exception]] = defaultdict(list)
        self.stats_calls: list[str] = []
        self.delay = 0.0
        self.closed = False

    async def fetch_stats(self, name: str) -> RawProfile:
        self.stats_calls.append(name)
        await asyncio.sleep(self.delay)
        if self.stats_errors[name]:
            raise self.stats_errors[name].pop(0)
        if name not in self.profiles:
            raise NotFound(f"HiScores for {name!r} not found")
        return self.profiles[name]

    async def fetch_activity_feed(self, name: str) -> RawFeed:
        await asyncio.sleep(0)
        if self.feed_errors[name]:
            raise self.feed_errors[name].pop(0)
        return self.feeds.get(name, RawFeed())

    async def fetch_clan_roster(self, clan: str | None = None) -> list[RosterEntry]:
        return list(self.roster)

    async def aclose(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with every RuneWatch table.

    StaticPool shares one connection across threads, which
    ``asyncio.to_thread`` (``run_db``) needs.
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


@pytest.fixture
def store(db_engine: Engine) -> SnapshotStore:
    return SnapshotStore(db_engine)


@pytest.fixture
def test_config() -> RuneWatchConfig:
    """Fast settings: no pacing, millisecond back-off."""
    return config_from_dict({
        "clan_name": "Kravy",
        "max_concurrency": 4,
        "min_request_interval": 0,
        "job_workers": 4,
        "job_time_budget": 10,
        "retry_base_delay": 0.01,
        "retry_max_delay": 0.05,
        "max_rate_limit_retries": 3,
        "max_upstream_retries": 1,
    })


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()
