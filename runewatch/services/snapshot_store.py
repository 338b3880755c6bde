"""
runewatch.services.snapshot_store — Transactional member/skill/activity store
==============================================================================

All writes the sync pipeline performs go through :class:`SnapshotStore`.

Idempotency is enforced by the database, not by read-then-write checks:

* ``members``     — ``ON CONFLICT (name) DO NOTHING``
* ``skills``      — ``ON CONFLICT (member_id, skill_id) DO UPDATE`` with the
                    period gains accumulated in SQL
* ``activities``  — ``ON CONFLICT (member_id, activity_date, text) DO NOTHING``
* ``clan_events`` — ``ON CONFLICT DO NOTHING`` on the natural key

Writes for one member are serialised twice over: an in-process lock per
member id, plus ``SELECT … FOR UPDATE`` on the member row (a no-op on
SQLite, where every write is serialised by one global lock instead).
Different members never wait on each other under PostgreSQL.

Methods are synchronous; coroutines call them through
:func:`runewatch.database.engine.run_db`.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import Engine, delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session

from runewatch.database.engine import get_session
from runewatch.database.models import (
    Activity,
    BingoCompletion,
    BingoTeamMember,
    ClanEvent,
    ClanEventType,
    Member,
    Skill,
    SyncLog,
    XpSnapshot,
    as_utc,
    utcnow,
)
from runewatch.engine.classifier import classify
from runewatch.engine.gains import SkillGain, resolve_combat_level, skill_gains, total_delta
from runewatch.engine.profile import RawFeed, RawProfile
from runewatch.errors import NotFound, StoreUnavailable

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class NewActivity:
    """An activity row that did not exist before this sync."""

    id: int
    member_id: int
    member_name: str
    activity_date: datetime
    text: str
    details: str | None
    category: str


@dataclass(frozen=True, slots=True)
class AppliedSync:
    member_id: int
    member_name: str
    xp_gained: int
    baseline: bool = False
    anomaly: bool = False
    snapshot_written: bool = False
    new_activities: list[NewActivity] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------
class SnapshotStore:
    """Thread-safe façade over the relational store."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self.is_sqlite = engine.dialect.name == "sqlite"
        self._global_lock = threading.RLock() if self.is_sqlite else None
        self._locks_guard = threading.Lock()
        self._member_locks: dict[int, threading.Lock] = {}

    # ------------------------------------------------------------------
    # Session / locking
    # ------------------------------------------------------------------
    def _member_lock(self, member_id: int) -> threading.Lock:
        with self._locks_guard:
            lock = self._member_locks.get(member_id)
            if lock is None:
                lock = self._member_locks[member_id] = threading.Lock()
            return lock

    @contextmanager
    def session(self, member_id: int | None = None) -> Iterator[Session]:
        """Transactional session, holding the member lock when *member_id* is given.

        Connection-level failures surface as :class:`StoreUnavailable`.
        """
        with ExitStack() as stack:
            # Member lock before the global lock, always, to keep lock order fixed.
            if member_id is not None:
                stack.enter_context(self._member_lock(member_id))
            if self._global_lock is not None:
                stack.enter_context(self._global_lock)
            try:
                with get_session(self.engine) as session:
                    yield session
            except (OperationalError, InterfaceError) as exc:
                raise StoreUnavailable(f"Database unavailable: {exc.orig or exc}") from exc

    def insert_stmt(self, model):
        if self.is_sqlite:
            return sqlite_insert(model)
        return pg_insert(model)

    # ------------------------------------------------------------------
    # Members
    # ------------------------------------------------------------------
    def upsert_member(
        self,
        name: str,
        display_name: str | None = None,
        clan_rank: str | None = None,
    ) -> Member:
        """Insert *name* if new and return the (detached) member row."""
        key = name.strip().lower()
        values = {"name": key, "display_name": display_name or name.strip(), "is_active": True}
        if clan_rank:
            values["clan_rank"] = clan_rank
        with self.session() as session:
            stmt = self.insert_stmt(Member).values(**values).on_conflict_do_nothing(
                index_elements=["name"]
            )
            session.execute(stmt)
            member = session.scalars(select(Member).where(Member.name == key)).one()
            session.expunge(member)
            return member

    def get_member(self, member_id: int) -> Member | None:
        with self.session() as session:
            member = session.get(Member, member_id)
            if member is not None:
                session.expunge(member)
            return member

    def get_member_by_name(self, name: str) -> Member | None:
        with self.session() as session:
            member = session.scalars(
                select(Member).where(Member.name == name.strip().lower())
            ).one_or_none()
            if member is not None:
                session.expunge(member)
            return member

    def active_member_ids(self) -> list[int]:
        with self.session() as session:
            return list(session.scalars(
                select(Member.id).where(Member.is_active.is_(True)).order_by(Member.id)
            ))

    def unsynced_member_ids(self) -> list[int]:
        with self.session() as session:
            return list(session.scalars(
                select(Member.id)
                .where(Member.is_active.is_(True), Member.last_synced.is_(None))
                .order_by(Member.id)
            ))

    def record_attempt(self, member_id: int, now: datetime | None = None) -> None:
        """Stamp ``last_sync_attempt``; :class:`NotFound` for unknown ids."""
        with self.session(member_id) as session:
            result = session.execute(
                update(Member)
                .where(Member.id == member_id)
                .values(last_sync_attempt=now or utcnow())
            )
            if result.rowcount == 0:
                raise NotFound(f"Member {member_id} not found")

    def purge_inactive_members(self) -> int:
        """Hard-delete every ``is_active=False`` member and its history."""
        with self.session() as session:
            ids = list(session.scalars(select(Member.id).where(Member.is_active.is_(False))))
            if not ids:
                return 0
            activity_ids = select(Activity.id).where(Activity.member_id.in_(ids))
            session.execute(
                update(BingoCompletion)
                .where(BingoCompletion.activity_id.in_(activity_ids))
                .values(activity_id=None)
            )
            session.execute(
                update(BingoCompletion)
                .where(BingoCompletion.member_id.in_(ids))
                .values(member_id=None)
            )
            for model in (BingoTeamMember, SyncLog, Activity, XpSnapshot, Skill):
                session.execute(delete(model).where(model.member_id.in_(ids)))
            session.execute(delete(Member).where(Member.id.in_(ids)))
        logger.info("Purged %d inactive members", len(ids))
        return len(ids)

    # ------------------------------------------------------------------
    # Row-level writers (caller owns the transaction)
    # ------------------------------------------------------------------
    def upsert_skill(
        self, session: Session, member_id: int, gain: SkillGain, now: datetime
    ) -> None:
        """Write current level/xp and add ``gain.delta`` to every period total."""
        stmt = self.insert_stmt(Skill).values(
            member_id=member_id,
            skill_id=gain.skill_id,
            skill_name=gain.name,
            level=gain.level,
            xp=gain.xp,
            rank=gain.rank,
            daily_xp_gain=gain.delta,
            weekly_xp_gain=gain.delta,
            monthly_xp_gain=gain.delta,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["member_id", "skill_id"],
            set_={
                "skill_name": stmt.excluded.skill_name,
                "level": stmt.excluded.level,
                "xp": stmt.excluded.xp,
                "rank": stmt.excluded.rank,
                "daily_xp_gain": Skill.daily_xp_gain + stmt.excluded.daily_xp_gain,
                "weekly_xp_gain": Skill.weekly_xp_gain + stmt.excluded.weekly_xp_gain,
                "monthly_xp_gain": Skill.monthly_xp_gain + stmt.excluded.monthly_xp_gain,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        session.execute(stmt)

    def append_activity_if_new(
        self,
        session: Session,
        member_id: int,
        activity_date: datetime,
        text: str,
        details: str | None,
        category: str,
    ) -> int | None:
        """Insert one activity; return its id, or ``None`` if it already existed."""
        stmt = (
            self.insert_stmt(Activity)
            .values(
                member_id=member_id,
                activity_date=activity_date,
                text=text,
                details=details,
                category=category,
                created_at=utcnow(),
            )
            .on_conflict_do_nothing(index_elements=["member_id", "activity_date", "text"])
            .returning(Activity.id)
        )
        return session.execute(stmt).scalar_one_or_none()

    def append_snapshot_if_changed(
        self,
        session: Session,
        member_id: int,
        total_xp: int,
        timestamp: datetime | None = None,
    ) -> bool:
        """Append a snapshot when *total_xp* exceeds the latest one (or none exists)."""
        latest = session.scalars(
            select(XpSnapshot.total_xp)
            .where(XpSnapshot.member_id == member_id)
            .order_by(XpSnapshot.timestamp.desc(), XpSnapshot.id.desc())
            .limit(1)
        ).first()
        if latest is not None and total_xp <= latest:
            return False
        session.add(XpSnapshot(
            member_id=member_id, total_xp=total_xp, timestamp=timestamp or utcnow()
        ))
        session.flush()
        return True

    def add_clan_event(
        self,
        session: Session,
        member_name: str,
        event_type: ClanEventType,
        timestamp: datetime | None = None,
    ) -> bool:
        stmt = (
            self.insert_stmt(ClanEvent)
            .values(
                member_name=member_name.strip().lower(),
                event_type=event_type.value,
                timestamp=timestamp or utcnow(),
            )
            .on_conflict_do_nothing(index_elements=["member_name", "event_type", "timestamp"])
        )
        return session.execute(stmt).rowcount > 0

    # ------------------------------------------------------------------
    # One member's sync, one transaction
    # ------------------------------------------------------------------
    def apply_sync(
        self,
        member_id: int,
        profile: RawProfile,
        feed: RawFeed,
        now: datetime | None = None,
    ) -> AppliedSync:
        """Persist everything one successful fetch produced.

        On an XP anomaly (provider total below the stored total) the stored
        totals and skill rows are left alone; activities and clan stats are
        still written.
        """
        now = now or utcnow()
        with self.session(member_id) as session:
            member = session.scalars(
                select(Member).where(Member.id == member_id).with_for_update()
            ).one_or_none()
            if member is None:
                raise NotFound(f"Member {member_id} not found")

            first_sync = member.last_synced is None
            delta = total_delta(
                member.total_xp, profile.total_xp,
                first_sync=first_sync, member_name=member.name,
            )

            if not delta.anomaly:
                previous = dict(session.execute(
                    select(Skill.skill_id, Skill.xp).where(Skill.member_id == member_id)
                ).tuples().all())
                for gain in skill_gains(previous, profile.skills, first_sync=first_sync):
                    self.upsert_skill(session, member_id, gain, now)

            snapshot_written = False
            if not delta.anomaly:
                snapshot_written = self.append_snapshot_if_changed(
                    session, member_id, delta.new_total, now
                )

            new_activities: list[NewActivity] = []
            for raw in feed.activities:
                category = classify(raw.text)
                new_id = self.append_activity_if_new(
                    session, member_id, raw.date, raw.text, raw.details, category.value
                )
                if new_id is not None:
                    new_activities.append(NewActivity(
                        id=new_id,
                        member_id=member_id,
                        member_name=member.name,
                        activity_date=raw.date,
                        text=raw.text,
                        details=raw.details,
                        category=category.value,
                    ))

            member.total_xp = delta.new_total
            if profile.total_rank is not None:
                member.total_rank = profile.total_rank
            elif feed.total_rank is not None:
                member.total_rank = feed.total_rank
            if feed.display_name:
                member.display_name = feed.display_name
            if feed.clan_xp is not None:
                member.clan_xp = feed.clan_xp
            if feed.kills is not None:
                member.kills = feed.kills
            member.combat_level = resolve_combat_level(feed.combat_level, profile.skills)
            member.last_synced = now
            if delta.xp_gained > 0:
                member.last_xp_gain = now

            candidates = [a.date for a in feed.activities]
            if delta.xp_gained > 0:
                candidates.append(now)
            if member.last_activity_date is not None:
                candidates.append(as_utc(member.last_activity_date))
            if candidates:
                member.last_activity_date = max(candidates)

            applied = AppliedSync(
                member_id=member_id,
                member_name=member.name,
                xp_gained=delta.xp_gained,
                baseline=delta.baseline,
                anomaly=delta.anomaly,
                snapshot_written=snapshot_written,
                new_activities=new_activities,
            )

        logger.debug(
            "Applied sync for %s: +%d xp, %d new activities",
            applied.member_name, applied.xp_gained, len(applied.new_activities),
        )
        return applied

    # ------------------------------------------------------------------
    # Sync log
    # ------------------------------------------------------------------
    def record_sync_log(
        self, member_id: int | None, success: bool, error_message: str | None = None
    ) -> None:
        with self.session() as session:
            if member_id is not None and session.get(Member, member_id) is None:
                member_id = None
            session.add(SyncLog(
                member_id=member_id, success=success, error_message=error_message
            ))

    def recent_sync_logs(self, limit: int = 50) -> list[dict]:
        with self.session() as session:
            rows = session.execute(
                select(SyncLog, Member.name)
                .outerjoin(Member, Member.id == SyncLog.member_id)
                .order_by(SyncLog.timestamp.desc(), SyncLog.id.desc())
                .limit(limit)
            ).all()
            return [
                {
                    "id": log.id,
                    "memberId": log.member_id,
                    "memberName": name,
                    "success": log.success,
                    "errorMessage": log.error_message,
                    "timestamp": as_utc(log.timestamp).isoformat(),
                }
                for log, name in rows
            ]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def list_snapshots(
        self, member_id: int, since: datetime | None = None
    ) -> list[XpSnapshot]:
        with self.session() as session:
            stmt = select(XpSnapshot).where(XpSnapshot.member_id == member_id)
            if since is not None:
                stmt = stmt.where(XpSnapshot.timestamp >= since)
            rows = list(session.scalars(stmt.order_by(XpSnapshot.timestamp, XpSnapshot.id)))
            session.expunge_all()
            return rows

    def list_activities(
        self,
        member_id: int | None = None,
        category: str | None = None,
        limit: int = 50,
    ) -> list[Activity]:
        with self.session() as session:
            stmt = select(Activity)
            if member_id is not None:
                stmt = stmt.where(Activity.member_id == member_id)
            if category is not None:
                stmt = stmt.where(Activity.category == category)
            rows = list(session.scalars(
                stmt.order_by(Activity.activity_date.desc(), Activity.id.desc()).limit(limit)
            ))
            session.expunge_all()
            return rows

    def count_activities(self, member_id: int) -> int:
        with self.session() as session:
            return session.scalar(
                select(func.count()).select_from(Activity).where(Activity.member_id == member_id)
            ) or 0
