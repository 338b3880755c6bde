"""
runewatch.database.models — SQLAlchemy 2.0 Data Models
=======================================================

Tables:
- members            — Clan roster (``name`` is the lower-cased join key)
- skills             — One row per (member, skill), upserted every sync
- xp_snapshots       — Append-only total-XP history
- activities         — Append-only RuneMetrics feed, unique per
                       (member_id, activity_date, text)
- clan_events        — Append-only join/leave log
- sync_log           — Append-only per-member sync outcomes
- bingo_boards       — Objective boards (rows × columns grid)
- bingo_items        — One square per (board, row, column)
- bingo_teams        — Teams competing on a board
- bingo_team_members — Clan members or named guests on a team
- bingo_completions  — Permanent fact: team completed a square
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all RuneWatch ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class ActivityCategory(enum.StrEnum):
    """Semantic buckets for RuneMetrics activity text."""
    DROPS = "Drops"
    PETS = "Pets"
    SKILLS = "Skills"
    ACHIEVEMENT = "Achievement"
    ALL = "All"


class ClanEventType(enum.StrEnum):
    JOINED = "joined"
    LEFT = "left"


# ---------------------------------------------------------------------------
# Members: one row per clan member
# ---------------------------------------------------------------------------
class Member(Base):
    __tablename__ = "members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    display_name: Mapped[str | None] = mapped_column(String(64), default=None)
    total_xp: Mapped[int] = mapped_column(BigInteger, default=0)
    total_rank: Mapped[int | None] = mapped_column(Integer, default=None)
    clan_xp: Mapped[int] = mapped_column(BigInteger, default=0)
    kills: Mapped[int] = mapped_column(BigInteger, default=0)
    combat_level: Mapped[int] = mapped_column(Integer, default=0)
    clan_rank: Mapped[str] = mapped_column(String(32), default="Recruit")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    last_synced: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    last_sync_attempt: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    last_xp_gain: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    last_activity_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    skills: Mapped[list[Skill]] = relationship(
        back_populates="member", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_members_active", "is_active"),
        Index("ix_members_clan_rank", "clan_rank"),
    )

    def __repr__(self) -> str:
        return f"<Member id={self.id} name={self.name!r} xp={self.total_xp}>"


# ---------------------------------------------------------------------------
# Skills: current per-skill state plus accumulated period gains
# ---------------------------------------------------------------------------
class Skill(Base):
    __tablename__ = "skills"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    member_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("members.id", ondelete="CASCADE"), nullable=False
    )
    skill_id: Mapped[int] = mapped_column(Integer, nullable=False)
    skill_name: Mapped[str] = mapped_column(String(32), nullable=False)
    level: Mapped[int] = mapped_column(Integer, default=1)
    xp: Mapped[int] = mapped_column(BigInteger, default=0)
    rank: Mapped[int | None] = mapped_column(Integer, default=None)
    daily_xp_gain: Mapped[int] = mapped_column(BigInteger, default=0)
    weekly_xp_gain: Mapped[int] = mapped_column(BigInteger, default=0)
    monthly_xp_gain: Mapped[int] = mapped_column(BigInteger, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    member: Mapped[Member] = relationship(back_populates="skills")

    __table_args__ = (
        UniqueConstraint("member_id", "skill_id", name="uq_skills_member_skill"),
        Index("ix_skills_skill_name", "skill_name"),
    )

    def __repr__(self) -> str:
        return f"<Skill member={self.member_id} {self.skill_name} lvl={self.level}>"


# ---------------------------------------------------------------------------
# XpSnapshot: append-only total-XP history
# ---------------------------------------------------------------------------
class XpSnapshot(Base):
    __tablename__ = "xp_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    member_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("members.id", ondelete="CASCADE"), nullable=False
    )
    total_xp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        Index("ix_xp_snapshots_member_time", "member_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<XpSnapshot member={self.member_id} xp={self.total_xp}>"


# ---------------------------------------------------------------------------
# Activity: append-only feed entries, deduplicated on the natural key
# ---------------------------------------------------------------------------
class Activity(Base):
    __tablename__ = "activities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    member_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("members.id", ondelete="CASCADE"), nullable=False
    )
    activity_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[str | None] = mapped_column(Text, default=None)
    category: Mapped[str] = mapped_column(String(20), default=ActivityCategory.ALL.value)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "member_id", "activity_date", "text", name="uq_activities_member_date_text"
        ),
        Index("ix_activities_date", "activity_date"),
        Index("ix_activities_category", "category"),
    )

    def __repr__(self) -> str:
        return f"<Activity id={self.id} member={self.member_id} {self.category}: {self.text!r}>"


# ---------------------------------------------------------------------------
# ClanEvent: roster membership changes
# ---------------------------------------------------------------------------
class ClanEvent(Base):
    __tablename__ = "clan_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    member_name: Mapped[str] = mapped_column(String(64), nullable=False)
    event_type: Mapped[str] = mapped_column(String(10), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "member_name", "event_type", "timestamp", name="uq_clan_events_natural"
        ),
        CheckConstraint("event_type IN ('joined', 'left')", name="ck_clan_events_type"),
        Index("ix_clan_events_timestamp", "timestamp"),
    )


# ---------------------------------------------------------------------------
# SyncLog: one row per terminal member sync outcome
# ---------------------------------------------------------------------------
class SyncLog(Base):
    __tablename__ = "sync_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    member_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("members.id", ondelete="CASCADE"), default=None
    )
    success: Mapped[bool] = mapped_column(Boolean, default=True)
    error_message: Mapped[str | None] = mapped_column(Text, default=None)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        Index("ix_sync_log_timestamp", "timestamp"),
    )


# ---------------------------------------------------------------------------
# Bingo
# ---------------------------------------------------------------------------
class BingoBoard(Base):
    __tablename__ = "bingo_boards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    rows: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    columns: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    items: Mapped[list[BingoItem]] = relationship(
        back_populates="board", cascade="all, delete-orphan"
    )
    teams: Mapped[list[BingoTeam]] = relationship(
        back_populates="board", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("rows >= 3 AND rows <= 7", name="ck_bingo_boards_rows"),
        CheckConstraint("columns >= 3 AND columns <= 7", name="ck_bingo_boards_columns"),
    )

    def __repr__(self) -> str:
        return f"<BingoBoard id={self.id} title={self.title!r} {self.rows}x{self.columns}>"


class BingoItem(Base):
    __tablename__ = "bingo_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    board_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("bingo_boards.id", ondelete="CASCADE"), nullable=False
    )
    row_number: Mapped[int] = mapped_column(Integer, nullable=False)
    column_number: Mapped[int] = mapped_column(Integer, nullable=False)
    item_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)

    board: Mapped[BingoBoard] = relationship(back_populates="items")

    __table_args__ = (
        UniqueConstraint(
            "board_id", "row_number", "column_number", name="uq_bingo_items_square"
        ),
        Index("ix_bingo_items_board", "board_id"),
    )

    def __repr__(self) -> str:
        return f"<BingoItem id={self.id} ({self.row_number},{self.column_number}) {self.item_name!r}>"


class BingoTeam(Base):
    __tablename__ = "bingo_teams"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    board_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("bingo_boards.id", ondelete="CASCADE"), nullable=False
    )
    team_name: Mapped[str] = mapped_column(String(255), nullable=False)
    color: Mapped[str] = mapped_column(String(7), default="#3498db")

    board: Mapped[BingoBoard] = relationship(back_populates="teams")
    members: Mapped[list[BingoTeamMember]] = relationship(
        back_populates="team", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("board_id", "team_name", name="uq_bingo_teams_board_name"),
    )

    def __repr__(self) -> str:
        return f"<BingoTeam id={self.id} name={self.team_name!r}>"


class BingoTeamMember(Base):
    """A team slot: either a clan ``member_id`` or a free-text ``guest_name``."""
    __tablename__ = "bingo_team_members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    team_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("bingo_teams.id", ondelete="CASCADE"), nullable=False
    )
    member_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("members.id", ondelete="CASCADE"), default=None
    )
    guest_name: Mapped[str | None] = mapped_column(String(64), default=None)

    team: Mapped[BingoTeam] = relationship(back_populates="members")

    __table_args__ = (
        UniqueConstraint("team_id", "member_id", name="uq_bingo_team_members_member"),
        UniqueConstraint("team_id", "guest_name", name="uq_bingo_team_members_guest"),
        CheckConstraint(
            "member_id IS NOT NULL OR guest_name IS NOT NULL",
            name="ck_bingo_team_members_identity",
        ),
        Index("ix_bingo_team_members_member", "member_id"),
    )


class BingoCompletion(Base):
    __tablename__ = "bingo_completions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("bingo_items.id", ondelete="CASCADE"), nullable=False
    )
    team_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("bingo_teams.id", ondelete="CASCADE"), nullable=False
    )
    member_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("members.id", ondelete="SET NULL"), default=None
    )
    completed_by: Mapped[str] = mapped_column(String(64), nullable=False)
    completed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    activity_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("activities.id", ondelete="SET NULL"), default=None
    )
    evidence_text: Mapped[str | None] = mapped_column(Text, default=None)

    __table_args__ = (
        UniqueConstraint("item_id", "team_id", name="uq_bingo_completions_item_team"),
        Index("ix_bingo_completions_team", "team_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<BingoCompletion item={self.item_id} team={self.team_id} "
            f"by={self.completed_by!r} activity={self.activity_id}>"
        )
