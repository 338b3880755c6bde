"""Initial RuneWatch schema

Revision ID: 5c2e8a1f0b7d
Revises:
Create Date: 2026-10-17 09:12:04.518331

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '5c2e8a1f0b7d'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _ts(name: str, nullable: bool = True, now: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=sa.func.now() if now else None,
    )


def upgrade() -> None:
    """Members, skills, history tables and bingo boards."""

    # --- members ---
    op.create_table(
        "members",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(64), nullable=False, unique=True),
        sa.Column("display_name", sa.String(64), nullable=True),
        sa.Column("total_xp", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("total_rank", sa.Integer, nullable=True),
        sa.Column("clan_xp", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("kills", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("combat_level", sa.Integer, nullable=False, server_default="0"),
        sa.Column("clan_rank", sa.String(32), nullable=False, server_default="Recruit"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        _ts("joined_at", now=True),
        _ts("last_synced"),
        _ts("last_sync_attempt"),
        _ts("last_xp_gain"),
        _ts("last_activity_date"),
        _ts("created_at", now=True),
    )
    op.create_index("ix_members_active", "members", ["is_active"])
    op.create_index("ix_members_clan_rank", "members", ["clan_rank"])

    # --- skills ---
    op.create_table(
        "skills",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "member_id", sa.Integer,
            sa.ForeignKey("members.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("skill_id", sa.Integer, nullable=False),
        sa.Column("skill_name", sa.String(32), nullable=False),
        sa.Column("level", sa.Integer, nullable=False, server_default="1"),
        sa.Column("xp", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("rank", sa.Integer, nullable=True),
        sa.Column("daily_xp_gain", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("weekly_xp_gain", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("monthly_xp_gain", sa.BigInteger, nullable=False, server_default="0"),
        _ts("updated_at", now=True),
        sa.UniqueConstraint("member_id", "skill_id", name="uq_skills_member_skill"),
    )
    op.create_index("ix_skills_skill_name", "skills", ["skill_name"])

    # --- xp_snapshots ---
    op.create_table(
        "xp_snapshots",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "member_id", sa.Integer,
            sa.ForeignKey("members.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("total_xp", sa.BigInteger, nullable=False),
        _ts("timestamp", nullable=False, now=True),
    )
    op.create_index(
        "ix_xp_snapshots_member_time", "xp_snapshots", ["member_id", "timestamp"]
    )

    # --- activities ---
    op.create_table(
        "activities",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "member_id", sa.Integer,
            sa.ForeignKey("members.id", ondelete="CASCADE"), nullable=False,
        ),
        _ts("activity_date", nullable=False),
        sa.Column("text", sa.Text, nullable=False),
        sa.Column("details", sa.Text, nullable=True),
        sa.Column("category", sa.String(20), nullable=False, server_default="All"),
        _ts("created_at", now=True),
        sa.UniqueConstraint(
            "member_id", "activity_date", "text", name="uq_activities_member_date_text"
        ),
    )
    op.create_index("ix_activities_date", "activities", ["activity_date"])
    op.create_index("ix_activities_category", "activities", ["category"])

    # --- clan_events ---
    op.create_table(
        "clan_events",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("member_name", sa.String(64), nullable=False),
        sa.Column("event_type", sa.String(10), nullable=False),
        _ts("timestamp", nullable=False, now=True),
        sa.UniqueConstraint(
            "member_name", "event_type", "timestamp", name="uq_clan_events_natural"
        ),
        sa.CheckConstraint("event_type IN ('joined', 'left')", name="ck_clan_events_type"),
    )
    op.create_index("ix_clan_events_timestamp", "clan_events", ["timestamp"])

    # --- sync_log ---
    op.create_table(
        "sync_log",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "member_id", sa.Integer,
            sa.ForeignKey("members.id", ondelete="CASCADE"), nullable=True,
        ),
        sa.Column("success", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("error_message", sa.Text, nullable=True),
        _ts("timestamp", nullable=False, now=True),
    )
    op.create_index("ix_sync_log_timestamp", "sync_log", ["timestamp"])

    # --- bingo ---
    op.create_table(
        "bingo_boards",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("rows", sa.Integer, nullable=False, server_default="5"),
        sa.Column("columns", sa.Integer, nullable=False, server_default="5"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.false()),
        _ts("start_date"),
        _ts("end_date"),
        _ts("created_at", now=True),
        sa.CheckConstraint("rows >= 3 AND rows <= 7", name="ck_bingo_boards_rows"),
        sa.CheckConstraint("columns >= 3 AND columns <= 7", name="ck_bingo_boards_columns"),
    )

    op.create_table(
        "bingo_items",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "board_id", sa.Integer,
            sa.ForeignKey("bingo_boards.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("row_number", sa.Integer, nullable=False),
        sa.Column("column_number", sa.Integer, nullable=False),
        sa.Column("item_name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.UniqueConstraint(
            "board_id", "row_number", "column_number", name="uq_bingo_items_square"
        ),
    )
    op.create_index("ix_bingo_items_board", "bingo_items", ["board_id"])

    op.create_table(
        "bingo_teams",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "board_id", sa.Integer,
            sa.ForeignKey("bingo_boards.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("team_name", sa.String(255), nullable=False),
        sa.Column("color", sa.String(7), nullable=False, server_default="#3498db"),
        sa.UniqueConstraint("board_id", "team_name", name="uq_bingo_teams_board_name"),
    )

    op.create_table(
        "bingo_team_members",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "team_id", sa.Integer,
            sa.ForeignKey("bingo_teams.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "member_id", sa.Integer,
            sa.ForeignKey("members.id", ondelete="CASCADE"), nullable=True,
        ),
        sa.Column("guest_name", sa.String(64), nullable=True),
        sa.UniqueConstraint("team_id", "member_id", name="uq_bingo_team_members_member"),
        sa.UniqueConstraint("team_id", "guest_name", name="uq_bingo_team_members_guest"),
        sa.CheckConstraint(
            "member_id IS NOT NULL OR guest_name IS NOT NULL",
            name="ck_bingo_team_members_identity",
        ),
    )
    op.create_index("ix_bingo_team_members_member", "bingo_team_members", ["member_id"])

    op.create_table(
        "bingo_completions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "item_id", sa.Integer,
            sa.ForeignKey("bingo_items.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "team_id", sa.Integer,
            sa.ForeignKey("bingo_teams.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "member_id", sa.Integer,
            sa.ForeignKey("members.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("completed_by", sa.String(64), nullable=False),
        _ts("completed_at", nullable=False, now=True),
        sa.Column(
            "activity_id", sa.Integer,
            sa.ForeignKey("activities.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("evidence_text", sa.Text, nullable=True),
        sa.UniqueConstraint("item_id", "team_id", name="uq_bingo_completions_item_team"),
    )
    op.create_index("ix_bingo_completions_team", "bingo_completions", ["team_id"])


def downgrade() -> None:
    for table in (
        "bingo_completions",
        "bingo_team_members",
        "bingo_teams",
        "bingo_items",
        "bingo_boards",
        "sync_log",
        "clan_events",
        "activities",
        "xp_snapshots",
        "skills",
        "members",
    ):
        op.drop_table(table)
