"""
runewatch.services.bingo_service — Activity → bingo square matching
=====================================================================

:class:`BingoMatcher` is called once per *newly inserted* activity.  For
every active board whose window covers the activity, and every team the
activity's member belongs to, each matching square gets a completion.
Guests (team slots holding a RuneScape name instead of a clan member)
are fed through :meth:`BingoMatcher.on_guest_activity` by
:mod:`runewatch.services.guest_sync`.

Matching rules:

* ``"Any <type>"`` squares match whenever
  :func:`~runewatch.engine.classifier.extract_drop` pulls an item name out
  of the text.  The type itself is only checked where the classifier can
  recognise it from the text alone: ``"Any level"`` / ``"Any quest"``
  style squares need a Skills / Achievement activity, and ``"Any pet"``
  also accepts a Pets activity with no item name.  Pet drops are
  announced with ordinary drop phrasing ("I received a Baby yoshi as a
  drop"), so ``"Any pet"`` and ``"Any drop"`` both accept any drop.
* Any other square matches when its name is contained in the activity
  text, case-insensitively.

Completions are permanent.  ``ON CONFLICT (item_id, team_id) DO NOTHING``
makes a repeat match a silent no-op, so concurrent syncs of two
teammates can never produce two completions for one square.

The admin helpers at the bottom (boards, squares, teams, manual marks)
are what the admin tooling and the tests build fixtures with.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from runewatch.database.models import (
    ActivityCategory,
    BingoBoard,
    BingoCompletion,
    BingoItem,
    BingoTeam,
    BingoTeamMember,
    Member,
    as_utc,
    utcnow,
)
from runewatch.engine.classifier import classify, extract_drop
from runewatch.engine.profile import RawActivity
from runewatch.errors import Conflict, NotFound, ValidationError
from runewatch.services.snapshot_store import NewActivity, SnapshotStore

logger = logging.getLogger(__name__)

MIN_GRID = 3
MAX_GRID = 7

_ANY_ITEM = re.compile(r"^any\s+(\S.*)$", re.IGNORECASE)

# "Any <type>" squares whose type the classifier recognises by itself.
_ANY_CATEGORY: dict[str, ActivityCategory] = {
    "pet": ActivityCategory.PETS,
    "pets": ActivityCategory.PETS,
    "skill": ActivityCategory.SKILLS,
    "skills": ActivityCategory.SKILLS,
    "level": ActivityCategory.SKILLS,
    "levels": ActivityCategory.SKILLS,
    "level up": ActivityCategory.SKILLS,
    "achievement": ActivityCategory.ACHIEVEMENT,
    "achievements": ActivityCategory.ACHIEVEMENT,
    "quest": ActivityCategory.ACHIEVEMENT,
    "quests": ActivityCategory.ACHIEVEMENT,
}


def item_matches(item_name: str, text: str) -> bool:
    """Whether one square's *item_name* is satisfied by activity *text*."""
    if not item_name or not text:
        return False
    name = item_name.strip()
    match = _ANY_ITEM.match(name)
    if match is None:
        return name.lower() in text.lower()

    category = _ANY_CATEGORY.get(" ".join(match.group(1).lower().split()))
    if category is not None and classify(text) is category:
        return True
    if category in (None, ActivityCategory.PETS):
        return extract_drop(text) is not None
    return False


def _board_covers(board: BingoBoard, when: datetime, now: datetime) -> bool:
    """Board has started, has not ended, and *when* falls inside its window."""
    start = as_utc(board.start_date)
    end = as_utc(board.end_date)
    if start is not None and (now < start or when < start):
        return False
    if end is not None and (now > end or when > end):
        return False
    return True


def completion_to_dict(completion: BingoCompletion) -> dict:
    return {
        "id": completion.id,
        "itemId": completion.item_id,
        "teamId": completion.team_id,
        "memberId": completion.member_id,
        "completedBy": completion.completed_by,
        "completedAt": as_utc(completion.completed_at).isoformat(),
        "activityId": completion.activity_id,
        "evidenceText": completion.evidence_text,
    }


class BingoMatcher:
    """Creates bingo completions from activities and admin input."""

    def __init__(self, store: SnapshotStore) -> None:
        self.store = store

    # ------------------------------------------------------------------
    # Automatic matching
    # ------------------------------------------------------------------
    def on_activity(
        self, activity: NewActivity, now: datetime | None = None
    ) -> list[BingoCompletion]:
        """Create completions for every square *activity* satisfies."""
        with self.store.session() as session:
            created = self._complete(
                session,
                text=activity.text,
                when=as_utc(activity.activity_date),
                now=now or utcnow(),
                member_id=activity.member_id,
                name=activity.member_name,
                activity_id=activity.id,
            )
            for completion in created:
                session.expunge(completion)
        return created

    def on_guest_activity(
        self, guest_name: str, activity: RawActivity, now: datetime | None = None
    ) -> list[BingoCompletion]:
        """Same matching for a guest's feed entry; no activity row is stored."""
        with self.store.session() as session:
            created = self._complete(
                session,
                text=activity.text,
                when=as_utc(activity.date),
                now=now or utcnow(),
                member_id=None,
                name=guest_name.strip().lower(),
                activity_id=None,
            )
            for completion in created:
                session.expunge(completion)
        return created

    def active_guest_names(self, now: datetime | None = None) -> list[str]:
        """Guest names on teams of active boards that are currently running."""
        now = now or utcnow()
        with self.store.session() as session:
            rows = session.execute(
                select(BingoBoard, BingoTeamMember.guest_name)
                .join(BingoTeam, BingoTeam.board_id == BingoBoard.id)
                .join(BingoTeamMember, BingoTeamMember.team_id == BingoTeam.id)
                .where(
                    BingoBoard.is_active.is_(True),
                    BingoTeamMember.guest_name.is_not(None),
                )
            ).all()
            names = {name for board, name in rows if _board_covers(board, now, now)}
        return sorted(names)

    def _complete(
        self,
        session: Session,
        *,
        text: str,
        when: datetime,
        now: datetime,
        member_id: int | None,
        name: str,
        activity_id: int | None,
    ) -> list[BingoCompletion]:
        created: list[BingoCompletion] = []
        boards = session.scalars(
            select(BingoBoard).where(BingoBoard.is_active.is_(True))
        ).all()
        for board in boards:
            if not _board_covers(board, when, now):
                continue

            items = [i for i in board.items if item_matches(i.item_name, text)]
            if not items:
                continue

            slot = func.lower(BingoTeamMember.guest_name) == name
            if member_id is not None:
                slot = or_(BingoTeamMember.member_id == member_id, slot)
            teams = session.scalars(
                select(BingoTeam)
                .join(BingoTeamMember, BingoTeamMember.team_id == BingoTeam.id)
                .where(BingoTeam.board_id == board.id, slot)
                .distinct()
            ).all()

            for item in items:
                for team in teams:
                    stmt = (
                        self.store.insert_stmt(BingoCompletion)
                        .values(
                            item_id=item.id,
                            team_id=team.id,
                            member_id=member_id,
                            completed_by=name,
                            completed_at=now,
                            activity_id=activity_id,
                            evidence_text=text,
                        )
                        .on_conflict_do_nothing(index_elements=["item_id", "team_id"])
                        .returning(BingoCompletion.id)
                    )
                    new_id = session.execute(stmt).scalar_one_or_none()
                    if new_id is None:
                        continue
                    created.append(session.get(BingoCompletion, new_id))
                    logger.info(
                        "Bingo: team %r completed %r on board %d (%s: %r)",
                        team.team_name, item.item_name, board.id, name, text,
                    )
        return created

    # ------------------------------------------------------------------
    # Manual completion
    # ------------------------------------------------------------------
    def mark_manual(
        self,
        item_id: int,
        team_id: int,
        completed_by: str,
        member_id: int | None = None,
        evidence_text: str | None = None,
    ) -> BingoCompletion:
        """Admin mark: no text matching, ``activity_id`` stays null."""
        with self.store.session() as session:
            item = session.get(BingoItem, item_id)
            if item is None:
                raise NotFound(f"Bingo item {item_id} not found")
            team = session.get(BingoTeam, team_id)
            if team is None:
                raise NotFound(f"Bingo team {team_id} not found")
            if item.board_id != team.board_id:
                raise ValidationError(
                    f"Item {item_id} and team {team_id} belong to different boards"
                )
            if member_id is not None and session.get(Member, member_id) is None:
                raise NotFound(f"Member {member_id} not found")

            stmt = (
                self.store.insert_stmt(BingoCompletion)
                .values(
                    item_id=item_id,
                    team_id=team_id,
                    member_id=member_id,
                    completed_by=completed_by,
                    completed_at=utcnow(),
                    activity_id=None,
                    evidence_text=evidence_text,
                )
                .on_conflict_do_nothing(index_elements=["item_id", "team_id"])
                .returning(BingoCompletion.id)
            )
            new_id = session.execute(stmt).scalar_one_or_none()
            if new_id is None:
                raise Conflict(f"Team {team_id} already completed item {item_id}")
            completion = session.get(BingoCompletion, new_id)
            session.expunge(completion)

        logger.info("Bingo: manual completion of item %d for team %d by %s",
                    item_id, team_id, completed_by)
        return completion

    # ------------------------------------------------------------------
    # Board administration
    # ------------------------------------------------------------------
    def create_board(
        self,
        title: str,
        rows: int = 5,
        columns: int = 5,
        description: str | None = None,
        is_active: bool = False,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> BingoBoard:
        if not (MIN_GRID <= rows <= MAX_GRID and MIN_GRID <= columns <= MAX_GRID):
            raise ValidationError(
                f"Board grid must be between {MIN_GRID}x{MIN_GRID} and {MAX_GRID}x{MAX_GRID}"
            )
        if start_date and end_date and end_date <= start_date:
            raise ValidationError("Board end_date must be after start_date")
        if not title or not title.strip():
            raise ValidationError("Board title is required")

        with self.store.session() as session:
            board = BingoBoard(
                title=title.strip(),
                description=description,
                rows=rows,
                columns=columns,
                is_active=is_active,
                start_date=start_date,
                end_date=end_date,
            )
            session.add(board)
            session.flush()
            session.refresh(board)
            session.expunge(board)
        return board

    def set_item(
        self,
        board_id: int,
        row: int,
        column: int,
        item_name: str,
        description: str | None = None,
    ) -> BingoItem:
        """Place (or replace) the square at zero-based ``(row, column)``."""
        if not item_name or not item_name.strip():
            raise ValidationError("Bingo item name is required")
        with self.store.session() as session:
            board = session.get(BingoBoard, board_id)
            if board is None:
                raise NotFound(f"Bingo board {board_id} not found")
            if not (0 <= row < board.rows and 0 <= column < board.columns):
                raise ValidationError(
                    f"Square ({row}, {column}) is outside the {board.rows}x{board.columns} grid"
                )
            stmt = self.store.insert_stmt(BingoItem).values(
                board_id=board_id,
                row_number=row,
                column_number=column,
                item_name=item_name.strip(),
                description=description,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["board_id", "row_number", "column_number"],
                set_={
                    "item_name": stmt.excluded.item_name,
                    "description": stmt.excluded.description,
                },
            )
            session.execute(stmt)
            item = session.scalars(
                select(BingoItem).where(
                    BingoItem.board_id == board_id,
                    BingoItem.row_number == row,
                    BingoItem.column_number == column,
                )
            ).one()
            session.expunge(item)
        return item

    def create_team(self, board_id: int, team_name: str, color: str = "#3498db") -> BingoTeam:
        if not team_name or not team_name.strip():
            raise ValidationError("Team name is required")
        with self.store.session() as session:
            if session.get(BingoBoard, board_id) is None:
                raise NotFound(f"Bingo board {board_id} not found")
            team = BingoTeam(board_id=board_id, team_name=team_name.strip(), color=color)
            session.add(team)
            try:
                session.flush()
            except IntegrityError as exc:
                raise Conflict(
                    f"Team {team_name!r} already exists on board {board_id}"
                ) from exc
            session.expunge(team)
        return team

    def add_team_member(
        self,
        team_id: int,
        member_id: int | None = None,
        guest_name: str | None = None,
    ) -> BingoTeamMember:
        """Add a clan member (by id) or a guest (by name) to a team."""
        if (member_id is None) == (not guest_name):
            raise ValidationError("Exactly one of member_id or guest_name is required")
        with self.store.session() as session:
            if session.get(BingoTeam, team_id) is None:
                raise NotFound(f"Bingo team {team_id} not found")
            if member_id is not None and session.get(Member, member_id) is None:
                raise NotFound(f"Member {member_id} not found")
            slot = BingoTeamMember(
                team_id=team_id,
                member_id=member_id,
                guest_name=guest_name.strip().lower() if guest_name else None,
            )
            session.add(slot)
            try:
                session.flush()
            except IntegrityError as exc:
                raise Conflict(f"Already on team {team_id}") from exc
            session.expunge(slot)
        return slot

    def delete_completion(self, completion_id: int) -> None:
        with self.store.session() as session:
            completion = session.get(BingoCompletion, completion_id)
            if completion is None:
                raise NotFound(f"Bingo completion {completion_id} not found")
            session.delete(completion)
        logger.info("Bingo completion %d deleted", completion_id)

    def list_completions(self, board_id: int) -> list[dict]:
        with self.store.session() as session:
            if session.get(BingoBoard, board_id) is None:
                raise NotFound(f"Bingo board {board_id} not found")
            rows = session.execute(
                select(BingoCompletion, BingoItem, BingoTeam)
                .join(BingoItem, BingoItem.id == BingoCompletion.item_id)
                .join(BingoTeam, BingoTeam.id == BingoCompletion.team_id)
                .where(BingoItem.board_id == board_id)
                .order_by(BingoCompletion.completed_at, BingoCompletion.id)
            ).all()
            return [
                {
                    **completion_to_dict(completion),
                    "itemName": item.item_name,
                    "row": item.row_number,
                    "column": item.column_number,
                    "teamName": team.team_name,
                }
                for completion, item, team in rows
            ]
