"""
runewatch.api.routes.bingo — Bingo completions
================================================

Automatic completions come from the sync pipeline; these endpoints cover
the admin side: marking a square by hand, listing a board's completions,
deleting a mistaken one and matching guest players' feeds on demand.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, ConfigDict, Field

from runewatch.api.deps import get_guest_sync, get_matcher
from runewatch.database.engine import run_db
from runewatch.services.bingo_service import BingoMatcher, completion_to_dict
from runewatch.services.guest_sync import GuestFeedSync

router = APIRouter(prefix="/bingo", tags=["bingo"])


class ManualCompletion(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    item_id: int = Field(alias="itemId")
    team_id: int = Field(alias="teamId")
    completed_by: str = Field(alias="completedBy", min_length=1, max_length=64)
    member_id: int | None = Field(default=None, alias="memberId")
    evidence_text: str | None = Field(default=None, alias="evidenceText")


@router.post("/completions", status_code=201)
async def create_completion(
    body: ManualCompletion,
    matcher: BingoMatcher = Depends(get_matcher),
):
    completion = await run_db(
        matcher.mark_manual,
        body.item_id,
        body.team_id,
        body.completed_by,
        body.member_id,
        body.evidence_text,
    )
    return completion_to_dict(completion)


@router.get("/boards/{board_id}/completions")
async def list_completions(board_id: int, matcher: BingoMatcher = Depends(get_matcher)):
    return {"boardId": board_id, "completions": await run_db(matcher.list_completions, board_id)}


@router.delete("/completions/{completion_id}", status_code=204)
async def delete_completion(completion_id: int, matcher: BingoMatcher = Depends(get_matcher)):
    await run_db(matcher.delete_completion, completion_id)
    return Response(status_code=204)


@router.post("/guests/sync")
async def sync_guests(guest_sync: GuestFeedSync = Depends(get_guest_sync)):
    summary = await guest_sync.sync_all()
    return summary.to_dict()
