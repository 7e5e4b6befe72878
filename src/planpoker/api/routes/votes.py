"""Vote endpoints: cast, list, statistics, clear."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict

from planpoker.api.deps import acting_user, service_scope
from planpoker.core.errors import ValidationError

router = APIRouter(prefix="/api/stories", tags=["votes"])


class CastVoteRequest(BaseModel):
    session_id: str
    vote_value: str
    voter_id: str | None = None


class CastVoteResponse(BaseModel):
    success: bool = True
    id: str
    vote_value: str
    version: int
    revealed: bool = False


class VoteResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    voter_id: str
    vote_value: str
    version: int
    is_current: bool
    created_on: datetime


class VoteListResponse(BaseModel):
    votes: list[VoteResponse]
    total: int


@router.post("/{story_id}/votes", response_model=CastVoteResponse)
async def cast_vote(
    story_id: str,
    body: CastVoteRequest,
    request: Request,
    user: str | None = Depends(acting_user),
) -> CastVoteResponse:
    """Cast or change the caller's vote on a story."""
    voter = body.voter_id or user
    if not voter:
        msg = "A voter is required (X-User-Id header or voter_id)"
        raise ValidationError(msg)
    async with service_scope(request) as svc:
        result = await svc.cast_vote(body.session_id, story_id, voter, body.vote_value)
    return CastVoteResponse(
        id=result.id,
        vote_value=result.vote_value,
        version=result.version,
        revealed=result.revealed,
    )


@router.get("/{story_id}/votes", response_model=VoteListResponse)
async def get_story_votes(
    story_id: str, request: Request, include_history: bool = False
) -> VoteListResponse:
    async with service_scope(request) as svc:
        votes = await svc.get_story_votes(story_id, include_history=include_history)
        items = [VoteResponse.model_validate(v) for v in votes]
    return VoteListResponse(votes=items, total=len(items))


@router.get("/{story_id}/stats")
async def get_vote_stats(story_id: str, request: Request) -> dict[str, Any]:
    """Counts, consensus and numeric statistics over current votes."""
    async with service_scope(request) as svc:
        stats = await svc.get_vote_stats(story_id)
    return stats.to_dict()


@router.delete("/{story_id}/votes")
async def clear_story_votes(story_id: str, request: Request) -> dict[str, bool]:
    async with service_scope(request) as svc:
        await svc.clear_story_votes(story_id)
    return {"success": True}
