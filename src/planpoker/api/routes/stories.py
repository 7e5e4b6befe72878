"""Story endpoints: add, list, update, delete, reorder and lifecycle."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel, ConfigDict, Field

from planpoker.api.deps import service_scope
from planpoker.core.errors import NotFoundError

router = APIRouter(prefix="/api", tags=["stories"])


class StoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    session_id: str
    title: str
    description: str
    sequence_order: int
    status: str
    final_estimate: str | None = None
    vote_summary: str | None = None
    consensus_achieved: bool
    voting_started: datetime | None = None
    completed_on: datetime | None = None
    created_at: datetime
    updated_at: datetime


class StoryResult(BaseModel):
    success: bool = True
    story: StoryResponse


class StoryListResponse(BaseModel):
    stories: list[StoryResponse]
    total: int


class AddStoryRequest(BaseModel):
    title: str
    description: str | None = None
    sequence_order: int | None = None


class UpdateStoryRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    sequence_order: int | None = None
    status: str | None = None
    final_estimate: str | None = None
    vote_summary: str | None = None
    consensus_achieved: bool | None = None


class StoryOrder(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    story_id: str = Field(alias="storyId")
    new_order: int = Field(alias="newOrder")


class ReorderRequest(BaseModel):
    orders: list[StoryOrder]


class CompleteRequest(BaseModel):
    final_estimate: str
    vote_summary: str | None = None


def _result(story: object) -> StoryResult:
    return StoryResult(story=StoryResponse.model_validate(story))


@router.get("/sessions/{session_id}/stories", response_model=StoryListResponse)
async def list_stories(session_id: str, request: Request) -> StoryListResponse:
    """Stories of a session in sequence order."""
    async with service_scope(request) as svc:
        stories = await svc.list_stories(session_id)
        items = [StoryResponse.model_validate(s) for s in stories]
    return StoryListResponse(stories=items, total=len(items))


@router.post(
    "/sessions/{session_id}/stories", response_model=StoryResult, status_code=201
)
async def add_story(
    session_id: str, body: AddStoryRequest, request: Request
) -> StoryResult:
    async with service_scope(request) as svc:
        story = await svc.add_story(
            session_id,
            body.title,
            description=body.description,
            sequence_order=body.sequence_order,
        )
        return _result(story)


@router.post("/stories/reorder")
async def reorder_stories(body: ReorderRequest, request: Request) -> dict[str, bool]:
    async with service_scope(request) as svc:
        await svc.reorder_stories((o.story_id, o.new_order) for o in body.orders)
    return {"success": True}


@router.get("/stories/{story_id}", response_model=StoryResult)
async def get_story(story_id: str, request: Request) -> StoryResult:
    async with service_scope(request) as svc:
        story = await svc.get_story(story_id)
        if story is None:
            raise NotFoundError("story", story_id)
        return _result(story)


@router.patch("/stories/{story_id}", response_model=StoryResult)
async def update_story(
    story_id: str, body: UpdateStoryRequest, request: Request
) -> StoryResult:
    fields: dict[str, Any] = body.model_dump(exclude_unset=True)
    async with service_scope(request) as svc:
        story = await svc.update_story(story_id, fields)
        return _result(story)


@router.delete("/stories/{story_id}")
async def delete_story(story_id: str, request: Request) -> dict[str, bool]:
    async with service_scope(request) as svc:
        await svc.delete_story(story_id)
    return {"success": True}


@router.post("/stories/{story_id}/start", response_model=StoryResult)
async def start_voting(story_id: str, request: Request) -> StoryResult:
    async with service_scope(request) as svc:
        return _result(await svc.start_voting(story_id))


@router.post("/stories/{story_id}/complete", response_model=StoryResult)
async def complete_voting(
    story_id: str, body: CompleteRequest, request: Request
) -> StoryResult:
    async with service_scope(request) as svc:
        story = await svc.complete_voting(
            story_id, body.final_estimate, body.vote_summary
        )
        return _result(story)


@router.post("/stories/{story_id}/skip", response_model=StoryResult)
async def skip_story(story_id: str, request: Request) -> StoryResult:
    async with service_scope(request) as svc:
        return _result(await svc.skip_story(story_id))


@router.post("/stories/{story_id}/reset", response_model=StoryResult)
async def reset_story(story_id: str, request: Request) -> StoryResult:
    """Clear votes and estimate; back to pending."""
    async with service_scope(request) as svc:
        return _result(await svc.reset_story(story_id))
