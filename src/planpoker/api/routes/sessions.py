"""Session endpoints: create, list, detail, update, delete, join, leave."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field

from planpoker.api.deps import acting_user, service_scope
from planpoker.core.errors import NotFoundError, ValidationError

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


class SessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str
    session_code: str | None
    status: str
    dealer: str | None
    timebox_minutes: int
    total_stories: int
    completed_stories: int
    consensus_rate: int
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class SessionResult(BaseModel):
    success: bool = True
    session: SessionResponse


class SessionListResponse(BaseModel):
    sessions: list[SessionResponse]
    total: int


class CreateSessionRequest(BaseModel):
    name: str
    description: str | None = None
    session_code: str | None = None
    dealer: str | None = None
    timebox_minutes: int | None = None
    status: str | None = None


class UpdateSessionRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    status: str | None = None
    timebox_minutes: int | None = None


class JoinRequest(BaseModel):
    session_code: str
    role: str = "participant"


class ParticipantResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    role: str
    joined_at: datetime
    left_at: datetime | None = None


class ParticipantListResponse(BaseModel):
    participants: list[ParticipantResponse] = Field(default_factory=list)
    total: int


def _require_user(user: str | None) -> str:
    if not user:
        msg = "X-User-Id header is required"
        raise ValidationError(msg)
    return user


@router.post("", response_model=SessionResult, status_code=201)
async def create_session(
    body: CreateSessionRequest,
    request: Request,
    user: str | None = Depends(acting_user),
) -> SessionResult:
    """Create a planning session."""
    async with service_scope(request) as svc:
        session = await svc.create_session(
            body.name,
            description=body.description,
            session_code=body.session_code,
            dealer=body.dealer,
            timebox_minutes=body.timebox_minutes,
            status=body.status,
            acting_user=user,
        )
        return SessionResult(session=SessionResponse.model_validate(session))


@router.get("", response_model=SessionListResponse)
async def list_sessions(
    request: Request, limit: int | None = None, status: str | None = None
) -> SessionListResponse:
    """List sessions, newest first."""
    async with service_scope(request) as svc:
        sessions = await svc.list_sessions(limit=limit, status=status)
        items = [SessionResponse.model_validate(s) for s in sessions]
    return SessionListResponse(sessions=items, total=len(items))


@router.post("/join", response_model=SessionResult)
async def join_session(
    body: JoinRequest,
    request: Request,
    user: str | None = Depends(acting_user),
) -> SessionResult:
    """Join a session by its six-character code."""
    async with service_scope(request) as svc:
        session = await svc.join_session(
            body.session_code, _require_user(user), role=body.role
        )
        if session is None:
            raise NotFoundError("session code", body.session_code)
        return SessionResult(session=SessionResponse.model_validate(session))


@router.get("/{session_id}", response_model=SessionResult)
async def get_session(session_id: str, request: Request) -> SessionResult:
    async with service_scope(request) as svc:
        session = await svc.get_session(session_id)
        if session is None:
            raise NotFoundError("session", session_id)
        return SessionResult(session=SessionResponse.model_validate(session))


@router.patch("/{session_id}", response_model=SessionResult)
async def update_session(
    session_id: str,
    body: UpdateSessionRequest,
    request: Request,
    user: str | None = Depends(acting_user),
) -> SessionResult:
    """Partial update; a ``status`` change runs the session lifecycle."""
    fields: dict[str, Any] = body.model_dump(exclude_unset=True)
    async with service_scope(request) as svc:
        session = await svc.update_session(session_id, fields, acting_user=user)
        return SessionResult(session=SessionResponse.model_validate(session))


@router.delete("/{session_id}")
async def delete_session(session_id: str, request: Request) -> dict[str, bool]:
    """Delete a completed, cancelled or pending session."""
    async with service_scope(request) as svc:
        await svc.delete_session(session_id)
    return {"success": True}


@router.post("/{session_id}/leave")
async def leave_session(
    session_id: str,
    request: Request,
    user: str | None = Depends(acting_user),
) -> dict[str, bool]:
    async with service_scope(request) as svc:
        left = await svc.leave_session(session_id, _require_user(user))
    return {"success": left}


@router.get("/{session_id}/participants", response_model=ParticipantListResponse)
async def list_participants(
    session_id: str, request: Request, include_left: bool = False
) -> ParticipantListResponse:
    async with service_scope(request) as svc:
        rows = await svc.list_participants(session_id, include_left=include_left)
        items = [ParticipantResponse.model_validate(p) for p in rows]
    return ParticipantListResponse(participants=items, total=len(items))
