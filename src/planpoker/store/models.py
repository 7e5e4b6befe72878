"""SQLAlchemy models for planning poker.

Ownership: PlanningSession owns Stories and Participants; Story owns Votes.
Votes are append-only: a revote inserts a new row and flips the previous
row's ``is_current`` flag.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _uuid() -> str:
    """Generate a UUID4 string for primary keys."""
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    """Current UTC time for timestamps."""
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Declarative base for all planpoker models."""


# ── Session ──────────────────────────────────────────────────────


class PlanningSession(Base):
    """An estimation session run by a dealer."""

    __tablename__ = "sessions"
    __table_args__ = (
        Index("ix_sessions_status", "status"),
        Index("ix_sessions_created_at", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(100))
    description: Mapped[str] = mapped_column(Text, default="")
    session_code: Mapped[str | None] = mapped_column(
        String(6), unique=True, nullable=True, default=None
    )
    status: Mapped[str] = mapped_column(String(20), default="pending")
    dealer: Mapped[str | None] = mapped_column(String(64), nullable=True, default=None)
    timebox_minutes: Mapped[int] = mapped_column(Integer, default=30)
    total_stories: Mapped[int] = mapped_column(Integer, default=0)
    completed_stories: Mapped[int] = mapped_column(Integer, default=0)
    consensus_rate: Mapped[int] = mapped_column(Integer, default=0)
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True, default=None
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True, default=None
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, onupdate=_utcnow
    )

    stories: Mapped[list[Story]] = relationship(
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="Story.sequence_order",
    )
    participants: Mapped[list[Participant]] = relationship(
        back_populates="session",
        cascade="all, delete-orphan",
    )


# ── Story ────────────────────────────────────────────────────────


class Story(Base):
    """A backlog item estimated within a session."""

    __tablename__ = "stories"
    __table_args__ = (
        UniqueConstraint("session_id", "sequence_order", name="uq_stories_order"),
        Index("ix_stories_session_status", "session_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    session_id: Mapped[str] = mapped_column(ForeignKey("sessions.id"), index=True)
    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[str] = mapped_column(Text, default="")
    sequence_order: Mapped[int] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String(20), default="pending")
    final_estimate: Mapped[str | None] = mapped_column(
        String(40), nullable=True, default=None
    )
    vote_summary: Mapped[str | None] = mapped_column(
        String(200), nullable=True, default=None
    )
    consensus_achieved: Mapped[bool] = mapped_column(Boolean, default=False)
    voting_started: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True, default=None
    )
    completed_on: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True, default=None
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, onupdate=_utcnow
    )

    session: Mapped[PlanningSession] = relationship(back_populates="stories")
    votes: Mapped[list[Vote]] = relationship(
        back_populates="story",
        cascade="all, delete-orphan",
    )


# ── Vote ─────────────────────────────────────────────────────────


class Vote(Base):
    """One version of a voter's estimate for a story."""

    __tablename__ = "votes"
    __table_args__ = (
        UniqueConstraint(
            "story_id", "voter_id", "version", name="uq_votes_story_voter_version"
        ),
        Index("ix_votes_story_current", "story_id", "is_current"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    session_id: Mapped[str] = mapped_column(ForeignKey("sessions.id"), index=True)
    story_id: Mapped[str] = mapped_column(ForeignKey("stories.id"), index=True)
    voter_id: Mapped[str] = mapped_column(String(64))
    vote_value: Mapped[str] = mapped_column(String(40))
    version: Mapped[int] = mapped_column(Integer, default=1)
    is_current: Mapped[bool] = mapped_column(Boolean, default=True)
    created_on: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    story: Mapped[Story] = relationship(back_populates="votes")


# ── Participant ──────────────────────────────────────────────────


class Participant(Base):
    """A user's membership in a session. Active while ``left_at`` is unset."""

    __tablename__ = "participants"
    __table_args__ = (Index("ix_participants_session_user", "session_id", "user_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    session_id: Mapped[str] = mapped_column(ForeignKey("sessions.id"), index=True)
    user_id: Mapped[str] = mapped_column(String(64))
    role: Mapped[str] = mapped_column(String(20), default="participant")
    joined_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    left_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True, default=None
    )

    session: Mapped[PlanningSession] = relationship(back_populates="participants")
