"""Persistence: models and repositories."""

from planpoker.store.models import Base, Participant, PlanningSession, Story, Vote
from planpoker.store.repository import (
    EntityRepository,
    ParticipantRepository,
    Repositories,
    SessionRepository,
    SQLRepository,
    StoryRepository,
    VoteRepository,
)

__all__ = [
    "Base",
    "EntityRepository",
    "Participant",
    "ParticipantRepository",
    "PlanningSession",
    "Repositories",
    "SQLRepository",
    "SessionRepository",
    "Story",
    "StoryRepository",
    "Vote",
    "VoteRepository",
]
