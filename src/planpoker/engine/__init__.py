"""Vote tally and session/story state machines."""

from planpoker.engine.session import (
    SessionStateMachine,
    SessionStatus,
    StorySummary,
    generate_session_code,
    summarize_stories,
    validate_session_code,
)
from planpoker.engine.story import StoryStateMachine, StoryStatus
from planpoker.engine.tally import VoteStats, parse_vote_value, tally

__all__ = [
    "SessionStateMachine",
    "SessionStatus",
    "StoryStateMachine",
    "StoryStatus",
    "StorySummary",
    "VoteStats",
    "generate_session_code",
    "parse_vote_value",
    "summarize_stories",
    "tally",
    "validate_session_code",
]
