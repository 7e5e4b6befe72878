"""Story state machine: pending -> voting -> revealed -> completed.

Pure logic module. No IO.  The machine validates transitions and mutates
the story record in memory; the service persists the result and purges
votes where a transition requires it.
"""

from __future__ import annotations

import enum
import logging
from collections import Counter
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol

from planpoker.core.errors import StateConflictError, ValidationError

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

logger = logging.getLogger(__name__)


class StoryStatus(enum.Enum):
    """Lifecycle of a story within a session."""

    PENDING = "pending"
    VOTING = "voting"
    REVEALED = "revealed"
    COMPLETED = "completed"
    SKIPPED = "skipped"


class StoryRecord(Protocol):
    """Fields of a story the machine reads and writes."""

    id: str
    status: str
    final_estimate: str | None
    vote_summary: str | None
    consensus_achieved: bool
    voting_started: datetime | None
    completed_on: datetime | None


# Reset is reachable from every state and handled separately.
_VALID_TRANSITIONS: dict[StoryStatus, frozenset[StoryStatus]] = {
    StoryStatus.PENDING: frozenset(
        {StoryStatus.VOTING, StoryStatus.COMPLETED, StoryStatus.SKIPPED}
    ),
    StoryStatus.VOTING: frozenset(
        {
            StoryStatus.VOTING,
            StoryStatus.REVEALED,
            StoryStatus.COMPLETED,
            StoryStatus.SKIPPED,
        }
    ),
    StoryStatus.REVEALED: frozenset(
        {StoryStatus.VOTING, StoryStatus.COMPLETED, StoryStatus.SKIPPED}
    ),
    StoryStatus.COMPLETED: frozenset({StoryStatus.COMPLETED}),
    StoryStatus.SKIPPED: frozenset(),
}

TERMINAL_STATUSES: frozenset[StoryStatus] = frozenset(
    {StoryStatus.COMPLETED, StoryStatus.SKIPPED}
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def format_vote_summary(vote_count: int, participant_count: int) -> str:
    """``"3 of 5 participants voted"``."""
    return f"{vote_count} of {participant_count} participants voted"


def next_sequence_order(max_existing: int | None) -> int:
    """Order for a story appended after *max_existing*."""
    return (max_existing or 0) + 1


def duplicate_orders(orders: Sequence[int]) -> list[int]:
    """Sequence orders that appear more than once, sorted."""
    return sorted(order for order, n in Counter(orders).items() if n > 1)


class StoryStateMachine:
    """Validates and applies story status transitions.

    Timestamps come from *clock* so tests can pin them.
    """

    def __init__(
        self,
        story: StoryRecord,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._story = story
        self._clock = clock

    @property
    def story(self) -> StoryRecord:
        return self._story

    @property
    def status(self) -> StoryStatus:
        """Current status."""
        try:
            return StoryStatus(self._story.status)
        except ValueError as e:
            msg = f"Story {self._story.id} has unknown status {self._story.status!r}"
            raise StateConflictError(msg) from e

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def can_transition(self, to: StoryStatus) -> bool:
        """Check if a transition is valid without raising."""
        return to in _VALID_TRANSITIONS.get(self.status, frozenset())

    def _require(self, to: StoryStatus) -> None:
        if not self.can_transition(to):
            msg = (
                f"Cannot move story {self._story.id} from "
                f"{self.status.value} to {to.value}"
            )
            raise StateConflictError(msg)

    # ── Transitions ───────────────────────────────────────────

    def start_voting(self) -> None:
        """Open (or reopen) voting.  ``voting_started`` is stamped only once."""
        self._require(StoryStatus.VOTING)
        self._story.status = StoryStatus.VOTING.value
        if self._story.voting_started is None:
            self._story.voting_started = self._clock()

    def reveal(self) -> None:
        """Show the cards."""
        self._require(StoryStatus.REVEALED)
        self._story.status = StoryStatus.REVEALED.value

    def complete(self, final_estimate: str, vote_summary: str | None = None) -> None:
        """Record the agreed estimate.  ``completed_on`` is always refreshed."""
        self._require(StoryStatus.COMPLETED)
        self._story.status = StoryStatus.COMPLETED.value
        self._story.final_estimate = final_estimate
        self._story.vote_summary = vote_summary or ""
        self._story.consensus_achieved = True
        self._story.completed_on = self._clock()

    def skip(self) -> None:
        self._require(StoryStatus.SKIPPED)
        self._story.status = StoryStatus.SKIPPED.value

    def reset(self) -> None:
        """Back to pending with every round artefact cleared.

        Votes are not touched here; the caller purges them first.
        """
        self._story.status = StoryStatus.PENDING.value
        self._story.final_estimate = None
        self._story.vote_summary = None
        self._story.voting_started = None
        self._story.completed_on = None
        self._story.consensus_achieved = False

    def apply_status(self, status: str) -> None:
        """Drive the machine from a raw status value (partial updates)."""
        try:
            target = StoryStatus(status)
        except ValueError as e:
            msg = f"Unknown story status: {status!r}"
            raise ValidationError(msg) from e

        if target is StoryStatus.PENDING:
            self.reset()
        elif target is StoryStatus.VOTING:
            self.start_voting()
        elif target is StoryStatus.REVEALED:
            self.reveal()
        elif target is StoryStatus.COMPLETED:
            self._require(StoryStatus.COMPLETED)
            self._story.status = StoryStatus.COMPLETED.value
            self._story.completed_on = self._clock()
        else:
            self.skip()

    # ── Vote count ────────────────────────────────────────────

    def apply_vote_count(self, vote_count: int, participant_count: int) -> bool:
        """Refresh ``vote_summary`` and auto-reveal once everyone has voted.

        Recomputed from totals, never from a delta, so running it more
        than once for the same vote set is harmless.

        Returns:
            True if this call moved the story to revealed.
        """
        self._story.vote_summary = format_vote_summary(vote_count, participant_count)
        if (
            participant_count > 0
            and vote_count >= participant_count
            and self.status is StoryStatus.VOTING
        ):
            self._story.status = StoryStatus.REVEALED.value
            logger.info(
                "Auto-revealing story %s: %d of %d voted",
                self._story.id,
                vote_count,
                participant_count,
            )
            return True
        return False
