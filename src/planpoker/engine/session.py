"""Session state machine and story roll-up.

Pure logic module. No IO.

    pending -> active -> completed
    pending | active -> cancelled
"""

from __future__ import annotations

import enum
import logging
import re
import secrets
import string
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol

from planpoker.core.errors import StateConflictError, ValidationError
from planpoker.engine.story import StoryStatus
from planpoker.engine.tally import round_half_up

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

logger = logging.getLogger(__name__)

SESSION_CODE_ALPHABET = string.ascii_uppercase + string.digits
SESSION_CODE_LENGTH = 6
_SESSION_CODE_RE = re.compile(r"^[A-Z0-9]{6}$")


class SessionStatus(enum.Enum):
    """Lifecycle of a planning session."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SessionRecord(Protocol):
    """Fields of a session the machine reads and writes."""

    id: str
    status: str
    dealer: str | None
    session_code: str | None
    total_stories: int
    completed_stories: int
    consensus_rate: int
    started_at: datetime | None
    completed_at: datetime | None


class StoryLike(Protocol):
    status: str
    consensus_achieved: bool


_VALID_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.PENDING: frozenset({SessionStatus.ACTIVE, SessionStatus.CANCELLED}),
    SessionStatus.ACTIVE: frozenset(
        {SessionStatus.ACTIVE, SessionStatus.COMPLETED, SessionStatus.CANCELLED}
    ),
    SessionStatus.COMPLETED: frozenset({SessionStatus.COMPLETED}),
    SessionStatus.CANCELLED: frozenset(),
}


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ── Session codes ─────────────────────────────────────────────


def generate_session_code() -> str:
    """Six random characters from ``A-Z0-9``."""
    return "".join(
        secrets.choice(SESSION_CODE_ALPHABET) for _ in range(SESSION_CODE_LENGTH)
    )


def validate_session_code(code: str) -> bool:
    return bool(_SESSION_CODE_RE.match(code))


# ── Story roll-up ─────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class StorySummary:
    """Counts of a session's stories by status."""

    total: int = 0
    pending: int = 0
    voting: int = 0
    revealed: int = 0
    completed: int = 0
    skipped: int = 0
    consensus: int = 0

    @property
    def consensus_rate(self) -> int:
        """Percent of stories that reached consensus, 0 with no stories."""
        if self.total == 0:
            return 0
        return int(round_half_up(100 * self.consensus / self.total))

    @property
    def all_done(self) -> bool:
        return self.total > 0 and self.completed + self.skipped == self.total


def summarize_stories(stories: Iterable[StoryLike]) -> StorySummary:
    """Count *stories* by status and consensus."""
    counts = dict.fromkeys((s.value for s in StoryStatus), 0)
    total = 0
    consensus = 0
    for story in stories:
        total += 1
        if story.status in counts:
            counts[story.status] += 1
        if story.consensus_achieved:
            consensus += 1
    return StorySummary(total=total, consensus=consensus, **counts)


def should_auto_complete(summary: StorySummary, status: str) -> bool:
    """Every story is completed or skipped and the session is still running."""
    return summary.all_done and status == SessionStatus.ACTIVE.value


def ensure_deletable(session: SessionRecord) -> None:
    """Raise StateConflictError while the session is running."""
    if session.status == SessionStatus.ACTIVE.value:
        msg = f"Cannot delete active session {session.id}; complete or cancel it first"
        raise StateConflictError(msg)


# ── State machine ─────────────────────────────────────────────


class SessionStateMachine:
    """Validates and applies session status transitions."""

    def __init__(
        self,
        session: SessionRecord,
        *,
        clock: Callable[[], datetime] = _utcnow,
        code_factory: Callable[[], str] = generate_session_code,
    ) -> None:
        self._session = session
        self._clock = clock
        self._code_factory = code_factory

    @property
    def status(self) -> SessionStatus:
        try:
            return SessionStatus(self._session.status)
        except ValueError as e:
            msg = (
                f"Session {self._session.id} has unknown status "
                f"{self._session.status!r}"
            )
            raise StateConflictError(msg) from e

    def can_transition(self, to: SessionStatus) -> bool:
        """Check if a transition is valid without raising."""
        return to in _VALID_TRANSITIONS.get(self.status, frozenset())

    def _require(self, to: SessionStatus) -> None:
        if not self.can_transition(to):
            msg = (
                f"Cannot move session {self._session.id} from "
                f"{self.status.value} to {to.value}"
            )
            raise StateConflictError(msg)

    def activate(self, acting_user: str | None = None) -> None:
        """Start the session.

        ``started_at`` is stamped only on the first activation; the
        dealer defaults to the acting user and a join code is generated
        if none was assigned.
        """
        self._require(SessionStatus.ACTIVE)
        self._session.status = SessionStatus.ACTIVE.value
        if self._session.started_at is None:
            self._session.started_at = self._clock()
        if not self._session.dealer and acting_user:
            self._session.dealer = acting_user
        if not self._session.session_code:
            self._session.session_code = self._code_factory()

    def apply_summary(self, summary: StorySummary) -> None:
        """Copy story counters onto the session."""
        self._session.total_stories = summary.total
        self._session.completed_stories = summary.completed
        self._session.consensus_rate = summary.consensus_rate

    def complete(self, summary: StorySummary) -> None:
        """Finish the session with a final roll-up."""
        self._require(SessionStatus.COMPLETED)
        self.apply_summary(summary)
        self._session.status = SessionStatus.COMPLETED.value
        if self._session.completed_at is None:
            self._session.completed_at = self._clock()

    def cancel(self) -> None:
        self._require(SessionStatus.CANCELLED)
        self._session.status = SessionStatus.CANCELLED.value

    def refresh(self, summary: StorySummary) -> bool:
        """Apply a story roll-up and auto-complete if every story is done.

        Returns:
            True if this call completed the session.
        """
        self.apply_summary(summary)
        if should_auto_complete(summary, self._session.status):
            self.complete(summary)
            logger.info("Auto-completing session %s", self._session.id)
            return True
        return False

    def apply_status(
        self,
        status: str,
        summary: StorySummary,
        acting_user: str | None = None,
    ) -> None:
        """Drive the machine from a raw status value (partial updates)."""
        try:
            target = SessionStatus(status)
        except ValueError as e:
            msg = f"Unknown session status: {status!r}"
            raise ValidationError(msg) from e

        if target is SessionStatus.ACTIVE:
            self.activate(acting_user)
        elif target is SessionStatus.COMPLETED:
            self.complete(summary)
        elif target is SessionStatus.CANCELLED:
            self.cancel()
        elif self.status is not SessionStatus.PENDING:
            msg = f"Cannot move session {self._session.id} back to pending"
            raise StateConflictError(msg)
