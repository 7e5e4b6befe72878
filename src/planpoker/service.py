"""PokerService: every session, story and vote operation.

Each public coroutine is one externally visible mutation (or a read).
Vote-count recomputation, auto-reveal and session roll-up/auto-complete
run exactly once per call, directly, rather than being re-triggered by
the service's own writes.  Every mutation commits its own unit of work;
on failure the unit is rolled back and the error is logged with the
operation and entity id before it propagates.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from planpoker.config.schema import PlanPokerConfig
from planpoker.core.errors import (
    NotFoundError,
    PlanPokerError,
    StateConflictError,
    StorageError,
    ValidationError,
)
from planpoker.engine import analytics
from planpoker.engine.session import (
    SessionStateMachine,
    SessionStatus,
    ensure_deletable,
    generate_session_code,
    summarize_stories,
    validate_session_code,
)
from planpoker.engine.story import (
    StoryStateMachine,
    StoryStatus,
    duplicate_orders,
    next_sequence_order,
)
from planpoker.engine.tally import is_valid_card, tally
from planpoker.store.models import Participant, PlanningSession, Story, Vote

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Iterable

    from planpoker.engine.analytics import (
        EstimationTrend,
        ParticipantStats,
        SessionMetrics,
        StoryConsensus,
        VelocityPoint,
    )
    from planpoker.engine.tally import VoteStats
    from planpoker.store.repository import Repositories

logger = logging.getLogger(__name__)

_SESSION_FIELDS = frozenset({"name", "description", "status", "timebox_minutes"})
_STORY_FIELDS = frozenset(
    {
        "title",
        "description",
        "sequence_order",
        "status",
        "final_estimate",
        "vote_summary",
        "consensus_achieved",
    }
)
# Votes are accepted while cards are face down or just revealed.
_VOTABLE = frozenset({StoryStatus.VOTING.value, StoryStatus.REVEALED.value})
_PARTICIPANT_ROLES = frozenset({"dealer", "participant", "observer"})


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class CastVote:
    """Outcome of :meth:`PokerService.cast_vote`."""

    id: str
    vote_value: str
    version: int
    revealed: bool = False


class PokerService:
    """Session engine over a :class:`Repositories` unit of work."""

    def __init__(
        self,
        repos: Repositories,
        config: PlanPokerConfig | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
        code_factory: Callable[[], str] = generate_session_code,
    ) -> None:
        self._repos = repos
        self._config = config or PlanPokerConfig()
        self._clock = clock
        self._code_factory = code_factory

    # ── Internals ─────────────────────────────────────────────

    @asynccontextmanager
    async def _unit(self, operation: str, entity_id: str | None) -> AsyncIterator[None]:
        """Commit on success; roll back, log and re-raise on failure."""
        try:
            yield
            await self._repos.commit()
        except PlanPokerError as e:
            await self._repos.rollback()
            logger.warning("%s failed for %s: %s", operation, entity_id, e)
            raise
        except SQLAlchemyError as e:
            await self._repos.rollback()
            logger.error("%s failed for %s: %s", operation, entity_id, e)
            msg = f"{operation} failed for {entity_id}: {e}"
            raise StorageError(msg) from e
        except Exception:
            await self._repos.rollback()
            logger.exception("%s failed for %s", operation, entity_id)
            raise

    def _session_machine(self, session: PlanningSession) -> SessionStateMachine:
        return SessionStateMachine(
            session, clock=self._clock, code_factory=self._code_factory
        )

    def _story_machine(self, story: Story) -> StoryStateMachine:
        return StoryStateMachine(story, clock=self._clock)

    async def _require_session(self, session_id: str) -> PlanningSession:
        session = await self._repos.sessions.find_by_id(session_id)
        if session is None:
            raise NotFoundError("session", session_id)
        return session

    async def _require_story(self, story_id: str) -> Story:
        story = await self._repos.stories.find_by_id(story_id)
        if story is None:
            raise NotFoundError("story", story_id)
        return story

    async def _unique_code(self) -> str:
        attempts = self._config.general.session_code_attempts
        for _ in range(attempts):
            code = self._code_factory()
            if await self._repos.sessions.find_by_code(code) is None:
                return code
            logger.info("Session code collision on %s, regenerating", code)
        msg = f"Could not generate a free session code after {attempts} attempts"
        raise StorageError(msg)

    async def _refresh_session(self, session_id: str) -> PlanningSession:
        """Recompute story counters and auto-complete when all stories are done."""
        session = await self._require_session(session_id)
        stories = await self._repos.stories.find_by_parent(session_id)
        summary = summarize_stories(stories)
        self._session_machine(session).refresh(summary)
        await self._repos.sessions.update(session)
        logger.info(
            "Session %s summary: total=%d completed=%d consensus=%d%%",
            session_id,
            session.total_stories,
            session.completed_stories,
            session.consensus_rate,
        )
        return session

    async def _refresh_vote_count(self, story: Story) -> bool:
        """Recompute ``vote_summary`` from persisted votes; may auto-reveal."""
        votes = await self._repos.votes.count_matching(
            story_id=story.id, is_current=True
        )
        participants = await self._repos.participants.count_matching(
            session_id=story.session_id, left_at=None
        )
        revealed = self._story_machine(story).apply_vote_count(votes, participants)
        await self._repos.stories.update(story)
        return revealed

    async def _check_order_free(
        self, session_id: str, order: int, *, exclude: str | None = None
    ) -> None:
        if order < 1:
            msg = f"sequence_order must be at least 1, got {order}"
            raise ValidationError(msg)
        taken = await self._repos.stories.find_by_parent(
            session_id, sequence_order=order
        )
        if any(s.id != exclude for s in taken):
            msg = f"sequence_order {order} already used in session {session_id}"
            raise ValidationError(msg)

    # ── Sessions ──────────────────────────────────────────────

    async def create_session(
        self,
        name: str,
        *,
        description: str | None = None,
        session_code: str | None = None,
        dealer: str | None = None,
        timebox_minutes: int | None = None,
        status: str | None = None,
        acting_user: str | None = None,
    ) -> PlanningSession:
        """Create a session.  The dealer defaults to the acting user."""
        async with self._unit("create_session", name):
            if not name or not name.strip():
                msg = "Session name is required"
                raise ValidationError(msg)
            if session_code:
                if not validate_session_code(session_code):
                    msg = f"Malformed session code: {session_code!r}"
                    raise ValidationError(msg)
                if await self._repos.sessions.find_by_code(session_code) is not None:
                    msg = f"Session code already in use: {session_code}"
                    raise ValidationError(msg)
            else:
                session_code = await self._unique_code()

            if timebox_minutes is None:
                timebox_minutes = self._config.general.default_timebox_minutes
            elif timebox_minutes < 0:
                msg = "timebox_minutes must not be negative"
                raise ValidationError(msg)

            session = PlanningSession(
                name=name.strip(),
                description=description or "",
                session_code=session_code,
                dealer=dealer or acting_user,
                timebox_minutes=timebox_minutes,
                status=SessionStatus.PENDING.value,
                total_stories=0,
                completed_stories=0,
                consensus_rate=0,
                created_at=self._clock(),
            )
            await self._repos.sessions.insert(session)
            if status and status != SessionStatus.PENDING.value:
                self._session_machine(session).apply_status(
                    status, summarize_stories(()), acting_user
                )
                await self._repos.sessions.update(session)
        logger.info("Created session %s (%s)", session.id, session.session_code)
        return session

    async def get_session(self, session_id: str) -> PlanningSession | None:
        return await self._repos.sessions.find_by_id(session_id)

    async def find_session_by_code(self, session_code: str) -> PlanningSession | None:
        return await self._repos.sessions.find_by_code(session_code.strip().upper())

    async def list_sessions(
        self, *, limit: int | None = None, status: str | None = None
    ) -> list[PlanningSession]:
        """Most recently created sessions first."""
        if limit is None:
            limit = self._config.general.list_limit
        return await self._repos.sessions.list_recent(limit=limit, status=status)

    async def update_session(
        self,
        session_id: str,
        fields: dict[str, Any],
        *,
        acting_user: str | None = None,
    ) -> PlanningSession:
        """Apply a partial update.  A status change drives the state machine."""
        unknown = set(fields) - _SESSION_FIELDS
        async with self._unit("update_session", session_id):
            if unknown:
                msg = f"Cannot update session fields: {', '.join(sorted(unknown))}"
                raise ValidationError(msg)
            session = await self._require_session(session_id)
            changes = {k: v for k, v in fields.items() if k != "status"}
            if "name" in changes and not (changes["name"] or "").strip():
                msg = "Session name is required"
                raise ValidationError(msg)
            await self._repos.sessions.update(session, **changes)

            status = fields.get("status")
            if status is not None and status != session.status:
                stories = await self._repos.stories.find_by_parent(session_id)
                self._session_machine(session).apply_status(
                    status, summarize_stories(stories), acting_user
                )
                await self._repos.sessions.update(session)
                logger.info("Session %s is now %s", session_id, session.status)
        return session

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session with its stories, votes and participants.

        Refused with StateConflictError while the session is active.
        """
        async with self._unit("delete_session", session_id):
            session = await self._require_session(session_id)
            ensure_deletable(session)
            await self._repos.votes.delete_for_session(session_id)
            await self._repos.stories.delete_by_parent(session_id)
            await self._repos.participants.delete_by_parent(session_id)
            await self._repos.sessions.delete_by_id(session_id)
        logger.info("Deleted session %s", session_id)
        return True

    # ── Participants ──────────────────────────────────────────

    async def join_session(
        self, session_code: str, user_id: str, *, role: str = "participant"
    ) -> PlanningSession | None:
        """Join by code.  Returns None if no session has that code.

        Idempotent: a user who is already an active participant is not
        added twice.
        """
        code = (session_code or "").strip().upper()
        async with self._unit("join_session", code):
            if not validate_session_code(code):
                msg = f"Malformed session code: {session_code!r}"
                raise ValidationError(msg)
            if not user_id:
                msg = "A user is required to join a session"
                raise ValidationError(msg)
            if role not in _PARTICIPANT_ROLES:
                msg = f"Unknown participant role: {role!r}"
                raise ValidationError(msg)
            session = await self._repos.sessions.find_by_code(code)
            if session is None:
                logger.warning("No session for code %s", code)
                return None
            active = await self._repos.participants.count_matching(
                session_id=session.id, user_id=user_id, left_at=None
            )
            if not active:
                await self._repos.participants.insert(
                    Participant(
                        session_id=session.id,
                        user_id=user_id,
                        role=role,
                        joined_at=self._clock(),
                    )
                )
                logger.info("User %s joined session %s", user_id, session.id)
        return session

    async def leave_session(self, session_id: str, user_id: str) -> bool:
        """Mark the user's active participation as ended.

        Stories still being voted on are recounted, so the remaining
        voters may trigger an auto-reveal.
        """
        async with self._unit("leave_session", session_id):
            await self._require_session(session_id)
            rows = await self._repos.participants.find_by_parent(
                session_id, user_id=user_id, left_at=None
            )
            if not rows:
                return False
            for row in rows:
                await self._repos.participants.update(row, left_at=self._clock())
            voting = await self._repos.stories.find_by_parent(
                session_id, status=StoryStatus.VOTING.value
            )
            revealed = False
            for story in voting:
                revealed = await self._refresh_vote_count(story) or revealed
            if revealed:
                await self._refresh_session(session_id)
        logger.info("User %s left session %s", user_id, session_id)
        return True

    async def list_participants(
        self, session_id: str, *, include_left: bool = False
    ) -> list[Participant]:
        await self._require_session(session_id)
        filters: dict[str, Any] = {} if include_left else {"left_at": None}
        return await self._repos.participants.find_by_parent(
            session_id, order_by="joined_at", **filters
        )

    # ── Stories ───────────────────────────────────────────────

    async def list_stories(self, session_id: str) -> list[Story]:
        await self._require_session(session_id)
        return await self._repos.stories.find_by_parent(
            session_id, order_by="sequence_order"
        )

    async def get_story(self, story_id: str) -> Story | None:
        return await self._repos.stories.find_by_id(story_id)

    async def add_story(
        self,
        session_id: str,
        title: str,
        *,
        description: str | None = None,
        sequence_order: int | None = None,
    ) -> Story:
        """Append a story.  Without an explicit order it goes last."""
        async with self._unit("add_story", session_id):
            await self._require_session(session_id)
            if not title or not title.strip():
                msg = "Story title is required"
                raise ValidationError(msg)
            if sequence_order is None:
                current_max = await self._repos.stories.max_value(
                    "sequence_order", session_id=session_id
                )
                sequence_order = next_sequence_order(current_max)
            else:
                await self._check_order_free(session_id, sequence_order)

            story = Story(
                session_id=session_id,
                title=title.strip(),
                description=description or "",
                sequence_order=sequence_order,
                status=StoryStatus.PENDING.value,
                consensus_achieved=False,
            )
            await self._repos.stories.insert(story)
            await self._refresh_session(session_id)
        logger.info("Added story %s to session %s", story.id, session_id)
        return story

    async def update_story(self, story_id: str, fields: dict[str, Any]) -> Story:
        """Apply a partial update.  A status change drives the state machine."""
        unknown = set(fields) - _STORY_FIELDS
        async with self._unit("update_story", story_id):
            if unknown:
                msg = f"Cannot update story fields: {', '.join(sorted(unknown))}"
                raise ValidationError(msg)
            story = await self._require_story(story_id)
            changes = {k: v for k, v in fields.items() if k != "status"}
            if "title" in changes and not (changes["title"] or "").strip():
                msg = "Story title is required"
                raise ValidationError(msg)
            order = changes.get("sequence_order")
            if order is not None and order != story.sequence_order:
                await self._check_order_free(story.session_id, order, exclude=story.id)

            status = fields.get("status")
            status_changed = status is not None and status != story.status
            consensus_changed = (
                "consensus_achieved" in changes
                and changes["consensus_achieved"] != story.consensus_achieved
            )
            if status_changed:
                if status == StoryStatus.PENDING.value:
                    await self._repos.votes.delete_by_parent(story.id)
                self._story_machine(story).apply_status(status)
            await self._repos.stories.update(story, **changes)
            # Both feed the session roll-up.
            if status_changed or consensus_changed:
                await self._refresh_session(story.session_id)
        return story

    async def delete_story(self, story_id: str) -> bool:
        """Delete a story after purging its votes."""
        async with self._unit("delete_story", story_id):
            story = await self._require_story(story_id)
            session_id = story.session_id
            await self._repos.votes.delete_by_parent(story_id)
            await self._repos.stories.delete_by_id(story_id)
            await self._refresh_session(session_id)
        logger.info("Deleted story %s", story_id)
        return True

    async def reorder_stories(self, orders: Iterable[tuple[str, int]]) -> bool:
        """Reassign sequence orders.

        The resulting orders of each affected session must stay unique;
        otherwise nothing is written and ValidationError is raised.
        """
        moves = dict(orders)
        async with self._unit("reorder_stories", ",".join(moves)):
            low = [order for order in moves.values() if order < 1]
            if low:
                msg = f"sequence_order must be at least 1, got {min(low)}"
                raise ValidationError(msg)
            stories = [await self._require_story(story_id) for story_id in moves]
            for session_id in {s.session_id for s in stories}:
                siblings = await self._repos.stories.find_by_parent(session_id)
                final = [moves.get(s.id, s.sequence_order) for s in siblings]
                dupes = duplicate_orders(final)
                if dupes:
                    msg = (
                        f"Reorder would duplicate sequence_order "
                        f"{', '.join(map(str, dupes))} in session {session_id}"
                    )
                    raise ValidationError(msg)
            # Park moved stories on negative orders first so swaps never
            # collide with the per-session unique constraint mid-flight.
            for i, story in enumerate(stories, start=1):
                await self._repos.stories.update(story, sequence_order=-i)
            for story in stories:
                await self._repos.stories.update(
                    story, sequence_order=moves[story.id]
                )
        logger.info("Reordered %d stories", len(moves))
        return True

    # ── Story lifecycle ───────────────────────────────────────

    async def start_voting(self, story_id: str) -> Story:
        async with self._unit("start_voting", story_id):
            story = await self._require_story(story_id)
            self._story_machine(story).start_voting()
            await self._repos.stories.update(story)
            await self._refresh_session(story.session_id)
        logger.info("Voting started on story %s", story_id)
        return story

    async def complete_voting(
        self,
        story_id: str,
        final_estimate: str,
        vote_summary: str | None = None,
    ) -> Story:
        async with self._unit("complete_voting", story_id):
            if final_estimate is None or not str(final_estimate).strip():
                msg = "A final estimate is required"
                raise ValidationError(msg)
            story = await self._require_story(story_id)
            self._story_machine(story).complete(str(final_estimate), vote_summary)
            await self._repos.stories.update(story)
            await self._refresh_session(story.session_id)
        logger.info("Story %s completed with estimate %s", story_id, final_estimate)
        return story

    async def skip_story(self, story_id: str) -> Story:
        async with self._unit("skip_story", story_id):
            story = await self._require_story(story_id)
            self._story_machine(story).skip()
            await self._repos.stories.update(story)
            await self._refresh_session(story.session_id)
        return story

    async def reset_story(self, story_id: str) -> Story:
        """Purge every vote and return the story to pending."""
        async with self._unit("reset_story", story_id):
            story = await self._require_story(story_id)
            await self._repos.votes.delete_by_parent(story_id)
            self._story_machine(story).reset()
            await self._repos.stories.update(story)
            await self._refresh_session(story.session_id)
        logger.info("Story %s reset", story_id)
        return story

    # ── Votes ─────────────────────────────────────────────────

    async def cast_vote(
        self,
        session_id: str,
        story_id: str,
        voter_id: str,
        value: str,
    ) -> CastVote:
        """Record a voter's card, superseding their previous current vote.

        The previous row is flipped with a compare-and-swap on its version
        and the new row carries ``version + 1``; a racing vote from the
        same voter surfaces as StateConflictError instead of leaving two
        current rows.
        """
        async with self._unit("cast_vote", story_id):
            if not voter_id:
                msg = "A voter is required"
                raise ValidationError(msg)
            value = (value or "").strip()
            if not value:
                msg = "A vote value is required"
                raise ValidationError(msg)
            voting = self._config.voting
            if voting.enforce_scale and not is_valid_card(value, voting.scale):
                msg = f"{value!r} is not a card in the {voting.scale} deck"
                raise ValidationError(msg)

            await self._require_session(session_id)
            story = await self._require_story(story_id)
            if story.session_id != session_id:
                msg = f"Story {story_id} does not belong to session {session_id}"
                raise ValidationError(msg)
            if story.status not in _VOTABLE:
                msg = f"Story {story_id} is {story.status}; voting is not open"
                raise StateConflictError(msg)

            previous = await self._repos.votes.current_vote(story_id, voter_id)
            version = 1
            if previous is not None:
                await self._repos.votes.supersede(previous)
                version = previous.version + 1
            vote = await self._repos.votes.insert_version(
                Vote(
                    session_id=session_id,
                    story_id=story_id,
                    voter_id=voter_id,
                    vote_value=value,
                    version=version,
                    is_current=True,
                    created_on=self._clock(),
                )
            )
            revealed = await self._refresh_vote_count(story)
            if revealed:
                await self._refresh_session(session_id)
        logger.info(
            "Vote %s on story %s by %s (version %d)",
            vote.id,
            story_id,
            voter_id,
            version,
        )
        return CastVote(
            id=vote.id, vote_value=value, version=version, revealed=revealed
        )

    async def get_story_votes(
        self, story_id: str, *, include_history: bool = False
    ) -> list[Vote]:
        """Current votes in casting order, or every version with history."""
        await self._require_story(story_id)
        filters: dict[str, Any] = {} if include_history else {"is_current": True}
        return await self._repos.votes.find_by_parent(
            story_id, order_by="created_on", **filters
        )

    async def get_vote_stats(self, story_id: str) -> VoteStats:
        votes = await self.get_story_votes(story_id)
        return tally(votes)

    async def clear_story_votes(self, story_id: str) -> bool:
        """Purge every vote row of a story so the round restarts from zero."""
        async with self._unit("clear_story_votes", story_id):
            story = await self._require_story(story_id)
            removed = await self._repos.votes.delete_by_parent(story_id)
            await self._refresh_vote_count(story)
        logger.info("Cleared %d votes on story %s", removed, story_id)
        return True
    # ── Analytics ─────────────────────────────────────────────

    async def _snapshot(self, time_range: str) -> analytics.AnalyticsSnapshot:
        since = analytics.window_start(time_range, self._clock())
        sessions = await self._repos.sessions.created_since(since)
        ids = [s.id for s in sessions]
        return analytics.AnalyticsSnapshot(
            sessions=sessions,
            stories=await self._repos.stories.find_in("session_id", ids),
            votes=await self._repos.votes.find_in("session_id", ids, is_current=True),
            participants=await self._repos.participants.find_in("session_id", ids),
        )

    async def session_metrics(self, time_range: str = "30d") -> SessionMetrics:
        """Headline figures over sessions created in *time_range*.

        Ranges are ``7d``, ``30d``, ``90d`` and ``all``; anything else is
        a ValidationError.
        """
        snapshot = await self._snapshot(time_range)
        return analytics.session_metrics(snapshot, time_range)

    async def velocity(self, time_range: str = "30d") -> list[VelocityPoint]:
        return analytics.velocity(await self._snapshot(time_range))

    async def estimation_trends(self, time_range: str = "30d") -> list[EstimationTrend]:
        points = analytics.velocity(await self._snapshot(time_range))
        return analytics.estimation_trends(points, time_range)

    async def consensus_analysis(self, time_range: str = "30d") -> list[StoryConsensus]:
        return analytics.consensus_analysis(await self._snapshot(time_range))

    async def participant_analytics(
        self, time_range: str = "30d"
    ) -> list[ParticipantStats]:
        return analytics.participant_analytics(await self._snapshot(time_range))
