"""Tests for StoryStateMachine: transitions, timestamps, auto-reveal."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime

import pytest

from planpoker.core.errors import StateConflictError, ValidationError
from planpoker.engine.story import (
    StoryStateMachine,
    StoryStatus,
    duplicate_orders,
    format_vote_summary,
    next_sequence_order,
)

T0 = datetime(2026, 3, 1, 10, 0, tzinfo=UTC)
T1 = datetime(2026, 3, 1, 10, 5, tzinfo=UTC)

# ── Helpers ──────────────────────────────────────────────────────


@dataclass
class FakeStory:
    id: str = "s-1"
    status: str = "pending"
    final_estimate: str | None = None
    vote_summary: str | None = None
    consensus_achieved: bool = False
    voting_started: datetime | None = None
    completed_on: datetime | None = None


def _machine(story: FakeStory, *times: datetime) -> StoryStateMachine:
    ticks = iter(times or (T0,))
    return StoryStateMachine(story, clock=lambda: next(ticks))


# ── Helpers module functions ─────────────────────────────────────


class TestHelpers:
    def test_format_vote_summary(self) -> None:
        assert format_vote_summary(3, 5) == "3 of 5 participants voted"

    def test_next_sequence_order(self) -> None:
        assert next_sequence_order(None) == 1
        assert next_sequence_order(4) == 5

    def test_duplicate_orders(self) -> None:
        assert duplicate_orders([1, 2, 3]) == []
        assert duplicate_orders([3, 1, 3, 2, 1]) == [1, 3]


# ── Transitions ──────────────────────────────────────────────────


class TestTransitions:
    def test_start_voting_stamps_once(self) -> None:
        story = FakeStory()
        sm = _machine(story, T0, T1)
        sm.start_voting()
        assert story.status == "voting"
        assert story.voting_started == T0

        sm.start_voting()
        assert story.status == "voting"
        assert story.voting_started == T0

    def test_reveal_requires_voting(self) -> None:
        story = FakeStory()
        sm = _machine(story)
        with pytest.raises(StateConflictError, match="pending to revealed"):
            sm.reveal()

    def test_revealed_can_reopen_voting(self) -> None:
        story = FakeStory(status="revealed", voting_started=T0)
        sm = _machine(story, T1)
        sm.start_voting()
        assert story.status == "voting"
        assert story.voting_started == T0

    def test_complete_sets_fields(self) -> None:
        story = FakeStory(status="revealed")
        sm = _machine(story, T1)
        sm.complete("8", "4 of 4 participants voted")
        assert story.status == "completed"
        assert story.final_estimate == "8"
        assert story.vote_summary == "4 of 4 participants voted"
        assert story.consensus_achieved is True
        assert story.completed_on == T1

    def test_complete_without_summary_clears_it(self) -> None:
        story = FakeStory(status="voting", vote_summary="1 of 3 participants voted")
        _machine(story).complete("5")
        assert story.vote_summary == ""

    def test_complete_is_repeatable_and_refreshes_timestamp(self) -> None:
        story = FakeStory(status="voting")
        sm = _machine(story, T0, T1)
        sm.complete("3")
        sm.complete("5")
        assert story.final_estimate == "5"
        assert story.completed_on == T1

    def test_skipped_is_terminal(self) -> None:
        story = FakeStory()
        sm = _machine(story)
        sm.skip()
        assert sm.is_terminal
        for to in StoryStatus:
            assert not sm.can_transition(to)
        with pytest.raises(StateConflictError):
            sm.start_voting()

    def test_completed_cannot_restart_voting(self) -> None:
        story = FakeStory(status="completed")
        with pytest.raises(StateConflictError):
            _machine(story).start_voting()

    def test_reset_from_any_status(self) -> None:
        for status in StoryStatus:
            story = FakeStory(
                status=status.value,
                final_estimate="8",
                vote_summary="2 of 2 participants voted",
                consensus_achieved=True,
                voting_started=T0,
                completed_on=T1,
            )
            _machine(story).reset()
            assert story.status == "pending"
            assert story.final_estimate is None
            assert story.vote_summary is None
            assert story.voting_started is None
            assert story.completed_on is None
            assert story.consensus_achieved is False

    def test_unknown_stored_status(self) -> None:
        sm = _machine(FakeStory(status="bogus"))
        with pytest.raises(StateConflictError, match="unknown status"):
            _ = sm.status


class TestApplyStatus:
    def test_unknown_status_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Unknown story status"):
            _machine(FakeStory()).apply_status("done")

    def test_pending_resets(self) -> None:
        story = FakeStory(status="revealed", final_estimate="3", voting_started=T0)
        _machine(story).apply_status("pending")
        assert story.status == "pending"
        assert story.voting_started is None

    def test_completed_keeps_estimate_fields(self) -> None:
        story = FakeStory(status="revealed", final_estimate="5")
        _machine(story, T1).apply_status("completed")
        assert story.status == "completed"
        assert story.final_estimate == "5"
        assert story.completed_on == T1

    def test_invalid_transition(self) -> None:
        with pytest.raises(StateConflictError):
            _machine(FakeStory(status="skipped")).apply_status("voting")


# ── Vote count / auto-reveal ─────────────────────────────────────


class TestApplyVoteCount:
    def test_below_threshold_stays_voting(self) -> None:
        story = FakeStory(status="voting")
        revealed = _machine(story).apply_vote_count(2, 3)
        assert revealed is False
        assert story.status == "voting"
        assert story.vote_summary == "2 of 3 participants voted"

    def test_everyone_voted_reveals(self) -> None:
        story = FakeStory(status="voting")
        revealed = _machine(story).apply_vote_count(3, 3)
        assert revealed is True
        assert story.status == "revealed"
        assert story.vote_summary == "3 of 3 participants voted"

    def test_no_participants_never_reveals(self) -> None:
        story = FakeStory(status="voting")
        assert _machine(story).apply_vote_count(1, 0) is False
        assert story.status == "voting"

    def test_only_voting_stories_reveal(self) -> None:
        story = FakeStory(status="revealed")
        assert _machine(story).apply_vote_count(3, 3) is False
        assert story.status == "revealed"

    def test_idempotent(self) -> None:
        story = FakeStory(status="voting")
        sm = _machine(story)
        sm.apply_vote_count(1, 4)
        sm.apply_vote_count(1, 4)
        assert story.vote_summary == "1 of 4 participants voted"
