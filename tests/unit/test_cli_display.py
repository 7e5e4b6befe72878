"""Tests for PokerDisplay rendering."""

from __future__ import annotations

import io
from datetime import UTC, datetime
from types import SimpleNamespace
from typing import Any

from rich.console import Console

from planpoker.cli.display import PokerDisplay
from planpoker.engine.analytics import SessionMetrics, VelocityPoint
from planpoker.engine.tally import tally


def _make_display() -> tuple[PokerDisplay, io.StringIO]:
    buf = io.StringIO()
    console = Console(file=buf, width=100, no_color=True)
    return PokerDisplay(console=console), buf


def _session(**overrides: Any) -> SimpleNamespace:
    defaults: dict[str, Any] = {
        "id": "0123456789abcdef",
        "name": "Sprint 12",
        "description": "",
        "session_code": "AB12CD",
        "status": "active",
        "dealer": "dana",
        "timebox_minutes": 30,
        "total_stories": 3,
        "completed_stories": 1,
        "consensus_rate": 33,
    }
    defaults.update(overrides)
    return SimpleNamespace(**defaults)


def _story(order: int, **overrides: Any) -> SimpleNamespace:
    defaults: dict[str, Any] = {
        "id": f"story-{order:04d}-xyz",
        "title": f"Story {order}",
        "sequence_order": order,
        "status": "pending",
        "final_estimate": None,
        "vote_summary": None,
    }
    defaults.update(overrides)
    return SimpleNamespace(**defaults)


class TestShowSessions:
    def test_empty(self) -> None:
        display, buf = _make_display()
        display.show_sessions([])
        assert "No sessions found." in buf.getvalue()

    def test_rows(self) -> None:
        display, buf = _make_display()
        display.show_sessions([_session(), _session(name="Other", session_code=None)])
        out = buf.getvalue()
        assert "01234567" in out
        assert "AB12CD" in out
        assert "1/3" in out
        assert "33%" in out
        assert "Other" in out


class TestShowSession:
    def test_header_and_stories(self) -> None:
        display, buf = _make_display()
        stories = [
            _story(1, status="completed", final_estimate="5"),
            _story(2, status="voting", vote_summary="2 of 4 participants voted"),
        ]
        display.show_session(_session(description="Checkout work"), stories)
        out = buf.getvalue()
        assert "Sprint 12" in out
        assert "Checkout work" in out
        assert "Dealer: dana" in out
        assert "Consensus rate: 33%" in out
        assert "Story 1" in out
        assert "2 of 4 participants voted" in out

    def test_no_stories(self) -> None:
        display, buf = _make_display()
        display.show_session(_session(dealer=None), [])
        out = buf.getvalue()
        assert "Dealer: -" in out
        assert "No stories yet." in out


class TestShowStats:
    def test_mixed(self) -> None:
        display, buf = _make_display()
        display.show_stats("Login form", tally(["5", "5", "8", "?"]))
        out = buf.getvalue()
        assert "Total votes: 4" in out
        assert "No consensus" in out
        assert "Average 6  Median 5  Min 5  Max 8  Range 3" in out
        assert "?" in out

    def test_consensus(self) -> None:
        display, buf = _make_display()
        display.show_stats("Login form", tally(["3", "3"]))
        assert "Consensus on 3" in buf.getvalue()

    def test_non_numeric_only(self) -> None:
        display, buf = _make_display()
        display.show_stats("Login form", tally(["?"]))
        assert "Average -" in buf.getvalue()


class TestShowAnalytics:
    def test_metrics_and_velocity(self) -> None:
        display, buf = _make_display()
        metrics = SessionMetrics(
            time_range="90d",
            total_sessions=2,
            total_stories=5,
            completed_stories=4,
            average_velocity=10.5,
            consensus_rate=75.0,
            average_estimate=5.25,
            participant_engagement=80.0,
        )
        points = [
            VelocityPoint(
                session_id="s-1",
                session_name="Sprint 12",
                created_at=datetime(2026, 3, 2, 9, 0, tzinfo=UTC),
                story_points=13.0,
                stories_completed=3,
            )
        ]
        display.show_analytics(metrics, points)
        out = buf.getvalue()
        assert "Analytics (90d)" in out
        assert "Stories: 4/5 completed" in out
        assert "Average velocity: 10.5 points" in out
        assert "Consensus rate: 75%" in out
        assert "2026-03-02" in out
        assert "Sprint 12" in out

    def test_no_sessions(self) -> None:
        display, buf = _make_display()
        display.show_analytics(SessionMetrics(time_range="7d"), [])
        out = buf.getvalue()
        assert "Average estimate: -" in out
        assert "No sessions in range." in out
