"""Rich display for sessions, stories and vote statistics.

Accepts an optional :class:`~rich.console.Console` for dependency
injection in tests.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

if TYPE_CHECKING:
    from collections.abc import Sequence

    from planpoker.engine.analytics import SessionMetrics, VelocityPoint
    from planpoker.engine.tally import VoteStats
    from planpoker.store.models import PlanningSession, Story

_STATUS_STYLES: dict[str, str] = {
    "pending": "dim",
    "active": "bold green",
    "voting": "bold cyan",
    "revealed": "bold yellow",
    "completed": "green",
    "skipped": "dim",
    "cancelled": "red",
}


def _styled(status: str) -> str:
    style = _STATUS_STYLES.get(status, "")
    return f"[{style}]{status}[/{style}]" if style else status


def _number(value: float | None) -> str:
    """Render a statistic; whole numbers without a trailing ``.0``."""
    if value is None:
        return "-"
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"


class PokerDisplay:
    """Terminal rendering for the CLI commands."""

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console()

    def show_sessions(self, sessions: Sequence[PlanningSession]) -> None:
        if not sessions:
            self._console.print("No sessions found.")
            return
        table = Table(show_header=True, header_style="bold")
        table.add_column("ID")
        table.add_column("Code")
        table.add_column("Status")
        table.add_column("Stories", justify="right")
        table.add_column("Consensus", justify="right")
        table.add_column("Name")
        for s in sessions:
            table.add_row(
                s.id[:8],
                s.session_code or "-",
                _styled(s.status),
                f"{s.completed_stories}/{s.total_stories}",
                f"{s.consensus_rate}%",
                s.name,
            )
        self._console.print(table)

    def show_session(
        self, session: PlanningSession, stories: Sequence[Story]
    ) -> None:
        """Session header panel followed by its stories."""
        lines = [
            f"Code: {session.session_code or '-'}",
            f"Status: {_styled(session.status)}",
            f"Dealer: {session.dealer or '-'}",
            f"Timebox: {session.timebox_minutes} min",
            f"Stories: {session.completed_stories}/{session.total_stories} completed",
            f"Consensus rate: {session.consensus_rate}%",
        ]
        if session.description:
            lines.insert(0, session.description)
        self._console.print(
            Panel(
                "\n".join(lines),
                title=f"[bold]{session.name}[/bold] ({session.id[:8]})",
                border_style="cyan",
            )
        )
        self.show_stories(stories)

    def show_stories(self, stories: Sequence[Story]) -> None:
        if not stories:
            self._console.print("No stories yet.")
            return
        table = Table(show_header=True, header_style="bold")
        table.add_column("#", justify="right")
        table.add_column("ID")
        table.add_column("Status")
        table.add_column("Estimate", justify="right")
        table.add_column("Votes")
        table.add_column("Title")
        for story in stories:
            table.add_row(
                str(story.sequence_order),
                story.id[:8],
                _styled(story.status),
                story.final_estimate or "-",
                story.vote_summary or "",
                story.title,
            )
        self._console.print(table)

    def show_stats(self, title: str, stats: VoteStats) -> None:
        """Vote distribution plus the numeric summary."""
        table = Table(show_header=True, header_style="bold")
        table.add_column("Card")
        table.add_column("Votes", justify="right")
        for value, count in sorted(
            stats.vote_counts.items(), key=lambda kv: (-kv[1], kv[0])
        ):
            table.add_row(value, str(count))

        summary = [f"Total votes: {stats.total_votes}"]
        if stats.consensus:
            summary.append(f"[bold green]Consensus on {stats.consensus_value}[/]")
        else:
            summary.append("No consensus")
        summary.append(
            f"Average {_number(stats.average)}  Median {_number(stats.median)}  "
            f"Min {_number(stats.min)}  Max {_number(stats.max)}  "
            f"Range {_number(stats.range)}"
        )
        self._console.print(
            Panel(
                "\n".join(summary),
                title=f"[bold]{title}[/bold]",
                border_style="blue",
            )
        )
        if stats.vote_counts:
            self._console.print(table)

    def show_analytics(
        self, metrics: SessionMetrics, points: Sequence[VelocityPoint]
    ) -> None:
        """Headline metrics panel and a per-session velocity table."""
        lines = [
            f"Sessions: {metrics.total_sessions}",
            f"Stories: {metrics.completed_stories}/{metrics.total_stories} completed",
            f"Average velocity: {_number(metrics.average_velocity)} points",
            f"Average estimate: {_number(metrics.average_estimate)}",
            f"Consensus rate: {_number(metrics.consensus_rate)}%",
            f"Engagement: {_number(metrics.participant_engagement)}%",
        ]
        self._console.print(
            Panel(
                "\n".join(lines),
                title=f"[bold]Analytics ({metrics.time_range})[/bold]",
                border_style="blue",
            )
        )
        if not points:
            self._console.print("[dim]No sessions in range.[/dim]")
            return

        table = Table(show_header=True, header_style="bold")
        table.add_column("Created", style="dim")
        table.add_column("Session")
        table.add_column("Points", justify="right")
        table.add_column("Done", justify="right")
        for point in points:
            table.add_row(
                point.created_at.strftime("%Y-%m-%d"),
                point.session_name,
                _number(point.story_points),
                str(point.stories_completed),
            )
        self._console.print(table)

    def message(self, text: str) -> None:
        self._console.print(text)
