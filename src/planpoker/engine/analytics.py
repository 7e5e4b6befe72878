"""Estimation analytics over sessions, stories and current votes.

Pure logic module. No IO.  The service loads an :class:`AnalyticsSnapshot`
for a time window; everything here is computed from that snapshot.

Story points are the numeric final estimates of completed stories; cards
without a numeric value (``?``, ``coffee``, t-shirt sizes ...) never count
toward points or averages.
"""

from __future__ import annotations

import statistics
from collections import defaultdict
from dataclasses import asdict, dataclass
from datetime import UTC, date, datetime, timedelta
from typing import TYPE_CHECKING, Any

from planpoker.core.errors import ValidationError
from planpoker.engine.story import StoryStatus
from planpoker.engine.tally import parse_vote_value, round_half_up

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

# range name -> days back from now (None: no lower bound)
TIME_RANGES: dict[str, int | None] = {"7d": 7, "30d": 30, "90d": 90, "all": None}

# Trend buckets get coarser as the window grows.
_TREND_PERIOD = {"7d": "day", "30d": "week", "90d": "month", "all": "month"}


def window_start(time_range: str, now: datetime) -> datetime | None:
    """Lower bound of *time_range* relative to *now*, None for ``all``."""
    try:
        days = TIME_RANGES[time_range]
    except KeyError:
        known = ", ".join(TIME_RANGES)
        msg = f"Unknown time range {time_range!r} (expected one of: {known})"
        raise ValidationError(msg) from None
    return None if days is None else now - timedelta(days=days)


def complexity(points: float) -> str:
    if points <= 3:
        return "Low"
    if points <= 8:
        return "Medium"
    return "High"


# ── Results ───────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class AnalyticsSnapshot:
    """Sessions created in a window plus everything they own."""

    sessions: Sequence[Any] = ()
    stories: Sequence[Any] = ()
    votes: Sequence[Any] = ()
    participants: Sequence[Any] = ()


@dataclass(frozen=True, slots=True)
class SessionMetrics:
    time_range: str
    total_sessions: int = 0
    total_stories: int = 0
    completed_stories: int = 0
    average_velocity: float = 0.0
    consensus_rate: float = 0.0
    average_estimate: float | None = None
    participant_engagement: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class VelocityPoint:
    """Points delivered by one session."""

    session_id: str
    session_name: str
    created_at: datetime
    story_points: float
    stories_completed: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class StoryConsensus:
    session_id: str
    session_name: str
    story_id: str
    story_title: str
    status: str
    consensus_achieved: bool
    voting_rounds: int
    final_estimate: str | None
    std_dev: float | None
    voter_count: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class EstimationTrend:
    period: str
    average_points: float
    complexity: str
    session_count: int
    story_count: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class ParticipantStats:
    """One voter's record over the window's current votes."""

    user_id: str
    total_votes: int
    sessions: int
    consensus_rate: float
    average_estimate: float | None
    participation_rate: float
    accuracy_score: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ── Helpers ───────────────────────────────────────────────────


def _percent(part: int, whole: int) -> float:
    if whole == 0:
        return 0.0
    return round_half_up(100 * part / whole, 1)


def _mean(values: Iterable[float]) -> float | None:
    collected = list(values)
    if not collected:
        return None
    return round_half_up(statistics.fmean(collected), 2)


def _story_points(story: Any) -> float | None:
    """Numeric final estimate of a completed story, else None."""
    if story.status != StoryStatus.COMPLETED.value or not story.final_estimate:
        return None
    return parse_vote_value(story.final_estimate)


def _instant(moment: datetime) -> datetime:
    """Naive UTC; rows read back from SQLite lose their tzinfo."""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(UTC).replace(tzinfo=None)


def _by_key(items: Iterable[Any], key: str) -> dict[str, list[Any]]:
    grouped: dict[str, list[Any]] = defaultdict(list)
    for item in items:
        grouped[getattr(item, key)].append(item)
    return grouped


def _period_key(day: date, period: str) -> str:
    if period == "day":
        return day.isoformat()
    if period == "week":
        # Weeks start on Sunday.
        return (day - timedelta(days=(day.weekday() + 1) % 7)).isoformat()
    return f"{day.year:04d}-{day.month:02d}"


# ── Computations ──────────────────────────────────────────────


def velocity(snapshot: AnalyticsSnapshot) -> list[VelocityPoint]:
    """Story points and completed stories per session, oldest first."""
    stories = _by_key(snapshot.stories, "session_id")
    points = []
    for session in snapshot.sessions:
        owned = stories.get(session.id, [])
        numeric = [p for p in map(_story_points, owned) if p is not None]
        points.append(
            VelocityPoint(
                session_id=session.id,
                session_name=session.name,
                created_at=session.created_at,
                story_points=round_half_up(sum(numeric), 2),
                stories_completed=sum(
                    s.status == StoryStatus.COMPLETED.value for s in owned
                ),
            )
        )
    points.sort(key=lambda p: _instant(p.created_at))
    return points


def _engagement(snapshot: AnalyticsSnapshot) -> float:
    """Average share of expected votes actually cast, per session.

    Expected votes are every non-observer participant on every story
    that received at least one vote.
    """
    votes = _by_key(snapshot.votes, "session_id")
    participants = _by_key(snapshot.participants, "session_id")
    rates = []
    for session in snapshot.sessions:
        cast = votes.get(session.id, [])
        voters = {
            p.user_id
            for p in participants.get(session.id, [])
            if p.role != "observer"
        }
        voted_stories = {v.story_id for v in cast}
        if not voters or not voted_stories:
            continue
        expected = len(voters) * len(voted_stories)
        rates.append(min(100.0, 100 * len(cast) / expected))
    if not rates:
        return 0.0
    return round_half_up(statistics.fmean(rates), 1)


def session_metrics(snapshot: AnalyticsSnapshot, time_range: str) -> SessionMetrics:
    """Headline numbers for the window."""
    completed = [
        s for s in snapshot.stories if s.status == StoryStatus.COMPLETED.value
    ]
    per_session = [p.story_points for p in velocity(snapshot)]
    return SessionMetrics(
        time_range=time_range,
        total_sessions=len(snapshot.sessions),
        total_stories=len(snapshot.stories),
        completed_stories=len(completed),
        average_velocity=_mean(per_session) or 0.0,
        consensus_rate=_percent(
            sum(bool(s.consensus_achieved) for s in completed), len(completed)
        ),
        average_estimate=_mean(
            p for p in map(_story_points, completed) if p is not None
        ),
        participant_engagement=_engagement(snapshot),
    )


def consensus_analysis(snapshot: AnalyticsSnapshot) -> list[StoryConsensus]:
    """Per-story agreement, newest session first, stories in board order."""
    sessions = sorted(
        snapshot.sessions, key=lambda s: _instant(s.created_at), reverse=True
    )
    stories = _by_key(snapshot.stories, "session_id")
    votes = _by_key(snapshot.votes, "story_id")
    rows = []
    for session in sessions:
        for story in sorted(
            stories.get(session.id, []), key=lambda s: s.sequence_order
        ):
            cast = votes.get(story.id, [])
            numeric = [
                n for n in (parse_vote_value(v.vote_value) for v in cast)
                if n is not None
            ]
            rows.append(
                StoryConsensus(
                    session_id=session.id,
                    session_name=session.name,
                    story_id=story.id,
                    story_title=story.title,
                    status=story.status,
                    consensus_achieved=bool(story.consensus_achieved),
                    # A voter's current row carries their latest version.
                    voting_rounds=max((v.version for v in cast), default=0),
                    final_estimate=story.final_estimate,
                    std_dev=(
                        round_half_up(statistics.pstdev(numeric), 2)
                        if numeric
                        else None
                    ),
                    voter_count=len(cast),
                )
            )
    return rows


def estimation_trends(
    points: Sequence[VelocityPoint], time_range: str
) -> list[EstimationTrend]:
    """Bucket velocity by day, week or month depending on the window."""
    period = _TREND_PERIOD.get(time_range, "month")
    buckets: dict[str, list[VelocityPoint]] = defaultdict(list)
    for point in points:
        buckets[_period_key(_instant(point.created_at).date(), period)].append(point)
    trends = []
    for key in sorted(buckets):
        bucket = buckets[key]
        average = round_half_up(statistics.fmean(p.story_points for p in bucket), 2)
        trends.append(
            EstimationTrend(
                period=key,
                average_points=average,
                complexity=complexity(average),
                session_count=len(bucket),
                story_count=sum(p.stories_completed for p in bucket),
            )
        )
    return trends


def participant_analytics(snapshot: AnalyticsSnapshot) -> list[ParticipantStats]:
    """Per-voter figures, busiest voters first.

    ``participation_rate`` compares a voter's votes with the stories that
    received any vote in the sessions they voted in.  ``accuracy_score``
    is the share of their votes within one point of a consensus estimate.
    """
    stories = {s.id: s for s in snapshot.stories}
    voted_per_session: dict[str, set[str]] = defaultdict(set)
    for vote in snapshot.votes:
        voted_per_session[vote.session_id].add(vote.story_id)

    result = []
    for user_id, cast in _by_key(snapshot.votes, "voter_id").items():
        session_ids = frozenset(v.session_id for v in cast)
        opportunities = sum(len(voted_per_session[s]) for s in session_ids)
        on_consensus = 0
        accurate = 0
        for vote in cast:
            story = stories.get(vote.story_id)
            if story is None or not story.consensus_achieved:
                continue
            on_consensus += 1
            mine = parse_vote_value(vote.vote_value)
            final = _story_points(story)
            if mine is not None and final is not None and abs(mine - final) <= 1:
                accurate += 1
        result.append(
            ParticipantStats(
                user_id=user_id,
                total_votes=len(cast),
                sessions=len(session_ids),
                consensus_rate=_percent(on_consensus, len(cast)),
                average_estimate=_mean(
                    n
                    for n in (parse_vote_value(v.vote_value) for v in cast)
                    if n is not None
                ),
                participation_rate=_percent(len(cast), opportunities),
                accuracy_score=_percent(accurate, len(cast)),
            )
        )
    result.sort(key=lambda p: (-p.total_votes, p.user_id))
    return result
