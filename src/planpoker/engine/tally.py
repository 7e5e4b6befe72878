"""Vote tally: counts, consensus and numeric statistics.

Pure logic module. No IO.  Given a story's current votes, produces the
statistics shown when cards are revealed.  Non-numeric cards (``?``,
``coffee``, ``infinity`` ...) count toward totals and per-value counts but
are left out of the numeric statistics.
"""

from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterable

# Cards that never carry a numeric estimate, whatever float() thinks of them.
NON_NUMERIC_CARDS: frozenset[str] = frozenset({"?", "coffee", "☕", "infinity", "∞"})

# Decks offered by the estimation UI.
ESTIMATION_SCALES: dict[str, tuple[str, ...]] = {
    "poker": (
        "0", "0.5", "1", "2", "3", "5", "8", "13", "20", "40", "100", "?", "coffee",
    ),
    "fibonacci": (
        "1", "2", "3", "5", "8", "13", "21", "34", "55", "89", "?", "infinity",
    ),
    "tshirt": ("XS", "S", "M", "L", "XL", "XXL", "?", "coffee"),
}  # fmt: skip


@dataclass(frozen=True, slots=True)
class VoteStats:
    """Aggregated view of a story's current votes."""

    total_votes: int = 0
    vote_counts: dict[str, int] = field(default_factory=dict)
    consensus: bool = False
    consensus_value: str | None = None
    average: float | None = None
    median: float | None = None
    min: float | None = None
    max: float | None = None
    range: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Transport shape: plain dict with the same keys."""
        return {
            "total_votes": self.total_votes,
            "vote_counts": dict(self.vote_counts),
            "consensus": self.consensus,
            "consensus_value": self.consensus_value,
            "average": self.average,
            "median": self.median,
            "min": self.min,
            "max": self.max,
            "range": self.range,
        }


def round_half_up(value: float, places: int = 0) -> float:
    """Round half away from zero (``2.345 -> 2.35``, ``-0.5 -> -1``)."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def parse_vote_value(value: str) -> float | None:
    """Return the numeric value of a card, or None if it has none."""
    token = value.strip()
    if token.lower() in NON_NUMERIC_CARDS:
        return None
    try:
        number = float(token)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return number


def _median(ordered: list[float]) -> float:
    mid = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[mid - 1] + ordered[mid]) / 2
    return ordered[mid]


def _vote_value(vote: Any) -> str:
    return vote if isinstance(vote, str) else str(vote.vote_value)


def tally(votes: Iterable[Any]) -> VoteStats:
    """Aggregate current votes into :class:`VoteStats`.

    Args:
        votes: Current votes for one story.  Either objects with a
            ``vote_value`` attribute or the raw card strings.

    Returns:
        Counts, consensus flag and numeric statistics.  The numeric
        fields are ``None`` when no vote parses as a number.
    """
    values = [_vote_value(v) for v in votes]
    counts = Counter(values)

    consensus = len(values) > 0 and len(counts) == 1
    consensus_value = values[0] if consensus else None

    numeric = sorted(n for n in map(parse_vote_value, values) if n is not None)
    if not numeric:
        return VoteStats(
            total_votes=len(values),
            vote_counts=dict(counts),
            consensus=consensus,
            consensus_value=consensus_value,
        )

    low, high = numeric[0], numeric[-1]
    return VoteStats(
        total_votes=len(values),
        vote_counts=dict(counts),
        consensus=consensus,
        consensus_value=consensus_value,
        average=round_half_up(math.fsum(numeric) / len(numeric), 2),
        median=_median(numeric),
        min=low,
        max=high,
        range=high - low,
    )


def is_valid_card(value: str, scale: str) -> bool:
    """Whether *value* is one of the cards in the named deck."""
    try:
        deck = ESTIMATION_SCALES[scale]
    except KeyError:
        return False
    return value in deck or value.strip().lower() in NON_NUMERIC_CARDS
