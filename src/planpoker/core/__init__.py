"""Core errors shared by every layer."""

from planpoker.core.errors import (
    ConfigError,
    NotFoundError,
    PlanPokerError,
    StateConflictError,
    StorageError,
    ValidationError,
)

__all__ = [
    "ConfigError",
    "NotFoundError",
    "PlanPokerError",
    "StateConflictError",
    "StorageError",
    "ValidationError",
]
