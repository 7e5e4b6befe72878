"""Exception hierarchy for planpoker.

Every module imports from here. The hierarchy is:

    PlanPokerError
    ├── NotFoundError(entity, entity_id)
    ├── ValidationError
    ├── StateConflictError
    ├── StorageError
    └── ConfigError
"""

from __future__ import annotations


class PlanPokerError(Exception):
    """Base exception for all planpoker errors."""


class NotFoundError(PlanPokerError):
    """A referenced session, story, vote or participant does not resolve."""

    def __init__(self, entity: str, entity_id: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity.capitalize()} not found: {entity_id}")


class ValidationError(PlanPokerError):
    """Missing mandatory field, malformed session code, duplicate order."""


class StateConflictError(PlanPokerError):
    """Operation is not valid for the entity's current status."""


# ─── Storage Errors ───────────────────────────────────────────


class StorageError(PlanPokerError):
    """The underlying store rejected a read or write."""


# ─── Configuration Errors ─────────────────────────────────────


class ConfigError(PlanPokerError):
    """Invalid configuration."""
