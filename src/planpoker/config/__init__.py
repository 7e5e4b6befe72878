"""Configuration loading and validation."""

from planpoker.config.loader import load_config
from planpoker.config.schema import (
    APIConfig,
    DatabaseConfig,
    GeneralConfig,
    LoggingConfig,
    PlanPokerConfig,
    VotingConfig,
)

__all__ = [
    "APIConfig",
    "DatabaseConfig",
    "GeneralConfig",
    "LoggingConfig",
    "PlanPokerConfig",
    "VotingConfig",
    "load_config",
]
