"""Pydantic models for planpoker configuration."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from planpoker.engine.tally import ESTIMATION_SCALES


class GeneralConfig(BaseModel):
    """General engine settings."""

    default_timebox_minutes: int = 30
    session_code_attempts: int = 5
    list_limit: int = 50


class VotingConfig(BaseModel):
    """Voting rules."""

    scale: str = "poker"
    enforce_scale: bool = False

    @field_validator("scale")
    @classmethod
    def known_deck(cls, value: str) -> str:
        if value not in ESTIMATION_SCALES:
            known = ", ".join(sorted(ESTIMATION_SCALES))
            msg = f"unknown deck {value!r} (expected one of: {known})"
            raise ValueError(msg)
        return value


class DatabaseConfig(BaseModel):
    """Database connection settings."""

    url: str = "sqlite+aiosqlite:///~/.local/share/planpoker/planpoker.db"
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 3600


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    file: str = ""


class APIConfig(BaseModel):
    """REST API server settings."""

    host: str = "127.0.0.1"
    port: int = 8080
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])


class PlanPokerConfig(BaseModel):
    """Top-level configuration for planpoker."""

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    voting: VotingConfig = Field(default_factory=VotingConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    api: APIConfig = Field(default_factory=APIConfig)
