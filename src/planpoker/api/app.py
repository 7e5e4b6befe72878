"""FastAPI application factory for the planpoker REST API."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from planpoker.core.errors import (
    NotFoundError,
    PlanPokerError,
    StateConflictError,
    StorageError,
    ValidationError,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from planpoker.config.schema import PlanPokerConfig

logger = logging.getLogger(__name__)

_STATUS_CODES: tuple[tuple[type[PlanPokerError], int], ...] = (
    (NotFoundError, 404),
    (ValidationError, 422),
    (StateConflictError, 409),
    (StorageError, 503),
)


def status_for(exc: PlanPokerError) -> int:
    """HTTP status for a planpoker error."""
    for error_type, status in _STATUS_CODES:
        if isinstance(exc, error_type):
            return status
    return 500


async def planpoker_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Report failures as ``{"success": false, "error": ...}``."""
    assert isinstance(exc, PlanPokerError)
    status = status_for(exc)
    if status >= 500:
        logger.exception("Error during %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status,
        content={"success": False, "error": str(exc)},
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifespan handler: set up the database on startup, dispose on shutdown."""
    from planpoker.cli.app import _create_db

    config: PlanPokerConfig = app.state.config
    factory, engine = await _create_db(config)

    app.state.db_factory = factory
    app.state.engine = engine

    yield

    await engine.dispose()


def create_app(config: PlanPokerConfig | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    from planpoker import __version__
    from planpoker.config.loader import load_config

    if config is None:
        config = load_config()

    app = FastAPI(
        title="planpoker",
        description="Planning poker estimation API",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config

    from fastapi.middleware.cors import CORSMiddleware

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(PlanPokerError, planpoker_error_handler)

    from planpoker.api.health import router as health_router
    from planpoker.api.routes.analytics import router as analytics_router
    from planpoker.api.routes.sessions import router as sessions_router
    from planpoker.api.routes.stories import router as stories_router
    from planpoker.api.routes.votes import router as votes_router

    app.include_router(sessions_router)
    app.include_router(stories_router)
    app.include_router(votes_router)
    app.include_router(analytics_router)
    app.include_router(health_router)

    return app
