"""Request-scoped helpers shared by the route modules."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import Header, Request

from planpoker.service import PokerService
from planpoker.store.repository import Repositories

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


@asynccontextmanager
async def service_scope(request: Request) -> AsyncIterator[PokerService]:
    """Open a database session and wrap it in a PokerService."""
    db_factory = request.app.state.db_factory
    async with db_factory() as session:
        yield PokerService(Repositories(session), request.app.state.config)


async def acting_user(x_user_id: str | None = Header(default=None)) -> str | None:
    """The caller's user id, taken from the ``X-User-Id`` header."""
    return x_user_id or None
