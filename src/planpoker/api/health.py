"""Liveness and readiness checks."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from sqlalchemy import func, select

from planpoker import __version__
from planpoker.store.models import PlanningSession

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["health"])

_BOOTED_AT = time.monotonic()


async def _sessions_by_status(db: AsyncSession) -> dict[str, int]:
    stmt = select(PlanningSession.status, func.count()).group_by(
        PlanningSession.status
    )
    rows = (await db.execute(stmt)).all()
    return {status: count for status, count in rows}


@router.get("/api/health")
async def health() -> dict[str, str]:
    """Liveness check; never touches the database."""
    return {"status": "ok"}


@router.get("/api/health/detailed")
async def health_detailed(request: Request) -> dict[str, Any]:
    """Readiness check.

    Reports ``degraded`` instead of failing when the store is unreachable,
    so load balancers can tell a slow database from a dead process.
    """
    report: dict[str, Any] = {
        "status": "ok",
        "version": __version__,
        "uptime_seconds": round(time.monotonic() - _BOOTED_AT, 1),
    }
    store: dict[str, Any]
    try:
        async with request.app.state.db_factory() as db:
            store = {"status": "ok", "sessions": await _sessions_by_status(db)}
    except Exception as e:  # any driver failure just marks the report degraded
        store = {"status": "error", "detail": str(e)}
        report["status"] = "degraded"
    report["components"] = {"database": store}
    return report
