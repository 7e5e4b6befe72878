"""Analytics endpoints: headline metrics, velocity, trends, consensus, voters.

Every route takes ``?range=7d|30d|90d|all`` (default ``30d``).
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query, Request

from planpoker.api.deps import service_scope

router = APIRouter(prefix="/api/analytics", tags=["analytics"])

_RANGE = Query("30d", alias="range", description="7d, 30d, 90d or all")


@router.get("/metrics")
async def session_metrics(request: Request, time_range: str = _RANGE) -> dict[str, Any]:
    async with service_scope(request) as svc:
        metrics = await svc.session_metrics(time_range)
    return {"success": True, "metrics": metrics.to_dict()}


@router.get("/velocity")
async def velocity(request: Request, time_range: str = _RANGE) -> dict[str, Any]:
    """Story points per session, oldest first."""
    async with service_scope(request) as svc:
        points = await svc.velocity(time_range)
    return {"success": True, "velocity": [p.to_dict() for p in points]}


@router.get("/trends")
async def estimation_trends(
    request: Request, time_range: str = _RANGE
) -> dict[str, Any]:
    async with service_scope(request) as svc:
        trends = await svc.estimation_trends(time_range)
    return {"success": True, "trends": [t.to_dict() for t in trends]}


@router.get("/consensus")
async def consensus_analysis(
    request: Request, time_range: str = _RANGE
) -> dict[str, Any]:
    async with service_scope(request) as svc:
        rows = await svc.consensus_analysis(time_range)
    return {"success": True, "stories": [r.to_dict() for r in rows]}


@router.get("/participants")
async def participant_analytics(
    request: Request, time_range: str = _RANGE
) -> dict[str, Any]:
    async with service_scope(request) as svc:
        voters = await svc.participant_analytics(time_range)
    return {"success": True, "participants": [v.to_dict() for v in voters]}
