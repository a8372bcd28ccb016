from __future__ import annotations

from typing import Any, Dict, Literal

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from pumprewards_api.core.settings import settings
from pumprewards_api.observability.points import get_points_store

router = APIRouter()


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded"]
    scheduler: Dict[str, Any] = Field(default_factory=dict, description="Points job scheduler health")
    points: Dict[str, Any] = Field(default_factory=dict, description="Points engine counters")


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok", "environment": settings.environment}


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(request: Request) -> ReadinessPayload:
    scheduler = getattr(request.app.state, "points_job_scheduler", None)
    scheduler_health: Dict[str, Any] = {"running": False, "enabled": settings.points_job_scheduler_enabled}
    status: Literal["ready", "degraded"] = "ready"
    if scheduler is not None:
        scheduler_health.update(scheduler.health())
        if settings.points_job_scheduler_enabled and not scheduler.is_running:
            status = "degraded"
    return ReadinessPayload(
        status=status,
        scheduler=scheduler_health,
        points=get_points_store().snapshot().as_dict(),
    )
