"""
FastAPI route: health probes.

    GET /health         — full report
    GET /health/live    — process is up
    GET /health/ready   — 503 when any component is unhealthy
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from service_template.app.api.deps import get_context
from service_template.app.bootstrap import ServiceContext
from service_template.app.core.health import HealthReport, HealthStatus, run_health_check

router = APIRouter(prefix="/health", tags=["health"])


async def _report(context: ServiceContext) -> HealthReport:
    return await run_health_check(
        context.registry,
        context.loader,
        service=context.settings.APP_NAME,
        environment=context.settings.ENVIRONMENT,
    )


@router.get("")
async def health_check(context: ServiceContext = Depends(get_context)):
    """Deep health probe over every capability."""
    return (await _report(context)).to_dict()


@router.get("/live")
async def liveness():
    return {"status": "alive"}


@router.get("/ready")
async def readiness(context: ServiceContext = Depends(get_context)):
    report = await _report(context)
    if report.status == HealthStatus.UNHEALTHY:
        return JSONResponse(status_code=503, content=report.to_dict())
    return report.to_dict()
