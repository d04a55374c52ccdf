# chapter_portal/routers/health.py
# Health check endpoints for monitoring and load balancers
# Provides liveness and readiness checks

import time
from typing import Dict, Any
from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel

from chapter_portal.middleware.circuit_breaker import CircuitState, breaker_states
from chapter_portal.routers.deps import get_context
from chapter_portal.services.context import AppContext

router = APIRouter(tags=["Health"])


class HealthStatus(BaseModel):
    """Health check response model."""
    status: str  # "healthy", "degraded", "unhealthy"
    timestamp: float
    version: str = "1.0.0"
    uptime_seconds: int = 0
    checks: Dict[str, Dict[str, Any]] = {}


class ComponentHealth(BaseModel):
    """Individual component health."""
    status: str
    message: str = ""


def check_backends() -> ComponentHealth:
    """
    Spreadsheet reachability as seen by the circuit breakers.
    No request is sent; an open breaker means recent calls kept failing.
    """
    states = breaker_states()
    opened = [name for name, state in states.items() if state == CircuitState.OPEN.value]
    probing = [name for name, state in states.items() if state == CircuitState.HALF_OPEN.value]
    if opened:
        return ComponentHealth(status="unhealthy", message=f"Circuit open: {', '.join(sorted(opened))}")
    if probing:
        return ComponentHealth(status="degraded", message=f"Recovering: {', '.join(sorted(probing))}")
    return ComponentHealth(status="healthy", message=f"{len(states)} backends seen")


def check_cache(ctx: AppContext) -> ComponentHealth:
    hits, misses = ctx.cache.stats()
    return ComponentHealth(status="healthy", message=f"{len(ctx.cache.keys())} entries, {hits} hits, {misses} misses")


def check_live_updates(ctx: AppContext) -> ComponentHealth:
    return ComponentHealth(status="healthy", message=f"{ctx.hub.connection_count} subscribers")


@router.get("/health", response_model=HealthStatus)
async def health_check(response: Response, ctx: AppContext = Depends(get_context)):
    """
    Full health check endpoint.
    Returns status of all components.
    """
    checks = {
        "backends": check_backends().model_dump(),
        "cache": check_cache(ctx).model_dump(),
        "live_updates": check_live_updates(ctx).model_dump(),
    }

    statuses = [c["status"] for c in checks.values()]
    if "unhealthy" in statuses:
        overall_status = "unhealthy"
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    elif "degraded" in statuses:
        overall_status = "degraded"
    else:
        overall_status = "healthy"

    return HealthStatus(
        status=overall_status,
        timestamp=time.time(),
        uptime_seconds=ctx.uptime_seconds,
        checks=checks,
    )


@router.get("/health/live")
async def liveness():
    """
    Liveness check.
    Returns 200 if the application is running.
    Does NOT check external dependencies.
    """
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness(response: Response):
    """
    Readiness check.
    Returns 503 while any backend circuit is open.
    """
    backends = check_backends()
    if backends.status == "unhealthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "not_ready", "reason": backends.message}
    return {"status": "ready"}
