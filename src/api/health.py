"""Health check endpoints.

/health/live   - Liveness probe: is the process up?
/health/ready  - Readiness probe: can we serve traffic? (DB, event bus, queue)

These are public endpoints - no auth required.
"""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from src.services.container import Services, get_services

router = APIRouter(prefix="/health", tags=["health"])


@router.get("/live")
async def liveness() -> dict:
    """Liveness probe - always returns 200 if the process is running."""
    return {"status": "ok", "timestamp": datetime.now(UTC).isoformat()}


@router.get("/ready")
async def readiness(services: Services = Depends(get_services)) -> JSONResponse:
    """Readiness probe - 503 while any dependency is unreachable."""
    checks = await services.readiness()
    is_ready = all(value == "ok" for value in checks.values())
    return JSONResponse(
        status_code=200 if is_ready else 503,
        content={
            "status": "ready" if is_ready else "not_ready",
            **checks,
            "timestamp": datetime.now(UTC).isoformat(),
        },
    )
