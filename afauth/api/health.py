"""Health check endpoints"""
import time
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from afauth.api.deps import get_store
from afauth.config import settings
from afauth.database import get_db
from afauth.services.ephemeral_store import EphemeralStore
from afauth.services.health_check import HealthChecker, HealthStatus, health_checker

router = APIRouter(prefix="/health", tags=["health"])

# Track startup time
STARTUP_TIME = time.time()


def get_health_checker() -> HealthChecker:
    return health_checker


@router.get("")
async def health_check(
    db: AsyncSession = Depends(get_db),
    store: EphemeralStore = Depends(get_store),
    checker: HealthChecker = Depends(get_health_checker),
):
    """
    Component health

    Returns 200 when healthy or degraded, 503 when a critical component
    (database, ephemeral store, encryption) is unhealthy
    """
    result = await checker.check_all(db, store)
    result["service"] = settings.SERVICE_NAME
    result["uptime_seconds"] = round(time.time() - STARTUP_TIME, 2)
    status_code = 503 if result["status"] == HealthStatus.UNHEALTHY.value else 200
    return JSONResponse(result, status_code=status_code)


@router.get("/ready")
async def readiness_check(
    db: AsyncSession = Depends(get_db),
    store: EphemeralStore = Depends(get_store),
    checker: HealthChecker = Depends(get_health_checker),
):
    """
    Readiness check - critical dependencies must all be healthy

    Returns 200 if ready to serve traffic, 503 if not ready
    """
    result = await checker.check_ready(db, store)
    return JSONResponse(result, status_code=200 if result["ready"] else 503)


@router.get("/live")
async def liveness_check() -> Dict[str, Any]:
    """
    Liveness check - verifies the process is alive

    Used by Kubernetes liveness probe
    """
    return {
        "status": "alive",
        "uptime_seconds": round(time.time() - STARTUP_TIME, 2),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
