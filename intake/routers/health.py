"""
Health check and monitoring endpoints.
"""

import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from intake.config import Settings, get_settings
from intake.models import HealthStatus
from intake.storage import LocalStorage, get_storage

router = APIRouter(tags=["monitoring"])

# Track application start time
START_TIME = time.time()


async def _storage_healthy(storage: LocalStorage, settings: Settings) -> bool:
    return await storage.health_check(settings.storage_path, settings.audit_index_path)


@router.get("/health", response_model=HealthStatus)
async def health_check(
    settings: Settings = Depends(get_settings),
    storage: LocalStorage = Depends(get_storage)
):
    """
    Health check endpoint.

    Reports whether both storage roots (uploaded files and audit logs)
    are writable, plus uptime and version.
    """
    healthy = await _storage_healthy(storage, settings)

    return HealthStatus(
        status="healthy" if healthy else "unhealthy",
        version=settings.app_version,
        storage="writable" if healthy else "unavailable",
        uptime_seconds=time.time() - START_TIME,
        timestamp=datetime.now(timezone.utc)
    )


@router.get("/health/live")
async def liveness_check():
    """
    Kubernetes liveness probe.

    Simple check that the application is running.
    Does not check dependencies.
    """
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness_check(
    settings: Settings = Depends(get_settings),
    storage: LocalStorage = Depends(get_storage)
):
    """
    Kubernetes readiness probe.

    Ready once both storage roots are writable.
    """
    if not await _storage_healthy(storage, settings):
        return Response(
            content='{"status": "not ready", "reason": "storage unavailable"}',
            status_code=503,
            media_type="application/json"
        )

    return {"status": "ready"}


@router.get("/metrics")
async def metrics(settings: Settings = Depends(get_settings)):
    """
    Prometheus metrics endpoint.

    Includes audit events recorded, audit write failures and audit log
    load failures.
    """
    if not settings.enable_metrics:
        return Response(status_code=404)

    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


@router.get("/info")
async def info(settings: Settings = Depends(get_settings)):
    """
    Service information endpoint.

    Returns basic information about the running service.
    """
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "uptime_seconds": time.time() - START_TIME
    }
