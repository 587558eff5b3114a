"""
Health check endpoints for monitoring and orchestration.
Provides liveness, readiness, and startup probes.
"""
from datetime import datetime

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from rds_operator.config.settings import settings

router = APIRouter()


def _controller(request: Request):
    return getattr(request.app.state, "controller", None)


@router.get("/")
async def health_check():
    """
    Basic health check endpoint.
    Returns current status and version.
    """
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "provider": settings.provider,
        "timestamp": datetime.utcnow().isoformat(),
    }


@router.get("/live")
async def liveness():
    """
    Kubernetes liveness probe.
    Indicates whether the process should be restarted.
    """
    return {"status": "alive", "timestamp": datetime.utcnow().isoformat()}


@router.get("/ready")
async def readiness(request: Request):
    """
    Kubernetes readiness probe.
    Ready once the controller has listed Databases at least once.
    """
    controller = _controller(request)
    if controller is None or not controller.running or not controller.synced:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "not_ready",
                "controller": controller.status() if controller else None,
                "timestamp": datetime.utcnow().isoformat(),
            },
        )

    return {
        "status": "ready",
        "controller": controller.status(),
        "timestamp": datetime.utcnow().isoformat(),
    }


@router.get("/startup")
async def startup(request: Request):
    """
    Kubernetes startup probe.
    Indicates whether the controller has been started.
    """
    controller = _controller(request)
    if controller is None or not controller.running:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "starting",
                "timestamp": datetime.utcnow().isoformat(),
            },
        )

    return {"status": "started", "timestamp": datetime.utcnow().isoformat()}
