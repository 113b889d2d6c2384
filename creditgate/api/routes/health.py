"""
Health check endpoints.
"""
import logging
from datetime import datetime

from fastapi import APIRouter, Depends, status

from creditgate.container import ServiceContainer

from ..schemas import HealthResponse
from ..dependencies import get_container

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


def check_queue_connection(container: ServiceContainer) -> bool:
    """Check if the queue engine is reachable."""
    try:
        container.ensure_queue().get_queue_stats()
        return True
    except Exception as e:
        logger.warning(f"Queue connection check failed: {e}")
        return False


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Health Check",
    description="Check API and queue engine health status.",
)
def health_check(container: ServiceContainer = Depends(get_container)) -> HealthResponse:
    """
    Health check endpoint.
    Returns service status and connectivity info.
    """
    queue_ok = check_queue_connection(container)

    return HealthResponse(
        status="healthy" if queue_ok else "degraded",
        service="creditgate",
        version="1.0.0",
        queue_engine=container.config.queue.engine,
        queue_connected=queue_ok,
        storage_backend=container.config.storage_backend,
        timestamp=datetime.utcnow(),
    )


@router.get(
    "/health/live",
    status_code=status.HTTP_200_OK,
    summary="Liveness Check",
    description="Kubernetes liveness check endpoint.",
)
async def liveness() -> dict:
    """Liveness check - always returns OK if app is running."""
    return {"status": "alive"}


@router.get(
    "/health/ready",
    status_code=status.HTTP_200_OK,
    summary="Readiness Check",
    description="Kubernetes readiness check endpoint.",
)
def readiness(container: ServiceContainer = Depends(get_container)) -> dict:
    """Readiness check - checks if jobs can be admitted."""
    if not check_queue_connection(container):
        return {"status": "not_ready", "reason": "Queue engine unavailable"}

    return {"status": "ready"}
