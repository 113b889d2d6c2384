"""
API Routes.
"""
from .health import router as health_router
from .jobs import router as jobs_router
from .queue import router as queue_router
from .credits import router as credits_router
from .surge import router as surge_router
from .admin import router as admin_router

__all__ = [
    "health_router",
    "jobs_router",
    "queue_router",
    "credits_router",
    "surge_router",
    "admin_router",
]
