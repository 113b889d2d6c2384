"""
FastAPI Application - Credit-gated Job Admission Gateway.
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from creditgate.container import ServiceContainer, get_container
from creditgate.queue import QueueUnavailableError

from .routes import (
    health_router,
    jobs_router,
    queue_router,
    credits_router,
    surge_router,
    admin_router,
)
from .exceptions import (
    APIError,
    DOMAIN_ERRORS,
    api_error_handler,
    domain_error_handler,
    generic_exception_handler,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Application lifespan handler."""
    container: ServiceContainer = app.state.container

    logger.info("=" * 60)
    logger.info("Starting CreditGate API...")
    logger.info("=" * 60)

    container.config.log_status()

    try:
        container.ensure_queue()
    except QueueUnavailableError as e:
        logger.warning(f"Queue engine not reachable at startup, will retry on first request: {e}")

    yield

    logger.info("Shutting down CreditGate API...")
    container.facade.stop()


def create_app(
    container: Optional[ServiceContainer] = None,
    debug: Optional[bool] = None,
) -> FastAPI:
    """Create and configure FastAPI application."""
    container = container or get_container()

    app = FastAPI(
        title="CreditGate API",
        description="Credit-gated, surge-priced job admission over a durable queue",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
        debug=container.config.debug if debug is None else debug,
    )
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(APIError, api_error_handler)
    for error_type in DOMAIN_ERRORS:
        app.add_exception_handler(error_type, domain_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(health_router)
    app.include_router(jobs_router)
    app.include_router(queue_router)
    app.include_router(credits_router)
    app.include_router(surge_router)
    app.include_router(admin_router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "creditgate.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info",
    )
