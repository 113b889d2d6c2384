"""
Shared dependencies for API routes.
"""
import hmac
import logging
from typing import Optional

from fastapi import Header, Request

from creditgate.admission import RequestContext
from creditgate.container import ServiceContainer
from creditgate.queue import AdmissionError, QueueFacade

from .exceptions import ForbiddenError, ServiceUnavailableError

logger = logging.getLogger(__name__)


def get_container(request: Request) -> ServiceContainer:
    """Container wired at app creation."""
    return request.app.state.container


def get_queue(request: Request) -> QueueFacade:
    """Queue facade, initialized on first use."""
    return get_container(request).ensure_queue()


async def get_request_context(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    x_organization_id: Optional[str] = Header(None, alias="X-Organization-Id"),
) -> RequestContext:
    """Caller identity as forwarded by the authenticating gateway."""
    return RequestContext(
        user_id=x_user_id or None,
        organization_id=x_organization_id or None,
    )


async def require_tenant(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    x_organization_id: Optional[str] = Header(None, alias="X-Organization-Id"),
) -> str:
    """Admission key for read endpoints. Raises 401 when absent."""
    context = await get_request_context(x_user_id, x_organization_id)
    tenant_id = context.admission_key
    if not tenant_id:
        raise AdmissionError()
    return tenant_id


async def verify_admin_secret(
    request: Request,
    x_admin_secret: Optional[str] = Header(None, alias="X-Admin-Secret"),
) -> bool:
    """
    Dependency to verify admin access via X-Admin-Secret header.
    Raises 503 if admin access is not configured, 403 if invalid.
    """
    expected_secret = get_container(request).config.admin_secret

    if not expected_secret:
        logger.warning("Admin request rejected: ADMIN_SECRET not configured")
        raise ServiceUnavailableError("Admin API", code="ADMIN_DISABLED", retryable=False)

    if not x_admin_secret or not hmac.compare_digest(x_admin_secret, expected_secret):
        logger.warning("Admin request with missing or invalid X-Admin-Secret")
        raise ForbiddenError("Invalid admin credentials", code="INVALID_ADMIN_SECRET")

    return True
