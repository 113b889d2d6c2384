"""
Surge pricing endpoints.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from creditgate.container import ServiceContainer
from creditgate.pricing import SurgeBanner, SurgeNotice, SurgeNotification, SurgePricingInfo

from ..dependencies import get_container
from ..schemas import PriceQuoteResponse

router = APIRouter(prefix="/surge-pricing", tags=["Surge Pricing"])


def _resolve_date(date: Optional[datetime], container: ServiceContainer) -> datetime:
    return date if date is not None else container.clock()


@router.get(
    "",
    response_model=SurgePricingInfo,
    summary="Surge Pricing Info",
    description="Surge state, multiplier and window for a date (default: now).",
)
def get_surge_pricing_info(
    date: Optional[datetime] = Query(None, description="ISO 8601 timestamp"),
    container: ServiceContainer = Depends(get_container),
) -> SurgePricingInfo:
    return container.calculator.get_surge_pricing_info(_resolve_date(date, container))


@router.get(
    "/price",
    response_model=PriceQuoteResponse,
    summary="Price Quote",
    description="Base price scaled by the multiplier for a date.",
)
def get_price_quote(
    base: float = Query(..., ge=0, description="Base price"),
    date: Optional[datetime] = Query(None, description="ISO 8601 timestamp"),
    container: ServiceContainer = Depends(get_container),
) -> PriceQuoteResponse:
    when = _resolve_date(date, container)
    calculator = container.calculator

    return PriceQuoteResponse(
        base_price=base,
        multiplier=calculator.get_surge_multiplier(when),
        price=calculator.calculate_price(base, when),
        is_surge=calculator.is_surge_period(when),
        date=when,
    )


@router.get(
    "/notification",
    response_model=Optional[SurgeNotification],
    summary="Surge Notification",
    description="Banner notice for an active or upcoming surge window, null otherwise.",
)
def get_surge_notification(
    date: Optional[datetime] = Query(None, description="ISO 8601 timestamp"),
    container: ServiceContainer = Depends(get_container),
) -> Optional[SurgeNotification]:
    return container.calculator.get_notification(_resolve_date(date, container))


@router.get(
    "/banner",
    response_model=Optional[SurgeBanner],
    summary="Surge Banner",
    description="Warning banner while surge is active, top-up hint in the week before, null otherwise.",
)
def get_surge_banner(
    date: Optional[datetime] = Query(None, description="ISO 8601 timestamp"),
    container: ServiceContainer = Depends(get_container),
) -> Optional[SurgeBanner]:
    return container.calculator.get_banner_info(_resolve_date(date, container))


@router.get(
    "/notifications",
    response_model=List[SurgeNotice],
    summary="Surge Notifications",
    description="Active surge notices for a date (default: now).",
)
def get_surge_notifications(
    date: Optional[datetime] = Query(None, description="ISO 8601 timestamp"),
    container: ServiceContainer = Depends(get_container),
) -> List[SurgeNotice]:
    return container.calculator.get_notifications(_resolve_date(date, container))
