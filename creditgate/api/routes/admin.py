"""
Admin endpoints.
Protected by X-Admin-Secret header.
"""
import logging

from fastapi import APIRouter, Depends

from creditgate.container import ServiceContainer

from ..dependencies import get_container, verify_admin_secret
from ..exceptions import ValidationError
from ..schemas import (
    AddCreditsRequest,
    AddCreditsResponse,
    DefaultBalanceRequest,
    DefaultBalanceResponse,
    SurgeConfigResponse,
    SurgeConfigUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
    dependencies=[Depends(verify_admin_secret)],
)


@router.get(
    "/surge-config",
    response_model=SurgeConfigResponse,
    summary="Get Surge Config",
)
def get_surge_config(container: ServiceContainer = Depends(get_container)) -> SurgeConfigResponse:
    return SurgeConfigResponse.from_config(container.calculator.get_config())


@router.put(
    "/surge-config",
    response_model=SurgeConfigResponse,
    summary="Update Surge Config",
    description="Partially update the surge window. The change applies atomically.",
)
def update_surge_config(
    request: SurgeConfigUpdate,
    container: ServiceContainer = Depends(get_container),
) -> SurgeConfigResponse:
    changes = request.model_dump(exclude_none=True)
    if not changes:
        raise ValidationError("No surge config fields given")

    try:
        config = container.calculator.update_config(**changes)
    except ValueError as e:
        raise ValidationError("Invalid surge config", detail=str(e)) from e

    logger.info(f"Admin updated surge config: {changes}")
    return SurgeConfigResponse.from_config(config)


@router.put(
    "/default-balance",
    response_model=DefaultBalanceResponse,
    summary="Set Default Balance",
    description="Baseline balance for tenants not seen yet.",
)
def set_default_balance(
    request: DefaultBalanceRequest,
    container: ServiceContainer = Depends(get_container),
) -> DefaultBalanceResponse:
    previous = container.ledger.default_balance
    container.ledger.set_default_balance(request.default_balance)

    return DefaultBalanceResponse(
        previous_default_balance=previous,
        default_balance=container.ledger.default_balance,
    )


@router.post(
    "/credits/{tenant_id}",
    response_model=AddCreditsResponse,
    summary="Add Credits to Tenant",
    description="Top up a tenant's balance. Admin only.",
)
def add_credits(
    tenant_id: str,
    request: AddCreditsRequest,
    container: ServiceContainer = Depends(get_container),
) -> AddCreditsResponse:
    ledger = container.ledger
    previous_balance = ledger.check_balance(tenant_id)

    ledger.credit_credits(
        tenant_id,
        request.amount,
        description=request.description,
        metadata={"source": "admin"},
    )
    new_balance = ledger.check_balance(tenant_id)

    logger.info(
        f"Admin added {request.amount} credits to tenant {tenant_id}: "
        f"{previous_balance} -> {new_balance}"
    )

    return AddCreditsResponse(
        tenant_id=tenant_id,
        previous_balance=previous_balance,
        amount=request.amount,
        new_balance=new_balance,
        message=f"Successfully added {request.amount} credits",
    )
