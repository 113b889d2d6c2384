"""
Tenant credit endpoints.
"""
from fastapi import APIRouter, Depends, Query

from creditgate.container import ServiceContainer

from ..dependencies import get_container, require_tenant
from ..schemas import BalanceResponse, HistoryResponse, TransactionResponse

router = APIRouter(prefix="/credits", tags=["Credits"])


@router.get(
    "/balance",
    response_model=BalanceResponse,
    summary="Credit Balance",
    description="Balance and lifetime totals for the calling tenant.",
)
def get_balance(
    tenant_id: str = Depends(require_tenant),
    container: ServiceContainer = Depends(get_container),
) -> BalanceResponse:
    return BalanceResponse(**container.ledger.get_balance_summary(tenant_id))


@router.get(
    "/history",
    response_model=HistoryResponse,
    summary="Transaction History",
    description="Ledger entries for the calling tenant, newest first.",
)
def get_history(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    tenant_id: str = Depends(require_tenant),
    container: ServiceContainer = Depends(get_container),
) -> HistoryResponse:
    entries = container.ledger.get_transaction_history(tenant_id, limit=limit, offset=offset)

    return HistoryResponse(
        tenant_id=tenant_id,
        transactions=[
            TransactionResponse(
                id=entry.id,
                amount=entry.amount,
                kind=entry.kind.value,
                description=entry.description,
                metadata=entry.metadata,
                reference=entry.reference,
                created_at=entry.created_at,
            )
            for entry in entries
        ],
        limit=limit,
        offset=offset,
    )
