"""
Credit Ledger Service.
Handles balance checks, debits and top-ups for tenants.
All mutations go through the repository's atomic operations.
"""
import math
import logging
from typing import Any, Dict, List, Optional

from creditgate.persistence import BaseLedgerRepository, CreditTransaction

from .exceptions import InvalidAmountError

logger = logging.getLogger(__name__)

DEFAULT_BALANCE = 1000.0


def _validate_amount(amount: float) -> None:
    if isinstance(amount, bool) or not isinstance(amount, (int, float)):
        raise InvalidAmountError(amount)
    if not math.isfinite(amount) or amount <= 0:
        raise InvalidAmountError(amount)


class CreditLedger:
    """
    Per-tenant credit ledger.
    Unknown tenants start with the configured baseline balance.
    """

    def __init__(
        self,
        repository: BaseLedgerRepository,
        default_balance: float = DEFAULT_BALANCE,
    ):
        self._repo = repository
        self._default_balance = float(default_balance)
        logger.info(f"CreditLedger initialized (default_balance={self._default_balance})")

    @property
    def default_balance(self) -> float:
        return self._default_balance

    def set_default_balance(self, value: float) -> None:
        """
        Change the baseline for tenants not yet seen.
        Existing balances are not touched.
        """
        if not math.isfinite(value):
            raise ValueError(f"Default balance must be finite, got {value!r}")
        self._default_balance = float(value)
        logger.info(f"Default credit balance set to {self._default_balance}")

    def check_balance(self, tenant_id: str) -> float:
        """Current balance, or the baseline for an unseen tenant."""
        return self._repo.get_or_create_balance(tenant_id, self._default_balance)

    def has_credits(self, tenant_id: str, required: float = 1) -> bool:
        """
        Check if tenant has enough credits.
        Returns True if sufficient, False otherwise.
        """
        return self.check_balance(tenant_id) >= required

    def debit_credits(
        self,
        tenant_id: str,
        amount: float,
        description: str = "Job processing",
        metadata: Optional[Dict[str, Any]] = None,
        reference: Optional[str] = None,
    ) -> bool:
        """
        Atomically subtract amount from the tenant's balance.
        Returns False with no state change when amount exceeds the balance.
        Raises InvalidAmountError for non-positive amounts.

        A debit with a reference is applied at most once; repeating it
        returns True without charging again.
        """
        _validate_amount(amount)

        entry = self._repo.atomic_debit(
            tenant_id=tenant_id,
            amount=amount,
            description=description,
            default_balance=self._default_balance,
            metadata=metadata,
            reference=reference,
        )

        if entry is None:
            logger.warning(
                f"Debit refused for tenant {tenant_id}: amount={amount}, "
                f"available={self.check_balance(tenant_id)}"
            )
            return False

        logger.info(f"Debited {amount} credit(s) from tenant {tenant_id}: {description}")
        return True

    def credit_credits(
        self,
        tenant_id: str,
        amount: float,
        description: str = "Balance top-up",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Atomically add amount to the tenant's balance.
        Raises InvalidAmountError for non-positive amounts.
        """
        _validate_amount(amount)

        self._repo.record_credit(
            tenant_id=tenant_id,
            amount=amount,
            description=description,
            default_balance=self._default_balance,
            metadata=metadata,
        )

        logger.info(f"Credited {amount} credit(s) to tenant {tenant_id}: {description}")
        return True

    def get_transaction_history(
        self,
        tenant_id: str,
        limit: int = 20,
        offset: int = 0,
    ) -> List[CreditTransaction]:
        """Get transaction history, newest first."""
        if limit <= 0:
            return []
        return self._repo.get_history(tenant_id, limit=limit, offset=max(0, offset))

    def get_debit_by_reference(self, reference: str) -> Optional[CreditTransaction]:
        return self._repo.get_by_reference(reference)

    def get_balance_summary(self, tenant_id: str) -> Dict[str, Any]:
        """Balance plus lifetime totals derived from the transaction log."""
        balance = self.check_balance(tenant_id)
        total_credited, total_debited = self._repo.get_totals(tenant_id)

        return {
            "tenant_id": tenant_id,
            "balance": balance,
            "total_credited": total_credited,
            "total_debited": total_debited,
            "updated_at": self._repo.get_updated_at(tenant_id),
        }
