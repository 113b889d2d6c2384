"""
Completion Settlement Handler.
Debits tenant quota when a job completes.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from creditgate.credits import CreditLedger
from creditgate.pricing import SurgePricingCalculator

logger = logging.getLogger(__name__)


def settlement_reference(job_id: str) -> str:
    """Ledger reference under which a job's charge is recorded."""
    return f"job:{job_id}"


class CompletionSettlementHandler:
    """
    Settles completed jobs against the credit ledger.

    The charged tenant is always the admission key stored in the job's
    `_admission` metadata at submission time. Settlement is best effort: a
    failed debit is logged as a shortfall and never undoes the completed job.
    Each job is charged at most once, however often its completion is
    delivered.
    """

    def __init__(
        self,
        ledger: CreditLedger,
        calculator: SurgePricingCalculator,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.ledger = ledger
        self.calculator = calculator
        self._clock = clock

    @staticmethod
    def _tenant_from(metadata: Optional[Dict[str, Any]]) -> Optional[str]:
        admission = (metadata or {}).get("_admission")
        if not isinstance(admission, dict):
            return None
        return admission.get("tenant_id")

    def on_job_completed(
        self,
        job_id: str,
        result: Any,
        metadata: Optional[Dict[str, Any]],
    ) -> bool:
        """
        Debit the job cost from the admitting tenant.

        Returns True once the job is settled (now or by an earlier delivery),
        False on any shortfall.
        """
        tenant_id = self._tenant_from(metadata)
        if not tenant_id:
            logger.warning(f"SettlementShortfall: job {job_id} carries no admission tenant")
            return False

        reference = settlement_reference(job_id)

        try:
            existing = self.ledger.get_debit_by_reference(reference)
            if existing is not None:
                logger.info(
                    f"Job {job_id} already settled: tenant {existing.tenant_id} "
                    f"charged {-existing.amount} credit(s)"
                )
                return True

            now = self._clock()
            cost = self.calculator.get_surge_multiplier(now)
            debited = self.ledger.debit_credits(
                tenant_id,
                cost,
                description=f"Job {job_id} completed",
                metadata={"job_id": job_id, "multiplier": cost},
                reference=reference,
            )
        except Exception as e:
            logger.exception(f"SettlementShortfall: job {job_id} tenant {tenant_id}: {e}")
            return False

        if not debited:
            logger.warning(
                f"SettlementShortfall: job {job_id} tenant {tenant_id} "
                f"could not be charged {cost} credit(s)"
            )
            return False

        logger.info(f"Settled job {job_id}: tenant {tenant_id} charged {cost} credit(s)")
        return True

    def on_job_failed(
        self,
        job_id: str,
        error: str,
        metadata: Optional[Dict[str, Any]],
    ) -> None:
        """Failed jobs are never charged."""
        tenant_id = self._tenant_from(metadata)
        logger.info(f"Job {job_id} for tenant {tenant_id} failed, no charge: {error}")
