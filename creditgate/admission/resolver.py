"""
Job Admission & Priority Resolver.
Gates submissions on credit quota and assigns a date-dependent priority.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, Field

from creditgate.config import QueueConfig
from creditgate.credits import CreditLedger, InsufficientCreditsError
from creditgate.pricing import SurgePricingCalculator
from creditgate.queue import (
    JobPriority,
    QueueFacade,
    QueueUnavailableError,
    SubmissionFailedError,
    AdmissionError,
    to_engine_priority,
)

logger = logging.getLogger(__name__)

ADMISSION_KEY = "_admission"


class RequestContext(BaseModel):
    """Identity of the caller submitting a job."""
    user_id: Optional[str] = None
    organization_id: Optional[str] = None

    @property
    def admission_key(self) -> Optional[str]:
        """Organization quota takes precedence over the user's own."""
        return self.organization_id or self.user_id


class SubmitOptions(BaseModel):
    """Per-submission overrides."""
    priority: Optional[JobPriority] = None
    retry_limit: Optional[int] = Field(default=None, ge=0)
    expire_in_hours: Optional[float] = Field(default=None, gt=0)


class JobAdmissionResolver:
    """
    Admits jobs into the queue.

    Credits are only checked here; the debit happens when the job completes
    (see CompletionSettlementHandler), so a failed enqueue never strands a
    charge.
    """

    def __init__(
        self,
        ledger: CreditLedger,
        calculator: SurgePricingCalculator,
        facade: QueueFacade,
        queue_config: Optional[QueueConfig] = None,
        min_admission_credits: float = 1,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.ledger = ledger
        self.calculator = calculator
        self.facade = facade
        self.queue_config = queue_config or QueueConfig()
        self.min_admission_credits = min_admission_credits
        self._clock = clock

    def _ensure_facade(self) -> None:
        if not self.facade.is_initialized:
            self.facade.initialize()

    def resolve_priority(self, now: datetime, options: Optional[SubmitOptions] = None) -> JobPriority:
        if options is not None and options.priority is not None:
            return JobPriority(options.priority)
        return self.calculator.get_job_priority(now) or JobPriority.NORMAL

    def submit_job(
        self,
        payload: Dict[str, Any],
        context: RequestContext,
        options: Optional[SubmitOptions] = None,
    ) -> str:
        """
        Admit a job and enqueue it.

        Args:
            payload: Job data for the worker
            context: Caller identity
            options: Optional priority/retry/expiry overrides

        Returns:
            Engine-assigned job id

        Raises:
            AdmissionError: No tenant or user id on the context
            InsufficientCreditsError: Tenant is below the admission threshold
            QueueUnavailableError: Queue engine is not reachable
            SubmissionFailedError: Engine rejected the job
        """
        tenant_id = context.admission_key
        if not tenant_id:
            raise AdmissionError()

        if not self.ledger.has_credits(tenant_id, self.min_admission_credits):
            available = self.ledger.check_balance(tenant_id)
            logger.warning(
                f"Admission refused for tenant {tenant_id}: "
                f"balance={available}, required={self.min_admission_credits}"
            )
            raise InsufficientCreditsError(
                tenant_id=tenant_id,
                required=self.min_admission_credits,
                available=available,
            )

        now = self._clock()
        priority = self.resolve_priority(now, options)
        engine_priority = to_engine_priority(priority)

        retry_limit = self.queue_config.retry_limit
        expire_in_hours = self.queue_config.expire_in_hours
        if options is not None:
            if options.retry_limit is not None:
                retry_limit = options.retry_limit
            if options.expire_in_hours is not None:
                expire_in_hours = options.expire_in_hours

        job_payload = dict(payload)
        job_payload[ADMISSION_KEY] = {
            "tenant_id": tenant_id,
            "priority": priority.value,
            "engine_priority": engine_priority,
            "surge_multiplier": self.calculator.get_surge_multiplier(now),
            "submitted_at": now.isoformat(),
        }

        # the engine is only contacted once the tenant has been admitted
        self._ensure_facade()

        try:
            job_id = self.facade.enqueue(
                job_payload,
                priority=engine_priority,
                retry_limit=retry_limit,
                expire_in_hours=expire_in_hours,
                retry_delay_seconds=self.queue_config.retry_delay_seconds,
            )
        except QueueUnavailableError:
            raise
        except Exception as e:
            raise SubmissionFailedError(
                f"Failed to submit job: {e}", tenant_id=tenant_id
            ) from e

        if not job_id:
            raise SubmissionFailedError(
                "Queue engine returned no job id", tenant_id=tenant_id
            )

        logger.info(
            f"Job {job_id} admitted for tenant {tenant_id} "
            f"(priority={priority.value}, engine_priority={engine_priority})"
        )
        return job_id

    def retry_failed_job(self, job_id: str) -> Optional[str]:
        """
        Re-admit the payload of a failed job as a new HIGH priority job.

        The retry goes through the same credit gate, charged to the tenant
        that admitted the failed job. Returns None if the job is unknown
        or not failed.
        """
        self._ensure_facade()

        failed = self.facade.get_failed_job(job_id)
        if failed is None:
            logger.warning(f"Job {job_id} not found or not failed, nothing to retry")
            return None

        admission = failed.data.get(ADMISSION_KEY) or {}
        tenant_id = admission.get("tenant_id")
        payload = {k: v for k, v in failed.data.items() if k != ADMISSION_KEY}

        new_job_id = self.submit_job(
            payload,
            RequestContext(organization_id=tenant_id),
            SubmitOptions(priority=JobPriority.HIGH),
        )

        logger.info(f"Failed job {job_id} re-admitted as {new_job_id} for tenant {tenant_id}")
        return new_job_id
