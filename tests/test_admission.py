"""
Tests for job admission - credit gate, priority resolution and failure mapping.
"""
import pytest
from datetime import datetime
from unittest.mock import MagicMock

from creditgate.admission import JobAdmissionResolver, RequestContext, SubmitOptions
from creditgate.config import QueueConfig
from creditgate.credits import InsufficientCreditsError
from creditgate.pricing import SurgePricingCalculator
from creditgate.queue import (
    AdmissionError,
    JobPriority,
    QueueFacade,
    QueueUnavailableError,
    SubmissionFailedError,
)

SURGE_DATE = datetime(2025, 6, 20, 12, 0, 0)
NORMAL_DATE = datetime(2025, 5, 20, 12, 0, 0)


def make_resolver(ledger, facade, now=NORMAL_DATE, **kwargs):
    return JobAdmissionResolver(
        ledger=ledger,
        calculator=SurgePricingCalculator(),
        facade=facade,
        queue_config=QueueConfig(engine="memory", retry_limit=3, expire_in_hours=1.0),
        clock=lambda: now,
        **kwargs,
    )


@pytest.fixture
def mock_facade():
    facade = MagicMock()
    facade.enqueue.return_value = "job-123"
    return facade


class TestCreditGate:
    """Admission is refused without credits."""

    def test_broke_tenant_is_refused_without_touching_queue(self, ledger, mock_facade):
        """Refusal happens before any facade call."""
        ledger.debit_credits("acme", 1000)
        resolver = make_resolver(ledger, mock_facade)

        with pytest.raises(InsufficientCreditsError) as exc_info:
            resolver.submit_job({"doc": 1}, RequestContext(organization_id="acme"))

        assert exc_info.value.tenant_id == "acme"
        assert exc_info.value.required == 1
        assert exc_info.value.available == 0
        assert exc_info.value.retryable is False
        assert mock_facade.method_calls == []

    def test_waiting_count_unchanged_after_refusal(self, container):
        """End to end: a broke tenant leaves the queue untouched."""
        container.ledger.debit_credits("broke", 1000)
        facade = container.ensure_queue()
        before = facade.get_queue_stats().waiting

        with pytest.raises(InsufficientCreditsError):
            container.resolver.submit_job({"doc": 1}, RequestContext(user_id="broke"))

        assert facade.get_queue_stats().waiting == before

    def test_submission_does_not_debit(self, ledger, mock_facade):
        """Admission only checks the balance."""
        resolver = make_resolver(ledger, mock_facade)
        resolver.submit_job({"doc": 1}, RequestContext(user_id="u1"))

        assert ledger.check_balance("u1") == 1000
        assert ledger.get_transaction_history("u1") == []

    def test_minimum_admission_threshold(self, ledger, mock_facade):
        """Four credits left is not enough when five are required."""
        ledger.debit_credits("acme", 996)
        resolver = make_resolver(ledger, mock_facade, min_admission_credits=5)

        with pytest.raises(InsufficientCreditsError) as exc_info:
            resolver.submit_job({}, RequestContext(organization_id="acme"))
        assert exc_info.value.required == 5

    def test_missing_identity_raises_admission_error(self, ledger, mock_facade):
        """No user or organization id is refused."""
        resolver = make_resolver(ledger, mock_facade)

        with pytest.raises(AdmissionError) as exc_info:
            resolver.submit_job({}, RequestContext())

        assert exc_info.value.code == "ADMISSION_KEY_MISSING"
        mock_facade.enqueue.assert_not_called()


class TestAdmissionKey:
    """The organization quota takes precedence."""

    def test_organization_preferred_over_user(self, ledger, mock_facade):
        """Organization id is the tenant when both are given."""
        resolver = make_resolver(ledger, mock_facade)
        resolver.submit_job({"doc": 1}, RequestContext(user_id="u1", organization_id="acme"))

        payload = mock_facade.enqueue.call_args.args[0]
        assert payload["_admission"]["tenant_id"] == "acme"

    def test_user_used_without_organization(self, ledger, mock_facade):
        """User id is the tenant on its own."""
        resolver = make_resolver(ledger, mock_facade)
        resolver.submit_job({"doc": 1}, RequestContext(user_id="u1"))

        payload = mock_facade.enqueue.call_args.args[0]
        assert payload["_admission"]["tenant_id"] == "u1"

    def test_caller_payload_is_not_mutated(self, ledger, mock_facade):
        """Admission block is added to a copy."""
        submitted = {"doc": 1}
        make_resolver(ledger, mock_facade).submit_job(submitted, RequestContext(user_id="u1"))

        assert submitted == {"doc": 1}


class TestPriority:
    """Priority follows the surge window unless overridden."""

    def test_surge_date_gets_high_priority(self, ledger, mock_facade):
        """Surge date maps to HIGH and records the multiplier."""
        resolver = make_resolver(ledger, mock_facade, now=SURGE_DATE)
        resolver.submit_job({}, RequestContext(user_id="u1"))

        kwargs = mock_facade.enqueue.call_args.kwargs
        payload = mock_facade.enqueue.call_args.args[0]
        assert kwargs["priority"] == 10
        assert payload["_admission"]["priority"] == "high"
        assert payload["_admission"]["surge_multiplier"] == 2.0

    def test_normal_date_gets_normal_priority(self, ledger, mock_facade):
        """Outside the window jobs run at NORMAL."""
        resolver = make_resolver(ledger, mock_facade, now=NORMAL_DATE)
        resolver.submit_job({}, RequestContext(user_id="u1"))

        assert mock_facade.enqueue.call_args.kwargs["priority"] == 5

    def test_explicit_priority_overrides_surge(self, ledger, mock_facade):
        """Caller priority wins over the surge priority."""
        resolver = make_resolver(ledger, mock_facade, now=SURGE_DATE)
        resolver.submit_job({}, RequestContext(user_id="u1"), SubmitOptions(priority=JobPriority.URGENT))

        assert mock_facade.enqueue.call_args.kwargs["priority"] == 20

    def test_options_override_queue_defaults(self, ledger, mock_facade):
        """Per-job retry and expiry replace the queue defaults."""
        resolver = make_resolver(ledger, mock_facade)
        resolver.submit_job(
            {},
            RequestContext(user_id="u1"),
            SubmitOptions(priority=JobPriority.LOW, retry_limit=0, expire_in_hours=6),
        )

        kwargs = mock_facade.enqueue.call_args.kwargs
        assert kwargs["priority"] == 1
        assert kwargs["retry_limit"] == 0
        assert kwargs["expire_in_hours"] == 6

    def test_queue_defaults_used(self, ledger, mock_facade):
        """Queue config supplies retry and expiry."""
        make_resolver(ledger, mock_facade).submit_job({}, RequestContext(user_id="u1"))

        kwargs = mock_facade.enqueue.call_args.kwargs
        assert kwargs["retry_limit"] == 3
        assert kwargs["expire_in_hours"] == 1.0


class TestSubmissionFailures:
    """Engine failures are mapped to retryable errors."""

    def test_queue_unavailable_passes_through(self, ledger, mock_facade):
        """Unavailable queue is not wrapped."""
        mock_facade.enqueue.side_effect = QueueUnavailableError()
        resolver = make_resolver(ledger, mock_facade)

        with pytest.raises(QueueUnavailableError):
            resolver.submit_job({}, RequestContext(user_id="u1"))

    def test_engine_error_becomes_submission_failed(self, ledger, mock_facade):
        """Other engine errors become retryable submission failures."""
        cause = RuntimeError("broker said no")
        mock_facade.enqueue.side_effect = cause
        resolver = make_resolver(ledger, mock_facade)

        with pytest.raises(SubmissionFailedError) as exc_info:
            resolver.submit_job({}, RequestContext(user_id="u1"))

        assert exc_info.value.retryable is True
        assert exc_info.value.tenant_id == "u1"
        assert exc_info.value.__cause__ is cause

    def test_empty_job_id_is_submission_failure(self, ledger, mock_facade):
        """An engine returning no id is a failed submission."""
        mock_facade.enqueue.return_value = ""
        resolver = make_resolver(ledger, mock_facade)

        with pytest.raises(SubmissionFailedError):
            resolver.submit_job({}, RequestContext(user_id="u1"))

    def test_failed_enqueue_consumes_no_credits(self, ledger, mock_facade):
        """Balance is untouched when the enqueue fails."""
        mock_facade.enqueue.side_effect = RuntimeError("boom")
        resolver = make_resolver(ledger, mock_facade)

        with pytest.raises(SubmissionFailedError):
            resolver.submit_job({}, RequestContext(user_id="u1"))
        assert ledger.check_balance("u1") == 1000


def test_admitted_job_is_visible_through_facade(container):
    """Real in-memory engine: admitted job shows up as waiting."""
    container.clock.now = SURGE_DATE
    container.ensure_queue()
    job_id = container.resolver.submit_job({"doc": "x"}, RequestContext(organization_id="acme"))

    status = container.facade.get_job_status(job_id)
    assert status.status.value == "waiting"
    assert status.priority == 10


class TestUnavailableQueue:
    """The credit gate answers before the queue engine is started."""

    @pytest.fixture
    def down_engine(self):
        engine = MagicMock()
        engine.start.side_effect = ConnectionError("broker down")
        return engine

    def test_broke_tenant_refused_with_broker_down(self, ledger, down_engine):
        """Refusal for credits does not depend on the broker."""
        ledger.debit_credits("acme", 1000)
        resolver = make_resolver(ledger, QueueFacade(down_engine))

        with pytest.raises(InsufficientCreditsError):
            resolver.submit_job({}, RequestContext(organization_id="acme"))
        down_engine.start.assert_not_called()

    def test_missing_identity_refused_with_broker_down(self, ledger, down_engine):
        resolver = make_resolver(ledger, QueueFacade(down_engine))

        with pytest.raises(AdmissionError):
            resolver.submit_job({}, RequestContext())
        down_engine.start.assert_not_called()

    def test_admitted_tenant_gets_queue_unavailable(self, ledger, down_engine):
        """Once admitted, the broker outage is reported as retryable."""
        resolver = make_resolver(ledger, QueueFacade(down_engine))

        with pytest.raises(QueueUnavailableError) as exc_info:
            resolver.submit_job({}, RequestContext(organization_id="acme"))

        assert exc_info.value.retryable is True
        down_engine.start.assert_called_once()
        down_engine.send.assert_not_called()

    def test_facade_started_on_first_admitted_job(self, ledger, queue_engine):
        """An uninitialized facade is started lazily by the resolver."""
        facade = QueueFacade(queue_engine)
        resolver = make_resolver(ledger, facade)

        job_id = resolver.submit_job({}, RequestContext(user_id="u1"))

        assert facade.is_initialized is True
        assert facade.get_job_status(job_id) is not None


def _fail_job(container, queue_engine, tenant="acme", payload=None):
    """Admit a job without retries and let it fail."""
    job_id = container.resolver.submit_job(
        payload or {"doc": "scan.pdf"},
        RequestContext(organization_id=tenant),
        SubmitOptions(retry_limit=0),
    )
    queue = container.facade.queue_name
    assert queue_engine.claim_next(queue).id == job_id
    queue_engine.fail(job_id, "OCR crashed")
    return job_id


class TestRetryFailedJob:
    """Failed jobs are re-admitted through the credit gate."""

    def test_retry_readmits_at_high_priority(self, container, queue_engine):
        """Same payload and tenant, new job id, HIGH priority."""
        failed_id = _fail_job(container, queue_engine)

        new_id = container.resolver.retry_failed_job(failed_id)

        assert new_id and new_id != failed_id
        job = queue_engine.get_job_by_id(container.facade.queue_name, new_id)
        assert job.priority == 10
        assert job.data["doc"] == "scan.pdf"
        assert job.data["_admission"]["tenant_id"] == "acme"
        assert job.data["_admission"]["priority"] == "high"

    def test_retry_does_not_debit(self, container, queue_engine):
        """Only completion is charged, retries included."""
        failed_id = _fail_job(container, queue_engine)
        container.resolver.retry_failed_job(failed_id)

        assert container.ledger.check_balance("acme") == 1000

    def test_retry_of_unknown_or_waiting_job_is_none(self, container):
        """Nothing to retry unless the job failed."""
        container.ensure_queue()
        waiting = container.resolver.submit_job({}, RequestContext(organization_id="acme"))

        assert container.resolver.retry_failed_job(waiting) is None
        assert container.resolver.retry_failed_job("missing") is None
        assert container.facade.get_queue_stats().waiting == 1

    def test_retry_refused_for_broke_tenant(self, container, queue_engine):
        """The credit gate applies to retries."""
        failed_id = _fail_job(container, queue_engine, tenant="broke")
        container.ledger.debit_credits("broke", 1000)

        with pytest.raises(InsufficientCreditsError):
            container.resolver.retry_failed_job(failed_id)
        assert container.facade.get_queue_stats().waiting == 0
