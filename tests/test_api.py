"""
Tests for the HTTP API.
"""
import pytest
from datetime import datetime, timedelta

SURGE_DATE = datetime(2025, 6, 20, 12, 0, 0)


class TestHealth:
    """Health endpoints."""

    def test_health(self, test_client):
        """Health reports the engine and its connection."""
        response = test_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["queue_engine"] == "memory"
        assert data["queue_connected"] is True

    def test_liveness(self, test_client):
        assert test_client.get("/health/live").json() == {"status": "alive"}

    def test_readiness(self, test_client):
        assert test_client.get("/health/ready").json() == {"status": "ready"}


class TestJobs:
    """Job submission and status."""

    def test_submit_job_accepted(self, test_client, container):
        """Accepted job is visible as waiting."""
        response = test_client.post(
            "/jobs",
            json={"payload": {"document": "invoice.pdf"}},
            headers={"X-User-Id": "u1"},
        )

        assert response.status_code == 202
        job_id = response.json()["job_id"]
        assert job_id

        status = test_client.get(f"/jobs/{job_id}")
        assert status.status_code == 200
        assert status.json()["status"] == "waiting"
        assert status.json()["priority_class"] == "normal"

    def test_submit_during_surge_is_high_priority(self, test_client, container):
        """Clock inside the window gives HIGH priority."""
        container.clock.now = SURGE_DATE

        response = test_client.post("/jobs", json={"payload": {}}, headers={"X-Organization-Id": "acme"})
        status = test_client.get(f"/jobs/{response.json()['job_id']}").json()

        assert status["priority"] == 10
        assert status["priority_class"] == "high"

    def test_submit_with_priority_override(self, test_client):
        """Explicit priority in the body is honoured."""
        response = test_client.post(
            "/jobs",
            json={"payload": {}, "priority": "urgent"},
            headers={"X-User-Id": "u1"},
        )
        status = test_client.get(f"/jobs/{response.json()['job_id']}").json()

        assert status["priority"] == 20

    def test_insufficient_credits_is_402(self, test_client, container):
        """Broke tenant gets a non-retryable 402."""
        container.ledger.debit_credits("broke", 1000)

        response = test_client.post("/jobs", json={"payload": {}}, headers={"X-User-Id": "broke"})

        assert response.status_code == 402
        data = response.json()
        assert data["code"] == "INSUFFICIENT_CREDITS"
        assert data["retryable"] is False

    def test_missing_identity_is_401(self, test_client):
        """No identity headers means 401."""
        response = test_client.post("/jobs", json={"payload": {}})

        assert response.status_code == 401
        assert response.json()["code"] == "ADMISSION_KEY_MISSING"

    def test_queue_unavailable_is_503(self, test_client, container):
        """Unreachable engine is a retryable 503."""
        container.engine.send = _raise_unavailable

        response = test_client.post("/jobs", json={"payload": {}}, headers={"X-User-Id": "u1"})

        assert response.status_code == 503
        assert response.json()["retryable"] is True

    def test_engine_failure_is_503_submission_failed(self, test_client, container):
        """Engine rejection is a 503 with SUBMISSION_FAILED."""
        def broken_send(*args, **kwargs):
            raise RuntimeError("broker rejected message")

        container.engine.send = broken_send

        response = test_client.post("/jobs", json={"payload": {}}, headers={"X-User-Id": "u1"})

        assert response.status_code == 503
        assert response.json()["code"] == "SUBMISSION_FAILED"

    def test_unknown_job_is_404(self, test_client):
        """Status of an unknown id is 404."""
        response = test_client.get("/jobs/not-a-job")

        assert response.status_code == 404
        assert response.json()["code"] == "JOB_NOT_FOUND"

    def test_invalid_retry_limit_rejected(self, test_client):
        """Negative retry limit fails validation."""
        response = test_client.post(
            "/jobs",
            json={"payload": {}, "retry_limit": -1},
            headers={"X-User-Id": "u1"},
        )
        assert response.status_code == 422

    def test_broker_down_still_refuses_broke_tenant_with_402(self, test_client, container):
        """Credit refusal is answered before the queue engine is started."""
        container.engine.start = _broker_down
        container.ledger.debit_credits("broke", 1000)

        response = test_client.post("/jobs", json={"payload": {}}, headers={"X-User-Id": "broke"})

        assert response.status_code == 402
        assert response.json()["code"] == "INSUFFICIENT_CREDITS"
        assert container.facade.is_initialized is False

    def test_broker_down_still_refuses_missing_identity_with_401(self, test_client, container):
        container.engine.start = _broker_down

        response = test_client.post("/jobs", json={"payload": {}})

        assert response.status_code == 401
        assert container.facade.is_initialized is False

    def test_broker_down_is_503_for_admitted_tenant(self, test_client, container):
        """A funded tenant sees the outage as a retryable 503."""
        container.engine.start = _broker_down

        response = test_client.post("/jobs", json={"payload": {}}, headers={"X-User-Id": "u1"})

        assert response.status_code == 503
        assert response.json()["code"] == "QUEUE_UNAVAILABLE"
        assert response.json()["retryable"] is True


def _broker_down(*args, **kwargs):
    raise RuntimeError("broker down")


def _raise_unavailable(*args, **kwargs):
    from creditgate.queue import QueueUnavailableError
    raise QueueUnavailableError("Broker unreachable")


class TestQueueStats:
    def test_stats_reflect_submissions(self, test_client):
        """Three submissions are three waiting jobs."""
        for _ in range(3):
            test_client.post("/jobs", json={"payload": {}}, headers={"X-User-Id": "u1"})

        data = test_client.get("/queue/stats").json()
        assert data["waiting"] == 3
        assert data["total"] == 3


def _submit_and_fail(test_client, container, tenant="acme", error="OCR crashed"):
    response = test_client.post(
        "/jobs",
        json={"payload": {"document": "scan.pdf"}, "retry_limit": 0},
        headers={"X-Organization-Id": tenant},
    )
    job_id = response.json()["job_id"]
    queue = container.facade.queue_name
    assert container.engine.claim_next(queue).id == job_id
    container.engine.fail(job_id, error)
    return job_id


class TestQueueAdmin:
    """Queue listings, metrics, retries and cleanup."""

    def test_admin_endpoints_require_secret(self, test_client):
        """Listings, retries and cleanup are admin only."""
        assert test_client.get("/queue/jobs").status_code == 403
        assert test_client.post("/queue/jobs/any/retry").status_code == 403
        assert test_client.post("/queue/clean").status_code == 403

    def test_list_failed_jobs(self, test_client, container, admin_headers):
        """Failed job is listed with its error."""
        job_id = _submit_and_fail(test_client, container)

        data = test_client.get("/queue/jobs", params={"type": "failed"}, headers=admin_headers).json()

        assert data["type"] == "failed"
        assert data["total"] == 1
        assert data["active"] == []
        assert data["failed"][0]["id"] == job_id
        assert data["failed"][0]["error"] == "OCR crashed"

    def test_list_all_jobs(self, test_client, container, admin_headers):
        """type=all returns active and failed together."""
        failed_id = _submit_and_fail(test_client, container)
        active_id = test_client.post("/jobs", json={"payload": {}}, headers={"X-User-Id": "u1"}).json()["job_id"]
        container.engine.claim_next(container.facade.queue_name)

        data = test_client.get("/queue/jobs", headers=admin_headers).json()

        assert data["type"] == "all"
        assert [job["id"] for job in data["active"]] == [active_id]
        assert [job["id"] for job in data["failed"]] == [failed_id]
        assert data["total"] == 2

    def test_invalid_listing_type_rejected(self, test_client, admin_headers):
        response = test_client.get("/queue/jobs", params={"type": "waiting"}, headers=admin_headers)
        assert response.status_code == 422

    def test_retry_failed_job(self, test_client, container, admin_headers):
        """Retry is accepted as a new high priority job."""
        job_id = _submit_and_fail(test_client, container)

        response = test_client.post(f"/queue/jobs/{job_id}/retry", headers=admin_headers)

        assert response.status_code == 202
        new_id = response.json()["job_id"]
        assert new_id != job_id

        status = test_client.get(f"/jobs/{new_id}").json()
        assert status["status"] == "waiting"
        assert status["priority_class"] == "high"

    def test_retry_of_job_that_did_not_fail_is_404(self, test_client, admin_headers):
        """Waiting and unknown jobs cannot be retried."""
        waiting = test_client.post("/jobs", json={"payload": {}}, headers={"X-User-Id": "u1"}).json()["job_id"]

        for job_id in (waiting, "missing"):
            response = test_client.post(f"/queue/jobs/{job_id}/retry", headers=admin_headers)
            assert response.status_code == 404
            assert response.json()["code"] == "NOT_FOUND"

    def test_retry_for_broke_tenant_is_402(self, test_client, container, admin_headers):
        """Retries pass through the credit gate."""
        job_id = _submit_and_fail(test_client, container, tenant="broke")
        container.ledger.debit_credits("broke", 1000)

        response = test_client.post(f"/queue/jobs/{job_id}/retry", headers=admin_headers)

        assert response.status_code == 402

    def test_metrics_are_public(self, test_client, container):
        """One failure out of one finished job is critical."""
        _submit_and_fail(test_client, container)

        data = test_client.get("/queue/metrics", params={"window_hours": 1}).json()

        assert data["window_hours"] == 1
        assert data["failed"] == 1
        assert data["completed"] == 0
        assert data["error_rate"] == 100
        assert data["queue_health"] == "critical"

    def test_metrics_window_validated(self, test_client):
        assert test_client.get("/queue/metrics", params={"window_hours": 0}).status_code == 422

    def test_clean_removes_old_finished_jobs(self, test_client, container, admin_headers):
        """Jobs finished before the cutoff disappear from status lookups."""
        job_id = _submit_and_fail(test_client, container)
        container.engine._jobs[job_id].failed_on = datetime.utcnow() - timedelta(hours=48)

        response = test_client.post("/queue/clean", params={"older_than_hours": 24}, headers=admin_headers)

        assert response.status_code == 200
        assert response.json() == {"removed": 1, "older_than_hours": 24}
        assert test_client.get(f"/jobs/{job_id}").status_code == 404


class TestCredits:
    """Tenant credit endpoints."""

    def test_balance_for_new_tenant(self, test_client):
        """Unknown tenant sees the default balance."""
        response = test_client.get("/credits/balance", headers={"X-Organization-Id": "acme"})

        assert response.status_code == 200
        data = response.json()
        assert data["tenant_id"] == "acme"
        assert data["balance"] == 1000
        assert data["total_debited"] == 0

    def test_history_after_settlement(self, test_client, container):
        """Settled job appears once with its job reference."""
        container.settlement.on_job_completed("job-1", {}, {"_admission": {"tenant_id": "acme"}})

        data = test_client.get("/credits/history", headers={"X-Organization-Id": "acme"}).json()

        assert len(data["transactions"]) == 1
        assert data["transactions"][0]["kind"] == "debit"
        assert data["transactions"][0]["amount"] == -1
        assert data["transactions"][0]["reference"] == "job:job-1"

    def test_balance_requires_identity(self, test_client):
        """Balance needs a tenant."""
        assert test_client.get("/credits/balance").status_code == 401


class TestSurgePricing:
    """Surge pricing endpoints."""

    def test_info_for_explicit_date(self, test_client):
        """Date query parameter overrides the clock."""
        data = test_client.get("/surge-pricing", params={"date": "2025-06-20T00:00:00"}).json()

        assert data["is_surge"] is True
        assert data["multiplier"] == 2.0
        assert data["priority"] == "high"
        assert data["time_to_change"] == {"event": "end", "days": 11}

    def test_info_defaults_to_clock(self, test_client):
        """Without a date the container clock is used."""
        data = test_client.get("/surge-pricing").json()
        assert data["is_surge"] is False

    def test_price_quote(self, test_client):
        """Quote doubles the base during surge."""
        data = test_client.get(
            "/surge-pricing/price",
            params={"base": 100, "date": "2025-06-20T00:00:00"},
        ).json()

        assert data["price"] == 200
        assert data["multiplier"] == 2.0

    def test_notification(self, test_client):
        """Five days before the window a reminder is returned."""
        data = test_client.get("/surge-pricing/notification", params={"date": "2025-06-10T00:00:00"}).json()
        assert data["type"] == "reminder"

    def test_banner(self, test_client):
        """Info banner a few days before the window."""
        data = test_client.get("/surge-pricing/banner", params={"date": "2025-06-10T00:00:00"}).json()

        assert data["show"] is True
        assert data["type"] == "info"

    def test_no_banner_outside_window(self, test_client):
        response = test_client.get("/surge-pricing/banner", params={"date": "2025-05-20T00:00:00"})

        assert response.status_code == 200
        assert response.json() is None

    def test_notifications_feed(self, test_client):
        """Late in the window the feed holds banner, start and reminder."""
        data = test_client.get("/surge-pricing/notifications", params={"date": "2025-06-25T00:00:00"}).json()
        assert [n["id"] for n in data] == ["surge-banner", "surge-start", "surge-reminder"]


class TestAdmin:
    """Admin endpoints."""

    def test_requires_secret(self, test_client):
        """Missing or wrong secret is 403."""
        assert test_client.get("/admin/surge-config").status_code == 403
        assert test_client.get(
            "/admin/surge-config", headers={"X-Admin-Secret": "wrong"}
        ).status_code == 403

    def test_disabled_without_configured_secret(self, test_client, container, admin_headers):
        """Admin endpoints are off when no secret is configured."""
        container.config.admin_secret = None

        response = test_client.get("/admin/surge-config", headers=admin_headers)
        assert response.status_code == 503
        assert response.json()["code"] == "ADMIN_DISABLED"

    def test_update_surge_config(self, test_client, admin_headers):
        """Updated window applies to later pricing queries."""
        response = test_client.put(
            "/admin/surge-config",
            json={"surge_month": 3, "surge_start_day": 1, "surge_end_day": 10},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json()["surge_month"] == 3

        info = test_client.get("/surge-pricing", params={"date": "2025-03-05T00:00:00"}).json()
        assert info["is_surge"] is True

    def test_invalid_surge_config_rejected(self, test_client, admin_headers):
        """Invalid window is a 400 and the old config stays."""
        response = test_client.put(
            "/admin/surge-config",
            json={"surge_start_day": 20, "surge_end_day": 10},
            headers=admin_headers,
        )

        assert response.status_code == 400
        assert test_client.get("/admin/surge-config", headers=admin_headers).json()["surge_start_day"] == 15

    def test_set_default_balance(self, test_client, container, admin_headers):
        """New default applies to tenants created afterwards."""
        response = test_client.put(
            "/admin/default-balance",
            json={"default_balance": 10},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json()["previous_default_balance"] == 1000
        assert container.ledger.check_balance("fresh-tenant") == 10

    def test_add_credits(self, test_client, container, admin_headers):
        """Top-up reports previous and new balance."""
        response = test_client.post(
            "/admin/credits/acme",
            json={"amount": 250},
            headers=admin_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["previous_balance"] == 1000
        assert data["new_balance"] == 1250
        assert container.ledger.check_balance("acme") == 1250

    @pytest.mark.parametrize("amount", [0, -5])
    def test_add_credits_rejects_non_positive(self, test_client, admin_headers, amount):
        """Zero and negative top-ups fail validation."""
        response = test_client.post(
            "/admin/credits/acme",
            json={"amount": amount},
            headers=admin_headers,
        )
        assert response.status_code == 422
