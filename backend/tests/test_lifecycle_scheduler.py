from datetime import datetime, timedelta, timezone

import pytest

from backend import lifecycle_scheduler
from backend.app.subscriptions import SubscriptionStatus
from backend.tests.fakes import NOW, make_subscription


@pytest.fixture(autouse=True)
def _reset_metrics():
    lifecycle_scheduler._reset_metrics_for_testing()
    yield
    lifecycle_scheduler._reset_metrics_for_testing()


def test_status_job_runs_trial_and_grace_sweeps(subscription_components, monkeypatch):
    service, store, _ = subscription_components
    store.subscriptions.create(make_subscription(period_end=NOW - timedelta(hours=2)))
    monkeypatch.setattr(lifecycle_scheduler, "get_subscription_service", lambda: service)

    outcomes = lifecycle_scheduler.run_lifecycle_job(lifecycle_scheduler.LifecycleJob.SUBSCRIPTION_STATUS, now=NOW)

    assert [outcome.job for outcome in outcomes] == ["process_expired_trials", "process_past_due_subscriptions"]
    assert store.subscriptions.get("sub-1").status == SubscriptionStatus.PAST_DUE

    metrics = lifecycle_scheduler.get_lifecycle_metrics()["subscription_status"]
    assert metrics["runs"] == 1
    assert metrics["transitioned"] == 1
    assert metrics["failures"] == 0
    assert metrics["last_run_at"] == NOW.isoformat()
    assert metrics["last_success_at"] == NOW.isoformat()
    assert metrics["last_error"] is None


def test_naive_run_time_is_treated_as_utc(subscription_components, monkeypatch):
    service, _, _ = subscription_components
    monkeypatch.setattr(lifecycle_scheduler, "get_subscription_service", lambda: service)

    lifecycle_scheduler.run_lifecycle_job(lifecycle_scheduler.LifecycleJob.STALE_INVOICES, now=datetime(2024, 6, 15, 12))

    metrics = lifecycle_scheduler.get_lifecycle_metrics()["stale_invoices"]
    assert metrics["last_run_at"] == datetime(2024, 6, 15, 12, tzinfo=timezone.utc).isoformat()


def test_failed_job_records_error_and_reraises(monkeypatch):
    def broken_service():
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(lifecycle_scheduler, "get_subscription_service", broken_service)

    with pytest.raises(RuntimeError):
        lifecycle_scheduler.run_lifecycle_job(lifecycle_scheduler.LifecycleJob.PENDING_DOWNGRADES, now=NOW)

    metrics = lifecycle_scheduler.get_lifecycle_metrics()["pending_downgrades"]
    assert metrics["runs"] == 1
    assert metrics["failures"] == 1
    assert metrics["last_error"] == "RuntimeError: database unavailable"
    assert metrics["last_success_at"] is None


def test_sweep_errors_count_as_failures(subscription_components, monkeypatch):
    service, store, _ = subscription_components
    store.subscriptions.create(
        make_subscription(plan_id="plan-premium", pending_plan_id="plan-gone", period_end=NOW - timedelta(hours=1))
    )
    monkeypatch.setattr(lifecycle_scheduler, "get_subscription_service", lambda: service)

    lifecycle_scheduler.run_lifecycle_job(lifecycle_scheduler.LifecycleJob.PENDING_DOWNGRADES, now=NOW)

    metrics = lifecycle_scheduler.get_lifecycle_metrics()["pending_downgrades"]
    assert metrics["failures"] == 1
    assert "plan-gone" in metrics["last_error"]


def test_job_intervals():
    assert lifecycle_scheduler.JOB_INTERVALS == {
        lifecycle_scheduler.LifecycleJob.SUBSCRIPTION_STATUS: 3600,
        lifecycle_scheduler.LifecycleJob.STALE_INVOICES: 6 * 3600,
        lifecycle_scheduler.LifecycleJob.PENDING_DOWNGRADES: 3600,
    }


def test_scheduler_start_and_shutdown(monkeypatch):
    monkeypatch.setattr(lifecycle_scheduler, "run_lifecycle_job", lambda job, now=None: [])

    lifecycle_scheduler.start_lifecycle_scheduler(initial_delay=60.0)
    try:
        assert sorted(lifecycle_scheduler._workers) == ["pending_downgrades", "stale_invoices", "subscription_status"]
        assert all(worker.is_alive() for worker in lifecycle_scheduler._workers.values())
    finally:
        lifecycle_scheduler.shutdown_lifecycle_scheduler()

    assert lifecycle_scheduler._workers == {}
