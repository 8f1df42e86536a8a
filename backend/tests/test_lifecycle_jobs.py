from __future__ import annotations

from datetime import timedelta

from backend.app.subscriptions import InvoiceStatus, SubscriptionStatus
from backend.tests.fakes import NOW, make_invoice, make_subscription


def _status(store, subscription_id="sub-1"):
    return store.subscriptions.get(subscription_id).status


def test_trial_that_ended_yesterday_expires(subscription_components):
    service, store, _ = subscription_components
    store.subscriptions.create(
        make_subscription(
            status=SubscriptionStatus.TRIAL,
            plan_id="plan-trial",
            max_seats=5,
            trial_ends_at=NOW - timedelta(days=1),
        )
    )
    store.subscriptions.create(
        make_subscription(
            subscription_id="sub-2",
            company_id="company-2",
            status=SubscriptionStatus.TRIAL,
            plan_id="plan-trial",
            max_seats=5,
            trial_ends_at=NOW + timedelta(days=1),
        )
    )

    outcome = service.lifecycle.process_expired_trials()

    assert outcome.transitioned == 1
    assert _status(store) == SubscriptionStatus.EXPIRED
    assert _status(store, "sub-2") == SubscriptionStatus.TRIAL


def test_cancelled_subscription_expires_after_period_end(subscription_components):
    service, store, _ = subscription_components
    store.subscriptions.create(
        make_subscription(status=SubscriptionStatus.CANCELLED, period_end=NOW - timedelta(minutes=1))
    )
    store.subscriptions.create(
        make_subscription(subscription_id="sub-2", company_id="company-2", status=SubscriptionStatus.CANCELLED)
    )

    service.lifecycle.process_expired_trials()

    assert _status(store) == SubscriptionStatus.EXPIRED
    assert _status(store, "sub-2") == SubscriptionStatus.CANCELLED


def test_active_subscription_enters_grace_period_then_expires(subscription_components):
    service, store, _ = subscription_components
    store.subscriptions.create(make_subscription(period_end=NOW - timedelta(hours=1)))

    first = service.lifecycle.process_past_due_subscriptions()
    assert first.transitioned == 1
    assert _status(store) == SubscriptionStatus.PAST_DUE

    # Still inside the seven day grace period.
    service.lifecycle.process_past_due_subscriptions(NOW + timedelta(days=6))
    assert _status(store) == SubscriptionStatus.PAST_DUE

    service.lifecycle.process_past_due_subscriptions(NOW + timedelta(days=7, hours=1))
    assert _status(store) == SubscriptionStatus.EXPIRED


def test_subscription_lapsed_beyond_grace_expires_in_one_run(subscription_components):
    service, store, _ = subscription_components
    store.subscriptions.create(make_subscription(period_end=NOW - timedelta(days=10)))

    outcome = service.lifecycle.process_past_due_subscriptions()

    assert outcome.transitioned == 2
    assert _status(store) == SubscriptionStatus.EXPIRED


def test_expire_stale_invoices(subscription_components):
    service, store, _ = subscription_components
    subscription = store.subscriptions.create(make_subscription())
    store.invoices.create(
        make_invoice(
            invoice_id="inv-stale",
            subscription=subscription,
            created_at=NOW - timedelta(hours=25),
            gateway_expiry_date=NOW - timedelta(hours=1),
            gateway_invoice_id="xnd-a",
        )
    )
    store.invoices.create(
        make_invoice(
            invoice_id="inv-upsell",
            subscription=subscription,
            created_at=NOW - timedelta(hours=25),
            gateway_expiry_date=NOW + timedelta(days=5),
            gateway_invoice_id="xnd-b",
        )
    )
    store.invoices.create(
        make_invoice(invoice_id="inv-fresh", subscription=subscription, created_at=NOW - timedelta(hours=2), gateway_invoice_id="xnd-c")
    )

    outcome = service.lifecycle.expire_stale_invoices()

    assert outcome.transitioned == 2
    assert store.invoices.get("inv-stale").status == InvoiceStatus.EXPIRED
    assert store.invoices.get("inv-upsell").status == InvoiceStatus.EXPIRED
    assert store.invoices.get("inv-fresh").status == InvoiceStatus.PENDING


def test_stale_upsell_invoice_no_longer_blocks_seat_changes(subscription_components):
    service, store, gateway = subscription_components
    subscription = store.subscriptions.create(make_subscription(max_seats=10))
    store.invoices.create(
        make_invoice(
            invoice_id="inv-upsell",
            subscription=subscription,
            is_prorated=True,
            created_at=NOW - timedelta(hours=48),
            gateway_expiry_date=NOW + timedelta(days=10),
        )
    )

    service.lifecycle.expire_stale_invoices()
    result = service.change_seats("company-1", seat_count=12)

    assert store.invoices.get("inv-upsell").status == InvoiceStatus.EXPIRED
    assert result.invoice.status == InvoiceStatus.PENDING
    assert len(gateway.created) == 1


def test_pending_seat_reduction_applied_at_period_end(subscription_components):
    service, store, _ = subscription_components
    store.subscriptions.create(
        make_subscription(max_seats=10, pending_max_seats=6, period_end=NOW - timedelta(minutes=5))
    )
    store.employees.counts["company-1"] = 6

    outcome = service.lifecycle.apply_pending_downgrades()

    assert outcome.transitioned == 1
    updated = store.subscriptions.get("sub-1")
    assert updated.max_seats == 6
    assert updated.pending_max_seats is None


def test_pending_seat_reduction_waits_for_period_end(subscription_components):
    service, store, _ = subscription_components
    store.subscriptions.create(make_subscription(max_seats=10, pending_max_seats=6))

    outcome = service.lifecycle.apply_pending_downgrades()

    assert outcome.transitioned == 0
    assert store.subscriptions.get("sub-1").max_seats == 10


def test_pending_seat_reduction_skipped_when_employees_grew(subscription_components):
    service, store, _ = subscription_components
    store.subscriptions.create(
        make_subscription(max_seats=10, pending_max_seats=6, period_end=NOW - timedelta(minutes=5))
    )
    store.employees.counts["company-1"] = 9

    outcome = service.lifecycle.apply_pending_downgrades()

    assert outcome.skipped == 1
    updated = store.subscriptions.get("sub-1")
    assert updated.max_seats == 10
    assert updated.pending_max_seats == 6


def test_pending_plan_downgrade_applied_and_seats_clamped(subscription_components):
    service, store, _ = subscription_components
    store.subscriptions.create(
        make_subscription(
            plan_id="plan-premium",
            pending_plan_id="plan-standard",
            max_seats=80,
            period_end=NOW - timedelta(minutes=5),
        )
    )
    store.employees.counts["company-1"] = 40

    outcome = service.lifecycle.apply_pending_downgrades()

    assert outcome.transitioned == 1
    updated = store.subscriptions.get("sub-1")
    assert updated.plan_id == "plan-standard"
    assert updated.pending_plan_id is None
    assert updated.max_seats == 50


def test_pending_plan_downgrade_skipped_when_plan_too_small(subscription_components):
    service, store, _ = subscription_components
    store.subscriptions.create(
        make_subscription(
            plan_id="plan-premium",
            pending_plan_id="plan-standard",
            max_seats=80,
            period_end=NOW - timedelta(minutes=5),
        )
    )
    store.employees.counts["company-1"] = 70

    outcome = service.lifecycle.apply_pending_downgrades()

    assert outcome.skipped == 1
    assert store.subscriptions.get("sub-1").plan_id == "plan-premium"


def test_unknown_pending_plan_reported_as_error(subscription_components):
    service, store, _ = subscription_components
    store.subscriptions.create(
        make_subscription(plan_id="plan-premium", pending_plan_id="plan-gone", period_end=NOW - timedelta(minutes=5))
    )

    outcome = service.lifecycle.apply_pending_downgrades()

    assert not outcome.ok
    assert "plan-gone" in outcome.errors[0]


def test_run_all_is_idempotent(subscription_components):
    service, store, _ = subscription_components
    store.subscriptions.create(
        make_subscription(max_seats=10, pending_max_seats=6, period_end=NOW - timedelta(days=1))
    )
    store.subscriptions.create(
        make_subscription(
            subscription_id="sub-2",
            company_id="company-2",
            status=SubscriptionStatus.TRIAL,
            plan_id="plan-trial",
            max_seats=5,
            trial_ends_at=NOW - timedelta(days=1),
        )
    )

    first = service.run_lifecycle_jobs()
    snapshot = dict(store.subscriptions.rows)
    second = service.run_lifecycle_jobs()

    assert [outcome.job for outcome in first] == [
        "process_expired_trials",
        "process_past_due_subscriptions",
        "expire_stale_invoices",
        "apply_pending_downgrades",
    ]
    assert sum(outcome.transitioned for outcome in first) == 3
    assert sum(outcome.transitioned for outcome in second) == 0
    assert store.subscriptions.rows == snapshot
    assert _status(store) == SubscriptionStatus.PAST_DUE
    assert store.subscriptions.get("sub-1").max_seats == 6


def test_run_all_isolates_failing_sweep(subscription_components, monkeypatch):
    service, store, _ = subscription_components

    def _boom(**_kwargs):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(store.invoices, "expire_stale", _boom)

    outcomes = service.run_lifecycle_jobs()

    by_job = {outcome.job: outcome for outcome in outcomes}
    assert by_job["expire_stale_invoices"].errors == ["database unavailable"]
    assert by_job["apply_pending_downgrades"].ok
