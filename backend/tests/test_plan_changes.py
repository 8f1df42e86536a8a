from __future__ import annotations

import pytest

from backend.app.subscriptions import SubscriptionStatus
from backend.app.subscriptions.errors import (
    InvalidSubscriptionStateError,
    NotADowngradeError,
    PlanNotFoundError,
    SeatLimitExceededError,
    SubscriptionNotFoundError,
)
from backend.tests.fakes import make_subscription


def test_downgrade_is_scheduled_for_period_end(subscription_components):
    service, store, gateway = subscription_components
    store.subscriptions.create(make_subscription(plan_id="plan-premium", pending_max_seats=8))

    updated = service.downgrade_plan("company-1", plan_id="plan-standard")

    assert updated.plan_id == "plan-premium"
    assert updated.pending_plan_id == "plan-standard"
    assert updated.pending_max_seats is None
    assert store.subscriptions.get("sub-1") == updated
    assert gateway.created == []


def test_downgrade_requires_lower_tier(subscription_components):
    service, store, _ = subscription_components
    store.subscriptions.create(make_subscription(plan_id="plan-standard"))

    with pytest.raises(NotADowngradeError):
        service.downgrade_plan("company-1", plan_id="plan-premium")
    with pytest.raises(NotADowngradeError):
        service.downgrade_plan("company-1", plan_id="plan-standard")


def test_cannot_downgrade_to_trial(subscription_components):
    service, store, _ = subscription_components
    store.subscriptions.create(make_subscription(plan_id="plan-standard"))

    with pytest.raises(NotADowngradeError):
        service.downgrade_plan("company-1", plan_id="plan-trial")


def test_downgrade_must_fit_active_employees(subscription_components):
    service, store, _ = subscription_components
    store.subscriptions.create(make_subscription(plan_id="plan-ultra", max_seats=300))
    store.employees.counts["company-1"] = 60

    with pytest.raises(SeatLimitExceededError) as excinfo:
        service.downgrade_plan("company-1", plan_id="plan-standard")

    assert excinfo.value.payload["active_employees"] == 60
    assert store.subscriptions.get("sub-1").pending_plan_id is None


def test_downgrade_requires_active_subscription(subscription_components):
    service, store, _ = subscription_components
    store.subscriptions.create(make_subscription(plan_id="plan-premium", status=SubscriptionStatus.PAST_DUE))

    with pytest.raises(InvalidSubscriptionStateError):
        service.downgrade_plan("company-1", plan_id="plan-standard")


def test_downgrade_to_unknown_plan(subscription_components):
    service, store, _ = subscription_components
    store.subscriptions.create(make_subscription(plan_id="plan-premium"))

    with pytest.raises(PlanNotFoundError):
        service.downgrade_plan("company-1", plan_id="plan-gold")


def test_cancel_downgrade_clears_pending_plan(subscription_components):
    service, store, _ = subscription_components
    store.subscriptions.create(make_subscription(plan_id="plan-premium", pending_plan_id="plan-standard"))

    updated = service.cancel_downgrade("company-1")

    assert updated.pending_plan_id is None
    assert updated.plan_id == "plan-premium"


def test_cancel_downgrade_without_pending_plan_is_noop(subscription_components):
    service, store, _ = subscription_components
    subscription = store.subscriptions.create(make_subscription())

    assert service.cancel_downgrade("company-1") == subscription


def test_plan_changes_need_a_subscription(subscription_components):
    service, _, _ = subscription_components

    with pytest.raises(SubscriptionNotFoundError):
        service.downgrade_plan("company-1", plan_id="plan-standard")
    with pytest.raises(SubscriptionNotFoundError):
        service.cancel_downgrade("company-1")
