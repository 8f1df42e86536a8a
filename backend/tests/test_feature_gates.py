from __future__ import annotations

import pytest

from backend.app.feature_gates import (
    FeatureGateError,
    require_active_subscription,
    require_feature,
    require_seat_available,
)
from backend.app.subscriptions import FeatureCode, SubscriptionOverview, SubscriptionStatus
from backend.app.subscriptions.catalog import StaticPlanRepository
from backend.tests.fakes import make_subscription


def _overview(plan_id: str = "plan-standard", *, used_seats: int = 0, **kwargs) -> SubscriptionOverview:
    plan = StaticPlanRepository().get_plan(plan_id)
    return SubscriptionOverview(
        subscription=make_subscription(plan_id=plan_id, **kwargs),
        plan=plan,
        capabilities=plan.capabilities,
        used_seats=used_seats,
    )


def test_require_feature_allows_plan_capability() -> None:
    require_feature(_overview(), FeatureCode.INVITATION)
    require_feature(_overview("plan-premium"), "payroll")


def test_require_feature_blocks_missing_capability() -> None:
    with pytest.raises(FeatureGateError) as exc:
        require_feature(_overview(), FeatureCode.PAYROLL)

    assert exc.value.code == "feature_not_available"
    assert exc.value.status_code == 403
    assert exc.value.payload["missing_feature"] == "payroll"
    assert "Standard" in exc.value.message


def test_trial_only_has_core_features() -> None:
    trial = _overview("plan-trial", status=SubscriptionStatus.TRIAL, max_seats=5)

    require_feature(trial, FeatureCode.ATTENDANCE)
    with pytest.raises(FeatureGateError):
        require_feature(trial, FeatureCode.SCHEDULE)


def test_missing_subscription_requires_payment() -> None:
    with pytest.raises(FeatureGateError) as exc:
        require_active_subscription(None)

    assert exc.value.code == "subscription_required"
    assert exc.value.status_code == 402


@pytest.mark.parametrize(
    "status, allowed",
    [
        (SubscriptionStatus.TRIAL, True),
        (SubscriptionStatus.ACTIVE, True),
        (SubscriptionStatus.PAST_DUE, True),
        (SubscriptionStatus.CANCELLED, True),
        (SubscriptionStatus.EXPIRED, False),
    ],
)
def test_access_by_status(status: SubscriptionStatus, allowed: bool) -> None:
    overview = _overview(status=status)
    if allowed:
        assert require_active_subscription(overview) is overview
        return
    with pytest.raises(FeatureGateError) as exc:
        require_active_subscription(overview)
    assert exc.value.code == "subscription_expired"
    assert exc.value.payload["status"] == "expired"


def test_seat_gate() -> None:
    require_seat_available(_overview(max_seats=10, used_seats=9))

    with pytest.raises(FeatureGateError) as exc:
        require_seat_available(_overview(max_seats=10, used_seats=10))

    assert exc.value.code == "seat_limit_reached"
    assert exc.value.payload["used_seats"] == 10


def test_gate_error_converts_to_http_exception() -> None:
    error = FeatureGateError("nope", detail={"missing_feature": "report"})
    http_exc = error.to_http_exception()

    assert http_exc.status_code == 403
    assert http_exc.detail == {"error": "feature_not_available", "message": "nope", "missing_feature": "report"}
