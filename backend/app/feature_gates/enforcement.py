"""Helpers for enforcing subscription checks on API and service layers."""
from __future__ import annotations

from typing import Optional, Union

from fastapi import status

from ..subscriptions.errors import SubscriptionError
from ..subscriptions.models import ACCESS_STATUSES, FeatureCode, SubscriptionOverview, SubscriptionStatus

# Cancelled subscriptions keep access until the sweep expires them at period end.
_GATE_STATUSES = ACCESS_STATUSES | {SubscriptionStatus.CANCELLED}


class FeatureGateError(SubscriptionError):
    """Represents an actionable gating failure surfaced to API callers."""

    code = "feature_not_available"
    default_message = "This feature is not available on your current plan"
    status_code = status.HTTP_403_FORBIDDEN


def require_active_subscription(overview: Optional[SubscriptionOverview]) -> SubscriptionOverview:
    """Ensure the company has a subscription that still grants access."""

    if overview is None:
        raise FeatureGateError(
            "No subscription found for this company",
            detail={"reason": "subscription_missing"},
        ).with_code("subscription_required", status.HTTP_402_PAYMENT_REQUIRED)

    if overview.subscription.status not in _GATE_STATUSES:
        raise FeatureGateError(
            "Subscription has expired",
            detail={"status": overview.subscription.status.value},
        ).with_code("subscription_expired", status.HTTP_402_PAYMENT_REQUIRED)
    return overview


def require_feature(
    overview: Optional[SubscriptionOverview],
    feature: Union[FeatureCode, str],
    *,
    message: Optional[str] = None,
) -> None:
    """Ensure the subscription's plan includes ``feature``.

    Parameters
    ----------
    overview:
        Resolved subscription for the requesting company.
    feature:
        The capability that must be part of the plan.
    message:
        Optional human-friendly message. Defaults to one naming the feature.
    """

    resolved = require_active_subscription(overview)
    code = FeatureCode(feature)
    if code not in resolved.capabilities:
        raise FeatureGateError(
            message or f"Feature '{code.value}' is not included in the {resolved.plan.name} plan.",
            detail={"missing_feature": code.value},
        )


def require_seat_available(overview: Optional[SubscriptionOverview]) -> None:
    """Ensure another active employee fits under the purchased seat count."""

    resolved = require_active_subscription(overview)
    if resolved.used_seats >= resolved.subscription.max_seats:
        raise FeatureGateError(
            "Seat limit reached; add seats to invite more employees",
            detail={"max_seats": resolved.subscription.max_seats, "used_seats": resolved.used_seats},
        ).with_code("seat_limit_reached", status.HTTP_403_FORBIDDEN)
