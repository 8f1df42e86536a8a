"""Errors raised by the subscription engine."""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status


class SubscriptionError(Exception):
    """Base class for actionable subscription failures surfaced to API callers."""

    code = "subscription_error"
    default_message = "Subscription request could not be processed"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: Optional[str] = None, *, detail: Optional[Mapping[str, Any]] = None) -> None:
        self.message = message or self.default_message
        self.detail = dict(detail or {})
        super().__init__(self.message)

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for JSON responses."""

        body: Dict[str, Any] = {"error": self.code, "message": self.message}
        body.update(self.detail)
        return body

    def with_code(self, code: str, status_code: Optional[int] = None) -> "SubscriptionError":
        self.code = code
        if status_code is not None:
            self.status_code = status_code
        return self

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


class SubscriptionNotFoundError(SubscriptionError, LookupError):
    code = "subscription_not_found"
    default_message = "Subscription not found"
    status_code = status.HTTP_404_NOT_FOUND


class PlanNotFoundError(SubscriptionError, LookupError):
    code = "plan_not_found"
    default_message = "Plan not found"
    status_code = status.HTTP_404_NOT_FOUND


class InvoiceNotFoundError(SubscriptionError, LookupError):
    code = "invoice_not_found"
    default_message = "Invoice not found"
    status_code = status.HTTP_404_NOT_FOUND


class PreconditionError(SubscriptionError, ValueError):
    """A request that can never succeed against the current state."""


class InvalidSubscriptionStateError(PreconditionError):
    code = "invalid_subscription_state"
    default_message = "Subscription is not in a valid state for this operation"
    status_code = status.HTTP_409_CONFLICT


class AlreadySubscribedError(PreconditionError):
    code = "already_subscribed"
    default_message = "Company already has a subscription"
    status_code = status.HTTP_409_CONFLICT


class PlanNotActiveError(PreconditionError):
    code = "plan_not_active"
    default_message = "Plan is not available for purchase"


class TrialNotAllowedError(PreconditionError):
    code = "trial_not_allowed"
    default_message = "The free trial plan cannot be purchased"


class NotAnUpgradeError(PreconditionError):
    code = "not_an_upgrade"
    default_message = "Target plan is not an upgrade"


class NotADowngradeError(PreconditionError):
    code = "not_a_downgrade"
    default_message = "Target plan is not a downgrade"


class PendingInvoiceExistsError(PreconditionError):
    code = "pending_invoice_exists"
    default_message = "A pending invoice already exists; pay or cancel it first"
    status_code = status.HTTP_409_CONFLICT


class SeatLimitExceededError(PreconditionError):
    code = "seat_limit_exceeded"
    default_message = "Seat count exceeds the plan limit"


class SeatsBelowActiveEmployeesError(PreconditionError):
    code = "seats_below_active_employees"
    default_message = "Seat count cannot be lower than the number of active employees"


class CannotUpgradeDuringGracePeriodError(PreconditionError):
    code = "grace_period_upgrade_blocked"
    default_message = "Seats cannot be added while the subscription is past due"
    status_code = status.HTTP_402_PAYMENT_REQUIRED


class SameAsCurrentSeatsError(PreconditionError):
    code = "same_as_current_seats"
    default_message = "New seat count is the same as the current seat count"


class InvalidSeatCountError(PreconditionError):
    code = "invalid_seat_count"
    default_message = "Seat count must be at least 1"


class InvalidPayerEmailError(PreconditionError):
    code = "invalid_payer_email"
    default_message = "A valid payer email is required"


class InvalidBillingCycleError(PreconditionError):
    code = "invalid_billing_cycle"
    default_message = "Billing cycle must be monthly or yearly"


class InvoiceNotPendingError(PreconditionError):
    code = "invoice_not_pending"
    default_message = "Invoice is not pending"
    status_code = status.HTTP_409_CONFLICT


class GatewayError(SubscriptionError):
    """The payment gateway rejected a request or could not be reached."""

    code = "payment_gateway_error"
    default_message = "Payment gateway request failed"
    status_code = status.HTTP_502_BAD_GATEWAY


class InvalidWebhookTokenError(SubscriptionError):
    code = "invalid_webhook_token"
    default_message = "Invalid webhook callback token"
    status_code = status.HTTP_401_UNAUTHORIZED


__all__ = [
    "AlreadySubscribedError",
    "CannotUpgradeDuringGracePeriodError",
    "GatewayError",
    "InvalidBillingCycleError",
    "InvalidPayerEmailError",
    "InvalidSeatCountError",
    "InvalidSubscriptionStateError",
    "InvalidWebhookTokenError",
    "InvoiceNotFoundError",
    "InvoiceNotPendingError",
    "NotADowngradeError",
    "NotAnUpgradeError",
    "PendingInvoiceExistsError",
    "PlanNotActiveError",
    "PlanNotFoundError",
    "PreconditionError",
    "SameAsCurrentSeatsError",
    "SeatLimitExceededError",
    "SeatsBelowActiveEmployeesError",
    "SubscriptionError",
    "SubscriptionNotFoundError",
    "TrialNotAllowedError",
]
