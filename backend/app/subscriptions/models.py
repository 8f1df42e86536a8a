"""Domain models for the subscription and billing lifecycle."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import FrozenSet, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SubscriptionStatus(str, Enum):
    """Lifecycle status of a company subscription."""

    TRIAL = "trial"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class InvoiceStatus(str, Enum):
    """Status of a persisted invoice record."""

    PENDING = "pending"
    PAID = "paid"
    EXPIRED = "expired"
    FAILED = "failed"


class BillingCycle(str, Enum):
    """Billing cadence of a subscription."""

    MONTHLY = "monthly"
    YEARLY = "yearly"

    @property
    def total_days(self) -> int:
        """Day count used as the proration denominator."""
        return 365 if self is BillingCycle.YEARLY else 30

    @property
    def months(self) -> int:
        return 12 if self is BillingCycle.YEARLY else 1

    @property
    def months_charged(self) -> int:
        """Yearly billing charges ten months for twelve."""
        return 10 if self is BillingCycle.YEARLY else 1


class FeatureCode(str, Enum):
    """Capabilities that a plan can unlock."""

    ATTENDANCE = "attendance"
    LEAVE = "leave"
    PAYROLL = "payroll"
    INVITATION = "invitation"
    SCHEDULE = "schedule"
    REPORT = "report"


ACCESS_STATUSES: FrozenSet[SubscriptionStatus] = frozenset(
    {SubscriptionStatus.TRIAL, SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE}
)
SEAT_CHANGE_STATUSES = ACCESS_STATUSES


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Feature(BaseModel):
    """A named capability attached to one or more plans."""

    id: str
    code: FeatureCode
    name: str
    description: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Plan(BaseModel):
    """Read-only catalog entry describing price, tier and seat cap."""

    id: str
    name: str
    price_per_seat: Decimal = Field(ge=0)
    tier_level: int = Field(ge=0)
    max_seats: Optional[int] = Field(default=None, description="None means unlimited")
    is_active: bool = True
    features: Tuple[Feature, ...] = ()

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def capabilities(self) -> FrozenSet[FeatureCode]:
        return frozenset(feature.code for feature in self.features)

    @property
    def is_paid(self) -> bool:
        return self.price_per_seat > 0

    def allows_seats(self, seat_count: int) -> bool:
        """Return ``True`` when ``seat_count`` fits under the plan cap."""
        return self.max_seats is None or seat_count <= self.max_seats


class Subscription(BaseModel):
    """Billing state of a single company."""

    id: str
    company_id: str
    plan_id: str
    pending_plan_id: Optional[str] = None
    status: SubscriptionStatus
    max_seats: int = Field(ge=0)
    pending_max_seats: Optional[int] = None
    current_period_start: datetime
    current_period_end: datetime
    trial_ends_at: Optional[datetime] = None
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    auto_renew: bool = True
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def has_access(self) -> bool:
        """Trial, active and past-due subscriptions keep feature access."""
        return self.status in ACCESS_STATUSES

    def is_period_over(self, now: datetime) -> bool:
        return now > self.current_period_end


class Invoice(BaseModel):
    """Payment request with an immutable snapshot of the purchased terms."""

    id: str
    company_id: str
    subscription_id: str
    plan_id: str
    amount: Decimal = Field(ge=0)
    status: InvoiceStatus = InvoiceStatus.PENDING
    is_prorated: bool = False
    plan_snapshot_name: str
    price_per_seat_snapshot: Decimal
    seat_count_snapshot: int = Field(ge=1)
    billing_cycle_snapshot: BillingCycle
    period_start: datetime
    period_end: datetime
    gateway_invoice_id: Optional[str] = None
    gateway_invoice_url: Optional[str] = None
    gateway_expiry_date: Optional[datetime] = None
    issue_date: datetime = Field(default_factory=_utcnow)
    paid_at: Optional[datetime] = None
    payment_method: Optional[str] = None
    payment_channel: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("amount", "price_per_seat_snapshot")
    @classmethod
    def _quantize_money(cls, value: Decimal) -> Decimal:
        return Decimal(value).quantize(Decimal("0.01"))


class SubscriptionOverview(BaseModel):
    """Subscription resolved together with its plans and capability set."""

    subscription: Subscription
    plan: Plan
    pending_plan: Optional[Plan] = None
    capabilities: FrozenSet[FeatureCode] = frozenset()
    used_seats: int = 0

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def available_seats(self) -> int:
        return max(0, self.subscription.max_seats - self.used_seats)


class CheckoutResult(BaseModel):
    """Return value of a checkout or upgrade request."""

    invoice: Invoice
    payment_url: str
    expires_at: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class SeatChangeResult(BaseModel):
    """Outcome of a seat change request."""

    invoice: Optional[Invoice] = None
    payment_url: Optional[str] = None
    is_pending: bool = False
    pending_max_seats: Optional[int] = None
    effective_at: Optional[datetime] = None
    message: str

    model_config = ConfigDict(populate_by_name=True, frozen=True)


__all__ = [
    "ACCESS_STATUSES",
    "BillingCycle",
    "CheckoutResult",
    "Feature",
    "FeatureCode",
    "Invoice",
    "InvoiceStatus",
    "Plan",
    "SEAT_CHANGE_STATUSES",
    "SeatChangeResult",
    "Subscription",
    "SubscriptionOverview",
    "SubscriptionStatus",
]
