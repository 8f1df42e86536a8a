"""API schemas for subscription endpoints."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from ..subscriptions import (
    BillingCycle,
    CheckoutResult,
    Feature,
    FeatureCode,
    Invoice,
    InvoiceStatus,
    Plan,
    SeatChangeResult,
    SubscriptionOverview,
    SubscriptionStatus,
)


class FeatureResponse(BaseModel):
    code: FeatureCode
    name: str
    description: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_feature(cls, feature: Feature) -> "FeatureResponse":
        return cls(code=feature.code, name=feature.name, description=feature.description)


class PlanResponse(BaseModel):
    id: str
    name: str
    price_per_seat: Decimal = Field(alias="pricePerSeat")
    tier_level: int = Field(alias="tierLevel")
    max_seats: Optional[int] = Field(alias="maxSeats", default=None)
    features: List[FeatureResponse] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_plan(cls, plan: Plan) -> "PlanResponse":
        return cls(
            id=plan.id,
            name=plan.name,
            price_per_seat=plan.price_per_seat,
            tier_level=plan.tier_level,
            max_seats=plan.max_seats,
            features=[FeatureResponse.from_feature(feature) for feature in plan.features],
        )


class SubscriptionResponse(BaseModel):
    id: str
    status: SubscriptionStatus
    plan: PlanResponse
    pending_plan: Optional[PlanResponse] = Field(alias="pendingPlan", default=None)
    max_seats: int = Field(alias="maxSeats")
    pending_max_seats: Optional[int] = Field(alias="pendingMaxSeats", default=None)
    used_seats: int = Field(alias="usedSeats")
    available_seats: int = Field(alias="availableSeats")
    billing_cycle: BillingCycle = Field(alias="billingCycle")
    current_period_start: datetime = Field(alias="currentPeriodStart")
    current_period_end: datetime = Field(alias="currentPeriodEnd")
    trial_ends_at: Optional[datetime] = Field(alias="trialEndsAt", default=None)
    auto_renew: bool = Field(alias="autoRenew")
    features: List[FeatureCode] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_overview(cls, overview: SubscriptionOverview) -> "SubscriptionResponse":
        subscription = overview.subscription
        return cls(
            id=subscription.id,
            status=subscription.status,
            plan=PlanResponse.from_plan(overview.plan),
            pending_plan=PlanResponse.from_plan(overview.pending_plan) if overview.pending_plan else None,
            max_seats=subscription.max_seats,
            pending_max_seats=subscription.pending_max_seats,
            used_seats=overview.used_seats,
            available_seats=overview.available_seats,
            billing_cycle=subscription.billing_cycle,
            current_period_start=subscription.current_period_start,
            current_period_end=subscription.current_period_end,
            trial_ends_at=subscription.trial_ends_at,
            auto_renew=subscription.auto_renew,
            features=sorted(overview.capabilities, key=lambda code: code.value),
        )


class InvoiceResponse(BaseModel):
    id: str
    amount: Decimal
    status: InvoiceStatus
    is_prorated: bool = Field(alias="isProrated")
    plan_name: str = Field(alias="planName")
    price_per_seat: Decimal = Field(alias="pricePerSeat")
    seat_count: int = Field(alias="seatCount")
    billing_cycle: BillingCycle = Field(alias="billingCycle")
    period_start: datetime = Field(alias="periodStart")
    period_end: datetime = Field(alias="periodEnd")
    payment_url: Optional[str] = Field(alias="paymentUrl", default=None)
    expires_at: Optional[datetime] = Field(alias="expiresAt", default=None)
    issue_date: datetime = Field(alias="issueDate")
    paid_at: Optional[datetime] = Field(alias="paidAt", default=None)
    payment_method: Optional[str] = Field(alias="paymentMethod", default=None)
    payment_channel: Optional[str] = Field(alias="paymentChannel", default=None)
    description: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_invoice(cls, invoice: Invoice) -> "InvoiceResponse":
        return cls(
            id=invoice.id,
            amount=invoice.amount,
            status=invoice.status,
            is_prorated=invoice.is_prorated,
            plan_name=invoice.plan_snapshot_name,
            price_per_seat=invoice.price_per_seat_snapshot,
            seat_count=invoice.seat_count_snapshot,
            billing_cycle=invoice.billing_cycle_snapshot,
            period_start=invoice.period_start,
            period_end=invoice.period_end,
            payment_url=invoice.gateway_invoice_url,
            expires_at=invoice.gateway_expiry_date,
            issue_date=invoice.issue_date,
            paid_at=invoice.paid_at,
            payment_method=invoice.payment_method,
            payment_channel=invoice.payment_channel,
            description=invoice.description,
        )

    @classmethod
    def from_checkout(cls, result: CheckoutResult) -> "InvoiceResponse":
        return cls.from_invoice(result.invoice).model_copy(
            update={"payment_url": result.payment_url, "expires_at": result.expires_at}
        )


class InvoiceListResponse(BaseModel):
    invoices: List[InvoiceResponse]

    model_config = ConfigDict(populate_by_name=True)


class CheckoutRequest(BaseModel):
    plan_id: str = Field(alias="planId")
    seat_count: int = Field(alias="seatCount", ge=1)
    billing_cycle: BillingCycle = Field(alias="billingCycle", default=BillingCycle.MONTHLY)
    payer_email: EmailStr = Field(alias="payerEmail")

    model_config = ConfigDict(populate_by_name=True)


class UpgradeRequest(BaseModel):
    plan_id: str = Field(alias="planId")
    seat_count: Optional[int] = Field(alias="seatCount", default=None, ge=1)
    payer_email: EmailStr = Field(alias="payerEmail")

    model_config = ConfigDict(populate_by_name=True)


class DowngradeRequest(BaseModel):
    plan_id: str = Field(alias="planId")

    model_config = ConfigDict(populate_by_name=True)


class ChangeSeatsRequest(BaseModel):
    seat_count: int = Field(alias="seatCount", ge=1)
    payer_email: Optional[EmailStr] = Field(alias="payerEmail", default=None)

    model_config = ConfigDict(populate_by_name=True)


class ChangeSeatsResponse(BaseModel):
    invoice: Optional[InvoiceResponse] = None
    is_pending: bool = Field(alias="isPending")
    pending_max_seats: Optional[int] = Field(alias="pendingMaxSeats", default=None)
    effective_at: Optional[datetime] = Field(alias="effectiveAt", default=None)
    message: str

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_result(cls, result: SeatChangeResult) -> "ChangeSeatsResponse":
        invoice = None
        if result.invoice is not None:
            invoice = InvoiceResponse.from_invoice(result.invoice)
            if result.payment_url:
                invoice = invoice.model_copy(update={"payment_url": result.payment_url})
        return cls(
            invoice=invoice,
            is_pending=result.is_pending,
            pending_max_seats=result.pending_max_seats,
            effective_at=result.effective_at,
            message=result.message,
        )


class CancelSubscriptionRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)

    model_config = ConfigDict(populate_by_name=True)


class WebhookAck(BaseModel):
    received: bool = True
    outcome: str

    model_config = ConfigDict(populate_by_name=True)
