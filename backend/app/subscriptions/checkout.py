"""Full-price checkout for a plan, seat count and billing cycle."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Union
from uuid import uuid4

from pydantic import EmailStr, TypeAdapter, ValidationError

from .catalog import PlanCatalog
from .config import BillingConfig
from .errors import (
    InvalidBillingCycleError,
    InvalidPayerEmailError,
    InvalidSeatCountError,
    PendingInvoiceExistsError,
    SeatLimitExceededError,
    SeatsBelowActiveEmployeesError,
    SubscriptionNotFoundError,
    TrialNotAllowedError,
)
from .gateway import PaymentGatewayClient, expire_remote_invoice
from .models import BillingCycle, CheckoutResult, Invoice, InvoiceStatus
from .proration import calculate_full_amount, calculate_period_end, format_invoice_description
from .repository import SubscriptionStore

logger = logging.getLogger(__name__)

_email_adapter = TypeAdapter(EmailStr)


def validate_payer_email(value: Optional[str]) -> str:
    if not value:
        raise InvalidPayerEmailError()
    try:
        return _email_adapter.validate_python(value.strip())
    except ValidationError as exc:
        raise InvalidPayerEmailError(detail={"payer_email": value}) from exc


def coerce_billing_cycle(value: Union[BillingCycle, str]) -> BillingCycle:
    try:
        return BillingCycle(value)
    except ValueError as exc:
        raise InvalidBillingCycleError(detail={"billing_cycle": str(value)}) from exc


@dataclass(slots=True)
class CheckoutOrchestrator:
    """Creates a gateway invoice and a pending local invoice for a full billing period.

    The subscription row is never touched here; it only changes once the
    payment webhook confirms the invoice.
    """

    store: SubscriptionStore
    gateway: PaymentGatewayClient
    config: BillingConfig
    clock: Optional[Callable[[], datetime]] = None

    def _now(self) -> datetime:
        return self.clock() if self.clock else datetime.now(timezone.utc)

    def checkout(
        self,
        *,
        company_id: str,
        plan_id: str,
        seat_count: int,
        billing_cycle: Union[BillingCycle, str],
        payer_email: Optional[str],
    ) -> CheckoutResult:
        if seat_count < 1:
            raise InvalidSeatCountError()
        cycle = coerce_billing_cycle(billing_cycle)
        email = validate_payer_email(payer_email)

        plan = PlanCatalog(self.store.plans).get_purchasable_plan(plan_id)
        if not plan.is_paid:
            raise TrialNotAllowedError()

        subscription = self.store.subscriptions.get_by_company(company_id)
        if subscription is None:
            raise SubscriptionNotFoundError()

        if self.store.invoices.get_pending_for_subscription(subscription.id) is not None:
            raise PendingInvoiceExistsError()

        if not plan.allows_seats(seat_count):
            raise SeatLimitExceededError(
                f"{plan.name} allows at most {plan.max_seats} seats",
                detail={"max_seats": plan.max_seats, "requested_seats": seat_count},
            )

        active_employees = self.store.employees.count_active_by_company_id(company_id)
        if seat_count < active_employees:
            raise SeatsBelowActiveEmployeesError(
                f"Seat count {seat_count} is below {active_employees} active employees",
                detail={"active_employees": active_employees, "requested_seats": seat_count},
            )

        now = self._now()
        period_end = calculate_period_end(now, cycle)
        amount = calculate_full_amount(plan.price_per_seat, seat_count, cycle)
        description = format_invoice_description(plan.name, seat_count, cycle)

        remote = self.gateway.create_invoice(
            external_id=f"sub-{company_id}-{int(now.timestamp())}",
            amount=amount,
            payer_email=email,
            description=description,
            currency=self.config.currency,
            duration_seconds=self.config.invoice_expiry_seconds,
            success_redirect_url=self.config.success_redirect_url,
            failure_redirect_url=self.config.failure_redirect_url,
        )

        invoice = Invoice(
            id=str(uuid4()),
            company_id=company_id,
            subscription_id=subscription.id,
            plan_id=plan.id,
            amount=amount,
            status=InvoiceStatus.PENDING,
            is_prorated=False,
            plan_snapshot_name=plan.name,
            price_per_seat_snapshot=plan.price_per_seat,
            seat_count_snapshot=seat_count,
            billing_cycle_snapshot=cycle,
            period_start=now,
            period_end=period_end,
            gateway_invoice_id=remote.id,
            gateway_invoice_url=remote.invoice_url,
            gateway_expiry_date=remote.expiry_date,
            issue_date=now,
            description=description,
            created_at=now,
            updated_at=now,
        )
        try:
            with self.store.transaction() as tx:
                stored = tx.invoices.create(invoice)
        except Exception:
            expire_remote_invoice(self.gateway, remote.id, reason="checkout_persist_failed")
            raise

        logger.info(
            "Checkout invoice created",
            extra={
                "company_id": company_id,
                "invoice_id": stored.id,
                "plan": plan.name,
                "seats": seat_count,
                "amount": str(amount),
            },
        )
        return CheckoutResult(invoice=stored, payment_url=remote.invoice_url, expires_at=remote.expiry_date)


__all__ = ["CheckoutOrchestrator", "coerce_billing_cycle", "validate_payer_email"]
