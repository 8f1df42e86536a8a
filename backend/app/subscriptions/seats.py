"""Mid-cycle seat changes: prorated upsell and deferred downsell."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional
from uuid import uuid4

from .catalog import PlanCatalog
from .config import BillingConfig
from .errors import (
    CannotUpgradeDuringGracePeriodError,
    InvalidSeatCountError,
    InvalidSubscriptionStateError,
    PendingInvoiceExistsError,
    SameAsCurrentSeatsError,
    SeatLimitExceededError,
    SeatsBelowActiveEmployeesError,
    SubscriptionNotFoundError,
)
from .gateway import PaymentGatewayClient, expire_remote_invoice
from .models import (
    SEAT_CHANGE_STATUSES,
    Invoice,
    InvoiceStatus,
    Plan,
    SeatChangeResult,
    Subscription,
    SubscriptionStatus,
)
from .proration import format_upsell_description, quote_seat_increase, upsell_invoice_duration
from .repository import SubscriptionStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SeatChangeOrchestrator:
    store: SubscriptionStore
    gateway: PaymentGatewayClient
    config: BillingConfig
    clock: Optional[Callable[[], datetime]] = None

    def _now(self) -> datetime:
        return self.clock() if self.clock else datetime.now(timezone.utc)

    def change_seats(
        self,
        *,
        company_id: str,
        seat_count: int,
        payer_email: Optional[str] = None,
    ) -> SeatChangeResult:
        """Increase seats through a prorated invoice or schedule a reduction for renewal."""

        if seat_count < 1:
            raise InvalidSeatCountError()

        subscription = self.store.subscriptions.get_by_company(company_id)
        if subscription is None:
            raise SubscriptionNotFoundError()
        if seat_count == subscription.max_seats:
            raise SameAsCurrentSeatsError()
        if subscription.status not in SEAT_CHANGE_STATUSES:
            raise InvalidSubscriptionStateError(
                f"Seats cannot be changed while the subscription is {subscription.status.value}"
            )
        if self.store.invoices.get_pending_for_subscription(subscription.id) is not None:
            raise PendingInvoiceExistsError()

        plan = PlanCatalog(self.store.plans).get_plan(subscription.plan_id)
        if not plan.allows_seats(seat_count):
            raise SeatLimitExceededError(
                f"{plan.name} allows at most {plan.max_seats} seats",
                detail={"max_seats": plan.max_seats, "requested_seats": seat_count},
            )

        if seat_count > subscription.max_seats:
            return self._upsell(subscription, plan, seat_count, payer_email)
        return self._downsell(subscription, seat_count)

    def _upsell(
        self,
        subscription: Subscription,
        plan: Plan,
        seat_count: int,
        payer_email: Optional[str],
    ) -> SeatChangeResult:
        if subscription.status == SubscriptionStatus.PAST_DUE:
            raise CannotUpgradeDuringGracePeriodError()

        now = self._now()
        quote = quote_seat_increase(
            price_per_seat=plan.price_per_seat,
            current_seats=subscription.max_seats,
            new_seats=seat_count,
            cycle=subscription.billing_cycle,
            period_end=subscription.current_period_end,
            now=now,
        )
        if quote.days_remaining <= 0:
            raise InvalidSubscriptionStateError("The current billing period has already ended")

        description = format_upsell_description(plan.name, subscription.max_seats, seat_count)
        remote = self.gateway.create_invoice(
            external_id=f"seat-up-{subscription.id}-{int(now.timestamp())}",
            amount=quote.amount,
            payer_email=payer_email,
            description=description,
            currency=self.config.currency,
            duration_seconds=upsell_invoice_duration(subscription.current_period_end, now),
            success_redirect_url=self.config.success_redirect_url,
            failure_redirect_url=self.config.failure_redirect_url,
        )

        invoice = Invoice(
            id=str(uuid4()),
            company_id=subscription.company_id,
            subscription_id=subscription.id,
            plan_id=plan.id,
            amount=quote.amount,
            status=InvoiceStatus.PENDING,
            is_prorated=True,
            plan_snapshot_name=plan.name,
            price_per_seat_snapshot=plan.price_per_seat,
            seat_count_snapshot=seat_count,
            billing_cycle_snapshot=subscription.billing_cycle,
            period_start=subscription.current_period_start,
            period_end=subscription.current_period_end,
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
                if subscription.pending_max_seats is not None:
                    tx.subscriptions.set_pending_max_seats(subscription.id, None)
        except Exception:
            expire_remote_invoice(self.gateway, remote.id, reason="upsell_persist_failed")
            raise

        logger.info(
            "Prorated seat invoice created",
            extra={
                "subscription_id": subscription.id,
                "invoice_id": stored.id,
                "from_seats": subscription.max_seats,
                "to_seats": seat_count,
                "amount": str(quote.amount),
            },
        )
        return SeatChangeResult(
            invoice=stored,
            payment_url=remote.invoice_url,
            is_pending=False,
            message=f"Pay the prorated invoice to add {quote.additional_seats} seats",
        )

    def _downsell(self, subscription: Subscription, seat_count: int) -> SeatChangeResult:
        active_employees = self.store.employees.count_active_by_company_id(subscription.company_id)
        if seat_count < active_employees:
            raise SeatsBelowActiveEmployeesError(
                f"Cannot reduce to {seat_count} seats with {active_employees} active employees",
                detail={"active_employees": active_employees, "requested_seats": seat_count},
            )

        updated = self.store.subscriptions.set_pending_max_seats(subscription.id, seat_count)
        if updated is None:
            raise SubscriptionNotFoundError()

        effective_at = subscription.current_period_end
        logger.info(
            "Seat reduction scheduled",
            extra={
                "subscription_id": subscription.id,
                "from_seats": subscription.max_seats,
                "to_seats": seat_count,
                "effective_at": effective_at.isoformat(),
                "dropped_pending_plan_id": subscription.pending_plan_id,
            },
        )
        message = (
            f"Seat count will be reduced from {subscription.max_seats} to {seat_count} "
            f"at next renewal on {effective_at.strftime('%d %b %Y')}. No charge."
        )
        if subscription.pending_plan_id:
            dropped = self.store.plans.get_plan(subscription.pending_plan_id)
            label = dropped.name if dropped is not None else subscription.pending_plan_id
            message += f" The scheduled change to the {label} plan was cancelled."
        return SeatChangeResult(
            is_pending=True,
            pending_max_seats=seat_count,
            effective_at=effective_at,
            message=message,
        )


__all__ = ["SeatChangeOrchestrator"]
