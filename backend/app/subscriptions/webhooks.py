"""Applies payment gateway callbacks to invoices and subscriptions."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from .errors import SubscriptionNotFoundError
from .models import Invoice, InvoiceStatus, SubscriptionStatus
from .repository import SubscriptionStore, TransactionScope

logger = logging.getLogger(__name__)

_SUCCESS_STATUSES = {"PAID", "SETTLED"}


class WebhookOutcome(str, Enum):
    """What a single webhook delivery did."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    EXPIRED = "expired"
    FAILED = "failed"
    UNKNOWN_INVOICE = "unknown_invoice"
    IGNORED = "ignored"


class WebhookPayload(BaseModel):
    """Subset of the gateway invoice callback the engine relies on."""

    id: str
    external_id: Optional[str] = None
    status: str
    amount: Optional[Decimal] = None
    paid_amount: Optional[Decimal] = None
    paid_at: Optional[str] = None
    payment_method: Optional[str] = None
    payment_channel: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    @field_validator("status")
    @classmethod
    def _normalize_status(cls, value: str) -> str:
        return value.strip().upper()


class WebhookResult(BaseModel):
    outcome: WebhookOutcome
    invoice_id: Optional[str] = None
    subscription_id: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


def _parse_optional_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(slots=True)
class WebhookProcessor:
    """Routes invoice callbacks by status.

    Deliveries are at-least-once; an invoice that is already paid is treated
    as a duplicate and leaves the subscription untouched.
    """

    store: SubscriptionStore
    clock: Optional[Callable[[], datetime]] = None

    def _now(self) -> datetime:
        return self.clock() if self.clock else datetime.now(timezone.utc)

    def process(self, payload: WebhookPayload) -> WebhookResult:
        invoice = self.store.invoices.get_by_gateway_id(payload.id)
        if invoice is None:
            logger.warning(
                "Webhook for unknown invoice ignored",
                extra={"gateway_invoice_id": payload.id, "external_id": payload.external_id},
            )
            return WebhookResult(outcome=WebhookOutcome.UNKNOWN_INVOICE)

        if payload.status in _SUCCESS_STATUSES:
            return self._handle_paid(invoice, payload)
        if payload.status == "EXPIRED":
            return self._handle_terminal(invoice, InvoiceStatus.EXPIRED, WebhookOutcome.EXPIRED)
        if payload.status == "FAILED":
            return self._handle_terminal(invoice, InvoiceStatus.FAILED, WebhookOutcome.FAILED)

        logger.info(
            "Webhook status ignored",
            extra={"invoice_id": invoice.id, "status": payload.status},
        )
        return self._result(WebhookOutcome.IGNORED, invoice)

    @staticmethod
    def _result(outcome: WebhookOutcome, invoice: Invoice) -> WebhookResult:
        return WebhookResult(outcome=outcome, invoice_id=invoice.id, subscription_id=invoice.subscription_id)

    def _handle_terminal(
        self, invoice: Invoice, status: InvoiceStatus, outcome: WebhookOutcome
    ) -> WebhookResult:
        changed = self.store.invoices.transition_status(invoice.id, status, from_status=InvoiceStatus.PENDING)
        if not changed:
            logger.info(
                "Invoice not pending; status callback ignored",
                extra={"invoice_id": invoice.id, "current_status": invoice.status.value, "requested": status.value},
            )
            return self._result(WebhookOutcome.IGNORED, invoice)
        logger.info("Invoice marked %s", status.value, extra={"invoice_id": invoice.id})
        return self._result(outcome, invoice)

    def _handle_paid(self, invoice: Invoice, payload: WebhookPayload) -> WebhookResult:
        if invoice.status == InvoiceStatus.PAID:
            logger.info("Duplicate payment callback ignored", extra={"invoice_id": invoice.id})
            return self._result(WebhookOutcome.DUPLICATE, invoice)

        reported = payload.paid_amount if payload.paid_amount is not None else payload.amount
        if reported is not None and Decimal(reported) != invoice.amount:
            logger.warning(
                "Paid amount differs from invoice amount",
                extra={"invoice_id": invoice.id, "invoice_amount": str(invoice.amount), "paid_amount": str(reported)},
            )

        paid_at = _parse_optional_datetime(payload.paid_at) or self._now()
        with self.store.transaction() as tx:
            recorded = tx.invoices.mark_paid(
                invoice.id,
                paid_at=paid_at,
                payment_method=payload.payment_method,
                payment_channel=payload.payment_channel,
            )
            if not recorded:
                logger.info("Duplicate payment callback ignored", extra={"invoice_id": invoice.id})
                return self._result(WebhookOutcome.DUPLICATE, invoice)
            self._apply_invoice(tx, invoice)

        logger.info(
            "Payment applied",
            extra={
                "invoice_id": invoice.id,
                "subscription_id": invoice.subscription_id,
                "prorated": invoice.is_prorated,
            },
        )
        return self._result(WebhookOutcome.APPLIED, invoice)

    def _apply_invoice(self, tx: TransactionScope, invoice: Invoice) -> None:
        subscription = tx.subscriptions.get(invoice.subscription_id)
        if subscription is None:
            raise SubscriptionNotFoundError(detail={"subscription_id": invoice.subscription_id})

        if invoice.is_prorated:
            updated = subscription.model_copy(
                update={"max_seats": invoice.seat_count_snapshot, "pending_max_seats": None}
            )
        else:
            active_employees = self.store.employees.count_active_by_company_id(invoice.company_id)
            seats = invoice.seat_count_snapshot
            if active_employees > seats:
                plan = self.store.plans.get_plan(invoice.plan_id)
                cap = plan.max_seats if plan is not None else None
                raised = active_employees if cap is None else max(seats, min(active_employees, cap))
                logger.warning(
                    "Active employees exceed purchased seats; raising seat count",
                    extra={
                        "invoice_id": invoice.id,
                        "purchased": seats,
                        "active_employees": active_employees,
                        "seat_cap": cap,
                        "granted": raised,
                        "overage": active_employees - raised,
                    },
                )
                seats = raised
            updated = subscription.model_copy(
                update={
                    "plan_id": invoice.plan_id,
                    "pending_plan_id": None,
                    "max_seats": seats,
                    "pending_max_seats": None,
                    "billing_cycle": invoice.billing_cycle_snapshot,
                    "current_period_start": invoice.period_start,
                    "current_period_end": invoice.period_end,
                    "trial_ends_at": None,
                    "status": SubscriptionStatus.ACTIVE,
                }
            )
        tx.subscriptions.update(updated)


__all__ = ["WebhookOutcome", "WebhookPayload", "WebhookProcessor", "WebhookResult"]
