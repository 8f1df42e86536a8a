"""Subscription cancellation and voiding of unpaid invoices."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .errors import (
    InvalidSubscriptionStateError,
    InvoiceNotFoundError,
    InvoiceNotPendingError,
    SubscriptionNotFoundError,
)
from .gateway import PaymentGatewayClient, expire_remote_invoice
from .models import Invoice, InvoiceStatus, Subscription, SubscriptionStatus
from .repository import SubscriptionStore

logger = logging.getLogger(__name__)

_CANCELLABLE_STATUSES = {SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIAL}


@dataclass(slots=True)
class CancellationOrchestrator:
    store: SubscriptionStore
    gateway: PaymentGatewayClient

    def cancel_subscription(self, *, company_id: str, reason: Optional[str] = None) -> Subscription:
        """Cancel the subscription and void every pending invoice.

        Access continues until the end of the current period; the lifecycle
        sweep expires the subscription afterwards.
        """

        subscription = self.store.subscriptions.get_by_company(company_id)
        if subscription is None:
            raise SubscriptionNotFoundError()
        if subscription.status not in _CANCELLABLE_STATUSES:
            raise InvalidSubscriptionStateError(
                f"Cannot cancel a {subscription.status.value} subscription"
            )

        voided = 0
        with self.store.transaction() as tx:
            for invoice in tx.invoices.list_pending_for_subscription(subscription.id):
                expire_remote_invoice(self.gateway, invoice.gateway_invoice_id, reason="subscription_cancelled")
                if tx.invoices.transition_status(invoice.id, InvoiceStatus.EXPIRED):
                    voided += 1
            updated = tx.subscriptions.update_status(subscription.id, SubscriptionStatus.CANCELLED)
            if updated is None:
                raise SubscriptionNotFoundError()

        logger.info(
            "Subscription cancelled",
            extra={
                "subscription_id": subscription.id,
                "company_id": company_id,
                "voided_invoices": voided,
                "reason": reason or "",
            },
        )
        return updated

    def cancel_pending_invoice(self, *, company_id: str, invoice_id: str) -> Invoice:
        invoice = self.store.invoices.get(invoice_id)
        if invoice is None or invoice.company_id != company_id:
            raise InvoiceNotFoundError()
        if invoice.status != InvoiceStatus.PENDING:
            raise InvoiceNotPendingError(detail={"status": invoice.status.value})

        with self.store.transaction() as tx:
            expire_remote_invoice(self.gateway, invoice.gateway_invoice_id, reason="invoice_cancelled")
            if not tx.invoices.transition_status(invoice.id, InvoiceStatus.EXPIRED):
                raise InvoiceNotPendingError()

        logger.info("Pending invoice cancelled", extra={"invoice_id": invoice.id, "company_id": company_id})
        return invoice.model_copy(update={"status": InvoiceStatus.EXPIRED})


__all__ = ["CancellationOrchestrator"]
