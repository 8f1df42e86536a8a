"""Facade exposing subscription operations to the API and background jobs."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, FrozenSet, List, Optional, Sequence, Union
from uuid import uuid4

from .cancellation import CancellationOrchestrator
from .catalog import DEFAULT_TRIAL_SEATS, PlanCatalog
from .checkout import CheckoutOrchestrator
from .config import BillingConfig
from .errors import (
    AlreadySubscribedError,
    InvalidWebhookTokenError,
    InvoiceNotFoundError,
    SubscriptionNotFoundError,
)
from .gateway import PaymentGatewayClient, verify_callback_token
from .lifecycle import LifecycleJobs, SweepOutcome
from .models import (
    BillingCycle,
    CheckoutResult,
    Feature,
    FeatureCode,
    Invoice,
    Plan,
    SeatChangeResult,
    Subscription,
    SubscriptionOverview,
    SubscriptionStatus,
)
from .plan_changes import PlanChangeOrchestrator
from .repository import SubscriptionStore
from .seats import SeatChangeOrchestrator
from .webhooks import WebhookPayload, WebhookProcessor, WebhookResult

logger = logging.getLogger(__name__)


class SubscriptionService:
    """Wires the orchestrators around one store, gateway and clock."""

    def __init__(
        self,
        store: SubscriptionStore,
        gateway: PaymentGatewayClient,
        config: BillingConfig,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._config = config
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._catalog = PlanCatalog(store.plans)
        self.checkout_orchestrator = CheckoutOrchestrator(store, gateway, config, self._clock)
        self.webhook_processor = WebhookProcessor(store, self._clock)
        self.seat_orchestrator = SeatChangeOrchestrator(store, gateway, config, self._clock)
        self.plan_changes = PlanChangeOrchestrator(store, self.checkout_orchestrator)
        self.cancellation = CancellationOrchestrator(store, gateway)
        self.lifecycle = LifecycleJobs(
            store,
            grace_period_days=config.grace_period_days,
            invoice_expiry_hours=config.invoice_expiry_hours,
            clock=self._clock,
        )

    @property
    def catalog(self) -> PlanCatalog:
        return self._catalog

    def _require_subscription(self, company_id: str) -> Subscription:
        subscription = self._store.subscriptions.get_by_company(company_id)
        if subscription is None:
            raise SubscriptionNotFoundError()
        return subscription

    # Catalog reads

    def get_plans(self) -> Sequence[Plan]:
        return self._catalog.list_plans()

    def get_plan(self, plan_id: str) -> Plan:
        return self._catalog.get_plan(plan_id)

    def get_features(self) -> Sequence[Feature]:
        return self._catalog.list_features()

    # Subscription reads

    def get_my_subscription(self, company_id: str) -> SubscriptionOverview:
        subscription = self._require_subscription(company_id)
        plan = self._catalog.get_plan(subscription.plan_id)
        pending_plan = (
            self._catalog.get_plan(subscription.pending_plan_id) if subscription.pending_plan_id else None
        )
        used_seats = self._store.employees.count_active_by_company_id(company_id)
        return SubscriptionOverview(
            subscription=subscription,
            plan=plan,
            pending_plan=pending_plan,
            capabilities=plan.capabilities,
            used_seats=used_seats,
        )

    def get_subscription_features(self, company_id: str) -> FrozenSet[FeatureCode]:
        subscription = self._require_subscription(company_id)
        return self._catalog.capabilities_for(subscription.plan_id)

    def has_feature(self, company_id: str, feature: Union[FeatureCode, str]) -> bool:
        subscription = self._store.subscriptions.get_by_company(company_id)
        if subscription is None or not subscription.has_access:
            return False
        try:
            code = FeatureCode(feature)
        except ValueError:
            return False
        return code in self._catalog.capabilities_for(subscription.plan_id)

    def can_add_employee(self, company_id: str) -> bool:
        subscription = self._store.subscriptions.get_by_company(company_id)
        if subscription is None or not subscription.has_access:
            return False
        used = self._store.employees.count_active_by_company_id(company_id)
        return used < subscription.max_seats

    def list_invoices(self, company_id: str, *, limit: int = 20) -> Sequence[Invoice]:
        return self._store.invoices.list_by_company(company_id, limit=limit)

    def get_invoice(self, company_id: str, invoice_id: str) -> Invoice:
        invoice = self._store.invoices.get(invoice_id)
        if invoice is None or invoice.company_id != company_id:
            raise InvoiceNotFoundError()
        return invoice

    # Writes

    def create_trial_subscription(self, company_id: str) -> Subscription:
        if self._store.subscriptions.get_by_company(company_id) is not None:
            raise AlreadySubscribedError()

        plan = self._catalog.get_plan_by_name(self._config.trial_plan_name)
        now = self._clock()
        trial_end = now + timedelta(days=self._config.trial_duration_days)
        subscription = Subscription(
            id=str(uuid4()),
            company_id=company_id,
            plan_id=plan.id,
            status=SubscriptionStatus.TRIAL,
            max_seats=plan.max_seats or DEFAULT_TRIAL_SEATS,
            current_period_start=now,
            current_period_end=trial_end,
            trial_ends_at=trial_end,
            billing_cycle=BillingCycle.MONTHLY,
            auto_renew=False,
            created_at=now,
            updated_at=now,
        )
        created = self._store.subscriptions.create(subscription)
        logger.info(
            "Trial subscription created",
            extra={"company_id": company_id, "subscription_id": created.id, "trial_ends_at": trial_end.isoformat()},
        )
        return created

    def checkout(
        self,
        company_id: str,
        *,
        plan_id: str,
        seat_count: int,
        billing_cycle: Union[BillingCycle, str],
        payer_email: Optional[str],
    ) -> CheckoutResult:
        return self.checkout_orchestrator.checkout(
            company_id=company_id,
            plan_id=plan_id,
            seat_count=seat_count,
            billing_cycle=billing_cycle,
            payer_email=payer_email,
        )

    def upgrade_plan(
        self,
        company_id: str,
        *,
        plan_id: str,
        payer_email: Optional[str],
        seat_count: Optional[int] = None,
    ) -> CheckoutResult:
        return self.plan_changes.upgrade(
            company_id=company_id, plan_id=plan_id, payer_email=payer_email, seat_count=seat_count
        )

    def downgrade_plan(self, company_id: str, *, plan_id: str) -> Subscription:
        return self.plan_changes.downgrade(company_id=company_id, plan_id=plan_id)

    def cancel_downgrade(self, company_id: str) -> Subscription:
        return self.plan_changes.cancel_downgrade(company_id=company_id)

    def change_seats(
        self, company_id: str, *, seat_count: int, payer_email: Optional[str] = None
    ) -> SeatChangeResult:
        return self.seat_orchestrator.change_seats(
            company_id=company_id, seat_count=seat_count, payer_email=payer_email
        )

    def cancel_subscription(self, company_id: str, *, reason: Optional[str] = None) -> Subscription:
        return self.cancellation.cancel_subscription(company_id=company_id, reason=reason)

    def cancel_pending_invoice(self, company_id: str, invoice_id: str) -> Invoice:
        return self.cancellation.cancel_pending_invoice(company_id=company_id, invoice_id=invoice_id)

    # Webhooks and jobs

    def verify_webhook_token(self, token: Optional[str]) -> None:
        if not verify_callback_token(token, self._config.webhook_token):
            raise InvalidWebhookTokenError()

    def handle_webhook(self, payload: WebhookPayload) -> WebhookResult:
        return self.webhook_processor.process(payload)

    def run_lifecycle_jobs(self, now: Optional[datetime] = None) -> List[SweepOutcome]:
        return self.lifecycle.run_all(now)


__all__ = ["SubscriptionService"]
