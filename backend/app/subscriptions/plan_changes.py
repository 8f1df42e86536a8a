"""Plan upgrades (paid immediately) and downgrades (deferred to renewal)."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .catalog import PlanCatalog
from .checkout import CheckoutOrchestrator
from .errors import (
    InvalidSubscriptionStateError,
    NotADowngradeError,
    NotAnUpgradeError,
    SeatLimitExceededError,
    SubscriptionNotFoundError,
)
from .models import CheckoutResult, Subscription, SubscriptionStatus
from .repository import SubscriptionStore

logger = logging.getLogger(__name__)

_UPGRADE_STATUSES = {SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIAL}


@dataclass(slots=True)
class PlanChangeOrchestrator:
    store: SubscriptionStore
    checkout: CheckoutOrchestrator

    def _require_subscription(self, company_id: str) -> Subscription:
        subscription = self.store.subscriptions.get_by_company(company_id)
        if subscription is None:
            raise SubscriptionNotFoundError()
        return subscription

    def upgrade(
        self,
        *,
        company_id: str,
        plan_id: str,
        payer_email: Optional[str],
        seat_count: Optional[int] = None,
    ) -> CheckoutResult:
        """Start a full-price checkout for a higher tier on the current billing cycle."""

        subscription = self._require_subscription(company_id)
        if subscription.status not in _UPGRADE_STATUSES:
            raise InvalidSubscriptionStateError(
                f"Cannot upgrade a {subscription.status.value} subscription"
            )

        catalog = PlanCatalog(self.store.plans)
        current = catalog.get_plan(subscription.plan_id)
        target = catalog.get_purchasable_plan(plan_id)
        if target.tier_level <= current.tier_level:
            raise NotAnUpgradeError(detail={"current_plan": current.name, "target_plan": target.name})

        return self.checkout.checkout(
            company_id=company_id,
            plan_id=target.id,
            seat_count=seat_count or subscription.max_seats,
            billing_cycle=subscription.billing_cycle,
            payer_email=payer_email,
        )

    def downgrade(self, *, company_id: str, plan_id: str) -> Subscription:
        subscription = self._require_subscription(company_id)
        if subscription.status != SubscriptionStatus.ACTIVE:
            raise InvalidSubscriptionStateError("Only active subscriptions can be downgraded")

        catalog = PlanCatalog(self.store.plans)
        current = catalog.get_plan(subscription.plan_id)
        target = catalog.get_purchasable_plan(plan_id)
        if target.tier_level >= current.tier_level:
            raise NotADowngradeError(detail={"current_plan": current.name, "target_plan": target.name})
        if not target.is_paid:
            raise NotADowngradeError("Cannot downgrade to the free trial plan")

        active_employees = self.store.employees.count_active_by_company_id(company_id)
        if not target.allows_seats(active_employees):
            raise SeatLimitExceededError(
                f"{target.name} allows at most {target.max_seats} seats but {active_employees} employees are active",
                detail={"max_seats": target.max_seats, "active_employees": active_employees},
            )

        updated = self.store.subscriptions.set_pending_plan(subscription.id, target.id)
        if updated is None:
            raise SubscriptionNotFoundError()
        logger.info(
            "Plan downgrade scheduled",
            extra={
                "subscription_id": subscription.id,
                "from_plan": current.name,
                "to_plan": target.name,
                "effective_at": subscription.current_period_end.isoformat(),
            },
        )
        return updated

    def cancel_downgrade(self, *, company_id: str) -> Subscription:
        subscription = self._require_subscription(company_id)
        if subscription.pending_plan_id is None:
            return subscription
        updated = self.store.subscriptions.set_pending_plan(subscription.id, None)
        if updated is None:
            raise SubscriptionNotFoundError()
        logger.info("Plan downgrade cancelled", extra={"subscription_id": subscription.id})
        return updated


__all__ = ["PlanChangeOrchestrator"]
