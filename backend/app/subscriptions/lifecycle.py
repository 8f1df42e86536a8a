"""Time-driven lifecycle sweeps.

Every sweep is idempotent: rows are selected by status and timestamp, so a
second run over the same state transitions nothing.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from .catalog import PlanCatalog
from .errors import PlanNotFoundError
from .models import SubscriptionStatus
from .repository import SubscriptionStore

logger = logging.getLogger(__name__)


@dataclass
class SweepOutcome:
    """Counts reported by a single sweep run."""

    job: str
    transitioned: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass(slots=True)
class LifecycleJobs:
    store: SubscriptionStore
    grace_period_days: int = 7
    invoice_expiry_hours: int = 24
    clock: Optional[Callable[[], datetime]] = None

    def _now(self, now: Optional[datetime]) -> datetime:
        if now is not None:
            return now
        return self.clock() if self.clock else datetime.now(timezone.utc)

    def process_expired_trials(self, now: Optional[datetime] = None) -> SweepOutcome:
        """Expire ended trials and cancelled subscriptions whose paid period is over."""

        moment = self._now(now)
        outcome = SweepOutcome(job="process_expired_trials")
        outcome.transitioned += self.store.subscriptions.expire_trials(moment)
        outcome.transitioned += self.store.subscriptions.transition_lapsed(
            from_statuses=[SubscriptionStatus.CANCELLED],
            to_status=SubscriptionStatus.EXPIRED,
            cutoff=moment,
        )
        return self._report(outcome)

    def process_past_due_subscriptions(self, now: Optional[datetime] = None) -> SweepOutcome:
        """Move lapsed active subscriptions to past_due, then expire them after the grace period."""

        moment = self._now(now)
        outcome = SweepOutcome(job="process_past_due_subscriptions")
        outcome.transitioned += self.store.subscriptions.transition_lapsed(
            from_statuses=[SubscriptionStatus.ACTIVE],
            to_status=SubscriptionStatus.PAST_DUE,
            cutoff=moment,
        )
        outcome.transitioned += self.store.subscriptions.transition_lapsed(
            from_statuses=[SubscriptionStatus.PAST_DUE],
            to_status=SubscriptionStatus.EXPIRED,
            cutoff=moment - timedelta(days=self.grace_period_days),
        )
        return self._report(outcome)

    def expire_stale_invoices(self, now: Optional[datetime] = None) -> SweepOutcome:
        moment = self._now(now)
        outcome = SweepOutcome(job="expire_stale_invoices")
        outcome.transitioned = self.store.invoices.expire_stale(
            created_before=moment - timedelta(hours=self.invoice_expiry_hours)
        )
        return self._report(outcome)

    def apply_pending_downgrades(self, now: Optional[datetime] = None) -> SweepOutcome:
        """Apply scheduled seat reductions and plan downgrades whose period has ended."""

        moment = self._now(now)
        outcome = SweepOutcome(job="apply_pending_downgrades")

        for subscription in self.store.subscriptions.list_due_pending_seats(moment):
            pending = subscription.pending_max_seats
            if pending is None:
                continue
            active = self.store.employees.count_active_by_company_id(subscription.company_id)
            if pending < active:
                logger.warning(
                    "Pending seat reduction below active employees; left pending",
                    extra={"subscription_id": subscription.id, "pending_max_seats": pending, "active_employees": active},
                )
                outcome.skipped += 1
                continue
            if self.store.subscriptions.apply_pending_max_seats(subscription.id):
                outcome.transitioned += 1

        catalog = PlanCatalog(self.store.plans)
        for subscription in self.store.subscriptions.list_due_pending_plans(moment):
            try:
                plan = catalog.get_plan(subscription.pending_plan_id or "")
            except PlanNotFoundError:
                outcome.errors.append(f"{subscription.id}: unknown pending plan {subscription.pending_plan_id}")
                continue
            active = self.store.employees.count_active_by_company_id(subscription.company_id)
            if not plan.allows_seats(active):
                logger.warning(
                    "Pending plan cannot hold active employees; left pending",
                    extra={"subscription_id": subscription.id, "plan": plan.name, "active_employees": active},
                )
                outcome.skipped += 1
                continue
            seats = subscription.max_seats
            if plan.max_seats is not None:
                seats = min(seats, plan.max_seats)
            if self.store.subscriptions.apply_pending_plan(subscription.id, max_seats=seats):
                outcome.transitioned += 1

        return self._report(outcome)

    def run_all(self, now: Optional[datetime] = None) -> List[SweepOutcome]:
        moment = self._now(now)
        outcomes: List[SweepOutcome] = []
        for sweep in (
            self.process_expired_trials,
            self.process_past_due_subscriptions,
            self.expire_stale_invoices,
            self.apply_pending_downgrades,
        ):
            try:
                outcomes.append(sweep(moment))
            except Exception as exc:
                logger.exception("Lifecycle sweep failed", extra={"job": sweep.__name__})
                outcomes.append(SweepOutcome(job=sweep.__name__, errors=[str(exc)]))
        return outcomes

    @staticmethod
    def _report(outcome: SweepOutcome) -> SweepOutcome:
        logger.info(
            "Lifecycle sweep finished",
            extra={
                "job": outcome.job,
                "transitioned": outcome.transitioned,
                "skipped": outcome.skipped,
                "errors": len(outcome.errors),
            },
        )
        return outcome


__all__ = ["LifecycleJobs", "SweepOutcome"]
