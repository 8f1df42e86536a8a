"""Plan catalog lookups and the default plan set."""
from __future__ import annotations

from decimal import Decimal
from typing import Dict, FrozenSet, Iterable, Optional, Sequence

from .errors import PlanNotActiveError, PlanNotFoundError
from .models import Feature, FeatureCode, Plan
from .repository import PlanRepository

TRIAL_PLAN_NAME = "Free Trial"
DEFAULT_TRIAL_SEATS = 5

DEFAULT_FEATURES: Dict[FeatureCode, Feature] = {
    FeatureCode.ATTENDANCE: Feature(id="feat-attendance", code=FeatureCode.ATTENDANCE, name="Attendance"),
    FeatureCode.LEAVE: Feature(id="feat-leave", code=FeatureCode.LEAVE, name="Leave Management"),
    FeatureCode.PAYROLL: Feature(id="feat-payroll", code=FeatureCode.PAYROLL, name="Payroll System"),
    FeatureCode.INVITATION: Feature(id="feat-invitation", code=FeatureCode.INVITATION, name="Employee Invitation"),
    FeatureCode.SCHEDULE: Feature(id="feat-schedule", code=FeatureCode.SCHEDULE, name="Work Schedule"),
    FeatureCode.REPORT: Feature(id="feat-report", code=FeatureCode.REPORT, name="Reports"),
}


def _features(*codes: FeatureCode) -> tuple:
    return tuple(DEFAULT_FEATURES[code] for code in codes)


_STANDARD_FEATURES = (
    FeatureCode.ATTENDANCE,
    FeatureCode.LEAVE,
    FeatureCode.INVITATION,
    FeatureCode.SCHEDULE,
)

DEFAULT_PLANS: Sequence[Plan] = (
    Plan(
        id="plan-trial",
        name=TRIAL_PLAN_NAME,
        price_per_seat=Decimal("0"),
        tier_level=0,
        max_seats=DEFAULT_TRIAL_SEATS,
        features=_features(FeatureCode.ATTENDANCE, FeatureCode.LEAVE),
    ),
    Plan(
        id="plan-standard",
        name="Standard",
        price_per_seat=Decimal("12000"),
        tier_level=1,
        max_seats=50,
        features=_features(*_STANDARD_FEATURES),
    ),
    Plan(
        id="plan-premium",
        name="Premium",
        price_per_seat=Decimal("15000"),
        tier_level=2,
        max_seats=200,
        features=_features(*FeatureCode),
    ),
    Plan(
        id="plan-ultra",
        name="Ultra",
        price_per_seat=Decimal("20000"),
        tier_level=3,
        max_seats=None,
        features=_features(*FeatureCode),
    ),
)


class StaticPlanRepository:
    """In-process :class:`PlanRepository` for local development and tests."""

    def __init__(self, plans: Iterable[Plan] = DEFAULT_PLANS) -> None:
        self._plans: Dict[str, Plan] = {plan.id: plan for plan in plans}

    def list_plans(self, *, active_only: bool = True) -> Sequence[Plan]:
        plans = sorted(self._plans.values(), key=lambda plan: plan.tier_level)
        if active_only:
            return [plan for plan in plans if plan.is_active]
        return plans

    def get_plan(self, plan_id: str) -> Optional[Plan]:
        return self._plans.get(plan_id)

    def get_plan_by_name(self, name: str) -> Optional[Plan]:
        for plan in self._plans.values():
            if plan.name == name:
                return plan
        return None

    def list_features(self) -> Sequence[Feature]:
        return list(DEFAULT_FEATURES.values())


class PlanCatalog:
    """Read-only access to plans, raising domain errors for unknown ids."""

    def __init__(self, plans: PlanRepository) -> None:
        self._plans = plans

    def list_plans(self) -> Sequence[Plan]:
        return self._plans.list_plans(active_only=True)

    def list_features(self) -> Sequence[Feature]:
        return self._plans.list_features()

    def get_plan(self, plan_id: str) -> Plan:
        plan = self._plans.get_plan(plan_id)
        if plan is None:
            raise PlanNotFoundError(f"Unknown plan: {plan_id}")
        return plan

    def get_purchasable_plan(self, plan_id: str) -> Plan:
        plan = self.get_plan(plan_id)
        if not plan.is_active:
            raise PlanNotActiveError(detail={"plan_id": plan_id})
        return plan

    def get_plan_by_name(self, name: str) -> Plan:
        plan = self._plans.get_plan_by_name(name)
        if plan is None:
            raise PlanNotFoundError(f"Unknown plan: {name}")
        return plan

    def capabilities_for(self, plan_id: str) -> FrozenSet[FeatureCode]:
        return self.get_plan(plan_id).capabilities


__all__ = [
    "DEFAULT_FEATURES",
    "DEFAULT_PLANS",
    "DEFAULT_TRIAL_SEATS",
    "PlanCatalog",
    "StaticPlanRepository",
    "TRIAL_PLAN_NAME",
]
