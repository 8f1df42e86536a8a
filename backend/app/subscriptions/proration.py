"""Money and billing-period arithmetic.

All amounts are :class:`~decimal.Decimal` values rounded half-up to two
decimal places. Periods advance by calendar months; when the start day does
not exist in the target month the end of that month is used instead
(January 31 + 1 month = February 28/29).
"""
from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from .models import BillingCycle

CENT = Decimal("0.01")
MIN_UPSELL_EXPIRY = timedelta(hours=24)
_SECONDS_PER_DAY = Decimal(86400)


def quantize_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def add_months(moment: datetime, months: int) -> datetime:
    """Return ``moment`` shifted by ``months`` calendar months."""

    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def calculate_period_end(start: datetime, cycle: BillingCycle) -> datetime:
    return add_months(start, cycle.months)


def calculate_full_amount(price_per_seat: Decimal, seats: int, cycle: BillingCycle) -> Decimal:
    """Full price for ``seats`` over one billing cycle; yearly charges ten months."""

    return quantize_money(Decimal(price_per_seat) * seats * cycle.months_charged)


def days_remaining(period_end: datetime, now: datetime) -> Decimal:
    """Fractional days left in the period, never negative."""

    seconds = Decimal(str((period_end - now).total_seconds()))
    if seconds <= 0:
        return Decimal(0)
    return seconds / _SECONDS_PER_DAY


def calculate_prorated_amount(
    price_per_seat: Decimal,
    additional_seats: int,
    remaining_days: Decimal,
    cycle: BillingCycle,
) -> Decimal:
    """``price × additional_seats × remaining_days / total_days`` rounded to cents."""

    if additional_seats <= 0 or remaining_days <= 0:
        return Decimal("0.00")
    raw = Decimal(price_per_seat) * additional_seats * Decimal(remaining_days) / Decimal(cycle.total_days)
    return quantize_money(raw)


def upsell_invoice_duration(period_end: datetime, now: datetime) -> int:
    """Gateway invoice lifetime in seconds: the rest of the period, at least 24 hours."""

    remaining = period_end - now
    return int(max(remaining, MIN_UPSELL_EXPIRY).total_seconds())


@dataclass(frozen=True)
class ProrationQuote:
    """Prorated charge for adding seats mid-cycle."""

    current_seats: int
    new_seats: int
    price_per_seat: Decimal
    billing_cycle: BillingCycle
    days_remaining: Decimal
    amount: Decimal

    @property
    def additional_seats(self) -> int:
        return self.new_seats - self.current_seats


def quote_seat_increase(
    *,
    price_per_seat: Decimal,
    current_seats: int,
    new_seats: int,
    cycle: BillingCycle,
    period_end: datetime,
    now: datetime,
) -> ProrationQuote:
    remaining = days_remaining(period_end, now)
    amount = calculate_prorated_amount(price_per_seat, new_seats - current_seats, remaining, cycle)
    return ProrationQuote(
        current_seats=current_seats,
        new_seats=new_seats,
        price_per_seat=Decimal(price_per_seat),
        billing_cycle=cycle,
        days_remaining=remaining,
        amount=amount,
    )


def format_invoice_description(plan_name: str, seats: int, cycle: BillingCycle) -> str:
    cycle_label = "Yearly" if cycle is BillingCycle.YEARLY else "Monthly"
    return f"HRIS {plan_name} Plan - {seats} seats ({cycle_label})"


def format_upsell_description(plan_name: str, current_seats: int, new_seats: int) -> str:
    return f"Additional Seats (Prorated) - {plan_name} Plan: {current_seats} → {new_seats} seats"


__all__ = [
    "MIN_UPSELL_EXPIRY",
    "ProrationQuote",
    "add_months",
    "calculate_full_amount",
    "calculate_period_end",
    "calculate_prorated_amount",
    "days_remaining",
    "format_invoice_description",
    "format_upsell_description",
    "quantize_money",
    "quote_seat_increase",
    "upsell_invoice_duration",
]
