"""Billing configuration helpers."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional


@dataclass(frozen=True)
class BillingConfig:
    """Configuration for the payment gateway and lifecycle rules."""

    gateway_name: str
    gateway_secret_key: Optional[str]
    gateway_base_url: str
    gateway_timeout_seconds: float
    webhook_token: Optional[str]
    environment: str
    currency: str
    invoice_expiry_hours: int
    success_redirect_url: str
    failure_redirect_url: str
    grace_period_days: int
    trial_duration_days: int
    trial_plan_name: str

    @property
    def invoice_expiry_seconds(self) -> int:
        return self.invoice_expiry_hours * 3600


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_float(value: Optional[str], *, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected float value, got {value!r}") from exc


def load_billing_config(env: Optional[Mapping[str, str]] = None) -> BillingConfig:
    """Load :class:`BillingConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    gateway_name = (env_mapping.get("PAYMENT_GATEWAY") or "sandbox").strip().lower() or "sandbox"
    environment = (env_mapping.get("XENDIT_ENVIRONMENT") or "sandbox").strip().lower()
    app_base_url = env_mapping.get("APP_BASE_URL", "http://localhost:5173").rstrip("/")

    return BillingConfig(
        gateway_name=gateway_name,
        gateway_secret_key=env_mapping.get("XENDIT_SECRET_KEY") or None,
        gateway_base_url=env_mapping.get("XENDIT_BASE_URL", "https://api.xendit.co").rstrip("/"),
        gateway_timeout_seconds=max(1.0, _to_float(env_mapping.get("GATEWAY_TIMEOUT_SECONDS"), default=10.0)),
        webhook_token=env_mapping.get("XENDIT_WEBHOOK_TOKEN") or None,
        environment=environment,
        currency=(env_mapping.get("INVOICE_CURRENCY") or "IDR").upper(),
        invoice_expiry_hours=max(1, _to_int(env_mapping.get("INVOICE_EXPIRY_HOURS"), default=24)),
        success_redirect_url=env_mapping.get(
            "PAYMENT_SUCCESS_REDIRECT", f"{app_base_url}/billing/success"
        ),
        failure_redirect_url=env_mapping.get(
            "PAYMENT_FAILURE_REDIRECT", f"{app_base_url}/billing/failed"
        ),
        grace_period_days=max(0, _to_int(env_mapping.get("GRACE_PERIOD_DAYS"), default=7)),
        trial_duration_days=max(1, _to_int(env_mapping.get("TRIAL_DURATION_DAYS"), default=14)),
        trial_plan_name=env_mapping.get("TRIAL_PLAN_NAME", "Free Trial"),
    )


__all__ = ["BillingConfig", "load_billing_config"]
