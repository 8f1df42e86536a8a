import pytest

from backend.app.subscriptions.config import load_billing_config


def test_defaults_use_sandbox_gateway():
    config = load_billing_config({})

    assert config.gateway_name == "sandbox"
    assert config.environment == "sandbox"
    assert config.currency == "IDR"
    assert config.invoice_expiry_hours == 24
    assert config.invoice_expiry_seconds == 86400
    assert config.grace_period_days == 7
    assert config.trial_duration_days == 14
    assert config.trial_plan_name == "Free Trial"
    assert config.webhook_token is None
    assert config.success_redirect_url == "http://localhost:5173/billing/success"
    assert config.failure_redirect_url == "http://localhost:5173/billing/failed"


def test_environment_overrides():
    config = load_billing_config(
        {
            "PAYMENT_GATEWAY": " Xendit ",
            "XENDIT_ENVIRONMENT": "production",
            "XENDIT_SECRET_KEY": "xnd_production_key",
            "XENDIT_BASE_URL": "https://api.xendit.co/",
            "XENDIT_WEBHOOK_TOKEN": "callback-secret",
            "APP_BASE_URL": "https://hris.example/",
            "INVOICE_CURRENCY": "idr",
            "INVOICE_EXPIRY_HOURS": "48",
            "GRACE_PERIOD_DAYS": "3",
            "GATEWAY_TIMEOUT_SECONDS": "2.5",
        }
    )

    assert config.gateway_name == "xendit"
    assert config.gateway_secret_key == "xnd_production_key"
    assert config.gateway_base_url == "https://api.xendit.co"
    assert config.webhook_token == "callback-secret"
    assert config.currency == "IDR"
    assert config.invoice_expiry_seconds == 48 * 3600
    assert config.grace_period_days == 3
    assert config.gateway_timeout_seconds == 2.5
    assert config.success_redirect_url == "https://hris.example/billing/success"


def test_invalid_numbers_are_rejected():
    with pytest.raises(ValueError):
        load_billing_config({"INVOICE_EXPIRY_HOURS": "one day"})
    with pytest.raises(ValueError):
        load_billing_config({"GATEWAY_TIMEOUT_SECONDS": "fast"})
