from __future__ import annotations

import base64
import io
import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from urllib import error as urllib_error

import pytest

from backend.app.subscriptions import gateway as gateway_module
from backend.app.subscriptions.errors import GatewayError
from backend.app.subscriptions.gateway import (
    SandboxPaymentGateway,
    XenditClient,
    build_gateway,
    expire_remote_invoice,
    verify_callback_token,
)
from backend.tests.fakes import make_config


class _FakeResponse:
    def __init__(self, payload: Any) -> None:
        self._raw = json.dumps(payload).encode("utf-8") if not isinstance(payload, bytes) else payload

    def read(self) -> bytes:
        return self._raw

    def __enter__(self) -> "_FakeResponse":
        return self

    def __exit__(self, *exc_info) -> None:
        return None


class _RequestLog(list):
    pass


@pytest.fixture
def xendit_http(monkeypatch):
    log = _RequestLog()
    log.responses = []

    def fake_urlopen(req, timeout=None):
        log.append(
            {
                "url": req.full_url,
                "method": req.get_method(),
                "headers": {key.lower(): value for key, value in req.header_items()},
                "body": json.loads(req.data.decode("utf-8")) if req.data else None,
                "timeout": timeout,
            }
        )
        response = log.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return _FakeResponse(response)

    monkeypatch.setattr(gateway_module.urllib_request, "urlopen", fake_urlopen)
    return log


def _client() -> XenditClient:
    return XenditClient(secret_key="xnd_development_key", base_url="https://api.xendit.test/", timeout=5.0)


def test_create_invoice_posts_expected_body(xendit_http) -> None:
    xendit_http.responses.append(
        {
            "id": "inv_123",
            "external_id": "sub-company-1-1718452800",
            "status": "PENDING",
            "invoice_url": "https://checkout.xendit.test/inv_123",
            "expiry_date": "2024-06-16T12:00:00.000Z",
            "merchant_name": "HRIS",
        }
    )

    invoice = _client().create_invoice(
        external_id="sub-company-1-1718452800",
        amount=Decimal("120000.00"),
        payer_email="owner@acme.co.id",
        description="HRIS Standard Plan - 10 seats (Monthly)",
        currency="IDR",
        duration_seconds=86400,
        success_redirect_url="https://app.example/billing/success",
    )

    assert invoice.id == "inv_123"
    assert invoice.invoice_url == "https://checkout.xendit.test/inv_123"
    assert invoice.expiry_date == datetime(2024, 6, 16, 12, tzinfo=timezone.utc)

    request = xendit_http[0]
    assert request["url"] == "https://api.xendit.test/v2/invoices"
    assert request["method"] == "POST"
    assert request["timeout"] == 5.0
    expected_token = base64.b64encode(b"xnd_development_key:").decode("ascii")
    assert request["headers"]["authorization"] == f"Basic {expected_token}"
    assert request["body"] == {
        "external_id": "sub-company-1-1718452800",
        "amount": 120000.0,
        "payer_email": "owner@acme.co.id",
        "description": "HRIS Standard Plan - 10 seats (Monthly)",
        "currency": "IDR",
        "invoice_duration": 86400,
        "success_redirect_url": "https://app.example/billing/success",
    }


def test_create_invoice_omits_missing_payer_email(xendit_http) -> None:
    xendit_http.responses.append({"id": "inv_1", "invoice_url": "https://x/inv_1"})

    _client().create_invoice(
        external_id="seat-up-sub-1-1",
        amount=Decimal("100"),
        payer_email=None,
        description="seats",
        currency="IDR",
        duration_seconds=3600,
    )

    assert "payer_email" not in xendit_http[0]["body"]


def test_expire_invoice_uses_expire_endpoint(xendit_http) -> None:
    xendit_http.responses.append({"id": "inv_123", "status": "EXPIRED"})

    invoice = _client().expire_invoice("inv_123")

    assert invoice.status == "EXPIRED"
    assert xendit_http[0]["url"] == "https://api.xendit.test/invoices/inv_123/expire!"
    assert xendit_http[0]["body"] is None


def test_http_error_becomes_gateway_error(xendit_http) -> None:
    xendit_http.responses.append(
        urllib_error.HTTPError(
            "https://api.xendit.test/v2/invoices",
            400,
            "Bad Request",
            hdrs=None,
            fp=io.BytesIO(b'{"error_code": "API_VALIDATION_ERROR"}'),
        )
    )

    with pytest.raises(GatewayError) as exc:
        _client().expire_invoice("inv_123")

    assert exc.value.payload["gateway_status"] == 400
    assert exc.value.status_code == 502


def test_unreachable_gateway(xendit_http) -> None:
    xendit_http.responses.append(urllib_error.URLError("connection refused"))

    with pytest.raises(GatewayError, match="unreachable"):
        _client().expire_invoice("inv_123")


def test_invalid_json_response(xendit_http) -> None:
    xendit_http.responses.append(b"<html>oops</html>")

    with pytest.raises(GatewayError):
        _client().expire_invoice("inv_123")


def test_client_requires_secret_key() -> None:
    with pytest.raises(ValueError):
        XenditClient(secret_key="")


def test_build_gateway_selects_implementation() -> None:
    assert isinstance(build_gateway(make_config()), SandboxPaymentGateway)
    client = build_gateway(make_config(gateway_name="xendit", gateway_secret_key="xnd_key"))
    assert isinstance(client, XenditClient)


def test_sandbox_gateway_round_trip() -> None:
    sandbox = SandboxPaymentGateway()
    created = sandbox.create_invoice(
        external_id="sub-1",
        amount=Decimal("10"),
        payer_email=None,
        description="test",
        currency="IDR",
        duration_seconds=60,
    )

    assert created.invoice_url.endswith(created.id)
    assert sandbox.expire_invoice(created.id).status == "EXPIRED"
    with pytest.raises(GatewayError):
        sandbox.expire_invoice("inv_unknown")


def test_expire_remote_invoice_is_best_effort() -> None:
    sandbox = SandboxPaymentGateway()

    assert expire_remote_invoice(sandbox, "inv_unknown", reason="test") is False
    assert expire_remote_invoice(sandbox, None, reason="test") is False


def test_verify_callback_token() -> None:
    assert verify_callback_token("secret", "secret") is True
    assert verify_callback_token("secret", "other") is False
    assert verify_callback_token(None, "secret") is False
    assert verify_callback_token("secret", None) is False
