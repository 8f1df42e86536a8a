"""Payment gateway integration (Xendit invoices)."""
from __future__ import annotations

import base64
import hmac
import json
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Optional, Protocol
from urllib import error as urllib_error, parse as urllib_parse, request as urllib_request
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, ValidationError

from .config import BillingConfig
from .errors import GatewayError

logger = logging.getLogger(__name__)


class GatewayInvoice(BaseModel):
    """Hosted invoice as reported by the payment gateway."""

    id: str
    invoice_url: str = ""
    expiry_date: Optional[datetime] = None
    status: str = "PENDING"
    external_id: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")


class PaymentGatewayClient(Protocol):
    """External payment processor that issues hosted invoices."""

    def create_invoice(
        self,
        *,
        external_id: str,
        amount: Decimal,
        payer_email: Optional[str],
        description: str,
        currency: str,
        duration_seconds: int,
        success_redirect_url: Optional[str] = None,
        failure_redirect_url: Optional[str] = None,
    ) -> GatewayInvoice:
        """Create a hosted invoice and return its id, payment URL and expiry."""

    def expire_invoice(self, gateway_invoice_id: str) -> GatewayInvoice:
        """Void an unpaid hosted invoice."""


class XenditClient(PaymentGatewayClient):
    """Minimal Xendit invoice API client over HTTPS/JSON."""

    def __init__(
        self,
        *,
        secret_key: str,
        base_url: str = "https://api.xendit.co",
        timeout: float = 10.0,
    ) -> None:
        if not secret_key:
            raise ValueError("Xendit secret key is required")
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        token = base64.b64encode(f"{secret_key}:".encode("utf-8")).decode("ascii")
        self._auth_header = f"Basic {token}"

    def _request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        data = json.dumps(body).encode("utf-8") if body is not None else None
        req = urllib_request.Request(
            f"{self._base_url}{path}",
            data=data,
            method=method,
            headers={
                "Authorization": self._auth_header,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )
        try:
            with urllib_request.urlopen(req, timeout=self._timeout) as response:
                raw = response.read()
        except urllib_error.HTTPError as exc:
            message = exc.read().decode("utf-8", "replace") if exc.fp else str(exc)
            logger.warning(
                "Xendit request rejected",
                extra={"path": path, "status_code": exc.code, "error": message},
            )
            raise GatewayError(
                f"Payment gateway returned HTTP {exc.code}",
                detail={"gateway_status": exc.code},
            ) from exc
        except urllib_error.URLError as exc:
            logger.warning("Xendit request failed", extra={"path": path, "error": str(exc)})
            raise GatewayError("Payment gateway unreachable") from exc

        try:
            payload = json.loads(raw.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise GatewayError("Payment gateway returned an invalid response") from exc
        if not isinstance(payload, dict):
            raise GatewayError("Payment gateway returned an invalid response")
        return payload

    @staticmethod
    def _to_invoice(payload: Dict[str, Any]) -> GatewayInvoice:
        try:
            return GatewayInvoice.model_validate(payload)
        except ValidationError as exc:
            raise GatewayError("Payment gateway returned an invalid invoice") from exc

    def create_invoice(
        self,
        *,
        external_id: str,
        amount: Decimal,
        payer_email: Optional[str],
        description: str,
        currency: str,
        duration_seconds: int,
        success_redirect_url: Optional[str] = None,
        failure_redirect_url: Optional[str] = None,
    ) -> GatewayInvoice:
        body: Dict[str, Any] = {
            "external_id": external_id,
            "amount": float(amount),
            "description": description,
            "currency": currency or "IDR",
        }
        if payer_email:
            body["payer_email"] = payer_email
        if duration_seconds > 0:
            body["invoice_duration"] = duration_seconds
        if success_redirect_url:
            body["success_redirect_url"] = success_redirect_url
        if failure_redirect_url:
            body["failure_redirect_url"] = failure_redirect_url

        payload = self._request("POST", "/v2/invoices", body)
        return self._to_invoice(payload)

    def expire_invoice(self, gateway_invoice_id: str) -> GatewayInvoice:
        path = f"/invoices/{urllib_parse.quote(gateway_invoice_id, safe='')}/expire!"
        payload = self._request("POST", path)
        return self._to_invoice(payload)


class SandboxPaymentGateway(PaymentGatewayClient):
    """Local gateway that issues fake hosted invoices for development."""

    def __init__(self, *, base_url: str = "https://billing.local/invoices") -> None:
        self._base_url = base_url.rstrip("/")
        self.invoices: Dict[str, GatewayInvoice] = {}

    def create_invoice(
        self,
        *,
        external_id: str,
        amount: Decimal,
        payer_email: Optional[str],
        description: str,
        currency: str,
        duration_seconds: int,
        success_redirect_url: Optional[str] = None,
        failure_redirect_url: Optional[str] = None,
    ) -> GatewayInvoice:
        invoice_id = f"inv_{uuid4().hex}"
        invoice = GatewayInvoice(
            id=invoice_id,
            invoice_url=f"{self._base_url}/{invoice_id}",
            expiry_date=datetime.now(timezone.utc) + timedelta(seconds=duration_seconds),
            status="PENDING",
            external_id=external_id,
        )
        self.invoices[invoice_id] = invoice
        logger.info(
            "Sandbox invoice created",
            extra={"gateway_invoice_id": invoice_id, "external_id": external_id, "amount": str(amount)},
        )
        return invoice

    def expire_invoice(self, gateway_invoice_id: str) -> GatewayInvoice:
        invoice = self.invoices.get(gateway_invoice_id)
        if invoice is None:
            raise GatewayError("Unknown sandbox invoice", detail={"gateway_invoice_id": gateway_invoice_id})
        expired = invoice.model_copy(update={"status": "EXPIRED"})
        self.invoices[gateway_invoice_id] = expired
        return expired


def build_gateway(config: BillingConfig) -> PaymentGatewayClient:
    if config.gateway_name == "xendit":
        return XenditClient(
            secret_key=config.gateway_secret_key or "",
            base_url=config.gateway_base_url,
            timeout=config.gateway_timeout_seconds,
        )
    return SandboxPaymentGateway()


def expire_remote_invoice(gateway: PaymentGatewayClient, gateway_invoice_id: Optional[str], *, reason: str) -> bool:
    """Best-effort void of a hosted invoice; failures are logged, never raised."""

    if not gateway_invoice_id:
        return False
    try:
        gateway.expire_invoice(gateway_invoice_id)
    except Exception as exc:
        logger.warning(
            "Failed to expire gateway invoice",
            extra={"gateway_invoice_id": gateway_invoice_id, "reason": reason, "error": str(exc)},
        )
        return False
    return True


def verify_callback_token(received: Optional[str], expected: Optional[str]) -> bool:
    """Compare the ``x-callback-token`` header against the configured token."""

    if not received or not expected:
        return False
    return hmac.compare_digest(received.encode("utf-8"), expected.encode("utf-8"))


__all__ = [
    "GatewayInvoice",
    "PaymentGatewayClient",
    "SandboxPaymentGateway",
    "XenditClient",
    "build_gateway",
    "expire_remote_invoice",
    "verify_callback_token",
]
