"""API routes exposing subscription and billing functionality."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status

from ..feature_gates import FeatureGateError, require_feature
from ..schemas.subscriptions import (
    CancelSubscriptionRequest,
    ChangeSeatsRequest,
    ChangeSeatsResponse,
    CheckoutRequest,
    DowngradeRequest,
    FeatureResponse,
    InvoiceListResponse,
    InvoiceResponse,
    PlanResponse,
    SubscriptionResponse,
    UpgradeRequest,
    WebhookAck,
)
from ..services.subscriptions import get_subscription_service
from ..subscriptions import FeatureCode, SubscriptionError, WebhookPayload

try:  # pragma: no cover - resolve context helper when imported from FastAPI app
    from backend import app_context
except ModuleNotFoundError as exc:  # pragma: no cover
    if exc.name != "backend":
        raise
    from ... import app_context  # type: ignore[no-redef]

logger = logging.getLogger(__name__)


def _get_current_user(request: Request) -> Any:
    return app_context.get_current_user(request)


def _company_id(current_user: Any) -> str:
    company_id = getattr(current_user, "company_id", None)
    if not company_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="No company associated with this user")
    return str(company_id)


@contextmanager
def _domain_errors() -> Iterator[None]:
    try:
        yield
    except SubscriptionError as exc:
        raise exc.to_http_exception() from exc


router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])


@router.get("/plans", response_model=list[PlanResponse])
def list_plans() -> list[PlanResponse]:
    service = get_subscription_service()
    return [PlanResponse.from_plan(plan) for plan in service.get_plans()]


@router.get("/plans/{plan_id}", response_model=PlanResponse)
def get_plan(plan_id: str) -> PlanResponse:
    service = get_subscription_service()
    with _domain_errors():
        return PlanResponse.from_plan(service.get_plan(plan_id))


@router.get("/features", response_model=list[FeatureResponse])
def list_features() -> list[FeatureResponse]:
    service = get_subscription_service()
    return [FeatureResponse.from_feature(feature) for feature in service.get_features()]


@router.get("/me", response_model=SubscriptionResponse)
def get_my_subscription(*, current_user=Depends(_get_current_user)) -> SubscriptionResponse:
    service = get_subscription_service()
    with _domain_errors():
        overview = service.get_my_subscription(_company_id(current_user))
    return SubscriptionResponse.from_overview(overview)


@router.post("/checkout", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
def checkout(payload: CheckoutRequest, *, current_user=Depends(_get_current_user)) -> InvoiceResponse:
    service = get_subscription_service()
    with _domain_errors():
        result = service.checkout(
            _company_id(current_user),
            plan_id=payload.plan_id,
            seat_count=payload.seat_count,
            billing_cycle=payload.billing_cycle,
            payer_email=str(payload.payer_email),
        )
    return InvoiceResponse.from_checkout(result)


@router.post("/upgrade", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
def upgrade_plan(payload: UpgradeRequest, *, current_user=Depends(_get_current_user)) -> InvoiceResponse:
    service = get_subscription_service()
    with _domain_errors():
        result = service.upgrade_plan(
            _company_id(current_user),
            plan_id=payload.plan_id,
            seat_count=payload.seat_count,
            payer_email=str(payload.payer_email),
        )
    return InvoiceResponse.from_checkout(result)


@router.post("/downgrade", status_code=status.HTTP_202_ACCEPTED)
def downgrade_plan(payload: DowngradeRequest, *, current_user=Depends(_get_current_user)) -> dict:
    service = get_subscription_service()
    with _domain_errors():
        subscription = service.downgrade_plan(_company_id(current_user), plan_id=payload.plan_id)
    return {
        "pendingPlanId": subscription.pending_plan_id,
        "effectiveAt": subscription.current_period_end,
    }


@router.delete("/downgrade", status_code=status.HTTP_204_NO_CONTENT)
def cancel_downgrade(*, current_user=Depends(_get_current_user)) -> None:
    service = get_subscription_service()
    with _domain_errors():
        service.cancel_downgrade(_company_id(current_user))


@router.post("/seats", response_model=ChangeSeatsResponse)
def change_seats(payload: ChangeSeatsRequest, *, current_user=Depends(_get_current_user)) -> ChangeSeatsResponse:
    service = get_subscription_service()
    with _domain_errors():
        result = service.change_seats(
            _company_id(current_user),
            seat_count=payload.seat_count,
            payer_email=str(payload.payer_email) if payload.payer_email else None,
        )
    return ChangeSeatsResponse.from_result(result)


@router.post("/cancel", status_code=status.HTTP_204_NO_CONTENT)
def cancel_subscription(
    payload: Optional[CancelSubscriptionRequest] = None,
    *,
    current_user=Depends(_get_current_user),
) -> None:
    service = get_subscription_service()
    with _domain_errors():
        service.cancel_subscription(
            _company_id(current_user),
            reason=payload.reason if payload else None,
        )


@router.get("/invoices", response_model=InvoiceListResponse)
def list_invoices(
    limit: int = Query(20, ge=1, le=100),
    *,
    current_user=Depends(_get_current_user),
) -> InvoiceListResponse:
    service = get_subscription_service()
    invoices = service.list_invoices(_company_id(current_user), limit=limit)
    return InvoiceListResponse(invoices=[InvoiceResponse.from_invoice(invoice) for invoice in invoices])


@router.get("/invoices/{invoice_id}", response_model=InvoiceResponse)
def get_invoice(invoice_id: str, *, current_user=Depends(_get_current_user)) -> InvoiceResponse:
    service = get_subscription_service()
    with _domain_errors():
        invoice = service.get_invoice(_company_id(current_user), invoice_id)
    return InvoiceResponse.from_invoice(invoice)


@router.post("/invoices/{invoice_id}/cancel", response_model=InvoiceResponse)
def cancel_pending_invoice(invoice_id: str, *, current_user=Depends(_get_current_user)) -> InvoiceResponse:
    service = get_subscription_service()
    with _domain_errors():
        invoice = service.cancel_pending_invoice(_company_id(current_user), invoice_id)
    return InvoiceResponse.from_invoice(invoice)


@router.get("/features/{feature_code}/access")
def check_feature_access(feature_code: FeatureCode, *, current_user=Depends(_get_current_user)) -> dict:
    service = get_subscription_service()
    with _domain_errors():
        overview = service.get_my_subscription(_company_id(current_user))
        try:
            require_feature(overview, feature_code)
        except FeatureGateError as exc:
            return {"feature": feature_code.value, "allowed": False, "reason": exc.code}
    return {"feature": feature_code.value, "allowed": True}


@router.post("/webhook", response_model=WebhookAck)
def receive_webhook(
    payload: WebhookPayload,
    x_callback_token: Optional[str] = Header(None, alias="x-callback-token"),
) -> WebhookAck:
    service = get_subscription_service()
    with _domain_errors():
        service.verify_webhook_token(x_callback_token)
        result = service.handle_webhook(payload)
    return WebhookAck(outcome=result.outcome.value)


__all__ = ["router"]
