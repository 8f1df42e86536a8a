"""Subscription domain package: plans, checkout, payments and lifecycle sweeps."""

from .catalog import PlanCatalog, StaticPlanRepository
from .config import BillingConfig, load_billing_config
from .errors import SubscriptionError
from .gateway import GatewayInvoice, PaymentGatewayClient, SandboxPaymentGateway, XenditClient
from .lifecycle import LifecycleJobs, SweepOutcome
from .models import (
    BillingCycle,
    CheckoutResult,
    Feature,
    FeatureCode,
    Invoice,
    InvoiceStatus,
    Plan,
    SeatChangeResult,
    Subscription,
    SubscriptionOverview,
    SubscriptionStatus,
)
from .repository import (
    EmployeeCounter,
    InvoiceRepository,
    PlanRepository,
    SubscriptionRepository,
    SubscriptionStore,
    TransactionScope,
)
from .service import SubscriptionService
from .webhooks import WebhookOutcome, WebhookPayload, WebhookResult

__all__ = [
    "BillingConfig",
    "BillingCycle",
    "CheckoutResult",
    "EmployeeCounter",
    "Feature",
    "FeatureCode",
    "GatewayInvoice",
    "Invoice",
    "InvoiceRepository",
    "InvoiceStatus",
    "LifecycleJobs",
    "PaymentGatewayClient",
    "Plan",
    "PlanCatalog",
    "PlanRepository",
    "SandboxPaymentGateway",
    "SeatChangeResult",
    "StaticPlanRepository",
    "Subscription",
    "SubscriptionError",
    "SubscriptionOverview",
    "SubscriptionRepository",
    "SubscriptionService",
    "SubscriptionStatus",
    "SubscriptionStore",
    "SweepOutcome",
    "TransactionScope",
    "WebhookOutcome",
    "WebhookPayload",
    "WebhookResult",
    "XenditClient",
    "load_billing_config",
]
