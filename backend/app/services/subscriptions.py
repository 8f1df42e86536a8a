"""Application wiring for the subscription service."""
from __future__ import annotations

import logging
from functools import lru_cache

from ..subscriptions import SubscriptionService, load_billing_config
from ..subscriptions.gateway import build_gateway
from ..subscriptions.repository import PostgresSubscriptionStore

logger = logging.getLogger("subscriptions")


@lru_cache(maxsize=1)
def get_subscription_service() -> SubscriptionService:
    config = load_billing_config()
    if config.gateway_name == "xendit" and not config.webhook_token:
        logger.warning("XENDIT_WEBHOOK_TOKEN is not set; payment callbacks will be rejected")
    gateway = build_gateway(config)
    store = PostgresSubscriptionStore()
    logger.info(
        "Subscription service configured",
        extra={"gateway": config.gateway_name, "environment": config.environment, "currency": config.currency},
    )
    return SubscriptionService(store, gateway, config)


__all__ = ["get_subscription_service"]
