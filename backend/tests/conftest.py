from __future__ import annotations

import pytest

from backend.app.subscriptions import SubscriptionService
from backend.tests.fakes import NOW, FakeGateway, InMemorySubscriptionStore, make_config


@pytest.fixture
def subscription_components():
    store = InMemorySubscriptionStore()
    gateway = FakeGateway()
    service = SubscriptionService(store, gateway, make_config(), clock=lambda: NOW)
    return service, store, gateway
