"""Shared fixtures for the storefront test suite.

Provider collaborators are replaced by in-process fakes; the order store
is the real in-memory implementation.
"""

from __future__ import annotations

import os

import pytest
from fastapi.testclient import TestClient

from storefront.config import Settings
from storefront.context import AppContext
from storefront.errors import FulfillmentError
from storefront.orders.store import InMemoryOrderStore
from storefront.reconciliation.engine import ReconciliationEngine
from storefront.webhooks.idempotency import WebhookDeduplicator
from tests.factories import WEBHOOK_SECRET, FakeFulfillment, FakeNotifier

os.environ["TESTING"] = "1"


@pytest.fixture
def store() -> InMemoryOrderStore:
    return InMemoryOrderStore()


@pytest.fixture
def fulfillment() -> FakeFulfillment:
    return FakeFulfillment()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def engine(store, fulfillment, notifier) -> ReconciliationEngine:
    return ReconciliationEngine(
        store=store,
        fulfillment=fulfillment,
        notifier=notifier,
        webhook_secret=WEBHOOK_SECRET,
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        order_store="memory",
        printful_webhook_secret=WEBHOOK_SECRET,
        stripe_webhook_secret="whsec_test",
        poll_interval_minutes=0,
        site_url="https://shop.example",
    )


@pytest.fixture
def context(settings, store, fulfillment, notifier, engine) -> AppContext:
    return AppContext(
        settings=settings,
        store=store,
        payments=None,
        fulfillment=fulfillment,
        notifier=notifier,
        engine=engine,
        dedup=WebhookDeduplicator(),
    )


@pytest.fixture
def client(context):
    from storefront.app import create_app

    with TestClient(create_app(context=context), raise_server_exceptions=False) as c:
        yield c


@pytest.fixture
def upstream_error() -> FulfillmentError:
    return FulfillmentError("Printful API error (503): Service Unavailable", status=503)
