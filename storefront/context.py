"""Application context: every provider client, built once at startup.

Routes and jobs receive this object instead of reaching for module-level
clients, so tests can swap any collaborator for a fake.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from storefront.config import Settings
from storefront.fulfillment.client import PrintfulClient
from storefront.notifications.email import EmailNotifier
from storefront.orders.store import InMemoryOrderStore, OrderStore, PostgresOrderStore
from storefront.payments.gateway import StripeGateway
from storefront.reconciliation.engine import ReconciliationEngine
from storefront.webhooks.idempotency import WebhookDeduplicator

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    settings: Settings
    store: OrderStore | None
    payments: StripeGateway | None
    fulfillment: PrintfulClient | None
    notifier: EmailNotifier
    engine: ReconciliationEngine
    dedup: WebhookDeduplicator


def build_store(settings: Settings) -> OrderStore | None:
    if settings.order_store == "memory":
        logger.warning("Using in-memory order store; orders are lost on restart")
        return InMemoryOrderStore()
    if not settings.database_url:
        logger.error("STOREFRONT_DATABASE_URL not set; order store unavailable")
        return None
    return PostgresOrderStore(settings.database_url)


def build_context(settings: Settings) -> AppContext:
    """Construct every collaborator from settings.

    A missing credential leaves that collaborator as None; the operations
    that need it answer with a configuration error instead of failing at
    import time.
    """
    store = build_store(settings)

    payments = None
    if settings.stripe_secret_key:
        payments = StripeGateway(
            settings.stripe_secret_key, api_version=settings.stripe_api_version or None
        )
    else:
        logger.warning("STOREFRONT_STRIPE_SECRET_KEY not set; checkout disabled")

    fulfillment = None
    if settings.printful_api_key:
        fulfillment = PrintfulClient(
            settings.printful_api_key,
            base_url=settings.printful_api_base,
            timeout=settings.http_timeout,
        )
    else:
        logger.warning("STOREFRONT_PRINTFUL_API_KEY not set; fulfillment disabled")

    notifier = EmailNotifier(
        smtp_host=settings.smtp_host,
        smtp_port=settings.smtp_port,
        smtp_user=settings.smtp_user,
        smtp_password=settings.smtp_password,
        mail_from=settings.mail_from,
        store_name=settings.store_name,
        support_email=settings.support_email,
    )

    engine = ReconciliationEngine(
        store=store,
        fulfillment=fulfillment,
        notifier=notifier,
        webhook_secret=settings.printful_webhook_secret,
    )
    return AppContext(
        settings=settings,
        store=store,
        payments=payments,
        fulfillment=fulfillment,
        notifier=notifier,
        engine=engine,
        dedup=WebhookDeduplicator(redis_url=settings.redis_url),
    )
