"""Reconciliation engine: turns payment and shipment signals into order state.

Two sources can report the same shipment:
- push: Printful `package_shipped` webhook
- pull: poll_pending_orders() asking Printful about every unshipped order

Both go through apply_shipment(), which re-reads the stored order and checks
its shipped-guard right before notifying. That keeps the customer at one
email per order even when a webhook lands while a poll is mid-batch. If a
webhook and a poll both pass the guard before either writes, the customer
can get two emails. That gap is tolerated: at most a duplicate email, never
a corrupt order.

The engine is built with its collaborators passed in (store, Printful
client, notifier). A missing store or client is a ConfigurationError at
the call that needs it.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from storefront.config import redact_email
from storefront.errors import (
    CheckoutDataError,
    ConfigurationError,
    FulfillmentError,
    WebhookAuthError,
    WebhookPayloadError,
)
from storefront.fulfillment.client import PrintfulClient, build_order_item, build_recipient
from storefront.fulfillment.shipments import PACKAGE_SHIPPED, ShipmentEvent, from_webhook
from storefront.notifications.email import EmailNotifier, NotificationItem, ShippingNotification
from storefront.orders.models import (
    PENDING_STATUSES,
    Order,
    OrderStatus,
    transition,
    utcnow,
)
from storefront.orders.store import OrderStore
from storefront.payments.gateway import CHECKOUT_COMPLETED, CheckoutCompletion, parse_checkout_completed
from storefront.webhooks.verification import verify_printful

logger = logging.getLogger(__name__)

# Printful statuses meaning production has started but nothing has shipped
_IN_PRODUCTION_STATUSES = frozenset({"inprocess", "partial"})


@dataclass
class TransitionResult:
    """What apply_shipment() did to one order."""

    order_id: str
    outcome: str  # shipped | skipped | failed
    email_sent: bool = False
    notification_error: str = ""
    error: str = ""

    @property
    def shipped(self) -> bool:
        return self.outcome == "shipped"


@dataclass
class PollSummary:
    pending: int = 0
    checked: int = 0
    shipped: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "message": "Check complete" if self.pending else "No orders to check",
            "checked": self.checked,
            "shipped": self.shipped,
        }
        if self.errors:
            body["errors"] = list(self.errors)
        return body


@dataclass
class WebhookOutcome:
    """Acknowledgement returned to a webhook caller."""

    message: str
    email_sent: bool | None = None
    order_id: str | None = None
    fulfillment_order_id: str | None = None
    error: str = ""

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"received": True, "message": self.message}
        if self.email_sent is not None:
            body["emailSent"] = self.email_sent
        if self.fulfillment_order_id:
            body["printfulOrderId"] = self.fulfillment_order_id
        if self.error:
            body["error"] = self.error
        return body


@dataclass
class CheckoutOutcome:
    order: Order
    duplicate: bool = False
    error: str = ""


def parse_webhook_body(raw_body: bytes) -> dict[str, Any]:
    """Decode a Printful webhook body, tolerating double-encoded JSON.

    Anything that does not end up as a JSON object becomes {} (an event
    with no type, which is acknowledged and ignored).
    """
    try:
        body: Any = json.loads(raw_body)
    except ValueError:
        return {}
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except ValueError:
            return {}
    return body if isinstance(body, dict) else {}


class ReconciliationEngine:
    """Coordinates the order store, Printful and the customer notifier."""

    def __init__(
        self,
        store: OrderStore | None,
        fulfillment: PrintfulClient | None,
        notifier: EmailNotifier,
        webhook_secret: str = "",
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._fulfillment = fulfillment
        self._notifier = notifier
        self._webhook_secret = webhook_secret
        self._clock = clock

    # ── collaborators ────────────────────────────────────────────────────

    def _require_store(self) -> OrderStore:
        if self._store is None:
            raise ConfigurationError(
                "Database not configured", missing=["STOREFRONT_DATABASE_URL"]
            )
        return self._store

    def _require_fulfillment(self) -> PrintfulClient:
        if self._fulfillment is None:
            raise ConfigurationError(
                "Printful not configured", missing=["STOREFRONT_PRINTFUL_API_KEY"]
            )
        return self._fulfillment

    def missing_configuration(self) -> list[str]:
        """Settings the poll needs that are not configured."""
        missing = []
        if self._fulfillment is None:
            missing.append("STOREFRONT_PRINTFUL_API_KEY")
        if self._store is None:
            missing.append("STOREFRONT_DATABASE_URL")
        return missing

    # ── shared transition ────────────────────────────────────────────────

    def apply_shipment(self, order: Order, event: ShipmentEvent) -> TransitionResult:
        """Mark an order shipped and notify the customer, at most once.

        Re-read -> guard -> resolve recipient -> notify -> persist. The
        guard runs against the stored record, not the caller's copy, which
        may have been loaded before another path shipped it. A failed send
        is reported but does not hold the order back in processing.
        """
        store = self._require_store()
        current = store.get(order.order_id)
        if current is not None:
            order = current
        if order.is_shipped:
            logger.info("Order %s already marked as shipped; skipping", order.order_id)
            return TransitionResult(order_id=order.order_id, outcome="skipped")

        email = event.recipient_email or order.customer_email
        if not email:
            logger.error("No customer email for order %s; not notifying", order.order_id)
            return TransitionResult(
                order_id=order.order_id,
                outcome="failed",
                error="No customer email",
            )
        name = event.recipient_name or order.shipping.name or "Customer"

        if event.items:
            items = [NotificationItem(name=i.name, quantity=i.quantity) for i in event.items]
        else:
            items = [NotificationItem(name=i.name, quantity=i.quantity) for i in order.items]

        notification = ShippingNotification(
            email=email,
            name=name,
            order_number=(
                event.external_id
                or order.fulfillment_external_id
                or event.fulfillment_order_id
                or order.order_id
            ),
            tracking_number=event.tracking_number,
            tracking_url=event.tracking_url,
            carrier=event.carrier,
            items=items,
        )
        sent = self._notifier.send_shipping_notification(notification)
        if not sent.success:
            logger.error(
                "Shipping notification for order %s failed (%s): %s",
                order.order_id,
                sent.error_kind or "send",
                sent.error,
            )

        transition(order, OrderStatus.SHIPPED, now=self._clock(), tracking=event.tracking)
        store.update(order)
        logger.info(
            "Order %s shipped (tracking=%s, notified=%s)",
            order.order_id,
            order.tracking_number or "none",
            redact_email(email) if sent.success else "no",
        )
        return TransitionResult(
            order_id=order.order_id,
            outcome="shipped",
            email_sent=sent.success,
            notification_error=sent.error,
        )

    # ── push path ────────────────────────────────────────────────────────

    def _find_order(self, event: ShipmentEvent) -> Order | None:
        store = self._require_store()
        if event.external_id:
            order = store.find_by_external_id(event.external_id)
            if order is not None:
                return order
        if event.fulfillment_order_id:
            return store.find_by_fulfillment_id(event.fulfillment_order_id)
        return None

    def verify_webhook_signature(self, raw_body: bytes, signature: str | None) -> bool:
        return verify_printful(raw_body, signature, self._webhook_secret)

    def handle_webhook_event(self, raw_body: bytes, signature: str | None) -> WebhookOutcome:
        """Verify and process one Printful webhook delivery.

        Raises WebhookAuthError (bad signature), WebhookPayloadError
        (package_shipped without order data) and ConfigurationError (no
        order store). A delivery for an unknown order is acknowledged.
        """
        if not self.verify_webhook_signature(raw_body, signature):
            logger.error("Invalid Printful webhook signature")
            raise WebhookAuthError("Invalid signature")
        return self.process_webhook(raw_body)

    def process_webhook(self, raw_body: bytes) -> WebhookOutcome:
        """Process a Printful webhook body whose signature is already checked."""
        body = parse_webhook_body(raw_body)
        event_type = body.get("type")
        data = body.get("data") if isinstance(body.get("data"), dict) else {}

        if event_type != PACKAGE_SHIPPED:
            logger.info("Received Printful webhook event: %s", event_type)
            return WebhookOutcome(message=f"Event {event_type} received")

        if not isinstance(data.get("order"), dict):
            raise WebhookPayloadError("No order data")

        event = from_webhook(data)
        logger.info(
            "Processing package_shipped: printful_id=%s external_id=%s tracking=%s",
            event.fulfillment_order_id,
            event.external_id,
            event.tracking_number,
        )

        order = self._find_order(event)
        if order is None:
            logger.warning(
                "Order not found for package_shipped: printful_id=%s external_id=%s",
                event.fulfillment_order_id,
                event.external_id,
            )
            return WebhookOutcome(message="Order not found in database")

        result = self.apply_shipment(order, event)
        if result.outcome == "skipped":
            return WebhookOutcome(message="Order already shipped", email_sent=False, order_id=order.order_id)
        if result.outcome == "failed":
            return WebhookOutcome(
                message="Shipping notification not sent",
                email_sent=False,
                order_id=order.order_id,
                error=result.error,
            )
        return WebhookOutcome(
            message="Shipping notification processed",
            email_sent=result.email_sent,
            order_id=order.order_id,
            error=result.notification_error,
        )

    # ── pull path ────────────────────────────────────────────────────────

    def _mark_in_production(self, order_id: str) -> None:
        store = self._require_store()
        order = store.get(order_id)
        if order is None or order.is_shipped:
            return
        if transition(order, OrderStatus.PROCESSING, now=self._clock()):
            store.update(order)
            logger.info("Order %s is in production", order.order_id)

    def poll_pending_orders(self) -> PollSummary:
        """Ask Printful about every created/processing order, one at a time.

        A failure on one order is recorded and the loop moves on.
        """
        store = self._require_store()
        fulfillment = self._require_fulfillment()

        orders = store.list_by_status(PENDING_STATUSES)
        summary = PollSummary(pending=len(orders))
        if orders:
            logger.info("Checking %d orders for shipment status", len(orders))

        for order in orders:
            printful_id = order.fulfillment_order_id
            if not printful_id:
                logger.warning("Order %s has no Printful order id", order.order_id)
                continue

            summary.checked += 1
            try:
                event = fulfillment.get_order_status(printful_id)

                if event.is_shipped:
                    result = self.apply_shipment(order, event)
                    if result.shipped:
                        summary.shipped += 1
                        if result.notification_error:
                            summary.errors.append(
                                f"Order {printful_id}: Email error - {result.notification_error}"
                            )
                    elif result.outcome == "failed":
                        summary.errors.append(f"Order {printful_id}: {result.error}")
                elif event.status in _IN_PRODUCTION_STATUSES:
                    self._mark_in_production(order.order_id)
                else:
                    logger.info("Order %s status: %s", printful_id, event.status)
            except FulfillmentError as e:
                logger.error("Error fetching Printful order %s: %s", printful_id, e.message)
                summary.errors.append(f"Order {printful_id}: {e.message}")
            except Exception as e:
                logger.exception("Error processing order %s", printful_id)
                summary.errors.append(f"Order {printful_id}: {e}")

        logger.info(
            "Shipment poll complete: checked=%d shipped=%d errors=%d",
            summary.checked,
            summary.shipped,
            len(summary.errors),
        )
        return summary

    # ── payment handoff ──────────────────────────────────────────────────

    def record_checkout(self, completion: CheckoutCompletion) -> CheckoutOutcome:
        """Create the Printful order and the local record for a paid session.

        The session id is the order key. A `created` record is inserted
        before Printful is called, and that insert is the claim: a
        redelivered Stripe event, even one arriving while the first is
        still talking to Printful, loses the insert and creates nothing.
        If Printful refuses, the claimed record is stored as failed for
        manual follow-up.
        """
        store = self._require_store()
        fulfillment = self._require_fulfillment()
        now = self._clock()
        order = Order(
            order_id=completion.session_id,
            payment_session_id=completion.session_id,
            customer_email=completion.customer_email,
            amount_total=completion.amount_total / 100,
            currency=completion.currency,
            items=list(completion.items),
            shipping=completion.destination,
            created_at=now,
            updated_at=now,
        )
        if not store.insert(order):
            existing = store.get(order.order_id) or order
            logger.info(
                "Order already processed for session %s (printful_id=%s)",
                completion.session_id,
                existing.fulfillment_order_id,
            )
            return CheckoutOutcome(order=existing, duplicate=True)

        try:
            items = [build_order_item(item) for item in completion.items]
            created = fulfillment.create_order(
                recipient=build_recipient(completion.destination, completion.customer_email),
                items=items,
                retail_costs=completion.retail_costs(),
                external_id=completion.session_id,
            )
        except (ValueError, FulfillmentError) as e:
            error = e.message if isinstance(e, FulfillmentError) else str(e)
            logger.error(
                "Failed to create Printful order for session %s: %s",
                completion.session_id,
                error,
            )
            order.status = OrderStatus.FAILED
            order.error = error
            order.updated_at = self._clock()
            store.update(order)
            return CheckoutOutcome(order=order, error=error)

        printful_id = created.get("id")
        order.fulfillment_order_id = str(printful_id) if printful_id is not None else None
        order.fulfillment_external_id = str(created.get("external_id") or completion.session_id)
        order.updated_at = self._clock()
        store.update(order)
        logger.info(
            "Order %s recorded (printful_id=%s, customer=%s)",
            order.order_id,
            order.fulfillment_order_id,
            redact_email(order.customer_email),
        )
        return CheckoutOutcome(order=order)

    def handle_payment_event(self, event: dict[str, Any]) -> WebhookOutcome:
        """Act on a verified Stripe event. Only checkout completion matters."""
        event_type = event.get("type")
        if event_type != CHECKOUT_COMPLETED:
            logger.info("Unhandled Stripe event type: %s", event_type)
            return WebhookOutcome(message="Event type not handled")

        session = (event.get("data") or {}).get("object") or {}
        try:
            completion = parse_checkout_completed(session)
        except CheckoutDataError as e:
            logger.error("Checkout %s cannot be fulfilled: %s", session.get("id"), e.message)
            return WebhookOutcome(message="Checkout not fulfilled", error=e.message)

        outcome = self.record_checkout(completion)
        if outcome.duplicate:
            return WebhookOutcome(
                message="Order already processed",
                order_id=outcome.order.order_id,
                fulfillment_order_id=outcome.order.fulfillment_order_id,
            )
        if outcome.error:
            return WebhookOutcome(
                message=outcome.error,
                order_id=outcome.order.order_id,
                error="Printful order creation failed",
            )
        return WebhookOutcome(
            message="Order created successfully",
            order_id=outcome.order.order_id,
            fulfillment_order_id=outcome.order.fulfillment_order_id,
        )
