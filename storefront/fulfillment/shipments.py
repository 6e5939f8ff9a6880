"""Shipment events: one canonical shape for every Printful shipment signal.

Printful populates shipment fields inconsistently between the webhook
payload and the GET /orders/{id} response (tracking_number vs
tracking_code, carrier vs service, item names nested under product).
Both shapes are normalized here so the reconciliation engine only ever
sees a ShipmentEvent.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from storefront.orders.models import Tracking

# Provider statuses that mean the package has left the facility
SHIPPED_STATUSES = frozenset({"fulfilled", "shipped"})

PACKAGE_SHIPPED = "package_shipped"


@dataclass
class ShipmentItem:
    name: str
    quantity: int = 1


@dataclass
class ShipmentEvent:
    """A transient shipment signal (webhook push or polled order). Never stored."""

    fulfillment_order_id: str | None = None
    external_id: str | None = None
    status: str = ""
    tracking_number: str | None = None
    tracking_url: str | None = None
    carrier: str | None = None
    recipient_email: str | None = None
    recipient_name: str | None = None
    items: list[ShipmentItem] = field(default_factory=list)

    @property
    def is_shipped(self) -> bool:
        return self.status in SHIPPED_STATUSES

    @property
    def tracking(self) -> Tracking:
        return Tracking(
            tracking_number=self.tracking_number,
            tracking_url=self.tracking_url,
            carrier=self.carrier,
        )


def _first(source: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = source.get(key)
        if value not in (None, ""):
            return value
    return None


def _opt_str(value: Any) -> str | None:
    return None if value in (None, "") else str(value)


def _items(raw_items: Any) -> list[ShipmentItem]:
    if not isinstance(raw_items, list):
        return []
    items = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            continue
        product = raw.get("product") if isinstance(raw.get("product"), dict) else {}
        name = raw.get("name") or product.get("name") or "Item"
        try:
            quantity = int(raw.get("quantity") or 1)
        except (TypeError, ValueError):
            quantity = 1
        items.append(ShipmentItem(name=str(name), quantity=quantity))
    return items


def _apply_shipment(event: ShipmentEvent, shipment: Any) -> None:
    if not isinstance(shipment, dict):
        return
    event.tracking_number = _opt_str(_first(shipment, "tracking_number", "tracking_code"))
    event.tracking_url = _opt_str(_first(shipment, "tracking_url"))
    event.carrier = _opt_str(_first(shipment, "carrier", "service"))


def _apply_recipient(event: ShipmentEvent, recipient: Any) -> None:
    if not isinstance(recipient, dict):
        return
    event.recipient_email = _opt_str(recipient.get("email"))
    event.recipient_name = _opt_str(recipient.get("name"))


def from_webhook(data: dict[str, Any]) -> ShipmentEvent:
    """Normalize the `data` object of a package_shipped webhook."""
    order = data.get("order") or {}
    event = ShipmentEvent(
        fulfillment_order_id=_opt_str(order.get("id")),
        external_id=_opt_str(order.get("external_id")),
        # A package_shipped push is itself the shipped signal
        status="shipped",
        items=_items(order.get("items")),
    )
    _apply_shipment(event, data.get("shipment"))
    _apply_recipient(event, order.get("recipient"))
    return event


def from_order_status(order: dict[str, Any]) -> ShipmentEvent:
    """Normalize a GET /orders/{id} result. The last shipment is authoritative."""
    event = ShipmentEvent(
        fulfillment_order_id=_opt_str(order.get("id")),
        external_id=_opt_str(order.get("external_id")),
        status=str(order.get("status") or ""),
        items=_items(order.get("items")),
    )
    shipments = order.get("shipments") or []
    if isinstance(shipments, list) and shipments:
        _apply_shipment(event, shipments[-1])
    _apply_recipient(event, order.get("recipient"))
    return event
