"""Order data model and lifecycle.

An Order is one paid checkout. The engine is the only writer, and every
status change goes through transition() so the lifecycle stays monotonic:

    created -> processing -> shipped

`failed` is set only on a just-claimed checkout record, when Printful
refuses the order after payment, and never moves again. shipped_at is set exactly when status is shipped.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from storefront.errors import InvalidTransition


class OrderStatus(str, Enum):
    """Order lifecycle states."""
    CREATED = "created"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    FAILED = "failed"  # Fulfillment order could not be created


# Statuses the poller still asks Printful about
PENDING_STATUSES = (OrderStatus.CREATED, OrderStatus.PROCESSING)

_RANK = {
    OrderStatus.CREATED: 0,
    OrderStatus.PROCESSING: 1,
    OrderStatus.SHIPPED: 2,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class LineItem:
    """One cart line as embedded in the checkout metadata."""
    name: str
    quantity: int = 1
    unit_price: float | None = None  # major units, as the cart sent it
    variant_id: str | None = None
    sync_variant_id: str | None = None
    catalog_variant_id: str | None = None
    product_id: str | None = None

    @staticmethod
    def from_cart(item: dict[str, Any]) -> LineItem:
        """Build from a cart entry (camelCase or snake_case keys)."""

        def pick(*keys: str) -> Any:
            for key in keys:
                value = item.get(key)
                if value not in (None, ""):
                    return value
            return None

        def as_str(value: Any) -> str | None:
            return None if value is None else str(value)

        try:
            quantity = int(item.get("quantity") or 1)
        except (TypeError, ValueError):
            quantity = 1
        price = pick("price", "unitPrice", "unit_price")
        try:
            unit_price = float(price) if price is not None else None
        except (TypeError, ValueError):
            unit_price = None

        return LineItem(
            name=str(pick("productName", "name") or "Item"),
            quantity=quantity,
            unit_price=unit_price,
            variant_id=as_str(pick("variantId", "variant_id")),
            sync_variant_id=as_str(pick("syncVariantId", "sync_variant_id")),
            catalog_variant_id=as_str(pick("catalogVariantId", "catalog_variant_id")),
            product_id=as_str(pick("productId", "product_id")),
        )


@dataclass
class ShippingDestination:
    name: str = ""
    line1: str = ""
    line2: str = ""
    city: str = ""
    state: str = ""
    country: str = ""
    postal_code: str = ""
    phone: str = ""

    @property
    def is_complete(self) -> bool:
        return bool(self.line1 and self.city and self.country and self.postal_code)


@dataclass
class Order:
    """Persisted record of one checkout."""

    order_id: str
    payment_session_id: str
    customer_email: str = ""
    amount_total: float = 0.0
    currency: str = "usd"
    items: list[LineItem] = field(default_factory=list)
    shipping: ShippingDestination = field(default_factory=ShippingDestination)
    status: OrderStatus = OrderStatus.CREATED

    fulfillment_order_id: str | None = None
    fulfillment_external_id: str | None = None

    tracking_number: str | None = None
    tracking_url: str | None = None
    carrier: str | None = None
    error: str | None = None

    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    shipped_at: datetime | None = None

    @property
    def is_shipped(self) -> bool:
        return self.status == OrderStatus.SHIPPED

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe representation (ISO timestamps, plain status string)."""
        d = asdict(self)
        d["status"] = self.status.value
        for key in ("created_at", "updated_at", "shipped_at"):
            value = getattr(self, key)
            d[key] = value.isoformat() if value else None
        return d

    @staticmethod
    def from_dict(d: dict[str, Any]) -> Order:
        data = {k: v for k, v in d.items() if k in Order.__dataclass_fields__}
        data["status"] = OrderStatus(data.get("status", OrderStatus.CREATED))
        data["items"] = [
            item if isinstance(item, LineItem) else LineItem(**item)
            for item in data.get("items") or []
        ]
        shipping = data.get("shipping") or {}
        if not isinstance(shipping, ShippingDestination):
            data["shipping"] = ShippingDestination(**shipping)
        for key in ("created_at", "updated_at", "shipped_at"):
            value = data.get(key)
            if isinstance(value, str):
                data[key] = datetime.fromisoformat(value)
        return Order(**data)


@dataclass
class Tracking:
    tracking_number: str | None = None
    tracking_url: str | None = None
    carrier: str | None = None


def transition(
    order: Order,
    target: OrderStatus,
    now: datetime | None = None,
    tracking: Tracking | None = None,
) -> bool:
    """Move an order forward in its lifecycle.

    Returns True if the order changed, False for a no-op (same status, or
    the order is already shipped). Raises InvalidTransition for backward
    moves and for anything involving `failed`.
    """
    current = order.status
    if current == OrderStatus.SHIPPED:
        return False
    if target == current:
        return False
    if current == OrderStatus.FAILED or target == OrderStatus.FAILED:
        raise InvalidTransition(f"Order {order.order_id}: {current.value} -> {target.value}")
    if _RANK[target] < _RANK[current]:
        raise InvalidTransition(f"Order {order.order_id}: {current.value} -> {target.value}")

    now = now or utcnow()
    order.status = target
    order.updated_at = now
    if target == OrderStatus.SHIPPED:
        tracking = tracking or Tracking()
        order.shipped_at = now
        order.tracking_number = tracking.tracking_number
        order.tracking_url = tracking.tracking_url
        order.carrier = tracking.carrier
    return True
