"""Order records and their persistence."""

from __future__ import annotations

from storefront.orders.models import (
    LineItem,
    Order,
    OrderStatus,
    ShippingDestination,
    Tracking,
    transition,
)
from storefront.orders.store import InMemoryOrderStore, OrderStore, PostgresOrderStore

__all__ = [
    "InMemoryOrderStore",
    "LineItem",
    "Order",
    "OrderStatus",
    "OrderStore",
    "PostgresOrderStore",
    "ShippingDestination",
    "Tracking",
    "transition",
]
