"""Tests for the order model, lifecycle transitions and the in-memory store.

Tests:
- transition() is monotonic; shipped is terminal; failed never moves
- shipped_at is set exactly when an order becomes shipped
- LineItem.from_cart accepts the cart's camelCase keys
- Order round-trips through its JSON document form
- InMemoryOrderStore: insert-once, lookups by Printful ids, copy semantics
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from freezegun import freeze_time
from hypothesis import given
from hypothesis import strategies as st

from storefront.errors import InvalidTransition
from storefront.orders.models import (
    LineItem,
    Order,
    OrderStatus,
    ShippingDestination,
    Tracking,
    transition,
)
from storefront.orders.store import InMemoryOrderStore, OrderStore
from tests.factories import make_order


# ── Lifecycle ─────────────────────────────────────────────────────────────


class TestTransition:
    def test_created_to_processing(self):
        order = make_order()
        assert transition(order, OrderStatus.PROCESSING) is True
        assert order.status == OrderStatus.PROCESSING
        assert order.shipped_at is None

    @freeze_time("2026-10-05 09:30:00")
    def test_shipped_sets_tracking_and_timestamp(self):
        order = make_order()
        tracking = Tracking(tracking_number="1Z999", tracking_url="https://t/1Z999", carrier="UPS")

        assert transition(order, OrderStatus.SHIPPED, tracking=tracking) is True

        expected = datetime(2026, 10, 5, 9, 30, tzinfo=timezone.utc)
        assert order.status == OrderStatus.SHIPPED
        assert order.shipped_at == expected
        assert order.updated_at == expected
        assert order.tracking_number == "1Z999"
        assert order.tracking_url == "https://t/1Z999"
        assert order.carrier == "UPS"

    def test_shipped_without_tracking(self):
        order = make_order(status=OrderStatus.PROCESSING)
        assert transition(order, OrderStatus.SHIPPED) is True
        assert order.shipped_at is not None
        assert order.tracking_number is None

    def test_shipped_is_terminal(self):
        order = make_order()
        transition(order, OrderStatus.SHIPPED, tracking=Tracking(tracking_number="A"))
        shipped_at = order.shipped_at

        assert transition(order, OrderStatus.SHIPPED, tracking=Tracking(tracking_number="B")) is False
        assert transition(order, OrderStatus.PROCESSING) is False
        assert order.status == OrderStatus.SHIPPED
        assert order.tracking_number == "A"
        assert order.shipped_at == shipped_at

    def test_same_status_is_noop(self):
        order = make_order(status=OrderStatus.PROCESSING)
        before = order.updated_at
        assert transition(order, OrderStatus.PROCESSING) is False
        assert order.updated_at == before

    def test_backward_move_rejected(self):
        order = make_order(status=OrderStatus.PROCESSING)
        with pytest.raises(InvalidTransition):
            transition(order, OrderStatus.CREATED)
        assert order.status == OrderStatus.PROCESSING

    def test_failed_never_moves(self):
        order = make_order(status=OrderStatus.FAILED, fulfillment_order_id=None)
        with pytest.raises(InvalidTransition):
            transition(order, OrderStatus.SHIPPED)
        assert order.status == OrderStatus.FAILED

    def test_cannot_fail_a_live_order(self):
        order = make_order()
        with pytest.raises(InvalidTransition):
            transition(order, OrderStatus.FAILED)

    @given(st.lists(st.sampled_from([OrderStatus.CREATED, OrderStatus.PROCESSING, OrderStatus.SHIPPED])))
    def test_status_never_regresses(self, targets):
        """Any sequence of requested moves only ever walks forward."""
        rank = {OrderStatus.CREATED: 0, OrderStatus.PROCESSING: 1, OrderStatus.SHIPPED: 2}
        order = make_order()
        for target in targets:
            before = order.status
            try:
                transition(order, target)
            except InvalidTransition:
                pass
            assert rank[order.status] >= rank[before]
            assert (order.shipped_at is not None) == (order.status == OrderStatus.SHIPPED)


# ── Model ─────────────────────────────────────────────────────────────────


class TestLineItem:
    def test_from_cart_camel_case(self):
        item = LineItem.from_cart(
            {"productName": "Dad Hat", "quantity": 2, "price": "19.50", "variantId": 4012, "syncVariantId": "sv1"}
        )
        assert item.name == "Dad Hat"
        assert item.quantity == 2
        assert item.unit_price == 19.5
        assert item.variant_id == "4012"
        assert item.sync_variant_id == "sv1"

    def test_from_cart_defaults(self):
        item = LineItem.from_cart({"quantity": "lots"})
        assert item.name == "Item"
        assert item.quantity == 1
        assert item.unit_price is None
        assert item.variant_id is None


class TestOrderDocument:
    def test_round_trip(self):
        order = make_order(status=OrderStatus.PROCESSING)
        restored = Order.from_dict(order.to_dict())
        assert restored == order

    def test_to_dict_is_json_safe(self):
        d = make_order().to_dict()
        assert d["status"] == "created"
        assert d["created_at"] == "2026-10-01T12:00:00+00:00"
        assert d["shipped_at"] is None
        assert d["shipping"]["city"] == "Springfield"

    def test_destination_completeness(self):
        assert ShippingDestination(line1="1 Main", city="X", country="US", postal_code="1").is_complete
        assert not ShippingDestination(line1="1 Main", city="X", country="US").is_complete


# ── In-memory store ───────────────────────────────────────────────────────


class TestInMemoryOrderStore:
    def test_satisfies_protocol(self):
        assert isinstance(InMemoryOrderStore(), OrderStore)

    def test_insert_once(self):
        store = InMemoryOrderStore()
        assert store.insert(make_order()) is True
        assert store.insert(make_order(email="other@example.com")) is False
        assert store.get("cs_test_1").customer_email == "dad@example.com"
        assert len(store) == 1

    def test_lookups_by_printful_ids(self):
        store = InMemoryOrderStore([make_order(order_id="cs_a", fulfillment_order_id="77")])
        assert store.find_by_external_id("cs_a").order_id == "cs_a"
        assert store.find_by_fulfillment_id("77").order_id == "cs_a"
        assert store.find_by_fulfillment_id("78") is None

    def test_reads_are_copies(self):
        store = InMemoryOrderStore([make_order()])
        order = store.get("cs_test_1")
        order.status = OrderStatus.SHIPPED
        assert store.get("cs_test_1").status == OrderStatus.CREATED

    def test_update_requires_existing_order(self):
        store = InMemoryOrderStore()
        with pytest.raises(KeyError):
            store.update(make_order())

    def test_list_by_status_oldest_first(self):
        base = datetime(2026, 10, 1, tzinfo=timezone.utc)
        a = make_order(order_id="a")
        b = make_order(order_id="b", status=OrderStatus.PROCESSING)
        c = make_order(order_id="c", status=OrderStatus.SHIPPED)
        a.created_at = base + timedelta(hours=2)
        b.created_at = base
        store = InMemoryOrderStore([a, b, c])

        pending = store.list_by_status([OrderStatus.CREATED, OrderStatus.PROCESSING])
        assert [o.order_id for o in pending] == ["b", "a"]

    def test_list_recent_newest_first(self):
        base = datetime(2026, 10, 1, tzinfo=timezone.utc)
        orders = []
        for i in range(3):
            o = make_order(order_id=f"o{i}")
            o.created_at = base + timedelta(days=i)
            orders.append(o)
        orders[1].status = OrderStatus.SHIPPED
        store = InMemoryOrderStore(orders)

        assert [o.order_id for o in store.list_recent(limit=2)] == ["o2", "o1"]
        assert [o.order_id for o in store.list_recent(status=OrderStatus.SHIPPED)] == ["o1"]
