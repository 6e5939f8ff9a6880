"""Order persistence: store protocol, Postgres JSONB backend, in-memory backend.

Each Order is stored as a single JSONB document keyed by order_id (the
Stripe checkout session id). Lookups by Printful ids read fields out of
the document. The in-memory store has the same interface and is used in
tests and for local runs without a database.
"""

from __future__ import annotations

import copy
import json
import logging
from typing import Iterable, Protocol, runtime_checkable

import psycopg

from storefront.orders.models import Order, OrderStatus

logger = logging.getLogger(__name__)

_TABLE = "storefront_orders"

_SCHEMA = f"""
CREATE TABLE IF NOT EXISTS {_TABLE} (
    order_id    TEXT PRIMARY KEY,
    data        JSONB NOT NULL,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE INDEX IF NOT EXISTS {_TABLE}_status_idx ON {_TABLE} ((data->>'status'));
CREATE INDEX IF NOT EXISTS {_TABLE}_external_idx
    ON {_TABLE} ((data->>'fulfillment_external_id'));
CREATE INDEX IF NOT EXISTS {_TABLE}_fulfillment_idx
    ON {_TABLE} ((data->>'fulfillment_order_id'));
"""


@runtime_checkable
class OrderStore(Protocol):
    """Persistence interface the reconciliation engine writes through."""

    def insert(self, order: Order) -> bool:
        """Insert a new order. Returns False if order_id already exists."""
        ...

    def get(self, order_id: str) -> Order | None:
        ...

    def find_by_external_id(self, external_id: str) -> Order | None:
        ...

    def find_by_fulfillment_id(self, fulfillment_order_id: str) -> Order | None:
        ...

    def list_by_status(self, statuses: Iterable[OrderStatus]) -> list[Order]:
        ...

    def list_recent(self, limit: int = 50, status: OrderStatus | None = None) -> list[Order]:
        ...

    def update(self, order: Order) -> None:
        ...


class InMemoryOrderStore:
    """Dict-backed order store.

    Returns copies so callers only change stored state through update(),
    the same as with a real database.
    """

    def __init__(self, orders: Iterable[Order] = ()):
        self._orders: dict[str, Order] = {}
        for order in orders:
            self.insert(order)

    def __len__(self) -> int:
        return len(self._orders)

    def insert(self, order: Order) -> bool:
        if order.order_id in self._orders:
            return False
        self._orders[order.order_id] = copy.deepcopy(order)
        return True

    def get(self, order_id: str) -> Order | None:
        order = self._orders.get(order_id)
        return copy.deepcopy(order) if order else None

    def _find(self, attr: str, value: str) -> Order | None:
        for order in self._orders.values():
            if getattr(order, attr) == value:
                return copy.deepcopy(order)
        return None

    def find_by_external_id(self, external_id: str) -> Order | None:
        return self._find("fulfillment_external_id", external_id)

    def find_by_fulfillment_id(self, fulfillment_order_id: str) -> Order | None:
        return self._find("fulfillment_order_id", fulfillment_order_id)

    def list_by_status(self, statuses: Iterable[OrderStatus]) -> list[Order]:
        wanted = set(statuses)
        found = [o for o in self._orders.values() if o.status in wanted]
        return [copy.deepcopy(o) for o in sorted(found, key=lambda o: o.created_at)]

    def list_recent(self, limit: int = 50, status: OrderStatus | None = None) -> list[Order]:
        orders = [o for o in self._orders.values() if status is None or o.status == status]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return [copy.deepcopy(o) for o in orders[:limit]]

    def update(self, order: Order) -> None:
        if order.order_id not in self._orders:
            raise KeyError(order.order_id)
        self._orders[order.order_id] = copy.deepcopy(order)


class PostgresOrderStore:
    """Order store backed by a single Postgres JSONB table."""

    def __init__(self, database_url: str):
        self._database_url = database_url

    def _get_conn(self) -> psycopg.Connection:
        return psycopg.connect(self._database_url, autocommit=True)

    @staticmethod
    def _load(row) -> Order:
        data = row[0] if isinstance(row[0], dict) else json.loads(row[0])
        return Order.from_dict(data)

    def ensure_schema(self) -> None:
        with self._get_conn() as conn:
            conn.execute(_SCHEMA)
        logger.info("Order table ready: %s", _TABLE)

    def insert(self, order: Order) -> bool:
        with self._get_conn() as conn:
            cur = conn.execute(
                f"""INSERT INTO {_TABLE} (order_id, data)
                   VALUES (%s, %s::jsonb)
                   ON CONFLICT (order_id) DO NOTHING""",
                (order.order_id, json.dumps(order.to_dict())),
            )
            return cur.rowcount == 1

    def get(self, order_id: str) -> Order | None:
        with self._get_conn() as conn:
            row = conn.execute(
                f"SELECT data FROM {_TABLE} WHERE order_id = %s",
                (order_id,),
            ).fetchone()
        return self._load(row) if row else None

    def _find_one(self, field_name: str, value: str) -> Order | None:
        with self._get_conn() as conn:
            row = conn.execute(
                f"SELECT data FROM {_TABLE} WHERE data->>%s = %s LIMIT 1",
                (field_name, value),
            ).fetchone()
        return self._load(row) if row else None

    def find_by_external_id(self, external_id: str) -> Order | None:
        return self._find_one("fulfillment_external_id", external_id)

    def find_by_fulfillment_id(self, fulfillment_order_id: str) -> Order | None:
        return self._find_one("fulfillment_order_id", fulfillment_order_id)

    def list_by_status(self, statuses: Iterable[OrderStatus]) -> list[Order]:
        values = [OrderStatus(s).value for s in statuses]
        with self._get_conn() as conn:
            rows = conn.execute(
                f"""SELECT data FROM {_TABLE}
                   WHERE data->>'status' = ANY(%s)
                   ORDER BY created_at""",
                (values,),
            ).fetchall()
        return [self._load(r) for r in rows]

    def list_recent(self, limit: int = 50, status: OrderStatus | None = None) -> list[Order]:
        with self._get_conn() as conn:
            if status is None:
                rows = conn.execute(
                    f"SELECT data FROM {_TABLE} ORDER BY created_at DESC LIMIT %s",
                    (limit,),
                ).fetchall()
            else:
                rows = conn.execute(
                    f"""SELECT data FROM {_TABLE}
                       WHERE data->>'status' = %s
                       ORDER BY created_at DESC LIMIT %s""",
                    (OrderStatus(status).value, limit),
                ).fetchall()
        return [self._load(r) for r in rows]

    def update(self, order: Order) -> None:
        with self._get_conn() as conn:
            cur = conn.execute(
                f"UPDATE {_TABLE} SET data = %s::jsonb WHERE order_id = %s",
                (json.dumps(order.to_dict()), order.order_id),
            )
            if cur.rowcount == 0:
                raise KeyError(order.order_id)
