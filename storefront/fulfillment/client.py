"""Printful REST API client.

Wraps the Printful endpoints the storefront uses:
    GET  /store/products        store catalogue
    POST /orders                create a fulfillment order after payment
    GET  /orders/{id}           order status + shipments (polling)
    POST /shipping/rates        shipping quotes

Non-2xx responses raise FulfillmentError carrying Printful's own message.
No retries: a failed call is picked up by the next poll or webhook.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from storefront.errors import ConfigurationError, FulfillmentError
from storefront.fulfillment.rates import ShippingRate
from storefront.fulfillment.shipments import ShipmentEvent, from_order_status
from storefront.orders.models import LineItem, ShippingDestination

logger = logging.getLogger(__name__)

PRINTFUL_API_BASE = "https://api.printful.com"


def _error_from_response(response: httpx.Response) -> FulfillmentError:
    """Build a FulfillmentError from a non-2xx Printful response."""
    text = response.text
    try:
        body = json.loads(text)
    except ValueError:
        body = {"message": text}
    if not isinstance(body, dict):
        body = {"message": str(body)}

    nested = body.get("error")
    if not isinstance(nested, dict):
        nested = {"message": nested} if isinstance(nested, str) else {}
    result = body.get("result") if isinstance(body.get("result"), str) else None

    message = body.get("message") or nested.get("message") or result or response.reason_phrase
    code = body.get("code") or nested.get("code")

    full = f"Printful API error ({response.status_code}): {message}"
    if code:
        full += f" [Code: {code}]"
    return FulfillmentError(full, status=response.status_code, code=code)


def build_order_item(item: LineItem) -> dict[str, Any]:
    """Printful order item for one cart line.

    Synced products are addressed by sync_variant_id (their artwork is
    already attached). Catalog products fall back to a numeric variant_id.
    """
    data: dict[str, Any] = {"quantity": item.quantity or 1}
    if item.sync_variant_id:
        data["sync_variant_id"] = item.sync_variant_id
        return data

    raw_id = item.catalog_variant_id or item.variant_id
    if not raw_id:
        raise ValueError(f"No valid variant ID found for product {item.name}")
    try:
        variant_id = int(raw_id)
    except (TypeError, ValueError):
        variant_id = 0
    if variant_id <= 0:
        raise ValueError(f"Invalid variant ID: {raw_id} for product {item.name}")
    data["variant_id"] = variant_id
    return data


def build_recipient(destination: ShippingDestination, email: str) -> dict[str, str]:
    return {
        "name": destination.name or "Customer",
        "address1": destination.line1,
        "address2": destination.line2,
        "city": destination.city,
        "state_code": destination.state,
        "country_code": destination.country or "US",
        "zip": destination.postal_code,
        "phone": destination.phone,
        "email": email,
    }


class PrintfulClient:
    """Thin Printful API wrapper around an explicit httpx.Client."""

    def __init__(
        self,
        api_key: str,
        base_url: str = PRINTFUL_API_BASE,
        timeout: float = 30.0,
        http: httpx.Client | None = None,
    ):
        if not api_key:
            raise ConfigurationError(
                "PRINTFUL_API_KEY is not set", missing=["STOREFRONT_PRINTFUL_API_KEY"]
            )
        self._http = http or httpx.Client(base_url=base_url, timeout=timeout)
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def close(self) -> None:
        self._http.close()

    def _request(self, method: str, path: str, payload: dict | None = None) -> Any:
        try:
            response = self._http.request(method, path, json=payload, headers=self._headers)
        except httpx.HTTPError as e:
            raise FulfillmentError(f"Printful request failed: {e}") from e

        logger.debug("Printful %s %s -> %d", method, path, response.status_code)
        if not response.is_success:
            raise _error_from_response(response)
        try:
            return response.json()
        except ValueError as e:
            raise FulfillmentError(
                f"Printful returned invalid JSON for {path}", status=response.status_code
            ) from e

    def list_store_products(self) -> list[dict[str, Any]]:
        """Return store products, tolerating the shapes Printful has used."""
        data = self._request("GET", "/store/products")
        result = data.get("result") if isinstance(data, dict) else None

        if isinstance(result, dict) and isinstance(result.get("data"), list):
            return result["data"]
        if isinstance(result, list):
            return result
        if isinstance(data, dict) and isinstance(data.get("data"), list):
            return data["data"]
        if isinstance(data, list):
            return data
        logger.warning("Could not find products array in Printful response")
        return []

    def create_order(
        self,
        recipient: dict[str, Any],
        items: list[dict[str, Any]],
        retail_costs: dict[str, str] | None = None,
        external_id: str | None = None,
    ) -> dict[str, Any]:
        """Create a fulfillment order. Returns Printful's order object."""
        payload: dict[str, Any] = {"recipient": recipient, "items": items}
        if retail_costs:
            payload["retail_costs"] = retail_costs
        if external_id:
            payload["external_id"] = external_id

        data = self._request("POST", "/orders", payload)
        order = data.get("result") or {}
        logger.info(
            "Printful order created: id=%s external_id=%s",
            order.get("id"),
            order.get("external_id"),
        )
        return order

    def get_order(self, order_id: str) -> dict[str, Any]:
        data = self._request("GET", f"/orders/{order_id}")
        return data.get("result") or {}

    def get_order_status(self, order_id: str) -> ShipmentEvent:
        """Current status of a Printful order as a normalized ShipmentEvent."""
        return from_order_status(self.get_order(order_id))

    def get_shipping_rates(
        self,
        recipient: dict[str, Any],
        items: list[dict[str, Any]],
    ) -> list[ShippingRate]:
        data = self._request("POST", "/shipping/rates", {"recipient": recipient, "items": items})
        rates = data.get("result") if isinstance(data, dict) else data
        if not isinstance(rates, list):
            logger.warning("Printful shipping rates is not a list: %s", type(rates).__name__)
            return []
        return [ShippingRate.from_api(r) for r in rates if isinstance(r, dict)]
