"""Stripe Checkout gateway.

Starts hosted checkout sessions and authenticates/parses the
checkout.session.completed webhook. Stripe does not keep structured cart
data, so the cart is embedded as JSON in session metadata at creation
time and decoded again when the payment completes.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

import stripe

from storefront.errors import CheckoutDataError, ConfigurationError, PaymentSignatureError
from storefront.orders.models import LineItem, ShippingDestination

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"

SHIPPING_COUNTRIES = ["US", "CA", "GB", "AU"]

_FALLBACK_UNIT_AMOUNT = 2499  # $24.99 when the cart sent no price


@dataclass
class CheckoutSession:
    id: str
    url: str


@dataclass
class CheckoutCompletion:
    """What a completed checkout session tells us about the purchase."""

    session_id: str
    customer_email: str
    items: list[LineItem]
    destination: ShippingDestination
    currency: str = "usd"
    amount_total: int = 0  # minor units
    amount_subtotal: int = 0
    amount_shipping: int = 0
    amount_tax: int = 0
    raw_items: list[dict[str, Any]] = field(default_factory=list)

    def retail_costs(self) -> dict[str, str]:
        """Printful retail_costs block (major units as strings)."""
        return {
            "currency": self.currency.upper(),
            "subtotal": f"{self.amount_subtotal / 100:.2f}",
            "discount": "0.00",
            "shipping": f"{self.amount_shipping / 100:.2f}",
            "tax": f"{self.amount_tax / 100:.2f}",
        }


def build_line_items(cart: list[dict[str, Any]], currency: str = "usd") -> list[dict[str, Any]]:
    """Convert cart entries into Stripe `price_data` line items (minor units)."""
    line_items = []
    for item in cart:
        price = item.get("price")
        try:
            unit_amount = round(float(price) * 100) if price not in (None, "") else _FALLBACK_UNIT_AMOUNT
        except (TypeError, ValueError):
            unit_amount = _FALLBACK_UNIT_AMOUNT
        line_items.append(
            {
                "price_data": {
                    "currency": currency,
                    "product_data": {
                        "name": item.get("productName") or "Product",
                        "description": f"Variant ID: {item.get('variantId')}",
                    },
                    "unit_amount": unit_amount,
                },
                "quantity": int(item.get("quantity") or 1),
            }
        )
    return line_items


def _get(obj: Any, key: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(key)
    return None


def parse_checkout_completed(session: dict[str, Any]) -> CheckoutCompletion:
    """Extract cart, destination and totals from a completed session object.

    Raises CheckoutDataError when the session cannot become a fulfillment
    order (unreadable cart metadata, no items, incomplete address).
    """
    session_id = session.get("id") or ""
    metadata = session.get("metadata") or {}

    try:
        raw_items = json.loads(metadata.get("items") or "[]")
    except (TypeError, ValueError) as e:
        raise CheckoutDataError("Failed to parse items from metadata") from e
    if not isinstance(raw_items, list) or not raw_items:
        raise CheckoutDataError("No items in order")

    customer = session.get("customer_details") or {}
    shipping_details = _get(session.get("collected_information"), "shipping_details") or {}
    address = shipping_details.get("address") or customer.get("address") or {}

    destination = ShippingDestination(
        name=shipping_details.get("name") or customer.get("name") or "Customer",
        line1=address.get("line1") or "",
        line2=address.get("line2") or "",
        city=address.get("city") or "",
        state=address.get("state") or "",
        country=address.get("country") or "",
        postal_code=address.get("postal_code") or "",
        phone=customer.get("phone") or "",
    )
    if not destination.is_complete:
        raise CheckoutDataError("Missing required shipping address fields")

    return CheckoutCompletion(
        session_id=session_id,
        customer_email=customer.get("email") or session.get("customer_email") or "",
        items=[LineItem.from_cart(i) for i in raw_items if isinstance(i, dict)],
        destination=destination,
        currency=session.get("currency") or "usd",
        amount_total=session.get("amount_total") or 0,
        amount_subtotal=session.get("amount_subtotal") or 0,
        amount_shipping=_get(session.get("shipping_cost"), "amount_total") or 0,
        amount_tax=_get(session.get("total_details"), "amount_tax") or 0,
        raw_items=raw_items,
    )


class StripeGateway:
    """Stripe Checkout adapter around an explicit StripeClient."""

    def __init__(
        self,
        secret_key: str,
        client: stripe.StripeClient | None = None,
        api_version: str | None = None,
    ):
        if not secret_key:
            raise ConfigurationError(
                "STRIPE_SECRET_KEY is not set", missing=["STOREFRONT_STRIPE_SECRET_KEY"]
            )
        self._client = client or stripe.StripeClient(api_key=secret_key, stripe_version=api_version)

    def create_checkout_session(
        self,
        line_items: list[dict[str, Any]],
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str] | None = None,
        collect_shipping_address: bool = False,
        shipping_options: list[dict[str, Any]] | None = None,
    ) -> CheckoutSession:
        params: dict[str, Any] = {
            "payment_method_types": ["card"],
            "line_items": line_items,
            "mode": "payment",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata or {},
            "invoice_creation": {"enabled": False},
        }
        if collect_shipping_address:
            params["shipping_address_collection"] = {"allowed_countries": SHIPPING_COUNTRIES}
        if shipping_options:
            params["shipping_options"] = shipping_options

        session = self._client.checkout.sessions.create(params=params)
        logger.info("Stripe checkout session created: %s", session.id)
        return CheckoutSession(id=session.id, url=session.url)

    @staticmethod
    def verify_webhook_signature(
        raw_body: bytes,
        signature_header: str | None,
        secret: str,
    ) -> dict[str, Any]:
        """Verify a Stripe webhook and return the event as a plain dict."""
        if not signature_header:
            raise PaymentSignatureError("Missing stripe-signature header")
        if not secret:
            raise ConfigurationError(
                "Webhook secret not configured", missing=["STOREFRONT_STRIPE_WEBHOOK_SECRET"]
            )
        try:
            stripe.Webhook.construct_event(raw_body, signature_header, secret)
        except stripe.SignatureVerificationError as e:
            logger.warning("Stripe webhook signature verification failed")
            raise PaymentSignatureError(str(e) or "Invalid signature") from e
        except ValueError as e:
            raise PaymentSignatureError("Invalid payload") from e
        return json.loads(raw_body)
