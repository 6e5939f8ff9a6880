"""Storefront API routes: checkout, shipping quotes, polling, admin views."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from storefront.context import AppContext
from storefront.errors import ConfigurationError, FulfillmentError
from storefront.fulfillment.rates import default_shipping_options, to_shipping_options
from storefront.notifications.email import NotificationItem, ShippingNotification
from storefront.orders.models import OrderStatus
from storefront.payments.gateway import build_line_items

logger = logging.getLogger(__name__)

router = APIRouter()

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_VARIANT_IN_DESCRIPTION = re.compile(r"Variant ID: (\d+)")


def _context(request: Request) -> AppContext:
    return request.app.state.context


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=400)


# ── Request models ────────────────────────────────────────────────────────


class CheckoutRequest(BaseModel):
    items: list[dict[str, Any]] = Field(default_factory=list, description="Cart items")


class ShippingQuoteRequest(BaseModel):
    items: list[dict[str, Any]] = Field(default_factory=list)
    recipient: dict[str, Any] | None = None


class StripeShippingRequest(BaseModel):
    line_items: list[dict[str, Any]] = Field(default_factory=list)
    shipping_address: dict[str, Any] | None = None


class EmailCheckRequest(BaseModel):
    email: str = ""


# ── Health ────────────────────────────────────────────────────────────────


@router.get("/healthz")
async def healthz():
    return {"status": "ok"}


# ── Checkout ──────────────────────────────────────────────────────────────


@router.post("/api/store/checkout")
def create_checkout(body: CheckoutRequest, request: Request):
    """Start a Stripe Checkout session for the cart."""
    ctx = _context(request)
    if not body.items:
        return _bad_request("Items are required")
    if ctx.payments is None:
        raise ConfigurationError(
            "STRIPE_SECRET_KEY is not set", missing=["STOREFRONT_STRIPE_SECRET_KEY"]
        )

    site = ctx.settings.site_url.rstrip("/")
    session = ctx.payments.create_checkout_session(
        build_line_items(body.items),
        success_url=f"{site}/store/success?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{site}/store",
        metadata={"items": json.dumps(body.items)},
        collect_shipping_address=True,
    )
    return {"url": session.url}


# ── Catalog ───────────────────────────────────────────────────────────────


@router.get("/api/store/products")
def list_products(request: Request):
    """Printful store products for the storefront catalog page."""
    ctx = _context(request)
    if ctx.fulfillment is None:
        raise ConfigurationError(
            "Printful not configured", missing=["STOREFRONT_PRINTFUL_API_KEY"]
        )
    try:
        products = ctx.fulfillment.list_store_products()
    except FulfillmentError as e:
        logger.error("Error fetching Printful products: %s", e.message)
        return JSONResponse(
            {"error": "Failed to fetch products", "message": e.message}, status_code=500
        )
    return {"products": products}


# ── Shipping quotes ───────────────────────────────────────────────────────


def _quote(ctx: AppContext, recipient: dict[str, Any], items: list[dict[str, Any]]) -> dict:
    """Printful quote as Stripe options, or the flat-rate fallback."""
    if ctx.fulfillment is None:
        logger.warning("Printful not configured, using default shipping")
        return {
            "shipping_options": default_shipping_options(),
            "error": "Could not calculate shipping rates, using default",
        }
    try:
        rates = ctx.fulfillment.get_shipping_rates(recipient, items)
    except FulfillmentError as e:
        logger.error("Error fetching shipping rates from Printful: %s", e.message)
        return {
            "shipping_options": default_shipping_options(),
            "error": "Could not calculate shipping rates, using default",
        }
    return {
        "shipping_options": to_shipping_options(rates),
        "rates": [r.to_dict() for r in rates],
    }


@router.post("/api/store/shipping")
def calculate_shipping(body: ShippingQuoteRequest, request: Request):
    """Quote shipping for a cart and address."""
    if not body.items:
        return _bad_request("Items are required")
    recipient = body.recipient
    if not recipient:
        return _bad_request("Recipient address is required")
    required = ("address1", "city", "state_code", "country_code", "zip")
    if not all(recipient.get(k) for k in required):
        return _bad_request(
            "Complete address is required (address1, city, state_code, country_code, zip)"
        )

    printful_recipient = {k: recipient[k] for k in required}
    items = [
        {"variant_id": item.get("variantId"), "quantity": item.get("quantity") or 1}
        for item in body.items
    ]
    return _quote(_context(request), printful_recipient, items)


def _variant_from_line_item(item: dict[str, Any]) -> int:
    """Variant id from price metadata, the description, or item metadata."""
    price_meta = (item.get("price_data") or {}).get("metadata") or {}
    match = _VARIANT_IN_DESCRIPTION.search(item.get("description") or "")
    raw = (
        price_meta.get("variant_id")
        or (match.group(1) if match else None)
        or (item.get("metadata") or {}).get("variant_id")
    )
    try:
        return int(raw)
    except (TypeError, ValueError):
        return 0


@router.post("/api/store/checkout/shipping")
def stripe_shipping_callback(body: StripeShippingRequest, request: Request):
    """Dynamic shipping options for Stripe once the customer enters an address."""
    if not body.line_items:
        return _bad_request("Line items are required")
    address = body.shipping_address
    if not address:
        return _bad_request("Shipping address is required")

    items = []
    for line in body.line_items:
        variant_id = _variant_from_line_item(line)
        if variant_id > 0:
            items.append({"variant_id": variant_id, "quantity": line.get("quantity") or 1})
    if not items:
        logger.warning("No valid variant IDs found in Stripe line items")
        return {"shipping_options": default_shipping_options()}

    recipient = {
        "address1": address.get("line1") or "",
        "city": address.get("city") or "",
        "state_code": address.get("state") or "",
        "country_code": address.get("country") or "US",
        "zip": address.get("postal_code") or "",
    }
    quote = _quote(_context(request), recipient, items)
    quote.pop("rates", None)
    return quote


# ── Reconciliation ────────────────────────────────────────────────────────


@router.get("/api/printful/check-shipped")
def check_shipped(request: Request):
    """Poll Printful for every unshipped order (manual or cron)."""
    engine = _context(request).engine
    missing = engine.missing_configuration()
    if missing:
        logger.error("Missing required settings for shipment poll: %s", missing)
        raise ConfigurationError("Missing required environment variables", missing=missing)
    return engine.poll_pending_orders().to_dict()


@router.get("/api/printful/test-email")
async def test_email_usage():
    return {
        "message": "Test Email Endpoint",
        "usage": {
            "method": "POST",
            "url": "/api/printful/test-email",
            "body": {"email": "test@example.com"},
            "description": "Sends a test shipping notification email to the specified address",
        },
    }


@router.post("/api/printful/test-email")
def send_test_email(body: EmailCheckRequest, request: Request):
    """Send a synthetic shipping notification to check mail configuration."""
    email = body.email.strip()
    if not email:
        return _bad_request("Email address is required")
    if not _EMAIL_RE.match(email):
        return _bad_request("Invalid email address format")

    result = _context(request).notifier.send_shipping_notification(
        ShippingNotification(
            email=email,
            name="Test Customer",
            order_number="TEST-12345",
            tracking_number="1Z999AA10123456784",
            tracking_url="https://tools.usps.com/go/TrackConfirmAction?tLabels=1Z999AA10123456784",
            carrier="USPS",
            items=[
                NotificationItem(name="Test T-Shirt", quantity=1),
                NotificationItem(name="Test Hoodie", quantity=2),
            ],
        )
    )
    if not result.success:
        return JSONResponse(
            {
                "error": "Failed to send test email",
                "details": result.error,
                "help": "Check that STOREFRONT_SMTP_HOST and STOREFRONT_MAIL_FROM are configured",
            },
            status_code=500,
        )
    return {"success": True, "message": "Test email sent successfully", "sentTo": email}


# ── Admin ─────────────────────────────────────────────────────────────────


@router.get("/api/admin/orders")
def list_orders(
    request: Request,
    limit: int = Query(default=50, ge=1, le=500),
    status: str | None = None,
):
    """Newest orders first, optionally filtered by status."""
    ctx = _context(request)
    if ctx.store is None:
        raise ConfigurationError("Database not configured", missing=["STOREFRONT_DATABASE_URL"])
    try:
        wanted = OrderStatus(status) if status else None
    except ValueError:
        return _bad_request(f"Unknown status: {status}")

    orders = ctx.store.list_recent(limit=limit, status=wanted)
    return {"orders": [o.to_dict() for o in orders], "count": len(orders)}
