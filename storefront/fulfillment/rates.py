"""Shipping quotes: Printful rates -> Stripe Checkout shipping options.

Printful quotes decimal major units ("4.99"); Stripe wants integer minor
units. When quoting fails the caller falls back to a single flat-rate
option so checkout is never blocked on Printful.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

DEFAULT_SHIPPING_AMOUNT = 500  # $5.00
DEFAULT_SHIPPING_CURRENCY = "usd"
DEFAULT_SHIPPING_NAME = "Standard Shipping"


@dataclass
class ShippingRate:
    """One Printful shipping quote."""

    service: str
    name: str
    rate: str  # decimal string, major units
    currency: str = "USD"
    delivery_days: int | None = None

    @staticmethod
    def from_api(raw: dict[str, Any]) -> ShippingRate:
        days = raw.get("delivery_days") or raw.get("maxDeliveryDays")
        try:
            delivery_days = int(days) if days not in (None, "") else None
        except (TypeError, ValueError):
            delivery_days = None
        return ShippingRate(
            service=str(raw.get("id") or raw.get("service") or ""),
            name=str(raw.get("name") or ""),
            rate=str(raw.get("rate") or raw.get("retail_rate") or "0"),
            currency=str(raw.get("currency") or "USD"),
            delivery_days=delivery_days,
        )

    @property
    def amount(self) -> int:
        """Rate in minor units (cents)."""
        try:
            cents = Decimal(self.rate) * 100
            return int(cents.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        except (InvalidOperation, ValueError, OverflowError):
            return 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "service": self.service,
            "name": self.name,
            "rate": self.rate,
            "currency": self.currency,
            "delivery_days": self.delivery_days,
        }


def to_shipping_option(rate: ShippingRate) -> dict[str, Any]:
    """Render one rate as a Stripe `shipping_rate_data` option."""
    if rate.name:
        display_name = rate.name
    else:
        display_name = rate.service or "Shipping"
        if rate.delivery_days:
            display_name = f"{display_name} - {rate.delivery_days} days"

    data: dict[str, Any] = {
        "type": "fixed_amount",
        "fixed_amount": {
            "amount": rate.amount,
            "currency": (rate.currency or DEFAULT_SHIPPING_CURRENCY).lower(),
        },
        "display_name": display_name,
    }
    if rate.delivery_days:
        data["delivery_estimate"] = {
            "minimum": {"unit": "business_day", "value": max(1, rate.delivery_days - 2)},
            "maximum": {"unit": "business_day", "value": rate.delivery_days + 2},
        }
    return {"shipping_rate_data": data}


def to_shipping_options(rates: list[ShippingRate]) -> list[dict[str, Any]]:
    return [to_shipping_option(r) for r in rates]


def default_shipping_options() -> list[dict[str, Any]]:
    """The flat-rate fallback used whenever Printful cannot quote."""
    return [
        {
            "shipping_rate_data": {
                "type": "fixed_amount",
                "fixed_amount": {
                    "amount": DEFAULT_SHIPPING_AMOUNT,
                    "currency": DEFAULT_SHIPPING_CURRENCY,
                },
                "display_name": DEFAULT_SHIPPING_NAME,
            }
        }
    ]
