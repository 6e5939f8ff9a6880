"""Storefront backend: Stripe checkout, Printful fulfillment, shipment reconciliation."""

__version__ = "0.4.0"
