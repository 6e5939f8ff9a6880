"""Stripe Checkout integration."""
