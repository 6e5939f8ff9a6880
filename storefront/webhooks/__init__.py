"""Webhook inbound system.

Receives webhooks from Stripe (payment completed) and Printful (package
shipped). Each webhook is signature-verified and handed to the
reconciliation engine; Printful redeliveries are dropped by body digest.
"""
