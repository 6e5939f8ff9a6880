"""Error taxonomy for the storefront backend.

Every error the route layer knows how to answer carries its HTTP status,
so handlers can translate without a lookup table:

- ConfigurationError: missing provider credentials (500, never retried)
- WebhookAuthError: bad or missing webhook signature (401)
- WebhookPayloadError / PaymentSignatureError: malformed inbound call (400)
- CheckoutDataError: paid session we cannot fulfil (acknowledged with 200)
- FulfillmentError: Printful answered non-2xx (upstream detail preserved)
"""

from __future__ import annotations


class StorefrontError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = 500
    label = "Internal server error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.label)
        self.message = message or self.label

    def to_dict(self) -> dict[str, str]:
        return {"error": self.label, "message": self.message}


class ConfigurationError(StorefrontError):
    """A required credential or backing service is not configured."""

    status_code = 500
    label = "Configuration error"

    def __init__(self, message: str = "", missing: list[str] | None = None):
        super().__init__(message)
        self.missing = list(missing or [])

    def to_dict(self) -> dict:
        body: dict = super().to_dict()
        if self.missing:
            body["missing"] = self.missing
        return body


class WebhookAuthError(StorefrontError):
    status_code = 401
    label = "Invalid signature"


class WebhookPayloadError(StorefrontError):
    status_code = 400
    label = "Invalid webhook payload"


class PaymentSignatureError(StorefrontError):
    status_code = 400
    label = "Webhook handler failed"


class CheckoutDataError(StorefrontError):
    """Paid session whose metadata or address cannot produce an order.

    Acknowledged to Stripe with 200: redelivery would fail the same way.
    """

    status_code = 200
    label = "Unfulfillable checkout"


class FulfillmentError(StorefrontError):
    """Printful rejected a call (non-2xx) or was unreachable."""

    status_code = 502
    label = "Fulfillment provider error"

    def __init__(self, message: str, status: int | None = None, code: str | int | None = None):
        super().__init__(message)
        self.status = status
        self.code = code


class InvalidTransition(StorefrontError):
    """An order state change that would move the lifecycle backward."""

    status_code = 409
    label = "Invalid order transition"
