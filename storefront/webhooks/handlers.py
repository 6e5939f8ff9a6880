"""Webhook HTTP handlers: FastAPI routes for Printful and Stripe.

Each handler:
1. Reads raw body (needed for HMAC verification)
2. Verifies the provider signature
3. Drops redelivered bodies (Printful only; Stripe redelivery is absorbed
   by the session-keyed order record)
4. Hands the event to the reconciliation engine
5. Answers 200 for anything handled or merely acknowledged

Security contract:
- 401 only for Printful signature failures, 400 for Stripe ones
- Unknown orders and unhandled event types are acknowledged with 200 so
  the provider does not retry forever
- Unexpected failures answer 500 without internal detail
- Every delivery is audit-logged
"""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from storefront.context import AppContext
from storefront.errors import ConfigurationError, StorefrontError, WebhookAuthError
from storefront.webhooks.idempotency import delivery_id
from storefront.webhooks.verification import PRINTFUL_SIGNATURE_HEADER

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])

# Webhook receive counter for monitoring (per process)
_webhook_counts: dict[str, int] = {}


def _log_webhook(provider: str, event_type: str, webhook_id: str, status: str) -> None:
    """Audit log for webhook activity."""
    _webhook_counts[provider] = _webhook_counts.get(provider, 0) + 1
    logger.info(
        "WEBHOOK_AUDIT provider=%s event=%s id=%s status=%s count=%d",
        provider,
        event_type,
        webhook_id,
        status,
        _webhook_counts[provider],
    )


def _context(request: Request) -> AppContext:
    return request.app.state.context


@router.post("/api/printful/webhook")
async def printful_webhook(request: Request) -> JSONResponse:
    """Receive Printful webhooks (package_shipped drives reconciliation)."""
    start = time.time()
    ctx = _context(request)
    body = await request.body()
    signature = request.headers.get(PRINTFUL_SIGNATURE_HEADER)
    webhook_id = delivery_id(body)

    # 1. Verify signature before anything touches Redis
    if not ctx.engine.verify_webhook_signature(body, signature):
        _log_webhook("printful", "unknown", webhook_id[:12], "signature_failed")
        return JSONResponse(WebhookAuthError().to_dict(), status_code=401)

    # 2. Redelivered body -> acknowledge, do not reprocess
    if ctx.dedup.is_duplicate("printful", webhook_id):
        _log_webhook("printful", "unknown", webhook_id[:12], "duplicate")
        return JSONResponse({"received": True, "message": "Duplicate delivery"}, status_code=200)

    # 3. Reconcile
    try:
        outcome = await run_in_threadpool(ctx.engine.process_webhook, body)
    except StorefrontError as e:
        ctx.dedup.forget("printful", webhook_id)
        _log_webhook("printful", "unknown", webhook_id[:12], f"rejected_{e.status_code}")
        if e.status_code >= 500:
            logger.error("Printful webhook failed: %s", e.message)
        return JSONResponse(e.to_dict(), status_code=e.status_code)
    except Exception:
        ctx.dedup.forget("printful", webhook_id)
        logger.exception("Error processing Printful webhook")
        return JSONResponse({"error": "Internal server error"}, status_code=500)

    elapsed_ms = (time.time() - start) * 1000
    logger.debug("Printful webhook handled in %.1fms", elapsed_ms)
    _log_webhook("printful", "event", webhook_id[:12], "processed")
    return JSONResponse(outcome.to_dict(), status_code=200)


@router.post("/api/store/webhook")
async def stripe_webhook(request: Request) -> JSONResponse:
    """Receive Stripe webhooks (checkout.session.completed creates the order)."""
    ctx = _context(request)
    body = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        if ctx.payments is None:
            raise ConfigurationError(
                "STRIPE_SECRET_KEY is not set", missing=["STOREFRONT_STRIPE_SECRET_KEY"]
            )
        event = ctx.payments.verify_webhook_signature(
            body, signature, ctx.settings.stripe_webhook_secret
        )
        outcome = await run_in_threadpool(ctx.engine.handle_payment_event, event)
    except StorefrontError as e:
        _log_webhook("stripe", "unknown", "unknown", f"rejected_{e.status_code}")
        return JSONResponse(e.to_dict(), status_code=e.status_code)
    except Exception:
        logger.exception("Error processing Stripe webhook")
        return JSONResponse({"error": "Internal server error"}, status_code=500)

    _log_webhook("stripe", event.get("type", "unknown"), str(event.get("id", "")), "processed")
    return JSONResponse(outcome.to_dict(), status_code=200)


@router.get("/api/webhooks/status")
async def webhook_status() -> dict:
    """Webhook receive counts for this process."""
    return {"counts": dict(_webhook_counts)}
