"""FastAPI application factory for the storefront backend.

Run with:  uvicorn storefront.app:app
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from storefront import __version__
from storefront.api.routes import router as api_router
from storefront.config import Settings, configure_logging
from storefront.context import AppContext, build_context
from storefront.errors import StorefrontError
from storefront.orders.store import PostgresOrderStore
from storefront.scheduler import start_scheduler
from storefront.webhooks.handlers import router as webhook_router

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, context: AppContext | None = None) -> FastAPI:
    """Build the app. Pass `context` to run against prepared collaborators."""
    settings = context.settings if context else (settings or Settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)
        ctx = context or build_context(settings)
        app.state.context = ctx

        if isinstance(ctx.store, PostgresOrderStore):
            try:
                ctx.store.ensure_schema()
            except Exception:
                logger.exception("Could not prepare the order table")

        scheduler = None
        testing = os.environ.get("TESTING") == "1"
        if settings.poll_interval_minutes > 0 and not testing:
            if ctx.engine.missing_configuration():
                logger.warning("Shipment poll not scheduled: %s", ctx.engine.missing_configuration())
            else:
                scheduler = start_scheduler(ctx.engine, settings.poll_interval_minutes)

        yield

        if scheduler is not None:
            scheduler.shutdown(wait=False)
        if ctx.fulfillment is not None and context is None:
            ctx.fulfillment.close()

    app = FastAPI(title="Storefront", version=__version__, lifespan=lifespan)

    @app.exception_handler(StorefrontError)
    async def storefront_error(request: Request, exc: StorefrontError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse({"error": "Internal server error"}, status_code=500)

    app.include_router(webhook_router)
    app.include_router(api_router)
    return app


app = create_app()
