"""Storefront configuration and logging setup."""

from __future__ import annotations

import logging

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Environment-driven settings for the storefront backend."""

    # Printful
    printful_api_key: str = ""
    printful_api_base: str = "https://api.printful.com"
    printful_webhook_secret: str = ""

    # Stripe
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_api_version: str = "2025-02-24.acacia"

    # Order store
    order_store: str = "postgres"  # postgres | memory
    database_url: str = ""

    # Webhook dedup
    redis_url: str = "redis://localhost:6379/0"

    # Transactional mail (SMTP relay)
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    mail_from: str = "Average Dad Athletics <noreply@averagedadathletics.com>"
    support_email: str = "support@averagedadathletics.com"
    store_name: str = "Average Dad Athletics"

    site_url: str = "http://localhost:3000"
    poll_interval_minutes: int = 30  # 0 disables scheduled polling
    http_timeout: float = 30.0
    log_level: str = "INFO"

    model_config = {"env_prefix": "STOREFRONT_", "env_file": ".env", "extra": "ignore"}


def configure_logging(level: str = "INFO") -> None:
    """Install the root handler format used by every storefront module."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def redact_email(email: str | None) -> str:
    """Show only the domain of an email address in log lines."""
    if not email or "@" not in email:
        return "***"
    return "***@" + email.split("@", 1)[1]
