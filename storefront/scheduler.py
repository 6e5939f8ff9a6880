"""Scheduled shipment poll.

The webhook is the fast path; this job catches anything Printful never
pushed (webhook not configured, deliveries lost, signature mismatches).
"""

from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from storefront.reconciliation.engine import ReconciliationEngine

logger = logging.getLogger(__name__)

POLL_JOB_ID = "printful_shipment_poll"


def poll_shipments_job(engine: ReconciliationEngine) -> None:
    """Run one shipment poll. Called every N minutes by APScheduler."""
    try:
        summary = engine.poll_pending_orders()
        logger.info(
            "Shipment poll job: %d checked, %d shipped, %d errors",
            summary.checked,
            summary.shipped,
            len(summary.errors),
        )
    except Exception:
        logger.warning("Shipment poll job failed", exc_info=True)


def start_scheduler(engine: ReconciliationEngine, interval_minutes: int) -> BackgroundScheduler:
    """Start a background scheduler running the shipment poll."""
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        poll_shipments_job,
        "interval",
        minutes=interval_minutes,
        args=[engine],
        id=POLL_JOB_ID,
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    scheduler.start()
    logger.info("Shipment poll scheduled every %d minutes", interval_minutes)
    return scheduler
