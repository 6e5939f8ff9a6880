"""Tests for settings, context wiring, the scheduled poll and the app factory."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from fastapi.testclient import TestClient

from storefront.app import create_app
from storefront.config import Settings, redact_email
from storefront.context import build_context, build_store
from storefront.errors import ConfigurationError, FulfillmentError, InvalidTransition
from storefront.orders.store import InMemoryOrderStore, PostgresOrderStore
from storefront.reconciliation.engine import PollSummary
from storefront.scheduler import POLL_JOB_ID, poll_shipments_job, start_scheduler


class TestSettings:
    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("STOREFRONT_PRINTFUL_API_KEY", "pf-from-env")
        monkeypatch.setenv("STOREFRONT_POLL_INTERVAL_MINUTES", "5")
        settings = Settings(_env_file=None)
        assert settings.printful_api_key == "pf-from-env"
        assert settings.poll_interval_minutes == 5

    def test_redact_email(self):
        assert redact_email("dad@example.com") == "***@example.com"
        assert redact_email("nobody") == "***"
        assert redact_email(None) == "***"


class TestErrors:
    def test_configuration_error_lists_missing(self):
        err = ConfigurationError("Missing required environment variables", missing=["A", "B"])
        assert err.status_code == 500
        assert err.to_dict() == {
            "error": "Configuration error",
            "message": "Missing required environment variables",
            "missing": ["A", "B"],
        }

    def test_status_codes(self):
        assert FulfillmentError("x", status=404).status_code == 502
        assert InvalidTransition("x").status_code == 409


class TestBuildContext:
    def test_memory_store(self):
        assert isinstance(build_store(Settings(_env_file=None, order_store="memory")), InMemoryOrderStore)

    def test_postgres_store(self):
        settings = Settings(_env_file=None, database_url="postgresql://localhost/storefront")
        assert isinstance(build_store(settings), PostgresOrderStore)

    def test_no_database(self):
        assert build_store(Settings(_env_file=None, database_url="")) is None

    def test_missing_credentials_leave_collaborators_unset(self):
        ctx = build_context(Settings(_env_file=None, order_store="memory"))
        assert ctx.payments is None
        assert ctx.fulfillment is None
        assert ctx.engine.missing_configuration() == ["STOREFRONT_PRINTFUL_API_KEY"]

    def test_full_context(self):
        ctx = build_context(Settings(
            _env_file=None,
            order_store="memory",
            printful_api_key="pf-key",
            stripe_secret_key="sk_test",
        ))
        try:
            assert ctx.payments is not None
            assert ctx.fulfillment is not None
            assert ctx.engine.missing_configuration() == []
        finally:
            ctx.fulfillment.close()


class TestScheduler:
    def test_job_logs_summary(self):
        engine = MagicMock()
        engine.poll_pending_orders.return_value = PollSummary(checked=2, shipped=1)
        poll_shipments_job(engine)
        engine.poll_pending_orders.assert_called_once()

    def test_job_never_raises(self):
        engine = MagicMock()
        engine.poll_pending_orders.side_effect = ConfigurationError("Printful not configured")
        poll_shipments_job(engine)

    @patch("storefront.scheduler.BackgroundScheduler")
    def test_interval_job_registered(self, mock_scheduler_cls):
        engine = MagicMock()
        scheduler = start_scheduler(engine, 15)

        assert scheduler is mock_scheduler_cls.return_value
        kwargs = scheduler.add_job.call_args.kwargs
        assert scheduler.add_job.call_args.args == (poll_shipments_job, "interval")
        assert kwargs["minutes"] == 15
        assert kwargs["id"] == POLL_JOB_ID
        assert kwargs["max_instances"] == 1
        scheduler.start.assert_called_once()


class TestAppFactory:
    def test_context_installed_on_startup(self, context):
        app = create_app(context=context)
        with TestClient(app) as c:
            assert c.get("/healthz").status_code == 200
            assert app.state.context is context

    @patch("storefront.app.start_scheduler")
    def test_scheduler_not_started_under_test(self, mock_start, context):
        context.settings.poll_interval_minutes = 30
        with TestClient(create_app(context=context)):
            pass
        mock_start.assert_not_called()

    @patch("storefront.app.start_scheduler")
    def test_scheduler_started_when_configured(self, mock_start, context, monkeypatch):
        monkeypatch.setenv("TESTING", "0")
        context.settings.poll_interval_minutes = 30
        with TestClient(create_app(context=context)):
            pass
        mock_start.assert_called_once_with(context.engine, 30)
        mock_start.return_value.shutdown.assert_called_once_with(wait=False)

    def test_unhandled_error_is_500_without_detail(self, client, context):
        context.engine.poll_pending_orders = MagicMock(side_effect=RuntimeError("secret detail"))
        resp = client.get("/api/printful/check-shipped")
        assert resp.status_code == 500
        assert resp.json() == {"error": "Internal server error"}
