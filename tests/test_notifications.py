"""Tests for shipping notification rendering and SMTP delivery."""

from __future__ import annotations

import smtplib
from unittest.mock import MagicMock, patch

from storefront.notifications.email import EmailNotifier, NotificationItem, ShippingNotification


def _notifier(**overrides) -> EmailNotifier:
    config = {
        "smtp_host": "smtp.example.com",
        "smtp_port": 587,
        "smtp_user": "mailer",
        "smtp_password": "s3cret",
        "mail_from": "Average Dad Athletics <noreply@example.com>",
        "support_email": "support@example.com",
    }
    config.update(overrides)
    return EmailNotifier(**config)


def _notification(**overrides) -> ShippingNotification:
    fields = {
        "email": "dad@example.com",
        "name": "Pat",
        "order_number": "cs_test_1",
        "tracking_number": "1Z999",
        "tracking_url": "https://track.example/1Z999",
        "carrier": "UPS",
        "items": [NotificationItem(name="Dad Tee", quantity=2)],
    }
    fields.update(overrides)
    return ShippingNotification(**fields)


class TestRendering:
    def test_subject(self):
        assert _notification().subject == "Your Order #cs_test_1 Has Shipped!"

    def test_text_with_tracking(self):
        text = _notifier().render_text(_notification())
        assert "Hi Pat," in text
        assert "Dad Tee (Qty: 2)" in text
        assert "Tracking Number: 1Z999" in text
        assert "Carrier: UPS" in text
        assert "Track your package: https://track.example/1Z999" in text
        assert "support@example.com" in text

    def test_text_without_tracking(self):
        text = _notifier().render_text(_notification(tracking_number=None, tracking_url=None, carrier=None))
        assert "being prepared for shipment" in text
        assert "Tracking Number" not in text

    def test_html_escapes_customer_fields(self):
        html = _notifier().render_html(_notification(name="<script>x</script>"))
        assert "<script>" not in html
        assert "&lt;script&gt;" in html
        assert "Track Your Package" in html

    def test_html_without_tracking(self):
        html = _notifier().render_html(_notification(tracking_number=None, tracking_url=None))
        assert "being prepared for shipment" in html
        assert "Track Your Package" not in html

    def test_message_is_multipart(self):
        msg = _notifier().format_message(_notification())
        assert msg.get_content_subtype() == "alternative"
        assert [p.get_content_type() for p in msg.get_payload()] == ["text/plain", "text/html"]
        assert msg["To"] == "dad@example.com"


class TestSend:
    def test_not_configured(self):
        result = _notifier(smtp_host="").send_shipping_notification(_notification())
        assert not result.success
        assert result.error_kind == "configuration"

    @patch("storefront.notifications.email.smtplib.SMTP")
    def test_sends_with_starttls_and_login(self, mock_smtp):
        server = MagicMock()
        mock_smtp.return_value.__enter__.return_value = server

        result = _notifier().send_shipping_notification(_notification())

        assert result.success
        assert result.message_id
        mock_smtp.assert_called_once_with("smtp.example.com", 587, timeout=15)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("mailer", "s3cret")
        server.send_message.assert_called_once()

    @patch("storefront.notifications.email.smtplib.SMTP")
    def test_no_login_without_credentials(self, mock_smtp):
        server = MagicMock()
        mock_smtp.return_value.__enter__.return_value = server

        result = _notifier(smtp_user="", smtp_password="").send_shipping_notification(_notification())

        assert result.success
        server.login.assert_not_called()

    @patch("storefront.notifications.email.smtplib.SMTP")
    def test_smtp_failure_is_reported_not_raised(self, mock_smtp):
        server = MagicMock()
        server.send_message.side_effect = smtplib.SMTPRecipientsRefused({"dad@example.com": (550, b"no")})
        mock_smtp.return_value.__enter__.return_value = server

        result = _notifier().send_shipping_notification(_notification())

        assert not result.success
        assert result.error_kind == "send"
        assert result.error.startswith("SMTP error")

    @patch("storefront.notifications.email.smtplib.SMTP", side_effect=ConnectionRefusedError("refused"))
    def test_connection_failure(self, mock_smtp):
        result = _notifier().send_shipping_notification(_notification())
        assert not result.success
        assert result.error_kind == "send"
