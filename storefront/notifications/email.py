"""Shipping confirmation emails via SMTP.

Credentials come from settings (STOREFRONT_SMTP_HOST, _PORT, _USER,
_PASSWORD, STOREFRONT_MAIL_FROM). Each send is one stateless message;
sending only once per order is the reconciliation engine's job.

Security: password never logged, recipient address redacted in logs.
"""

from __future__ import annotations

import html
import logging
import smtplib
from dataclasses import dataclass, field
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid

from storefront.config import redact_email

logger = logging.getLogger(__name__)

_PREPARING_TEXT = (
    "Your order is being prepared for shipment. "
    "You will receive tracking information once it ships."
)


@dataclass
class NotificationItem:
    name: str
    quantity: int = 1


@dataclass
class ShippingNotification:
    """Everything the shipping confirmation needs to say."""

    email: str
    name: str
    order_number: str
    tracking_number: str | None = None
    tracking_url: str | None = None
    carrier: str | None = None
    items: list[NotificationItem] = field(default_factory=list)

    @property
    def subject(self) -> str:
        return f"Your Order #{self.order_number} Has Shipped!"


@dataclass
class SendResult:
    """Result of sending a notification."""

    success: bool
    error: str = ""
    error_kind: str = ""  # configuration | send
    message_id: str = ""


class EmailNotifier:
    """Renders and sends shipping notifications through an SMTP relay."""

    def __init__(
        self,
        smtp_host: str = "",
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        mail_from: str = "",
        store_name: str = "Average Dad Athletics",
        support_email: str = "",
    ):
        self._host = smtp_host
        self._port = smtp_port
        self._user = smtp_user
        self._password = smtp_password
        self._from = mail_from
        self._store_name = store_name
        self._support_email = support_email

    @property
    def is_configured(self) -> bool:
        return bool(self._host and self._from)

    def render_text(self, n: ShippingNotification) -> str:
        items = "\n".join(f"• {i.name} (Qty: {i.quantity})" for i in n.items)
        if n.tracking_number:
            tracking = f"Tracking Information:\nTracking Number: {n.tracking_number}"
            if n.carrier:
                tracking += f"\nCarrier: {n.carrier}"
            if n.tracking_url:
                tracking += f"\nTrack your package: {n.tracking_url}"
        else:
            tracking = _PREPARING_TEXT

        lines = [
            f"{self._store_name} - Your Order Has Shipped!",
            "",
            f"Hi {n.name},",
            "",
            f"Great news! Your order #{n.order_number} has shipped and is on its way to you!",
            "",
            "Order Details:",
            items,
            "",
            tracking,
            "",
            "If you have any questions about your order, please don't hesitate to reach out to us.",
            "",
            "Thank you for your support!",
            "",
            self._store_name,
        ]
        if self._support_email:
            lines.append(self._support_email)
        return "\n".join(lines)

    def render_html(self, n: ShippingNotification) -> str:
        esc = html.escape
        items = "<br>".join(f"&bull; {esc(i.name)} (Qty: {i.quantity})" for i in n.items)

        if n.tracking_number:
            carrier = (
                f'<p style="margin: 10px 0;"><strong>Carrier:</strong> {esc(n.carrier)}</p>'
                if n.carrier else ""
            )
            link = (
                f'<p style="margin: 10px 0;"><a href="{esc(n.tracking_url, quote=True)}" '
                'style="background-color: #4caf50; color: white; padding: 10px 20px; '
                'border-radius: 4px; display: inline-block; text-decoration: none;">'
                "Track Your Package &rarr;</a></p>"
                if n.tracking_url else ""
            )
            tracking = f"""
            <div style="background-color: #e8f5e9; padding: 20px; border-left: 4px solid #4caf50;">
                <h3 style="margin-top: 0; color: #2e7d32;">Tracking Information</h3>
                <p style="margin: 10px 0;"><strong>Tracking Number:</strong> {esc(n.tracking_number)}</p>
                {carrier}
                {link}
            </div>"""
        else:
            tracking = f"""
            <div style="background-color: #fff3e0; padding: 20px; border-left: 4px solid #ff9800;">
                <p style="margin: 0;">{_PREPARING_TEXT}</p>
            </div>"""

        support = (
            f'<br><a href="mailto:{esc(self._support_email)}">{esc(self._support_email)}</a>'
            if self._support_email else ""
        )
        return f"""
        <div style="font-family: Arial, sans-serif; max-width: 600px; color: #333;">
            <div style="background-color: #1a1a1a; color: white; padding: 20px; text-align: center;">
                <h1 style="margin: 0; font-size: 24px;">{esc(self._store_name)}</h1>
            </div>
            <div style="background-color: #f9f9f9; padding: 30px;">
                <h2 style="margin-top: 0;">Your Order Has Shipped!</h2>
                <p>Hi {esc(n.name)},</p>
                <p>Great news! Your order <strong>#{esc(n.order_number)}</strong> has shipped
                and is on its way to you!</p>
                <div style="background-color: white; padding: 20px; border-left: 4px solid #1a1a1a;">
                    <h3 style="margin-top: 0;">Order Details:</h3>
                    <p style="margin: 0;">{items}</p>
                </div>
                {tracking}
                <p>Thank you for your support!</p>
                <p><strong>{esc(self._store_name)}</strong>{support}</p>
            </div>
        </div>
        """

    def format_message(self, n: ShippingNotification) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = n.subject
        msg["From"] = self._from
        msg["To"] = n.email
        msg["Message-ID"] = make_msgid()
        msg.attach(MIMEText(self.render_text(n), "plain", "utf-8"))
        msg.attach(MIMEText(self.render_html(n), "html", "utf-8"))
        return msg

    def send_shipping_notification(self, n: ShippingNotification) -> SendResult:
        """Send one shipping confirmation. Never raises."""
        if not self.is_configured:
            logger.error("Email not configured (missing SMTP host or sender); cannot notify")
            return SendResult(
                success=False,
                error="Email service not configured",
                error_kind="configuration",
            )
        if not n.email:
            return SendResult(success=False, error="Customer email is required", error_kind="send")

        msg = self.format_message(n)
        try:
            with smtplib.SMTP(self._host, self._port, timeout=15) as server:
                server.starttls()
                if self._user and self._password:
                    server.login(self._user, self._password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Shipping notification to %s failed: %s", redact_email(n.email), e)
            return SendResult(success=False, error=f"SMTP error: {e}", error_kind="send")

        logger.info(
            "Shipping notification sent to %s for order #%s",
            redact_email(n.email),
            n.order_number,
        )
        return SendResult(success=True, message_id=msg["Message-ID"])
