"""Email notification helpers for store events."""

from __future__ import annotations

import asyncio
import html
import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr
from typing import Iterable, List, Optional, Sequence

from storecore.core.config import Settings, get_settings
from storecore.schemas.notifications import LowStockAlert, LowStockProduct

logger = logging.getLogger(__name__)


class EmailNotificationService:
    """Lightweight SMTP helper for store notifications."""

    def __init__(self, settings: Settings):
        self._settings = settings

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def deliver(self, message) -> bool:
        """Entry point used by the notification dispatcher."""
        if isinstance(message, LowStockAlert):
            return await self.send_low_stock_alert(
                recipient=message.recipient,
                products=message.products,
                threshold=message.threshold,
                store_id=message.store_id,
            )
        logger.warning("No email handler for %s; message dropped", type(message).__name__)
        return False

    async def send_low_stock_alert(
        self,
        *,
        recipient: Optional[str],
        products: Sequence[LowStockProduct],
        threshold: int,
        store_id: Optional[str] = None,
    ) -> bool:
        """Send a low-stock email to the store owner.

        Args:
            recipient: Store owner address; falls back to ``NOTIFICATION_EMAILS``.
            products: Products at or below the threshold after a sale.
            threshold: The store's low-stock threshold.
        """

        if not self._ready():
            logger.warning("SMTP configuration incomplete; low stock alert skipped for store %s", store_id)
            return False

        to_addresses = self._resolve_recipients([recipient] if recipient else None)
        if not to_addresses:
            logger.warning("No recipients configured for low stock alert; skipping email")
            return False

        count = len(products)
        subject = f"Low stock: {count} product needs restocking" if count == 1 else f"Low stock: {count} products need restocking"

        lines: List[str] = [f"The following products are at or below {threshold} units:", ""]
        for product in products:
            label = f"{product.name} ({product.variant})" if product.variant else product.name
            lines.append(f"- {label}: {product.stock} left")
        lines.append("\nSent automatically by Storefront")

        body_text = "\n".join(lines)

        rows = "".join(
            f"<tr><td>{html.escape(p.name)}{' (' + html.escape(p.variant) + ')' if p.variant else ''}</td>"
            f"<td style=\"color: {'#dc2626' if p.stock <= 0 else '#d97706'};\">{p.stock}</td></tr>"
            for p in products
        )
        body_html = (
            f"<p><strong>Low stock alert</strong></p>"
            f"<p>The following products are at or below {threshold} units:</p>"
            f"<table><tr><th>Product</th><th>Stock</th></tr>{rows}</table>"
            "<p><em>Sent automatically by Storefront</em></p>"
        )

        message = self._build_message(subject, to_addresses, body_text, body_html)
        return await self._dispatch(message)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _ready(self) -> bool:
        settings = self._settings
        return bool(settings.SMTP_HOST and settings.SMTP_USERNAME and settings.SMTP_PASSWORD)

    def _resolve_recipients(self, override: Optional[Sequence[str]]) -> List[str]:
        recipients: Iterable[str] = override if override else self._settings.NOTIFICATION_EMAILS
        return [email.strip() for email in recipients if email]

    def _build_message(
        self,
        subject: str,
        to_addresses: Sequence[str],
        body_text: str,
        body_html: Optional[str] = None,
    ) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self._formatted_from_address
        message["To"] = ", ".join(sorted(set(to_addresses)))
        message.set_content(body_text)
        if body_html:
            message.add_alternative(body_html, subtype="html")
        return message

    @property
    def _formatted_from_address(self) -> str:
        from_email = self._settings.SMTP_FROM_EMAIL or self._settings.SMTP_USERNAME
        from_name = self._settings.SMTP_FROM_NAME or "Storefront Alerts"
        return formataddr((from_name, from_email))

    async def _dispatch(self, message: EmailMessage) -> bool:
        try:
            await asyncio.to_thread(self._send_sync, message)
            logger.info("Notification email '%s' sent to %s", message["Subject"], message["To"])
            return True
        except Exception as exc:
            logger.error("Failed to send notification email: %s", exc, exc_info=True)
            return False

    def _send_sync(self, message: EmailMessage) -> None:
        settings = self._settings
        host = settings.SMTP_HOST
        port = settings.SMTP_PORT or (465 if settings.SMTP_USE_SSL else 587)
        timeout = settings.SMTP_TIMEOUT

        if settings.SMTP_USE_SSL:
            smtp = smtplib.SMTP_SSL(host=host, port=port, timeout=timeout)
        else:
            smtp = smtplib.SMTP(host=host, port=port, timeout=timeout)
        try:
            if settings.SMTP_USE_TLS and not settings.SMTP_USE_SSL:
                smtp.starttls()

            smtp.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
            smtp.send_message(message)
        finally:
            try:
                smtp.quit()
            except smtplib.SMTPException:
                smtp.close()


def get_email_notification_service() -> EmailNotificationService:
    """Factory for dependency injection."""

    settings = get_settings()
    return EmailNotificationService(settings)
