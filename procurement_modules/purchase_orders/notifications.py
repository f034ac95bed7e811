"""
Order notification collaborators.

Fired when a purchase order reaches ORDERED.  Delivery is outside the
workflow's transaction: a failure is reported back, never rolled into the
committed transition.
"""

from __future__ import annotations

import smtplib
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr

from procurement_config.schema import NotificationSettings
from procurement_kernel.logging_config import get_logger
from procurement_modules.purchase_orders.models import NotificationResult, PurchaseOrder

logger = get_logger("modules.purchase_orders.notifications")


class OrderNotifier(ABC):
    """Sends the outbound notification for an ordered purchase order."""

    @abstractmethod
    def send_order_notification(self, purchase_order: PurchaseOrder) -> NotificationResult:
        """Deliver the notification.  May return a failed result or raise."""
        ...


class NullOrderNotifier(OrderNotifier):
    """For deployments without outbound mail."""

    def send_order_notification(self, purchase_order: PurchaseOrder) -> NotificationResult:
        logger.info(
            "order_notification_skipped",
            extra={"po_number": purchase_order.po_number, "reason": "disabled"},
        )
        return NotificationResult(success=True, message="Notifications disabled")


def build_subject(purchase_order: PurchaseOrder) -> str:
    return f"Purchase Order - {purchase_order.po_number}"


def build_text_body(purchase_order: PurchaseOrder, company_name: str) -> str:
    lines = [
        "Dear Supplier,",
        "",
        "Please find the purchase order details below:",
        "",
        f"PO Number: {purchase_order.po_number}",
        f"Date: {purchase_order.po_date:%d/%m/%Y}",
        f"Principal: {purchase_order.principal_name}",
        f"Ship To: {purchase_order.ship_to.name or purchase_order.ship_to.branch_warehouse}",
        "",
    ]
    for line in purchase_order.products:
        label = line.product_name or line.product_code or line.description or f"Line {line.line_number}"
        lines.append(
            f"  {line.line_number}. {label}: {line.quantity} {line.unit} x {line.unit_price}"
            f" = {line.total_cost}"
        )
    lines += [
        "",
        f"Total Amount: {purchase_order.grand_total}",
        "",
        "Please review and confirm receipt.",
        "",
        "Best regards,",
        company_name,
    ]
    return "\n".join(lines)


class SmtpOrderNotifier(OrderNotifier):
    """Fault-tolerant SMTP notifier with bounded retries."""

    def __init__(self, settings: NotificationSettings, smtp_factory=None, sleep=time.sleep):
        self.settings = settings
        self._smtp_factory = smtp_factory or smtplib.SMTP
        self._sleep = sleep

    @contextmanager
    def _connection(self):
        server = self._smtp_factory(
            self.settings.smtp_host,
            self.settings.smtp_port,
            timeout=self.settings.timeout_seconds,
        )
        try:
            if self.settings.use_tls:
                server.starttls()
            if self.settings.username:
                server.login(self.settings.username, self.settings.password or "")
            yield server
        finally:
            try:
                server.quit()
            except smtplib.SMTPException as exc:
                logger.warning("smtp_quit_failed", extra={"error": str(exc)})

    def _build_message(self, purchase_order: PurchaseOrder) -> tuple[MIMEMultipart, list[str]]:
        sender = formataddr((self.settings.from_name, purchase_order.from_email or self.settings.from_email))
        recipients = list(purchase_order.to_emails) + list(purchase_order.cc_emails)

        msg = MIMEMultipart("alternative")
        msg["From"] = sender
        msg["To"] = ", ".join(purchase_order.to_emails)
        if purchase_order.cc_emails:
            msg["Cc"] = ", ".join(purchase_order.cc_emails)
        msg["Subject"] = build_subject(purchase_order)
        msg.attach(MIMEText(build_text_body(purchase_order, self.settings.from_name), "plain"))
        return msg, recipients

    def send_order_notification(self, purchase_order: PurchaseOrder) -> NotificationResult:
        if not purchase_order.to_emails:
            logger.warning(
                "order_notification_no_recipients",
                extra={"po_number": purchase_order.po_number},
            )
            return NotificationResult(success=False, message="No recipient email addresses")

        msg, recipients = self._build_message(purchase_order)
        sender = purchase_order.from_email or self.settings.from_email
        last_error = ""

        for attempt in range(1, self.settings.max_retries + 1):
            try:
                with self._connection() as server:
                    server.sendmail(sender, recipients, msg.as_string())
                logger.info(
                    "order_notification_sent",
                    extra={
                        "po_number": purchase_order.po_number,
                        "recipient_count": len(recipients),
                        "attempt": attempt,
                    },
                )
                return NotificationResult(success=True, message="Email sent successfully")
            except smtplib.SMTPAuthenticationError as exc:
                logger.error(
                    "order_notification_auth_failed",
                    extra={"po_number": purchase_order.po_number, "error": str(exc)},
                )
                return NotificationResult(success=False, message="SMTP authentication failed")
            except (smtplib.SMTPException, OSError) as exc:
                last_error = str(exc) or type(exc).__name__
                logger.warning(
                    "order_notification_attempt_failed",
                    extra={
                        "po_number": purchase_order.po_number,
                        "attempt": attempt,
                        "max_retries": self.settings.max_retries,
                        "error": last_error,
                    },
                )
                if attempt < self.settings.max_retries:
                    self._sleep(self.settings.retry_delay_seconds * attempt)

        logger.error(
            "order_notification_failed",
            extra={"po_number": purchase_order.po_number, "error": last_error},
        )
        return NotificationResult(
            success=False,
            message=f"Failed to send email after {self.settings.max_retries} attempts: {last_error}",
        )


def build_notifier(settings: NotificationSettings) -> OrderNotifier:
    """SMTP when enabled in configuration, otherwise a no-op notifier."""
    if settings.enabled:
        return SmtpOrderNotifier(settings)
    return NullOrderNotifier()
