"""
leadflow/outreach/mailer.py — Gmail SMTP mailer with dry-run support.

SmtpMailer delivers a rendered email and reports the outcome as a
DeliveryResult. It never touches the database: recording the result and
moving the campaign through its lifecycle is the dispatcher's job.
"""

import logging
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid
from typing import Optional

from leadflow.config import settings
from leadflow.errors import TransientServiceError, classify_service_error
from leadflow.outreach.templates import RenderedEmail

logger = logging.getLogger(__name__)

# Gmail SMTP constants
GMAIL_SMTP_HOST = "smtp.gmail.com"
GMAIL_SMTP_PORT = 465  # SSL

EMAIL = "email"


@dataclass
class DeliveryResult:
    success: bool
    delivery_id: Optional[str] = None
    error: Optional[str] = None
    retryable: bool = False


class SmtpMailer:
    """
    Sends emails via Gmail SMTP using an App Password.

    In dry-run mode (MAILER_DRY_RUN=true) emails are logged and never
    transmitted; the result still counts as a successful delivery.
    """

    def __init__(self, dry_run: Optional[bool] = None):
        self.smtp_user = settings.gmail_user
        self.smtp_password = settings.gmail_app_password
        self.dry_run = dry_run if dry_run is not None else settings.mailer_dry_run

    # ── Public API ────────────────────────────────────────────────────────────

    def send(self, to_address: str, email: RenderedEmail) -> DeliveryResult:
        """
        Send (or simulate) one email.

        Returns:
            DeliveryResult. On failure `retryable` tells the caller whether the
            error was transient (connection, 4xx) or permanent (auth, refused).
        """
        if self.dry_run:
            self._log_dry_run(to_address, email)
            return DeliveryResult(success=True, delivery_id="dry-run")

        message_id = make_msgid(domain=self._sender_domain())
        try:
            self._send_via_smtp(to_address, email, message_id)
        except Exception as exc:
            error = classify_service_error(EMAIL, exc)
            retryable = isinstance(error, TransientServiceError)
            logger.error(
                "Failed to send email to %s (%s): %s",
                to_address, "transient" if retryable else "permanent", exc,
            )
            return DeliveryResult(success=False, error=str(exc), retryable=retryable)

        logger.info("Email sent to %s (%s)", to_address, message_id)
        return DeliveryResult(success=True, delivery_id=message_id)

    # ── Private helpers ───────────────────────────────────────────────────────

    def _sender_domain(self) -> str:
        return self.smtp_user.split("@", 1)[-1] if "@" in self.smtp_user else "localhost"

    def _send_via_smtp(self, to_address: str, email: RenderedEmail, message_id: str) -> None:
        """Establish an SSL connection to Gmail and transmit the message."""
        msg = MIMEMultipart("alternative")
        msg["Subject"] = email.subject
        msg["From"] = formataddr((settings.sender_name, self.smtp_user)) if settings.sender_name else self.smtp_user
        msg["To"] = to_address
        msg["Message-ID"] = message_id
        if email.in_reply_to:
            msg["In-Reply-To"] = email.in_reply_to
            msg["References"] = email.in_reply_to

        # Plain text first, HTML second; clients prefer the last part
        msg.attach(MIMEText(email.plain_body, "plain", "utf-8"))
        msg.attach(MIMEText(email.html_body, "html", "utf-8"))

        with smtplib.SMTP_SSL(GMAIL_SMTP_HOST, GMAIL_SMTP_PORT, timeout=settings.smtp_timeout_seconds) as server:
            server.login(self.smtp_user, self.smtp_password)
            server.sendmail(self.smtp_user, to_address, msg.as_string())

    @staticmethod
    def _log_dry_run(to_address: str, email: RenderedEmail) -> None:
        separator = "─" * 60
        logger.info(
            "\n%s\n  📧  DRY RUN — Email not sent\n%s\n  To      : %s\n  Subject : %s\n%s\n%s\n%s",
            separator, separator, to_address, email.subject, separator, email.plain_body, separator,
        )
