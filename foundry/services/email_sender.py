from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid, parseaddr
from typing import Optional, Sequence

from foundry.config import settings

logger = logging.getLogger(__name__)


class EmailSendError(RuntimeError):
    """Raised when an outbound email cannot be delivered to the SMTP relay."""


class EmailSender:
    """Send HTML mail through the configured SMTP relay."""

    def __init__(
        self,
        *,
        host: Optional[str] = None,
        port: Optional[int] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: Optional[bool] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.host = host or settings.SMTP_HOST
        self.port = port or settings.SMTP_PORT
        self.username = username if username is not None else settings.SMTP_USERNAME
        self.password = password if password is not None else settings.SMTP_PASSWORD
        self.use_tls = settings.SMTP_USE_TLS if use_tls is None else use_tls
        self.timeout = timeout or settings.SMTP_TIMEOUT_SECONDS
        if not self.host:
            raise EmailSendError("SMTP_HOST is required to send email")

    def send(
        self,
        *,
        sender: str,
        subject: str,
        html: str,
        to: Sequence[str] = (),
        bcc: Sequence[str] = (),
        reply_to: Optional[tuple[str, str]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> str:
        """Send one message and return its Message-ID."""
        recipients = [*to, *bcc]
        if not recipients:
            raise EmailSendError("At least one recipient is required")

        msg = MIMEMultipart("alternative")
        msg["From"] = sender
        msg["Subject"] = subject
        if to:
            msg["To"] = ", ".join(to)
        else:
            msg["To"] = sender
        if reply_to:
            address, display_name = reply_to
            msg["Reply-To"] = formataddr((display_name, address))
        for name, value in (headers or {}).items():
            msg[name] = value
        _display_name, address = parseaddr(sender)
        message_id = make_msgid(domain=address.rsplit("@", 1)[-1] if "@" in address else None)
        msg["Message-ID"] = message_id
        msg.attach(MIMEText(html, "html", "utf-8"))

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                # Bcc recipients travel only in the envelope.
                server.sendmail(sender, recipients, msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            logger.exception("SMTP send failed", extra={"subject": subject, "recipient_count": len(recipients)})
            raise EmailSendError(f"Failed to send email: {exc}") from exc

        logger.info("Email sent", extra={"message_id": message_id, "recipient_count": len(recipients)})
        return message_id
