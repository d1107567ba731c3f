"""Mail transports used to deliver confirmation messages."""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage

from ..core.logging_safety import safe_log_identifier
from ..domain.contracts import Email

logger = logging.getLogger(__name__)


def build_message(email: Email) -> EmailMessage:
    """Assemble a multipart/alternative message with text and HTML parts."""
    message = EmailMessage()
    message["From"] = email.from_address
    message["To"] = ", ".join(email.to)
    message["Subject"] = email.subject
    message.set_content(email.text_body)
    if email.html_body:
        message.add_alternative(email.html_body, subtype="html")
    return message


class SmtpMailer:
    """Send messages through an SMTP relay, one connection per message."""

    def __init__(
        self,
        host: str,
        port: int,
        *,
        user: str | None = None,
        password: str | None = None,
        starttls: bool = False,
        timeout: float = 10.0,
        synchronous: bool = False,
    ) -> None:
        self._host = host
        self._port = port
        self._user = user or None
        self._password = password or None
        self._starttls = starttls
        self._timeout = timeout
        self.synchronous = synchronous

    def send(self, email: Email) -> None:
        message = build_message(email)
        logger.debug("connecting to %s:%s", self._host, self._port)
        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as conn:
            if self._starttls:
                conn.starttls()
            if self._user is not None and self._password is not None:
                conn.login(self._user, self._password)
            conn.send_message(message)
        logger.info(
            "sent %r to %s",
            email.subject,
            ", ".join(safe_log_identifier(addr, prefix="rcpt") for addr in email.to),
        )


class LogMailer:
    """Development transport that logs the message instead of sending it."""

    def __init__(self, *, synchronous: bool = False) -> None:
        self.synchronous = synchronous

    def send(self, email: Email) -> None:
        logger.info(
            "mail (not sent) from=%s to=%s subject=%r\n%s",
            email.from_address,
            ", ".join(safe_log_identifier(addr, prefix="rcpt") for addr in email.to),
            email.subject,
            email.text_body,
        )
