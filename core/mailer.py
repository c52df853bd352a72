"""
core/mailer.py -- Outbound email.

The auth flow only needs send(recipient, subject, body). A failed dispatch
raises DeliveryError so the caller can roll back whatever it stored before
sending (see auth.flow.AuthFlow.forgot_password).

Two implementations:
  SMTPMailSender -- smtplib with optional STARTTLS and login. Used when
                    SMTP_HOST is configured.
  LogMailSender  -- writes the message to the log. Development default when
                    no SMTP server is configured.

Layer rule: core/ is the kernel. No imports from api/, auth/, or docstore/.
"""

from __future__ import annotations

import logging
import smtplib
from email.mime.text import MIMEText
from typing import Protocol

from core.config import Settings
from core.errors import DeliveryError

logger = logging.getLogger("tourbook.mail")


class MailSender(Protocol):
    def send(self, recipient: str, subject: str, body: str) -> None: ...


class SMTPMailSender:
    """Plain-text mail over SMTP."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        sender: str = "",
        starttls: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.starttls = starttls
        self.timeout = timeout

    def send(self, recipient: str, subject: str, body: str) -> None:
        message = MIMEText(body, "plain", "utf-8")
        message["Subject"] = subject
        message["From"] = self.sender
        message["To"] = recipient
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.starttls:
                    server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send email to %s via %s:%d: %s", recipient, self.host, self.port, exc)
            raise DeliveryError("There was an error sending the email. Try again later.") from exc
        logger.info("Email sent to %s (%s)", recipient, subject)


class LogMailSender:
    """Development sender: the whole message goes to the log at INFO."""

    def send(self, recipient: str, subject: str, body: str) -> None:
        logger.info("Email to %s\nSubject: %s\n\n%s", recipient, subject, body)


def build_mail_sender(settings: Settings) -> MailSender:
    if not settings.smtp_host:
        logger.warning("SMTP_HOST not set -- outbound email will be written to the log")
        return LogMailSender()
    return SMTPMailSender(
        host=settings.smtp_host,
        port=settings.smtp_port,
        username=settings.smtp_username,
        password=settings.smtp_password,
        sender=settings.mail_from,
        starttls=settings.smtp_starttls,
        timeout=settings.smtp_timeout_seconds,
    )
