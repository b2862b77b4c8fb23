"""
notify/mailer.py -- SMTP notification gateway.

send() returns True on success and False on any delivery failure. It never
raises: account creation must succeed even when mail is down, and the user
falls back to "resend verification". Callers turn False into a
DependencyFailure note on their response.

Transport:
  Port 465 -> implicit TLS (SMTP_SSL). Any other port -> plain SMTP upgraded
  with STARTTLS when the server offers it.

  No SMTP_HOST configured -> log-only mode. The message is written to the
  log instead of being sent, for local development without a mail server.

Layer rule: imports only stdlib and core/.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage

from core.config import Settings, get_settings

logger = logging.getLogger("kavyakala.notify")

_SENDER_NAME = "Kavyakala"


class Mailer:
    """Thin wrapper over smtplib that reports success as a bool."""

    def __init__(
        self,
        host: str = "",
        port: int = 465,
        username: str = "",
        password: str = "",
        from_address: str = "",
        timeout: int = 10,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        # With most providers the sender must be the authenticated mailbox.
        self.from_address = from_address or username
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "Mailer":
        settings = settings or get_settings()
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_user,
            password=settings.smtp_password,
            from_address=settings.smtp_from,
            timeout=settings.smtp_timeout_seconds,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.host)

    def build_message(self, to: str, subject: str, text_body: str, html_body: str | None = None) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = f'"{_SENDER_NAME}" <{self.from_address}>' if self.from_address else _SENDER_NAME
        msg["To"] = to
        msg.set_content(text_body)
        if html_body:
            msg.add_alternative(html_body, subtype="html")
        return msg

    def send(self, to: str, subject: str, text_body: str, html_body: str | None = None) -> bool:
        """Deliver one message. Returns False (and logs) on any transport failure."""
        if not self.enabled:
            logger.info("[mail disabled] To: %s | Subject: %s\n%s", to, subject, text_body)
            return True

        msg = self.build_message(to, subject, text_body, html_body)
        try:
            if self.port == 465:
                with smtplib.SMTP_SSL(
                    self.host, self.port, timeout=self.timeout, context=ssl.create_default_context()
                ) as server:
                    self._deliver(server, msg)
            else:
                with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                    server.ehlo()
                    if server.has_extn("starttls"):
                        server.starttls(context=ssl.create_default_context())
                        server.ehlo()
                    self._deliver(server, msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("Mail delivery to %s failed: %s", to, exc)
            return False
        logger.info("Mail sent to %s (%s)", to, subject)
        return True

    def _deliver(self, server: smtplib.SMTP, msg: EmailMessage) -> None:
        if self.username:
            server.login(self.username, self.password)
        server.send_message(msg)
