"""Outbound email over SMTP with STARTTLS.

smtplib is blocking, so every send runs on a worker thread. Each call opens
its own connection; there is no retry or queueing.
"""

import asyncio
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, formatdate, make_msgid

from waitlist.core.config import Settings
from waitlist.core.logging import get_logger
from waitlist.services.email_validator import redact_email

logger = get_logger("mailer")


class MailDeliveryError(Exception):
    """A message could not be handed to the SMTP server."""


class SmtpMailer:
    """Email capability backed by an SMTP relay."""

    def __init__(
        self,
        server: str,
        port: int,
        username: str,
        password: str,
        *,
        sender_name: str = "",
        timeout: float = 30.0,
    ):
        self.server = server
        self.port = port
        self.username = username
        self.password = password
        self.sender_name = sender_name
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmtpMailer":
        return cls(
            server=settings.smtp_server,
            port=settings.smtp_port,
            username=settings.email_user,
            password=settings.email_pass,
            sender_name=settings.brand_name,
            timeout=settings.smtp_timeout_seconds,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.server and self.username and self.password)

    def _build_message(self, to: str, subject: str, html: str, text: str | None) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        if self.sender_name:
            msg["From"] = formataddr((self.sender_name, self.username))
        else:
            msg["From"] = self.username
        msg["To"] = to
        msg["Subject"] = subject
        msg["Date"] = formatdate(localtime=False)
        msg["Message-ID"] = make_msgid()
        if text:
            msg.attach(MIMEText(text, "plain", "utf-8"))
        msg.attach(MIMEText(html, "html", "utf-8"))
        return msg

    def _send_blocking(self, to: str, msg: MIMEMultipart) -> None:
        context = ssl.create_default_context()
        with smtplib.SMTP(self.server, self.port, timeout=self.timeout) as smtp:
            smtp.ehlo()
            smtp.starttls(context=context)
            smtp.ehlo()
            smtp.login(self.username, self.password)
            smtp.sendmail(self.username, [to], msg.as_string())

    async def send(self, to: str, subject: str, html: str, text: str | None = None) -> None:
        """Deliver one message or raise MailDeliveryError."""
        if not self.is_configured:
            raise MailDeliveryError("Email service not configured")

        msg = self._build_message(to, subject, html, text)
        try:
            await asyncio.to_thread(self._send_blocking, to, msg)
        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP authentication failed for {self.server}: {e.smtp_code}")
            raise MailDeliveryError("Email authentication failed") from e
        except smtplib.SMTPRecipientsRefused as e:
            logger.warning(f"SMTP recipient refused: {redact_email(to)}")
            raise MailDeliveryError("Recipient refused") from e
        except smtplib.SMTPException as e:
            logger.warning(f"SMTP error sending to {redact_email(to)}: {e}")
            raise MailDeliveryError("SMTP error") from e
        except OSError as e:
            # Connection refused, DNS failure, timeout
            logger.error(f"Could not connect to SMTP server {self.server}:{self.port}: {e}")
            raise MailDeliveryError("Could not connect to email server") from e

        logger.debug(f"Sent '{subject}' to {redact_email(to)}")
