from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from email.utils import make_msgid

from remindpro.settings import settings

from .base import ConnectionState, SendResult

logger = logging.getLogger("remindpro.channels.email")


class SmtpEmailChannel:
    """Sends plain-text reminders through an SMTP relay.

    smtplib is blocking, so each delivery runs in a worker thread. A fresh
    connection is opened per message; reminder volume is small.
    """

    def __init__(
        self,
        host: str | None,
        *,
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        from_address: str | None = None,
        use_tls: bool = True,
        subject: str = "New Reminder",
        timeout_sec: float = 30.0,
        smtp_factory=smtplib.SMTP,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._from = from_address or username
        self._use_tls = use_tls
        self._subject = subject
        self._timeout = timeout_sec
        self._smtp_factory = smtp_factory

    @classmethod
    def from_settings(cls) -> "SmtpEmailChannel":
        return cls(
            settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            username=settings.SMTP_USERNAME,
            password=settings.SMTP_PASSWORD,
            from_address=settings.SMTP_FROM,
            use_tls=settings.SMTP_USE_TLS,
            subject=settings.EMAIL_SUBJECT,
            timeout_sec=settings.SEND_TIMEOUT_SEC,
        )

    def status(self) -> ConnectionState:
        if not self._host or not self._from:
            return ConnectionState.DISCONNECTED
        return ConnectionState.CONNECTED

    def _build_message(self, address: str, text: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = self._subject
        msg["From"] = self._from
        msg["To"] = address
        msg["Message-ID"] = make_msgid(domain=self._from.split("@")[-1] if "@" in self._from else None)
        msg.set_content(text)
        return msg

    def _deliver(self, msg: EmailMessage) -> None:
        with self._smtp_factory(self._host, self._port, timeout=self._timeout) as smtp:
            if self._use_tls:
                smtp.starttls()
            if self._username and self._password:
                smtp.login(self._username, self._password)
            smtp.send_message(msg)

    async def send(self, address: str, text: str) -> SendResult:
        if self.status() is not ConnectionState.CONNECTED:
            return SendResult(False, error="email channel is not configured")
        msg = self._build_message(address, text)
        try:
            await asyncio.to_thread(self._deliver, msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("SMTP delivery to %s failed: %s", address, exc)
            return SendResult(False, error=str(exc) or exc.__class__.__name__)
        logger.info("Email sent to %s (message_id=%s)", address, msg["Message-ID"])
        return SendResult(True, external_id=msg["Message-ID"])
