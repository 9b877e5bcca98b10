# auth/notifier.py
"""
Outbound account email.

Notifiers are best-effort: the account service catches anything they
raise, so an SMTP outage never fails a registration or an OTP request.

Provides:
- Notifier protocol (async send)
- SmtpNotifier: reuses one SMTP connection, sends in a worker thread
- LogNotifier: used when SMTP is not configured
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
import threading
from email.message import EmailMessage
from email.utils import formataddr
from typing import Optional, Protocol

_logger = logging.getLogger(__name__)

SMTP_TIMEOUT_SECONDS = 10.0


class NotifierError(Exception):
    """Raised when a message could not be handed to the mail transport."""
    pass


class Notifier(Protocol):
    async def send(
        self, to: str, subject: str, html: str, text: Optional[str] = None
    ) -> None: ...


class SmtpNotifier:
    """
    Sends mail over a single, lazily opened SMTP connection.

    The connection is shared by all requests; a lock serialises use of
    it and a dropped connection is reopened once before giving up. Any
    failure discards the connection, and a sender waits at most one
    timeout for the lock.
    """

    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_ssl: bool = True,
        sender_name: Optional[str] = None,
    ):
        self._host = host
        self._port = port
        self._sender = sender
        self._username = username
        self._password = password
        self._use_ssl = use_ssl
        self._sender_name = sender_name
        self._conn: Optional[smtplib.SMTP] = None
        self._lock = threading.Lock()

    def _new_connection(self) -> smtplib.SMTP:
        if self._use_ssl:
            conn = smtplib.SMTP_SSL(self._host, self._port, timeout=SMTP_TIMEOUT_SECONDS)
        else:
            conn = smtplib.SMTP(self._host, self._port, timeout=SMTP_TIMEOUT_SECONDS)
        try:
            if not self._use_ssl:
                conn.starttls()
            if self._username and self._password:
                conn.login(self._username, self._password)
        except (smtplib.SMTPException, OSError):
            conn.close()
            raise
        _logger.info(f"Opened SMTP connection to {self._host}:{self._port}")
        return conn

    def _build_message(self, to: str, subject: str, html: str, text: Optional[str]) -> EmailMessage:
        message = EmailMessage()
        message["From"] = (
            formataddr((self._sender_name, self._sender)) if self._sender_name else self._sender
        )
        message["To"] = to
        message["Subject"] = subject
        message.set_content(text or "This message requires an HTML-capable mail client.")
        message.add_alternative(html, subtype="html")
        return message

    def _drop_connection(self) -> None:
        if self._conn is not None:
            try:
                self._conn.close()
            except OSError:
                pass
            self._conn = None

    def _send_sync(self, message: EmailMessage) -> None:
        # Waiters give up instead of queueing behind a hung server
        if not self._lock.acquire(timeout=SMTP_TIMEOUT_SECONDS):
            raise NotifierError("Mail transport busy")
        try:
            if self._conn is None:
                self._conn = self._new_connection()
            try:
                self._conn.send_message(message)
            except smtplib.SMTPServerDisconnected:
                self._conn = self._new_connection()
                self._conn.send_message(message)
        except (smtplib.SMTPException, OSError):
            # A timed-out or half-open connection is never reused
            self._drop_connection()
            raise
        finally:
            self._lock.release()

    async def send(
        self, to: str, subject: str, html: str, text: Optional[str] = None
    ) -> None:
        message = self._build_message(to, subject, html, text)
        loop = asyncio.get_running_loop()
        try:
            # Run in a thread to avoid blocking the event loop
            await loop.run_in_executor(None, self._send_sync, message)
        except (smtplib.SMTPException, OSError) as e:
            raise NotifierError(f"Could not send mail to {to}: {e}") from e
        _logger.info(f"Sent '{subject}' to {to}")

    def close(self) -> None:
        """Close the shared connection, if open."""
        with self._lock:
            if self._conn is not None:
                try:
                    self._conn.quit()
                except (smtplib.SMTPException, OSError):
                    pass
                self._conn = None


class LogNotifier:
    """Logs outgoing mail instead of sending it (body omitted)."""

    async def send(
        self, to: str, subject: str, html: str, text: Optional[str] = None
    ) -> None:
        _logger.warning(f"SMTP not configured; not sending '{subject}' to {to}")
