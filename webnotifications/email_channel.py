"""Email (SMTP) implementation of the Notifier protocol."""

from __future__ import annotations

import asyncio
import logging
from email.message import EmailMessage

import aiosmtplib

from webnotifications.context import CANCELED, DeliveryContext
from webnotifications.errors import DeliveryFailed, SendCancelled
from webnotifications.models import NotifierConfig

logger = logging.getLogger(__name__)

SUBJECT = "Notification"


def is_valid_config(config: NotifierConfig) -> bool:
    """True if *config* carries everything the email sender needs."""
    return config.has_email()


def build_message(to_addr: str, body: str) -> EmailMessage:
    """Plain-text message with the fixed subject line."""
    msg = EmailMessage()
    msg["To"] = to_addr
    msg["Subject"] = SUBJECT
    msg.set_content(body)
    return msg


async def send_mail(
    message: EmailMessage,
    *,
    sender: str,
    recipient: str,
    hostname: str,
    port: int,
    username: str,
    password: str,
    timeout: float,
) -> None:
    """Submit *message* to one recipient, logging in with AUTH PLAIN.

    STARTTLS is used when the server offers it.
    """
    smtp = aiosmtplib.SMTP(hostname=hostname, port=port, timeout=timeout)
    async with smtp:
        await smtp.auth_plain(username, password)
        await smtp.send_message(message, sender=sender, recipients=[recipient])


class EmailSender:
    """Sends each notification as one authenticated SMTP submission.

    The submission runs as its own task. If the delivery context finishes
    first, ``notify`` raises SendCancelled straight away and the submission
    carries on in the background; its outcome is only logged.
    """

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        from_addr: str,
        to_addr: str,
        *,
        timeout: float = 60.0,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._from = from_addr
        self._to = to_addr
        self._timeout = timeout
        self._abandoned: set[asyncio.Task[None]] = set()

    @classmethod
    def from_config(cls, config: NotifierConfig) -> EmailSender:
        return cls(
            config.smtp_host,
            config.smtp_port,
            config.smtp_username,
            config.smtp_password,
            config.from_email,
            config.to_email,
            timeout=config.smtp_timeout,
        )

    @property
    def name(self) -> str:
        return "email"

    @property
    def abandoned(self) -> int:
        """Submissions still running after their caller gave up on them."""
        return len(self._abandoned)

    async def _submit(self, message: EmailMessage) -> None:
        await send_mail(
            message,
            sender=self._from,
            recipient=self._to,
            hostname=self._host,
            port=self._port,
            username=self._username,
            password=self._password,
            timeout=self._timeout,
        )

    def _abandon(self, task: asyncio.Task[None]) -> None:
        self._abandoned.add(task)
        task.add_done_callback(self._on_abandoned_done)

    def _on_abandoned_done(self, task: asyncio.Task[None]) -> None:
        self._abandoned.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Abandoned email to %s failed: %s", self._to, exc)
        else:
            logger.info("Abandoned email to %s was delivered after cancellation", self._to)

    async def notify(self, ctx: DeliveryContext, message: str) -> None:
        """Send *message* to the configured recipient."""
        if ctx.cancelled:
            raise SendCancelled(self.name, ctx.error or CANCELED)

        send_task = asyncio.ensure_future(self._submit(build_message(self._to, message)))
        watcher = asyncio.ensure_future(ctx.wait())
        try:
            await asyncio.wait({send_task, watcher}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not watcher.done():
                watcher.cancel()
                await asyncio.gather(watcher, return_exceptions=True)
            if not send_task.done():
                self._abandon(send_task)

        if not send_task.done():
            logger.warning("Email to %s abandoned: %s", self._to, ctx.error or CANCELED)
            raise SendCancelled(self.name, ctx.error or CANCELED)

        try:
            await send_task
        except Exception as exc:
            logger.warning("Email to %s failed: %s", self._to, exc)
            msg = f"email error: {exc}"
            raise DeliveryFailed(self.name, msg) from exc
        logger.info("Email sent to %s via %s:%d", self._to, self._host, self._port)
