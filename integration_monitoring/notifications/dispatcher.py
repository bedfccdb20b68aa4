"""Queued notification delivery with bounded retry."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable

import structlog

from ..config import NotificationConfig
from ..errors import NotificationDispatchError
from ..periods import utcnow
from .channels import Attachment, EmailRecipient, NotificationChannel, split_message

logger = structlog.get_logger(__name__)

FAILED_LIMIT = 100
HIGH_PRIORITY_MARK = "‼️ "


@dataclass
class Notification:
    kind: str  # "message" or "email"
    text: str
    subject: str | None = None
    attachments: list[Attachment] | None = None
    recipients: list[EmailRecipient] | None = None
    priority: str = "normal"
    queued_at: datetime = field(default_factory=utcnow)
    attempts: int = 0


class NotificationDispatcher:
    """Bounded queue in front of a notification channel.

    ``submit_*`` never blocks and never raises: when the queue is full the
    notification is dropped and counted. A worker task drains the queue and
    retries failed sends with exponential backoff.
    """

    def __init__(
        self,
        channel: NotificationChannel,
        config: NotificationConfig | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ):
        self.channel = channel
        self.config = config or NotificationConfig()
        self._sleep = sleep or asyncio.sleep
        self._queue: asyncio.Queue[Notification] = asyncio.Queue(maxsize=self.config.queue_size)
        self._worker: asyncio.Task | None = None
        self.stats = {"queued": 0, "sent": 0, "failed": 0, "dropped": 0, "retries": 0}
        self.failed: list[Notification] = []

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def submit_message(self, text: str, priority: str = "normal") -> bool:
        """Queue one notification per relay-sized chunk of ``text``.

        Chunks retry independently, so a failed chunk never resends the
        chunks already delivered.
        """
        if priority == "high":
            text = HIGH_PRIORITY_MARK + text
        accepted = True
        for part in split_message(text, max_len=self.config.max_message_length):
            if not self._enqueue(Notification(kind="message", text=part, priority=priority)):
                accepted = False
        return accepted

    def submit_email(
        self,
        subject: str,
        body: str,
        attachments: list[Attachment] | None = None,
        recipients: list[EmailRecipient] | None = None,
        priority: str = "normal",
    ) -> bool:
        return self._enqueue(Notification(
            kind="email",
            text=body,
            subject=subject,
            attachments=attachments,
            recipients=recipients,
            priority=priority,
        ))

    def _enqueue(self, notification: Notification) -> bool:
        try:
            self._queue.put_nowait(notification)
        except asyncio.QueueFull:
            self.stats["dropped"] += 1
            logger.error("Notification queue full, dropping notification",
                         kind=notification.kind,
                         priority=notification.priority,
                         queue_size=self.config.queue_size)
            return False
        self.stats["queued"] += 1
        return True

    async def deliver(self, notification: Notification) -> bool:
        """Send one notification, retrying with exponential backoff."""
        max_attempts = self.config.max_attempts
        while notification.attempts < max_attempts:
            notification.attempts += 1
            try:
                await self._send(notification)
                self.stats["sent"] += 1
                return True
            except NotificationDispatchError as e:
                if notification.attempts >= max_attempts:
                    break
                delay = min(
                    self.config.backoff_base_seconds * (2 ** (notification.attempts - 1)),
                    self.config.backoff_max_seconds,
                )
                self.stats["retries"] += 1
                logger.warning("Notification send failed, retrying",
                               kind=notification.kind,
                               attempt=notification.attempts,
                               max_attempts=max_attempts,
                               retry_in_seconds=delay,
                               error=str(e))
                await self._sleep(delay)

        self.stats["failed"] += 1
        self.failed.append(notification)
        if len(self.failed) > FAILED_LIMIT:
            self.failed = self.failed[-FAILED_LIMIT:]
        logger.error("Notification delivery failed",
                     kind=notification.kind,
                     priority=notification.priority,
                     subject=notification.subject,
                     attempts=notification.attempts)
        return False

    async def _send(self, notification: Notification) -> None:
        if notification.kind == "email":
            text = notification.text
            if notification.priority == "high":
                text = HIGH_PRIORITY_MARK + text
            await self.channel.send_email(
                notification.subject or "",
                text,
                notification.attachments,
                notification.recipients,
            )
        else:
            await self.channel.send_message(notification.text)

    async def flush(self) -> int:
        """Deliver everything currently queued in the calling task."""
        delivered = 0
        while not self._queue.empty():
            notification = self._queue.get_nowait()
            try:
                if await self.deliver(notification):
                    delivered += 1
            finally:
                self._queue.task_done()
        return delivered

    async def _run(self) -> None:
        while True:
            notification = await self._queue.get()
            try:
                await self.deliver(notification)
            except Exception as e:
                # A channel bug must not kill the worker.
                self.stats["failed"] += 1
                logger.error("Unexpected error delivering notification",
                             kind=notification.kind,
                             error=str(e))
            finally:
                self._queue.task_done()

    def start(self) -> None:
        if self._worker is not None and not self._worker.done():
            logger.warning("Notification worker already running")
            return
        self._worker = asyncio.create_task(self._run(), name="notification-dispatcher")
        logger.info("Notification worker started", queue_size=self.config.queue_size)

    async def stop(self, drain_timeout: float | None = 10.0) -> None:
        if self._worker is None:
            return
        if drain_timeout:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
            except asyncio.TimeoutError:
                logger.warning("Notification queue not drained before shutdown", pending=self.pending)
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        logger.info("Notification worker stopped", **self.stats)
