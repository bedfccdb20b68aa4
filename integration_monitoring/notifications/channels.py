from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

import httpx
import structlog

from ..config import NotificationConfig
from ..errors import NotificationDispatchError

logger = structlog.get_logger(__name__)


DEFAULT_MAX_MESSAGE_LEN = 3900


@dataclass(frozen=True)
class Attachment:
    filename: str
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"filename": self.filename, "content": self.content}


@dataclass(frozen=True)
class EmailRecipient:
    email: str
    name: str
    kind: str = "TO"  # TO, CC or BCC

    def to_dict(self) -> dict[str, str]:
        return {"email": self.email, "name": self.name, "type": self.kind}


class NotificationChannel(Protocol):
    """Outbound delivery. Implementations raise NotificationDispatchError on failure."""

    async def send_message(self, text: str) -> None: ...

    async def send_email(
        self,
        subject: str,
        body: str,
        attachments: list[Attachment] | None = None,
        recipients: list[EmailRecipient] | None = None,
    ) -> None: ...


def split_message(text: str, *, max_len: int = DEFAULT_MAX_MESSAGE_LEN) -> list[str]:
    """Split text into relay-sized chunks, preferring line boundaries."""
    s = (text or "").strip()
    if not s:
        return [""]

    max_len = max(1, int(max_len))
    parts: list[str] = []
    while s:
        if len(s) <= max_len:
            parts.append(s)
            break
        cut = s.rfind("\n", 0, max_len + 1)
        if cut < max_len * 0.6:
            cut = max_len
        chunk = s[:cut].rstrip()
        parts.append(chunk)
        s = s[cut:].lstrip()
    return parts


class RelayChannel:
    """Messaging relay plus email relay over HTTP."""

    def __init__(self, config: NotificationConfig, client: httpx.AsyncClient | None = None):
        self.config = config
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.request_timeout_seconds)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def default_recipients(self) -> list[EmailRecipient]:
        return [
            EmailRecipient(email=self.config.support_email, name="Support Team", kind="TO"),
            EmailRecipient(email=self.config.creator_email, name="System Creator", kind="CC"),
        ]

    async def send_message(self, text: str) -> None:
        if not self.config.messaging_relay_url:
            raise NotificationDispatchError("Messaging relay not configured", channel="message")

        url = f"{self.config.messaging_relay_url.rstrip('/')}/messages"
        headers = {"Content-Type": "application/json"}
        if self.config.messaging_api_key:
            headers["Authorization"] = f"Bearer {self.config.messaging_api_key}"

        for part in split_message(text, max_len=self.config.max_message_length):
            payload = {"groupId": self.config.messaging_group_id, "message": part}
            await self._post(url, payload, headers=headers, channel="message")

        logger.info("Relay message sent", length=len(text))

    async def send_email(
        self,
        subject: str,
        body: str,
        attachments: list[Attachment] | None = None,
        recipients: list[EmailRecipient] | None = None,
    ) -> None:
        if not self.config.email_relay_url:
            raise NotificationDispatchError("Email relay not configured", channel="email")

        payload: dict[str, Any] = {
            "subject": subject,
            "body": body,
            "recipients": [r.to_dict() for r in (recipients or self.default_recipients())],
        }
        if attachments:
            payload["attachments"] = [a.to_dict() for a in attachments]

        await self._post(self.config.email_relay_url, payload, headers={}, channel="email")
        logger.info("Relay email sent", subject=subject)

    async def _post(self, url: str, payload: dict[str, Any], *, headers: dict[str, str], channel: str) -> None:
        try:
            resp = await self._get_client().post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            msg = f"{type(e).__name__}: {e}"
            if self.config.messaging_api_key:
                msg = msg.replace(self.config.messaging_api_key, "<redacted>")
            raise NotificationDispatchError(msg, channel=channel) from e

        if resp.status_code >= 400:
            raise NotificationDispatchError(
                f"Relay returned HTTP {resp.status_code}",
                channel=channel,
                status_code=resp.status_code,
            )
