from __future__ import annotations

import json

import httpx
import pytest

from integration_monitoring.config import NotificationConfig
from integration_monitoring.errors import NotificationDispatchError
from integration_monitoring.notifications import (
    Attachment,
    NotificationDispatcher,
    RelayChannel,
    split_message,
)


class _Sleeps:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.mark.asyncio
async def test_retries_with_exponential_backoff(make_channel) -> None:
    channel = make_channel(fail_times=2)
    sleeps = _Sleeps()
    dispatcher = NotificationDispatcher(channel, NotificationConfig(backoff_base_seconds=1.0), sleep=sleeps)

    assert dispatcher.submit_message("Router down") is True
    assert await dispatcher.flush() == 1

    assert channel.messages == ["Router down"]
    assert sleeps.delays == [1.0, 2.0]
    assert dispatcher.stats["retries"] == 2
    assert dispatcher.stats["sent"] == 1


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts(make_channel) -> None:
    channel = make_channel(fail_times=10)
    sleeps = _Sleeps()
    config = NotificationConfig(max_attempts=4, backoff_base_seconds=1.0, backoff_max_seconds=3.0)
    dispatcher = NotificationDispatcher(channel, config, sleep=sleeps)

    dispatcher.submit_email("Monthly report", "body")
    assert await dispatcher.flush() == 0

    assert channel.calls == 4
    assert sleeps.delays == [1.0, 2.0, 3.0]
    assert dispatcher.stats["failed"] == 1
    assert dispatcher.failed[0].subject == "Monthly report"


def test_full_queue_drops_without_raising(channel) -> None:
    dispatcher = NotificationDispatcher(channel, NotificationConfig(queue_size=2))

    assert dispatcher.submit_message("one") is True
    assert dispatcher.submit_message("two") is True
    assert dispatcher.submit_message("three") is False
    assert dispatcher.stats["dropped"] == 1
    assert dispatcher.pending == 2


@pytest.mark.asyncio
async def test_high_priority_is_marked(channel) -> None:
    dispatcher = NotificationDispatcher(channel)
    dispatcher.submit_message("Security breach", priority="high")
    await dispatcher.flush()
    assert channel.messages == ["‼️ Security breach"]


@pytest.mark.asyncio
async def test_worker_drains_queue_on_stop(channel) -> None:
    dispatcher = NotificationDispatcher(channel)
    dispatcher.start()
    dispatcher.submit_message("first")
    dispatcher.submit_email("subject", "second", attachments=[Attachment("a.json", "{}")])
    await dispatcher.stop(drain_timeout=2.0)

    assert channel.messages == ["first"]
    assert channel.emails[0]["attachments"][0].filename == "a.json"
    assert dispatcher.pending == 0


def test_split_message_prefers_line_boundaries() -> None:
    text = ("status line\n" * 1000).strip()
    parts = split_message(text, max_len=500)
    assert len(parts) > 1
    assert all(0 < len(p) <= 500 for p in parts)
    assert all(p.endswith("status line") for p in parts)


def test_split_message_hard_cuts_long_lines() -> None:
    parts = split_message("x" * 1010, max_len=500)
    assert [len(p) for p in parts] == [500, 500, 10]


def _relay_config(**overrides) -> NotificationConfig:
    values = {
        "messaging_relay_url": "https://relay.test/api",
        "messaging_api_key": "secret-key",
        "messaging_group_id": "ops-group",
        "email_relay_url": "https://mail.test/send",
        "max_message_length": 100,
    }
    values.update(overrides)
    return NotificationConfig(**values)


@pytest.mark.asyncio
async def test_relay_channel_posts_chunked_messages() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"ok": True})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        channel = RelayChannel(_relay_config(), client=client)
        await channel.send_message("\n".join(["line of status"] * 12))

    assert len(requests) == 2
    assert str(requests[0].url) == "https://relay.test/api/messages"
    assert requests[0].headers["Authorization"] == "Bearer secret-key"
    payload = json.loads(requests[0].content)
    assert payload["groupId"] == "ops-group"
    assert len(payload["message"]) <= 100


@pytest.mark.asyncio
async def test_relay_channel_email_payload() -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(202)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        channel = RelayChannel(_relay_config(), client=client)
        await channel.send_email("Subject", "Body", attachments=[Attachment("r.json", "{}")])

    assert seen[0]["subject"] == "Subject"
    assert seen[0]["attachments"] == [{"filename": "r.json", "content": "{}"}]
    assert [r["type"] for r in seen[0]["recipients"]] == ["TO", "CC"]


@pytest.mark.asyncio
async def test_relay_channel_raises_on_http_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        channel = RelayChannel(_relay_config(), client=client)
        with pytest.raises(NotificationDispatchError) as excinfo:
            await channel.send_message("hello")

    assert excinfo.value.status_code == 503


@pytest.mark.asyncio
async def test_relay_channel_requires_configuration() -> None:
    channel = RelayChannel(NotificationConfig())
    with pytest.raises(NotificationDispatchError):
        await channel.send_message("hello")
    with pytest.raises(NotificationDispatchError):
        await channel.send_email("s", "b")


class _FailsOnCall:
    """Records messages; raises once on the given call number."""

    def __init__(self, fail_on: int) -> None:
        self.fail_on = fail_on
        self.calls = 0
        self.messages: list[str] = []

    async def send_message(self, text: str) -> None:
        self.calls += 1
        if self.calls == self.fail_on:
            raise NotificationDispatchError("relay unavailable", channel="test", status_code=503)
        self.messages.append(text)

    async def send_email(self, subject, body, attachments=None, recipients=None) -> None:
        raise AssertionError("unexpected email")


@pytest.mark.asyncio
async def test_failed_chunk_retries_without_resending_earlier_chunks() -> None:
    channel = _FailsOnCall(fail_on=2)
    config = NotificationConfig(max_message_length=100, backoff_base_seconds=0.0)
    dispatcher = NotificationDispatcher(channel, config, sleep=_Sleeps())
    text = "\n".join(f"status line {i:02d}" for i in range(15))

    dispatcher.submit_message(text)
    assert dispatcher.pending == 3
    assert await dispatcher.flush() == 3

    assert channel.calls == 4
    assert len(channel.messages) == 3
    assert "\n".join(channel.messages) == text
    assert dispatcher.stats["retries"] == 1


@pytest.mark.asyncio
async def test_high_priority_mark_only_on_first_chunk(channel) -> None:
    dispatcher = NotificationDispatcher(channel, NotificationConfig(max_message_length=100))
    dispatcher.submit_message("\n".join(["CRITICAL: router offline"] * 6), priority="high")
    await dispatcher.flush()

    assert len(channel.messages) == 2
    assert channel.messages[0].startswith("‼️ CRITICAL")
    assert channel.messages[1].startswith("CRITICAL")


@pytest.mark.asyncio
async def test_failed_notifications_are_capped(make_channel) -> None:
    from integration_monitoring.notifications.dispatcher import FAILED_LIMIT

    channel = make_channel(fail_times=1000)
    config = NotificationConfig(max_attempts=1, queue_size=FAILED_LIMIT + 10)
    dispatcher = NotificationDispatcher(channel, config, sleep=_Sleeps())

    for i in range(FAILED_LIMIT + 5):
        dispatcher.submit_email(f"report {i}", "body")
    await dispatcher.flush()

    assert dispatcher.stats["failed"] == FAILED_LIMIT + 5
    assert len(dispatcher.failed) == FAILED_LIMIT
    assert dispatcher.failed[0].subject == "report 5"
    assert dispatcher.failed[-1].subject == f"report {FAILED_LIMIT + 4}"
