"""Tests for the Redis-backed bus client."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from topicstream.services.pubsub import (
    Message,
    RedisBus,
    RedisSubscription,
    SubscriptionOpenError,
)


def _mock_client(pubsub: MagicMock) -> MagicMock:
    client = MagicMock()
    client.pubsub.return_value = pubsub
    client.ping = AsyncMock(return_value=True)
    client.aclose = AsyncMock()
    return client


def _mock_pubsub(*raw_messages, error: Exception | None = None) -> MagicMock:
    pubsub = MagicMock()
    pubsub.psubscribe = AsyncMock()
    pubsub.aclose = AsyncMock()

    async def listen():
        for raw in raw_messages:
            yield raw
        if error is not None:
            raise error

    pubsub.listen = listen
    return pubsub


async def test_subscribe_uses_pattern_subscription():
    pubsub = _mock_pubsub()
    bus = RedisBus(_mock_client(pubsub))

    sub = await bus.subscribe("/events/f*")

    assert isinstance(sub, RedisSubscription)
    assert sub.pattern == "/events/f*"
    pubsub.psubscribe.assert_awaited_once_with("/events/f*")


async def test_subscribe_failure_raises_and_releases_connection():
    pubsub = _mock_pubsub()
    pubsub.psubscribe.side_effect = RedisConnectionError("Connection refused")
    bus = RedisBus(_mock_client(pubsub))

    with pytest.raises(SubscriptionOpenError) as exc_info:
        await bus.subscribe("/events/foo")

    assert exc_info.value.pattern == "/events/foo"
    assert "Connection refused" in str(exc_info.value)
    pubsub.aclose.assert_awaited_once()


async def test_messages_skip_non_pattern_messages_and_decode():
    pubsub = _mock_pubsub(
        {"type": "psubscribe", "pattern": None, "channel": "/events/*", "data": 1},
        {"type": "pmessage", "pattern": "/events/*", "channel": "/events/foo", "data": "hi"},
        {"type": "pmessage", "pattern": b"/events/*", "channel": b"/events/bar", "data": b"\xc3\xa9t\xc3\xa9"},
    )
    sub = RedisSubscription("/events/*", pubsub)

    messages = [message async for message in sub.messages()]

    assert messages == [
        Message(channel="/events/foo", payload="hi"),
        Message(channel="/events/bar", payload="été"),
    ]


async def test_messages_end_on_connection_loss():
    pubsub = _mock_pubsub(
        {"type": "pmessage", "pattern": "/events/*", "channel": "/events/foo", "data": "one"},
        error=RedisConnectionError("Connection reset by peer"),
    )
    sub = RedisSubscription("/events/*", pubsub)

    messages = [message.payload async for message in sub.messages()]

    assert messages == ["one"]


async def test_close_is_idempotent():
    pubsub = _mock_pubsub()
    sub = RedisSubscription("/events/foo", pubsub)

    await sub.close()
    await sub.close()

    pubsub.aclose.assert_awaited_once()


async def test_ping_reports_unreachable_bus():
    client = _mock_client(_mock_pubsub())
    client.ping.side_effect = RedisConnectionError("Connection refused")

    assert await RedisBus(client).ping() is False


async def test_ping_ok_and_close():
    client = _mock_client(_mock_pubsub())
    bus = RedisBus(client)

    assert await bus.ping() is True
    await bus.close()

    client.aclose.assert_awaited_once()


def test_from_url_sets_connect_timeout_only():
    with patch("topicstream.services.pubsub.Redis.from_url") as from_url:
        RedisBus.from_url("redis://bus:6379/0", "secret", connect_timeout=2.5)

    from_url.assert_called_once()
    kwargs = from_url.call_args.kwargs
    assert kwargs["socket_connect_timeout"] == 2.5
    assert kwargs["password"] == "secret"
    assert "socket_timeout" not in kwargs


def test_create_bus_uses_configured_timeout():
    from topicstream.bus import create_bus, settings

    with (
        patch.object(settings, "redis_connect_timeout", 1.5),
        patch("topicstream.services.pubsub.Redis.from_url") as from_url,
    ):
        create_bus()

    assert from_url.call_args.kwargs["socket_connect_timeout"] == 1.5
