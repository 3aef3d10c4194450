"""Messaging bus client: Redis Pub/Sub pattern subscriptions.

The topic table only depends on the ``Bus`` / ``BusSubscription``
protocols; ``RedisBus`` is the production implementation. Pattern
matching (exact vs glob) is Redis' PSUBSCRIBE semantics, not ours.
"""

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Protocol

from redis.asyncio import Redis
from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class TopicStreamError(Exception):
    """Base exception for topicstream errors."""


class SubscriptionOpenError(TopicStreamError):
    """The bus refused or could not be reached while opening a subscription."""

    def __init__(self, pattern: str, reason: str = "") -> None:
        self.pattern = pattern
        self.reason = reason
        message = f"Unable to subscribe to {pattern!r}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


@dataclass(frozen=True, slots=True)
class Message:
    """A single message received on a subscription."""

    channel: str
    payload: str


class BusSubscription(Protocol):
    pattern: str

    def messages(self) -> AsyncIterator[Message]:
        """Yield messages in bus order; stop when the subscription closes."""
        ...

    async def close(self) -> None: ...


class Bus(Protocol):
    async def subscribe(self, pattern: str) -> BusSubscription: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


class RedisSubscription:
    """One PSUBSCRIBE on a dedicated pub/sub connection."""

    def __init__(self, pattern: str, pubsub: PubSub) -> None:
        self.pattern = pattern
        self._pubsub = pubsub
        self._closed = False

    async def messages(self) -> AsyncIterator[Message]:
        try:
            async for raw in self._pubsub.listen():
                if raw.get("type") != "pmessage":
                    continue
                yield Message(
                    channel=_as_str(raw["channel"]),
                    payload=_as_str(raw["data"]),
                )
        except RedisError as exc:
            # Connection lost mid-stream: end the iteration, the caller
            # treats that as the closed signal.
            if not self._closed:
                logger.warning("Upstream subscription %s lost: %s", self.pattern, exc)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._pubsub.aclose()
        except RedisError:
            logger.warning("Error closing subscription %s", self.pattern, exc_info=True)


class RedisBus:
    """``Bus`` backed by a ``redis.asyncio`` client."""

    def __init__(self, client: Redis) -> None:
        self._client = client

    @classmethod
    def from_url(
        cls, url: str, password: str = "", connect_timeout: float | None = None
    ) -> "RedisBus":
        # No socket_timeout: listen() blocks on reads between messages.
        client = Redis.from_url(
            url,
            password=password or None,
            socket_connect_timeout=connect_timeout,
            decode_responses=True,
        )
        return cls(client)

    async def subscribe(self, pattern: str) -> RedisSubscription:
        pubsub = self._client.pubsub(ignore_subscribe_messages=True)
        try:
            await pubsub.psubscribe(pattern)
        except (RedisError, OSError) as exc:
            await pubsub.aclose()
            raise SubscriptionOpenError(pattern, str(exc)) from exc
        return RedisSubscription(pattern, pubsub)

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except (RedisError, OSError):
            return False

    async def close(self) -> None:
        await self._client.aclose()


def _as_str(value: str | bytes) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value
