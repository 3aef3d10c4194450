"""Topic table: one upstream subscription per topic, shared by all its clients.

Each entry owns a bus subscription and an SSE sink. A background listener
task per entry forwards messages to the sink and reclaims the entry once
it has seen traffic and no client is left. There is no idle timer: a topic
that never receives a message (or an upstream close) is never reclaimed
by its listener, only by ``remove`` or ``close``.
"""

import asyncio
import logging
from collections.abc import Callable
from contextlib import aclosing
from dataclasses import dataclass, field

from topicstream.services.pubsub import Bus, BusSubscription
from topicstream.services.sse_broker import TopicSink

logger = logging.getLogger(__name__)

SinkFactory = Callable[[str], TopicSink]


@dataclass(eq=False)
class TopicSubscription:
    """Binds one bus subscription to one SSE sink."""

    id: str
    upstream: BusSubscription
    sink: TopicSink
    # Set by the first message or upstream close; zero consumers only
    # counts after that, so the first client has time to attach.
    activated: bool = False
    closed: bool = False
    task: asyncio.Task | None = field(default=None, repr=False)

    @property
    def consumer_count(self) -> int:
        return self.sink.consumer_count

    async def close(self) -> None:
        logger.info("Closing topic %s", self.id)
        try:
            await self.upstream.close()
        finally:
            self.sink.close()


class TopicTable:
    """Maps topic ids (request paths) to their live subscription.

    Every mutation happens under one lock: two requests for a new path
    must not open two upstream subscriptions, and a reclaim must not race
    a resolve that is recreating the same topic. The upstream subscribe
    itself runs outside the lock as a per-topic task that concurrent
    resolves of the same topic share.
    """

    def __init__(self, bus: Bus, sink_factory: SinkFactory = TopicSink) -> None:
        self._bus = bus
        self._sink_factory = sink_factory
        self._topics: dict[str, TopicSubscription] = {}
        self._lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()
        # Topics whose upstream subscription is still being opened.
        self._opening: dict[str, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._topics)

    def __contains__(self, topic_id: object) -> bool:
        return topic_id in self._topics

    def get(self, topic_id: str) -> TopicSubscription | None:
        return self._topics.get(topic_id)

    def list_topics(self) -> list[str]:
        """Snapshot of the topics with a live subscription."""
        return list(self._topics)

    async def resolve(self, topic_id: str) -> TopicSubscription:
        """Return the subscription for topic_id, creating it if needed.

        Raises:
            SubscriptionOpenError: The bus refused the subscription. The
                table is left unchanged.
        """
        async with self._lock:
            existing = self._topics.get(topic_id)
            if existing is not None:
                return existing
            opening = self._opening.get(topic_id)
            if opening is None:
                opening = asyncio.create_task(self._open(topic_id), name=f"open:{topic_id}")
                opening.add_done_callback(_retrieve_exception)
                self._opening[topic_id] = opening
        # The subscribe round trip runs outside the lock, so other topics
        # resolve meanwhile. Shielded: one caller going away must not
        # cancel the open for the others waiting on it.
        return await asyncio.shield(opening)

    async def _open(self, topic_id: str) -> TopicSubscription:
        logger.info("Creating topic %s", topic_id)
        try:
            sink = self._sink_factory(topic_id)
            upstream = await self._bus.subscribe(topic_id)
        except BaseException:
            async with self._lock:
                self._opening.pop(topic_id, None)
            raise

        async with self._lock:
            self._opening.pop(topic_id, None)
            sub = TopicSubscription(id=topic_id, upstream=upstream, sink=sink)
            self._topics[topic_id] = sub

            sub.task = asyncio.create_task(self._listen(sub), name=f"topic:{topic_id}")
            self._tasks.add(sub.task)
            sub.task.add_done_callback(self._tasks.discard)
        return sub

    async def remove(self, topic_id: str) -> bool:
        """Reclaim topic_id if present. Returns False if it was not."""
        sub = self._topics.get(topic_id)
        if sub is None:
            return False
        return await self._reclaim(sub)

    async def close(self) -> None:
        """Reclaim every topic and wait for all listeners to finish."""
        while True:
            async with self._lock:
                subs = list(self._topics.values())
                opening = list(self._opening.values())
            if not subs and not opening:
                break
            if opening:
                # Let in-flight opens land in the table, then reclaim them.
                await asyncio.wait(opening)
            if subs:
                logger.info("Closing %d topic(s)", len(subs))
                await asyncio.gather(*(self._reclaim(sub) for sub in subs))
        if self._tasks:
            await asyncio.wait(set(self._tasks))

    async def _listen(self, sub: TopicSubscription) -> None:
        """Forward upstream messages to the sink until the topic is idle."""
        try:
            async with aclosing(sub.upstream.messages()) as messages:
                async for message in messages:
                    sub.activated = True
                    await sub.sink.push(message.payload)
                    logger.debug(">> %s (consumers: %d)", sub.id, sub.consumer_count)
                    if sub.consumer_count == 0:
                        logger.info("Zero consumers on %s", sub.id)
                        break
                else:
                    sub.activated = True
                    logger.info("Upstream closed on %s", sub.id)
        except Exception:
            logger.exception("Listener for %s failed", sub.id)
        await self._reclaim(sub)

    async def _reclaim(self, sub: TopicSubscription) -> bool:
        async with self._lock:
            if sub.closed:
                return False
            sub.closed = True
            if self._topics.get(sub.id) is sub:
                del self._topics[sub.id]

        task = sub.task
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            await asyncio.wait({task})
        await sub.close()
        return True


def _retrieve_exception(task: asyncio.Task) -> None:
    # Failures reach the callers awaiting the open; this only keeps asyncio
    # quiet when every caller went away first.
    if not task.cancelled():
        task.exception()
