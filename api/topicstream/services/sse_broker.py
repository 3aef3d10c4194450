"""Per-topic SSE sink: fans payloads out to every attached client."""

import asyncio
import logging
from collections.abc import AsyncIterator

from sse_starlette import EventSourceResponse, ServerSentEvent
from starlette.requests import Request

logger = logging.getLogger(__name__)

CLIENT_QUEUE_MAXSIZE = 64
PING_SECONDS = 15
DISCONNECT_POLL_SECONDS = 1.0

# Wakes a client stream so it can notice the sink was closed.
_CLOSED = object()


class TopicSink:
    """asyncio.Queue-based broadcast sink for one topic."""

    def __init__(
        self,
        topic_id: str,
        *,
        queue_maxsize: int = CLIENT_QUEUE_MAXSIZE,
        ping_seconds: int = PING_SECONDS,
        poll_seconds: float = DISCONNECT_POLL_SECONDS,
    ) -> None:
        self.topic_id = topic_id
        self._queue_maxsize = queue_maxsize
        self._ping_seconds = ping_seconds
        self._poll_seconds = poll_seconds
        self._queues: set[asyncio.Queue] = set()
        self._closed = False

    def subscribe(self) -> asyncio.Queue:
        """Create and return a new client queue."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_maxsize)
        self._queues.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        """Remove a client queue on disconnect."""
        self._queues.discard(queue)

    async def push(self, payload: str) -> None:
        """Send payload to all attached clients. Drop if a queue is full."""
        for queue in list(self._queues):
            try:
                queue.put_nowait(payload)
            except asyncio.QueueFull:
                logger.warning("SSE client queue full on %s, dropping event", self.topic_id)

    @property
    def consumer_count(self) -> int:
        return len(self._queues)

    @property
    def closed(self) -> bool:
        return self._closed

    async def stream(self, request: Request) -> AsyncIterator[ServerSentEvent]:
        """Per-client SSE generator."""
        if self._closed:
            return
        queue = self.subscribe()
        try:
            while not self._closed:
                if await request.is_disconnected():
                    break
                try:
                    item = await asyncio.wait_for(queue.get(), timeout=self._poll_seconds)
                except asyncio.TimeoutError:
                    continue
                if item is _CLOSED:
                    break
                yield ServerSentEvent(data=item)
        finally:
            self.unsubscribe(queue)

    def attach(self, request: Request) -> EventSourceResponse:
        """Bind the request to this sink until the client disconnects."""
        return EventSourceResponse(self.stream(request), ping=self._ping_seconds)

    def close(self) -> None:
        """Disconnect every attached client. Later attaches end immediately."""
        if self._closed:
            return
        self._closed = True
        for queue in list(self._queues):
            # A full queue gives up its oldest event for the marker.
            while True:
                try:
                    queue.put_nowait(_CLOSED)
                    break
                except asyncio.QueueFull:
                    queue.get_nowait()
        self._queues.clear()
