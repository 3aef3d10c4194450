"""SSE endpoint: stream every message published on the topic matching the path."""

import logging

from fastapi import APIRouter, Depends, Request

from topicstream.dependencies import get_topic_table
from topicstream.services.topic_table import TopicTable

logger = logging.getLogger(__name__)

router = APIRouter(tags=["events"])


@router.get("/{topic:path}")
async def stream_topic(
    request: Request,
    table: TopicTable = Depends(get_topic_table),
):
    """SSE stream of the Redis channel(s) matching the request path.

    The path is used verbatim as a PSUBSCRIBE pattern, so /events/f*
    receives everything published on /events/foo, /events/fee, ...

      const es = new EventSource('/events/foo')
      es.onmessage = (e) => { ... }

    A SubscriptionOpenError from resolve() is turned into a 503 by the
    app-level handler.
    """
    topic_id = request.url.path
    subscription = await table.resolve(topic_id)
    logger.info("Subscribed to %s (consumers: %d)", topic_id, subscription.consumer_count)
    return subscription.sink.attach(request)
