from topicstream.config import Settings
from topicstream.services.pubsub import RedisBus
from topicstream.services.sse_broker import TopicSink

settings = Settings()


def create_bus() -> RedisBus:
    return RedisBus.from_url(
        settings.redis_url,
        settings.redis_password,
        connect_timeout=settings.redis_connect_timeout,
    )


def create_sink(topic_id: str) -> TopicSink:
    return TopicSink(
        topic_id,
        queue_maxsize=settings.client_queue_maxsize,
        ping_seconds=settings.sse_ping_seconds,
        poll_seconds=settings.disconnect_poll_seconds,
    )
