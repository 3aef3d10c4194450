from fastapi import Request

from topicstream.services.pubsub import Bus
from topicstream.services.topic_table import TopicTable


def get_topic_table(request: Request) -> TopicTable:
    return request.app.state.topic_table


def get_bus(request: Request) -> Bus:
    return request.app.state.bus
