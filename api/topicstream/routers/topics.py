from fastapi import APIRouter, Depends

from topicstream.dependencies import get_topic_table
from topicstream.schemas.topics import TopicsResponse
from topicstream.services.topic_table import TopicTable

router = APIRouter(tags=["topics"])


@router.get("/topics", response_model=TopicsResponse)
async def list_topics(table: TopicTable = Depends(get_topic_table)):
    return TopicsResponse(topics=sorted(table.list_topics()))
