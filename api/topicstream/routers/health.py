from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from topicstream.dependencies import get_bus, get_topic_table
from topicstream.schemas.health import HealthResponse
from topicstream.services.pubsub import Bus
from topicstream.services.topic_table import TopicTable

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(
    bus: Bus = Depends(get_bus),
    table: TopicTable = Depends(get_topic_table),
):
    if await bus.ping():
        return HealthResponse(status="healthy", bus="connected", topics=len(table))
    return JSONResponse(
        status_code=503,
        content={"status": "unhealthy", "bus": "disconnected"},
    )
