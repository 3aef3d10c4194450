import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.requests import Request

from topicstream.bus import create_bus, create_sink, settings
from topicstream.routers import events, health, topics
from topicstream.services.pubsub import SubscriptionOpenError
from topicstream.services.topic_table import TopicTable

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings.validate_production()

    bus = create_bus()
    if not await bus.ping():
        await bus.close()
        # Fatal: uvicorn aborts startup.
        raise RuntimeError(f"Redis is unreachable at {settings.redis_url}")

    table = TopicTable(bus, sink_factory=create_sink)
    app.state.bus = bus
    app.state.topic_table = table
    logger.info("Streaming %s/* from %s", settings.get_events_prefix(), settings.redis_url)

    yield

    await table.close()
    await bus.close()


app = FastAPI(
    title="topicstream",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None if settings.environment == "production" else "/docs",
    redoc_url=None if settings.environment == "production" else "/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_methods=["GET"],
    allow_headers=["Accept", "Cache-Control", "Last-Event-ID"],
)


@app.exception_handler(SubscriptionOpenError)
async def subscription_exception_handler(request: Request, exc: SubscriptionOpenError):
    logger.warning("Subscription failed for %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=503, content={"detail": "Unable to subscribe to topic"}
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error: %s", exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app.include_router(health.router)
app.include_router(topics.router)
app.include_router(
    events.router, prefix=settings.get_events_prefix()
)  # last: its {topic:path} route catches everything under the prefix

if settings.static_dir:
    app.mount("/", StaticFiles(directory=settings.static_dir, html=True), name="static")
