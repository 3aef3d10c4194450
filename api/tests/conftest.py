import pytest
from httpx import ASGITransport, AsyncClient
from sse_starlette import sse

from fakes import FakeBus, fast_sink
from topicstream.main import app
from topicstream.services.topic_table import TopicTable


@pytest.fixture(autouse=True)
def reset_sse_exit_event():
    """sse-starlette caches an exit event bound to the first event loop."""
    if hasattr(sse, "AppStatus"):
        sse.AppStatus.should_exit_event = None


@pytest.fixture
def bus():
    return FakeBus()


@pytest.fixture
async def table(bus):
    table = TopicTable(bus, sink_factory=fast_sink)
    yield table
    await table.close()


@pytest.fixture
async def client(bus, table):
    # ASGITransport does not run the lifespan; wire app.state by hand.
    app.state.bus = bus
    app.state.topic_table = table
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
