import json

import httpx
import pytest
import pytest_asyncio

from fortivus_coach.coaching.session import CoachingSession
from fortivus_coach.data.sqlite_store import SQLiteStore
from fortivus_coach.gateway.stream import StreamingResponseReader

COACHING_URL = "https://coach.test/functions/v1/ai-coaching"


def sse_frame(content: str) -> str:
    return f"data: {json.dumps({'choices': [{'delta': {'content': content}}]})}\n\n"


def sse_body(*deltas: str, done: bool = True) -> bytes:
    body = "".join(sse_frame(d) for d in deltas)
    if done:
        body += "data: [DONE]\n\n"
    return body.encode()


def event_stream(*chunks: bytes, status_code: int = 200) -> httpx.Response:
    """A streamed response that hands back `chunks` as separate network reads."""

    async def body():
        for chunk in chunks:
            yield chunk

    return httpx.Response(
        status_code, headers={"content-type": "text/event-stream"}, content=body()
    )


class GatewayStub:
    """Records outbound requests and answers with whatever `respond` returns."""

    def __init__(self) -> None:
        self.requests: list[dict] = []
        self.respond = lambda request: event_stream(sse_body("Hello"))

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        return self.respond(request)


@pytest_asyncio.fixture
async def sqlite_store(tmp_path):
    store = SQLiteStore(str(tmp_path / "test.db"))
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def gateway():
    return GatewayStub()


@pytest_asyncio.fixture
async def http_client(gateway):
    async with httpx.AsyncClient(transport=httpx.MockTransport(gateway.handler)) as client:
        yield client


@pytest.fixture
def reader(http_client):
    return StreamingResponseReader(http_client, COACHING_URL)


@pytest.fixture
def session(sqlite_store, reader):
    return CoachingSession(sqlite_store, reader, "user-1")
