import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .api.routes import router
from .coaching.session import SessionRegistry
from .config import (
    COACHING_URL,
    DATA_DIR,
    GATEWAY_CONNECT_TIMEOUT_SECS,
    GATEWAY_READ_TIMEOUT_SECS,
    PORT,
    ROOT_PATH,
    SQLITE_PATH,
)
from .data.sqlite_store import SQLiteStore
from .errors import RemoteError
from .gateway.client import GatewayClient
from .gateway.stream import StreamingResponseReader

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    DATA_DIR.mkdir(parents=True, exist_ok=True)

    logger.info("Initializing SQLite store...")
    sqlite_store = SQLiteStore(str(SQLITE_PATH))
    await sqlite_store.initialize()

    logger.info("Initializing gateway client...")
    gateway = GatewayClient()
    if not gateway.configured:
        logger.warning("GATEWAY_API_KEY is not set; coaching replies will fail")

    coaching_http = None
    if COACHING_URL:
        coaching_http = httpx.AsyncClient(
            timeout=httpx.Timeout(GATEWAY_READ_TIMEOUT_SECS, connect=GATEWAY_CONNECT_TIMEOUT_SECS)
        )

        def reader_factory() -> StreamingResponseReader:
            return StreamingResponseReader(coaching_http, COACHING_URL)
    else:
        reader_factory = gateway.reader

    app.state.sqlite_store = sqlite_store
    app.state.gateway = gateway
    app.state.sessions = SessionRegistry(sqlite_store, reader_factory)

    logger.info("Startup complete — ready to serve")
    yield

    # Shutdown
    logger.info("Shutting down...")
    if coaching_http is not None:
        await coaching_http.aclose()
    await gateway.close()
    await sqlite_store.close()


app = FastAPI(title="Fortivus AI Coaching", root_path=ROOT_PATH, lifespan=lifespan)
app.include_router(router)


@app.exception_handler(RemoteError)
async def remote_error_handler(request: Request, exc: RemoteError):
    logger.error("Storage error on %s: %s", request.url.path, exc)
    return JSONResponse({"detail": "Storage is unavailable, please try again"}, status_code=503)


def run() -> None:
    import uvicorn

    uvicorn.run("fortivus_coach.main:app", host="0.0.0.0", port=PORT)
