import asyncio
import json
import os
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles
from starlette.concurrency import run_in_threadpool

from backend import RedisStatsBackend
from chat.lifecycle import ChatServer
from constants import (
    CORS_ORIGINS,
    LOG_FILE,
    LOG_LEVEL,
    PRESENCE_TTL_SECONDS,
    SIGNAL_REQUIRE_PARTNER,
    STATIC_DIR,
    STATS_BACKEND,
)
from logging_config import get_logger, setup_logging
from routers.stats import stats_router
from schemas.events import Envelope
from transport import WebSocketTransport

setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


async def refresh_presence(chat_server: ChatServer, stats_backend: RedisStatsBackend, interval: float):
    """Keep this instance's online count alive in Redis between membership changes."""
    try:
        while True:
            await asyncio.sleep(interval)
            stats_backend.record_online_count(chat_server.registry.size())
    except asyncio.CancelledError:
        logger.debug("Presence refresh task cancelled")
        raise


def create_app(stats_backend: Optional[RedisStatsBackend] = None, static_dir: Optional[str] = STATIC_DIR,
               require_partner_for_signals: bool = SIGNAL_REQUIRE_PARTNER) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        backend = stats_backend
        if backend is None and STATS_BACKEND == "redis":
            backend = RedisStatsBackend()

        transport = WebSocketTransport()
        app.state.transport = transport
        app.state.stats_backend = backend
        app.state.chat_server = ChatServer(transport, stats=backend,
                                           require_partner_for_signals=require_partner_for_signals)

        refresh_task = None
        if backend is not None:
            refresh_task = asyncio.create_task(
                refresh_presence(app.state.chat_server, backend, max(PRESENCE_TTL_SECONDS / 2, 1)))
        logger.info(f"Chat server started (stats backend: {'redis' if backend else 'none'})")
        try:
            yield
        finally:
            if refresh_task is not None:
                refresh_task.cancel()
                try:
                    await refresh_task
                except asyncio.CancelledError:
                    pass
            if backend is not None:
                await run_in_threadpool(backend.close)
            logger.info("Chat server stopped")

    app = FastAPI(lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(stats_router)
    app.add_api_websocket_route("/ws", websocket_endpoint)

    if static_dir and os.path.isfile(os.path.join(static_dir, "index.html")):
        mount_static(app, static_dir)

    logger.info("FastAPI application initialized")
    return app


def mount_static(app: FastAPI, static_dir: str) -> None:
    """Serve the built browser client, falling back to index.html for client-side routes."""
    assets_dir = os.path.join(static_dir, "assets")
    if os.path.isdir(assets_dir):
        app.mount("/assets", StaticFiles(directory=assets_dir), name="assets")
    index_file = os.path.join(static_dir, "index.html")
    root = os.path.realpath(static_dir)

    @app.get("/{full_path:path}", include_in_schema=False)
    async def serve_client(full_path: str):
        candidate = os.path.realpath(os.path.join(root, full_path))
        if full_path and candidate.startswith(root + os.sep) and os.path.isfile(candidate):
            return FileResponse(candidate)
        return FileResponse(index_file)

    logger.info(f"Serving static client from {static_dir}")


async def websocket_endpoint(websocket: WebSocket):
    """One chat client. Frames are JSON ``{"event": ..., "data": ...}`` both ways."""
    chat_server: ChatServer = websocket.app.state.chat_server
    transport: WebSocketTransport = websocket.app.state.transport

    await websocket.accept()
    connection_id = str(uuid.uuid4())
    transport.attach(connection_id, websocket)
    writer_task = asyncio.create_task(transport.writer(connection_id))
    logger.info(f"WebSocket connection accepted: {connection_id}")

    try:
        transport.send(connection_id, "connected", {"connectionId": connection_id})
        chat_server.connect(connection_id)

        message_count = 0
        while True:
            try:
                data = await websocket.receive_text()
            except WebSocketDisconnect:
                logger.info(f"WebSocket disconnected normally for connection {connection_id}")
                break
            except KeyError:
                # Binary frame: starlette finds no "text" key in the message
                logger.warning(f"Binary frame from connection {connection_id}")
                transport.send(connection_id, "error", {"event": "", "detail": "malformed frame"})
                continue
            message_count += 1
            logger.debug(f"Received frame #{message_count} from connection {connection_id}")

            try:
                envelope = Envelope.model_validate(json.loads(data))
            except (ValueError, TypeError, RecursionError) as e:
                logger.warning(f"Malformed frame from connection {connection_id}: {e}")
                transport.send(connection_id, "error", {"event": "", "detail": "malformed frame"})
                continue

            chat_server.handle(connection_id, envelope.event, envelope.data)
    except Exception as e:
        logger.error(f"WebSocket error for connection {connection_id}: {e}", exc_info=True)
    finally:
        transport.detach(connection_id)
        chat_server.disconnect(connection_id)
        writer_task.cancel()
        try:
            await writer_task
        except asyncio.CancelledError:
            pass
        try:
            await websocket.close()
        except Exception as e:
            logger.debug(f"Error closing WebSocket: {e}")


app = create_app()
