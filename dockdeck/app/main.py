from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator

from fastapi import FastAPI
from starlette.websockets import WebSocket, WebSocketDisconnect

from app.api.routes import router as api_router
from app.core.config import APP_NAME, DEMO_MODE
from app.core.logging import setup_logging
from app.services.dashboard import DockerGateway
from app.services.inventory_cache import InventoryCache
from app.services.pending_actions import PendingActionSweeper, PendingActionTracker
from app.services.ws_manager import WebSocketManager
from app.storage.db import get_connection, init_db
from app.storage.events import insert_event

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    init_db()
    ts_utc = datetime.now(timezone.utc).isoformat()
    with get_connection() as conn:
        try:
            insert_event(
                conn,
                {
                    "ts_utc": ts_utc,
                    "kind": "app_started",
                    "message": f"{APP_NAME} started",
                    "severity": "info",
                    "meta": {"demo_mode": DEMO_MODE},
                },
            )
        except Exception:
            logger.exception("Failed to insert app_started event")

    sweeper = PendingActionSweeper(app.state.pending_actions)
    sweeper.start()
    app.state.pending_sweeper = sweeper
    logger.info("%s started demo_mode=%s", APP_NAME, DEMO_MODE)

    yield

    await sweeper.stop()
    await app.state.inventory_cache.aclose()
    await app.state.ws_manager.close_all()
    logger.info("%s stopped", APP_NAME)


def create_app(
    *,
    inventory_cache: InventoryCache | None = None,
    pending_actions: PendingActionTracker | None = None,
    docker_gateway: DockerGateway | None = None,
) -> FastAPI:
    app = FastAPI(title=APP_NAME, lifespan=lifespan)
    app.include_router(api_router)
    app.state.inventory_cache = inventory_cache or InventoryCache()
    app.state.pending_actions = pending_actions or PendingActionTracker()
    app.state.docker_gateway = docker_gateway or DockerGateway()
    app.state.ws_manager = WebSocketManager()

    @app.websocket("/ws/live")
    async def ws_live(ws: WebSocket) -> None:
        manager: WebSocketManager = app.state.ws_manager
        await manager.connect(ws)
        try:
            await ws.send_json(
                {
                    "type": "hello",
                    "v": 1,
                    "server_time_utc": datetime.now(timezone.utc).isoformat(),
                    "message": "connected",
                }
            )
            while True:
                await ws.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            await manager.disconnect(ws)

    return app


app = create_app()
