"""Starlette app: health endpoint plus the per-session WebSocket channel."""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator
from datetime import datetime, timezone

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route, WebSocketRoute
from starlette.websockets import WebSocket

from deploy_console.channel import SessionChannel
from deploy_console.config import Config
from deploy_console.process_manager.supervisor import ProcessSupervisor

log = logging.getLogger(__name__)


def create_app(
    config: Config | None = None,
    supervisor: ProcessSupervisor | None = None,
) -> Starlette:
    """Create the deployment console application."""

    cfg = config or Config()
    sv = supervisor or ProcessSupervisor(cfg)

    # ------------------------------------------------------------------
    # GET /api/health
    # ------------------------------------------------------------------
    async def health(request: Request) -> JSONResponse:
        return JSONResponse({
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "workspace": sv.config.workspace_dir,
        })

    # ------------------------------------------------------------------
    # WebSocket /ws
    # ------------------------------------------------------------------
    async def session(websocket: WebSocket) -> None:
        await SessionChannel(websocket, sv).run()

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        log.info("Workspace directory: %s", sv.config.workspace_dir)
        yield
        log.info("Stopping all managed processes")
        await sv.stop_all()

    app = Starlette(
        routes=[
            Route("/api/health", health, methods=["GET"]),
            WebSocketRoute("/ws", session),
        ],
        middleware=[
            Middleware(
                CORSMiddleware,
                allow_origins=list(cfg.allowed_origins),
                allow_methods=["GET", "POST"],
            ),
        ],
        lifespan=lifespan,
    )
    app.state.supervisor = sv
    return app
