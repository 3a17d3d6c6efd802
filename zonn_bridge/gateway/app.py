"""FastAPI application for the Zonn playback gateway."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from ..config import Config
from ..orchestrator import OrchestratorSnapshot, PlaybackOrchestrator
from .routes import permission, playback, system, websocket

logger = logging.getLogger("zonn_bridge.gateway")


def create_app(
    orchestrator: PlaybackOrchestrator,
    config: Optional[Config] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        orchestrator: Orchestrator whose state and commands are exposed
        config: Optional configuration, reported by /api/config

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="Zonn Bridge",
        description="Playback state and controls for the focus timer",
        version="0.1.0",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    app.state.orchestrator = orchestrator
    app.state.config = config

    port = config.gateway_port if config else 6061
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            f"http://localhost:{port}",
            f"http://127.0.0.1:{port}",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    templates_dir = Path(__file__).parent / "templates"
    templates = Jinja2Templates(directory=str(templates_dir))
    app.state.templates = templates

    app.include_router(playback.router, prefix="/api", tags=["Playback"])
    app.include_router(permission.router, prefix="/api/permission", tags=["Permission"])
    app.include_router(system.router, prefix="/api", tags=["System"])
    app.include_router(websocket.router, tags=["WebSocket"])

    # Push every orchestrator change to WebSocket clients
    pending: set = set()

    def on_change(snapshot: OrchestratorSnapshot) -> None:
        if not websocket.manager.active_connections:
            return
        task = asyncio.get_running_loop().create_task(
            websocket.broadcast_snapshot(snapshot)
        )
        pending.add(task)
        task.add_done_callback(pending.discard)

    app.state.unsubscribe = orchestrator.subscribe(on_change)

    @app.get("/", response_class=HTMLResponse)
    async def dashboard(request: Request):
        """Dashboard home page."""
        return templates.TemplateResponse(
            request,
            "dashboard.html",
            {
                "snapshot": orchestrator.snapshot(),
                "target_name": orchestrator.target_name,
            },
        )

    logger.info("Gateway application created")
    return app
