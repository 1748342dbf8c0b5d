"""
ImagineThisPrinted Design Studio - FastAPI Backend

Guided AI design sessions (prompt, style, color, generation, enhancement
tools) with narration, plus the design-session and ITC wallet records service.
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path

import httpx
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from .models import database
from .routers import sessions, studio, wallet
from .services.studio_config import StudioConfig
from .services.studio_manager import StudioManager
from .websocket.channel import StudioChannel

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Resolve paths relative to the backend directory
BACKEND_DIR = Path(__file__).resolve().parent.parent
PROJECT_DIR = BACKEND_DIR.parent

# When running in Docker, use absolute paths for mounted volumes
if Path("/app/config/studio.yaml").exists():
    CONFIG_PATH = Path("/app/config/studio.yaml")
    DATA_DIR = Path("/app/data")
else:
    CONFIG_PATH = PROJECT_DIR / "config" / "studio.yaml"
    DATA_DIR = PROJECT_DIR / "data"


def _client(base_url: str) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=base_url, timeout=httpx.Timeout(30.0, connect=10.0))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting design studio backend...")

    # 1. Load studio config
    config = StudioConfig.load_from_yaml(CONFIG_PATH)

    # 2. Initialize database
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    database.configure(config.database_url)
    await database.init_db()
    logger.info("Database initialized")

    # 3. Collaborator clients
    collab = config.collaborators
    generation_http = _client(collab.generation_url)
    voice_http = _client(collab.voice_url)
    records_http = _client(collab.records_url)

    # 4. Channel and workflow manager
    channel = StudioChannel(playback_timeout=config.narration.playback_timeout)
    manager = StudioManager(config, channel, generation_http, voice_http, records_http)

    app.state.config = config
    app.state.channel = channel
    app.state.studio = manager

    logger.info("Backend ready!")
    yield

    # Shutdown
    logger.info("Shutting down...")
    await manager.close_all()
    for client in (generation_http, voice_http, records_http):
        await client.aclose()


app = FastAPI(title="Design Studio", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(studio.router)
app.include_router(sessions.router)
app.include_router(wallet.router)


# WebSocket endpoint for frontend workflow connections
@app.websocket("/ws/studio/{workflow_id}")
async def studio_websocket(websocket: WebSocket, workflow_id: str):
    await websocket.accept()
    channel: StudioChannel = app.state.channel
    await channel.connect(workflow_id, websocket)

    workflow = app.state.studio.workflows.get(workflow_id)
    if workflow is not None:
        await channel.send(workflow_id, {
            "type": "snapshot",
            "snapshot": workflow.snapshot().model_dump(mode="json"),
        })

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                continue  # heartbeat or malformed, ignore
            if isinstance(message, dict):
                channel.handle_client_message(message)
    except WebSocketDisconnect:
        await channel.disconnect(workflow_id, websocket)


@app.get("/health")
async def health():
    """Simple health check endpoint."""
    manager: StudioManager = app.state.studio
    return {
        "status": "ok",
        "workflows_open": len(manager.workflows),
    }
