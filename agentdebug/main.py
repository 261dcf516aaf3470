"""agentdebug FastAPI app: main application entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from agentdebug import config
from agentdebug.observability import initialize as initialize_observability, shutdown as shutdown_observability
from agentdebug.routers.debug import debug_router
from agentdebug.store import session_store
from agentdebug.trajectories import trajectory_context
from agentdebug.watcher import session_watcher

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("agentdebug")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("agentdebug starting up")
    initialize_observability(app)

    if config.WATCH_ENABLED and config.WATCH_DIR:
        await session_watcher.start(Path(config.WATCH_DIR).expanduser())

    yield

    logger.info("agentdebug shutting down")
    await session_watcher.stop()
    shutdown_observability(app)


app = FastAPI(
    title="agentdebug API",
    description="Normalization, analysis and diagrams for agent execution logs",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_ORIGIN,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(debug_router)


@app.get("/api/health")
def health():
    """Health check endpoint."""
    current = session_store.current()
    return {
        "status": "ok",
        "session": current.sessionId if current else None,
        "trajectories": len(trajectory_context),
        "watcher": "running" if session_watcher.is_running else "stopped",
    }
