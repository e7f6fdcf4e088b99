"""
Read-only status API for a running relayer.

Provides:
- Liveness and cursor (GET /health)
- Counters and the last pass report (GET /status)
"""

from typing import Any, Optional

import structlog
import uvicorn
from fastapi import FastAPI
from pydantic import BaseModel, Field

from . import __version__
from .relayer import Relayer

logger = structlog.get_logger()


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="ok while the relayer loop is running")
    version: str
    running: bool
    in_flight: bool = Field(..., description="Whether a pass is currently executing")
    cursor: int = Field(..., description="Last block fully processed")


class StatusResponse(BaseModel):
    """Relayer counters and last pass."""

    running: bool
    in_flight: bool
    cursor: int
    last_poll_time: Optional[str] = None
    passes: int
    passes_finalized: int
    passes_failed: int
    ticks_skipped: int
    last_report: Optional[dict[str, Any]] = None


def create_app(relayer: Relayer) -> FastAPI:
    """Build the status app bound to a relayer instance."""
    app = FastAPI(
        title="attest-relayer",
        description="Status of the chain event attestation relayer",
        version=__version__,
    )

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(
            status="ok" if relayer.state.is_running else "stopped",
            version=__version__,
            running=relayer.state.is_running,
            in_flight=relayer.in_flight,
            cursor=relayer.cursor,
        )

    @app.get("/status", response_model=StatusResponse)
    async def status() -> StatusResponse:
        return StatusResponse(**relayer.snapshot())

    return app


def create_server(relayer: Relayer, host: str, port: int) -> uvicorn.Server:
    """Uvicorn server for the status app, to be served inside the relayer's loop."""
    config = uvicorn.Config(
        create_app(relayer),
        host=host,
        port=port,
        log_level="warning",
    )
    logger.info("status_server_configured", host=host, port=port)
    return uvicorn.Server(config)
