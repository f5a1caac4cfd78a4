"""FastAPI server for the SMS support agent.

Run with:
    uv run uvicorn src.server:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response

from src.agent import create_interaction_loop
from src.api.routes import router
from src.config import SERVER_HOST, SERVER_PORT
from src.services.appointment_client import close_appointment_client
from src.services.sms import ConsoleSMSService

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Start-up: compile the interaction loop once and store it in app state.

    The loop holds no per-conversation state, so a single instance serves
    every inbound message concurrently.
    """
    logger.info("Compiling interaction loop…")
    application.state.loop = create_interaction_loop()
    application.state.sms = ConsoleSMSService()
    logger.info("Agent ready.")
    yield
    await close_appointment_client()


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="SMS Support Agent",
    description=(
        "AI-powered SMS assistant for phone repairs — schedules appointments, "
        "escalates to humans and answers customers by text."
    ),
    version="1.0.0",
    lifespan=lifespan,
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a unique request ID to every request for log correlation."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info(
        "[%s] %s %s", request_id, request.method, request.url.path,
    )
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "SMS Support Agent",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }


# ── CLI entry point ──────────────────────────────────────────────────

if __name__ == "__main__":
    logger.info("Starting SMS support API server on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "src.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=True,
    )
