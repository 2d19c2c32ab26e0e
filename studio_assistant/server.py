"""FastAPI server for the Studio Assistant.

Run with:
    uvicorn studio_assistant.server:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from studio_assistant.agent import create_studio_agent
from studio_assistant.api.routes import router
from studio_assistant.config import (
    CORS_ORIGINS,
    SERVER_HOST,
    SERVER_PORT,
    ConfigurationError,
)
from studio_assistant.services.mindbody_client import MindbodySession

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Create the Mindbody session, start the cache sweeper, compile the agent.

    A missing ANTHROPIC_API_KEY does not stop the server from booting; it
    is stored on app state and every chat request reports it.
    """
    session = MindbodySession()
    sweeper = asyncio.create_task(session.cache.run_sweeper(), name="cache-sweeper")
    application.state.mindbody = session
    application.state.startup_error = None
    application.state.agent = None

    logger.info("Compiling LangGraph agent…")
    try:
        application.state.agent = create_studio_agent()
        logger.info("Agent ready.")
    except ConfigurationError as exc:
        logger.error("Agent not available: %s", exc)
        application.state.startup_error = exc

    yield

    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper
    await session.aclose()
    logger.info("Mindbody session closed.")


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="Studio Assistant",
    description=(
        "Conversational assistant for fitness-studio staff, backed by the "
        "Mindbody public API."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# ── CORS (needed for the chat frontend) ─────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a unique request ID to every request for log correlation.

    The ID is added to the response headers (``X-Request-ID``) so the
    client can reference it when reporting a problem.
    """
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info("[%s] %s %s", request_id, request.method, request.url.path)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Studio Assistant",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }


# ── CLI entry point ──────────────────────────────────────────────────

if __name__ == "__main__":
    logger.info("Starting Studio Assistant API server on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "studio_assistant.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=True,
    )
