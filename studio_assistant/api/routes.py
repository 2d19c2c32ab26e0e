"""FastAPI route definitions for the Studio Assistant API."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse

from studio_assistant.agent import describe_failure, stream_chat
from studio_assistant.api.schemas import ChatRequest, ErrorResponse, HealthResponse
from studio_assistant.config import (
    CHAT_TIMEOUT_SECONDS,
    ConfigurationError,
    load_mindbody_credentials,
)
from studio_assistant.tools.mindbody import build_mindbody_tools

logger = logging.getLogger(__name__)

router = APIRouter()


def _error(status_code: int, error: str, hint: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, hint=hint).model_dump(),
    )


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@router.post(
    "/chat",
    responses={500: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def chat(request: ChatRequest, http_request: Request):
    """Stream the assistant's reply as newline-delimited JSON events.

    Configuration problems are reported as a plain JSON error before any
    streaming starts.  Failures once streaming has begun are sent as a final
    ``{"type": "error"}`` event, since the status line is already out.
    """
    state = http_request.app.state
    request_id = getattr(http_request.state, "request_id", "?")

    startup_error = getattr(state, "startup_error", None)
    if startup_error is not None:
        return _error(500, str(startup_error), startup_error.hint)

    agent = getattr(state, "agent", None)
    session = getattr(state, "mindbody", None)
    if agent is None or session is None:
        return _error(
            503,
            "The assistant is still starting up.",
            "Please try again in a moment.",
        )

    try:
        credentials = load_mindbody_credentials()
    except ConfigurationError as exc:
        logger.error("[%s] %s", request_id, exc)
        return _error(500, str(exc), exc.hint)

    registry = build_mindbody_tools(session.client(credentials))
    history = [turn.model_dump() for turn in request.history]

    async def events() -> AsyncIterator[str]:
        # The deadline covers pulls from the agent only, never the send()
        # Starlette performs between yields.
        loop = asyncio.get_running_loop()
        deadline = loop.time() + CHAT_TIMEOUT_SECONDS
        stream = stream_chat(agent, history, request.message, registry)
        try:
            while True:
                try:
                    event = await asyncio.wait_for(
                        anext(stream), timeout=max(deadline - loop.time(), 0),
                    )
                except StopAsyncIteration:
                    break
                yield json.dumps(event, default=str) + "\n"
        except Exception as exc:
            # Full traceback stays server-side
            logger.exception("[%s] Error while streaming chat response", request_id)
            yield json.dumps({"type": "error", **describe_failure(exc)}) + "\n"
        finally:
            await stream.aclose()

    return StreamingResponse(events(), media_type="application/x-ndjson")
