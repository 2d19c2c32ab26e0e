"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class ChatMessage(BaseModel):
    """One earlier turn of the conversation."""

    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    """Incoming chat message from the frontend.

    The frontend owns the conversation and sends the previous turns with
    every request.
    """

    message: str = Field(..., min_length=1, max_length=4000, description="The user's message")
    history: list[ChatMessage] = Field(
        default_factory=list,
        max_length=100,
        description="Earlier turns of this conversation, oldest first",
    )


class ErrorResponse(BaseModel):
    """Error returned before streaming starts."""

    error: str
    hint: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "studio-assistant"
