"""Pydantic request/response models for the chat API.

Successful admin responses follow ``{"data": T, "meta": {...}}``; errors use
``{"error": {"code": "...", "message": "..."}}``.  Chat history keeps the
camelCase shape the browser client reads.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# ---------------------------------------------------------------------------
# Base response wrappers
# ---------------------------------------------------------------------------


class ApiMeta(BaseModel):
    """Extensible metadata bag attached to every API response."""

    model_config = {"extra": "allow"}


class ApiResponse[T](BaseModel):
    """Generic API response wrapper."""

    data: T
    meta: ApiMeta = Field(default_factory=ApiMeta)


class ErrorDetail(BaseModel):
    """Structured error payload."""

    code: str
    message: str
    details: dict | None = None


class ErrorResponse(BaseModel):
    """Standard error response envelope."""

    error: ErrorDetail


# ---------------------------------------------------------------------------
# Chat history
# ---------------------------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatMessageModel(_CamelModel):
    id: int
    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime
    session_id: str


class ChatHistoryResponse(_CamelModel):
    session_id: str
    messages: list[ChatMessageModel]


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


class ServiceStats(BaseModel):
    """Snapshot of throttling, upstream and knowledge base state."""

    throttling: dict[str, Any]
    llm: dict[str, Any]
    knowledge: dict[str, Any]
