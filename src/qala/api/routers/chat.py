"""Chat endpoints: SSE answer stream and session history.

``GET /api/chat/stream`` first asks the knowledge base; a hit is paced out
locally, a miss goes to the upstream LLM.  Either way the stream ends with
``data: [DONE]``.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import aclosing

from fastapi import APIRouter, Depends, Query
from starlette.requests import Request
from starlette.responses import StreamingResponse

from qala.api.deps import ChatServices, get_services
from qala.api.models import ChatHistoryResponse, ChatMessageModel
from qala.connectors.cohere import LLMUnavailableError, UpstreamStatusError
from qala.core.logging import set_session_context
from qala.core.timing import PerformanceTimer
from qala.knowledge.entries import KnowledgeEntry
from qala.storage.memory import MessageStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["chat"])

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


async def _resolve_session(store: MessageStore, session_id: str | None) -> str:
    session_id = session_id or uuid.uuid4().hex
    if await store.get_session(session_id) is None:
        await store.create_session(session_id)
    return session_id


def describe_stream_error(exc: Exception) -> str:
    """Client-facing text for a failed answer."""
    if isinstance(exc, UpstreamStatusError):
        return f"Error connecting to AI service: {exc.status_code}"
    if isinstance(exc, LLMUnavailableError):
        return "Error: AI service is not configured"
    return "Error processing your request"


async def _knowledge_answer(
    services: ChatServices, entry: KnowledgeEntry, session_id: str
) -> AsyncIterator[str]:
    set_session_context(session_id)
    async for frame in services.delivery.knowledge_frames(entry.response):
        yield frame
    services.persist("assistant", entry.response, session_id)


async def _llm_answer(services: ChatServices, message: str, session_id: str) -> AsyncIterator[str]:
    set_session_context(session_id)
    timer = PerformanceTimer()
    stream = services.llm.stream_chat(message)
    async with aclosing(services.delivery.llm_frames(stream)) as frames:
        async for frame in frames:
            yield frame
    logger.info(
        "LLM answer streamed in %.0fms, response length: %d", timer.elapsed(), len(stream.text)
    )
    if stream.text:
        services.persist("assistant", stream.text, session_id)


@router.get("/stream")
async def chat_stream(
    request: Request,
    message: str | None = Query(default=None),
    session_id: str | None = Query(default=None, alias="sessionId"),
    services: ChatServices = Depends(get_services),
) -> StreamingResponse:
    """Stream an answer to *message* as Server-Sent Events."""
    if not message or not message.strip():
        raise ValueError("Message is required")

    session_id = await _resolve_session(services.store, session_id)
    set_session_context(session_id)
    services.persist("user", message, session_id)

    async with services.throttler.throttle("knowledge"):
        entry = services.knowledge.find_matching(message)

    if entry is not None:
        logger.info("Answering from knowledge base")
        frames = _knowledge_answer(services, entry, session_id)
    else:
        frames = _llm_answer(services, message, session_id)

    return StreamingResponse(
        services.delivery.deliver(frames, request, describe_error=describe_stream_error),
        media_type="text/event-stream",
        headers=_SSE_HEADERS,
    )


@router.get("/history", response_model=ChatHistoryResponse)
async def chat_history(
    session_id: str | None = Query(default=None, alias="sessionId"),
    services: ChatServices = Depends(get_services),
) -> ChatHistoryResponse:
    """Return every stored message of the session, creating it if needed."""
    session_id = await _resolve_session(services.store, session_id)
    messages = await services.store.get_messages(session_id)
    return ChatHistoryResponse(
        session_id=session_id,
        messages=[
            ChatMessageModel(
                id=m.id,
                role=m.role,
                content=m.content,
                timestamp=m.timestamp,
                session_id=m.session_id,
            )
            for m in messages
        ],
    )
