"""Chat session and message store.

The chat pipeline only needs a handful of operations, expressed by the
:class:`MessageStore` protocol.  :class:`InMemoryMessageStore` keeps
everything in process memory and is lost on restart.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Literal, Protocol

Role = Literal["user", "assistant"]


@dataclass(frozen=True)
class ChatSession:
    """A browser conversation keyed by its client-visible id."""

    id: int
    session_id: str
    created_at: datetime
    last_active: datetime


@dataclass(frozen=True)
class ChatMessage:
    """One stored chat turn."""

    id: int
    role: Role
    content: str
    session_id: str
    timestamp: datetime


class MessageStore(Protocol):
    """Protocol for chat history backends."""

    async def get_session(self, session_id: str) -> ChatSession | None:
        """Return the session, or None if it was never created."""
        ...

    async def create_session(self, session_id: str) -> ChatSession:
        """Create and return a new session for *session_id*."""
        ...

    async def create_message(self, role: Role, content: str, session_id: str) -> ChatMessage:
        """Append a message and bump the session's last-active time.

        Args:
            role: Who produced the message.
            content: Full message text.
            session_id: Owning session id.

        Returns:
            The stored message with its id and timestamp.
        """
        ...

    async def get_messages(self, session_id: str) -> list[ChatMessage]:
        """Return the session's messages in insertion order."""
        ...


class InMemoryMessageStore:
    """Dictionary-backed :class:`MessageStore`."""

    def __init__(self) -> None:
        self._sessions: dict[str, ChatSession] = {}
        self._messages: dict[int, ChatMessage] = {}
        self._session_ids = itertools.count(1)
        self._message_ids = itertools.count(1)

    async def get_session(self, session_id: str) -> ChatSession | None:
        return self._sessions.get(session_id)

    async def create_session(self, session_id: str) -> ChatSession:
        now = datetime.now(UTC)
        session = ChatSession(
            id=next(self._session_ids),
            session_id=session_id,
            created_at=now,
            last_active=now,
        )
        self._sessions[session_id] = session
        return session

    async def create_message(self, role: Role, content: str, session_id: str) -> ChatMessage:
        message = ChatMessage(
            id=next(self._message_ids),
            role=role,
            content=content,
            session_id=session_id,
            timestamp=datetime.now(UTC),
        )
        self._messages[message.id] = message
        self._touch(session_id, message.timestamp)
        return message

    def _touch(self, session_id: str, when: datetime) -> None:
        session = self._sessions.get(session_id)
        if session is not None:
            self._sessions[session_id] = replace(session, last_active=when)

    async def get_messages(self, session_id: str) -> list[ChatMessage]:
        return sorted(
            (m for m in self._messages.values() if m.session_id == session_id),
            key=lambda m: m.id,
        )
