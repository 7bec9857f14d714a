"""Chat history storage abstraction."""

from qala.storage.memory import ChatMessage, ChatSession, InMemoryMessageStore, MessageStore

__all__ = ["ChatMessage", "ChatSession", "InMemoryMessageStore", "MessageStore"]
