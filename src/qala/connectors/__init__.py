"""Upstream LLM connectors.

Connectors are transport adapters that:
- Build the provider request from a user message and system prompt
- Stream the provider's newline-delimited body
- Recover text fragments from malformed lines
"""

__all__ = ["cohere", "stream_parser"]
