"""Tests for GET /api/chat/stream and GET /api/chat/history."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from qala.api.routers.chat import chat_stream
from qala.knowledge.entries import CONTACT_ENTRY_INDEX, QALA_INSTITUTE

pytestmark = pytest.mark.unit

CONTACT_WORD = "پەیوەندی"


class TestKnowledgeAnswers:
    async def test_contact_question_streams_canned_lines(self, client, llm_upstream, sse_events):
        resp = await client.get("/api/chat/stream", params={"message": CONTACT_WORD})

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        assert resp.headers["cache-control"] == "no-cache"

        events = sse_events(resp.text)
        assert events[-1] == "[DONE]"
        lines = events[:-1]
        assert len(lines) == 5
        assert [line for line in lines if line.startswith("☎️")] == [
            "☎️07705009002",
            "☎️07702438095",
            "☎️07701925836",
        ]
        expected = [
            line for line in QALA_INSTITUTE[CONTACT_ENTRY_INDEX].response.split("\n") if line
        ]
        assert lines == expected
        assert llm_upstream.calls == 0

    async def test_knowledge_frames_are_paced(self, client, sleep):
        await client.get("/api/chat/stream", params={"message": CONTACT_WORD})
        assert len(sleep.delays) == 5
        assert sleep.delays == sorted(sleep.delays)


class TestLlmAnswers:
    async def test_unmatched_question_streams_llm_fragments(
        self, client, llm_upstream, sse_events
    ):
        resp = await client.get("/api/chat/stream", params={"message": "hello world"})
        assert resp.status_code == 200
        assert sse_events(resp.text) == ["Hel", "lo", "[DONE]"]
        assert llm_upstream.calls == 1

    async def test_upstream_failure_becomes_error_frame(self, client, llm_upstream, sse_events):
        llm_upstream.response = lambda: httpx.Response(500, text="boom")

        resp = await client.get("/api/chat/stream", params={"message": "hello world"})

        assert resp.status_code == 200
        assert sse_events(resp.text) == ["Error connecting to AI service: 500", "[DONE]"]

    async def test_missing_api_key_becomes_error_frame(
        self, client, services, llm_upstream, sse_events
    ):
        services.config.llm.api_key = ""

        resp = await client.get("/api/chat/stream", params={"message": "hello world"})

        assert sse_events(resp.text) == ["Error: AI service is not configured", "[DONE]"]
        assert llm_upstream.calls == 0


class TestDisconnect:
    async def test_llm_stream_releases_resources_when_client_leaves(self, services):
        request = MagicMock()
        request.is_disconnected = AsyncMock(side_effect=[False, True, True, True])

        response = await chat_stream(
            request, message="hello world", session_id="s-gone", services=services
        )
        frames = [frame async for frame in response.body_iterator]

        assert frames == ["data: Hel\n\n"]
        assert services.pool.active == 0
        assert services.throttler.stats.current_concurrent == 0


class TestValidation:
    @pytest.mark.parametrize("params", [{}, {"message": ""}, {"message": "   "}])
    async def test_message_required(self, client, params):
        resp = await client.get("/api/chat/stream", params=params)
        assert resp.status_code == 400
        assert resp.json() == {
            "error": {"code": "VALIDATION_ERROR", "message": "Message is required"}
        }


class TestHistory:
    async def test_conversation_is_recorded(self, client, services):
        await client.get(
            "/api/chat/stream", params={"message": CONTACT_WORD, "sessionId": "s-1"}
        )
        await services.drain()

        resp = await client.get("/api/chat/history", params={"sessionId": "s-1"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["sessionId"] == "s-1"
        assert [m["role"] for m in body["messages"]] == ["user", "assistant"]
        assert body["messages"][0]["content"] == CONTACT_WORD
        assert body["messages"][1]["content"] == QALA_INSTITUTE[CONTACT_ENTRY_INDEX].response
        assert body["messages"][0]["sessionId"] == "s-1"

    async def test_llm_answer_is_recorded(self, client, services):
        await client.get("/api/chat/stream", params={"message": "hello world", "sessionId": "s-2"})
        await services.drain()

        resp = await client.get("/api/chat/history", params={"sessionId": "s-2"})
        assert [m["content"] for m in resp.json()["messages"]] == ["hello world", "Hello"]

    async def test_new_session_is_created(self, client):
        resp = await client.get("/api/chat/history")
        body = resp.json()
        assert body["sessionId"]
        assert body["messages"] == []
