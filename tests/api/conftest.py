"""Fixtures for the HTTP API tests.

Each test wires real services around a ``MockTransport`` upstream and talks
to the app through ``httpx.ASGITransport``.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable

import httpx
import pytest

from qala.api.app import create_app
from qala.api.deps import ChatServices, build_services


class UpstreamRecorder:
    """Mutable upstream handler that counts the calls it receives."""

    def __init__(self, body: bytes) -> None:
        self.calls = 0
        self.response: Callable[[], httpx.Response] = lambda: httpx.Response(200, content=body)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        return self.response()


@pytest.fixture
def llm_upstream(cohere_body) -> UpstreamRecorder:
    return UpstreamRecorder(cohere_body("Hel", "lo"))


@pytest.fixture
def services(config, upstream, llm_upstream, sleep) -> ChatServices:
    return build_services(config, http_client=upstream(llm_upstream), sleep=sleep)


@pytest.fixture
async def client(services: ChatServices) -> AsyncIterator[httpx.AsyncClient]:
    app = create_app(services=services)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    await services.aclose()


@pytest.fixture
def sse_events() -> Callable[[str], list[str]]:
    """Split an SSE body into the data payload of each event."""

    def _parse(body: str) -> list[str]:
        events = []
        for block in body.split("\n\n"):
            if not block:
                continue
            events.append("\n".join(line.removeprefix("data: ") for line in block.split("\n")))
        return events

    return _parse
