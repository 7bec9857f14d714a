"""Shared fixtures for the qala test suite."""

from __future__ import annotations

import json
from collections.abc import Callable

import httpx
import pytest

from qala.config import QalaConfig

_ENV_KNOBS = (
    "COHERE_API_KEY",
    "COHERE_KEY",
    "PORT",
    "HOST",
    "CORS_ORIGIN",
    "CACHE_SIZE",
    "CACHE_TTL_MINUTES",
    "MAX_CONNECTIONS",
    "ENABLE_THROTTLING",
    "THROTTLE_CHAT_TOKENS",
    "THROTTLE_CHAT_REFILL",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer environment variables out of config-dependent tests."""
    for name in _ENV_KNOBS:
        monkeypatch.delenv(name, raising=False)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SleepRecorder:
    """Zero-wait stand-in for ``asyncio.sleep`` that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def config() -> QalaConfig:
    cfg = QalaConfig()
    cfg.llm.api_key = "test-key"
    cfg.stream.base_delay_s = 0.0
    return cfg


def _cohere_lines(*texts: str, finish: bool = True) -> bytes:
    events = [{"event_type": "stream-start", "is_finished": False}]
    events += [
        {"event_type": "text-generation", "is_finished": False, "text": text} for text in texts
    ]
    if finish:
        events.append(
            {
                "event_type": "stream-end",
                "is_finished": True,
                "response": {"text": "".join(texts)},
            }
        )
    return ("\n".join(json.dumps(e, ensure_ascii=False) for e in events) + "\n").encode()


@pytest.fixture
def cohere_body() -> Callable[..., bytes]:
    """Build a newline-delimited Cohere stream body carrying the given texts."""
    return _cohere_lines


@pytest.fixture
def upstream() -> Callable[[Callable[[httpx.Request], httpx.Response]], httpx.AsyncClient]:
    """Factory for an upstream client backed by ``httpx.MockTransport``."""

    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _make
