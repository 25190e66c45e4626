from __future__ import annotations

import json
from typing import Any, AsyncIterator, Callable, Iterable

import httpx
import pytest

from council_client.config import settings

BASE_URL = "http://council.test"


def frame(payload: dict[str, Any]) -> bytes:
    return f"data: {json.dumps(payload)}\n\n".encode("utf-8")


async def chunked(chunks: Iterable[bytes | str]) -> AsyncIterator[bytes | str]:
    for chunk in chunks:
        yield chunk


def mock_factory(handler: Callable[[httpx.Request], httpx.Response]) -> Callable[[], httpx.AsyncClient]:
    """Client factory whose clients answer every request through ``handler``."""

    def factory() -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))

    return factory


def council_payload() -> dict[str, Any]:
    return {
        "success": True,
        "council": {
            "a": {"id": "openai/gpt-4o", "name": "Analyst", "strength": "Analysis", "color": "#10a37f"},
            "b": {"id": "anthropic/claude-3-haiku", "name": "Brief", "strength": "Brevity", "color": "#d97706"},
            "c": {"id": "google/gemini-pro", "name": "Critic", "strength": "Critique", "color": "#4285f4"},
            "d": {"id": "mistralai/mistral-large", "name": "Devil", "strength": "Contrarian", "color": "#ff7000"},
        },
    }


def result_payload(trace_id: str = "trace-1", question: str = "Q1") -> dict[str, Any]:
    return {
        "traceId": trace_id,
        "question": question,
        "business": "acme",
        "notebook": None,
        "brief": {"summary": "context"},
        "council": [
            {"memberId": "a", "memberName": "Analyst", "response": "ra", "timing": 1200, "model": "openai/gpt-4o"},
            {"memberId": "b", "memberName": "Brief", "response": {"content": "rb"}, "timing": 900},
            {"memberId": "c", "memberName": "Critic", "response": "rc", "timing": 1500},
            {"memberId": "d", "memberName": "Devil", "error": "rate limited"},
        ],
        "synthesis": "final answer",
        "meta": {
            "totalTime": 4200,
            "totalCost": 0.0123,
            "modelsUsed": ["openai/gpt-4o"],
            "successCount": 3,
            "failCount": 1,
        },
    }


@pytest.fixture(autouse=True)
def _stable_settings(monkeypatch):
    monkeypatch.delenv("SSLKEYLOGFILE", raising=False)
    monkeypatch.setattr(settings, "orchestrator_base_url", BASE_URL)
    monkeypatch.setattr(settings, "orchestrator_api_key", "")
    monkeypatch.setattr(settings, "stream_idle_timeout_seconds", 180.0)
    monkeypatch.setattr(settings, "history_limit", 10)
