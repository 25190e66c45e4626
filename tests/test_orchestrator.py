from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx
import pytest

from conftest import BASE_URL, council_payload, frame, result_payload
from council_client.errors import ValidationError
from council_client.models.session import SessionStatus
from council_client.orchestrator import CouncilOrchestrator
from council_client.services.controller import CANCELLED_MESSAGE, SessionObservers

STREAM_FRAMES = [
    {"type": "start", "traceId": "trace-1", "question": "Q1", "business": "acme"},
    {"type": "generating_brief", "message": "Generating research brief..."},
    {"type": "brief_ready", "brief": {"summary": "context"}},
    {"type": "dispatching", "members": ["a", "b", "c", "d"]},
    {"type": "council_response", "memberId": "a", "memberName": "Analyst", "response": "ra", "timing": 1200},
    {"type": "council_response", "memberId": "b", "memberName": "Brief", "response": "rb", "timing": 900},
    {"type": "council_error", "memberId": "d", "memberName": "Devil", "error": "rate limited"},
    {"type": "council_response", "memberId": "c", "memberName": "Critic", "response": "rc", "timing": 1500},
    {"type": "synthesizing", "message": "Synthesizing..."},
    {"type": "synthesis_complete", "synthesis": "final answer", "timing": 2000},
    {"type": "complete", "result": result_payload()},
]


class FakeBackend:
    """MockTransport handler standing in for the orchestration backend."""

    def __init__(self, stream: Any = None):
        self.stream = stream if stream is not None else b"".join(frame(f) for f in STREAM_FRAMES)
        self.calls: list[str] = []
        self.sessions: list[dict] = [{"traceId": "trace-1", "question": "Q1"}]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append(path)
        if path == "/api/orchestrate/council":
            return httpx.Response(200, json=council_payload())
        if path == "/api/orchestrate/sessions":
            return httpx.Response(200, json={"success": True, "sessions": list(self.sessions)})
        if path == "/api/orchestrate":
            return httpx.Response(200, json={"success": True, **result_payload()})
        if path == "/api/orchestrate/stream":
            if callable(self.stream):
                return self.stream(request)
            return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=self.stream)
        return httpx.Response(404)

    def factory(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(self))

    def count(self, path: str) -> int:
        return self.calls.count(path)


def _orchestrator(backend: FakeBackend, **kwargs) -> CouncilOrchestrator:
    kwargs.setdefault("stream_enabled", True)
    return CouncilOrchestrator(
        client_factory=backend.factory,
        stream_client_factory=backend.factory,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_streamed_session_completes_and_refreshes_history():
    backend = FakeBackend()
    orchestrator = _orchestrator(backend)
    events = []

    session = await orchestrator.ask("Q1", SessionObservers(on_event=events.append))

    assert session.status is SessionStatus.COMPLETE
    assert session.trace_id == "trace-1"
    assert (session.meta.success_count, session.meta.fail_count) == (3, 1)
    assert session.responses["a"].model == "openai/gpt-4o"
    assert len(events) == 11
    assert session.meta.total_time_ms == 4200
    assert session.meta.total_cost == pytest.approx(0.0123)
    assert backend.count("/api/orchestrate") == 0
    assert backend.count("/api/orchestrate/sessions") == 1
    assert [s.trace_id for s in orchestrator.history.summaries] == ["trace-1"]
    assert orchestrator.registry.get("trace-1") is session
    assert orchestrator.active_session is None


@pytest.mark.asyncio
async def test_streamed_session_waits_for_stored_result():
    backend = FakeBackend()
    backend.sessions = []
    stored = result_payload()
    stored["notebook"] = "acme-notebook"

    async def lazy_stream():
        for payload in STREAM_FRAMES[:-1]:
            await asyncio.sleep(0)
            yield frame(payload)
        # the backend persists the session before sending the final result
        backend.sessions.append({"traceId": "trace-1", "question": "Q1", "time": 4200, "cost": 0.0123})
        yield frame({"type": "complete", "result": stored})

    backend.stream = lambda request: httpx.Response(200, content=lazy_stream())

    orchestrator = _orchestrator(backend)

    session = await orchestrator.ask("Q1")

    assert session.status is SessionStatus.COMPLETE
    assert session.notebook == "acme-notebook"
    assert session.meta.total_time_ms == 4200
    assert session.meta.total_cost == pytest.approx(0.0123)
    assert [s.trace_id for s in orchestrator.history.summaries] == ["trace-1"]


@pytest.mark.asyncio
async def test_stream_open_failure_falls_back_exactly_once():
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    backend = FakeBackend(stream=refuse)

    session = await _orchestrator(backend).ask("Q1")

    assert session.status is SessionStatus.COMPLETE
    assert session.synthesis == "final answer"
    assert backend.count("/api/orchestrate") == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(503, text="stream unavailable"),
        httpx.Response(200, content=b""),
        httpx.Response(200, content=b": ping\n\n"),
    ],
)
async def test_unusable_stream_falls_back_exactly_once(response):
    backend = FakeBackend(stream=lambda request: response)

    session = await _orchestrator(backend).ask("Q1")

    assert session.status is SessionStatus.COMPLETE
    assert backend.count("/api/orchestrate") == 1


@pytest.mark.asyncio
async def test_error_after_events_fails_without_fallback():
    frames = STREAM_FRAMES[:5] + [{"type": "error", "error": "synthesizer crashed"}]
    backend = FakeBackend(stream=b"".join(frame(f) for f in frames))

    session = await _orchestrator(backend).ask("Q1")

    assert session.status is SessionStatus.FAILED
    assert session.error == "synthesizer crashed"
    assert list(session.responses) == ["a"]
    assert backend.count("/api/orchestrate") == 0
    assert backend.count("/api/orchestrate/sessions") == 1


@pytest.mark.asyncio
async def test_streaming_disabled_uses_single_request():
    backend = FakeBackend()

    session = await _orchestrator(backend, stream_enabled=False).ask("Q1")

    assert session.status is SessionStatus.COMPLETE
    assert backend.count("/api/orchestrate/stream") == 0
    assert backend.count("/api/orchestrate") == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("question", ["", "   "])
async def test_empty_question_is_rejected_before_any_request(question):
    backend = FakeBackend()

    with pytest.raises(ValidationError):
        await _orchestrator(backend).ask(question)

    assert backend.calls == []


@pytest.mark.asyncio
async def test_new_question_cancels_previous_session():
    async def hanging_stream():
        yield frame(STREAM_FRAMES[0])
        yield frame(STREAM_FRAMES[3])
        await asyncio.Event().wait()

    def stream(request: httpx.Request) -> httpx.Response:
        if json.loads(request.content)["question"] == "first":
            return httpx.Response(200, content=hanging_stream())
        return httpx.Response(200, content=b"".join(frame(f) for f in STREAM_FRAMES))

    orchestrator = _orchestrator(FakeBackend(stream=stream), idle_timeout=0)
    first_task = asyncio.create_task(orchestrator.ask("first"))
    await asyncio.sleep(0.05)
    assert orchestrator.active_session is not None

    second = await orchestrator.ask("second")
    first = await asyncio.wait_for(first_task, timeout=1)

    assert first.status is SessionStatus.FAILED
    assert first.error == CANCELLED_MESSAGE
    assert second.status is SessionStatus.COMPLETE


@pytest.mark.asyncio
async def test_cancel_without_active_session():
    assert await _orchestrator(FakeBackend()).cancel() is False
