"""End-to-end runs against an in-process FastAPI stand-in for the backend."""
from __future__ import annotations

import asyncio

import httpx
import pytest
from fastapi import FastAPI, Header, HTTPException
from fastapi.responses import StreamingResponse

from conftest import BASE_URL, council_payload, frame, result_payload
from council_client.config import settings
from council_client.errors import SessionNotFoundError
from council_client.models.schemas import QuestionRequest
from council_client.models.session import SessionStatus
from council_client.orchestrator import CouncilOrchestrator

API_KEY = "test-key"


def create_backend(stored: dict[str, dict]) -> FastAPI:
    app = FastAPI()

    def check_key(key: str | None) -> None:
        if key != API_KEY:
            raise HTTPException(status_code=401, detail="Invalid API key")

    @app.get("/api/orchestrate/council")
    async def council(x_api_key: str | None = Header(default=None)):
        check_key(x_api_key)
        return council_payload()

    @app.post("/api/orchestrate/stream")
    async def stream(request: QuestionRequest, x_api_key: str | None = Header(default=None)):
        check_key(x_api_key)
        trace_id = f"trace-{len(stored) + 1}"

        async def event_generator():
            yield frame({"type": "start", "traceId": trace_id, "question": request.question})
            yield frame({"type": "dispatching", "members": ["a", "b", "c", "d"]})
            for member_id in ("c", "a", "d", "b"):
                await asyncio.sleep(0)
                if member_id == "d":
                    yield frame({"type": "council_error", "memberId": "d", "error": "rate limited"})
                else:
                    yield frame(
                        {"type": "council_response", "memberId": member_id, "response": f"r{member_id}", "timing": 10}
                    )
            yield frame({"type": "synthesizing"})
            yield frame({"type": "synthesis_complete", "synthesis": "final answer", "timing": 20})
            stored[trace_id] = result_payload(trace_id=trace_id, question=request.question)
            yield frame({"type": "complete", "result": stored[trace_id]})

        return StreamingResponse(event_generator(), media_type="text/event-stream")

    @app.get("/api/orchestrate/sessions")
    async def sessions(limit: int = 10, x_api_key: str | None = Header(default=None)):
        check_key(x_api_key)
        summaries = [
            {"traceId": trace_id, "question": result["question"], "time": 4200, "cost": 0.01, "successCount": 3}
            for trace_id, result in reversed(list(stored.items()))
        ]
        return {"success": True, "sessions": summaries[:limit]}

    @app.get("/api/orchestrate/sessions/{trace_id}")
    async def session_detail(trace_id: str, x_api_key: str | None = Header(default=None)):
        check_key(x_api_key)
        if trace_id not in stored:
            raise HTTPException(status_code=404, detail="Session not found")
        return {"success": True, "session": stored[trace_id]}

    return app


@pytest.fixture
def orchestrator(monkeypatch):
    monkeypatch.setattr(settings, "orchestrator_api_key", API_KEY)
    app = create_backend({})

    def factory() -> httpx.AsyncClient:
        from council_client.api_client import auth_headers

        return httpx.AsyncClient(
            base_url=BASE_URL,
            headers=auth_headers(),
            transport=httpx.ASGITransport(app=app),
        )

    return CouncilOrchestrator(client_factory=factory, stream_client_factory=factory, stream_enabled=True)


@pytest.mark.asyncio
async def test_ask_then_browse_history(orchestrator):
    session = await orchestrator.ask("Q1: content strategy for a new product")

    assert session.status is SessionStatus.COMPLETE
    assert session.trace_id == "trace-1"
    assert (session.meta.success_count, session.meta.fail_count) == (3, 1)
    assert [s.trace_id for s in orchestrator.history.summaries] == ["trace-1"]

    stored = await orchestrator.history.load("trace-1")

    assert stored.read_only
    assert stored.synthesis == session.synthesis
    assert set(stored.responses) == set(session.responses)


@pytest.mark.asyncio
async def test_history_lists_latest_first(orchestrator):
    await orchestrator.ask("first question")
    await orchestrator.ask("second question")

    summaries = await orchestrator.history.list(1)

    assert [s.question for s in summaries] == ["second question"]


@pytest.mark.asyncio
async def test_unknown_session_is_not_found(orchestrator):
    with pytest.raises(SessionNotFoundError):
        await orchestrator.history.load("trace-404")
