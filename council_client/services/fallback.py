from __future__ import annotations

import httpx
from loguru import logger

from council_client import api_client
from council_client.api_client import ClientFactory
from council_client.models.events import content_text
from council_client.models.schemas import OrchestrateResponse, QuestionRequest
from council_client.models.session import (
    OrchestrationSession,
    SessionStatus,
    complete_session,
    unpack_result,
)
from council_client.services import logger as log_service


class FallbackRequester:
    """Run a whole orchestration as one blocking request/response.

    Used when streaming is disabled or the stream could not be opened. The
    resulting session is finished through the same constructor as a streamed
    one, so callers cannot tell the two paths apart.
    """

    def __init__(self, client_factory: ClientFactory | None = None):
        self._client_factory = client_factory or api_client.get_client

    async def request(
        self,
        question: str,
        session: OrchestrationSession | None = None,
    ) -> OrchestrationSession:
        """Orchestrate ``question``; finishes ``session`` in place when given."""
        if session is None:
            session = OrchestrationSession(question=question)
        if session.is_terminal:
            raise ValueError(f"Session {session.key} is already {session.status.value}")

        session.advance(SessionStatus.DISPATCHING)
        body = QuestionRequest(question=question).model_dump()
        try:
            async with self._client_factory() as client:
                response = await client.post(api_client.ORCHESTRATE_PATH, json=body)
        except httpx.HTTPError as e:
            return self._fail(session, f"Orchestration request failed: {e}")

        if response.is_error:
            return self._fail(session, f"Orchestration failed: HTTP {response.status_code}")
        try:
            payload = OrchestrateResponse.model_validate(response.json())
        except ValueError as e:
            return self._fail(session, f"Unreadable orchestration response: {e}")
        if not payload.success:
            return self._fail(session, f"Orchestration failed: {payload.error or 'unknown error'}")

        results, meta = unpack_result(payload)
        if payload.trace_id:
            session.trace_id = payload.trace_id
        session.brief = payload.brief
        session.business = payload.business
        session.notebook = payload.notebook
        session.expected_members = tuple(r.member_id for r in results)
        complete_session(
            session,
            results=results,
            synthesis=content_text(payload.synthesis),
            meta=meta,
        )
        log_service.log_session_step(
            session.trace_id,
            "fallback",
            "completed",
            {"success_count": meta.success_count, "fail_count": meta.fail_count},
        )
        return session

    def _fail(self, session: OrchestrationSession, message: str) -> OrchestrationSession:
        logger.error(message)
        # no partial results on this path
        session.responses = {}
        session.fail(message)
        log_service.log_session_step(session.trace_id, "fallback", "failed", {"error": message})
        return session
