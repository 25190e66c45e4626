from __future__ import annotations

from urllib.parse import quote

import httpx
from loguru import logger

from council_client import api_client
from council_client.api_client import ClientFactory
from council_client.config import settings
from council_client.errors import HistoryTransportError, SessionNotFoundError
from council_client.models.schemas import SessionDetailResponse, SessionListResponse
from council_client.models.session import OrchestrationSession, SessionSummary, session_from_result
from council_client.services.registry import SessionRegistry


class SessionHistoryCache:
    """Recent completed sessions, listed and rehydrated from the backend.

    History is non-critical: ``list`` never raises and falls back to the last
    good listing (or nothing).
    """

    def __init__(
        self,
        client_factory: ClientFactory | None = None,
        registry: SessionRegistry | None = None,
    ):
        self._client_factory = client_factory or api_client.get_client
        self.registry = registry
        self._summaries: list[SessionSummary] = []

    @property
    def summaries(self) -> list[SessionSummary]:
        return list(self._summaries)

    async def list(self, limit: int | None = None) -> list[SessionSummary]:
        limit = max(int(limit if limit is not None else settings.history_limit), 0)
        if limit == 0:
            return []

        try:
            async with self._client_factory() as client:
                response = await client.get(api_client.SESSIONS_PATH, params={"limit": limit})
                response.raise_for_status()
                payload = SessionListResponse.model_validate(response.json())
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Session history unavailable, keeping previous list: {e}")
            return self._summaries[:limit]

        if not payload.success:
            logger.warning(f"Session history request rejected: {payload.error or 'unknown error'}")
            return self._summaries[:limit]

        # backend order is most-recent-first
        self._summaries = [SessionSummary.from_record(record) for record in payload.sessions][:limit]
        return list(self._summaries)

    async def refresh(self) -> list[SessionSummary]:
        return await self.list(settings.history_limit)

    async def load(self, trace_id: str) -> OrchestrationSession:
        """Fetch one stored session as a read-only snapshot.

        Raises SessionNotFoundError or HistoryTransportError.
        """
        path = f"{api_client.SESSIONS_PATH}/{quote(trace_id, safe='')}"
        try:
            async with self._client_factory() as client:
                response = await client.get(path)
                if response.status_code == 404:
                    raise SessionNotFoundError(trace_id)
                response.raise_for_status()
                payload = SessionDetailResponse.model_validate(response.json())
        except httpx.HTTPError as e:
            raise HistoryTransportError(f"Failed to load session {trace_id}: {e}") from e
        except ValueError as e:
            raise HistoryTransportError(f"Unreadable session {trace_id}: {e}") from e

        if not payload.success or payload.session is None:
            raise SessionNotFoundError(trace_id)

        record = payload.session
        if record.trace_id is None:
            # older records may omit it; the lookup key is authoritative
            record = record.model_copy(update={"trace_id": trace_id})
        session = session_from_result(record, read_only=True)
        if self.registry is not None:
            self.registry.register(session)
        return session
