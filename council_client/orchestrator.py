from __future__ import annotations

import dataclasses

import httpx
from loguru import logger

from council_client import api_client
from council_client.api_client import ClientFactory
from council_client.config import settings
from council_client.errors import StreamUnavailableError, ValidationError
from council_client.models.schemas import QuestionRequest
from council_client.models.session import OrchestrationSession
from council_client.services import logger as log_service
from council_client.services.controller import SessionController, SessionObservers, call_observer
from council_client.services.fallback import FallbackRequester
from council_client.services.history import SessionHistoryCache
from council_client.services.registry import SessionRegistry
from council_client.services.roster import CouncilRoster
from council_client.services.sse_decoder import EventStreamDecoder


class CouncilOrchestrator:
    """Client entry point: ask the council a question and follow the session.

    Flow:
      1. Validate the question and detach from any session still running
      2. Open the event stream and drive a SessionController with it
      3. If the stream cannot be used, run the non-streamed request once
      4. Refresh history when the session completes or fails

    Only one session is live at a time; asking again cancels the previous one
    locally.
    """

    def __init__(
        self,
        *,
        client_factory: ClientFactory | None = None,
        stream_client_factory: ClientFactory | None = None,
        roster: CouncilRoster | None = None,
        history: SessionHistoryCache | None = None,
        registry: SessionRegistry | None = None,
        fallback: FallbackRequester | None = None,
        stream_enabled: bool | None = None,
        idle_timeout: float | None = None,
    ):
        client_factory = client_factory or api_client.get_client
        self.stream_client_factory = stream_client_factory or api_client.stream_client
        self.registry = registry or SessionRegistry()
        self.roster = roster or CouncilRoster(client_factory)
        self.history = history or SessionHistoryCache(client_factory, registry=self.registry)
        self.fallback = fallback or FallbackRequester(client_factory)
        self.stream_enabled = settings.stream_enabled if stream_enabled is None else stream_enabled
        self.idle_timeout = idle_timeout
        self._active: SessionController | None = None

    @property
    def active_session(self) -> OrchestrationSession | None:
        return self._active.session if self._active else None

    async def ask(
        self,
        question: str,
        observers: SessionObservers | None = None,
    ) -> OrchestrationSession:
        """Run one orchestration to a terminal state and return its session."""
        question = (question or "").strip()
        if not question:
            raise ValidationError("Question must not be empty")

        await self.cancel()

        members = await self.roster.members()
        session = OrchestrationSession(question=question)
        self.registry.register(session)
        controller = SessionController(
            session,
            roster=members,
            observers=self._with_history_refresh(observers or SessionObservers()),
            registry=self.registry,
            idle_timeout=self.idle_timeout,
        )
        self._active = controller
        log_service.log_session_step(
            session.trace_id,
            "submitted",
            "running",
            {"question": question[:100], "stream": self.stream_enabled},
        )

        try:
            if self.stream_enabled:
                try:
                    await self._stream(controller)
                except StreamUnavailableError as e:
                    logger.warning(f"Event stream unavailable, falling back to a single request: {e}")
                    await controller.run_fallback(self.fallback)
            else:
                await controller.run_fallback(self.fallback)
        finally:
            if self._active is controller:
                self._active = None
        return session

    async def cancel(self) -> bool:
        """Detach from the live session, if any. The backend is not told."""
        controller = self._active
        if controller is None:
            return False
        self._active = None
        return await controller.cancel()

    async def _stream(self, controller: SessionController) -> None:
        body = QuestionRequest(question=controller.session.question).model_dump()
        try:
            async with self.stream_client_factory() as client:
                async with client.stream("POST", api_client.STREAM_PATH, json=body) as response:
                    if response.is_error:
                        raise StreamUnavailableError(
                            f"Stream request failed: HTTP {response.status_code}",
                            status_code=response.status_code,
                        )
                    await controller.consume(EventStreamDecoder(response.aiter_bytes()))
        except httpx.HTTPError as e:
            if controller.events_applied:
                # consume() has already settled the session; only closing the response failed
                logger.warning(f"Error closing event stream for session {controller.session.key}: {e}")
                return
            raise StreamUnavailableError(f"Stream request failed: {e}") from e

    def _with_history_refresh(self, observers: SessionObservers) -> SessionObservers:
        user_finished = observers.on_finished

        async def on_finished(session: OrchestrationSession) -> None:
            await self.history.refresh()
            await call_observer("on_finished", user_finished, session)

        return dataclasses.replace(observers, on_finished=on_finished)
