from __future__ import annotations

import asyncio
import inspect
import time
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, AsyncIterable, AsyncIterator, Awaitable, Callable

from loguru import logger

from council_client.config import settings
from council_client.errors import StreamUnavailableError
from council_client.models.events import (
    BriefReady,
    Complete,
    CouncilError,
    CouncilResponse,
    Dispatching,
    Error,
    EventType,
    GeneratingBrief,
    OrchestrationEvent,
    Start,
    SynthesisComplete,
    Synthesizing,
    content_text,
)
from council_client.models.schemas import OrchestrationResult
from council_client.models.session import (
    CouncilMember,
    OrchestrationSession,
    SessionStatus,
    complete_session,
    compute_meta,
    unpack_result,
)
from council_client.services import logger as log_service
from council_client.services.cost import estimate_session_cost
from council_client.services.registry import SessionRegistry
from council_client.services.tracker import ResponderStateTracker

if TYPE_CHECKING:
    from council_client.services.fallback import FallbackRequester

Observer = Callable[[Any], Any]

CANCELLED_MESSAGE = "Cancelled by user"

_END = object()


async def call_observer(name: str, callback: Observer | None, arg: Any) -> None:
    """Invoke a sync or async observer; its failures never reach the session."""
    if callback is None:
        return
    try:
        result = callback(arg)
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.warning(f"Session observer {name} failed: {e}")


async def _anext(iterator: AsyncIterator[OrchestrationEvent]) -> Any:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return _END


class _Detached(Exception):
    pass


@dataclass
class SessionObservers:
    on_status: Observer | None = None  # (session) after every status change
    on_event: Observer | None = None  # (event) for every applied event
    on_synthesizing: Observer | None = None  # (session) once, on entering synthesizing
    on_finished: Observer | None = None  # (session) once, on complete or failed


class SessionController:
    """State machine for one orchestration session.

    submitted -> dispatching -> collecting -> synthesizing -> complete, with
    failed reachable from every non-terminal state. The controller is the only
    writer of its session and owns its responder tracker.

    Cancellation is client-local: ``cancel`` stops consuming events and fails
    the session, but nothing is sent to the backend, whose work continues.
    """

    def __init__(
        self,
        session: OrchestrationSession,
        *,
        roster: dict[str, CouncilMember] | None = None,
        observers: SessionObservers | None = None,
        registry: SessionRegistry | None = None,
        idle_timeout: float | None = None,
        synthesizer_model: str | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session = session
        self.tracker = ResponderStateTracker()
        self.roster = dict(roster or {})
        self.observers = observers or SessionObservers()
        self.registry = registry
        timeout = settings.stream_idle_timeout_seconds if idle_timeout is None else idle_timeout
        self.idle_timeout = timeout if timeout and timeout > 0 else None
        self.synthesizer_model = synthesizer_model or settings.synthesizer_model
        self._clock = clock
        self._started = clock()
        self._detached = asyncio.Event()
        self._synthesis_triggered = False
        self._finished = False
        self.events_applied = 0
        self._handlers: dict[EventType, Callable[[Any], Awaitable[None]]] = {
            EventType.START: self._on_start,
            EventType.GENERATING_BRIEF: self._on_generating_brief,
            EventType.BRIEF_READY: self._on_brief_ready,
            EventType.DISPATCHING: self._on_dispatching,
            EventType.COUNCIL_RESPONSE: self._on_council_response,
            EventType.COUNCIL_ERROR: self._on_council_error,
            EventType.SYNTHESIZING: self._on_synthesizing,
            EventType.SYNTHESIS_COMPLETE: self._on_synthesis_complete,
            EventType.COMPLETE: self._on_complete,
            EventType.ERROR: self._on_error,
        }

    @property
    def handled_event_types(self) -> set[EventType]:
        return set(self._handlers)

    @property
    def detached(self) -> bool:
        return self._detached.is_set()

    @property
    def elapsed_ms(self) -> int:
        return int((self._clock() - self._started) * 1000)

    # --- Event source ---

    async def consume(self, events: AsyncIterable[OrchestrationEvent]) -> OrchestrationSession:
        """Apply events until the session is terminal, the source ends or we detach.

        Raises StreamUnavailableError when the source fails or ends before a
        single event arrived; the session is left untouched for the fallback.
        """
        iterator = events.__aiter__()
        try:
            while not self.session.is_terminal:
                try:
                    event = await self._next_event(iterator)
                except _Detached:
                    break
                except asyncio.TimeoutError:
                    await self._time_out()
                    break
                except Exception as e:
                    if self.events_applied == 0:
                        raise StreamUnavailableError(f"Stream failed before any event: {e}") from e
                    await self._fail(f"Stream interrupted: {e}")
                    break

                if event is _END:
                    if self.events_applied == 0:
                        raise StreamUnavailableError("Stream closed without any event")
                    if self.session.synthesis is not None:
                        logger.warning(f"Session {self.session.key}: stream closed without a final result")
                        await self._complete_locally()
                    else:
                        await self._fail("Stream closed before the session completed")
                    break

                await self.apply(event)
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()
        return self.session

    async def _next_event(self, iterator: AsyncIterator[OrchestrationEvent]) -> Any:
        if self._detached.is_set():
            raise _Detached()

        next_task = asyncio.ensure_future(_anext(iterator))
        detach_task = asyncio.ensure_future(self._detached.wait())
        try:
            done, _ = await asyncio.wait(
                {next_task, detach_task},
                timeout=self.idle_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            next_task.cancel()
            raise
        finally:
            detach_task.cancel()

        if next_task in done:
            return next_task.result()

        next_task.cancel()
        await asyncio.wait({next_task})
        if self._detached.is_set():
            raise _Detached()
        raise asyncio.TimeoutError()

    async def cancel(self) -> bool:
        """Detach from the event source and fail the session locally."""
        if self.session.is_terminal:
            return False
        self._detached.set()
        log_service.log_event(
            event_type="session_cancelled",
            message="Session detached by user; backend work is not aborted",
            trace_id=self.session.trace_id,
        )
        await self._fail(CANCELLED_MESSAGE)
        return True

    async def run_fallback(self, fallback: FallbackRequester) -> OrchestrationSession:
        """Finish the session with one blocking request instead of the stream."""
        if self.session.is_terminal:
            return self.session

        request = asyncio.ensure_future(fallback.request(self.session.question, session=self.session))
        detach_task = asyncio.ensure_future(self._detached.wait())
        try:
            done, _ = await asyncio.wait({request, detach_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            detach_task.cancel()

        if request not in done or self._detached.is_set():
            request.cancel()
            await asyncio.wait({request})
            if not request.cancelled() and request.exception() is not None:
                logger.debug(f"Fallback for detached session {self.session.key} ended with: {request.exception()}")
            return self.session

        request.result()
        self._register()
        await call_observer("on_status", self.observers.on_status, self.session)
        await self._finish()
        return self.session

    # --- Event handling ---

    async def apply(self, event: OrchestrationEvent) -> None:
        if self.session.is_terminal:
            logger.debug(f"Ignoring {event.type.value} event for {self.session.status.value} session {self.session.key}")
            return

        handler = self._handlers.get(event.type)
        if handler is None:
            raise TypeError(f"No handler for event type {event.type!r}")
        self.events_applied += 1
        await handler(event)
        await call_observer("on_event", self.observers.on_event, event)

    async def _on_start(self, event: Start) -> None:
        if event.trace_id and not self.session.trace_id:
            self.session.trace_id = event.trace_id
            self._register()
        if event.business:
            self.session.business = event.business
        log_service.log_session_step(self.session.trace_id, "start", "running")

    async def _on_generating_brief(self, event: GeneratingBrief) -> None:
        logger.debug(f"Session {self.session.key}: {event.message or 'generating research brief'}")

    async def _on_brief_ready(self, event: BriefReady) -> None:
        self.session.brief = event.brief
        await self._advance(SessionStatus.DISPATCHING)

    async def _on_dispatching(self, event: Dispatching) -> None:
        members = event.members or tuple(self.roster)
        if not members:
            logger.warning(f"Session {self.session.key}: dispatching event names no members and no roster is loaded")
        self.session.expected_members = tuple(members)
        await self._advance(SessionStatus.DISPATCHING)
        await self._advance(SessionStatus.COLLECTING)
        await self._maybe_enter_synthesis()

    async def _on_council_response(self, event: CouncilResponse) -> None:
        result = self.tracker.record_success(
            event.member_id,
            event.content,
            event.elapsed_ms,
            **self._member_details(event.member_id, event.member_name, event.color),
        )
        self.session.put_response(result)
        await self._maybe_enter_synthesis()

    async def _on_council_error(self, event: CouncilError) -> None:
        result = self.tracker.record_failure(
            event.member_id,
            event.error,
            **self._member_details(event.member_id, event.member_name, event.color),
        )
        self.session.put_response(result)
        logger.info(f"Council member {event.member_id} failed: {event.error}")
        await self._maybe_enter_synthesis()

    async def _on_synthesizing(self, event: Synthesizing) -> None:
        await self._enter_synthesis()

    async def _on_synthesis_complete(self, event: SynthesisComplete) -> None:
        # The backend stores the session and sends the authoritative result
        # in the complete event that follows.
        await self._enter_synthesis()
        if self.session.synthesis is not None:
            logger.warning(f"Session {self.session.key}: second synthesis ignored")
            return
        self.session.synthesis = event.synthesis

    async def _on_complete(self, event: Complete) -> None:
        if event.result is None:
            logger.warning(f"Session {self.session.key}: completion event without a result")
            if self.session.synthesis is not None:
                await self._complete_locally()
            return
        try:
            result = OrchestrationResult.model_validate(event.result)
        except ValueError as e:
            logger.warning(f"Session {self.session.key}: unreadable completion result: {e}")
            if self.session.synthesis is not None:
                await self._complete_locally()
            return

        backend_results, backend_meta = unpack_result(result)
        if result.trace_id and not self.session.trace_id:
            self.session.trace_id = result.trace_id
            self._register()
        if result.brief and not self.session.brief:
            self.session.brief = result.brief
        if result.business:
            self.session.business = result.business
        if result.notebook:
            self.session.notebook = result.notebook
        for member_result in backend_results:
            # entries already collected from the stream win
            if member_result.member_id not in self.tracker:
                self.tracker.record(member_result)
        if not self.session.expected_members:
            self.session.expected_members = tuple(self.tracker.results)
        await self._enter_synthesis()
        self._close_out_pending("No response before synthesis")

        results = list(self.tracker.results.values())
        if result.meta is not None and result.meta.total_cost is not None:
            total_cost = backend_meta.total_cost
        else:
            total_cost = estimate_session_cost(results, self.synthesizer_model)
        meta = compute_meta(
            results,
            total_time_ms=backend_meta.total_time_ms or self.elapsed_ms,
            total_cost=total_cost,
        )
        if result.meta is not None and result.meta.models_used:
            meta = replace(meta, models_used=backend_meta.models_used)
        synthesis = content_text(result.synthesis) or self.session.synthesis or ""
        complete_session(self.session, results=results, synthesis=synthesis, meta=meta)
        await self._completed()

    async def _on_error(self, event: Error) -> None:
        await self._fail(event.error)

    # --- Transitions ---

    def _member_details(self, member_id: str, name: str | None, color: str | None) -> dict[str, Any]:
        member = self.roster.get(member_id)
        return {
            "member_name": name or (member.name if member else None),
            "color": color or (member.color if member else None),
            "model": member.model if member else None,
            "strength": member.strength if member else None,
        }

    async def _advance(self, status: SessionStatus) -> None:
        if self.session.advance(status):
            log_service.log_session_step(self.session.trace_id, status.value, "running")
            await call_observer("on_status", self.observers.on_status, self.session)

    async def _maybe_enter_synthesis(self) -> None:
        if self.session.status is SessionStatus.COLLECTING and self.tracker.is_complete(
            self.session.expected_members
        ):
            await self._enter_synthesis()

    async def _enter_synthesis(self) -> None:
        if self._synthesis_triggered:
            return
        self._synthesis_triggered = True
        await self._advance(SessionStatus.SYNTHESIZING)
        await call_observer("on_synthesizing", self.observers.on_synthesizing, self.session)

    async def _complete_locally(self) -> None:
        """Complete from stream state alone when no backend result arrived."""
        await self._enter_synthesis()
        self._close_out_pending("No response before synthesis")

        results = list(self.tracker.results.values())
        meta = compute_meta(
            results,
            total_time_ms=self.elapsed_ms,
            total_cost=estimate_session_cost(results, self.synthesizer_model),
        )
        complete_session(self.session, results=results, synthesis=self.session.synthesis or "", meta=meta)
        await self._completed()

    async def _completed(self) -> None:
        meta = self.session.meta
        log_service.log_session_step(
            self.session.trace_id,
            "complete",
            "completed",
            {
                "total_time_ms": meta.total_time_ms if meta else None,
                "success_count": meta.success_count if meta else None,
                "fail_count": meta.fail_count if meta else None,
            },
        )
        await call_observer("on_status", self.observers.on_status, self.session)
        await self._finish()

    def _close_out_pending(self, reason: str) -> None:
        """Give every expected member without an outcome an error entry."""
        for member_id in self.tracker.pending(self.session.expected_members):
            self.session.put_response(
                self.tracker.record_failure(
                    member_id,
                    reason,
                    **self._member_details(member_id, None, None),
                )
            )

    async def _time_out(self) -> None:
        seconds = f"{self.idle_timeout or 0:g}"
        self._close_out_pending(f"No response within {seconds}s")
        await self._fail(f"No stream activity for {seconds}s")

    async def _fail(self, message: str) -> None:
        if self.session.is_terminal:
            return
        self.session.fail(message)
        log_service.log_session_step(
            self.session.trace_id,
            "error",
            "failed",
            {"error": message, "responses": len(self.session.responses)},
        )
        await call_observer("on_status", self.observers.on_status, self.session)
        await self._finish()

    async def _finish(self) -> None:
        if self._finished:
            return
        self._finished = True
        await call_observer("on_finished", self.observers.on_finished, self.session)

    def _register(self) -> None:
        if self.registry is not None:
            self.registry.register(self.session)
