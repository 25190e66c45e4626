from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Mapping
from uuid import uuid4

from council_client.errors import SessionFrozenError
from council_client.models.events import content_text, elapsed_ms
from council_client.models.schemas import (
    CouncilMemberRecord,
    OrchestrationResult,
    SessionSummaryRecord,
)


class SessionStatus(str, Enum):
    SUBMITTED = "submitted"
    DISPATCHING = "dispatching"
    COLLECTING = "collecting"
    SYNTHESIZING = "synthesizing"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETE, SessionStatus.FAILED)


_STATUS_ORDER = {
    SessionStatus.SUBMITTED: 0,
    SessionStatus.DISPATCHING: 1,
    SessionStatus.COLLECTING: 2,
    SessionStatus.SYNTHESIZING: 3,
    SessionStatus.COMPLETE: 4,
}


@dataclass(frozen=True, slots=True)
class CouncilMember:
    id: str
    name: str
    strength: str = ""
    model: str | None = None
    color: str | None = None


@dataclass(frozen=True, slots=True)
class MemberResult:
    member_id: str
    content: str | None = None
    error: str | None = None
    elapsed_ms: int = 0
    member_name: str | None = None
    model: str | None = None
    color: str | None = None
    strength: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_wire(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "memberId": self.member_id,
            "memberName": self.member_name,
            "color": self.color,
        }
        if self.succeeded:
            data.update(
                {
                    "strength": self.strength,
                    "response": self.content,
                    "timing": self.elapsed_ms,
                    "model": self.model,
                }
            )
        else:
            data["error"] = self.error
        return data


@dataclass(frozen=True, slots=True)
class SessionMeta:
    total_time_ms: int
    total_cost: float
    success_count: int
    fail_count: int
    models_used: tuple[str, ...] = ()

    def to_wire(self) -> dict[str, Any]:
        return {
            "totalTime": self.total_time_ms,
            "totalCost": self.total_cost,
            "modelsUsed": list(self.models_used),
            "successCount": self.success_count,
            "failCount": self.fail_count,
        }


@dataclass(frozen=True, slots=True)
class SessionSummary:
    trace_id: str
    question: str
    total_time_ms: int | None = None
    total_cost: float | None = None
    success_count: int | None = None

    @classmethod
    def from_record(cls, record: SessionSummaryRecord) -> "SessionSummary":
        return cls(
            trace_id=record.trace_id,
            question=record.question,
            total_time_ms=int(record.time) if record.time is not None else None,
            total_cost=record.cost,
            success_count=record.success_count,
        )


@dataclass(eq=False)
class OrchestrationSession:
    """The record of one question, its member responses and its synthesis.

    Mutated only by the session controller (or built whole by
    ``build_completed_session``). Once the status is terminal the session is
    frozen and every attribute assignment raises ``SessionFrozenError``.
    """

    question: str
    trace_id: str | None = None
    brief: dict[str, Any] | None = None
    responses: Mapping[str, MemberResult] = field(default_factory=dict)
    synthesis: str | None = None
    status: SessionStatus = SessionStatus.SUBMITTED
    meta: SessionMeta | None = None
    error: str | None = None
    expected_members: tuple[str, ...] = ()
    business: str | None = None
    notebook: str | None = None
    read_only: bool = False
    local_id: str = field(default_factory=lambda: f"local-{uuid4().hex[:12]}")
    _frozen: bool = field(default=False, init=False, repr=False)

    def __setattr__(self, name: str, value: Any) -> None:
        if getattr(self, "_frozen", False):
            raise SessionFrozenError(
                f"Session {self.key} is {self.status.value} and can no longer change"
            )
        object.__setattr__(self, name, value)

    @property
    def key(self) -> str:
        return self.trace_id or self.local_id

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def advance(self, status: SessionStatus) -> bool:
        """Move forward to ``status``; never moves backwards.

        Returns True when the status actually changed.
        """
        if status is SessionStatus.FAILED:
            raise ValueError("use fail() to enter the failed state")
        if self._frozen:
            raise SessionFrozenError(f"Session {self.key} is already {self.status.value}")
        if _STATUS_ORDER[status] <= _STATUS_ORDER[self.status]:
            return False
        self.status = status
        return True

    def put_response(self, result: MemberResult) -> None:
        if self._frozen:
            raise SessionFrozenError(f"Session {self.key} is already {self.status.value}")
        # responses is a plain dict until freeze
        self.responses[result.member_id] = result  # type: ignore[index]

    def fail(self, error: str) -> None:
        self.error = error
        self.status = SessionStatus.FAILED
        self.freeze()

    def freeze(self) -> None:
        if self._frozen:
            return
        self.responses = MappingProxyType(dict(self.responses))
        self._frozen = True

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the backend's result shape."""
        return {
            "traceId": self.trace_id,
            "question": self.question,
            "business": self.business,
            "notebook": self.notebook,
            "brief": self.brief,
            "council": [result.to_wire() for result in self.responses.values()],
            "synthesis": self.synthesis,
            "meta": self.meta.to_wire() if self.meta else None,
            "status": self.status.value,
            "error": self.error,
        }


def compute_meta(
    results: Iterable[MemberResult],
    *,
    total_time_ms: int,
    total_cost: float,
) -> SessionMeta:
    results = list(results)
    succeeded = [r for r in results if r.succeeded]
    return SessionMeta(
        total_time_ms=total_time_ms,
        total_cost=total_cost,
        success_count=len(succeeded),
        fail_count=len(results) - len(succeeded),
        models_used=tuple(r.model for r in succeeded if r.model),
    )


def complete_session(
    session: OrchestrationSession,
    *,
    results: Iterable[MemberResult],
    synthesis: str,
    meta: SessionMeta,
) -> OrchestrationSession:
    """Finish ``session`` in place and freeze it.

    Streamed completion, the non-streamed fallback and history rehydration all
    end here, so a finished session has the same shape whichever path built
    it.
    """
    responses = {r.member_id: r for r in results}
    session.responses = responses
    if not session.expected_members:
        session.expected_members = tuple(responses)
    session.synthesis = synthesis
    session.meta = meta
    session.status = SessionStatus.COMPLETE
    session.freeze()
    return session


def build_completed_session(
    question: str,
    *,
    results: Iterable[MemberResult],
    synthesis: str,
    meta: SessionMeta,
    trace_id: str | None = None,
    brief: dict[str, Any] | None = None,
    business: str | None = None,
    notebook: str | None = None,
    read_only: bool = False,
) -> OrchestrationSession:
    session = OrchestrationSession(
        question=question,
        trace_id=trace_id,
        brief=brief,
        business=business,
        notebook=notebook,
        read_only=read_only,
    )
    return complete_session(session, results=results, synthesis=synthesis, meta=meta)


def result_from_record(record: CouncilMemberRecord) -> MemberResult:
    """Convert one ``council`` list entry to a MemberResult."""
    if record.error:
        return MemberResult(
            member_id=record.member_id,
            error=record.error,
            member_name=record.member_name,
            color=record.color,
            model=record.model,
            strength=record.strength,
        )
    return MemberResult(
        member_id=record.member_id,
        content=content_text(record.response),
        elapsed_ms=elapsed_ms(record.timing),
        member_name=record.member_name,
        model=record.model,
        color=record.color,
        strength=record.strength,
    )


def unpack_result(result: OrchestrationResult) -> tuple[list[MemberResult], SessionMeta]:
    """Member results and meta of a full backend result."""
    results = [result_from_record(record) for record in result.council]
    counted = compute_meta(results, total_time_ms=0, total_cost=0.0)
    if result.meta is None:
        return results, counted
    meta = SessionMeta(
        total_time_ms=elapsed_ms(result.meta.total_time),
        total_cost=float(result.meta.total_cost or 0.0),
        # counts follow the council entries actually present
        success_count=counted.success_count,
        fail_count=counted.fail_count,
        models_used=tuple(result.meta.models_used) or counted.models_used,
    )
    return results, meta


def session_from_result(
    result: OrchestrationResult,
    *,
    question: str | None = None,
    read_only: bool = False,
) -> OrchestrationSession:
    """Build a completed session from a full backend result."""
    results, meta = unpack_result(result)
    return build_completed_session(
        result.question or question or "",
        results=results,
        synthesis=content_text(result.synthesis),
        meta=meta,
        trace_id=result.trace_id,
        brief=result.brief,
        business=result.business,
        notebook=result.notebook,
        read_only=read_only,
    )
