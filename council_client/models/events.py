from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

from council_client.errors import EventDecodeError


class EventType(str, Enum):
    START = "start"
    GENERATING_BRIEF = "generating_brief"
    BRIEF_READY = "brief_ready"
    DISPATCHING = "dispatching"
    COUNCIL_RESPONSE = "council_response"
    COUNCIL_ERROR = "council_error"
    SYNTHESIZING = "synthesizing"
    SYNTHESIS_COMPLETE = "synthesis_complete"
    COMPLETE = "complete"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class Start:
    type: ClassVar[EventType] = EventType.START
    trace_id: str | None = None
    question: str | None = None
    business: str | None = None


@dataclass(frozen=True, slots=True)
class GeneratingBrief:
    type: ClassVar[EventType] = EventType.GENERATING_BRIEF
    message: str = ""


@dataclass(frozen=True, slots=True)
class BriefReady:
    type: ClassVar[EventType] = EventType.BRIEF_READY
    brief: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Dispatching:
    type: ClassVar[EventType] = EventType.DISPATCHING
    members: tuple[str, ...] = ()
    message: str = ""


@dataclass(frozen=True, slots=True)
class CouncilResponse:
    type: ClassVar[EventType] = EventType.COUNCIL_RESPONSE
    member_id: str
    content: str
    elapsed_ms: int = 0
    member_name: str | None = None
    color: str | None = None


@dataclass(frozen=True, slots=True)
class CouncilError:
    type: ClassVar[EventType] = EventType.COUNCIL_ERROR
    member_id: str
    error: str
    member_name: str | None = None
    color: str | None = None


@dataclass(frozen=True, slots=True)
class Synthesizing:
    type: ClassVar[EventType] = EventType.SYNTHESIZING
    message: str = ""


@dataclass(frozen=True, slots=True)
class SynthesisComplete:
    type: ClassVar[EventType] = EventType.SYNTHESIS_COMPLETE
    synthesis: str
    elapsed_ms: int = 0


@dataclass(frozen=True, slots=True)
class Complete:
    """Final backend result; emitted on the wire as ``complete`` or ``done``."""

    type: ClassVar[EventType] = EventType.COMPLETE
    result: dict[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class Error:
    type: ClassVar[EventType] = EventType.ERROR
    error: str = "Unknown error"


OrchestrationEvent = (
    Start
    | GeneratingBrief
    | BriefReady
    | Dispatching
    | CouncilResponse
    | CouncilError
    | Synthesizing
    | SynthesisComplete
    | Complete
    | Error
)

EVENT_CLASSES: tuple[type, ...] = (
    Start,
    GeneratingBrief,
    BriefReady,
    Dispatching,
    CouncilResponse,
    CouncilError,
    Synthesizing,
    SynthesisComplete,
    Complete,
    Error,
)


def content_text(value: Any) -> str:
    """Normalize a response/synthesis payload to text.

    The backend sends either a plain string or an object with ``content``.
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        content = value.get("content")
        if isinstance(content, str):
            return content
    return json.dumps(value)


def elapsed_ms(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)) and value >= 0:
        return int(value)
    return 0


def _optional_str(payload: dict[str, Any], key: str) -> str | None:
    value = payload.get(key)
    return value if isinstance(value, str) else None


def _member_id(payload: dict[str, Any]) -> str:
    member_id = payload.get("memberId")
    if not isinstance(member_id, str) or not member_id:
        raise EventDecodeError(f"{payload.get('type')} event without memberId")
    return member_id


def parse_event(payload: Any) -> OrchestrationEvent:
    """Map one decoded JSON frame to its event variant."""
    if not isinstance(payload, dict):
        raise EventDecodeError(f"Frame is not a JSON object: {type(payload).__name__}")

    raw_type = payload.get("type")
    if not isinstance(raw_type, str):
        raise EventDecodeError("Frame has no string 'type' discriminator")
    try:
        event_type = EventType(raw_type)
    except ValueError:
        raise EventDecodeError(f"Unknown event type: {raw_type}") from None

    if event_type is EventType.START:
        return Start(
            trace_id=_optional_str(payload, "traceId"),
            question=_optional_str(payload, "question"),
            business=_optional_str(payload, "business"),
        )
    if event_type is EventType.GENERATING_BRIEF:
        return GeneratingBrief(message=_optional_str(payload, "message") or "")
    if event_type is EventType.BRIEF_READY:
        brief = payload.get("brief")
        return BriefReady(brief=brief if isinstance(brief, dict) else {})
    if event_type is EventType.DISPATCHING:
        members = payload.get("members")
        if not isinstance(members, list):
            members = []
        return Dispatching(
            members=tuple(m for m in members if isinstance(m, str) and m),
            message=_optional_str(payload, "message") or "",
        )
    if event_type is EventType.COUNCIL_RESPONSE:
        return CouncilResponse(
            member_id=_member_id(payload),
            content=content_text(payload.get("response")),
            elapsed_ms=elapsed_ms(payload.get("timing")),
            member_name=_optional_str(payload, "memberName"),
            color=_optional_str(payload, "color"),
        )
    if event_type is EventType.COUNCIL_ERROR:
        return CouncilError(
            member_id=_member_id(payload),
            error=_optional_str(payload, "error") or "Unknown error",
            member_name=_optional_str(payload, "memberName"),
            color=_optional_str(payload, "color"),
        )
    if event_type is EventType.SYNTHESIZING:
        return Synthesizing(message=_optional_str(payload, "message") or "")
    if event_type is EventType.SYNTHESIS_COMPLETE:
        if "synthesis" not in payload:
            raise EventDecodeError("synthesis_complete event without synthesis")
        return SynthesisComplete(
            synthesis=content_text(payload.get("synthesis")),
            elapsed_ms=elapsed_ms(payload.get("timing")),
        )
    if event_type in (EventType.COMPLETE, EventType.DONE):
        result = payload.get("result")
        return Complete(result=result if isinstance(result, dict) else None)
    if event_type is EventType.ERROR:
        return Error(
            error=_optional_str(payload, "error") or _optional_str(payload, "message") or "Unknown error"
        )
    raise EventDecodeError(f"Unhandled event type: {raw_type}")
