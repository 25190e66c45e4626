from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# --- Requests ---


class QuestionRequest(BaseModel):
    question: str


# --- Responses ---


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CouncilMemberRecord(WireModel):
    """One entry of a result's ``council`` list."""

    member_id: str = Field(alias="memberId")
    member_name: str | None = Field(default=None, alias="memberName")
    color: str | None = None
    strength: str | None = None
    response: Any = None
    timing: float | None = None
    model: str | None = None
    error: str | None = None


class MetaRecord(WireModel):
    total_time: float | None = Field(default=None, alias="totalTime")
    total_cost: float | None = Field(default=None, alias="totalCost")
    models_used: list[str] = Field(default_factory=list, alias="modelsUsed")
    success_count: int | None = Field(default=None, alias="successCount")
    fail_count: int | None = Field(default=None, alias="failCount")


class OrchestrationResult(WireModel):
    trace_id: str | None = Field(default=None, alias="traceId")
    question: str | None = None
    business: str | None = None
    notebook: str | None = None
    brief: dict[str, Any] | None = None
    council: list[CouncilMemberRecord] = Field(default_factory=list)
    synthesis: Any = None
    meta: MetaRecord | None = None


class OrchestrateResponse(OrchestrationResult):
    success: bool = False
    error: str | None = None


class SessionSummaryRecord(WireModel):
    trace_id: str = Field(alias="traceId")
    question: str = ""
    time: float | None = None
    cost: float | None = None
    success_count: int | None = Field(default=None, alias="successCount")


class SessionListResponse(WireModel):
    success: bool = False
    sessions: list[SessionSummaryRecord] = Field(default_factory=list)
    error: str | None = None


class SessionDetailResponse(WireModel):
    success: bool = False
    session: OrchestrationResult | None = None
    error: str | None = None


class RosterEntry(WireModel):
    id: str | None = None  # backend model identifier, e.g. openai/gpt-4o
    name: str
    strength: str = ""
    color: str | None = None


class RosterResponse(WireModel):
    success: bool = False
    council: dict[str, RosterEntry] = Field(default_factory=dict)
    error: str | None = None
