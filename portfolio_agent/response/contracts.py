from __future__ import annotations

from typing import Any, Dict, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

ConcentrationBand = Literal["high", "medium", "low"]
ToolCallStatus = Literal["success", "failed"]
CheckSeverity = Literal["critical", "warning"]
VerificationStatus = Literal["passed", "partial", "failed"]
AgentCheckStatus = Literal["passed", "warning", "failed"]
ConfidenceBand = Literal["high", "medium", "low"]
TradeAction = Literal["buy", "sell"]


class Allocation(BaseModel):
    model_config = ConfigDict(extra="forbid")

    symbol: str
    name: str | None = None
    allocationInPercentage: float
    valueInBaseCurrency: float | None = None


class ToolFacts(BaseModel):
    model_config = ConfigDict(extra="forbid")

    allocations: list[Allocation] = Field(default_factory=list)
    top_allocation_percentage: float = 0.0
    portfolio_value: float | None = None
    holdings_count: int | None = None
    concentration_band: ConcentrationBand = "medium"
    hhi_score: float | None = None
    risk_flags: list[str] = Field(default_factory=list)
    tools_used: list[str] = Field(default_factory=list)
    data_sources: list[str] = Field(default_factory=list)
    execution_latency_ms: float = 0.0


class RebalanceTrade(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    symbol: str
    action: TradeAction
    current_allocation: float
    target_allocation: float
    allocation_delta: float


class RebalancePlan(BaseModel):
    model_config = ConfigDict(extra="forbid")

    target_allocations: Dict[str, float] = Field(default_factory=dict)
    trades: list[RebalanceTrade] = Field(default_factory=list)
    max_top_allocation: float | None = None
    diversification_target: str | None = None


class VerificationCheck(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str
    passed: bool
    severity: CheckSeverity
    message: str


class VerificationSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")

    critical_checks: int = 0
    passed_critical: int = 0
    warning_checks: int = 0
    passed_warnings: int = 0


class VerificationReport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: VerificationStatus
    confidence_score: float = Field(ge=0.0, le=1.0)
    checks: list[VerificationCheck] = Field(default_factory=list)
    summary: VerificationSummary = Field(default_factory=VerificationSummary)


class ToolCall(BaseModel):
    """One executed tool; the call list keeps execution order."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    tool: str
    status: ToolCallStatus
    input: Dict[str, Any] = Field(default_factory=dict)
    outputSummary: str = ""
    durationMs: float = 0.0
    state: Dict[str, Any] = Field(default_factory=dict)


class AgentVerificationCheck(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    check: str
    status: AgentCheckStatus
    details: str


class Confidence(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    score: float = Field(ge=0.0, le=1.0)
    band: ConfidenceBand


class FinalResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    narrative: str
    action_items: list[str] = Field(default_factory=list)
    risk_explanation: str = ""
    next_steps: list[str] = Field(default_factory=list)
    confidence_marker: Literal["green", "yellow", "red"] = "yellow"


class Escalation(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    required: bool = True
    reason: str
    suggestedAction: str


class AgentResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    schema_version: str = "agent_result_v1"
    route: Literal["direct", "clarify", "tools"]
    answer: str
    toolCalls: list[ToolCall] = Field(default_factory=list)
    facts: ToolFacts | None = None
    plan: RebalancePlan | None = None
    verification: VerificationReport | None = None
    checks: list[AgentVerificationCheck] = Field(default_factory=list)
    confidence: Confidence
    policy: Dict[str, Any] = Field(default_factory=dict)
    followUp: Dict[str, Any] = Field(default_factory=dict)
    symbolSuggestions: list[str] = Field(default_factory=list)
    escalation: Escalation | None = None

    @field_validator("answer")
    @classmethod
    def _validate_answer(cls, value: str) -> str:
        if not str(value).strip():
            raise ValueError("answer must not be empty")
        return value
