from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

ToolName = Literal[
    "portfolio_analysis",
    "risk_assessment",
    "rebalance_plan",
    "stress_test",
    "fire_analysis",
    "get_portfolio_summary",
    "get_current_holdings",
    "get_portfolio_risk_metrics",
    "get_recent_transactions",
    "market_data_lookup",
    "get_live_quote",
    "get_asset_fundamentals",
    "get_financial_news",
    "price_history",
    "symbol_lookup",
    "market_benchmarks",
    "calculate_rebalance_plan",
    "simulate_trade_impact",
    "transaction_categorize",
    "tax_estimate",
    "compliance_check",
    "account_overview",
    "exchange_rate",
    "activity_history",
    "demo_data",
    "seed_funds",
    "create_account",
    "create_order",
]
PolicyRoute = Literal["direct", "clarify", "tools"]
BlockReason = Literal[
    "none",
    "no_tool_query",
    "read_only",
    "needs_confirmation",
    "needs_rebalance_details",
    "needs_order_details",
    "needs_seed_funds_details",
    "tool_rate_limit",
    "unauthorized_access",
    "unknown",
]
GoalType = Literal["analyze", "buy", "sell", "rebalance", "compare", "protect", "learn", "general"]
PrimaryScope = Literal["portfolio", "market", "tax", "account", "fire", "general"]

# Planner output order; detection order never leaks into the plan.
TOOL_PRIORITY: tuple[ToolName, ...] = (
    "portfolio_analysis",
    "risk_assessment",
    "rebalance_plan",
    "stress_test",
    "fire_analysis",
    "get_portfolio_summary",
    "get_current_holdings",
    "get_portfolio_risk_metrics",
    "get_recent_transactions",
    "market_data_lookup",
    "get_live_quote",
    "get_asset_fundamentals",
    "get_financial_news",
    "price_history",
    "symbol_lookup",
    "market_benchmarks",
    "calculate_rebalance_plan",
    "simulate_trade_impact",
    "transaction_categorize",
    "tax_estimate",
    "compliance_check",
    "account_overview",
    "exchange_rate",
    "activity_history",
    "demo_data",
    "seed_funds",
    "create_account",
    "create_order",
)

ACTION_TOOLS: frozenset[str] = frozenset(
    {
        "rebalance_plan",
        "demo_data",
        "seed_funds",
        "create_account",
        "create_order",
    }
)
READ_ONLY_TOOLS: frozenset[str] = frozenset(name for name in TOOL_PRIORITY if name not in ACTION_TOOLS)


def order_tools(tools: list[str]) -> list[ToolName]:
    selected = set(tools)
    return [name for name in TOOL_PRIORITY if name in selected]


class PolicyLimits(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    maxToolCallsPerRequest: int = Field(default=8, ge=1)
    maxCallsPerActionTool: int = Field(default=1, ge=1)


class TurnContext(BaseModel):
    model_config = ConfigDict(extra="forbid")

    entities: list[str] = Field(default_factory=list)
    goalType: GoalType = "general"
    primaryScope: PrimaryScope = "general"


class PreviousTurn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    query: str
    successfulTools: list[ToolName] = Field(default_factory=list)
    context: TurnContext | None = None
    timestamp: str | None = None


class FollowUpSignal(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    isLikelyFollowUp: bool = False
    standaloneIntentConfidence: float = Field(default=0.0, ge=0.0, le=1.0)
    contextDependencyConfidence: float = Field(default=0.0, ge=0.0, le=1.0)
    topicContinuityConfidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reason_codes: list[str] = Field(default_factory=list)


class PolicyDecision(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    route: PolicyRoute
    blockReason: BlockReason = "none"
    blockedByPolicy: bool = False
    forcedDirect: bool = False
    plannedTools: list[ToolName] = Field(default_factory=list)
    toolsToExecute: list[ToolName] = Field(default_factory=list)
    limits: PolicyLimits | None = None
