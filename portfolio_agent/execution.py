from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict

from .response.contracts import ToolCall, ToolFacts
from .response.facts import aggregate_facts, calculate_concentration_band
from .response.normalize import round2, safe_float
from .response.rebalance import generate_rebalance_plan
from .tools import invoke_tool

logger = logging.getLogger(__name__)

STRESS_SHOCK_PERCENTAGE = 0.2


@dataclass
class ToolExecutionContext:
    """Request-scoped state threaded through the execution loop.

    ``portfolio_analysis`` is fetched at most once per request; local tools
    read it from here instead of calling the backend again.
    """

    user_token: str = ""
    user_id: str = ""
    query: str = ""
    symbols: list[str] = field(default_factory=list)
    trace_id: str = ""
    portfolio_analysis: Dict[str, Any] | None = None


def _ensure_portfolio_analysis(context: ToolExecutionContext) -> Dict[str, Any]:
    if context.portfolio_analysis is None:
        context.portfolio_analysis = invoke_tool("portfolio_analysis", {"userId": context.user_id}, context.user_token)
    return context.portfolio_analysis


def _snapshot_facts(context: ToolExecutionContext) -> ToolFacts:
    analysis = _ensure_portfolio_analysis(context)
    return aggregate_facts(
        [ToolCall(tool="portfolio_analysis", status="success", state={"result": analysis})]
    )


def run_risk_assessment(context: ToolExecutionContext) -> Dict[str, Any]:
    facts = _snapshot_facts(context)
    percentages = [item.allocationInPercentage for item in facts.allocations]
    # HHI on the 0-10000 scale (percent shares squared).
    hhi = round2(sum(value * value for value in percentages))
    top = max(percentages) if percentages else 0.0
    band = calculate_concentration_band(top, sum(percentages))
    return {
        "hhi": hhi,
        "topHoldingAllocation": round2(top),
        "concentrationBand": band,
        "holdingsCount": len(percentages),
        "summary": f"concentration={band}, top holding {top:.2f}%, HHI {hhi:.0f}",
    }


def run_stress_test(context: ToolExecutionContext) -> Dict[str, Any]:
    analysis = _ensure_portfolio_analysis(context)
    total = safe_float(analysis.get("totalValueInBaseCurrency"))
    if not total:
        total = sum(safe_float(item.get("valueInBaseCurrency")) for item in analysis.get("holdings") or [])
    drawdown = round2(total * STRESS_SHOCK_PERCENTAGE)
    return {
        "shockPercentage": STRESS_SHOCK_PERCENTAGE,
        "estimatedDrawdownInBaseCurrency": drawdown,
        "projectedValueInBaseCurrency": round2(total - drawdown),
        "summary": f"{STRESS_SHOCK_PERCENTAGE * 100:.0f}% shock drawdown {drawdown:.2f}",
    }


def run_rebalance_plan(context: ToolExecutionContext) -> Dict[str, Any]:
    plan = generate_rebalance_plan(_snapshot_facts(context))
    return {
        "plan": plan.model_dump(),
        "summary": f"{len(plan.trades)} rebalance trades toward a {plan.max_top_allocation:.1f}% top allocation cap",
    }


LOCAL_TOOLS: Dict[str, Callable[[ToolExecutionContext], Dict[str, Any]]] = {
    "risk_assessment": run_risk_assessment,
    "stress_test": run_stress_test,
    "rebalance_plan": run_rebalance_plan,
}


def _tool_params(tool: str, context: ToolExecutionContext) -> Dict[str, Any]:
    params: Dict[str, Any] = {"userId": context.user_id or None}
    if context.symbols:
        params["symbols"] = list(context.symbols)
    if tool in {"create_order", "seed_funds", "create_account", "simulate_trade_impact", "tax_estimate"}:
        params["query"] = context.query
    return params


def _run_tool(tool: str, context: ToolExecutionContext) -> Dict[str, Any]:
    if tool in LOCAL_TOOLS:
        return LOCAL_TOOLS[tool](context)
    if tool == "portfolio_analysis":
        return _ensure_portfolio_analysis(context)
    return invoke_tool(tool, _tool_params(tool, context), context.user_token)


def _output_summary(tool: str, result: Dict[str, Any]) -> str:
    summary = result.get("summary")
    if isinstance(summary, str) and summary.strip():
        return f"{tool}: {summary.strip()}"
    if tool == "portfolio_analysis":
        return f"{tool}: {len(result.get('holdings') or [])} holdings"
    return f"{tool}: completed"


def execute_tools(tools: list[str], context: ToolExecutionContext) -> list[ToolCall]:
    """Run approved tools in order; one ToolCall per tool, failures included."""
    calls: list[ToolCall] = []
    for tool in tools:
        started = time.perf_counter()
        params = _tool_params(tool, context)
        try:
            result = _run_tool(tool, context)
        except Exception as exc:
            duration = round2((time.perf_counter() - started) * 1000)
            logger.warning("tool_call_failed tool=%s trace=%s error=%s", tool, context.trace_id, exc)
            calls.append(
                ToolCall(
                    tool=tool,
                    status="failed",
                    input=params,
                    outputSummary=f"{tool} failed: {exc}",
                    durationMs=duration,
                )
            )
            continue
        duration = round2((time.perf_counter() - started) * 1000)
        calls.append(
            ToolCall(
                tool=tool,
                status="success",
                input=params,
                outputSummary=_output_summary(tool, result),
                durationMs=duration,
                state={"result": result},
            )
        )
    return calls
