from __future__ import annotations

from .contracts import FinalResponse, RebalancePlan, ToolCall, ToolFacts, VerificationReport
from .normalize import fmt_money

# Tools whose numbers are already carried by the facts/plan sections.
_FACT_BACKED_TOOLS = {"portfolio_analysis", "risk_assessment", "rebalance_plan"}
DEFAULT_DISCLAIMER = "Informational only, not investment advice."


def confidence_marker(score: float) -> str:
    if score >= 0.8:
        return "green"
    if score >= 0.6:
        return "yellow"
    return "red"


def build_risk_explanation(facts: ToolFacts) -> str:
    explanations: list[str] = []
    if facts.concentration_band == "high":
        explanations.append(f"High concentration detected: {facts.top_allocation_percentage:.1f}% in top holding")
    elif facts.concentration_band == "medium":
        explanations.append(f"Moderate concentration: {facts.top_allocation_percentage:.1f}% in top holding")
    if facts.hhi_score and facts.hhi_score > 2500:
        explanations.append(f"HHI score of {facts.hhi_score:.0f} indicates high concentration")
    if facts.risk_flags:
        explanations.append(f"Risk flags: {', '.join(facts.risk_flags)}")
    if not explanations:
        return "Portfolio concentration appears within normal ranges."
    return ". ".join(explanations)


def build_action_items(plan: RebalancePlan, facts: ToolFacts) -> list[str]:
    actions: list[str] = []
    if not plan.trades:
        actions.append("No rebalancing needed, the portfolio is already within the concentration cap")
    else:
        target_top = max(plan.target_allocations.values()) if plan.target_allocations else 0.0
        actions.append(
            f"Rebalance to reduce top allocation from {facts.top_allocation_percentage:.1f}% to {target_top:.1f}%"
        )
        sells = [trade for trade in plan.trades if trade.action == "sell"]
        buys = [trade for trade in plan.trades if trade.action == "buy"]
        if sells:
            top_sell = min(sells, key=lambda trade: trade.allocation_delta)
            actions.append(f"Sell {abs(top_sell.allocation_delta):.1f}% of {top_sell.symbol}")
        if buys:
            top_buy = max(buys, key=lambda trade: trade.allocation_delta)
            actions.append(f"Buy {top_buy.allocation_delta:.1f}% of {top_buy.symbol}")
    actions.append("Review quarterly to maintain diversification")
    return actions


def build_next_steps(verification: VerificationReport, plan: RebalancePlan) -> list[str]:
    steps: list[str] = []
    if verification.status == "failed":
        steps.append("Verification failed: review inputs before acting on this plan")
    elif verification.status == "partial":
        steps.append("Some checks did not pass: review the results carefully")
    else:
        steps.append("Plan verified against allocation and trade-direction checks")
    if plan.trades:
        steps.append("Execute trades gradually to limit market impact")
        steps.append("Consider tax implications in taxable accounts")
    steps.append("Monitor portfolio concentration over time")
    return steps


def render_final_response(facts: ToolFacts, plan: RebalancePlan, verification: VerificationReport) -> FinalResponse:
    if facts.allocations:
        top = max(facts.allocations, key=lambda item: item.allocationInPercentage)
        narrative = (
            f"Your portfolio has a {facts.concentration_band} concentration with your top holding "
            f"({top.symbol}) at {facts.top_allocation_percentage:.1f}%."
        )
    else:
        narrative = "No holdings were returned for this account."
    return FinalResponse(
        narrative=narrative,
        action_items=build_action_items(plan, facts),
        risk_explanation=build_risk_explanation(facts),
        next_steps=build_next_steps(verification, plan),
        confidence_marker=confidence_marker(verification.confidence_score),
    )


def render_portfolio_lines(facts: ToolFacts) -> list[str]:
    lines: list[str] = []
    if facts.allocations:
        top = max(facts.allocations, key=lambda item: item.allocationInPercentage)
        lines.append(
            f"Your portfolio has a {facts.concentration_band} concentration with your top holding "
            f"({top.symbol}) at {facts.top_allocation_percentage:.1f}%."
        )
        ranked = sorted(facts.allocations, key=lambda item: item.allocationInPercentage, reverse=True)[:5]
        lines.append("Top holdings: " + ", ".join(f"{item.symbol} {item.allocationInPercentage:.1f}%" for item in ranked))
    if facts.portfolio_value is not None:
        lines.append(f"Total portfolio value: {fmt_money(facts.portfolio_value)}.")
    if facts.holdings_count is not None:
        lines.append(f"Holdings count: {facts.holdings_count}.")
    if "risk_assessment" in facts.tools_used:
        lines.append(build_risk_explanation(facts) + ".")
    return lines


def render_tool_summary_lines(tool_calls: list[ToolCall]) -> list[str]:
    lines: list[str] = []
    for call in tool_calls:
        if call.status == "failed":
            lines.append(f"- {call.tool.replace('_', ' ')} is unavailable right now.")
            continue
        if call.tool in _FACT_BACKED_TOOLS or not call.outputSummary:
            continue
        lines.append(f"- {call.outputSummary}")
    return lines


def render_answer_text(
    facts: ToolFacts | None,
    plan: RebalancePlan | None,
    verification: VerificationReport | None,
    tool_calls: list[ToolCall],
) -> str:
    """Deterministic answer composed only from verified records and tool summaries."""
    lines: list[str] = []
    if facts is not None:
        lines.extend(render_portfolio_lines(facts))

    if plan is not None and verification is not None and facts is not None:
        final = render_final_response(facts, plan, verification)
        lines.append("Rebalance options:")
        lines.extend(f"- {item}" for item in final.action_items)
        lines.append("Next steps:")
        lines.extend(f"- {item}" for item in final.next_steps)

    summaries = render_tool_summary_lines(tool_calls)
    if summaries:
        lines.append("Details:")
        lines.extend(summaries)

    if not lines:
        return "Insufficient confidence to answer safely with the current evidence."
    lines.append(DEFAULT_DISCLAIMER)
    return "\n".join(lines)
