from __future__ import annotations

from typing import Any

from .contracts import Allocation, ConcentrationBand, ToolCall, ToolFacts
from .normalize import round2, safe_float, safe_int

DATA_SOURCE_TOOLS = {"get_live_quote", "symbol_lookup"}


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _extract_allocations(result: dict[str, Any]) -> list[Allocation]:
    allocations: list[Allocation] = []
    for holding in result.get("holdings") or []:
        if not isinstance(holding, dict):
            continue
        symbol = str(holding.get("symbol") or "").strip()
        if not symbol:
            continue
        value = holding.get("valueInBaseCurrency")
        allocations.append(
            Allocation(
                symbol=symbol,
                name=holding.get("name"),
                allocationInPercentage=safe_float(holding.get("allocationInPercentage")),
                valueInBaseCurrency=safe_float(value) if value is not None else None,
            )
        )
    return allocations


def calculate_concentration_band(max_allocation: float, total_allocations: float) -> ConcentrationBand:
    # Allocation sets that do not add up to ~100% are incomplete; stay conservative.
    if abs(round2(total_allocations) - 100) > 1:
        return "medium"
    if max_allocation > 40:
        return "high"
    if max_allocation > 25:
        return "medium"
    return "low"


def aggregate_facts(tool_calls: list[ToolCall]) -> ToolFacts:
    """Reduce successful tool outputs into one flat fact record.

    Only ``portfolio_analysis``, ``get_portfolio_summary``, ``risk_assessment``,
    ``fire_analysis`` and the data-source tools contribute fields; every call
    is still listed in ``tools_used`` and adds its latency.
    """
    facts = ToolFacts()
    max_allocation = 0.0
    allocations_sum = 0.0

    for call in tool_calls:
        facts.tools_used.append(call.tool)
        result = _as_dict(call.state.get("result")) if call.status == "success" else {}

        if call.tool == "portfolio_analysis" and result:
            facts.allocations = _extract_allocations(result)
            percentages = [item.allocationInPercentage for item in facts.allocations]
            max_allocation = max([max_allocation, *percentages]) if percentages else max_allocation
            allocations_sum = sum(percentages)
        elif call.tool == "get_portfolio_summary" and result:
            total_value = safe_float(result.get("totalValueInBaseCurrency"))
            if total_value:
                facts.portfolio_value = total_value
            holdings_count = safe_int(result.get("holdingsCount"))
            if holdings_count:
                facts.holdings_count = holdings_count
        elif call.tool == "risk_assessment" and result:
            band = str(result.get("concentrationBand") or "")
            if band in {"high", "medium", "low"}:
                facts.concentration_band = band  # type: ignore[assignment]
            if result.get("hhi") is not None:
                facts.hhi_score = safe_float(result.get("hhi"))
            if band == "high":
                facts.risk_flags.append("high_concentration")
            if band == "medium":
                facts.risk_flags.append("moderate_concentration")
            if safe_float(result.get("topHoldingAllocation")) > 30:
                facts.risk_flags.append("single_holding_over_30")
        elif call.tool == "fire_analysis" and result:
            if str(result.get("status") or "") == "infeasible":
                facts.risk_flags.append("fire_infeasible")
        elif call.tool in DATA_SOURCE_TOOLS:
            facts.data_sources.append(call.tool)

        if call.durationMs:
            facts.execution_latency_ms += call.durationMs

    facts.top_allocation_percentage = max_allocation
    facts.concentration_band = calculate_concentration_band(max_allocation, allocations_sum)
    return facts
