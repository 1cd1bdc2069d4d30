from __future__ import annotations

from ..config import REBALANCE_MAX_TOP_ALLOCATION
from .contracts import Allocation, RebalancePlan, RebalanceTrade, ToolFacts
from .normalize import round2

DIVERSIFICATION_TARGET = "even_distribution"
MIN_TRADE_DELTA = 0.1


def _identity_plan(allocations: list[Allocation], max_top_allocation: float) -> RebalancePlan:
    # Incomplete allocation sets keep their relative weights but still sum to 100.
    current = {item.symbol: item.allocationInPercentage for item in allocations}
    return RebalancePlan(
        target_allocations=normalize_target_allocations(_rescale(current)),
        trades=[],
        max_top_allocation=max_top_allocation,
        diversification_target=DIVERSIFICATION_TARGET,
    )


def _trade(holding: Allocation, action: str, target: float) -> RebalanceTrade:
    return RebalanceTrade(
        symbol=holding.symbol,
        action=action,
        current_allocation=holding.allocationInPercentage,
        target_allocation=target,
        allocation_delta=target - holding.allocationInPercentage,
    )


def _rescale(targets: dict[str, float]) -> dict[str, float]:
    """Scale non-negative targets proportionally to 100; an all-zero set splits evenly."""
    clamped = {symbol: max(value, 0.0) for symbol, value in targets.items()}
    if not clamped:
        return clamped
    peak = max(clamped.values())
    if peak <= 0:
        return {symbol: round2(100 / len(clamped)) for symbol in clamped}
    # Weights relative to the peak keep the total finite for huge inputs.
    weights = {symbol: value / peak for symbol, value in clamped.items()}
    total = sum(weights.values())
    return {symbol: round2(weight * 100 / total) for symbol, weight in weights.items()}


def normalize_target_allocations(targets: dict[str, float]) -> dict[str, float]:
    """Make the targets sum to 100 without any negative entry.

    The residual goes onto the largest target. When that would drive it below
    zero the whole set is rescaled proportionally first.
    """
    normalized = {symbol: max(value, 0.0) for symbol, value in targets.items()}
    if not normalized:
        return normalized
    total = round2(sum(normalized.values()))
    if abs(total - 100) <= 0.01:
        return normalized
    if total <= 0 or max(normalized.values()) + (100 - total) < 0:
        normalized = _rescale(normalized)
        total = round2(sum(normalized.values()))
        if abs(total - 100) <= 0.01:
            return normalized

    largest_symbol = ""
    largest_value = 0.0
    for symbol, value in normalized.items():
        if value > largest_value:
            largest_symbol, largest_value = symbol, value
    if not largest_symbol:
        return normalized
    normalized[largest_symbol] = round2(normalized[largest_symbol] + (100 - total))
    return normalized


def generate_rebalance_plan(facts: ToolFacts, max_top_allocation: float = REBALANCE_MAX_TOP_ALLOCATION) -> RebalancePlan:
    """Cap the top holding and spread the excess across the other holdings.

    Each other holding receives an equal share of the excess, bounded by half
    of the excess. Trades whose absolute delta is 0.1 points or less are dropped.
    """
    allocations = facts.allocations
    if not allocations:
        return _identity_plan([], max_top_allocation)

    target_top = min(facts.top_allocation_percentage, max_top_allocation)
    top_holding = allocations[0]
    for holding in allocations[1:]:
        if holding.allocationInPercentage > top_holding.allocationInPercentage:
            top_holding = holding

    if top_holding.allocationInPercentage <= target_top:
        return _identity_plan(allocations, max_top_allocation)

    excess = top_holding.allocationInPercentage - target_top
    remaining = [holding for holding in allocations if holding.symbol != top_holding.symbol]
    equal_share = excess / len(remaining) if remaining else 0.0

    targets: dict[str, float] = {}
    trades: list[RebalanceTrade] = []
    for holding in allocations:
        current = holding.allocationInPercentage
        if holding.symbol == top_holding.symbol:
            target = target_top
            trades.append(_trade(holding, "sell", target))
        else:
            target = min(current + equal_share, current + excess * 0.5)
            if abs(target - current) > MIN_TRADE_DELTA:
                trades.append(_trade(holding, "buy", target))
        targets[holding.symbol] = round2(target)

    return RebalancePlan(
        target_allocations=normalize_target_allocations(targets),
        trades=[trade for trade in trades if abs(trade.allocation_delta) > MIN_TRADE_DELTA],
        max_top_allocation=max_top_allocation,
        diversification_target=DIVERSIFICATION_TARGET,
    )
