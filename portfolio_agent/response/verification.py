from __future__ import annotations

from ..config import VERIFICATION_LATENCY_BUDGET_MS
from .contracts import (
    Allocation,
    RebalancePlan,
    RebalanceTrade,
    ToolFacts,
    VerificationCheck,
    VerificationReport,
    VerificationStatus,
    VerificationSummary,
)
from .normalize import round2

SUM_TOLERANCE = 0.5


def _check_allocations_sum(allocations: list[Allocation]) -> VerificationCheck:
    total = round2(sum(item.allocationInPercentage for item in allocations))
    passed = abs(total - 100) <= SUM_TOLERANCE
    return VerificationCheck(
        name="allocations_sum_100",
        passed=passed,
        severity="critical",
        message=(
            f"Allocations sum to {total:.1f}% (±0.5%)" if passed else f"Allocations sum to {total:.1f}%, expected 100%"
        ),
    )


def _check_plan_targets_sum(targets: dict[str, float]) -> VerificationCheck:
    total = round2(sum(targets.values()))
    passed = abs(total - 100) <= SUM_TOLERANCE
    return VerificationCheck(
        name="plan_targets_sum_100",
        passed=passed,
        severity="critical",
        message=(
            f"Plan targets sum to {total:.1f}% (±0.5%)" if passed else f"Plan targets sum to {total:.1f}%, expected 100%"
        ),
    )


def _check_no_negative_targets(targets: dict[str, float]) -> VerificationCheck:
    negatives = [(symbol, value) for symbol, value in targets.items() if value < 0]
    return VerificationCheck(
        name="no_negative_targets",
        passed=not negatives,
        severity="critical",
        message=(
            "No negative target allocations"
            if not negatives
            else "Negative targets found: " + ", ".join(f"{symbol}: {value}%" for symbol, value in negatives)
        ),
    )


def _check_trade_directions(trades: list[RebalanceTrade]) -> VerificationCheck:
    inconsistent = [
        trade
        for trade in trades
        if (trade.action == "sell" and trade.allocation_delta > 0) or (trade.action == "buy" and trade.allocation_delta < 0)
    ]
    return VerificationCheck(
        name="trade_directions_consistent",
        passed=not inconsistent,
        severity="critical",
        message=(
            "All trade directions are consistent"
            if not inconsistent
            else "Inconsistent trade directions: " + ", ".join(f"{trade.symbol}:{trade.action}" for trade in inconsistent)
        ),
    )


def _check_symbols_resolved(allocations: list[Allocation], plan_symbols: list[str]) -> VerificationCheck:
    known = {item.symbol for item in allocations}
    unresolved = [symbol for symbol in plan_symbols if symbol not in known]
    # Warning tier: a plan may legitimately introduce a new symbol.
    return VerificationCheck(
        name="symbols_resolved",
        passed=not unresolved,
        severity="warning",
        message="All plan symbols resolved in facts" if not unresolved else f"Unresolved symbols in plan: {', '.join(unresolved)}",
    )


def _check_concentration_improves(facts: ToolFacts, plan: RebalancePlan) -> VerificationCheck:
    current_top = facts.top_allocation_percentage
    target_top = max(plan.target_allocations.values()) if plan.target_allocations else 0.0
    improved = target_top < current_top
    return VerificationCheck(
        name="concentration_improves",
        passed=improved,
        severity="warning",
        message=(
            f"Top allocation improved from {current_top:.1f}% to {target_top:.1f}%"
            if improved
            else f"Top allocation did not improve ({current_top:.1f}% -> {target_top:.1f}%)"
        ),
    )


def _check_plan_has_trades(plan: RebalancePlan) -> VerificationCheck:
    count = len(plan.trades)
    return VerificationCheck(
        name="plan_has_trades",
        passed=count > 0,
        severity="warning",
        message=f"Plan has {count} rebalance trades" if count else "No rebalance trades needed",
    )


def _check_execution_latency(latency_ms: float, budget_ms: int) -> VerificationCheck:
    fast = latency_ms < budget_ms
    return VerificationCheck(
        name="execution_latency",
        passed=fast,
        severity="warning",
        message=f"Tools executed in {latency_ms:.0f}ms" if fast else f"Tools took {latency_ms:.0f}ms (over {budget_ms}ms budget)",
    )


def calculate_verification_confidence(
    passed_critical: int,
    total_critical: int,
    passed_warnings: int,
    total_warnings: int,
) -> float:
    critical_confidence = passed_critical / total_critical if total_critical else 1.0
    warning_penalty = (total_warnings - passed_warnings) * 0.05 if total_warnings else 0.0
    critical_penalty = 0.3 if total_critical - passed_critical > 0 else 0.0
    confidence = max(0.0, min(1.0, critical_confidence - warning_penalty - critical_penalty))
    return round2(confidence)


def verify_facts_and_plan(
    facts: ToolFacts,
    plan: RebalancePlan,
    latency_budget_ms: int = VERIFICATION_LATENCY_BUDGET_MS,
) -> VerificationReport:
    """Run the fixed critical and warning checks over facts and plan."""
    critical = [
        _check_allocations_sum(facts.allocations),
        _check_plan_targets_sum(plan.target_allocations),
        _check_no_negative_targets(plan.target_allocations),
        _check_trade_directions(plan.trades),
    ]
    warnings = [
        _check_symbols_resolved(facts.allocations, list(plan.target_allocations)),
        _check_concentration_improves(facts, plan),
        _check_plan_has_trades(plan),
        _check_execution_latency(facts.execution_latency_ms, latency_budget_ms),
    ]

    passed_critical = sum(1 for check in critical if check.passed)
    passed_warnings = sum(1 for check in warnings if check.passed)

    status: VerificationStatus = "passed"
    if passed_critical < len(critical):
        status = "failed"
    elif passed_warnings < len(warnings):
        status = "partial"

    return VerificationReport(
        status=status,
        confidence_score=calculate_verification_confidence(
            passed_critical, len(critical), passed_warnings, len(warnings)
        ),
        checks=[*critical, *warnings],
        summary=VerificationSummary(
            critical_checks=len(critical),
            passed_critical=passed_critical,
            warning_checks=len(warnings),
            passed_warnings=passed_warnings,
        ),
    )
