from __future__ import annotations

from .contracts import (
    AgentCheckStatus,
    AgentVerificationCheck,
    Confidence,
    ConfidenceBand,
    ToolCall,
    ToolFacts,
    VerificationReport,
)
from .normalize import round2

ARITHMETIC_CONFIDENCE = Confidence(score=0.95, band="high")
DIRECT_FLOOR_CONFIDENCE = Confidence(score=0.72, band="medium")


def confidence_band(score: float) -> ConfidenceBand:
    if score >= 0.8:
        return "high"
    if score >= 0.6:
        return "medium"
    return "low"


def calculate_confidence(tool_calls: list[ToolCall], checks: list[AgentVerificationCheck]) -> Confidence:
    successful = sum(1 for call in tool_calls if call.status == "success")
    passed = sum(1 for check in checks if check.status == "passed")
    failed = sum(1 for check in checks if check.status == "failed")

    tool_success_rate = successful / len(tool_calls) if tool_calls else 0.0
    pass_rate = passed / len(checks) if checks else 0.0

    if tool_calls:
        score = 0.4 + tool_success_rate * 0.35 + pass_rate * 0.25
    else:
        score = 0.2 + pass_rate * 0.3
    score -= failed * 0.1
    score = round2(max(0.0, min(1.0, score)))
    return Confidence(score=score, band=confidence_band(score))


def check(name: str, status: AgentCheckStatus, details: str) -> AgentVerificationCheck:
    return AgentVerificationCheck(check=name, status=status, details=details)


def tool_execution_check(tool_calls: list[ToolCall]) -> AgentVerificationCheck:
    failed = [call.tool for call in tool_calls if call.status == "failed"]
    if not tool_calls:
        return check("tool_execution", "passed", "No tools executed")
    if failed:
        return check(
            "tool_execution",
            "failed" if len(failed) == len(tool_calls) else "warning",
            f"{len(tool_calls) - len(failed)}/{len(tool_calls)} tools succeeded; failed={', '.join(failed)}",
        )
    return check("tool_execution", "passed", f"{len(tool_calls)}/{len(tool_calls)} tools succeeded")


def rebalance_verification_check(report: VerificationReport) -> AgentVerificationCheck:
    status: AgentCheckStatus = {"passed": "passed", "partial": "warning", "failed": "failed"}[report.status]
    failing = [item.name for item in report.checks if not item.passed]
    details = f"status={report.status}; confidence={report.confidence_score:.2f}"
    if failing:
        details = f"{details}; failing={', '.join(failing)}"
    return check("rebalance_verification", status, details)


def numerical_consistency_check(facts: ToolFacts) -> AgentVerificationCheck:
    if not facts.allocations:
        return check("numerical_consistency", "warning", "No allocation data available to verify")
    total = round2(sum(item.allocationInPercentage for item in facts.allocations))
    if abs(total - 100) <= 1:
        return check("numerical_consistency", "passed", f"Allocations sum to {total:.2f}%")
    return check("numerical_consistency", "warning", f"Allocations sum to {total:.2f}%, expected ~100%")


def output_completeness_check(answer: str) -> AgentVerificationCheck:
    if str(answer or "").strip():
        return check("output_completeness", "passed", "Answer generated successfully")
    return check("output_completeness", "failed", "Answer content is empty")
