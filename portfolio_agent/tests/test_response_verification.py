from __future__ import annotations

import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from portfolio_agent.response.confidence import (  # noqa: E402
    calculate_confidence,
    check,
    confidence_band,
    tool_execution_check,
)
from portfolio_agent.response.contracts import (  # noqa: E402
    Allocation,
    RebalancePlan,
    RebalanceTrade,
    ToolCall,
    ToolFacts,
)
from portfolio_agent.response.rebalance import generate_rebalance_plan  # noqa: E402
from portfolio_agent.response.schemas import (  # noqa: E402
    validate_agent_request_payload,
    validate_answer_prose_payload,
    validate_tool_result_payload,
)
from portfolio_agent.response.validator import validate_answer_grounding  # noqa: E402
from portfolio_agent.response.verification import calculate_verification_confidence, verify_facts_and_plan  # noqa: E402


def _facts(*allocations: tuple[str, float], latency: float = 100) -> ToolFacts:
    return ToolFacts(
        allocations=[Allocation(symbol=symbol, allocationInPercentage=pct) for symbol, pct in allocations],
        top_allocation_percentage=max(pct for _, pct in allocations),
        execution_latency_ms=latency,
    )


class VerificationTests(unittest.TestCase):
    def test_identity_plan_is_partial(self) -> None:
        facts = _facts(("AAPL", 25), ("MSFT", 25), ("VTI", 25), ("BND", 25))
        report = verify_facts_and_plan(facts, generate_rebalance_plan(facts))
        self.assertEqual(report.status, "partial")
        failing = [item.name for item in report.checks if not item.passed]
        self.assertIn("plan_has_trades", failing)
        self.assertNotIn("allocations_sum_100", failing)
        self.assertEqual(report.summary.passed_critical, 4)
        self.assertAlmostEqual(report.confidence_score, 0.9, places=2)

    def test_concentrated_portfolio_passes(self) -> None:
        facts = _facts(("AAPL", 50), ("MSFT", 25), ("VTI", 15), ("BND", 10))
        report = verify_facts_and_plan(facts, generate_rebalance_plan(facts))
        self.assertEqual(report.status, "passed")
        self.assertEqual(report.confidence_score, 1.0)
        self.assertEqual(len(report.checks), 8)

    def test_bad_allocation_sum_fails(self) -> None:
        facts = _facts(("AAPL", 50), ("MSFT", 20))
        report = verify_facts_and_plan(facts, generate_rebalance_plan(facts))
        self.assertEqual(report.status, "failed")
        self.assertIn("allocations_sum_100", [item.name for item in report.checks if not item.passed])

    def test_inconsistent_trade_direction_fails(self) -> None:
        facts = _facts(("AAPL", 50), ("BND", 50))
        plan = RebalancePlan(
            target_allocations={"AAPL": 40, "BND": 60},
            trades=[
                RebalanceTrade(
                    symbol="AAPL",
                    action="buy",
                    current_allocation=50,
                    target_allocation=40,
                    allocation_delta=-10,
                )
            ],
        )
        report = verify_facts_and_plan(facts, plan)
        self.assertEqual(report.status, "failed")
        self.assertIn("trade_directions_consistent", [item.name for item in report.checks if not item.passed])

    def test_slow_tools_only_warn(self) -> None:
        facts = _facts(("AAPL", 50), ("MSFT", 25), ("VTI", 15), ("BND", 10), latency=7000)
        report = verify_facts_and_plan(facts, generate_rebalance_plan(facts))
        self.assertEqual(report.status, "partial")

    def test_verification_confidence_formula(self) -> None:
        self.assertEqual(calculate_verification_confidence(4, 4, 4, 4), 1.0)
        self.assertEqual(calculate_verification_confidence(4, 4, 2, 4), 0.9)
        self.assertEqual(calculate_verification_confidence(3, 4, 4, 4), 0.45)
        self.assertEqual(calculate_verification_confidence(0, 4, 0, 4), 0.0)


class ConfidenceTests(unittest.TestCase):
    def test_bands(self) -> None:
        self.assertEqual(confidence_band(0.8), "high")
        self.assertEqual(confidence_band(0.79), "medium")
        self.assertEqual(confidence_band(0.6), "medium")
        self.assertEqual(confidence_band(0.59), "low")

    def test_all_tools_and_checks_pass(self) -> None:
        calls = [ToolCall(tool="portfolio_analysis", status="success")]
        checks = [check("tool_execution", "passed", "ok"), check("output_completeness", "passed", "ok")]
        confidence = calculate_confidence(calls, checks)
        self.assertEqual(confidence.score, 1.0)
        self.assertEqual(confidence.band, "high")

    def test_failed_checks_are_penalized(self) -> None:
        calls = [
            ToolCall(tool="portfolio_analysis", status="success"),
            ToolCall(tool="get_live_quote", status="failed"),
        ]
        checks = [check("tool_execution", "warning", "1/2"), check("rebalance_verification", "failed", "x")]
        confidence = calculate_confidence(calls, checks)
        # 0.4 + 0.35 * 0.5 + 0.25 * 0 - 0.1
        self.assertAlmostEqual(confidence.score, 0.48, delta=0.01)
        self.assertEqual(confidence.band, "low")

    def test_no_tools(self) -> None:
        confidence = calculate_confidence([], [check("policy_gating", "passed", "ok")])
        self.assertEqual(confidence.score, 0.5)

    def test_tool_execution_check(self) -> None:
        failed = ToolCall(tool="get_live_quote", status="failed")
        ok = ToolCall(tool="portfolio_analysis", status="success")
        self.assertEqual(tool_execution_check([ok]).status, "passed")
        self.assertEqual(tool_execution_check([ok, failed]).status, "warning")
        self.assertEqual(tool_execution_check([failed]).status, "failed")


class GroundingValidatorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.grounding = {"facts": {"top_allocation_percentage": 35.0, "portfolio_value": 100000.0}}

    def test_grounded_numbers_pass(self) -> None:
        self.assertEqual(validate_answer_grounding(["Your top holding is 35.0% of 100,000."], self.grounding), [])

    def test_invented_numbers_are_flagged(self) -> None:
        errors = validate_answer_grounding(["Expect a 12.5% return."], self.grounding)
        self.assertIn("ungrounded_numeric_tokens", errors)
        self.assertIn("ungrounded_numeric_tokens_sample:12.5%", errors)

    def test_small_ordinals_are_allowed(self) -> None:
        self.assertEqual(validate_answer_grounding(["Here are 3 options."], self.grounding), [])

    def test_overflowing_number_is_flagged_not_raised(self) -> None:
        huge = "9" * 400
        errors = validate_answer_grounding([f"Your balance is {huge}."], self.grounding)
        self.assertIn("ungrounded_numeric_tokens", errors)

    def test_execution_claims_need_an_action_tool(self) -> None:
        errors = validate_answer_grounding(["I bought the shares for you."], self.grounding)
        self.assertEqual(errors, ["execution_claim_without_tool"])
        self.assertEqual(
            validate_answer_grounding(["I bought the shares for you."], self.grounding, action_tools_executed=True),
            [],
        )


class SchemaTests(unittest.TestCase):
    def test_answer_prose_payload(self) -> None:
        payload = {
            "schema_version": "answer_prose_v1",
            "summary_lines": ["Top holding AAPL at 35.0%."],
            "next_steps": [],
            "disclaimer": "Informational only, not investment advice.",
        }
        self.assertEqual(validate_answer_prose_payload(payload), [])
        self.assertTrue(validate_answer_prose_payload({**payload, "summary_lines": []}))

    def test_agent_request_payload(self) -> None:
        self.assertEqual(validate_agent_request_payload({"query": "hello", "session_id": "s1"}), [])
        errors = validate_agent_request_payload({"prompt": "hello"})
        self.assertTrue(any("query" in message for message in errors))

    def test_tool_result_payload(self) -> None:
        self.assertEqual(validate_tool_result_payload("portfolio_analysis", {"holdings": []}), [])
        self.assertTrue(validate_tool_result_payload("portfolio_analysis", {"holdings": "none"}))
        self.assertTrue(validate_tool_result_payload("get_live_quote", ["not", "an", "object"]))


if __name__ == "__main__":
    unittest.main()
