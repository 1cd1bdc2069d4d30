from __future__ import annotations

import sys
import unittest
from pathlib import Path
from unittest.mock import patch

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from portfolio_agent.graph import ABSTAIN_RESPONSE, decide_and_answer  # noqa: E402
from portfolio_agent.memory import BackendMemoryStore, InMemoryStore, load_turns, session_key  # noqa: E402
from portfolio_agent.router.policy import ORDER_DETAILS_RESPONSE  # noqa: E402
from portfolio_agent.tools import ToolInvocationError  # noqa: E402

PORTFOLIO = {
    "holdings": [
        {"symbol": "AAPL", "allocationInPercentage": 50, "valueInBaseCurrency": 50_000},
        {"symbol": "MSFT", "allocationInPercentage": 25, "valueInBaseCurrency": 25_000},
        {"symbol": "VTI", "allocationInPercentage": 15, "valueInBaseCurrency": 15_000},
        {"symbol": "BND", "allocationInPercentage": 10, "valueInBaseCurrency": 10_000},
    ],
    "totalValueInBaseCurrency": 100_000,
}


class DirectAndClarifyRouteTests(unittest.TestCase):
    def test_greeting_gets_direct_floor_confidence(self) -> None:
        result = decide_and_answer("hello")
        self.assertEqual(result.route, "direct")
        self.assertEqual(result.toolCalls, [])
        self.assertEqual(result.confidence.score, 0.72)
        self.assertEqual(result.confidence.band, "medium")
        self.assertIsNone(result.escalation)

    def test_arithmetic_answer(self) -> None:
        result = decide_and_answer("2+2")
        self.assertEqual(result.route, "direct")
        self.assertIn("4", result.answer)
        self.assertEqual(result.confidence.score, 0.95)

    def test_order_without_details_asks_for_them(self) -> None:
        with patch("portfolio_agent.execution.invoke_tool") as invoke:
            result = decide_and_answer("buy AAPL")
        invoke.assert_not_called()
        self.assertEqual(result.route, "clarify")
        self.assertEqual(result.answer, ORDER_DETAILS_RESPONSE)
        self.assertEqual(result.policy["blockReason"], "needs_order_details")
        self.assertEqual(result.confidence.band, "low")
        self.assertEqual([item.check for item in result.checks], ["policy_gating", "output_completeness"])
        self.assertIsNone(result.escalation)


class ToolRouteTests(unittest.TestCase):
    def test_rebalance_request_end_to_end(self) -> None:
        with patch("portfolio_agent.execution.invoke_tool", return_value=PORTFOLIO) as invoke:
            result = decide_and_answer("Help me rebalance my portfolio", user_id="u1")

        invoke.assert_called_once()
        self.assertEqual(result.route, "tools")
        self.assertEqual(
            {call.tool for call in result.toolCalls},
            {"portfolio_analysis", "risk_assessment", "rebalance_plan"},
        )
        self.assertEqual(result.facts.hhi_score, 3450)
        self.assertEqual(result.facts.concentration_band, "high")
        self.assertEqual(
            result.plan.target_allocations,
            {"AAPL": 25, "MSFT": 33.34, "VTI": 23.33, "BND": 18.33},
        )
        self.assertEqual(result.verification.status, "passed")
        self.assertEqual(
            [item.check for item in result.checks],
            ["policy_gating", "tool_execution", "rebalance_verification", "output_completeness"],
        )
        self.assertEqual(result.confidence.score, 1.0)
        self.assertIn("Rebalance options:", result.answer)
        self.assertIsNone(result.escalation)

    def test_read_only_request_has_no_plan(self) -> None:
        with patch("portfolio_agent.execution.invoke_tool", return_value=PORTFOLIO):
            result = decide_and_answer("Show my portfolio allocation")
        self.assertEqual(result.route, "tools")
        self.assertIsNone(result.plan)
        self.assertIsNone(result.verification)
        self.assertIn("numerical_consistency", [item.check for item in result.checks])

    def test_all_tools_failing_abstains_and_escalates(self) -> None:
        with patch(
            "portfolio_agent.execution.invoke_tool",
            side_effect=ToolInvocationError("portfolio_analysis", "client error 401"),
        ):
            result = decide_and_answer("Show my portfolio allocation")
        self.assertEqual(result.route, "tools")
        self.assertEqual([call.status for call in result.toolCalls], ["failed"])
        self.assertEqual(result.answer, ABSTAIN_RESPONSE)
        self.assertEqual(result.confidence.band, "low")
        self.assertIsNotNone(result.escalation)
        self.assertIn("tool_execution", result.escalation.reason)


def _prose(*lines: str) -> dict:
    return {
        "schema_version": "answer_prose_v1",
        "summary_lines": list(lines),
        "next_steps": [],
        "disclaimer": "Informational only, not investment advice.",
    }


@patch("portfolio_agent.graph.RESPONSE_MODE", "llm_enforce")
class LlmRendererTests(unittest.TestCase):
    def test_grounded_prose_replaces_template(self) -> None:
        with patch("portfolio_agent.execution.invoke_tool", return_value=PORTFOLIO), patch(
            "portfolio_agent.graph.synthesize_answer_with_bedrock",
            return_value=(_prose("Your top holding AAPL is at 50.0%."), [], {"model_id": "m"}),
        ):
            result = decide_and_answer("Help me rebalance my portfolio")
        self.assertEqual(
            result.answer,
            "Your top holding AAPL is at 50.0%.\nInformational only, not investment advice.",
        )

    def test_invented_numbers_fall_back_to_template(self) -> None:
        with patch("portfolio_agent.execution.invoke_tool", return_value=PORTFOLIO), patch(
            "portfolio_agent.graph.synthesize_answer_with_bedrock",
            return_value=(_prose("Expect a 12.5% annual return."), [], {"model_id": "m"}),
        ):
            result = decide_and_answer("Help me rebalance my portfolio")
        self.assertIn("Rebalance options:", result.answer)
        self.assertNotIn("12.5%", result.answer)

    def test_synthesis_failure_falls_back_to_template(self) -> None:
        with patch("portfolio_agent.execution.invoke_tool", return_value=PORTFOLIO), patch(
            "portfolio_agent.graph.synthesize_answer_with_bedrock",
            return_value=(None, ["model_not_configured"], {}),
        ):
            result = decide_and_answer("Help me rebalance my portfolio")
        self.assertIn("Rebalance options:", result.answer)


class SessionMemoryTests(unittest.TestCase):
    def test_follow_up_reuses_previous_read_tools(self) -> None:
        store = InMemoryStore()
        with patch("portfolio_agent.execution.invoke_tool", return_value=PORTFOLIO):
            decide_and_answer("Help me rebalance my portfolio", user_id="u1", session_id="s1", memory_store=store)
            result = decide_and_answer("should i split those?", user_id="u1", session_id="s1", memory_store=store)

        self.assertTrue(result.followUp["isLikelyFollowUp"])
        self.assertEqual(result.route, "tools")
        # rebalance_plan needs explicit action wording and is not replayed here.
        self.assertEqual([call.tool for call in result.toolCalls], ["portfolio_analysis", "risk_assessment"])
        self.assertEqual(result.policy["blockReason"], "needs_confirmation")

        turns = load_turns(store, session_key("u1", "s1"))
        self.assertEqual(len(turns), 2)
        self.assertEqual(turns[0]["successfulTools"], ["portfolio_analysis", "risk_assessment", "rebalance_plan"])
        self.assertEqual(turns[1]["query"], "should i split those?")

    def test_no_session_means_no_memory_write(self) -> None:
        store = InMemoryStore()
        decide_and_answer("hello", user_id="u1", memory_store=store)
        self.assertEqual(load_turns(store, session_key("u1", "")), [])

    def test_memory_read_failure_still_answers(self) -> None:
        store = BackendMemoryStore("t")
        with patch("portfolio_agent.memory.memory_get", side_effect=ConnectionError("down")), patch(
            "portfolio_agent.memory.memory_set"
        ) as setter, self.assertLogs("portfolio_agent.graph", level="WARNING") as logs:
            result = decide_and_answer("hi", session_id="s1", memory_store=store)

        self.assertEqual(result.route, "direct")
        self.assertTrue(result.answer)
        self.assertFalse(result.followUp.get("isLikelyFollowUp", False))
        # History that could not be read is not overwritten.
        setter.assert_not_called()
        self.assertTrue(any("memory_read_failed" in line for line in logs.output))

    def test_session_is_read_once_per_request(self) -> None:
        store = InMemoryStore()
        with patch.object(store, "get", wraps=store.get) as getter:
            decide_and_answer("hello", user_id="u1", session_id="s1", memory_store=store)
        getter.assert_called_once_with(session_key("u1", "s1"))
        self.assertEqual(len(load_turns(store, session_key("u1", "s1"))), 1)


if __name__ == "__main__":
    unittest.main()
