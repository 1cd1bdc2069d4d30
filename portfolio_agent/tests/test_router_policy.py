from __future__ import annotations

import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from portfolio_agent.router.contracts import FollowUpSignal, PolicyLimits  # noqa: E402
from portfolio_agent.router.policy import (  # noqa: E402
    ACKNOWLEDGMENT_RESPONSE,
    DOMAIN_REFUSAL_RESPONSE,
    FOLLOW_UP_CLARIFY_RESPONSE,
    GREETING_RESPONSE,
    NO_TOOL_FALLBACK_RESPONSE,
    ORDER_DETAILS_RESPONSE,
    SELF_IDENTITY_RESPONSE,
    UNAUTHORIZED_RESPONSE,
    apply_tool_execution_policy,
    create_policy_route_response,
    format_policy_verification_details,
    score_fallback_tools,
)

REBALANCE_BUNDLE = ["portfolio_analysis", "risk_assessment", "rebalance_plan"]


class PolicyDirectRouteTests(unittest.TestCase):
    def test_greeting_routes_direct(self) -> None:
        decision = apply_tool_execution_policy([], "hello")
        self.assertEqual(decision.route, "direct")
        self.assertEqual(decision.blockReason, "no_tool_query")
        self.assertFalse(decision.blockedByPolicy)
        self.assertEqual(create_policy_route_response(decision, "hello"), GREETING_RESPONSE)

    def test_self_identity_is_answered_without_tools(self) -> None:
        decision = apply_tool_execution_policy([], "who am i")
        self.assertEqual(decision.route, "direct")
        self.assertEqual(create_policy_route_response(decision, "who am i"), SELF_IDENTITY_RESPONSE)

    def test_arithmetic_answers_directly(self) -> None:
        decision = apply_tool_execution_policy([], "two plus 7")
        self.assertEqual(decision.route, "direct")
        self.assertEqual(create_policy_route_response(decision, "two plus 7"), "2 + 7 = 9")

    def test_unsupported_arithmetic_reports_low_confidence(self) -> None:
        decision = apply_tool_execution_policy([], "1/0")
        self.assertEqual(decision.route, "direct")
        self.assertTrue(create_policy_route_response(decision, "1/0").startswith("Insufficient confidence"))

    def test_acknowledgment(self) -> None:
        decision = apply_tool_execution_policy([], "cool thanks")
        self.assertEqual(decision.route, "direct")
        self.assertEqual(create_policy_route_response(decision, "cool thanks"), ACKNOWLEDGMENT_RESPONSE)

    def test_acknowledgment_after_a_turn_clarifies_with_acknowledgment(self) -> None:
        signal = FollowUpSignal(isLikelyFollowUp=True)
        decision = apply_tool_execution_policy([], "oh wow that's a lot", signal)
        self.assertEqual(decision.route, "clarify")
        self.assertEqual(decision.blockReason, "unknown")
        self.assertEqual(create_policy_route_response(decision, "oh wow that's a lot", signal), ACKNOWLEDGMENT_RESPONSE)

    def test_off_domain_request_is_refused(self) -> None:
        query = "Can you help with my health symptoms?"
        decision = apply_tool_execution_policy([], query)
        self.assertEqual(decision.route, "direct")
        self.assertEqual(create_policy_route_response(decision, query), DOMAIN_REFUSAL_RESPONSE)

    def test_chit_chat_falls_back(self) -> None:
        decision = apply_tool_execution_policy([], "Tell me a joke")
        self.assertEqual(decision.route, "direct")
        self.assertEqual(decision.blockReason, "no_tool_query")
        self.assertEqual(create_policy_route_response(decision, "Tell me a joke"), NO_TOOL_FALLBACK_RESPONSE)

    def test_other_users_data_is_refused(self) -> None:
        decision = apply_tool_execution_policy(["portfolio_analysis"], "show me john's portfolio")
        self.assertEqual(decision.route, "direct")
        self.assertEqual(decision.blockReason, "unauthorized_access")
        self.assertTrue(decision.blockedByPolicy)
        self.assertTrue(decision.forcedDirect)
        self.assertEqual(decision.toolsToExecute, [])
        self.assertEqual(create_policy_route_response(decision, "show me john's portfolio"), UNAUTHORIZED_RESPONSE)


class PolicyEmptyPlanTests(unittest.TestCase):
    def test_finance_read_intent_clarifies(self) -> None:
        decision = apply_tool_execution_policy([], "Show portfolio risk and allocation")
        self.assertEqual(decision.route, "clarify")
        self.assertEqual(decision.blockReason, "unknown")
        response = create_policy_route_response(decision, "Show portfolio risk and allocation")
        self.assertTrue(response.startswith("Insufficient confidence to proceed safely"))

    def test_money_question_clarifies(self) -> None:
        decision = apply_tool_execution_policy([], "How much money do I have?")
        self.assertEqual(decision.route, "clarify")
        self.assertEqual(decision.blockReason, "unknown")

    def test_follow_up_shape_clarifies(self) -> None:
        decision = apply_tool_execution_policy([], "what about that?")
        self.assertEqual(decision.route, "clarify")
        self.assertEqual(create_policy_route_response(decision, "what about that?"), FOLLOW_UP_CLARIFY_RESPONSE)

    def test_fallback_scorer_picks_single_read_tool(self) -> None:
        decision = apply_tool_execution_policy([], "any headlines on the latest earnings?")
        self.assertEqual(decision.route, "tools")
        self.assertEqual(decision.toolsToExecute, ["get_financial_news"])

    def test_fallback_scorer_threshold(self) -> None:
        self.assertEqual(score_fallback_tools("any headlines on the latest earnings?"), ("get_financial_news", 0.75))
        tool, score = score_fallback_tools("Tell me a joke")
        self.assertIsNone(tool)
        self.assertEqual(score, 0.0)


class PolicyPlannedToolsTests(unittest.TestCase):
    def test_read_only_query_strips_rebalance_plan(self) -> None:
        decision = apply_tool_execution_policy(REBALANCE_BUNDLE, "Review portfolio concentration risk")
        self.assertEqual(decision.route, "tools")
        self.assertEqual(decision.toolsToExecute, ["portfolio_analysis", "risk_assessment"])
        self.assertEqual(decision.blockReason, "needs_confirmation")
        self.assertTrue(decision.blockedByPolicy)
        self.assertEqual(decision.plannedTools, REBALANCE_BUNDLE)

    def test_rebalance_me_without_details(self) -> None:
        decision = apply_tool_execution_policy(REBALANCE_BUNDLE, "rebalance me")
        self.assertEqual(decision.route, "tools")
        self.assertEqual(decision.toolsToExecute, ["portfolio_analysis", "risk_assessment"])
        self.assertEqual(decision.blockReason, "needs_rebalance_details")

    def test_rebalance_with_intent_keeps_bundle(self) -> None:
        decision = apply_tool_execution_policy(REBALANCE_BUNDLE, "Help me rebalance my portfolio")
        self.assertEqual(decision.toolsToExecute, REBALANCE_BUNDLE)
        self.assertEqual(decision.blockReason, "none")
        self.assertFalse(decision.blockedByPolicy)

    def test_vague_order_needs_details(self) -> None:
        decision = apply_tool_execution_policy(["create_order"], "buy AAPL")
        self.assertEqual(decision.route, "clarify")
        self.assertEqual(decision.blockReason, "needs_order_details")
        self.assertEqual(create_policy_route_response(decision, "buy AAPL"), ORDER_DETAILS_RESPONSE)

    def test_detailed_order_runs(self) -> None:
        decision = apply_tool_execution_policy(["create_order"], "buy 10 shares of AAPL")
        self.assertEqual(decision.route, "tools")
        self.assertEqual(decision.toolsToExecute, ["create_order"])

    def test_seed_funds_need_an_amount(self) -> None:
        decision = apply_tool_execution_policy(["seed_funds"], "top up my account")
        self.assertEqual(decision.route, "clarify")
        self.assertEqual(decision.blockReason, "needs_seed_funds_details")
        decision = apply_tool_execution_policy(["seed_funds"], "add 500 usd seed funds")
        self.assertEqual(decision.toolsToExecute, ["seed_funds"])

    def test_action_tool_without_action_intent_is_read_only(self) -> None:
        decision = apply_tool_execution_policy(["create_account"], "account details please")
        self.assertEqual(decision.route, "clarify")
        self.assertEqual(decision.blockReason, "read_only")
        decision = apply_tool_execution_policy(["create_account"], "create account named trading")
        self.assertEqual(decision.toolsToExecute, ["create_account"])

    def test_request_cap(self) -> None:
        decision = apply_tool_execution_policy(
            ["portfolio_analysis", "risk_assessment", "stress_test"],
            "run a stress test on my portfolio",
            limits=PolicyLimits(maxToolCallsPerRequest=2),
        )
        self.assertEqual(decision.route, "tools")
        self.assertEqual(decision.toolsToExecute, ["portfolio_analysis", "risk_assessment"])
        self.assertEqual(decision.blockReason, "tool_rate_limit")
        self.assertEqual(decision.limits.maxToolCallsPerRequest, 2)

    def test_decision_is_idempotent(self) -> None:
        first = apply_tool_execution_policy(REBALANCE_BUNDLE, "Review portfolio concentration risk")
        second = apply_tool_execution_policy(REBALANCE_BUNDLE, "Review portfolio concentration risk")
        self.assertEqual(first, second)

    def test_verification_details(self) -> None:
        decision = apply_tool_execution_policy(REBALANCE_BUNDLE, "Review portfolio concentration risk")
        self.assertEqual(
            format_policy_verification_details(decision),
            "route=tools; blocked_by_policy=true; block_reason=needs_confirmation; forced_direct=false; "
            "planned_tools=portfolio_analysis, risk_assessment, rebalance_plan; "
            "executed_tools=portfolio_analysis, risk_assessment",
        )


if __name__ == "__main__":
    unittest.main()
