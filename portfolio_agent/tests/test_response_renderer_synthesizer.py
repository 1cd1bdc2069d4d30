from __future__ import annotations

import sys
import unittest
from pathlib import Path
from unittest.mock import patch

from botocore.exceptions import ClientError

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from portfolio_agent.response.contracts import Allocation, ToolCall, ToolFacts  # noqa: E402
from portfolio_agent.response.rebalance import generate_rebalance_plan  # noqa: E402
from portfolio_agent.response.renderer import (  # noqa: E402
    DEFAULT_DISCLAIMER,
    confidence_marker,
    render_answer_text,
    render_final_response,
)
from portfolio_agent.response.synthesizer_bedrock import synthesize_answer_with_bedrock  # noqa: E402
from portfolio_agent.response.verification import verify_facts_and_plan  # noqa: E402

CONVERSE_TARGET = "portfolio_agent.response.synthesizer_bedrock._invoke_bedrock_converse"


def _concentrated_facts() -> ToolFacts:
    return ToolFacts(
        allocations=[
            Allocation(symbol="AAPL", allocationInPercentage=50),
            Allocation(symbol="MSFT", allocationInPercentage=25),
            Allocation(symbol="VTI", allocationInPercentage=15),
            Allocation(symbol="BND", allocationInPercentage=10),
        ],
        top_allocation_percentage=50,
        concentration_band="high",
        portfolio_value=100_000,
        tools_used=["portfolio_analysis", "risk_assessment"],
    )


class RendererTests(unittest.TestCase):
    def test_rebalance_answer_sections(self) -> None:
        facts = _concentrated_facts()
        plan = generate_rebalance_plan(facts)
        verification = verify_facts_and_plan(facts, plan)
        answer = render_answer_text(facts, plan, verification, [])
        self.assertIn("top holding (AAPL) at 50.0%", answer)
        self.assertIn("Rebalance options:", answer)
        self.assertIn("- Sell 25.0% of AAPL", answer)
        self.assertTrue(answer.endswith(DEFAULT_DISCLAIMER))

    def test_failed_tools_are_reported_without_numbers(self) -> None:
        calls = [ToolCall(tool="get_live_quote", status="failed", outputSummary="get_live_quote failed: timeout")]
        answer = render_answer_text(None, None, None, calls)
        self.assertIn("get live quote is unavailable right now", answer)

    def test_nothing_to_render(self) -> None:
        self.assertEqual(
            render_answer_text(None, None, None, []),
            "Insufficient confidence to answer safely with the current evidence.",
        )

    def test_final_response_marker(self) -> None:
        facts = _concentrated_facts()
        plan = generate_rebalance_plan(facts)
        final = render_final_response(facts, plan, verify_facts_and_plan(facts, plan))
        self.assertEqual(final.confidence_marker, "green")
        self.assertEqual(confidence_marker(0.65), "yellow")
        self.assertEqual(confidence_marker(0.2), "red")


class BedrockSynthesizerTests(unittest.TestCase):
    def test_missing_model_id(self) -> None:
        with patch("portfolio_agent.response.synthesizer_bedrock.BEDROCK_MODEL_ID", ""):
            payload, errors, _ = synthesize_answer_with_bedrock(user_prompt="q", grounding={})
        self.assertIsNone(payload)
        self.assertEqual(errors, ["model_not_configured"])

    def test_fenced_json_is_parsed_and_sanitized(self) -> None:
        raw = (
            "```json\n"
            '{"schema_version": "answer_prose_v1", "summary_lines": ["Top holding AAPL at 50.0%."], '
            '"next_steps": [], "disclaimer": ""}\n'
            "```"
        )
        with patch(CONVERSE_TARGET, return_value=raw):
            payload, errors, meta = synthesize_answer_with_bedrock(user_prompt="q", grounding={}, model_id="m")
        self.assertEqual(errors, [])
        self.assertEqual(payload["summary_lines"], ["Top holding AAPL at 50.0%."])
        self.assertEqual(payload["disclaimer"], DEFAULT_DISCLAIMER)
        self.assertEqual(meta["model_id"], "m")

    def test_invalid_output_exhausts_attempts(self) -> None:
        with patch(CONVERSE_TARGET, return_value="not json") as converse:
            payload, errors, _ = synthesize_answer_with_bedrock(user_prompt="q", grounding={}, model_id="m")
        self.assertIsNone(payload)
        self.assertEqual(errors, ["answer_invalid_json", "answer_invalid_json"])
        self.assertEqual(converse.call_count, 2)

    def test_client_errors_are_reported(self) -> None:
        error = ClientError({"Error": {"Code": "ThrottlingException", "Message": "slow down"}}, "Converse")
        with patch(CONVERSE_TARGET, side_effect=error):
            payload, errors, _ = synthesize_answer_with_bedrock(
                user_prompt="q", grounding={}, model_id="m", retry_attempts=0
            )
        self.assertIsNone(payload)
        self.assertEqual(errors, ["bedrock_invoke_error:ClientError"])


if __name__ == "__main__":
    unittest.main()
