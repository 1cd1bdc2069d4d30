from __future__ import annotations

import sys
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

import requests

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from portfolio_agent import tools  # noqa: E402
from portfolio_agent.execution import (  # noqa: E402
    ToolExecutionContext,
    execute_tools,
    run_risk_assessment,
    run_stress_test,
)
from portfolio_agent.tools import ToolInvocationError, invoke_tool  # noqa: E402


def _response(status: int = 200, body: object | None = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.content = b"" if body is None else b"{}"
    response.json.return_value = body
    if status >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(response=response)
    return response


PORTFOLIO = {
    "holdings": [
        {"symbol": "AAPL", "allocationInPercentage": 50, "valueInBaseCurrency": 50_000},
        {"symbol": "MSFT", "allocationInPercentage": 25, "valueInBaseCurrency": 25_000},
        {"symbol": "VTI", "allocationInPercentage": 15, "valueInBaseCurrency": 15_000},
        {"symbol": "BND", "allocationInPercentage": 10, "valueInBaseCurrency": 10_000},
    ],
    "totalValueInBaseCurrency": 100_000,
}


@patch("portfolio_agent.tools.should_use_local_mocks", return_value=False)
class InvokeToolTests(unittest.TestCase):
    def test_get_joins_list_params_and_sends_bearer_token(self, _mocks: MagicMock) -> None:
        with patch("portfolio_agent.tools.requests.request", return_value=_response(body={"quotes": []})) as request:
            result = invoke_tool("get_live_quote", {"symbols": ["AAPL", "MSFT"], "userId": None}, "tok")
        self.assertEqual(result, {"quotes": []})
        kwargs = request.call_args.kwargs
        self.assertEqual(kwargs["method"], "GET")
        self.assertTrue(kwargs["url"].endswith("/api/v1/market-data/quote"))
        self.assertEqual(kwargs["params"], {"symbols": "AAPL,MSFT"})
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer tok")

    def test_post_sends_json_body(self, _mocks: MagicMock) -> None:
        with patch("portfolio_agent.tools.requests.request", return_value=_response(body={"orderId": "o1"})) as request:
            invoke_tool("create_order", {"query": "buy 5 shares of AAPL"}, "Bearer abc")
        kwargs = request.call_args.kwargs
        self.assertEqual(kwargs["method"], "POST")
        self.assertEqual(kwargs["json"], {"query": "buy 5 shares of AAPL"})
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer abc")

    def test_empty_body_is_an_empty_object(self, _mocks: MagicMock) -> None:
        with patch("portfolio_agent.tools.requests.request", return_value=_response(body=None)):
            self.assertEqual(invoke_tool("tax_estimate", {}, ""), {})

    def test_client_errors_are_not_retried(self, _mocks: MagicMock) -> None:
        with patch("portfolio_agent.tools.requests.request", return_value=_response(status=404)) as request:
            with self.assertRaises(ToolInvocationError):
                invoke_tool("get_portfolio_summary", {}, "tok")
        self.assertEqual(request.call_count, 1)

    def test_server_errors_are_retried_then_raised(self, _mocks: MagicMock) -> None:
        with patch("portfolio_agent.tools.requests.request", return_value=_response(status=503)) as request, patch(
            "time.sleep"
        ):
            with self.assertRaises(requests.exceptions.HTTPError):
                invoke_tool("get_portfolio_summary", {}, "tok")
        self.assertEqual(request.call_count, 3)

    def test_payload_violating_schema_is_rejected(self, _mocks: MagicMock) -> None:
        with patch("portfolio_agent.tools.requests.request", return_value=_response(body={"holdings": "none"})):
            with self.assertRaises(ToolInvocationError) as ctx:
                invoke_tool("portfolio_analysis", {}, "tok")
        self.assertIn("invalid payload", str(ctx.exception))

    def test_unknown_tool(self, _mocks: MagicMock) -> None:
        with self.assertRaises(ToolInvocationError) as ctx:
            invoke_tool("risk_assessment", {}, "tok")
        self.assertEqual(ctx.exception.tool, "risk_assessment")


class LocalMockTests(unittest.TestCase):
    def test_mocks_answer_without_http_on_local_backend(self) -> None:
        with patch.object(tools, "USE_LOCAL_MOCKS", True), patch.object(
            tools, "BACKEND_API_BASE", "http://localhost:3333"
        ), patch("portfolio_agent.tools.requests.request") as request:
            result = invoke_tool("portfolio_analysis", {"userId": "u1"}, "")
        request.assert_not_called()
        self.assertEqual([item["symbol"] for item in result["holdings"]], ["AAPL", "MSFT", "VTI", "BND"])

    def test_mocks_ignored_for_remote_backend(self) -> None:
        with patch.object(tools, "USE_LOCAL_MOCKS", True), patch.object(
            tools, "BACKEND_API_BASE", "https://api.example.com"
        ):
            self.assertFalse(tools.should_use_local_mocks())


class LocalToolTests(unittest.TestCase):
    def test_risk_assessment(self) -> None:
        context = ToolExecutionContext(user_id="u1", portfolio_analysis=PORTFOLIO)
        result = run_risk_assessment(context)
        self.assertEqual(result["hhi"], 3450)
        self.assertEqual(result["topHoldingAllocation"], 50)
        self.assertEqual(result["concentrationBand"], "high")
        self.assertEqual(result["holdingsCount"], 4)

    def test_stress_test_uses_total_value(self) -> None:
        result = run_stress_test(ToolExecutionContext(portfolio_analysis=PORTFOLIO))
        self.assertEqual(result["estimatedDrawdownInBaseCurrency"], 20_000)
        self.assertEqual(result["projectedValueInBaseCurrency"], 80_000)

    def test_stress_test_falls_back_to_holding_values(self) -> None:
        analysis = {"holdings": PORTFOLIO["holdings"][:2]}
        result = run_stress_test(ToolExecutionContext(portfolio_analysis=analysis))
        self.assertEqual(result["estimatedDrawdownInBaseCurrency"], 15_000)


class ExecuteToolsTests(unittest.TestCase):
    def test_portfolio_snapshot_fetched_once(self) -> None:
        with patch("portfolio_agent.execution.invoke_tool", return_value=PORTFOLIO) as invoke:
            calls = execute_tools(
                ["portfolio_analysis", "risk_assessment", "rebalance_plan", "stress_test"],
                ToolExecutionContext(user_id="u1", trace_id="trc_test"),
            )
        invoke.assert_called_once_with("portfolio_analysis", {"userId": "u1"}, "")
        self.assertEqual([call.status for call in calls], ["success"] * 4)
        self.assertEqual(calls[0].outputSummary, "portfolio_analysis: 4 holdings")
        plan = calls[2].state["result"]["plan"]
        self.assertEqual(plan["target_allocations"]["AAPL"], 25)

    def test_failure_does_not_stop_the_loop(self) -> None:
        def fake_invoke(tool: str, params: dict, token: str) -> dict:
            if tool == "get_live_quote":
                raise ToolInvocationError(tool, "boom")
            return PORTFOLIO

        with patch("portfolio_agent.execution.invoke_tool", side_effect=fake_invoke):
            calls = execute_tools(
                ["get_live_quote", "portfolio_analysis"],
                ToolExecutionContext(user_id="u1", symbols=["AAPL"]),
            )
        self.assertEqual([call.status for call in calls], ["failed", "success"])
        self.assertEqual(calls[0].outputSummary, "get_live_quote failed: get_live_quote: boom")
        self.assertEqual(calls[0].input, {"userId": "u1", "symbols": ["AAPL"]})
        self.assertEqual(calls[0].state, {})

    def test_backend_outage_is_recorded_as_failure(self) -> None:
        with patch(
            "portfolio_agent.execution.invoke_tool",
            side_effect=requests.exceptions.ConnectionError("refused"),
        ):
            calls = execute_tools(["portfolio_analysis", "risk_assessment"], ToolExecutionContext())
        self.assertEqual([call.status for call in calls], ["failed", "failed"])

    def test_unexpected_exception_is_recorded_and_loop_continues(self) -> None:
        def fake_invoke(tool: str, params: dict, token: str) -> dict:
            if tool == "get_live_quote":
                raise RuntimeError("boom")
            return PORTFOLIO

        with patch("portfolio_agent.execution.invoke_tool", side_effect=fake_invoke):
            calls = execute_tools(
                ["get_live_quote", "portfolio_analysis", "risk_assessment"],
                ToolExecutionContext(user_id="u1", symbols=["AAPL"]),
            )
        self.assertEqual([call.status for call in calls], ["failed", "success", "success"])
        self.assertEqual(calls[0].outputSummary, "get_live_quote failed: boom")

    def test_overflowing_allocations_do_not_raise(self) -> None:
        huge = {
            "holdings": [
                {"symbol": symbol, "allocationInPercentage": 1e308, "valueInBaseCurrency": 1e308}
                for symbol in ("AAPL", "MSFT", "VTI", "BND")
            ],
        }
        with patch("portfolio_agent.execution.invoke_tool", return_value=huge):
            calls = execute_tools(
                ["portfolio_analysis", "risk_assessment", "rebalance_plan", "stress_test"],
                ToolExecutionContext(user_id="u1"),
            )
        self.assertEqual(len(calls), 4)
        self.assertEqual(calls[1].state["result"]["concentrationBand"], "medium")
        targets = calls[2].state["result"]["plan"]["target_allocations"]
        self.assertTrue(all(value >= 0 for value in targets.values()))
        self.assertAlmostEqual(sum(targets.values()), 100, delta=0.01)


if __name__ == "__main__":
    unittest.main()
