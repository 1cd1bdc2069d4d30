from __future__ import annotations

import logging
from typing import Any, Dict
from urllib.parse import urlparse

import requests
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import BACKEND_API_BASE, BACKEND_TIMEOUT_SECONDS, USE_LOCAL_MOCKS
from .response.schemas import validate_tool_result_payload

logger = logging.getLogger(__name__)


class ToolInvocationError(RuntimeError):
    """A tool collaborator returned an error or an unusable payload."""

    def __init__(self, tool: str, message: str) -> None:
        super().__init__(f"{tool}: {message}")
        self.tool = tool


# Tools answered by the portfolio backend. risk_assessment, stress_test and
# rebalance_plan are computed locally over the portfolio snapshot.
BACKEND_TOOL_ROUTES: Dict[str, tuple[str, str]] = {
    "portfolio_analysis": ("GET", "/api/v1/portfolio/details"),
    "get_portfolio_summary": ("GET", "/api/v1/portfolio/summary"),
    "get_current_holdings": ("GET", "/api/v1/portfolio/holdings"),
    "get_portfolio_risk_metrics": ("GET", "/api/v1/portfolio/risk"),
    "get_recent_transactions": ("GET", "/api/v1/order"),
    "fire_analysis": ("GET", "/api/v1/portfolio/fire"),
    "market_data_lookup": ("GET", "/api/v1/market-data/lookup"),
    "get_live_quote": ("GET", "/api/v1/market-data/quote"),
    "get_asset_fundamentals": ("GET", "/api/v1/market-data/fundamentals"),
    "get_financial_news": ("GET", "/api/v1/market-data/news"),
    "price_history": ("GET", "/api/v1/market-data/history"),
    "symbol_lookup": ("GET", "/api/v1/symbol/lookup"),
    "market_benchmarks": ("GET", "/api/v1/benchmarks"),
    "calculate_rebalance_plan": ("POST", "/api/v1/portfolio/rebalance/calculate"),
    "simulate_trade_impact": ("POST", "/api/v1/portfolio/trade-impact"),
    "transaction_categorize": ("GET", "/api/v1/order/categorize"),
    "tax_estimate": ("GET", "/api/v1/portfolio/tax-estimate"),
    "compliance_check": ("GET", "/api/v1/portfolio/compliance"),
    "account_overview": ("GET", "/api/v1/account"),
    "exchange_rate": ("GET", "/api/v1/exchange-rate"),
    "activity_history": ("GET", "/api/v1/order/history"),
    "demo_data": ("POST", "/api/v1/demo/seed"),
    "seed_funds": ("POST", "/api/v1/account/seed-funds"),
    "create_account": ("POST", "/api/v1/account"),
    "create_order": ("POST", "/api/v1/order"),
}


def _is_local_backend() -> bool:
    try:
        host = urlparse(BACKEND_API_BASE).hostname or ""
    except ValueError:
        return False
    return host in {"localhost", "127.0.0.1", "::1"}


def should_use_local_mocks() -> bool:
    # Mocks are only allowed against a local backend so a deployed agent
    # never answers from canned data.
    if not USE_LOCAL_MOCKS:
        return False
    if _is_local_backend():
        return True
    logger.warning("USE_LOCAL_MOCKS ignored for non-local backend=%s", BACKEND_API_BASE)
    return False


def _auth_headers(token: str) -> Dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if token:
        headers["Authorization"] = token if token.lower().startswith("bearer ") else f"Bearer {token}"
    return headers


def _drop_none(value: Any) -> Any:
    if isinstance(value, dict):
        cleaned: Dict[str, Any] = {}
        for key, item in value.items():
            if item is None:
                continue
            cleaned[key] = _drop_none(item)
        return cleaned
    if isinstance(value, list):
        return [_drop_none(item) for item in value if item is not None]
    return value


@retry(
    retry=retry_if_exception_type((requests.exceptions.RequestException, requests.exceptions.HTTPError)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=4),
    reraise=True,
)
def _request_json(
    method: str,
    path: str,
    user_token: str,
    *,
    params: Dict[str, Any] | None = None,
    payload: Dict[str, Any] | None = None,
    timeout: int = BACKEND_TIMEOUT_SECONDS,
) -> Any:
    try:
        response = requests.request(
            method=method,
            url=f"{BACKEND_API_BASE}{path}",
            headers=_auth_headers(user_token),
            params=params,
            json=payload,
            timeout=timeout,
        )
        response.raise_for_status()
    except requests.exceptions.HTTPError as exc:
        # Don't retry 4xx errors (client errors)
        if exc.response is not None and 400 <= exc.response.status_code < 500:
            logger.warning("Backend client error: method=%s path=%s status=%s", method, path, exc.response.status_code)
            raise ToolInvocationError(path, f"client error {exc.response.status_code}") from exc
        logger.warning("Backend server error, will retry: method=%s path=%s error=%s", method, path, exc)
        raise
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError as exc:
        raise ToolInvocationError(path, "response is not JSON") from exc


def _mock_holdings() -> list[Dict[str, Any]]:
    return [
        {"symbol": "AAPL", "name": "Apple Inc.", "allocationInPercentage": 35.0, "valueInBaseCurrency": 35_000},
        {"symbol": "MSFT", "name": "Microsoft Corporation", "allocationInPercentage": 25.0, "valueInBaseCurrency": 25_000},
        {"symbol": "VTI", "name": "Vanguard Total Stock Market ETF", "allocationInPercentage": 25.0, "valueInBaseCurrency": 25_000},
        {"symbol": "BND", "name": "Vanguard Total Bond Market ETF", "allocationInPercentage": 15.0, "valueInBaseCurrency": 15_000},
    ]


def _mock_result(tool: str, params: Dict[str, Any]) -> Dict[str, Any]:
    symbols = list(params.get("symbols") or [])
    if tool == "portfolio_analysis":
        return {"holdings": _mock_holdings(), "totalValueInBaseCurrency": 100_000}
    if tool == "get_portfolio_summary":
        return {"totalValueInBaseCurrency": 100_000, "holdingsCount": 4, "summary": "4 holdings worth 100000.00 USD"}
    if tool == "fire_analysis":
        return {"status": "feasible", "safeWithdrawalRate": 4.0, "summary": "Safe withdrawal 4000.00 USD/year at 4.0%"}
    if tool in {"get_live_quote", "market_data_lookup"}:
        quotes = [{"symbol": symbol, "price": 100.0, "currency": "USD"} for symbol in symbols or ["SPY"]]
        return {"quotes": quotes, "summary": ", ".join(f"{item['symbol']} 100.00 USD" for item in quotes)}
    if tool == "create_order":
        return {"orderId": "ord_mocked01", "status": "submitted", "summary": "Order submitted"}
    return {"summary": f"{tool.replace('_', ' ')} completed"}


def invoke_tool(tool: str, params: Dict[str, Any], user_token: str) -> Dict[str, Any]:
    """Call the backend collaborator for ``tool`` and return its validated JSON object."""
    if tool not in BACKEND_TOOL_ROUTES:
        raise ToolInvocationError(tool, "no collaborator registered")

    sanitized = _drop_none(params)
    if should_use_local_mocks():
        result: Any = _mock_result(tool, sanitized)
    else:
        method, path = BACKEND_TOOL_ROUTES[tool]
        if method == "GET":
            query_params = {
                key: ",".join(value) if isinstance(value, list) else value for key, value in sanitized.items()
            }
            result = _request_json(method, path, user_token, params=query_params)
        else:
            result = _request_json(method, path, user_token, payload=sanitized)

    schema_errors = validate_tool_result_payload(tool, result)
    if schema_errors:
        raise ToolInvocationError(tool, "invalid payload: " + "; ".join(schema_errors[:3]))
    return result


def memory_get(user_token: str, session_key: str) -> Dict[str, Any]:
    if should_use_local_mocks():
        return {}
    data = _request_json("GET", f"/api/v1/ai/memory/{session_key}", user_token)
    return data if isinstance(data, dict) else {}


def memory_set(user_token: str, session_key: str, value: Dict[str, Any], ttl_seconds: int) -> Dict[str, Any]:
    if should_use_local_mocks():
        return {"status": "ok"}
    return _request_json(
        "PUT",
        f"/api/v1/ai/memory/{session_key}",
        user_token,
        payload={"value": value, "ttlSeconds": ttl_seconds},
    )
