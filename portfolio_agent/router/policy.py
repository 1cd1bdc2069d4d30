from __future__ import annotations

import logging
import re

from ..config import POLICY_FALLBACK_SCORE_MIN
from .arithmetic import evaluate_arithmetic, is_arithmetic_query
from .contracts import (
    ACTION_TOOLS,
    READ_ONLY_TOOLS,
    BlockReason,
    FollowUpSignal,
    PolicyDecision,
    PolicyLimits,
    PolicyRoute,
    ToolName,
)
from .follow_up import matches_follow_up_pattern
from .normalize import normalize_query

logger = logging.getLogger(__name__)

FINANCE_READ_INTENT_KEYWORDS = [
    "asset",
    "allocation",
    "balance",
    "cash",
    "concentration",
    "diversif",
    "equity",
    "fundamental",
    "holding",
    "market",
    "money",
    "news",
    "performance",
    "portfolio",
    "price",
    "quote",
    "return",
    "risk",
    "stress",
    "ticker",
    "tax",
    "compliance",
    "transaction",
    "valu",
    "worth",
]
REBALANCE_ACTION_KEYWORDS = ["allocat", "buy", "invest", "rebalanc", "sell", "trim"]
ACTION_TOOL_INTENT_KEYWORDS: dict[str, list[str]] = {
    "rebalance_plan": REBALANCE_ACTION_KEYWORDS,
    "create_account": ["create", "open", "new account", "add account", "add an account"],
    "create_order": ["buy", "sell", "order", "place", "purchase", "submit", "trade"],
    "seed_funds": ["seed", "top up", "fund", "add", "put", "deposit", "load"],
    "demo_data": ["demo", "sample", "mock", "generate", "load", "scenario"],
}

GREETING_ONLY_PATTERN = re.compile(
    r"^\s*(?:(?:hi|hello|hey)(?:\s+there)?|thanks|thank you|good morning|good afternoon|good evening)\s*[!.?]*\s*$",
    flags=re.IGNORECASE,
)
SIMPLE_ASSISTANT_QUERY_PATTERNS = (
    re.compile(r"^\s*(?:who are you|what are you|what can (?:you|i) do)\s*[!.?]*\s*$", flags=re.IGNORECASE),
    re.compile(r"^\s*(?:how do you work|how (?:can|do) i use (?:you|this))\s*[!.?]*\s*$", flags=re.IGNORECASE),
    re.compile(r"^\s*(?:help|assist(?: me)?|what can you help with)\s*[!.?]*\s*$", flags=re.IGNORECASE),
    re.compile(
        r"^\s*(?:what features do you have|what can i test|help me understand what to do|what can i ask(?: you)?)\s*[!.?]*\s*$",
        flags=re.IGNORECASE,
    ),
)
SELF_IDENTITY_PATTERN = re.compile(r"\b(?:who\s+am\s+i|what\s+is\s+my\s+name|tell\s+me\s+who\s+i\s+am)\b")
DIRECT_IDENTITY_QUERY_PATTERN = re.compile(r"\b(?:who are you|what are you)\b")
DIRECT_USAGE_QUERY_PATTERN = re.compile(r"\b(?:how do you work|how (?:can|do) i use (?:you|this)|how should i ask)\b")
ACKNOWLEDGMENT_PATTERN = re.compile(
    r"^(?:oh\s+)?(?:ok|okay|cool|nice|great|wow|awesome|perfect|got it|makes sense|interesting|thanks|thank you)"
    r"(?:\s+(?:ok|okay|cool|nice|great|wow|awesome|thanks|thank you|that s a lot|that s helpful|that helps|so much))*$"
)
DOMAIN_REFUSAL_PATTERN = re.compile(
    r"\b(?:health|medical|medicine|doctor|symptoms?|diagnos\w*|illness|disease|therapy|prescription)\b"
)
UNAUTHORIZED_OTHER_USER_PATTERN = re.compile(
    r"\b(?:john'?s|someone else'?s|another user'?s|other users'?|all users'?|everyone'?s|their)\b"
)
UNAUTHORIZED_DATA_PATTERN = re.compile(r"\b(?:portfolio|account|holdings?|balance|data)\b")
UNAUTHORIZED_SYSTEM_WIDE_PATTERNS = (
    re.compile(r"\bwhat portfolios do you have access to\b"),
    re.compile(r"\bshow all (?:users|portfolios|accounts)\b"),
)
REBALANCE_WITHOUT_DETAILS_PATTERN = re.compile(r"^(?:please\s+)?rebalance(?:\s+(?:me|my\s+portfolio|it|now|please))*$")
REBALANCE_DETAIL_PATTERN = re.compile(
    r"\b(?:\d+|target|below|under|cap|max|tax|taxes|fund|funding|cash|usd|eur|gbp)\b"
)
ORDER_DETAIL_PATTERN = re.compile(r"\b(?:\d+(?:\.\d+)?\s*(?:usd|eur|gbp|cad|chf|jpy|aud|shares?|units?)?|usd|eur|gbp)\b")
AMOUNT_PATTERN = re.compile(r"\d")

# Single-tool fallback for empty plans: term hits per read-only tool.
FALLBACK_TOOL_SIGNALS: dict[ToolName, list[str]] = {
    "market_data_lookup": ["stock", "shares", "ticker", "trading", "etf"],
    "get_financial_news": ["headline", "happening", "announcement", "earnings", "latest"],
    "get_recent_transactions": ["bought", "sold", "trades", "orders", "purchases"],
    "tax_estimate": ["irs", "capital gain", "deduction", "owe", "refund"],
    "fire_analysis": ["retire", "fire", "withdrawal", "independence"],
    "exchange_rate": ["currency", "forex", "fx", "convert"],
    "account_overview": ["account", "accounts", "platform"],
    "market_benchmarks": ["index", "s p", "nasdaq", "dow", "benchmark"],
}
_FALLBACK_MARKET_TOOLS = frozenset({"market_data_lookup", "get_financial_news"})


def _contains_any(text: str, keywords: list[str]) -> bool:
    return any(keyword in text for keyword in keywords)


def _dedupe(tools: list[ToolName]) -> list[ToolName]:
    seen: set[str] = set()
    ordered: list[ToolName] = []
    for tool in tools:
        if tool in seen:
            continue
        seen.add(tool)
        ordered.append(tool)
    return ordered


def is_unauthorized_portfolio_query(query: str) -> bool:
    lowered = str(query or "").strip().lower()
    references_other_user = bool(UNAUTHORIZED_OTHER_USER_PATTERN.search(lowered)) and bool(
        UNAUTHORIZED_DATA_PATTERN.search(lowered)
    )
    system_wide = any(pattern.search(lowered) for pattern in UNAUTHORIZED_SYSTEM_WIDE_PATTERNS)
    return references_other_user or system_wide


def is_no_tool_direct_query(query: str) -> bool:
    raw = str(query or "").strip()
    if GREETING_ONLY_PATTERN.match(raw):
        return True
    if any(pattern.match(raw) for pattern in SIMPLE_ASSISTANT_QUERY_PATTERNS):
        return True
    if SELF_IDENTITY_PATTERN.search(normalize_query(raw)):
        return True
    return is_arithmetic_query(raw)


def is_acknowledgment_query(query: str) -> bool:
    normalized = normalize_query(query)
    return bool(normalized) and bool(ACKNOWLEDGMENT_PATTERN.match(normalized))


def has_read_intent(query: str) -> bool:
    return _contains_any(normalize_query(query), FINANCE_READ_INTENT_KEYWORDS)


def has_action_intent(query: str) -> bool:
    return _contains_any(normalize_query(query), REBALANCE_ACTION_KEYWORDS)


def has_tool_action_intent(tool: str, query: str) -> bool:
    return _contains_any(normalize_query(query), ACTION_TOOL_INTENT_KEYWORDS.get(tool, []))


def score_fallback_tools(query: str, symbols: list[str] | None = None) -> tuple[ToolName | None, float]:
    """Best single read-only tool for a query the planner left empty."""
    normalized = normalize_query(query)
    best_tool: ToolName | None = None
    best_score = 0.0
    for tool, terms in FALLBACK_TOOL_SIGNALS.items():
        hits = sum(1 for term in terms if re.search(rf"\b{re.escape(term)}", normalized))
        score = 0.25 * hits
        if symbols and tool in _FALLBACK_MARKET_TOOLS:
            score += 0.2
        score = round(min(1.0, score), 2)
        if score > best_score:
            best_tool, best_score = tool, score
    return best_tool, best_score


def _decision(
    route: PolicyRoute,
    block_reason: BlockReason,
    planned: list[ToolName],
    tools: list[ToolName],
    limits: PolicyLimits,
    blocked: bool = False,
    forced_direct: bool = False,
) -> PolicyDecision:
    return PolicyDecision(
        route=route,
        blockReason=block_reason,
        blockedByPolicy=blocked,
        forcedDirect=forced_direct,
        plannedTools=planned,
        toolsToExecute=tools,
        limits=limits,
    )


def apply_tool_execution_policy(
    planned_tools: list[ToolName],
    query: str,
    follow_up_signal: FollowUpSignal | None = None,
    limits: PolicyLimits | None = None,
    symbols: list[str] | None = None,
) -> PolicyDecision:
    """Decide whether a request is answered directly, clarified, or run through tools.

    Rules are evaluated in a fixed order and the first match wins. The result
    only depends on the arguments, so repeated calls return equal decisions.
    """
    limits = limits or PolicyLimits()
    planned = _dedupe(list(planned_tools or []))
    normalized = normalize_query(query)
    read_intent = has_read_intent(query)
    action_intent = has_action_intent(query)

    if is_unauthorized_portfolio_query(query):
        return _decision("direct", "unauthorized_access", planned, [], limits, blocked=bool(planned), forced_direct=True)

    if is_no_tool_direct_query(query):
        return _decision("direct", "no_tool_query", planned, [], limits, blocked=bool(planned), forced_direct=bool(planned))

    if not planned:
        follow_up_intent = matches_follow_up_pattern(query) or bool(
            follow_up_signal and follow_up_signal.isLikelyFollowUp
        )
        if read_intent or action_intent or follow_up_intent:
            return _decision("clarify", "unknown", planned, [], limits)

        fallback_tool, fallback_score = score_fallback_tools(query, symbols)
        if fallback_tool is not None and fallback_score >= POLICY_FALLBACK_SCORE_MIN:
            logger.info("policy_fallback_tool tool=%s score=%.2f", fallback_tool, fallback_score)
            return _decision("tools", "none", planned, [fallback_tool], limits)
        return _decision("direct", "no_tool_query", planned, [], limits)

    tools = list(planned)
    block_reason: BlockReason = "none"
    blocked = False

    def flag(reason: BlockReason) -> None:
        nonlocal block_reason, blocked
        blocked = True
        if block_reason == "none":
            block_reason = reason

    if len(tools) > limits.maxToolCallsPerRequest:
        tools = tools[: limits.maxToolCallsPerRequest]
        flag("tool_rate_limit")

    if "rebalance_plan" in tools and REBALANCE_WITHOUT_DETAILS_PATTERN.match(normalized):
        if not REBALANCE_DETAIL_PATTERN.search(normalized):
            tools = [tool for tool in tools if tool != "rebalance_plan"]
            flag("needs_rebalance_details")

    if "create_order" in tools and not ORDER_DETAIL_PATTERN.search(normalized):
        tools = [tool for tool in tools if tool != "create_order"]
        flag("needs_order_details")

    if "seed_funds" in tools and not AMOUNT_PATTERN.search(normalized):
        tools = [tool for tool in tools if tool != "seed_funds"]
        flag("needs_seed_funds_details")

    if "rebalance_plan" in tools and not action_intent:
        tools = [tool for tool in tools if tool != "rebalance_plan"]
        flag("needs_confirmation")

    gated = [tool for tool in tools if tool in ACTION_TOOLS and tool != "rebalance_plan"]
    for tool in gated:
        if not has_tool_action_intent(tool, query):
            tools = [name for name in tools if name != tool]
            flag("read_only")

    per_tool_counts: dict[str, int] = {}
    capped: list[ToolName] = []
    for tool in tools:
        per_tool_counts[tool] = per_tool_counts.get(tool, 0) + 1
        if tool in ACTION_TOOLS and per_tool_counts[tool] > limits.maxCallsPerActionTool:
            flag("tool_rate_limit")
            continue
        capped.append(tool)
    tools = capped

    if not tools:
        if block_reason == "none":
            block_reason = "unknown"
        return _decision("clarify", block_reason, planned, [], limits, blocked=True)

    unexpected = [tool for tool in tools if tool not in READ_ONLY_TOOLS and tool not in ACTION_TOOLS]
    if unexpected:
        logger.warning("policy_unknown_tools tools=%s", ",".join(unexpected))

    return _decision("tools", block_reason, planned, tools, limits, blocked=blocked)


GREETING_RESPONSE = "\n".join(
    [
        "Hello! I am your portfolio assistant. How can I help with your finances today?",
        "Here is what I can do:",
        "- Portfolio: balances, holdings, allocation, and performance",
        "- Risk: concentration, diversification, and stress scenarios",
        "- FIRE: retirement planning, safe withdrawal rates, and savings scenarios",
        "- Market: live quotes, fundamentals, news, and price history",
        "- Transactions: recent activity and categorization",
        "- Orders: create accounts, seed funds, and place orders with explicit details",
        "- Data: demo data and benchmark comparisons",
        'Try: "How much money do I have?" or "What is my concentration risk?"',
    ]
)
IDENTITY_RESPONSE = "\n".join(
    [
        "I am your portfolio copilot for this account.",
        "I analyze concentration risk, summarize holdings, fetch quotes and fundamentals, pull recent transactions, and compose rebalance options.",
        "I abstain when confidence is low or data is missing.",
    ]
)
USAGE_RESPONSE = "\n".join(
    [
        "Use short direct prompts and include your goal or constraint.",
        'Good pattern: objective + scope + constraint, for example "reduce top holding below 35% with low tax impact".',
        "If key details are missing, I will ask before giving trade-style steps.",
    ]
)
CAPABILITY_RESPONSE = "\n".join(
    [
        "I am your portfolio assistant. You can ask me about:",
        "- Portfolio: balances, holdings, allocation, and risk",
        "- Taxes: estimates and year-end checklists",
        "- FIRE: retirement planning and withdrawal scenarios",
        "- Portfolio actions: rebalance plans, seed funds, create an account or an order",
        "- Data: quotes, fundamentals, news, benchmarks, and exchange rates",
    ]
)
SELF_IDENTITY_RESPONSE = (
    "I do not have access to personal identity details. I can only see the portfolio data of this account. "
    "Ask about your holdings, balance, or risk."
)
ACKNOWLEDGMENT_RESPONSE = "Glad that helps! Ask me about your portfolio, risk, or the market whenever you are ready."
DOMAIN_REFUSAL_RESPONSE = (
    "I cannot help with medical issues. I can help with portfolio, tax, FIRE, and market questions."
)
UNAUTHORIZED_RESPONSE = (
    "I can access only your own portfolio data in this account. "
    "Ask about your holdings, balance, risk, or allocation and I will help."
)
FOLLOW_UP_CLARIFY_RESPONSE = (
    "I can explain the previous result, but I need the target context. "
    'Ask a direct follow-up like "Why is my concentration high?" or "Explain that risk summary in detail."'
)
CONFIRMATION_CLARIFY_RESPONSE = (
    "Please confirm your action goal so I can produce a concrete plan. "
    'Example: "Rebalance to keep each holding below 25%" or "Allocate 2000 USD across underweight positions."'
)
ORDER_DETAILS_RESPONSE = (
    "To create an order, please specify the amount, number of shares, or currency. "
    'Example: "Buy 10 shares of AAPL" or "Buy 500 USD of VTI".'
)
SEED_FUNDS_DETAILS_RESPONSE = 'To add seed funds, please specify the amount. Example: "Add 500 USD seed funds".'
REBALANCE_DETAILS_RESPONSE = (
    "To build a rebalance plan, tell me your target or constraint. "
    'Example: "Rebalance to keep each holding below 25%".'
)
GENERIC_CLARIFY_RESPONSE = (
    "Insufficient confidence to proceed safely with this request. "
    'Which should I run next? Example: "Show concentration risk" or "Price for NVDA".'
)
UNSUPPORTED_ARITHMETIC_RESPONSE = "Insufficient confidence to provide a reliable answer for this calculation."
NO_TOOL_FALLBACK_RESPONSE = (
    "Insufficient confidence to provide a reliable answer from this query alone. "
    "I can help with portfolio analysis, concentration risk, market prices, and stress scenarios."
)

_CLARIFY_RESPONSES: dict[str, str] = {
    "needs_confirmation": CONFIRMATION_CLARIFY_RESPONSE,
    "needs_order_details": ORDER_DETAILS_RESPONSE,
    "needs_seed_funds_details": SEED_FUNDS_DETAILS_RESPONSE,
    "needs_rebalance_details": REBALANCE_DETAILS_RESPONSE,
}


def _direct_response(query: str) -> str:
    raw = str(query or "").strip()
    normalized = normalize_query(raw)
    if GREETING_ONLY_PATTERN.match(raw):
        return GREETING_RESPONSE
    if SELF_IDENTITY_PATTERN.search(normalized):
        return SELF_IDENTITY_RESPONSE
    if DOMAIN_REFUSAL_PATTERN.search(normalized):
        return DOMAIN_REFUSAL_RESPONSE
    if is_arithmetic_query(raw):
        return evaluate_arithmetic(raw) or UNSUPPORTED_ARITHMETIC_RESPONSE
    if is_acknowledgment_query(raw):
        return ACKNOWLEDGMENT_RESPONSE
    if DIRECT_IDENTITY_QUERY_PATTERN.search(normalized):
        return IDENTITY_RESPONSE
    if DIRECT_USAGE_QUERY_PATTERN.search(normalized):
        return USAGE_RESPONSE
    if any(pattern.match(raw) for pattern in SIMPLE_ASSISTANT_QUERY_PATTERNS):
        return CAPABILITY_RESPONSE
    return NO_TOOL_FALLBACK_RESPONSE


def create_policy_route_response(
    decision: PolicyDecision,
    query: str = "",
    follow_up_signal: FollowUpSignal | None = None,
) -> str:
    """Fixed user-facing text for the non-tool routes."""
    if decision.route == "clarify":
        if decision.blockReason in _CLARIFY_RESPONSES:
            return _CLARIFY_RESPONSES[decision.blockReason]
        if query and is_acknowledgment_query(query):
            return ACKNOWLEDGMENT_RESPONSE
        if query and (matches_follow_up_pattern(query) or (follow_up_signal and follow_up_signal.isLikelyFollowUp)):
            return FOLLOW_UP_CLARIFY_RESPONSE
        return GENERIC_CLARIFY_RESPONSE

    if decision.route == "direct" and decision.blockReason == "unauthorized_access":
        return UNAUTHORIZED_RESPONSE
    if decision.route == "direct":
        return _direct_response(query)
    return NO_TOOL_FALLBACK_RESPONSE


def format_policy_verification_details(decision: PolicyDecision) -> str:
    planned = ", ".join(decision.plannedTools) if decision.plannedTools else "none"
    executed = ", ".join(decision.toolsToExecute) if decision.toolsToExecute else "none"
    return (
        f"route={decision.route}; blocked_by_policy={str(decision.blockedByPolicy).lower()}; "
        f"block_reason={decision.blockReason}; forced_direct={str(decision.forcedDirect).lower()}; "
        f"planned_tools={planned}; executed_tools={executed}"
    )
