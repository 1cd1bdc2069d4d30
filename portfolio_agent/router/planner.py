from __future__ import annotations

import re

from .contracts import ToolName, order_tools
from .normalize import normalize_query
from .symbols import extract_symbols

INVESTMENT_INTENT_KEYWORDS = [
    "add",
    "allocate",
    "buy",
    "how do i",
    "invest",
    "next",
    "rebalanc",
    "sell",
    "trim",
    "what can i do",
    "what should i do",
    "where should i",
]
REBALANCE_KEYWORDS = ["rebalanc", "reduce", "trim", "underweight", "overweight"]
STRESS_TEST_KEYWORDS = ["crash", "drawdown", "shock", "stress"]
PORTFOLIO_CONTEXT_KEYWORDS = [
    "account",
    "allocation",
    "balance",
    "concentration",
    "diversif",
    "holding",
    "my",
    "portfolio",
    "position",
    "rebalanc",
    "risk",
]
ASSET_FUNDAMENTALS_FRAGMENTS = [
    "fundament",
    "valuat",
    "market cap",
    "p e",
    "dividend",
    "earnings",
    "balance sheet",
    "company analysis",
]


def _patterns(*sources: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(source) for source in sources)


IDENTITY_PRIVACY_PATTERNS = _patterns(r"\b(?:who\s+am\s+i|what\s+is\s+my\s+name|tell\s+me\s+who\s+i\s+am)\b")
DECISION_ANALYSIS_PATTERNS = _patterns(
    r"\b(?:should\s+i(?:\s+(?:buy|sell|hold))?|compare|pros\s+and\s+cons|investment\s+thesis|is\s+.*\s+(?:a\s+)?good\s+investment)\b",
    r"\b(?:where\s+should\s+i\s+invest)\b",
)
RESEARCH_PATTERNS = _patterns(
    r"\b(?:research|analy[sz]e|analysis|overview|break\s+down|deep\s*dive|tell\s+me\s+about|learn\s+about|more\s+about)\b"
)
HISTORICAL_PERFORMANCE_PATTERNS = _patterns(
    r"\b(?:historical\s+performance|past\s+performance|price\s+trend)\b",
    r"\b(?:how\s+(?:has|well\s+has).*(?:performed?|doing)|performance\s+over\s+time)\b",
)
FIRE_PATTERNS = _patterns(
    r"\b(?:financial\s+independence|retire(?:ment|d)?|safe\s+withdrawal|withdrawal\s+rate)\b",
    r"\bfire\s+(?:plan|path|goal|read|readiness|retirement|independence|withdrawal|rate|calculator|projection)\b",
    r"\b(?:on\s+track\s+for\s+(?:retirement|fire)|when\s+can\s+i\s+retire|am\s+i\s+(?:ready|prepared)\s+for\s+retirement)\b",
    r"\b(?:retire\s+at\s+(?:the|what)\s+age|when\s+is\s+the\s+right\s+time\s+to\s+retire|getting\s+old|getting\s+older)\b",
)
PORTFOLIO_VALUE_CONTEXT_PATTERN = re.compile(r"\b(?:i|my|me|portfolio|account|accounts|holdings|invested|investment|total)\b")
PORTFOLIO_VALUE_QUESTION_PATTERN = re.compile(r"\b(?:how\s*much|what s|what is|show|tell|do i have|total)\b")
PORTFOLIO_VALUE_KEYWORD_PATTERN = re.compile(r"\b(?:money|cash|value|worth|balance|net\s+worth|assets|equity)\b")
PORTFOLIO_VALUE_PATTERNS = _patterns(
    r"\b(?:net\s+worth|portfolio\s+value|portfolio\s+worth|account\s+balance|total\s+portfolio\s+value)\b",
    r"\bhow\s*much\b.*\b(?:money|cash|value|worth|balance)\b",
)
PORTFOLIO_SUMMARY_PATTERNS = _patterns(
    r"\b(?:portfolio\s+summary|net\s+worth\s+summary|overall\s+portfolio)\b",
    r"\b(?:summarize|summary)\b.*\b(?:portfolio|account)\b",
)
CURRENT_HOLDINGS_PATTERNS = _patterns(
    r"\b(?:current\s+holdings|current\s+positions|what\s+do\s+i\s+own)\b",
    r"\b(?:show|list)\b.*\b(?:holdings|positions)\b",
    r"\btop\s+\d+\s+(?:stocks|holdings|positions)\b",
)
PORTFOLIO_RISK_METRICS_PATTERNS = _patterns(
    r"\b(?:risk\s+metrics|risk\s+summary)\b",
    r"\b(?:sector|geographic|country)\b.*\b(?:breakdown|concentration|risk)\b",
)
RECENT_TRANSACTIONS_PATTERNS = _patterns(
    r"\b(?:recent\s+transactions|recent\s+trades|recent\s+orders)\b",
    r"\b(?:last\s+time\s+i\s+bought|last\s+time\s+i\s+sold|transaction\s+history|order\s+history)\b",
)
LIVE_QUOTE_PATTERNS = _patterns(
    r"\b(?:live\s+quote|latest\s+quote|today\s+s\s+price|todays\s+price|today\s+price)\b",
    r"\b(?:day\s+change|trading\s+volume)\b",
)
ASSET_FUNDAMENTALS_PATTERNS = _patterns(
    r"\b(?:fundamentals?|valuation|market\s+cap)\b",
    r"\b(?:pe\s+ratio|p\s*e|dividend\s+yield|52\s*week)\b",
)
FINANCIAL_NEWS_PATTERNS = _patterns(
    r"\b(?:financial\s+news|market\s+news|news\s+headlines?)\b",
    r"\b(?:why\s+did|what\s+happened\s+to)\b",
)
FRESHNESS_NEWS_PATTERN = re.compile(r"\b(?:whats\s+new|what\s+s\s+new|update\s+me\s+on)\b")
REBALANCE_CALCULATOR_PATTERNS = _patterns(
    r"\b(?:calculate\s+rebalance|rebalance\s+plan|target\s+allocation)\b",
    r"\b(?:80\s*20|70\s*30|60\s*40)\b.*\b(?:allocation|portfolio)\b",
)
MARKET_CONTEXT_PATTERN = re.compile(r"\bmarket\s+context\b")
TRADE_IMPACT_PATTERNS = _patterns(
    r"\b(?:simulate\s+trade|trade\s+impact|what\s+if\s+i\s+(?:buy|sell))\b",
    r"\b(?:if\s+i\s+buy|if\s+i\s+sell)\b",
)
TRANSACTION_CATEGORIZE_PATTERNS = _patterns(
    r"\b(?:categori[sz]e|classify|group)\b.*\b(?:transactions?|trades?|orders?)\b",
    r"\b(?:transaction|trade|order)\s+(?:categor(?:y|ies)|breakdown|patterns?)\b",
)
TAX_ESTIMATE_PATTERNS = _patterns(
    r"\b(?:tax|taxes|liability|owed|owe)\b.*\b(?:estimate|estimation|calculate|calc)\b",
    r"\b(?:estimate|calculate|calculation)\b.*\b(?:tax|liability)\b",
)
TAX_GENERAL_PATTERNS = _patterns(
    r"\b(?:tax|taxes|taxation|irs)\b.*\b(?:need|know|checklist|info|information|guide|help|this year|year\s?end|what do i|tell me about)\b",
    r"\b(?:need|know|checklist|info|information|guide|help|this year|year\s?end|what do i|tell me about)\b.*\b(?:tax|taxes)\b",
    r"\b(?:what do i need|tell me|help me|guide to|explain)\b.*\b(?:tax|taxes|taxation)\b",
    r"^(?:show|check|review)\s+(?:my\s+)?(?:tax|taxes)$",
)
COMPLIANCE_CHECK_PATTERNS = _patterns(
    r"\b(?:compliance|regulation|regulatory|policy)\b.*\b(?:check|review|scan)\b",
    r"\b(?:check|review|scan|run)\b.*\b(?:compliance|regulation|regulatory)\b",
    r"\b(?:violations?|warnings?|restricted|rule\s+check)\b",
)
ACCOUNT_OVERVIEW_PATTERNS = _patterns(
    r"\b(?:account\s+overview|account\s+summary|show\s+accounts?)\b",
    r"\b(?:cash\s+balance|account\s+balances?)\b",
)
EXCHANGE_RATE_PATTERNS = _patterns(
    r"\b(?:exchange\s+rate|fx\s+rate|currency\s+conversion)\b",
    r"\b(?:convert|conversion|exchange)\b.*\b(?:usd|eur|gbp|cad|chf|jpy|aud)\b",
    r"\b(?:usd|eur|gbp|cad|chf|jpy|aud)\s+to\s+(?:usd|eur|gbp|cad|chf|jpy|aud)\b",
)
PRICE_HISTORY_PATTERNS = _patterns(
    r"\b(?:price\s+history|historical\s+price|price\s+trend)\b",
    r"\b(?:chart|performance)\b.*\b(?:30d|90d|1y|historical)\b",
)
SYMBOL_LOOKUP_PATTERNS = _patterns(
    r"\b(?:symbol\s+lookup|lookup\s+symbol|find\s+ticker|ticker\s+lookup)\b",
    r"\bwhat\s+is\s+the\s+ticker\s+for\b",
)
MARKET_BENCHMARKS_PATTERNS = _patterns(
    r"\b(?:benchmark|benchmarks|market\s+benchmark|index\s+benchmark)\b",
    r"\bcompare\b.*\b(?:benchmark|index)\b",
)
ACTIVITY_HISTORY_PATTERNS = _patterns(
    r"\b(?:activity\s+history|trading\s+activity|order\s+activity)\b",
    r"\bactivity\b.*\b(?:history|summary)\b",
)
DEMO_DATA_PATTERNS = _patterns(r"\b(?:demo\s+data|sample\s+data|mock\s+data|scenario\s+planning)\b")
SEED_FUNDS_PATTERNS = _patterns(
    r"\b(?:seed\s+(?:money|funds|data|my\s+account)|add(?:ing)?\s+test\s+(?:money|funds|data)|quick\s+check|top\s+up|"
    r"load\s+test\s+money|fund\s+my\s+account)\b",
    r"\b(?:add|put)\s+more\s+money\b.*\baccount\b",
)
CREATE_ACCOUNT_PATTERNS = _patterns(r"\b(?:create|open)\b.*\baccount\b", r"\badd\s+(?:an?\s+|new\s+)+account\b")
CREATE_ORDER_PATTERNS = _patterns(
    r"\b(?:create|place|submit|make|execute|put)\b.*\border\b",
    r"\b(?:buy|purchase|trade|sell)\b.*\b\d+\s*(?:usd|eur|gbp|cad|chf|jpy|aud|shares?|units?|stocks?)\b",
)
SIMPLE_TRADE_PATTERN = re.compile(r"^(?:buy|sell)\s+[a-z0-9.]+(?:\s+(?:stock|shares?))?$")


def _matches_any(text: str, patterns: tuple[re.Pattern[str], ...]) -> bool:
    return any(pattern.search(text) for pattern in patterns)


def _contains_any(text: str, terms: list[str]) -> bool:
    return any(term in text for term in terms)


def determine_tool_plan(query: str, symbols: list[str] | None = None) -> list[ToolName]:
    """Map a query to the ordered set of tools it asks for.

    An empty plan is a valid answer and means no tool keyword was found; the
    policy gate decides what to do with it.
    """
    normalized = normalize_query(query)
    if not normalized or _matches_any(normalized, IDENTITY_PRIVACY_PATTERNS):
        return []

    selected: set[str] = set()
    extracted_symbols = list(symbols) if symbols else extract_symbols(query)

    has_fire = _matches_any(normalized, FIRE_PATTERNS)
    has_seed_funds = _matches_any(normalized, SEED_FUNDS_PATTERNS)
    has_demo_data = _matches_any(normalized, DEMO_DATA_PATTERNS)
    has_create_order = _matches_any(normalized, CREATE_ORDER_PATTERNS)
    has_create_account = _matches_any(normalized, CREATE_ACCOUNT_PATTERNS)
    has_explicit_symbol = any(not (has_fire and symbol == "FIRE") for symbol in extracted_symbols)

    # "buy nvidia" / "sell AAPL" is an order request, not a rebalance request.
    if SIMPLE_TRADE_PATTERN.match(normalized) and has_explicit_symbol:
        return ["create_order"]

    has_investment = _contains_any(normalized, INVESTMENT_INTENT_KEYWORDS)
    has_rebalance = _contains_any(normalized, REBALANCE_KEYWORDS)
    has_stress = _contains_any(normalized, STRESS_TEST_KEYWORDS)
    has_portfolio_context = _contains_any(normalized, PORTFOLIO_CONTEXT_KEYWORDS)
    has_decision_analysis = _matches_any(normalized, DECISION_ANALYSIS_PATTERNS)
    has_research = _matches_any(normalized, RESEARCH_PATTERNS)
    has_historical = _matches_any(normalized, HISTORICAL_PERFORMANCE_PATTERNS)
    has_broad_value = (
        bool(PORTFOLIO_VALUE_QUESTION_PATTERN.search(normalized))
        and bool(PORTFOLIO_VALUE_KEYWORD_PATTERN.search(normalized))
        and bool(PORTFOLIO_VALUE_CONTEXT_PATTERN.search(normalized))
    )
    has_portfolio_value = _matches_any(normalized, PORTFOLIO_VALUE_PATTERNS) or has_broad_value
    has_live_quote = _matches_any(normalized, LIVE_QUOTE_PATTERNS)
    has_fundamentals = _matches_any(normalized, ASSET_FUNDAMENTALS_PATTERNS) or _contains_any(
        normalized, ASSET_FUNDAMENTALS_FRAGMENTS
    )
    has_news = _matches_any(normalized, FINANCIAL_NEWS_PATTERNS)
    has_market_context = bool(MARKET_CONTEXT_PATTERN.search(normalized))
    has_symbol_lookup = _matches_any(normalized, SYMBOL_LOOKUP_PATTERNS)
    has_price_history = _matches_any(normalized, PRICE_HISTORY_PATTERNS)
    has_order_quantity = has_create_order and bool(re.search(r"\b\d+", normalized))

    has_ticker_decision = has_explicit_symbol and (has_decision_analysis or has_research)
    has_decision_valuation = has_fundamentals or bool(
        re.search(r"\b(?:valuation|metrics?|market\s*cap|p\s*e|earnings|dividend)\b", normalized)
    )
    has_decision_catalyst = has_news or bool(re.search(r"\b(?:catalyst|catalysts|news)\b", normalized))
    has_direct_news = has_news or (
        has_explicit_symbol
        and (bool(re.search(r"\bnews\b", normalized)) or bool(FRESHNESS_NEWS_PATTERN.search(normalized)))
    )

    if has_direct_news:
        selected.add("get_financial_news")

    if _contains_any(normalized, ["portfolio", "holding", "allocation", "performance", "return"]):
        selected.add("portfolio_analysis")
    if has_portfolio_value:
        selected.add("portfolio_analysis")
    if _matches_any(normalized, PORTFOLIO_SUMMARY_PATTERNS):
        selected.add("get_portfolio_summary")
    if _matches_any(normalized, CURRENT_HOLDINGS_PATTERNS):
        selected.add("get_current_holdings")
    if _contains_any(normalized, ["risk", "concentration", "diversif"]):
        selected.update({"portfolio_analysis", "risk_assessment"})
    if _matches_any(normalized, PORTFOLIO_RISK_METRICS_PATTERNS):
        selected.add("get_portfolio_risk_metrics")
    if has_fire:
        selected.update({"portfolio_analysis", "get_portfolio_summary", "risk_assessment", "stress_test", "fire_analysis"})

    # Composite intent: the rebalance bundle is added as one unit.
    wants_rebalance_bundle = has_rebalance or (
        has_investment and (not has_ticker_decision or has_portfolio_context) and not has_order_quantity
    )
    if wants_rebalance_bundle and not has_demo_data and not has_seed_funds and not has_create_account:
        selected.update({"portfolio_analysis", "risk_assessment", "rebalance_plan"})

    if _matches_any(normalized, RECENT_TRANSACTIONS_PATTERNS):
        selected.add("get_recent_transactions")
    if has_stress:
        selected.update({"portfolio_analysis", "risk_assessment", "stress_test"})

    if has_ticker_decision:
        selected.update({"get_asset_fundamentals", "get_financial_news", "price_history"})
        if has_decision_valuation and has_decision_catalyst:
            selected.add("market_data_lookup")
    if has_historical and has_explicit_symbol:
        selected.add("price_history")

    has_generic_market_lookup = _contains_any(normalized, ["quote", "price", "ticker"]) or (
        not has_symbol_lookup
        and has_explicit_symbol
        and not has_ticker_decision
        and not has_direct_news
        and not has_create_order
    )
    has_market_candidate = (
        has_symbol_lookup
        or has_price_history
        or has_historical
        or has_fundamentals
        or has_news
        or has_live_quote
        or has_generic_market_lookup
        or has_market_context
    )
    if has_market_candidate and not has_fire and not has_seed_funds:
        if has_symbol_lookup:
            selected.add("symbol_lookup")
        elif has_price_history or has_historical:
            selected.add("price_history")
        elif has_fundamentals:
            selected.add("get_asset_fundamentals")
        elif has_news:
            selected.add("get_financial_news")
        elif has_live_quote:
            selected.add("get_live_quote")
        elif has_generic_market_lookup or (has_market_context and has_explicit_symbol):
            selected.add("market_data_lookup")
    if has_market_context and has_explicit_symbol and not has_fire and not has_seed_funds:
        selected.add("market_data_lookup")

    if _matches_any(normalized, REBALANCE_CALCULATOR_PATTERNS):
        selected.add("calculate_rebalance_plan")
    if _matches_any(normalized, TRADE_IMPACT_PATTERNS):
        selected.update({"portfolio_analysis", "risk_assessment", "rebalance_plan", "simulate_trade_impact"})
    if _matches_any(normalized, TRANSACTION_CATEGORIZE_PATTERNS):
        selected.update({"get_recent_transactions", "transaction_categorize"})
    if _matches_any(normalized, TAX_ESTIMATE_PATTERNS) or _matches_any(normalized, TAX_GENERAL_PATTERNS):
        selected.add("tax_estimate")
    if _matches_any(normalized, COMPLIANCE_CHECK_PATTERNS):
        selected.update({"get_recent_transactions", "compliance_check"})
    if _matches_any(normalized, ACCOUNT_OVERVIEW_PATTERNS):
        selected.add("account_overview")
    if _matches_any(normalized, EXCHANGE_RATE_PATTERNS):
        selected.add("exchange_rate")
    if _matches_any(normalized, MARKET_BENCHMARKS_PATTERNS):
        selected.add("market_benchmarks")
    if _matches_any(normalized, ACTIVITY_HISTORY_PATTERNS):
        selected.add("activity_history")
    if has_demo_data:
        selected.add("demo_data")
    if has_seed_funds:
        selected.add("seed_funds")
    if has_create_account:
        selected.add("create_account")
    if has_create_order:
        selected.add("create_order")

    return order_tools(list(selected))
