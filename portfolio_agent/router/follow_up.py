from __future__ import annotations

import logging
import re
from datetime import datetime, timezone

from ..config import FOLLOW_UP_STALENESS_MINUTES
from .contracts import ACTION_TOOLS, FollowUpSignal, GoalType, PreviousTurn, PrimaryScope, ToolName, TurnContext
from .normalize import normalize_query, tokenize
from .planner import determine_tool_plan
from .symbols import extract_symbols

logger = logging.getLogger(__name__)

FOLLOW_UP_TOKEN_LIMIT = 6
FOLLOW_UP_PATTERNS = (
    re.compile(r"^\s*(?:why|how|how so|how come|and|then|so)\s*[!.?]*\s*$"),
    re.compile(
        r"^\s*(?:what about|why|how|can you explain|explain)"
        r"(?:\s+(?:that|this|it|those|these|them|latest|now|today|again))*\s*[!.?]*\s*$"
    ),
    re.compile(r"^\s*(?:anything|what)\s+else\s*[!.?]*\s*$"),
    re.compile(r"^\s*(?:should|can|could|would)\s+i\s+\w+\s+(?:those|these|them|that|this|it)\s*[!.?]*\s*$"),
)
FRESHNESS_PATTERN = re.compile(r"\b(?:now|today|latest|current|updated|update)\b")
CONNECTOR_LEAD_PATTERN = re.compile(r"^(?:and|so|then|also|but|what about)\b")
MODAL_LEAD_PATTERN = re.compile(r"^(?:(?:should|can|could|would)\s+i|is\s+it)\b")
CURRENCY_CODE_PATTERN = re.compile(r"\b(?:usd|eur|gbp|cad|chf|jpy|aud)\b")

DEMONSTRATIVE_PRONOUNS = frozenset({"that", "this", "those", "these", "it", "them"})
FRESHNESS_TOOLS: tuple[ToolName, ...] = (
    "get_financial_news",
    "get_live_quote",
    "market_data_lookup",
    "price_history",
)
FINANCE_TOPIC_TERMS = (
    "allocation",
    "balance",
    "buy",
    "concentration",
    "diversif",
    "fire",
    "fund",
    "holding",
    "invest",
    "market",
    "news",
    "portfolio",
    "price",
    "quote",
    "rebalanc",
    "retire",
    "risk",
    "sell",
    "stock",
    "stress",
    "tax",
    "transaction",
)
_STOPWORDS = frozenset(
    {
        "a",
        "about",
        "an",
        "and",
        "are",
        "can",
        "could",
        "do",
        "for",
        "how",
        "i",
        "in",
        "is",
        "me",
        "my",
        "of",
        "on",
        "should",
        "so",
        "the",
        "then",
        "to",
        "what",
        "why",
        "would",
        "you",
    }
)

_GOAL_PATTERNS: list[tuple[GoalType, re.Pattern[str]]] = [
    ("rebalance", re.compile(r"\b(?:rebalanc\w*|diversif\w*|trim|reduce\s+concentration)\b")),
    ("sell", re.compile(r"\b(?:sell|exit|dump|take\s+profits?)\b")),
    ("buy", re.compile(r"\b(?:buy|invest|purchase|add\s+to)\b")),
    ("compare", re.compile(r"\b(?:compare|versus|vs|better\s+than|benchmark)\b")),
    ("protect", re.compile(r"\b(?:protect|hedge|crash|drawdown|stress|downside|safe)\b")),
    ("learn", re.compile(r"\b(?:explain|what\s+is|what\s+are|meaning|define|teach|learn)\b")),
    ("analyze", re.compile(r"\b(?:analy[sz]\w*|review|show|check|how\s+is|how\s+much|summary|overview)\b")),
]
_SCOPE_PATTERNS: list[tuple[PrimaryScope, re.Pattern[str]]] = [
    ("fire", re.compile(r"\b(?:fire|retire\w*|financial\s+independence|withdrawal)\b")),
    ("tax", re.compile(r"\b(?:tax|taxes|irs|capital\s+gains?)\b")),
    ("account", re.compile(r"\b(?:account|accounts|seed|top\s+up|deposit|order)\b")),
    ("market", re.compile(r"\b(?:market|quote|price|news|ticker|fundamentals?|benchmark|exchange\s+rate)\b")),
    ("portfolio", re.compile(r"\b(?:portfolio|holding\w*|allocation|concentration|risk|rebalanc\w*|position\w*)\b")),
]


def classify_goal_type(query: str) -> GoalType:
    normalized = normalize_query(query)
    for goal, pattern in _GOAL_PATTERNS:
        if pattern.search(normalized):
            return goal
    return "general"


def classify_primary_scope(query: str, symbols: list[str] | None = None) -> PrimaryScope:
    normalized = normalize_query(query)
    for scope, pattern in _SCOPE_PATTERNS:
        if pattern.search(normalized):
            return scope
    if symbols:
        return "market"
    return "general"


def build_turn_context(query: str, symbols: list[str] | None = None) -> TurnContext:
    entities = list(symbols) if symbols else extract_symbols(query)
    for code in (item.upper() for item in CURRENCY_CODE_PATTERN.findall(normalize_query(query))):
        if code not in entities:
            entities.append(code)
    return TurnContext(
        entities=entities,
        goalType=classify_goal_type(query),
        primaryScope=classify_primary_scope(query, entities),
    )


def matches_follow_up_pattern(query: str) -> bool:
    normalized = normalize_query(query)
    tokens = normalized.split(" ") if normalized else []
    if not tokens or len(tokens) > FOLLOW_UP_TOKEN_LIMIT:
        return False
    return any(pattern.match(normalized) for pattern in FOLLOW_UP_PATTERNS)


def _clamp(value: float) -> float:
    return round(max(0.0, min(1.0, value)), 2)


def _content_tokens(query: str) -> set[str]:
    return {token for token in tokenize(query) if token not in _STOPWORDS and token not in DEMONSTRATIVE_PRONOUNS}


def _minutes_since(timestamp: str | None, now: datetime) -> float | None:
    if not timestamp:
        return None
    try:
        parsed = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("follow_up_bad_timestamp value=%s", timestamp)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return max(0.0, (now - parsed).total_seconds() / 60.0)


def _standalone_confidence(tokens: list[str], normalized: str, has_tools: bool, has_symbols: bool, reasons: list[str]) -> float:
    score = 0.2
    if has_tools:
        score += 0.35
        reasons.append("standalone_tools_inferred")
    if len(tokens) >= 5:
        score += 0.2
    if has_symbols or any(term in normalized for term in FINANCE_TOPIC_TERMS):
        score += 0.2
        reasons.append("standalone_finance_subject")
    if any(token in DEMONSTRATIVE_PRONOUNS for token in tokens):
        score -= 0.25
    return _clamp(score)


def _context_dependency_confidence(tokens: list[str], normalized: str, has_tools: bool, reasons: list[str]) -> float:
    score = 0.0
    if any(token in DEMONSTRATIVE_PRONOUNS for token in tokens):
        score += 0.35
        reasons.append("context_pronoun")
    if len(tokens) <= FOLLOW_UP_TOKEN_LIMIT:
        score += 0.2
        reasons.append("context_short_query")
    if CONNECTOR_LEAD_PATTERN.match(normalized):
        score += 0.15
        reasons.append("context_connector_lead")
    if MODAL_LEAD_PATTERN.match(normalized):
        score += 0.15
        reasons.append("context_modal_lead")
    if not has_tools:
        score += 0.1
    return _clamp(score)


def _topic_continuity_confidence(
    query: str,
    symbols: list[str],
    previous: PreviousTurn | None,
    now: datetime,
    reasons: list[str],
) -> float:
    if previous is None:
        return 0.0

    score = 0.0
    current_tokens = _content_tokens(query)
    previous_tokens = _content_tokens(previous.query)
    if current_tokens and previous_tokens:
        overlap = len(current_tokens & previous_tokens) / len(current_tokens)
        score += 0.4 * overlap
        if overlap > 0:
            reasons.append("continuity_token_overlap")
    if previous.successfulTools:
        score += 0.25
        reasons.append("continuity_previous_tools")
    previous_entities = set(previous.context.entities) if previous.context else set()
    if symbols and previous_entities and previous_entities.intersection(symbols):
        score += 0.2
        reasons.append("continuity_entity_match")

    elapsed = _minutes_since(previous.timestamp, now)
    if elapsed is not None and elapsed < FOLLOW_UP_STALENESS_MINUTES:
        score += 0.15 * (1.0 - elapsed / FOLLOW_UP_STALENESS_MINUTES)
        reasons.append("continuity_recent_turn")
    return _clamp(score)


def compute_follow_up_signal(
    query: str,
    previous: PreviousTurn | None = None,
    symbols: list[str] | None = None,
    now: datetime | None = None,
) -> FollowUpSignal:
    """Score how much ``query`` leans on the previous turn.

    The three confidences are independent; a query is a likely follow-up when
    it matches a short follow-up shape, or when it depends on context and
    shares a topic with the previous turn without standing on its own.
    """
    normalized = normalize_query(query)
    tokens = normalized.split(" ") if normalized else []
    resolved_symbols = list(symbols) if symbols else extract_symbols(query)
    inferred_tools = determine_tool_plan(query, resolved_symbols)
    reasons: list[str] = []

    standalone = _standalone_confidence(tokens, normalized, bool(inferred_tools), bool(resolved_symbols), reasons)
    dependency = _context_dependency_confidence(tokens, normalized, bool(inferred_tools), reasons)
    continuity = _topic_continuity_confidence(
        query,
        resolved_symbols,
        previous,
        now or datetime.now(timezone.utc),
        reasons,
    )

    pattern_match = matches_follow_up_pattern(query)
    if pattern_match:
        reasons.append("follow_up_pattern")
    likely = pattern_match or (dependency >= 0.55 and continuity >= 0.35 and standalone < 0.75)

    return FollowUpSignal(
        isLikelyFollowUp=likely,
        standaloneIntentConfidence=standalone,
        contextDependencyConfidence=dependency,
        topicContinuityConfidence=continuity,
        reason_codes=reasons,
    )


def resolve_follow_up_tools(
    query: str,
    planned_tools: list[ToolName],
    signal: FollowUpSignal,
    previous: PreviousTurn | None,
) -> list[ToolName]:
    """Re-plan the previous turn's read-only tools for a likely follow-up with no plan of its own.

    Freshness wording ("what about now?") narrows the reuse to market tools.
    Action tools are never replayed.
    """
    if planned_tools or previous is None or not signal.isLikelyFollowUp:
        return list(planned_tools)

    reused = [tool for tool in previous.successfulTools if tool not in ACTION_TOOLS]
    if FRESHNESS_PATTERN.search(normalize_query(query)):
        reused = [tool for tool in reused if tool in FRESHNESS_TOOLS]
    if reused:
        logger.info("follow_up_tools_reused tools=%s", ",".join(reused))
    return reused
