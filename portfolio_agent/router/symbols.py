from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable

from .normalize import normalize_query

logger = logging.getLogger(__name__)

_CANDIDATE_TICKER_PATTERN = re.compile(r"\$?[A-Za-z0-9.]{1,10}")
_NORMALIZED_TICKER_PATTERN = re.compile(r"^(?=.*[A-Z])[A-Z0-9]{1,6}(?:\.[A-Z0-9]{1,4})?$")
SYMBOL_STOP_WORDS = frozenset(
    {
        "AND",
        "FOR",
        "GIVE",
        "HELP",
        "I",
        "IS",
        "MARKET",
        "OF",
        "PLEASE",
        "PORTFOLIO",
        "PRICE",
        "QUOTE",
        "RISK",
        "SHOW",
        "SYMBOL",
        "THE",
        "TICKER",
        "WHAT",
        "WITH",
    }
)

COMPANY_NAME_SYMBOL_ALIASES: dict[str, str] = {
    "adobe": "ADBE",
    "advanced micro devices": "AMD",
    "amd": "AMD",
    "airbnb": "ABNB",
    "alphabet": "GOOGL",
    "amazon": "AMZN",
    "amgen": "AMGN",
    "arm": "ARM",
    "asml": "ASML",
    "apple": "AAPL",
    "bank of america": "BAC",
    "baidu": "BIDU",
    "bnd": "BND",
    "berkshire": "BRK.B",
    "berkshire hathaway": "BRK.B",
    "berkshire class b": "BRK.B",
    "blackrock": "BLK",
    "block": "SQ",
    "boeing": "BA",
    "booking": "BKNG",
    "broadcom": "AVGO",
    "cadence": "CDNS",
    "chevron": "CVX",
    "cisco": "CSCO",
    "citigroup": "C",
    "coca cola": "KO",
    "coinbase": "COIN",
    "comcast": "CMCSA",
    "conocophillips": "COP",
    "costco": "COST",
    "crowdstrike": "CRWD",
    "delta": "DAL",
    "dia": "DIA",
    "disney": "DIS",
    "eli lilly": "LLY",
    "exxon": "XOM",
    "exxon mobil": "XOM",
    "ford": "F",
    "general electric": "GE",
    "google": "GOOGL",
    "gld": "GLD",
    "gold etf": "GLD",
    "goldman sachs": "GS",
    "ibm": "IBM",
    "intel": "INTC",
    "intuit": "INTU",
    "ivv": "IVV",
    "iwm": "IWM",
    "jnj": "JNJ",
    "johnson and johnson": "JNJ",
    "jpmorgan": "JPM",
    "linde": "LIN",
    "lockheed martin": "LMT",
    "lowes": "LOW",
    "mastercard": "MA",
    "mcdonalds": "MCD",
    "mckesson": "MCK",
    "merck": "MRK",
    "meta": "META",
    "micron": "MU",
    "microsoft": "MSFT",
    "morgan stanley": "MS",
    "netflix": "NFLX",
    "nike": "NKE",
    "nvidia": "NVDA",
    "oracle": "ORCL",
    "palantir": "PLTR",
    "paypal": "PYPL",
    "pepsico": "PEP",
    "pfizer": "PFE",
    "procter and gamble": "PG",
    "qqq": "QQQ",
    "qualcomm": "QCOM",
    "raytheon": "RTX",
    "rivian": "RIVN",
    "s and p 500": "SPY",
    "s&p 500": "SPY",
    "salesforce": "CRM",
    "schwab dividend": "SCHD",
    "schd": "SCHD",
    "servicenow": "NOW",
    "shopify": "SHOP",
    "s and p etf": "SPY",
    "sofi": "SOFI",
    "soxx": "SOXX",
    "s p 500": "SPY",
    "spotify": "SPOT",
    "spy": "SPY",
    "tesla": "TSLA",
    "technology select sector": "XLK",
    "t mobile": "TMUS",
    "tmobile": "TMUS",
    "top 100 nasdaq": "QQQ",
    "total bond market": "BND",
    "total stock market": "VTI",
    "total world stock": "VT",
    "20 year treasury": "TLT",
    "tlt": "TLT",
    "toyota": "TM",
    "tsmc": "TSM",
    "uber": "UBER",
    "unitedhealth": "UNH",
    "verizon": "VZ",
    "vanguard s&p 500": "VOO",
    "vanguard total stock market": "VTI",
    "visa": "V",
    "voo": "VOO",
    "vt": "VT",
    "vti": "VTI",
    "walmart": "WMT",
    "wells fargo": "WFC",
    "xlk": "XLK",
    "xom": "XOM",
}
_COMPANY_ALIAS_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = tuple(
    (re.compile(rf"\b{re.escape(alias)}\b", flags=re.IGNORECASE), symbol)
    for alias, symbol in COMPANY_NAME_SYMBOL_ALIASES.items()
)
KNOWN_SYMBOLS: frozenset[str] = frozenset(COMPANY_NAME_SYMBOL_ALIASES.values())

COMPANY_ALIAS_CONTEXT_PATTERN = re.compile(
    r"\b(?:about|asset|analy[sz]e|analysis|company|deep\s*dive|earnings?|fundamental|fundamentals|learn|market|"
    r"news|overview|price|quote|research|stock|ticker|thesis|valuation|portfolio|holding|investment|invest|buy|"
    r"sell|trade|dividend|rebalance|compare)\b"
)
TICKER_INTENT_PATTERN = re.compile(
    r"\b(?:ticker|tickers|symbol|symbols|quote|quotes|price|prices|stock|stocks|shares?|fundamentals?|news|"
    r"chart|buy|sell|trade|lookup)\b"
)

# Tokens never treated as misspelled tickers.
_FUZZY_STOP_WORDS = frozenset(
    {
        "a", "about", "after", "all", "am", "an", "and", "any", "are", "as", "at", "be", "but", "by", "can",
        "could", "did", "do", "does", "for", "from", "get", "give", "had", "has", "have", "how", "i", "if",
        "in", "into", "is", "it", "its", "just", "latest", "me", "more", "my", "no", "not", "now", "of", "on",
        "or", "our", "out", "over", "please", "show", "should", "so", "some", "tell", "than", "that", "the",
        "their", "them", "then", "there", "these", "they", "this", "those", "to", "today", "too", "up", "was",
        "we", "what", "when", "where", "which", "who", "why", "will", "with", "would", "you", "your",
        "buy", "sell", "trade", "portfolio", "account", "holdings", "stock", "stocks", "shares", "share",
        "price", "prices", "quote", "quotes", "value", "worth", "balance", "market", "ticker", "symbol",
        "news", "chart", "lookup", "fundamentals", "fundamental", "check", "current", "find",
    }
)


@dataclass(frozen=True)
class SymbolSuggestion:
    candidate: str
    symbol: str
    distance: int
    matched: str


def _normalize_symbol_candidate(raw_candidate: str) -> str | None:
    has_dollar_prefix = raw_candidate.startswith("$")
    candidate = raw_candidate[1:] if has_dollar_prefix else raw_candidate
    candidate = candidate.rstrip(".")
    if not candidate:
        return None

    normalized = candidate.upper()
    if normalized in SYMBOL_STOP_WORDS:
        return None
    if not _NORMALIZED_TICKER_PATTERN.match(normalized):
        return None
    # Bare tokens must already be upper-case so ordinary words never match.
    if not has_dollar_prefix and candidate != normalized:
        return None
    return normalized


def _dedupe_keep_order(items: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    deduped: list[str] = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        deduped.append(item)
    return deduped


def alias_symbols(query: str) -> list[str]:
    text = str(query or "")
    matches = [symbol for pattern, symbol in _COMPANY_ALIAS_PATTERNS if pattern.search(text)]
    if not matches:
        return []
    has_context = bool(COMPANY_ALIAS_CONTEXT_PATTERN.search(normalize_query(text)))
    if not has_context and len(matches) <= 1:
        return []
    return _dedupe_keep_order(matches)


def extract_symbols(query: str) -> list[str]:
    text = str(query or "")
    direct = [
        normalized
        for normalized in (_normalize_symbol_candidate(raw) for raw in _CANDIDATE_TICKER_PATTERN.findall(text))
        if normalized is not None
    ]
    return _dedupe_keep_order([*direct, *alias_symbols(text)])


def levenshtein_distance(left: str, right: str) -> int:
    if left == right:
        return 0
    if not left:
        return len(right)
    if not right:
        return len(left)

    previous = list(range(len(right) + 1))
    for row, left_char in enumerate(left, start=1):
        current = [row] + [0] * len(right)
        for col, right_char in enumerate(right, start=1):
            substitution = previous[col - 1] + (0 if left_char == right_char else 1)
            current[col] = min(previous[col] + 1, current[col - 1] + 1, substitution)
        previous = current
    return previous[-1]


def fuzzy_threshold(candidate: str) -> int:
    return 1 if len(candidate) <= 4 else 2


def _fuzzy_targets() -> list[tuple[str, str]]:
    targets = [(alias, symbol) for alias, symbol in COMPANY_NAME_SYMBOL_ALIASES.items()]
    targets.extend((symbol.lower(), symbol) for symbol in KNOWN_SYMBOLS)
    return targets


_FUZZY_TARGETS: tuple[tuple[str, str], ...] = tuple(_fuzzy_targets())


def best_fuzzy_match(candidate: str) -> SymbolSuggestion | None:
    needle = str(candidate or "").strip().lstrip("$").lower()
    if not needle:
        return None

    threshold = fuzzy_threshold(needle)
    best: SymbolSuggestion | None = None
    for matched, symbol in _FUZZY_TARGETS:
        if abs(len(matched) - len(needle)) > threshold:
            continue
        distance = levenshtein_distance(needle, matched)
        if distance > threshold:
            continue
        if best is None or (distance, symbol) < (best.distance, best.symbol):
            best = SymbolSuggestion(candidate=candidate, symbol=symbol, distance=distance, matched=matched)
    return best


def _unresolved_query_tokens(query: str, resolved: set[str]) -> list[str]:
    tokens: list[str] = []
    for token in normalize_query(query).split(" "):
        if len(token) < 3 or not token.isalpha():
            continue
        if token in _FUZZY_STOP_WORDS or token in COMPANY_NAME_SYMBOL_ALIASES:
            continue
        if token.upper() in resolved:
            continue
        tokens.append(token)
    return tokens


def suggest_symbol_corrections(query: str, unresolved_symbols: list[str] | None = None) -> list[SymbolSuggestion]:
    """Did-you-mean lookup for tickers or company names that failed exact resolution.

    Only runs when the query shows ticker intent or the caller passes symbols it
    could not resolve, so ordinary prose never turns into tickers.
    """
    caller_supplied = [str(item).strip() for item in (unresolved_symbols or []) if str(item).strip()]
    has_ticker_intent = bool(TICKER_INTENT_PATTERN.search(normalize_query(query)))
    if not caller_supplied and not has_ticker_intent:
        return []

    resolved = set(extract_symbols(query))
    candidates = caller_supplied or _unresolved_query_tokens(query, resolved)

    suggestions: list[SymbolSuggestion] = []
    seen_symbols: set[str] = set()
    for candidate in candidates:
        if candidate.upper() in resolved:
            continue
        suggestion = best_fuzzy_match(candidate)
        if suggestion is None or suggestion.symbol in seen_symbols:
            continue
        seen_symbols.add(suggestion.symbol)
        suggestions.append(suggestion)

    if suggestions:
        logger.info(
            "symbol_fuzzy_match candidates=%s suggestions=%s",
            len(candidates),
            ",".join(f"{item.candidate}->{item.symbol}" for item in suggestions),
        )
    return suggestions


def resolve_symbols(query: str, symbols: list[str] | None = None) -> list[str]:
    """Caller symbols win; otherwise exact extraction, then fuzzy corrections."""
    explicit = _dedupe_keep_order(str(item).strip().upper() for item in (symbols or []) if str(item).strip())
    if explicit:
        return explicit
    extracted = extract_symbols(query)
    corrections = [item.symbol for item in suggest_symbol_corrections(query)]
    return _dedupe_keep_order([*extracted, *corrections])
