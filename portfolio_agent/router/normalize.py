from __future__ import annotations

import re

_NON_ALNUM_PATTERN = re.compile(r"[^a-z0-9\s]+")
_WHITESPACE_PATTERN = re.compile(r"\s+")

# Misspellings observed across tool prompts. Keys are whole tokens.
QUERY_TYPO_CORRECTIONS: dict[str, str] = {
    "ahve": "have",
    "benhmark": "benchmark",
    "benhmarks": "benchmarks",
    "complience": "compliance",
    "complaince": "compliance",
    "exchage": "exchange",
    "fundamntals": "fundamentals",
    "fundamentls": "fundamentals",
    "newz": "news",
    "porfolio": "portfolio",
    "portfoilo": "portfolio",
    "quot": "quote",
    "stresss": "stress",
    "strestt": "stress",
    "sybol": "symbol",
    "symbl": "symbol",
    "taxis": "taxes",
    "taxs": "taxes",
    "transacton": "transaction",
    "transactons": "transactions",
}


def collapse_query(query: str) -> str:
    lowered = str(query or "").lower()
    stripped = _NON_ALNUM_PATTERN.sub(" ", lowered)
    return _WHITESPACE_PATTERN.sub(" ", stripped).strip()


def normalize_query(query: str) -> str:
    collapsed = collapse_query(query)
    if not collapsed:
        return ""
    return " ".join(QUERY_TYPO_CORRECTIONS.get(token, token) for token in collapsed.split(" "))


def tokenize(query: str) -> list[str]:
    normalized = normalize_query(query)
    return normalized.split(" ") if normalized else []
