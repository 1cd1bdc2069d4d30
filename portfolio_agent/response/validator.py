from __future__ import annotations

import json
import math
import re
from typing import Any, Iterable

_NUMERIC_TOKEN_PATTERN = re.compile(r"[-+]?\d[\d,\.]*%?")
_LIST_MARKER_PATTERN = re.compile(r"^\s*\d+[\.\)]\s+")
_EXECUTION_CLAIM_PATTERN = re.compile(r"\b(?:i (?:have )?(?:bought|sold|placed|executed)|order (?:was )?(?:placed|executed))\b", flags=re.IGNORECASE)
# Rendered values carry at most two decimals; allow for one rounding step.
NUMERIC_MATCH_TOLERANCE = 0.051


def _extract_numeric_tokens(text: str) -> set[str]:
    tokens: set[str] = set()
    for raw in _NUMERIC_TOKEN_PATTERN.findall(str(text or "")):
        token = raw.strip().strip(".,;:()[]{}")
        if token:
            tokens.add(token)
    return tokens


def _strip_list_markers(text: str) -> str:
    return "\n".join(_LIST_MARKER_PATTERN.sub("", line) for line in str(text or "").splitlines())


def _parse_numeric_token(token: str) -> float | None:
    raw = str(token or "").strip()
    if not raw:
        return None
    normalized = raw.rstrip("%").replace(",", "")
    try:
        return float(normalized)
    except ValueError:
        return None


def _is_soft_ungrounded_token(token: str) -> bool:
    # Small whole numbers ("2 options", "step 3") are ordinal, not data.
    value = _parse_numeric_token(token)
    if value is None or not math.isfinite(value):
        return False
    return not str(token).endswith("%") and float(int(abs(value))) == abs(value) and abs(value) <= 10


def _walk_numbers(value: Any) -> Iterable[float]:
    if isinstance(value, bool):
        return
    if isinstance(value, (int, float)):
        yield float(value)
    elif isinstance(value, dict):
        for item in value.values():
            yield from _walk_numbers(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from _walk_numbers(item)
    elif isinstance(value, str):
        for token in _extract_numeric_tokens(value):
            parsed = _parse_numeric_token(token)
            if parsed is not None:
                yield parsed


def extract_numeric_tokens_for_grounding(text: str) -> set[str]:
    return _extract_numeric_tokens(text)


def grounding_values(grounding: dict[str, Any]) -> set[float]:
    values: set[float] = set()
    for number in _walk_numbers(json.loads(json.dumps(grounding, default=str))):
        values.add(number)
        values.add(abs(number))
    return values


def validate_answer_grounding(
    text_sections: list[str],
    grounding: dict[str, Any],
    *,
    action_tools_executed: bool = False,
) -> list[str]:
    """Return error codes for prose that introduces numbers absent from the grounding."""
    errors: list[str] = []
    allowed = grounding_values(grounding)

    raw_tokens: set[str] = set()
    for section in text_sections:
        raw_tokens.update(_extract_numeric_tokens(_strip_list_markers(section)))

    ungrounded: list[str] = []
    for token in sorted(raw_tokens):
        value = _parse_numeric_token(token)
        if value is None or _is_soft_ungrounded_token(token):
            continue
        if any(abs(value - candidate) <= NUMERIC_MATCH_TOLERANCE for candidate in allowed):
            continue
        ungrounded.append(token)

    if ungrounded:
        errors.append("ungrounded_numeric_tokens")
        errors.append(f"ungrounded_numeric_tokens_sample:{','.join(ungrounded[:5])}")

    if not action_tools_executed and _EXECUTION_CLAIM_PATTERN.search(" ".join(text_sections)):
        errors.append("execution_claim_without_tool")

    return sorted(set(errors))
