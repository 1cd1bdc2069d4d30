from __future__ import annotations

import math
from typing import Any


def safe_float(value: Any, default: float = 0.0) -> float:
    """Coerce backend numerics; NaN, infinities and unparseable text become ``default``."""
    if value is None:
        return default
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        numeric = float(value)
    else:
        text = str(value).strip().replace(",", "").rstrip("%")
        if not text:
            return default
        try:
            numeric = float(text)
        except ValueError:
            return default
    return numeric if math.isfinite(numeric) else default


def safe_int(value: Any, default: int = 0) -> int:
    if value is None:
        return default
    if isinstance(value, int):
        return value
    numeric = safe_float(value, default=math.nan)
    return int(numeric) if math.isfinite(numeric) else default


def round2(value: float) -> float:
    scaled = value * 100
    # Overflowed or non-finite magnitudes have no cents to round.
    if not math.isfinite(scaled):
        return value
    return math.floor(scaled + 0.5) / 100


def fmt_money(value: Any) -> str:
    numeric = round2(safe_float(value))
    if numeric == int(numeric):
        return f"{int(numeric):,}"
    return f"{numeric:,.2f}"
