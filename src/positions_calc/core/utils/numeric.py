from __future__ import annotations

import math
import re
from typing import Any, Mapping

PLACEHOLDER = "—"

_PLACEHOLDERS = {"", "-", PLACEHOLDER}
_TRAILING_FRACTION = re.compile(r"(\.\d*?[1-9])0+$")
_ZERO_FRACTION = re.compile(r"\.0+$")


def to_number_safe(v: Any) -> float:
    """
    Lenient numeric parse. Never raises; returns NaN when nothing usable.
    "1 234,5" -> 1234.5, "-" -> NaN, {"price": "3"} -> 3.0
    """
    if v is None:
        return math.nan
    if isinstance(v, bool):
        return float(v)
    if isinstance(v, (int, float)):
        return float(v)
    if isinstance(v, str):
        s = v.strip()
        if s in _PLACEHOLDERS:
            return math.nan
        try:
            return float(re.sub(r"\s+", "", s).replace(",", ".", 1))
        except ValueError:
            return math.nan
    if isinstance(v, Mapping):
        for key in ("price", "last", "c"):
            if key in v:
                return to_number_safe(v[key])
        return math.nan
    try:
        return float(v)
    except (TypeError, ValueError):
        return math.nan


def is_placeholder_value(v: Any) -> bool:
    if v is None:
        return True
    return isinstance(v, str) and v.strip() in _PLACEHOLDERS


def trim_trailing_zeros(value: str) -> str:
    if not isinstance(value, str) or "e" in value or "E" in value:
        return value
    value = _TRAILING_FRACTION.sub(r"\1", value)
    value = _ZERO_FRACTION.sub("", value)
    return value.rstrip(".") if value.endswith(".") else value


def format_adaptive_price(value: Any) -> str:
    if is_placeholder_value(value):
        return PLACEHOLDER

    numeric = to_number_safe(value)
    if not math.isfinite(numeric):
        return str(value)

    a = abs(numeric)
    if a == 0:
        return "0"
    if a >= 1:
        formatted = f"{numeric:.4f}"
    elif a >= 0.000001:
        formatted = _to_precision(numeric, 6)
    else:
        formatted = f"{numeric:.3e}"
    return trim_trailing_zeros(formatted)


def _to_precision(x: float, digits: int) -> str:
    # fixed notation with `digits` significant digits
    exp = math.floor(math.log10(abs(x)))
    decimals = max(digits - 1 - exp, 0)
    return f"{x:.{decimals}f}"


def format_fixed(value: Any, digits: int = 8) -> str:
    if value is None:
        return PLACEHOLDER
    numeric = to_number_safe(value)
    if not math.isfinite(numeric):
        return PLACEHOLDER
    return f"{numeric:.{digits}f}"
