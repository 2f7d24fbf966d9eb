from __future__ import annotations

import math
import time
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, localcontext
from typing import Any

_CENTS = Decimal("0.01")


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, Decimal):
        parsed = value
    elif isinstance(value, int):
        parsed = Decimal(value)
    elif isinstance(value, float):
        if not math.isfinite(value):
            return None
        parsed = Decimal(str(value))
    elif isinstance(value, str):
        stripped = value.strip()
        if "," in stripped and "." not in stripped:
            stripped = stripped.replace(",", ".")
        if not stripped:
            return None
        try:
            parsed = Decimal(stripped)
        except InvalidOperation:
            return None
    else:
        return None

    if not parsed.is_finite() or parsed < 0:
        return None
    # Anything a JSON float cannot carry is not a usable price.
    if not math.isfinite(float(parsed)):
        return None
    if parsed == 0:
        return Decimal(0)
    return parsed


def coerce_monetary(value: Any) -> float:
    """Numeric price for JSON payloads; 0.0 whenever the input is not a usable amount."""
    parsed = _to_decimal(value)
    if parsed is None:
        return 0.0
    return float(parsed)


def format_monetary_display(value: Any) -> str:
    parsed = _to_decimal(value) or Decimal(0)
    with localcontext() as ctx:
        # Quantizing to cents needs every integer digit plus two.
        ctx.prec = max(ctx.prec, parsed.adjusted() + 3)
        try:
            amount = parsed.quantize(_CENTS, rounding=ROUND_HALF_UP)
        except InvalidOperation:
            amount = Decimal("0.00")
    return f"R$ {amount}".replace(".", ",")


def normalize_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def elapsed_label(started: float) -> str:
    """Milliseconds since a `time.perf_counter()` mark, e.g. "12ms"."""
    return f"{int((time.perf_counter() - started) * 1000)}ms"


__all__ = ["coerce_monetary", "elapsed_label", "format_monetary_display", "normalize_text"]
