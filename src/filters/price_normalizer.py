# src/filters/price_normalizer.py

"""Locale-aware price string normalisation."""

import math
import re

_NON_NUMERIC_RE = re.compile(r"[^0-9.,]")


def normalize_price(value: object) -> float | None:
    """Turn a displayed price into a float, or ``None`` if unreadable.

    Handles both ``1,234.56`` and ``1.234,56`` conventions:

    - Only digits, commas and dots are kept.
    - With both separators present, whichever comes *last* is the
      decimal separator; the other is a thousands separator.
    - With only commas, the comma is decimal when exactly two digits
      follow the last one (``12,50``), otherwise every comma is a
      thousands separator (``1,234``).

    Numeric inputs pass straight through.  Non-finite results are
    rejected so an unreadable price is never confused with ``0``.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None

    digits = _NON_NUMERIC_RE.sub("", str(value)).strip()
    if not digits:
        return None

    has_comma = "," in digits
    has_dot = "." in digits
    normalized = digits
    if has_comma and has_dot:
        if digits.rfind(".") > digits.rfind(","):
            normalized = digits.replace(",", "")
        else:
            normalized = digits.replace(".", "").replace(",", ".")
    elif has_comma:
        if len(digits.split(",")[-1]) == 2:
            normalized = digits.replace(",", ".")
        else:
            normalized = digits.replace(",", "")

    try:
        number = float(normalized)
    except ValueError:
        return None
    return number if math.isfinite(number) else None
