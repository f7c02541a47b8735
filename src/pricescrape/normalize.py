# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Value normalization: raw extracted text → typed output.

Price-like fields (name contains ``"price"``) become floats when the text
parses; everything else is a trimmed string.  Never raises.
"""

from __future__ import annotations

import re

from . import Value

_NON_NUMERIC_RE = re.compile(r"[^\d.,]")
_FLOAT_PREFIX_RE = re.compile(r"\d+(?:\.\d*)?|\.\d+")


def _decimal_text(text: str) -> str:
    """Collapse separators so that a single '.' marks the decimal point.

    "1,234.56" → "1234.56", "1.234,56" → "1234.56", "19,99" → "19.99".
    """
    comma = text.rfind(",")
    dot = text.rfind(".")
    if comma != -1 and dot != -1:
        if dot > comma:
            return text.replace(",", "")
        return text.replace(".", "").replace(",", ".", 1)
    return text.replace(",", ".", 1)


def parse_price(raw: str) -> float | None:
    """Parse the leading numeric portion of *raw*, or None."""
    cleaned = _decimal_text(_NON_NUMERIC_RE.sub("", raw))
    m = _FLOAT_PREFIX_RE.match(cleaned)
    if m is None:
        return None
    try:
        return float(m.group(0))
    except ValueError:
        return None


def is_price_field(field_name: str) -> bool:
    return "price" in field_name


def normalize_value(field_name: str, raw: str | None) -> Value:
    if raw is None:
        return ""
    if is_price_field(field_name) and raw:
        parsed = parse_price(raw)
        # Unparseable price text is preserved as-is
        return raw if parsed is None else parsed
    return raw.strip()
