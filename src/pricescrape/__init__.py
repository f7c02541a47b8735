# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""pricescrape: named product attributes from e-commerce pages.

Extracts fields such as ``price``, ``title`` and ``rating`` through per-field
selector fallback chains, choosing between a static HTML fetch and a headless
browser render per request.
"""

from __future__ import annotations

from dataclasses import dataclass, field

Value = float | str


def parse_fields(text: str | None) -> tuple[str, ...]:
    """Parse a comma-separated field list into an ordered, de-duplicated tuple.

    Whitespace is trimmed, empty items are dropped and later duplicates are
    ignored so the first occurrence fixes the output position.
    """
    if not text:
        return ()
    seen: dict[str, None] = {}
    for item in str(text).split(","):
        name = item.strip()
        if name:
            seen.setdefault(name, None)
    return tuple(seen)


@dataclass(frozen=True)
class ExtractionResult:
    """Raw and normalized values for every requested field."""

    raw: dict[str, str] = field(default_factory=dict)
    values: dict[str, Value] = field(default_factory=dict)

    def has_any_value(self) -> bool:
        return any(v != "" for v in self.raw.values())


@dataclass(frozen=True)
class ScrapeResult:
    """Wire payload: ``headers`` and ``values`` are positionally aligned."""

    headers: list[str]
    values: list[Value]
    raw: dict[str, Value]

    @classmethod
    def build(cls, fields: tuple[str, ...] | list[str], values: dict[str, Value]) -> ScrapeResult:
        headers = list(fields)
        return cls(
            headers=headers,
            values=[values.get(name, "") for name in headers],
            raw={name: values.get(name, "") for name in headers},
        )

    def to_dict(self) -> dict:
        return {"headers": self.headers, "values": self.values, "raw": self.raw}
