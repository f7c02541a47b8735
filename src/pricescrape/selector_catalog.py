# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Selector catalog: field name → ordered fallback chain.

Pure data, no browser dependencies.

Each chain lists candidates in priority order; the extraction engine stops
at the first candidate that yields a non-empty value.  Chains are assembled
from per-site-family tables so that a family-specific DOM selector is tried
before the generic meta-tag fallback for the same field.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum


class SelectorKind(StrEnum):
    DOM = "dom"  # CSS query, read trimmed text content
    META = "meta"  # <meta property|name=KEY>, read content attribute


@dataclass(frozen=True, slots=True)
class SelectorDescriptor:
    kind: SelectorKind
    query: str

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.query}"


SelectorChain = tuple[SelectorDescriptor, ...]


def dom(query: str) -> SelectorDescriptor:
    return SelectorDescriptor(SelectorKind.DOM, query)


def meta(key: str) -> SelectorDescriptor:
    return SelectorDescriptor(SelectorKind.META, key)


# ---------------------------------------------------------------------------
# Site families
# ---------------------------------------------------------------------------

AMAZON_CA: dict[str, list[SelectorDescriptor]] = {
    "price": [
        dom("#corePrice_feature_div .a-offscreen"),
        dom("#apex_desktop .a-offscreen"),
        dom("#tp_price_block_total_price_ww .a-offscreen"),
        dom("#priceblock_ourprice"),
        dom("#priceblock_dealprice"),
    ],
    "title": [dom("#productTitle")],
    "rating": [
        dom("#acrPopover .a-icon-alt"),
        dom("span[data-hook='rating-out-of-text']"),
    ],
}

# Open Graph / product meta tags, exposed by many storefronts in unrendered HTML
GENERIC_META: dict[str, list[SelectorDescriptor]] = {
    "title": [meta("og:title")],
    "c_price": [meta("product:price:amount")],
    "c_title": [meta("og:title")],
}

DEFAULT_FAMILIES: tuple[Mapping[str, list[SelectorDescriptor]], ...] = (AMAZON_CA, GENERIC_META)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class SelectorCatalog:
    """Immutable mapping from field name to SelectorChain.

    Unknown fields resolve to the empty chain; extraction then yields "".
    """

    def __init__(self, chains: Mapping[str, Iterable[SelectorDescriptor]]) -> None:
        self._chains: dict[str, SelectorChain] = {name: tuple(chain) for name, chain in chains.items()}

    @classmethod
    def from_families(cls, *families: Mapping[str, Iterable[SelectorDescriptor]]) -> SelectorCatalog:
        """Merge family tables; earlier families take priority within a chain."""
        merged: dict[str, list[SelectorDescriptor]] = {}
        for family in families:
            for name, chain in family.items():
                bucket = merged.setdefault(name, [])
                bucket.extend(d for d in chain if d not in bucket)
        return cls(merged)

    def chain(self, field_name: str) -> SelectorChain:
        return self._chains.get(field_name, ())

    def __contains__(self, field_name: object) -> bool:
        return field_name in self._chains

    def fields(self) -> list[str]:
        return list(self._chains)

    def meta_satisfiable(self, fields: Iterable[str]) -> bool:
        """True when every field has at least one meta-tag candidate."""
        names = list(fields)
        if not names:
            return False
        return all(any(d.kind is SelectorKind.META for d in self.chain(n)) for n in names)


DEFAULT_CATALOG = SelectorCatalog.from_families(*DEFAULT_FAMILIES)
