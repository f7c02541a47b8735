# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Selector fallback extraction engine.

Walks each requested field's SelectorChain in order against a PageAccessor
and keeps the first non-empty value (first match wins, never best match).
Fields with no matching candidate come back as "".

Two accessors are provided: PlaywrightPageAccessor for a rendered page and
StaticHtmlAccessor for raw HTML from the static fetch path.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Protocol, runtime_checkable

from playwright.async_api import Page

from . import ExtractionResult
from .meta_tags import extract_meta
from .normalize import normalize_value
from .selector_catalog import DEFAULT_CATALOG, SelectorCatalog, SelectorDescriptor, SelectorKind

logger = logging.getLogger(__name__)


@runtime_checkable
class PageAccessor(Protocol):
    """Read-only view of a page used by the extraction engine."""

    async def query_text(self, selector: str) -> str: ...

    async def meta_content(self, key: str) -> str: ...


class PlaywrightPageAccessor:
    """PageAccessor over a live Playwright page."""

    def __init__(self, page: Page) -> None:
        self._page = page

    async def query_text(self, selector: str) -> str:
        el = await self._page.query_selector(selector)
        if el is None:
            return ""
        text = await el.text_content()
        return (text or "").strip()

    async def meta_content(self, key: str) -> str:
        el = await self._page.query_selector(f"meta[property='{key}'], meta[name='{key}']")
        if el is None:
            return ""
        return (await el.get_attribute("content")) or ""


class StaticHtmlAccessor:
    """PageAccessor over unrendered HTML. DOM queries never match."""

    def __init__(self, body: str) -> None:
        self._body = body

    async def query_text(self, selector: str) -> str:
        return ""

    async def meta_content(self, key: str) -> str:
        return extract_meta(self._body, key)


async def _read(accessor: PageAccessor, descriptor: SelectorDescriptor) -> str:
    if descriptor.kind is SelectorKind.META:
        return await accessor.meta_content(descriptor.query)
    return await accessor.query_text(descriptor.query)


async def extract_raw(
    accessor: PageAccessor,
    field_name: str,
    catalog: SelectorCatalog = DEFAULT_CATALOG,
) -> str:
    """Return the first non-empty candidate value for *field_name*, or ""."""
    for descriptor in catalog.chain(field_name):
        value = await _read(accessor, descriptor)
        if value:
            logger.debug("Field %s matched %s", field_name, descriptor)
            return value
    return ""


async def extract_fields(
    accessor: PageAccessor,
    fields: Iterable[str],
    catalog: SelectorCatalog = DEFAULT_CATALOG,
) -> ExtractionResult:
    """Run every field's chain and normalize the results."""
    raw: dict[str, str] = {}
    values: dict = {}
    for name in fields:
        value = await extract_raw(accessor, name, catalog)
        raw[name] = value
        values[name] = normalize_value(name, value)
    misses = [name for name, value in raw.items() if not value]
    if misses:
        logger.info("No selector matched for fields: %s", ",".join(misses))
    return ExtractionResult(raw=raw, values=values)
