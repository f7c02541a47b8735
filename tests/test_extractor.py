# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for the selector fallback extraction engine and page accessors."""

from __future__ import annotations

from pricescrape.extractor import (
    PageAccessor,
    PlaywrightPageAccessor,
    StaticHtmlAccessor,
    extract_fields,
    extract_raw,
)
from pricescrape.selector_catalog import SelectorCatalog, dom, meta
from tests._fakes import FakeAccessor, make_page


class TestFirstMatchWins:
    async def test_first_candidate(self):
        acc = FakeAccessor(texts={"#corePrice_feature_div .a-offscreen": "$10.00", "#priceblock_ourprice": "$99"})
        assert await extract_raw(acc, "price") == "$10.00"
        # Stops at the first hit
        assert acc.reads == ["dom:#corePrice_feature_div .a-offscreen"]

    async def test_falls_through_empty_candidates(self):
        acc = FakeAccessor(texts={"#priceblock_dealprice": "$5.49"})
        assert await extract_raw(acc, "price") == "$5.49"
        assert len(acc.reads) == 5

    async def test_later_match_not_preferred(self):
        acc = FakeAccessor(texts={"#apex_desktop .a-offscreen": "$1", "#priceblock_dealprice": "$2"})
        assert await extract_raw(acc, "price") == "$1"

    async def test_meta_fallback_for_title(self):
        acc = FakeAccessor(metas={"og:title": "From OG"})
        assert await extract_raw(acc, "title") == "From OG"
        assert acc.reads == ["dom:#productTitle", "meta:og:title"]

    async def test_no_match_is_empty(self):
        assert await extract_raw(FakeAccessor(), "rating") == ""

    async def test_unknown_field_no_reads(self):
        acc = FakeAccessor()
        assert await extract_raw(acc, "colour") == ""
        assert acc.reads == []


class TestExtractFields:
    async def test_every_field_present(self):
        acc = FakeAccessor(texts={"#productTitle": "Widget"})
        result = await extract_fields(acc, ["title", "price", "colour"])
        assert result.raw == {"title": "Widget", "price": "", "colour": ""}
        assert result.values == {"title": "Widget", "price": "", "colour": ""}

    async def test_values_normalized(self):
        acc = FakeAccessor(
            texts={"#corePrice_feature_div .a-offscreen": "$1,234.56", "#acrPopover .a-icon-alt": " 4.6 out of 5 "}
        )
        result = await extract_fields(acc, ["price", "rating"])
        assert result.raw["price"] == "$1,234.56"
        assert result.values["price"] == 1234.56
        assert result.values["rating"] == "4.6 out of 5"

    async def test_has_any_value(self):
        empty = await extract_fields(FakeAccessor(), ["price"])
        assert not empty.has_any_value()

    async def test_custom_catalog(self):
        catalog = SelectorCatalog({"sku": [dom(".sku"), meta("product:retailer_item_id")]})
        acc = FakeAccessor(metas={"product:retailer_item_id": "A-1"})
        result = await extract_fields(acc, ["sku"], catalog)
        assert result.values == {"sku": "A-1"}


class TestPlaywrightPageAccessor:
    async def test_text_trimmed(self):
        page = make_page(texts={"#productTitle": "\n   Echo Dot  \n"})
        acc = PlaywrightPageAccessor(page)
        assert await acc.query_text("#productTitle") == "Echo Dot"

    async def test_missing_element(self):
        acc = PlaywrightPageAccessor(make_page())
        assert await acc.query_text("#productTitle") == ""

    async def test_null_text_content(self):
        acc = PlaywrightPageAccessor(make_page(texts={"#productTitle": None}))
        assert await acc.query_text("#productTitle") == ""

    async def test_meta_reads_content_attribute(self):
        acc = PlaywrightPageAccessor(make_page(metas={"og:title": "OG Title"}))
        assert await acc.meta_content("og:title") == "OG Title"

    def test_satisfies_protocol(self):
        assert isinstance(PlaywrightPageAccessor(make_page()), PageAccessor)


class TestStaticHtmlAccessor:
    async def test_dom_never_matches(self):
        acc = StaticHtmlAccessor('<span id="productTitle">Widget</span>')
        assert await acc.query_text("#productTitle") == ""

    async def test_meta_from_html(self):
        acc = StaticHtmlAccessor('<meta property="product:price:amount" content="12.50">')
        result = await extract_fields(acc, ["c_price", "title"])
        assert result.values == {"c_price": 12.5, "title": ""}

    def test_satisfies_protocol(self):
        assert isinstance(StaticHtmlAccessor(""), PageAccessor)
