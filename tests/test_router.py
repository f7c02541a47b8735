# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for StrategyRouter: path selection, fallback, caching, resource release."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from pricescrape import ExtractionResult
from pricescrape.browser_session import BrowserSessionManager
from pricescrape.cache import ResponseCache
from pricescrape.errors import InvalidRequestError, NavigationTimeoutError, ResourceUnavailableError
from pricescrape.router import RouterConfig, SettlePolicy, Strategy, StrategyRouter
from pricescrape.static_fetch import StaticFetchExtractor
from tests._fakes import make_browser, make_page, make_playwright, manager_with_browser

COSTCO_URL = "https://www.costco.ca/kirkland-olive-oil.product.100.html"
AMAZON_URL = "https://www.amazon.ca/dp/B0ABCDEF12"

AMAZON_PAGE = {
    "#corePrice_feature_div .a-offscreen": "$1,234.56",
    "#productTitle": "  Echo Dot (5th Gen)  ",
    "#acrPopover .a-icon-alt": "4.7 out of 5 stars",
}

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _static(result: ExtractionResult | None) -> MagicMock:
    static = MagicMock(spec=StaticFetchExtractor)
    static.extract = AsyncMock(return_value=result)
    return static


def _settle() -> MagicMock:
    settle = MagicMock(spec=SettlePolicy)
    settle.wait = AsyncMock()
    return settle


def _router(
    *,
    page=None,
    static_result: ExtractionResult | None = None,
    cache: ResponseCache | None = None,
    config: RouterConfig | None = None,
):
    page = page if page is not None else make_page(texts=AMAZON_PAGE)
    browser = make_browser(page)
    manager = manager_with_browser(browser)
    static = _static(static_result)
    settle = _settle()
    router = StrategyRouter(manager, static=static, cache=cache, settle=settle, config=config)
    return router, manager, browser, page, static, settle


# ---------------------------------------------------------------------------
# Strategy selection
# ---------------------------------------------------------------------------


class TestChoose:
    def setup_method(self):
        self.router = StrategyRouter(BrowserSessionManager())

    def test_static_friendly_meta_fields(self):
        assert self.router.choose(COSTCO_URL, ["c_price", "c_title"]) is Strategy.STATIC_WITH_FALLBACK

    def test_static_friendly_host_case_insensitive(self):
        assert self.router.choose("https://WWW.COSTCO.CA/x", ["c_price"]) is Strategy.STATIC_WITH_FALLBACK

    def test_dom_only_field_forces_browser(self):
        assert self.router.choose(COSTCO_URL, ["c_price", "price"]) is Strategy.BROWSER

    def test_other_host_browser(self):
        assert self.router.choose(AMAZON_URL, ["c_price"]) is Strategy.BROWSER

    def test_lookalike_host_not_static(self):
        assert self.router.choose("https://costco.ca.evil.com/x", ["c_price"]) is Strategy.BROWSER

    def test_static_only_when_fallback_disabled(self):
        router = StrategyRouter(BrowserSessionManager(), config=RouterConfig(browser_fallback=False))
        assert router.choose(COSTCO_URL, ["c_price"]) is Strategy.STATIC_ONLY

    def test_custom_static_hosts(self):
        router = StrategyRouter(BrowserSessionManager(), config=RouterConfig(static_hosts=(r"\.example\.com$",)))
        assert router.choose("https://shop.example.com/p", ["c_title"]) is Strategy.STATIC_WITH_FALLBACK
        assert router.choose(COSTCO_URL, ["c_title"]) is Strategy.BROWSER


# ---------------------------------------------------------------------------
# Static path
# ---------------------------------------------------------------------------


class TestStaticPath:
    async def test_success_skips_browser(self):
        static_result = ExtractionResult(
            raw={"c_price": "24.99", "c_title": "Olive Oil"},
            values={"c_price": 24.99, "c_title": "Olive Oil"},
        )
        router, manager, browser, _, static, _ = _router(static_result=static_result)
        result = await router.scrape(COSTCO_URL, ("c_title", "c_price"))
        assert result.headers == ["c_title", "c_price"]
        assert result.values == ["Olive Oil", 24.99]
        static.extract.assert_awaited_once()
        assert manager.health().launch_count == 0
        browser.new_context.assert_not_called()

    async def test_no_result_falls_back_to_browser(self):
        page = make_page(metas={"product:price:amount": "19.99"})
        router, manager, _, page, static, _ = _router(page=page, static_result=None)
        result = await router.scrape(COSTCO_URL, ("c_price",))
        assert result.values == [19.99]
        page.goto.assert_awaited_once()
        assert manager.open_contexts == 0

    async def test_empty_result_falls_back_to_browser(self):
        empty = ExtractionResult(raw={"c_price": ""}, values={"c_price": ""})
        router, _, _, page, _, _ = _router(page=make_page(metas={"product:price:amount": "5"}), static_result=empty)
        result = await router.scrape(COSTCO_URL, ("c_price",))
        assert result.values == [5.0]
        page.goto.assert_awaited_once()

    async def test_static_only_no_result_raises(self):
        router, manager, _, _, _, _ = _router(static_result=None, config=RouterConfig(browser_fallback=False))
        with pytest.raises(ResourceUnavailableError):
            await router.scrape(COSTCO_URL, ("c_price",))
        assert manager.health().launch_count == 0


# ---------------------------------------------------------------------------
# Browser path
# ---------------------------------------------------------------------------


class TestBrowserPath:
    async def test_extracts_and_normalizes(self):
        router, manager, _, _, static, _ = _router()
        result = await router.scrape(AMAZON_URL, ("title", "price", "rating", "colour"))
        assert result.headers == ["title", "price", "rating", "colour"]
        assert result.values == ["Echo Dot (5th Gen)", 1234.56, "4.7 out of 5 stars", ""]
        assert result.raw == {
            "title": "Echo Dot (5th Gen)",
            "price": 1234.56,
            "rating": "4.7 out of 5 stars",
            "colour": "",
        }
        static.extract.assert_not_called()

    async def test_navigation_options(self):
        router, _, _, page, _, settle = _router()
        await router.scrape(AMAZON_URL, ("price",))
        page.set_extra_http_headers.assert_awaited_once_with({"Accept-Language": "en-CA,en;q=0.9"})
        page.goto.assert_awaited_once_with(AMAZON_URL, wait_until="domcontentloaded", timeout=30000)
        settle.wait.assert_awaited_once()

    async def test_context_released(self):
        router, manager, browser, _, _, _ = _router()
        await router.scrape(AMAZON_URL, ("price",))
        assert manager.contexts_opened == manager.contexts_closed == 1
        browser.contexts_created[0].close.assert_awaited_once()

    async def test_navigation_timeout(self):
        page = make_page()
        page.goto = AsyncMock(side_effect=PlaywrightTimeoutError("Timeout 30000ms exceeded."))
        router, manager, _, _, _, settle = _router(page=page)
        with pytest.raises(NavigationTimeoutError, match="timed out after 30000 ms"):
            await router.scrape(AMAZON_URL, ("price",))
        assert manager.open_contexts == 0
        assert manager.contexts_closed == 1
        settle.wait.assert_not_called()

    async def test_navigation_bounded_when_goto_hangs(self):
        page = make_page()

        async def _hang(*args, **kwargs):
            await asyncio.sleep(10)

        page.goto = AsyncMock(side_effect=_hang)
        router, manager, _, _, _, _ = _router(page=page)
        manager.config.nav_timeout_ms = 10
        with (
            patch("pricescrape.router._NAV_GRACE_SECONDS", 0.05),
            pytest.raises(NavigationTimeoutError),
        ):
            await router.scrape(AMAZON_URL, ("price",))
        assert manager.open_contexts == 0

    async def test_navigation_error(self):
        page = make_page()
        page.goto = AsyncMock(side_effect=PlaywrightError("net::ERR_NAME_NOT_RESOLVED"))
        router, manager, _, _, _, _ = _router(page=page)
        with pytest.raises(ResourceUnavailableError, match="ERR_NAME_NOT_RESOLVED"):
            await router.scrape(AMAZON_URL, ("price",))
        assert manager.open_contexts == 0

    async def test_error_mid_extraction_releases_context(self):
        page = make_page()
        page.query_selector = AsyncMock(side_effect=RuntimeError("Target page, context or browser has been closed"))
        router, manager, _, _, _, _ = _router(page=page)
        with pytest.raises(RuntimeError):
            await router.scrape(AMAZON_URL, ("price", "title"))
        assert manager.contexts_opened == manager.contexts_closed == 1

    async def test_failed_scrape_not_cached(self):
        page = make_page()
        page.goto = AsyncMock(side_effect=PlaywrightTimeoutError("Timeout"))
        router, _, _, _, _, _ = _router(page=page)
        with pytest.raises(NavigationTimeoutError):
            await router.scrape(AMAZON_URL, ("price",))
        assert len(router.cache) == 0


# ---------------------------------------------------------------------------
# Caching
# ---------------------------------------------------------------------------


class TestCaching:
    async def test_reordered_fields_hit_cache(self):
        router, _, _, page, _, _ = _router()
        first = await router.scrape(AMAZON_URL, ("price", "title"))
        second = await router.scrape(AMAZON_URL, ("title", "price"))
        page.goto.assert_awaited_once()
        assert first.values == [1234.56, "Echo Dot (5th Gen)"]
        assert second.headers == ["title", "price"]
        assert second.values == ["Echo Dot (5th Gen)", 1234.56]

    async def test_static_result_cached(self):
        static_result = ExtractionResult(raw={"c_title": "Oil"}, values={"c_title": "Oil"})
        router, _, _, _, static, _ = _router(static_result=static_result)
        await router.scrape(COSTCO_URL, ("c_title",))
        await router.scrape(COSTCO_URL, ("c_title",))
        static.extract.assert_awaited_once()

    async def test_expired_entry_re_extracted(self):
        router, _, _, page, _, _ = _router(cache=ResponseCache(ttl=900))
        with patch("pricescrape.cache.time.monotonic", return_value=100.0):
            await router.scrape(AMAZON_URL, ("price",))
        with patch("pricescrape.cache.time.monotonic", return_value=100.0 + 899):
            await router.scrape(AMAZON_URL, ("price",))
        assert page.goto.await_count == 1
        with patch("pricescrape.cache.time.monotonic", return_value=100.0 + 900):
            await router.scrape(AMAZON_URL, ("price",))
        assert page.goto.await_count == 2

    async def test_url_fragment_shares_entry(self):
        router, _, _, page, _, _ = _router()
        await router.scrape(AMAZON_URL, ("price",))
        await router.scrape(AMAZON_URL + "#reviews", ("price",))
        page.goto.assert_awaited_once()


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidation:
    @pytest.mark.parametrize(
        ("url", "fields"),
        [("", ("price",)), (AMAZON_URL, ()), ("", ())],
    )
    async def test_missing(self, url, fields):
        router, *_ = _router()
        with pytest.raises(InvalidRequestError, match="Missing url or fields"):
            await router.scrape(url, fields)

    @pytest.mark.parametrize("url", ["ftp://example.com/x", "not a url", "https://"])
    async def test_invalid_url(self, url):
        router, manager, *_ = _router()
        with pytest.raises(InvalidRequestError, match="Invalid url"):
            await router.scrape(url, ("price",))
        assert manager.health().launch_count == 0


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


class TestConcurrentFirstRequests:
    async def test_single_launch(self):
        page = make_page(texts=AMAZON_PAGE)
        browser = make_browser(page)
        pw = make_playwright(browser)

        async def _slow_launch(**kwargs):
            await asyncio.sleep(0.02)
            return browser

        pw.chromium.launch = AsyncMock(side_effect=_slow_launch)
        with patch("pricescrape.browser_session.async_playwright") as mock_apw:
            mock_apw.return_value.start = AsyncMock(return_value=pw)
            manager = BrowserSessionManager()
            router = StrategyRouter(manager, settle=_settle())
            urls = [f"{AMAZON_URL}?n={i}" for i in range(5)]
            results = await asyncio.gather(*(router.scrape(u, ("price",)) for u in urls))

        assert all(r.values == [1234.56] for r in results)
        pw.chromium.launch.assert_called_once()
        assert len(browser.contexts_created) == 5
        assert manager.open_contexts == 0


async def test_settle_policy_waits():
    loop = asyncio.get_running_loop()
    start = loop.time()
    await SettlePolicy(delay_ms=30).wait()
    assert loop.time() - start >= 0.025


async def test_settle_policy_zero_is_noop():
    await SettlePolicy(delay_ms=0).wait()
