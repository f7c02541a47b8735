# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Strategy router: static fetch, browser render, or static with browser fallback.

Hosts known to expose product data in unrendered meta tags are tried with a
plain GET first.  Everything else, and any static attempt that comes back
empty, goes through a headless browser render.  Results are cached per
(url, field set) for the cache TTL.

Navigation waits for DOMContentLoaded rather than network idle, followed by
a fixed settle delay for client-side rendering.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum
from urllib.parse import urlparse

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from . import ExtractionResult, ScrapeResult, Value
from .browser_session import BrowserSessionManager
from .cache import ResponseCache, make_cache_key
from .errors import InvalidRequestError, NavigationTimeoutError, ResourceUnavailableError
from .extractor import PlaywrightPageAccessor, extract_fields
from .pipeline_timer import PipelineTimer
from .selector_catalog import DEFAULT_CATALOG, SelectorCatalog
from .static_fetch import StaticFetchExtractor

logger = logging.getLogger(__name__)

DEFAULT_STATIC_HOSTS = (r"\.costco\.ca$",)
DEFAULT_SETTLE_MS = 1200

# Outer bound on top of Playwright's own navigation timeout
_NAV_GRACE_SECONDS = 5.0

ALLOWED_URL_SCHEMES = {"http", "https"}


class Strategy(StrEnum):
    STATIC_ONLY = "static_only"
    BROWSER = "browser"
    STATIC_WITH_FALLBACK = "static_with_fallback"


@dataclass(frozen=True)
class SettlePolicy:
    """Fixed wait after navigation for client-side rendering to stabilize."""

    delay_ms: int = DEFAULT_SETTLE_MS

    async def wait(self) -> None:
        if self.delay_ms > 0:
            await asyncio.sleep(self.delay_ms / 1000)


@dataclass(frozen=True)
class RouterConfig:
    static_hosts: tuple[str, ...] = DEFAULT_STATIC_HOSTS
    # False: static-friendly requests never fall back to the browser
    browser_fallback: bool = True


class StrategyRouter:
    """Pick an extraction path per request and cache the outcome."""

    def __init__(
        self,
        browser: BrowserSessionManager,
        *,
        static: StaticFetchExtractor | None = None,
        cache: ResponseCache | None = None,
        catalog: SelectorCatalog = DEFAULT_CATALOG,
        settle: SettlePolicy | None = None,
        config: RouterConfig | None = None,
    ) -> None:
        self._browser = browser
        self._catalog = catalog
        self._static = static or StaticFetchExtractor(catalog=catalog)
        self._cache = cache if cache is not None else ResponseCache()
        self._settle = settle or SettlePolicy()
        self._config = config or RouterConfig()
        self._static_host_res = [re.compile(p, re.IGNORECASE) for p in self._config.static_hosts]

    @property
    def cache(self) -> ResponseCache:
        return self._cache

    # ── Strategy selection ───────────────────────────────────────────

    def is_static_friendly(self, hostname: str) -> bool:
        host = hostname.lower()
        return any(p.search(host) for p in self._static_host_res)

    def choose(self, url: str, fields: Iterable[str]) -> Strategy:
        hostname = urlparse(url).hostname or ""
        if self.is_static_friendly(hostname) and self._catalog.meta_satisfiable(fields):
            return Strategy.STATIC_WITH_FALLBACK if self._config.browser_fallback else Strategy.STATIC_ONLY
        return Strategy.BROWSER

    # ── Entry point ──────────────────────────────────────────────────

    async def scrape(self, url: str, fields: Iterable[str]) -> ScrapeResult:
        """Return values for *fields* in request order, from cache when fresh."""
        wanted = tuple(fields)
        if not url or not wanted:
            raise InvalidRequestError("Missing url or fields")
        parsed = urlparse(url)
        if parsed.scheme.lower() not in ALLOWED_URL_SCHEMES or not parsed.hostname:
            raise InvalidRequestError(f"Invalid url: {url}")

        key = make_cache_key(url, wanted)
        cached = self._cache.get(key)
        if cached is not None:
            logger.info("Cache hit: %s", key)
            return ScrapeResult.build(wanted, cached)

        values = await self._extract(url, wanted)
        self._cache.set(key, dict(values))
        return ScrapeResult.build(wanted, values)

    async def _extract(self, url: str, fields: tuple[str, ...]) -> dict[str, Value]:
        strategy = self.choose(url, fields)
        timer = PipelineTimer()
        logger.info("Scrape start: url=%s fields=%s strategy=%s", url, ",".join(fields), strategy.value)
        try:
            if strategy is not Strategy.BROWSER:
                timer.stage("static_fetch")
                result = await self._static.extract(url, fields)
                if result is not None and result.has_any_value():
                    return result.values
                if strategy is Strategy.STATIC_ONLY:
                    raise ResourceUnavailableError(f"Static fetch returned no result for {url}")
                logger.info("Static fetch gave no usable result, falling back to browser: %s", url)
            return (await self._render(url, fields, timer)).values
        finally:
            timer.finalize()
            logger.info(
                "Scrape finished: url=%s total_ms=%.1f stages=%s",
                url,
                timer.total_ms(),
                timer.elapsed_per_stage(),
            )

    # ── Browser path ─────────────────────────────────────────────────

    async def _render(self, url: str, fields: tuple[str, ...], timer: PipelineTimer) -> ExtractionResult:
        cfg = self._browser.config
        timer.stage("browser_launch")
        async with self._browser.request_page() as page:
            await page.set_extra_http_headers({"Accept-Language": cfg.accept_language})

            timer.stage("navigation")
            try:
                async with asyncio.timeout(cfg.nav_timeout_ms / 1000 + _NAV_GRACE_SECONDS):
                    await page.goto(url, wait_until=cfg.wait_until, timeout=cfg.nav_timeout_ms)
            except (PlaywrightTimeoutError, TimeoutError) as exc:
                logger.warning("Navigation timeout: %s", timer.timeout_report())
                raise NavigationTimeoutError(
                    f"Navigation to {url} timed out after {cfg.nav_timeout_ms} ms. "
                    f"{timer.hint_for_stage('navigation')}",
                    url=url,
                    timeout_ms=cfg.nav_timeout_ms,
                ) from exc
            except PlaywrightError as exc:
                raise ResourceUnavailableError(f"Navigation to {url} failed: {exc.message}") from exc

            timer.stage("settle")
            await self._settle.wait()

            timer.stage("extraction")
            return await extract_fields(PlaywrightPageAccessor(page), fields, self._catalog)
