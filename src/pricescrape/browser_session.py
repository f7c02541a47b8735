# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""BrowserSessionManager: one lazily launched Chromium shared by all requests.

The browser is launched on first use and reused for the process lifetime.
Every request gets its own BrowserContext (one page each), which is closed
on every exit path::

    manager = BrowserSessionManager(BrowserConfig())
    async with manager.request_page() as page:
        await page.goto("https://example.com")
    ...
    await manager.shutdown()

Concurrent first requests share a single in-flight launch task.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass, field
from types import TracebackType

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from .errors import BrowserError
from .interception import BLOCKED_RESOURCE_TYPES, install_resource_blocking
from .static_fetch import ACCEPT_LANGUAGE, DESKTOP_USER_AGENT

logger = logging.getLogger(__name__)


@dataclass
class BrowserConfig:
    """Browser launch and per-request context configuration."""

    headless: bool = True
    user_agent: str = DESKTOP_USER_AGENT
    locale: str = "en-CA"
    timezone_id: str = "America/Vancouver"
    accept_language: str = ACCEPT_LANGUAGE
    ignore_https_errors: bool = True
    nav_timeout_ms: int = 30000
    wait_until: str = "domcontentloaded"
    blocked_resource_types: frozenset[str] = field(default_factory=lambda: BLOCKED_RESOURCE_TYPES)


@dataclass(frozen=True, slots=True)
class BrowserHealth:
    """Immutable snapshot of browser state for monitoring."""

    launched: bool
    connected: bool
    open_contexts: int
    launch_count: int


# ── Chromium auto-install ─────────────────────────────────────────

_chromium_install_attempted = False
_AUTO_INSTALL_TIMEOUT = 300  # seconds; Chromium is a ~140MB download


async def _auto_install_chromium() -> bool:
    """Run ``playwright install chromium`` once per process.

    Returns True if install succeeded, False otherwise.
    """
    global _chromium_install_attempted  # noqa: PLW0603
    if _chromium_install_attempted:
        return False
    _chromium_install_attempted = True

    logger.info("Chromium not found, running 'playwright install chromium' …")
    try:
        proc = await asyncio.create_subprocess_exec(
            sys.executable,
            "-m",
            "playwright",
            "install",
            "chromium",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=_AUTO_INSTALL_TIMEOUT)
        if proc.returncode == 0:
            logger.info("Chromium installed successfully")
            return True
        logger.warning(
            "playwright install chromium failed (rc=%d): %s",
            proc.returncode,
            stderr.decode(errors="replace")[:500],
        )
        return False
    except TimeoutError:
        logger.warning("Chromium install timed out after %ds", _AUTO_INSTALL_TIMEOUT)
        return False
    except Exception:
        logger.warning("Chromium auto-install failed", exc_info=True)
        return False


def chromium_launch_args(config: BrowserConfig) -> list[str]:
    """Return Chromium launch arguments.

    Sandboxing is disabled: restricted containers cannot provide the
    namespaces Chromium's sandbox requires.
    """
    return [
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-blink-features=AutomationControlled",
        f"--lang={config.locale}",
        "--disable-extensions",
        "--disable-dev-shm-usage",
        "--disable-background-networking",
        "--disable-sync",
        "--disable-gpu",
        "--no-first-run",
        "--disable-breakpad",
        "--no-pings",
        "--disable-component-update",
    ]


class BrowserSessionManager:
    """Owns the singleton browser handle and hands out per-request contexts."""

    def __init__(self, config: BrowserConfig | None = None) -> None:
        self.config = config or BrowserConfig()
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._launch_task: asyncio.Task[Browser] | None = None
        self._contexts: set[BrowserContext] = set()
        self._launch_count = 0
        self.contexts_opened = 0
        self.contexts_closed = 0

    # ── AsyncContextManager ──────────────────────────────────────────

    async def __aenter__(self) -> BrowserSessionManager:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.shutdown()

    # ── Browser ──────────────────────────────────────────────────────

    async def get_browser(self) -> Browser:
        """Return the shared browser, launching it on first call.

        Callers arriving while a launch is in flight await the same task.
        A failed launch is forgotten so the next caller retries.
        """
        if self._browser is not None:
            if self._browser.is_connected():
                return self._browser
            logger.warning("Browser disconnected, relaunching")
            self._browser = None
            self._launch_task = None

        if self._launch_task is None:
            self._launch_task = asyncio.get_running_loop().create_task(
                self._launch(), name="pricescrape-browser-launch"
            )
        task = self._launch_task
        try:
            # shield: one cancelled waiter must not abort the launch for the others
            return await asyncio.shield(task)
        except Exception:
            if self._launch_task is task:
                self._launch_task = None
            raise

    async def _launch(self) -> Browser:
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        args = chromium_launch_args(self.config)
        try:
            try:
                browser = await self._playwright.chromium.launch(headless=self.config.headless, args=args)
            except Exception as exc:
                if "executable doesn't exist" not in str(exc).lower() or not await _auto_install_chromium():
                    raise
                browser = await self._playwright.chromium.launch(headless=self.config.headless, args=args)
        except Exception as exc:
            logger.error("Browser launch failed: %s", exc)
            raise BrowserError(f"Browser launch failed: {exc}") from exc

        self._browser = browser
        self._launch_count += 1
        logger.info("Browser launched (headless=%s, launch_count=%d)", self.config.headless, self._launch_count)
        return browser

    # ── Contexts ─────────────────────────────────────────────────────

    async def new_request_context(self) -> BrowserContext:
        """Create an isolated context. Caller must pass it to :meth:`close_context`."""
        browser = await self.get_browser()
        try:
            context = await browser.new_context(
                user_agent=self.config.user_agent,
                locale=self.config.locale,
                timezone_id=self.config.timezone_id,
                ignore_https_errors=self.config.ignore_https_errors,
            )
        except Exception as exc:
            raise BrowserError(f"Browser context creation failed: {exc}") from exc
        self._contexts.add(context)
        self.contexts_opened += 1
        return context

    async def close_context(self, context: BrowserContext) -> None:
        """Close *context* once; repeated calls are no-ops."""
        if context not in self._contexts:
            return
        self._contexts.discard(context)
        self.contexts_closed += 1
        try:
            await context.close()
        except Exception:
            logger.warning("Browser context close failed", exc_info=True)

    @asynccontextmanager
    async def request_page(self) -> AsyncIterator[Page]:
        """Yield a fresh page with resource blocking; always closes its context."""
        context = await self.new_request_context()
        try:
            page = await context.new_page()
            await install_resource_blocking(page, self.config.blocked_resource_types)
            yield page
        finally:
            # Close runs to completion even if the request is cancelled
            await asyncio.shield(self.close_context(context))

    # ── Monitoring ───────────────────────────────────────────────────

    @property
    def open_contexts(self) -> int:
        return len(self._contexts)

    def health(self) -> BrowserHealth:
        return BrowserHealth(
            launched=self._browser is not None,
            connected=self._browser is not None and self._browser.is_connected(),
            open_contexts=len(self._contexts),
            launch_count=self._launch_count,
        )

    # ── Shutdown ─────────────────────────────────────────────────────

    async def shutdown(self) -> None:
        """Close all contexts, the browser and Playwright."""
        if self._launch_task is not None and not self._launch_task.done():
            self._launch_task.cancel()
            with suppress(asyncio.CancelledError, Exception):
                await self._launch_task
        self._launch_task = None

        for context in list(self._contexts):
            await self.close_context(context)

        if self._browser is not None:
            with suppress(Exception):
                await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            with suppress(Exception):
                await self._playwright.stop()
            self._playwright = None

        logger.info("Browser session manager shut down")
