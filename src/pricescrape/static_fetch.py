# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Static fetch extractor: plain GET + meta-tag regex, no rendering.

Used for hosts that embed product data in unrendered HTML meta tags.
Fail-soft: any network error, timeout or non-2xx status yields None so the
router can fall back to the browser path.
"""

from __future__ import annotations

import asyncio
import logging
import urllib.error
import urllib.request
from collections.abc import Iterable
from dataclasses import dataclass

from . import ExtractionResult
from .extractor import StaticHtmlAccessor, extract_fields
from .selector_catalog import DEFAULT_CATALOG, SelectorCatalog

logger = logging.getLogger(__name__)

DESKTOP_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121 Safari/537.36"
)
ACCEPT_LANGUAGE = "en-CA,en;q=0.9"

_FETCH_TIMEOUT = 15  # seconds
_MAX_BODY_BYTES = 5 * 1024 * 1024


@dataclass(frozen=True)
class StaticFetchConfig:
    user_agent: str = DESKTOP_USER_AGENT
    accept_language: str = ACCEPT_LANGUAGE
    timeout: float = _FETCH_TIMEOUT
    max_body_bytes: int = _MAX_BODY_BYTES


class StaticFetchExtractor:
    """Fetch raw HTML and run the meta-tag candidates of each field's chain."""

    def __init__(
        self,
        config: StaticFetchConfig | None = None,
        *,
        catalog: SelectorCatalog = DEFAULT_CATALOG,
    ) -> None:
        self._config = config or StaticFetchConfig()
        self._catalog = catalog

    async def fetch_html(self, url: str) -> str | None:
        """GET *url* and return the decoded body, or None on any failure."""
        cfg = self._config

        def _sync_fetch() -> str | None:
            req = urllib.request.Request(
                url,
                headers={
                    "User-Agent": cfg.user_agent,
                    "Accept-Language": cfg.accept_language,
                },
            )
            try:
                with urllib.request.urlopen(req, timeout=cfg.timeout) as resp:  # noqa: S310  # nosec B310
                    if not 200 <= resp.status < 300:
                        logger.info("Static fetch non-success status %d for %s", resp.status, url)
                        return None
                    charset = resp.headers.get_content_charset() or "utf-8"
                    return resp.read(cfg.max_body_bytes).decode(charset, errors="replace")
            except urllib.error.HTTPError as e:
                logger.info("Static fetch HTTP %d for %s", e.code, url)
                return None
            except Exception:
                logger.info("Static fetch failed for %s", url, exc_info=True)
                return None

        try:
            return await asyncio.wait_for(asyncio.to_thread(_sync_fetch), timeout=cfg.timeout + 5)
        except TimeoutError:
            logger.info("Static fetch timed out for %s", url)
            return None

    async def extract(self, url: str, fields: Iterable[str]) -> ExtractionResult | None:
        """Return extracted fields, or None when the page could not be fetched."""
        body = await self.fetch_html(url)
        if body is None:
            return None
        return await extract_fields(StaticHtmlAccessor(body), fields, self._catalog)
