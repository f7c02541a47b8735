# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""pricescrape exception hierarchy.

All pricescrape-specific errors inherit from ScrapeError, allowing callers
to catch the base class for any scrape failure or specific subclasses
for targeted handling.

A selector chain that finds nothing and a price that does not parse are
not errors: both are represented in the result (empty string, raw text).
"""

from __future__ import annotations


class ScrapeError(Exception):
    """Base exception for all pricescrape errors."""


class InvalidRequestError(ScrapeError):
    """Missing or empty url/fields. Surfaced as HTTP 400, never retried."""


class ResourceUnavailableError(ScrapeError):
    """A fetch, navigation or browser launch could not complete."""


class BrowserError(ResourceUnavailableError):
    """Browser launch or context creation failure."""


class NavigationTimeoutError(ResourceUnavailableError):
    """Page navigation exceeded its configured bound."""

    def __init__(self, message: str, *, url: str = "", timeout_ms: int = 0) -> None:
        super().__init__(message)
        self.url = url
        self.timeout_ms = timeout_ms
