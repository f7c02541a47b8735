# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Short-lived response cache keyed by (url, sorted fields).

Pure Python module, no browser dependencies.

Entries are immutable once stored and replaced wholesale on the next miss.
Expiry is checked on read; there is no background sweeper.  The store is
unbounded by default, and an optional ``max_entries`` turns on LRU eviction.

NOTE: single event loop only.  Entries are written whole, so concurrent
requests for the same key simply overwrite each other (last writer wins).
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qsl, urlparse, urlunparse

logger = logging.getLogger(__name__)

DEFAULT_TTL = 15 * 60.0  # seconds


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


def normalize_cache_url(url: str) -> str:
    """Normalize URL for cache key: lowercase scheme/netloc, strip fragment, sort query.

    Preserves path case and trailing slash.  Preserves duplicate query params.
    """
    try:
        parsed = urlparse(url)
    except Exception:
        return url

    scheme = parsed.scheme.lower()
    netloc = parsed.netloc.lower()
    params = parse_qsl(parsed.query, keep_blank_values=True)
    sorted_query = "&".join(f"{k}={v}" for k, v in sorted(params))
    return urlunparse((scheme, netloc, parsed.path, parsed.params, sorted_query, ""))


def make_cache_key(url: str, fields: Iterable[str]) -> str:
    """Field order does not affect the key."""
    return f"{normalize_cache_url(url)}::{','.join(sorted(fields))}"


# ---------------------------------------------------------------------------
# Entry + stats
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CacheEntry:
    key: str
    payload: Any
    created_at: float  # time.monotonic()

    def is_fresh(self, ttl: float, now: float | None = None) -> bool:
        now = time.monotonic() if now is None else now
        return (now - self.created_at) < ttl


@dataclass
class CacheStats:
    """Counters for cache behaviour, used for logging."""

    hits: int = 0
    misses: int = 0
    expirations: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0


# ---------------------------------------------------------------------------
# ResponseCache
# ---------------------------------------------------------------------------


class ResponseCache:
    """Time-bounded key → payload store."""

    def __init__(self, ttl: float = DEFAULT_TTL, max_entries: int | None = None) -> None:
        self._ttl = ttl
        self._max_entries = max_entries
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._stats = CacheStats()

    @property
    def ttl(self) -> float:
        return self._ttl

    def get(self, key: str) -> Any | None:
        """Return the payload if present and within TTL, else None."""
        entry = self._entries.get(key)
        if entry is None:
            self._stats.misses += 1
            return None
        if not entry.is_fresh(self._ttl):
            self._entries.pop(key, None)
            self._stats.expirations += 1
            self._stats.misses += 1
            logger.debug("Cache TTL expired: %s", key)
            return None
        self._entries.move_to_end(key)
        self._stats.hits += 1
        return entry.payload

    def set(self, key: str, payload: Any) -> None:
        self._entries[key] = CacheEntry(key=key, payload=payload, created_at=time.monotonic())
        self._entries.move_to_end(key)
        if self._max_entries is not None:
            while len(self._entries) > self._max_entries:
                evicted_key, _ = self._entries.popitem(last=False)
                self._stats.evictions += 1
                logger.debug("Cache eviction: %s", evicted_key)

    def clear(self) -> None:
        self._entries.clear()

    @property
    def stats(self) -> CacheStats:
        return self._stats

    def __len__(self) -> int:
        return len(self._entries)
