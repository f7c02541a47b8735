# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Regex meta-tag extractor for unrendered HTML.

Contract: matches well-formed ``<meta property="KEY" ... content="VALUE">``
tags (single or double quotes, any case) with the key attribute appearing
before ``content``.  ``name=`` is accepted as well as ``property=``.  Anything
else (reversed attribute order, unquoted values, entities) is not
recognised and yields "".

Swap this module for an HTML parser without touching callers.
"""

from __future__ import annotations

import functools
import html
import re


@functools.lru_cache(maxsize=64)
def _pattern(key: str) -> re.Pattern[str]:
    return re.compile(
        r"(?:property|name)=[\"']" + re.escape(key) + r"[\"'][^>]*content=[\"']([^\"']+)[\"']",
        re.IGNORECASE,
    )


def extract_meta(body: str, key: str) -> str:
    """Return the content of the first meta tag for *key*, or ""."""
    if not body or not key:
        return ""
    m = _pattern(key).search(body)
    if m is None:
        return ""
    return html.unescape(m.group(1)).strip()
