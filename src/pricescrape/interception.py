# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Resource interception policy: abort heavy subresources before they load.

Images, media and fonts are never needed for selector extraction, and
skipping them cuts render latency.  Every other request type continues
unmodified.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from playwright.async_api import Page, Route

logger = logging.getLogger(__name__)

BLOCKED_RESOURCE_TYPES = frozenset({"image", "media", "font"})


def should_block(resource_type: str, blocked_types: Iterable[str] = BLOCKED_RESOURCE_TYPES) -> bool:
    return resource_type in blocked_types


async def install_resource_blocking(
    page: Page,
    blocked_types: Iterable[str] = BLOCKED_RESOURCE_TYPES,
) -> None:
    """Route ``**/*`` on *page*, aborting requests of a blocked resource type."""
    blocked = frozenset(blocked_types)

    async def _handler(route: Route) -> None:
        if should_block(route.request.resource_type, blocked):
            await route.abort()
            return
        await route.continue_()

    await page.route("**/*", _handler)
    logger.debug("Resource blocking installed (types=%s)", ",".join(sorted(blocked)))
