# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""HTTP surface: Starlette routes over the StrategyRouter.

Routes:
    GET /            plain "OK"
    GET /health      liveness, no browser dependency
    GET /api/scrape  JSON {headers, values, raw}
    GET /values      one CSV line of quoted values (for spreadsheet imports)

Configuration comes from CLI flags with environment variable overrides,
parsed in ``_parse_server_args``.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import csv
import io
import logging
import os
import sys
import uuid
from collections.abc import AsyncIterator
from contextlib import suppress

import structlog
from pydantic import BaseModel, Field, field_validator
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.routing import Route

from . import ScrapeResult, Value, parse_fields
from .browser_session import BrowserConfig, BrowserSessionManager
from .cache import DEFAULT_TTL, ResponseCache
from .errors import InvalidRequestError
from .router import DEFAULT_SETTLE_MS, SettlePolicy, StrategyRouter

# Logging configured in main() via logging_config.configure()
logger = logging.getLogger("pricescrape.server")

CACHE_CONTROL = "public, max-age=900"


class ScrapeQuery(BaseModel):
    """Query parameters shared by /api/scrape and /values."""

    url: str = Field(default="", description="Product page URL")
    fields: tuple[str, ...] = Field(default=(), description="Comma-separated field names")

    @field_validator("url", mode="before")
    @classmethod
    def _strip_url(cls, v: object) -> str:
        return str(v or "").strip()

    @field_validator("fields", mode="before")
    @classmethod
    def _split_fields(cls, v: object) -> tuple[str, ...]:
        if isinstance(v, str):
            return parse_fields(v)
        return parse_fields(",".join(v)) if v else ()


# ── Process-level fault logging ──────────────────────────────────────


def _log_loop_exception(loop: asyncio.AbstractEventLoop, context: dict) -> None:
    """Log faults not tied to a request (e.g. an un-awaited task failure)."""
    exc = context.get("exception")
    logger.error("UNHANDLED REJECTION: %s", context.get("message", ""), exc_info=exc)


def _log_uncaught(exc_type, exc, tb) -> None:
    logger.critical("UNCAUGHT EXCEPTION", exc_info=(exc_type, exc, tb))


# ── Routes ───────────────────────────────────────────────────────────


async def _root(request: Request) -> Response:
    return PlainTextResponse("OK")


async def _health_check(request: Request) -> Response:
    return JSONResponse({"ok": True})


async def _run_scrape(request: Request) -> ScrapeResult:
    query = ScrapeQuery.model_validate(dict(request.query_params))
    router: StrategyRouter = request.app.state.router
    return await router.scrape(query.url, query.fields)


async def _scrape(request: Request) -> Response:
    structlog.contextvars.bind_contextvars(request_id=uuid.uuid4().hex[:8])
    try:
        result = await _run_scrape(request)
    except InvalidRequestError as exc:
        return JSONResponse({"error": str(exc)}, status_code=400)
    except Exception as exc:
        logger.exception("SCRAPE ERROR: %s", exc)
        return JSONResponse({"error": str(exc) or "scrape error"}, status_code=500)
    finally:
        structlog.contextvars.unbind_contextvars("request_id")
    return JSONResponse(result.to_dict(), headers={"Cache-Control": CACHE_CONTROL})


def _csv_cell(value: Value) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def to_csv_line(values: list[Value]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="")
    writer.writerow([_csv_cell(v) for v in values])
    return buf.getvalue()


async def _values(request: Request) -> Response:
    structlog.contextvars.bind_contextvars(request_id=uuid.uuid4().hex[:8])
    try:
        result = await _run_scrape(request)
        body = to_csv_line(result.values)
    except Exception as exc:
        # CSV consumers get an empty body rather than an error status
        logger.warning("CSV scrape failed: %s", exc)
        body = ""
    finally:
        structlog.contextvars.unbind_contextvars("request_id")
    return Response(body, media_type="text/csv")


# ── App factory ──────────────────────────────────────────────────────


def create_app(router: StrategyRouter, *, browser: BrowserSessionManager | None = None) -> Starlette:
    """Build the ASGI app. *browser* is shut down when the app stops."""

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        asyncio.get_running_loop().set_exception_handler(_log_loop_exception)
        logger.info("pricescrape ready")
        try:
            yield
        finally:
            if browser is not None:
                await browser.shutdown()
            logger.info("pricescrape shutdown complete")

    app = Starlette(
        routes=[
            Route("/", _root, methods=["GET"]),
            Route("/health", _health_check, methods=["GET"]),
            Route("/api/scrape", _scrape, methods=["GET"]),
            Route("/values", _values, methods=["GET"]),
        ],
        lifespan=lifespan,
    )
    app.state.router = router
    app.state.browser = browser
    return app


def build_router(args: argparse.Namespace) -> tuple[StrategyRouter, BrowserSessionManager]:
    browser = BrowserSessionManager(BrowserConfig(nav_timeout_ms=args.nav_timeout_ms))
    router = StrategyRouter(
        browser,
        cache=ResponseCache(ttl=args.cache_ttl, max_entries=args.cache_max_entries),
        settle=SettlePolicy(delay_ms=args.settle_ms),
    )
    return router, browser


# ── Configuration ────────────────────────────────────────────────────


def _parse_server_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI args and env vars for server configuration.

    Environment variables take precedence over flags (``PORT`` is honoured for
    hosting platforms that inject it).  Unparseable numeric values are ignored.
    """
    parser = argparse.ArgumentParser(description="pricescrape product attribute server")
    parser.add_argument("--host", default="0.0.0.0", help="HTTP server host (default: 0.0.0.0)")  # nosec B104
    parser.add_argument("--port", type=int, default=8080, help="HTTP server port (default: 8080)")
    parser.add_argument("--cache-ttl", type=float, default=DEFAULT_TTL, help="Response cache TTL seconds")
    parser.add_argument(
        "--cache-max-entries",
        type=int,
        default=None,
        help="Bound the response cache with LRU eviction (default: unbounded)",
    )
    parser.add_argument(
        "--settle-ms",
        type=int,
        default=DEFAULT_SETTLE_MS,
        help=f"Delay after navigation before extraction (default: {DEFAULT_SETTLE_MS})",
    )
    parser.add_argument("--nav-timeout-ms", type=int, default=30000, help="Navigation timeout (default: 30000)")
    parser.add_argument("--log-format", choices=["json", "console"], default="json")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args(argv)

    env_host = os.environ.get("PRICESCRAPE_HOST", "").strip()
    if env_host:
        args.host = env_host

    for env_name in ("PORT", "PRICESCRAPE_PORT"):
        env_port = os.environ.get(env_name, "").strip()
        if env_port:
            with suppress(ValueError):
                args.port = int(env_port)

    env_ttl = os.environ.get("PRICESCRAPE_CACHE_TTL", "").strip()
    if env_ttl:
        with suppress(ValueError):
            args.cache_ttl = float(env_ttl)

    env_max = os.environ.get("PRICESCRAPE_CACHE_MAX_ENTRIES", "").strip()
    if env_max:
        with suppress(ValueError):
            args.cache_max_entries = int(env_max)

    env_settle = os.environ.get("PRICESCRAPE_SETTLE_MS", "").strip()
    if env_settle:
        with suppress(ValueError):
            args.settle_ms = int(env_settle)

    env_nav = os.environ.get("PRICESCRAPE_NAV_TIMEOUT_MS", "").strip()
    if env_nav:
        with suppress(ValueError):
            args.nav_timeout_ms = int(env_nav)

    env_fmt = os.environ.get("PRICESCRAPE_LOG_FORMAT", "").strip().lower()
    if env_fmt in ("json", "console"):
        args.log_format = env_fmt

    env_level = os.environ.get("PRICESCRAPE_LOG_LEVEL", "").strip()
    if env_level:
        args.log_level = env_level

    return args


def main(argv: list[str] | None = None) -> None:
    """Entry point for the pricescrape HTTP server."""
    import uvicorn

    args = _parse_server_args(argv if argv is not None else sys.argv[1:])

    # Configure structlog BEFORE any log output
    from .logging_config import configure as configure_logging

    configure_logging(json_output=(args.log_format == "json"), level=args.log_level)
    sys.excepthook = _log_uncaught

    router, browser = build_router(args)
    app = create_app(router, browser=browser)

    logger.info("Starting pricescrape server (host=%s, port=%d)", args.host, args.port)
    config = uvicorn.Config(app, host=args.host, port=args.port, log_config=None)
    uvicorn.Server(config).run()


if __name__ == "__main__":
    main()
