"""
HTTP listeners of the Feed Push Bridge.

Two aiohttp applications replace the legacy appliance endpoints:
- The feed listener: POST /xmlfeed, POST /xmlgroups, GET /v1/health
- The authentication mock: POST /accounts/ClientLogin

Invariants:
    - A POST to /xmlfeed or /xmlgroups is answered "Success" once processed,
      even when processing failed (connectors retry anything else forever)
    - Any other method gets 400 "Bad request '<url>'."
    - Feed processing runs in a worker thread, the event loop never blocks

How to change safely:
    - Keep reply bodies byte-identical, connectors parse them
    - Log processing failures here, the reply cannot carry them
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from functools import partial
from typing import Any

from aiohttp import web

from ..connector import ConnectorError, FeedConnector
from ..feed.models import FeedError, MalformedFeedError
from ..push.base import PushError

logger = logging.getLogger(__name__)

SUCCESS_RESPONSE = "Success"
AUTH_TOKEN = "737db7e7e42aac47e75223fb85dd3c03"
AUTH_RESPONSE = f"Authentication Success!\nAuth={AUTH_TOKEN}"


def bad_request(request: web.Request) -> web.Response:
    return web.Response(status=400, text=f"Bad request '{request.url}'.")


@web.middleware
async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except Exception as e:
        logger.error(f"HTTP handler error: {e}", exc_info=True)
        return web.json_response({"error": str(e), "error_code": "INTERNAL"}, status=500)


def create_http_app(connector: FeedConnector) -> web.Application:
    """Create the feed listener application.

    Args:
        connector: Connector processing the feeds

    Returns:
        aiohttp Application instance
    """
    app = web.Application(client_max_size=1024**3, middlewares=[error_middleware])

    app.router.add_route("*", "/xmlfeed", partial(handle_feed, connector=connector))
    app.router.add_route("*", "/xmlgroups", partial(handle_groups, connector=connector))
    app.router.add_get("/v1/health", partial(handle_health, connector=connector))

    return app


def create_auth_app() -> web.Application:
    """Create the authentication mock application.

    Connectors log in before pushing; they only need a token back.
    """
    app = web.Application(middlewares=[error_middleware])
    app.router.add_route("*", "/accounts/ClientLogin", handle_client_login)
    return app


async def handle_feed(request: web.Request, connector: FeedConnector) -> web.Response:
    """Handle POST /xmlfeed - Process a feed batch."""
    if request.method != "POST":
        logger.error(f"Invalid received request: {request.url} - {request.method}")
        return bad_request(request)

    body = await request.read()
    try:
        stats = await asyncio.to_thread(connector.process_feed, body)
        logger.debug(f"Feed stats: {stats.to_dict()}")
    except MalformedFeedError as e:
        logger.error(f"Malformed feed from {request.remote}: {e}")
    except (FeedError, PushError, ConnectorError) as e:
        logger.error(f"Feed processing failed: {e}", exc_info=True)

    return web.Response(text=SUCCESS_RESPONSE)


async def handle_groups(request: web.Request, connector: FeedConnector) -> web.Response:
    """Handle POST /xmlgroups - Push group memberships."""
    if request.method != "POST":
        logger.error(f"Invalid received request: {request.url} - {request.method}")
        return bad_request(request)

    body = await request.read()
    try:
        await asyncio.to_thread(connector.process_groups, body)
    except MalformedFeedError as e:
        logger.error(f"Malformed groups feed from {request.remote}: {e}")
    except (FeedError, PushError) as e:
        logger.error(f"Groups processing failed: {e}", exc_info=True)

    return web.Response(text=SUCCESS_RESPONSE)


async def handle_client_login(request: web.Request) -> web.Response:
    """Handle POST /accounts/ClientLogin - Mock appliance authentication."""
    if request.method != "POST":
        return bad_request(request)
    return web.Response(text=AUTH_RESPONSE)


async def handle_health(request: web.Request, connector: FeedConnector) -> web.Response:
    """Handle GET /v1/health - Health check with graph statistics."""
    result: dict[str, Any] = {"healthy": True}
    result.update(connector.stats())
    return web.json_response(result)
