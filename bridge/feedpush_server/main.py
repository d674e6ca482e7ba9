"""
Feed Push Bridge - Main entry point.

This module starts the bridge with all components:
- Push API client
- Feed connector (ACL graph, crawler, materializer)
- Feed listener (/xmlfeed, /xmlgroups, /v1/health)
- Authentication mock listener (/accounts/ClientLogin)

Usage:
    feedpush-server
    python -m bridge.feedpush_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - Configuration is validated before any listener binds
    - Graceful shutdown closes listeners before the push client
    - The ACL graph lives in memory and is rebuilt from feeds after a restart

How to change safely:
    - Add new listeners to start() and stop() together
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import json_log_formatter
from aiohttp import web

from .api import create_auth_app, create_http_app
from .config import BridgeConfig
from .connector import FeedConnector
from .push import PushClient, create_push_client

logger = logging.getLogger(__name__)


def setup_logging(config: BridgeConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Bridge configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


class Server:
    """Bridge orchestrator.

    Manages the lifecycle of all components:
    - Push API client
    - Feed connector
    - Feed and authentication listeners

    Attributes:
        config: Bridge configuration
        push_client: Push API client
        connector: Feed connector

    Example:
        >>> server = Server()
        >>> await server.start()
        >>> # Server is running
        >>> await server.stop()
    """

    def __init__(self, config: BridgeConfig | None = None) -> None:
        """Initialize the server.

        Args:
            config: Optional bridge configuration (loaded from env if not provided)
        """
        self.config = config or BridgeConfig.from_env()
        self._running = False
        self._shutdown_event = asyncio.Event()

        # Components (initialized in start())
        self.push_client: PushClient | None = None
        self.connector: FeedConnector | None = None
        self._runners: list[web.AppRunner] = []

    async def _serve(self, app: web.Application, host: str, port: int) -> None:
        runner = web.AppRunner(app)
        await runner.setup()
        self._runners.append(runner)
        site = web.TCPSite(runner, host, port)
        await site.start()
        logger.info(f"Listening on http://{host}:{port}")

    async def start(self) -> None:
        """Start the server and all components."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting Feed Push Bridge")
        self.config.log_config()

        try:
            self.push_client = create_push_client(self.config.push)
            self.connector = FeedConnector(self.config, self.push_client)

            listener = self.config.listener
            await self._serve(create_http_app(self.connector), listener.host, listener.port)
            await self._serve(create_auth_app(), listener.host, listener.auth_port)

            self._running = True
            logger.info("Feed Push Bridge started successfully")

            # Wait for shutdown signal
            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if not self._running:
            return

        logger.info("Stopping Feed Push Bridge")
        await self._cleanup()
        self._running = False
        logger.info("Feed Push Bridge stopped")

    async def _cleanup(self) -> None:
        for runner in self._runners:
            await runner.cleanup()
        self._runners.clear()

        if self.connector:
            self.connector.close()

        if self.push_client:
            self.push_client.close()
            self.push_client = None

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = BridgeConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config)

    # Create server
    server = Server(config)

    # Setup signal handlers
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    # Run server
    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
