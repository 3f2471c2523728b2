"""
Browser runtime for the MCP server

Starts the browser host lazily on the first tool call (or attaches to one
that is already running) and shuts it down with the server.
"""

import asyncio
from typing import Any

from ..exceptions import ConnectionLostError
from ..types import PageStatus
from ..utils.logging_config import get_logger
from .client import DevBrowserClient
from .config import BrowserConfig, load_browser_config, server_url_for
from .connection import ConnectionBroker
from .host import BrowserHost, serve

logger = get_logger(__name__)


class BrowserRuntime:
    """Lazily provides a DevBrowserClient backed by a host"""

    def __init__(self, config: BrowserConfig | None = None):
        self._config = config
        self._lock = asyncio.Lock()
        self.host: BrowserHost | None = None
        self.client: DevBrowserClient | None = None

    @property
    def config(self) -> BrowserConfig:
        if self._config is None:
            self._config = load_browser_config()
        return self._config

    async def _host_is_running(self, server_url: str) -> bool:
        try:
            await ConnectionBroker(server_url, request_timeout=2.0).fetch_ws_endpoint()
        except ConnectionLostError:
            return False
        return True

    async def ensure(self) -> DevBrowserClient:
        """
        Get the client, starting the browser host on first use.

        A host that already answers on the configured URL is reused, so
        several MCP servers can share one browser. With
        DEV_BROWSER_SERVER_URL set, no host is ever started here.

        Raises:
            RuntimeError: If the host cannot be started
        """
        async with self._lock:
            if self.client is not None:
                return self.client

            config = self.config
            server_url = server_url_for(config)

            if config.get("server_url"):
                logger.info(f"Using external browser host at {server_url}")
            elif await self._host_is_running(server_url):
                logger.info(f"Attaching to running browser host at {server_url}")
            else:
                logger.info("Starting browser host...")
                self.host = await serve(config)

            self.client = DevBrowserClient(server_url, config)
            return self.client

    async def status(self) -> dict[str, Any]:
        """Summarize the runtime for the status resource."""
        status: dict[str, Any] = {
            "started": self.client is not None,
            "owns_browser": self.host is not None,
            "server_url": self.client.server_url if self.client else None,
        }
        if self.host is not None and self.host.registry is not None:
            status["ws_endpoint"] = self.host.ws_endpoint
            status["browser_healthy"] = await self.host.owner.is_healthy()
            status["pages"] = [
                PageStatus(
                    name=entry.name,
                    target_id=entry.target_id,
                    created_at=entry.created_at.isoformat(),
                )
                for entry in self.host.registry.entries()
            ]
        elif self.client is not None:
            status["pages"] = [{"name": name} for name in await self.client.list_pages()]
        return status

    async def shutdown(self) -> None:
        """Disconnect the client and stop the host if this runtime started it."""
        async with self._lock:
            if self.client is not None:
                try:
                    await self.client.disconnect()
                except Exception as e:
                    logger.error(f"Error disconnecting client: {e}")
                self.client = None

            if self.host is not None:
                try:
                    await self.host.stop()
                except Exception as e:
                    logger.error(f"Error stopping browser host: {e}")
                self.host = None
