"""
Process manager for the owned Chromium instance

Launches exactly one Chromium with a persistent profile and a remote-debugging
port, discovers its CDP WebSocket endpoint and handles shutdown. Clients attach
to the endpoint; the owner is the only holder of the launch handle.
"""

import asyncio
from pathlib import Path
from typing import Any

import aiohttp
from playwright.async_api import BrowserContext, Playwright, async_playwright

from ..utils.logging_config import get_logger, log_dict
from .config import BrowserConfig, parse_viewport

logger = get_logger(__name__)

CDP_HOST = "127.0.0.1"


class BrowserProcessOwner:
    """Owns the Chromium lifecycle and its persistent profile"""

    def __init__(self) -> None:
        self._playwright: Playwright | None = None
        self.context: BrowserContext | None = None
        self._ws_endpoint: str | None = None
        self._cdp_port: int | None = None
        self.profile_dir: Path | None = None
        self.headless: bool = False

    @property
    def ws_endpoint(self) -> str:
        """
        Remote-debugging WebSocket endpoint of the running browser.

        Raises:
            RuntimeError: If the browser has not been started
        """
        if self._ws_endpoint is None:
            raise RuntimeError("Browser not started")
        return self._ws_endpoint

    @property
    def is_running(self) -> bool:
        return self.context is not None

    async def start(self, config: BrowserConfig) -> BrowserContext:
        """
        Launch Chromium with a persistent context.

        Args:
            config: Browser configuration

        Returns:
            The persistent BrowserContext

        Raises:
            RuntimeError: If the browser fails to start or its CDP endpoint never answers
        """
        if self.context is not None:
            logger.warning("Browser already started")
            return self.context

        logger.info("=" * 80)
        logger.info("Launching Chromium")
        logger.info("=" * 80)

        self.profile_dir = Path(config["profile_dir"]).expanduser()
        self.profile_dir.mkdir(parents=True, exist_ok=True)
        self.headless = config["headless"]
        self._cdp_port = config["cdp_port"]

        launch_options = self._build_launch_options(config)
        log_dict(logger, "Launch options:", {k: v for k, v in launch_options.items()})

        try:
            self._playwright = await async_playwright().start()
            self.context = await self._playwright.chromium.launch_persistent_context(
                str(self.profile_dir), **launch_options
            )
            self.context.on("close", lambda _: logger.warning("Browser context closed"))

            logger.info("Waiting for CDP endpoint to be ready...")
            self._ws_endpoint = await self._wait_for_cdp_ready(timeout=10.0)
            if self._ws_endpoint is None:
                raise RuntimeError(
                    f"CDP endpoint on port {self._cdp_port} did not become ready within 10 seconds"
                )

            logger.info(f"Chromium started (profile: {self.profile_dir})")
            logger.info(f"CDP endpoint: {self._ws_endpoint}")
            logger.info("=" * 80)
            return self.context

        except Exception as e:
            logger.error("=" * 80)
            logger.error(f"Failed to start Chromium: {e}")
            logger.error("=" * 80)
            await self.stop()
            raise RuntimeError(f"Failed to start Chromium: {e}") from e

    async def stop(self) -> None:
        """Close the browser and stop the Playwright driver"""
        if self.context is None and self._playwright is None:
            return

        logger.info("Stopping Chromium...")

        try:
            if self.context is not None:
                await self.context.close()
                logger.info("Chromium stopped")
        except Exception as e:
            logger.error(f"Error closing browser context: {e}")
        finally:
            self.context = None
            self._ws_endpoint = None

        try:
            if self._playwright is not None:
                await self._playwright.stop()
        except Exception as e:
            logger.error(f"Error stopping Playwright driver: {e}")
        finally:
            self._playwright = None

    async def is_healthy(self) -> bool:
        """
        Check if the browser is running AND its CDP endpoint is responsive.
        """
        if self.context is None or self._cdp_port is None:
            return False

        return await self._fetch_ws_endpoint(timeout=2.0) is not None

    async def _fetch_ws_endpoint(self, timeout: float) -> str | None:
        """Ask the CDP HTTP endpoint for the browser WebSocket URL."""
        url = f"http://{CDP_HOST}:{self._cdp_port}/json/version"
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    url, timeout=aiohttp.ClientTimeout(total=timeout)
                ) as resp:
                    if resp.status != 200:
                        return None
                    info = await resp.json(content_type=None)
                    return info.get("webSocketDebuggerUrl")
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError):
            return None

    async def _wait_for_cdp_ready(self, timeout: float = 10.0) -> str | None:
        """
        Poll the CDP endpoint until it reports a WebSocket URL.

        Args:
            timeout: Maximum wait time in seconds

        Returns:
            The WebSocket URL, or None if the endpoint never became ready
        """
        loop = asyncio.get_running_loop()
        start_time = loop.time()

        while (loop.time() - start_time) < timeout:
            endpoint = await self._fetch_ws_endpoint(timeout=1.0)
            if endpoint:
                return endpoint
            await asyncio.sleep(0.2)

        return None

    def _build_launch_options(self, config: BrowserConfig) -> dict[str, Any]:
        """
        Build launch_persistent_context keyword arguments from config.

        Args:
            config: Browser configuration

        Returns:
            Keyword arguments for launch_persistent_context
        """
        args = [f"--remote-debugging-port={config['cdp_port']}"]

        # No sandbox (required for running as root in Docker)
        if config.get("no_sandbox"):
            args.append("--no-sandbox")

        options: dict[str, Any] = {
            "headless": config["headless"],
            "args": args,
        }

        viewport = parse_viewport(config.get("viewport_size"))
        if viewport:
            options["viewport"] = viewport

        return options
