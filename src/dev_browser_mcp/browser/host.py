"""
Browser host

Composes the browser process owner, the page registry and the control API
into one long-lived server. ``main`` runs the host standalone so clients in
other processes can attach to it.
"""

import asyncio
import signal

from ..utils.logging_config import get_logger, setup_file_logging
from .config import BrowserConfig, load_browser_config
from .control_api import ControlAPI
from .installer import ensure_chromium_installed
from .process_manager import BrowserProcessOwner
from .registry import PageRegistry

logger = get_logger(__name__)


class BrowserHost:
    """The server side: one browser, its registry and the control API"""

    def __init__(self, config: BrowserConfig):
        self.config = config
        self.owner = BrowserProcessOwner()
        self.registry: PageRegistry | None = None
        self.control_api: ControlAPI | None = None

    @property
    def ws_endpoint(self) -> str:
        return self.owner.ws_endpoint

    @property
    def url(self) -> str:
        """Base URL of the control API."""
        return f"http://{self.config['host']}:{self.config['port']}"

    async def start(self) -> None:
        """
        Start the browser, then the control API.

        Raises:
            RuntimeError: If the browser fails to start
        """
        if self.config.get("auto_install", True):
            await ensure_chromium_installed()

        context = await self.owner.start(self.config)
        self.registry = PageRegistry(context)
        self.control_api = ControlAPI(self.registry, lambda: self.owner.ws_endpoint)

        try:
            await self.control_api.start(self.config["host"], self.config["port"])
        except OSError as e:
            await self.owner.stop()
            raise RuntimeError(
                f"Control API could not bind {self.config['host']}:{self.config['port']}: {e}"
            ) from e

        logger.info(f"Browser host started at {self.url}")

    async def stop(self) -> None:
        """Stop the control API, then close every page and the browser."""
        logger.info("Stopping browser host...")

        if self.control_api is not None:
            await self.control_api.stop()
            self.control_api = None

        if self.registry is not None:
            await self.registry.close_all()
            self.registry = None

        await self.owner.stop()
        logger.info("Browser host stopped")


async def serve(config: BrowserConfig | None = None) -> BrowserHost:
    """
    Start a browser host.

    Args:
        config: Browser configuration (default: loaded from environment)

    Returns:
        The running host; call ``stop()`` to shut it down
    """
    host = BrowserHost(config or load_browser_config())
    await host.start()
    return host


async def _serve_forever(config: BrowserConfig) -> None:
    host = await serve(config)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            pass

    print("Dev browser server started")
    print(f"  Control API: {host.url}")
    print(f"  WebSocket: {host.ws_endpoint}")
    print(f"  Profile directory: {host.owner.profile_dir}")
    print("\nPress Ctrl+C to stop")

    try:
        await stop_event.wait()
    finally:
        await host.stop()


def main() -> None:
    """Run the browser host until interrupted"""
    config = load_browser_config()
    setup_file_logging(log_file=config["log_file"])
    logger.info("Initializing standalone dev browser server...")
    try:
        asyncio.run(_serve_forever(config))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
