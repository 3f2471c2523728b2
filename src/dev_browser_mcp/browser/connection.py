"""
Connection broker (client side)

Attaches to the host's browser over CDP and turns page names into live Page
objects. Playwright handles cannot cross process boundaries, so every process
re-derives page identity: the control API maps name -> target id, and the
broker scans the open pages for the one whose CDP target id matches.
"""

import asyncio
import json
from typing import Any
from urllib.parse import quote

import aiohttp
from playwright.async_api import Browser, Error as PlaywrightError, Page, Playwright, async_playwright
from yarl import URL

from ..exceptions import ConnectionLostError, ControlAPIError, PageNotFoundError, PageResolutionError
from ..types import GetPageRequest
from ..utils.logging_config import get_logger
from .registry import get_target_id

logger = get_logger(__name__)


def _encode_name(name: str) -> str:
    # Dots are encoded too so "." and ".." survive path normalization
    return quote(name, safe="").replace(".", "%2E")


class ConnectionBroker:
    """Stateless-friendly attach and target-id resolution"""

    def __init__(self, server_url: str, request_timeout: float = 30.0):
        """
        Initialize the broker. Nothing is attached until first use.

        Args:
            server_url: Base URL of the control API
            request_timeout: Timeout in seconds for control API requests
        """
        self.server_url = server_url.rstrip("/")
        self._request_timeout = request_timeout
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self.ws_endpoint: str | None = None

    # ------------------------------------------------------------------
    # Control API
    # ------------------------------------------------------------------

    async def _request(
        self, method: str, path: str, body: dict[str, Any] | None = None
    ) -> tuple[int, Any]:
        """
        Send a request to the control API.

        Returns:
            Tuple of (status, decoded JSON body or raw text)

        Raises:
            ConnectionLostError: If the control API cannot be reached
        """
        url = URL(f"{self.server_url}{path}", encoded=True)
        try:
            async with aiohttp.ClientSession() as session:
                async with session.request(
                    method,
                    url,
                    json=body,
                    timeout=aiohttp.ClientTimeout(total=self._request_timeout),
                ) as resp:
                    text = await resp.text()
                    try:
                        data = json.loads(text)
                    except ValueError:
                        data = text
                    return resp.status, data
        except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
            raise ConnectionLostError(
                f"Control API at {self.server_url} is unreachable: {e}"
            ) from e

    @staticmethod
    def _error_text(data: Any) -> str:
        if isinstance(data, dict) and "error" in data:
            return str(data["error"])
        return str(data)

    async def fetch_ws_endpoint(self) -> str:
        """Ask the control API for the browser's CDP endpoint."""
        status, data = await self._request("GET", "/")
        if status != 200 or not isinstance(data, dict) or "wsEndpoint" not in data:
            raise ControlAPIError(f"Failed to get server info: {self._error_text(data)}", status)
        return data["wsEndpoint"]

    async def get_target_id(self, name: str) -> str:
        """
        Get (creating if needed) the target id for a page name.

        Raises:
            ControlAPIError: If the server rejects the request
        """
        status, data = await self._request("POST", "/pages", dict(GetPageRequest(name=name)))
        if status != 200 or not isinstance(data, dict) or "targetId" not in data:
            raise ControlAPIError(f"Failed to get page: {self._error_text(data)}", status)
        return data["targetId"]

    async def list_pages(self) -> list[str]:
        """List page names known to the registry."""
        status, data = await self._request("GET", "/pages")
        if status != 200 or not isinstance(data, dict):
            raise ControlAPIError(f"Failed to list pages: {self._error_text(data)}", status)
        return list(data.get("pages", []))

    async def close_page(self, name: str) -> None:
        """
        Close a page on the server.

        Raises:
            PageNotFoundError: If the name is unknown
            ControlAPIError: On any other failure
        """
        status, data = await self._request("DELETE", f"/pages/{_encode_name(name)}")
        if status == 404:
            raise PageNotFoundError(name)
        if status != 200:
            raise ControlAPIError(f"Failed to close page: {self._error_text(data)}", status)

    # ------------------------------------------------------------------
    # CDP attach
    # ------------------------------------------------------------------

    def _on_disconnected(self, browser: Browser) -> None:
        logger.warning("Browser connection lost, will re-attach on next use")
        if self._browser is browser:
            self._browser = None

    def _drop_browser(self) -> None:
        self._browser = None

    def raise_if_lost(self, error: PlaywrightError, action: str) -> None:
        """
        Raise ConnectionLostError if ``error`` came from a dropped browser.

        Callers re-raise the original error when this returns.
        """
        if self._browser is not None and self._browser.is_connected():
            return
        self._drop_browser()
        raise ConnectionLostError(f"Browser disconnected while {action}: {error.message}") from error

    async def ensure_connected(self) -> Browser:
        """
        Get a live browser connection, attaching fresh when needed.

        Safe to call from a process with no prior state.

        Raises:
            ConnectionLostError: If the browser cannot be attached
        """
        if self._browser is not None and self._browser.is_connected():
            return self._browser

        self._browser = None
        self.ws_endpoint = await self.fetch_ws_endpoint()

        if self._playwright is None:
            self._playwright = await async_playwright().start()

        logger.info(f"Attaching to browser at {self.ws_endpoint}")
        try:
            browser = await self._playwright.chromium.connect_over_cdp(self.ws_endpoint)
        except PlaywrightError as e:
            raise ConnectionLostError(f"Failed to attach to browser: {e.message}") from e

        browser.on("disconnected", self._on_disconnected)
        self._browser = browser
        return browser

    async def resolve(self, target_id: str, name: str | None = None) -> Page:
        """
        Find the live page whose CDP target id equals ``target_id``.

        Args:
            target_id: Target id issued by the registry
            name: Page name, used only in error messages

        Raises:
            PageResolutionError: If no open page carries the target id
            ConnectionLostError: If the connection drops during the scan
        """
        browser = await self.ensure_connected()

        for context in browser.contexts:
            for page in context.pages:
                try:
                    page_target_id = await get_target_id(context, page)
                except PlaywrightError as e:
                    if not browser.is_connected():
                        self._drop_browser()
                        raise ConnectionLostError(
                            f"Browser disconnected while resolving target {target_id}: {e.message}"
                        ) from e
                    # Page might be closed
                    logger.debug(f"Skipping page during target scan: {e.message}")
                    continue

                if page_target_id == target_id:
                    return page

        if not browser.is_connected():
            self._drop_browser()
            raise ConnectionLostError(f"Browser disconnected while resolving target {target_id}")

        raise PageResolutionError(target_id, name)

    async def page(self, name: str) -> tuple[Page, str]:
        """
        Resolve a page name to a live page.

        Retries once on ConnectionLostError with a fresh attach before
        surfacing the error.

        Returns:
            Tuple of (page, target_id)
        """
        for attempt in (1, 2):
            try:
                target_id = await self.get_target_id(name)
                return await self.resolve(target_id, name), target_id
            except ConnectionLostError as e:
                self._drop_browser()
                if attempt == 2:
                    raise
                logger.warning(f"Connection lost resolving page '{name}', re-attaching: {e}")

        raise AssertionError("unreachable")

    async def disconnect(self) -> None:
        """
        Drop the CDP connection. Pages stay open on the server.
        """
        browser, self._browser = self._browser, None
        if browser is not None:
            try:
                await browser.close()
            except PlaywrightError as e:
                logger.debug(f"Error closing browser connection: {e.message}")

        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.debug(f"Error stopping Playwright driver: {e}")
            finally:
                self._playwright = None
