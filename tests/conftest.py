"""
Pytest Configuration and Fixtures

This module provides shared fixtures for all tests. The fakes stand in for the
handful of Playwright objects the registry and the broker touch, so those
components can be tested without a browser.
"""

import asyncio
import os
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestServer
from playwright.async_api import Error as PlaywrightError

# Import browser fixtures to make them available to all tests
from tests.fixtures.browser_fixture import browser_host  # noqa: F401

from dev_browser_mcp.browser.config import BrowserConfig
from dev_browser_mcp.browser.control_api import ControlAPI
from dev_browser_mcp.browser.registry import PageRegistry

WS_ENDPOINT = "ws://127.0.0.1:9223/devtools/browser/test-browser"


class FakePage:
    """Page with a fixed CDP target id."""

    def __init__(self, context: "FakeContext", target_id: str):
        self.context = context
        self.target_id = target_id
        self.url = "about:blank"
        self._closed = False
        self.set_default_timeout = MagicMock()
        self.set_default_navigation_timeout = MagicMock()

    def is_closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        self._closed = True
        if self in self.context.pages:
            self.context.pages.remove(self)


class FakeCDPSession:
    def __init__(self, page: FakePage):
        self.page = page
        self.detached = False

    async def send(self, method: str, params: dict | None = None) -> dict:
        assert method == "Target.getTargetInfo"
        if self.page.is_closed():
            raise PlaywrightError("Target closed")
        return {"targetInfo": {"targetId": self.page.target_id, "type": "page"}}

    async def detach(self) -> None:
        self.detached = True


class FakeContext:
    """BrowserContext issuing pages with unique, never reused target ids."""

    def __init__(self) -> None:
        self.pages: list[FakePage] = []
        self.created = 0

    async def new_page(self) -> FakePage:
        # Yield so concurrent callers interleave like real page creation
        await asyncio.sleep(0)
        self.created += 1
        page = FakePage(self, f"TARGET-{self.created:04d}")
        self.pages.append(page)
        return page

    async def new_cdp_session(self, page: FakePage) -> FakeCDPSession:
        return FakeCDPSession(page)


class FakeBrowser:
    """CDP-attached Browser exposing one shared context."""

    def __init__(self, context: FakeContext):
        self.contexts = [context]
        self.connected = True
        self.handlers: dict[str, list] = {}
        self.close = AsyncMock(side_effect=self._close)

    def is_connected(self) -> bool:
        return self.connected

    def on(self, event: str, handler) -> None:
        self.handlers.setdefault(event, []).append(handler)

    def drop_connection(self) -> None:
        self.connected = False
        for handler in self.handlers.get("disconnected", []):
            handler(self)

    async def _close(self) -> None:
        self.connected = False


@pytest.fixture
def fake_context() -> FakeContext:
    return FakeContext()


@pytest.fixture
def registry(fake_context) -> PageRegistry:
    return PageRegistry(fake_context)


@pytest_asyncio.fixture
async def control_api_server(registry):
    """Control API served on an ephemeral port, backed by the fake registry."""
    api = ControlAPI(registry, lambda: WS_ENDPOINT)
    server = TestServer(api.app)
    await server.start_server()
    try:
        yield server
    finally:
        await server.close()


@pytest.fixture
def server_url(control_api_server) -> str:
    return str(control_api_server.make_url("")).rstrip("/")


@pytest.fixture
def mock_playwright(fake_context):
    """
    Patch the broker's Playwright entry point.

    Every connect_over_cdp returns a fresh FakeBrowser over the same context,
    the way every real attach sees the same pages.
    """
    browsers: list[FakeBrowser] = []

    async def connect_over_cdp(endpoint: str) -> FakeBrowser:
        browser = FakeBrowser(fake_context)
        browsers.append(browser)
        return browser

    playwright = MagicMock()
    playwright.chromium.connect_over_cdp = AsyncMock(side_effect=connect_over_cdp)
    playwright.stop = AsyncMock()
    playwright.browsers = browsers

    starter = MagicMock()
    starter.start = AsyncMock(return_value=playwright)

    with patch("dev_browser_mcp.browser.connection.async_playwright", return_value=starter):
        yield playwright


@pytest.fixture
def browser_config(tmp_path) -> BrowserConfig:
    """Complete configuration with a throwaway profile."""
    return BrowserConfig(
        host="127.0.0.1",
        port=9222,
        server_url=None,
        cdp_port=9223,
        headless=True,
        no_sandbox=False,
        viewport_size=None,
        auto_install=False,
        profile_dir=str(tmp_path / "profile"),
        timeout_action=15000,
        timeout_navigation=30000,
        page_load_timeout=10000,
        script_timeout=30000,
        snapshot_max_text=100,
        log_file=str(tmp_path / "logs" / "test.log"),
    )


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every DEV_BROWSER_* variable so defaults apply."""
    for key in list(os.environ):
        if key.startswith("DEV_BROWSER_"):
            monkeypatch.delenv(key, raising=False)
    return monkeypatch
