"""
Tests for the connection broker

The broker talks to a real control API (aiohttp test server over the fake
registry) and attaches through a patched Playwright that hands out fake
browsers sharing the registry's context.
"""

from unittest.mock import AsyncMock, patch

import pytest
from playwright.async_api import Error as PlaywrightError

from dev_browser_mcp.browser.connection import ConnectionBroker
from dev_browser_mcp.exceptions import (
    ConnectionLostError,
    ControlAPIError,
    PageNotFoundError,
    PageResolutionError,
)
from tests.conftest import WS_ENDPOINT


@pytest.fixture
def broker(server_url, mock_playwright):
    return ConnectionBroker(server_url, request_timeout=5.0)


class TestControlAPICalls:
    async def test_fetch_ws_endpoint(self, broker):
        assert await broker.fetch_ws_endpoint() == WS_ENDPOINT

    async def test_get_target_id_creates_page(self, broker, registry):
        target_id = await broker.get_target_id("main")

        assert target_id == registry.get("main").target_id

    async def test_list_pages(self, broker):
        await broker.get_target_id("search")
        await broker.get_target_id("main")

        assert await broker.list_pages() == ["search", "main"]

    async def test_close_page(self, broker, registry):
        await broker.get_target_id("main")

        await broker.close_page("main")

        assert registry.list() == []

    @pytest.mark.parametrize("name", [".", "..", "release v1.2", "ümlaut"])
    async def test_close_page_name_used_verbatim(self, broker, registry, name):
        await broker.get_target_id(name)
        assert await broker.list_pages() == [name]

        await broker.close_page(name)

        assert registry.list() == []

    async def test_close_unknown_page(self, broker):
        with pytest.raises(PageNotFoundError, match="ghost"):
            await broker.close_page("ghost")

    async def test_rejected_request_raises_control_api_error(self, broker):
        with pytest.raises(ControlAPIError, match="HTTP 400"):
            await broker.get_target_id("")

    async def test_unreachable_server(self, mock_playwright):
        broker = ConnectionBroker("http://127.0.0.1:1", request_timeout=2.0)

        with pytest.raises(ConnectionLostError, match="unreachable"):
            await broker.fetch_ws_endpoint()


class TestAttach:
    async def test_attaches_to_reported_endpoint(self, broker, mock_playwright):
        await broker.ensure_connected()

        mock_playwright.chromium.connect_over_cdp.assert_awaited_once_with(WS_ENDPOINT)
        assert broker.ws_endpoint == WS_ENDPOINT

    async def test_connection_is_cached(self, broker, mock_playwright):
        first = await broker.ensure_connected()
        second = await broker.ensure_connected()

        assert first is second
        assert mock_playwright.chromium.connect_over_cdp.await_count == 1

    async def test_reattaches_after_disconnect(self, broker, mock_playwright):
        first = await broker.ensure_connected()
        first.drop_connection()

        second = await broker.ensure_connected()

        assert second is not first
        assert mock_playwright.chromium.connect_over_cdp.await_count == 2

    async def test_attach_failure_is_connection_lost(self, broker, mock_playwright):
        mock_playwright.chromium.connect_over_cdp.side_effect = PlaywrightError("refused")

        with pytest.raises(ConnectionLostError, match="refused"):
            await broker.ensure_connected()


class TestResolve:
    async def test_page_by_name(self, broker, registry):
        page, target_id = await broker.page("main")

        assert target_id == registry.get("main").target_id
        assert page is registry.get("main").page

    async def test_same_name_same_page(self, broker):
        first, _ = await broker.page("main")
        second, _ = await broker.page("main")

        assert first is second

    async def test_resolve_survives_fresh_broker(self, server_url, mock_playwright, registry):
        """A new process (new broker) finds the page by target id alone."""
        first_broker = ConnectionBroker(server_url)
        page, target_id = await first_broker.page("main")
        await first_broker.disconnect()

        second_broker = ConnectionBroker(server_url)
        assert await second_broker.resolve(target_id, "main") is page

    async def test_unknown_target(self, broker):
        with pytest.raises(PageResolutionError, match="TARGET-9999"):
            await broker.resolve("TARGET-9999", "ghost")

    async def test_skips_pages_failing_probe(self, broker, fake_context):
        await broker.page("main")
        broken = await fake_context.new_page()
        broken._closed = True  # probe raises, page stays listed
        fake_context.pages.insert(0, fake_context.pages.pop())

        page, target_id = await broker.page("main")

        assert page.target_id == target_id

    async def test_disconnect_during_scan(self, broker, fake_context):
        _, target_id = await broker.page("main")
        browser = await broker.ensure_connected()

        async def failing_session(page):
            browser.connected = False
            raise PlaywrightError("Target closed")

        fake_context.new_cdp_session = failing_session

        with pytest.raises(ConnectionLostError):
            await broker.resolve(target_id, "main")

    async def test_page_retries_once_on_connection_lost(self, broker, registry):
        target_id = await broker.get_target_id("main")
        page = registry.get("main").page

        with patch.object(
            broker,
            "resolve",
            AsyncMock(side_effect=[ConnectionLostError("dropped"), page]),
        ) as resolve:
            result, result_target = await broker.page("main")

        assert result is page
        assert result_target == target_id
        assert resolve.await_count == 2

    async def test_page_surfaces_second_connection_loss(self, broker):
        with patch.object(
            broker, "resolve", AsyncMock(side_effect=ConnectionLostError("dropped"))
        ) as resolve:
            with pytest.raises(ConnectionLostError):
                await broker.page("main")

        assert resolve.await_count == 2


class TestDisconnect:
    async def test_disconnect_keeps_pages(self, broker, registry, mock_playwright):
        await broker.page("main")
        browser = await broker.ensure_connected()

        await broker.disconnect()

        browser.close.assert_awaited_once()
        mock_playwright.stop.assert_awaited_once()
        assert registry.list() == ["main"]
        assert not registry.get("main").page.is_closed()

    async def test_disconnect_without_connection(self, broker):
        await broker.disconnect()


class TestRaiseIfLost:
    async def test_dropped_browser(self, broker):
        browser = await broker.ensure_connected()
        browser.connected = False

        with pytest.raises(ConnectionLostError, match="while clicking: Target closed"):
            broker.raise_if_lost(PlaywrightError("Target closed"), "clicking")

        assert broker._browser is None

    async def test_never_attached(self, broker):
        with pytest.raises(ConnectionLostError):
            broker.raise_if_lost(PlaywrightError("Target closed"), "clicking")

    async def test_live_browser_returns(self, broker):
        await broker.ensure_connected()

        broker.raise_if_lost(PlaywrightError("Element is not visible"), "clicking")

        assert broker._browser is not None
