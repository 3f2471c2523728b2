"""Tests for the lazily started browser runtime"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from dev_browser_mcp.browser import runtime as runtime_module
from dev_browser_mcp.browser.registry import PageRegistryEntry
from dev_browser_mcp.browser.runtime import BrowserRuntime


@pytest.fixture
def started_host():
    host = MagicMock()
    host.stop = AsyncMock()
    host.registry = MagicMock()
    host.registry.entries.return_value = [
        PageRegistryEntry(
            name="main",
            target_id="TARGET-0001",
            page=MagicMock(),
            created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        )
    ]
    host.ws_endpoint = "ws://127.0.0.1:9223/devtools/browser/x"
    host.owner.is_healthy = AsyncMock(return_value=True)
    return host


@pytest.fixture
def serve(started_host):
    async def slow_serve(config):
        await asyncio.sleep(0.01)
        return started_host

    with patch.object(runtime_module, "serve", AsyncMock(side_effect=slow_serve)) as mock:
        yield mock


class TestEnsure:
    async def test_starts_host_once_under_concurrency(self, browser_config, serve):
        runtime = BrowserRuntime(browser_config)

        with patch.object(runtime, "_host_is_running", AsyncMock(return_value=False)):
            clients = await asyncio.gather(*(runtime.ensure() for _ in range(5)))

        assert len({id(c) for c in clients}) == 1
        serve.assert_awaited_once_with(browser_config)
        assert clients[0].server_url == "http://127.0.0.1:9222"

    async def test_attaches_to_running_host(self, browser_config, serve):
        runtime = BrowserRuntime(browser_config)

        with patch.object(runtime, "_host_is_running", AsyncMock(return_value=True)):
            await runtime.ensure()

        serve.assert_not_awaited()
        assert runtime.host is None

    async def test_external_server_url(self, browser_config, serve):
        browser_config["server_url"] = "http://browser.internal:9400/"
        runtime = BrowserRuntime(browser_config)

        with patch.object(runtime, "_host_is_running", AsyncMock()) as probe:
            client = await runtime.ensure()

        probe.assert_not_awaited()
        serve.assert_not_awaited()
        assert client.server_url == "http://browser.internal:9400"

    async def test_start_failure_propagates(self, browser_config):
        runtime = BrowserRuntime(browser_config)

        with patch.object(runtime, "_host_is_running", AsyncMock(return_value=False)):
            with patch.object(
                runtime_module, "serve", AsyncMock(side_effect=RuntimeError("Failed to start"))
            ):
                with pytest.raises(RuntimeError, match="Failed to start"):
                    await runtime.ensure()

        assert runtime.client is None


async def test_host_probe_unreachable(browser_config):
    runtime = BrowserRuntime(browser_config)

    assert await runtime._host_is_running("http://127.0.0.1:1") is False


async def test_host_probe_running(server_url, browser_config):
    runtime = BrowserRuntime(browser_config)

    assert await runtime._host_is_running(server_url) is True


class TestStatus:
    async def test_not_started(self, browser_config):
        status = await BrowserRuntime(browser_config).status()

        assert status == {"started": False, "owns_browser": False, "server_url": None}

    async def test_owned_host(self, browser_config, serve):
        runtime = BrowserRuntime(browser_config)
        with patch.object(runtime, "_host_is_running", AsyncMock(return_value=False)):
            await runtime.ensure()

        status = await runtime.status()

        assert status["owns_browser"] is True
        assert status["browser_healthy"] is True
        assert status["pages"] == [
            {"name": "main", "target_id": "TARGET-0001", "created_at": "2026-01-01T00:00:00+00:00"}
        ]

    async def test_attached_lists_pages_through_client(self, browser_config):
        runtime = BrowserRuntime(browser_config)
        runtime.client = MagicMock()
        runtime.client.server_url = "http://127.0.0.1:9222"
        runtime.client.list_pages = AsyncMock(return_value=["main"])

        status = await runtime.status()

        assert status["owns_browser"] is False
        assert status["pages"] == [{"name": "main"}]


class TestShutdown:
    async def test_stops_owned_host(self, browser_config, serve, started_host):
        runtime = BrowserRuntime(browser_config)
        with patch.object(runtime, "_host_is_running", AsyncMock(return_value=False)):
            client = await runtime.ensure()
        client.disconnect = AsyncMock()

        await runtime.shutdown()

        client.disconnect.assert_awaited_once()
        started_host.stop.assert_awaited_once()
        assert runtime.client is None
        assert runtime.host is None

    async def test_errors_are_logged(self, browser_config, started_host, caplog):
        runtime = BrowserRuntime(browser_config)
        runtime.client = MagicMock()
        runtime.client.disconnect = AsyncMock(side_effect=RuntimeError("socket closed"))
        runtime.host = started_host
        started_host.stop.side_effect = RuntimeError("profile locked")

        await runtime.shutdown()

        assert "Error disconnecting client: socket closed" in caplog.text
        assert "Error stopping browser host: profile locked" in caplog.text
        assert runtime.host is None

    async def test_shutdown_without_start(self, browser_config):
        await BrowserRuntime(browser_config).shutdown()


def test_config_loaded_lazily(clean_env):
    with patch.object(runtime_module, "load_browser_config", return_value={"port": 1}) as load:
        runtime = BrowserRuntime()
        load.assert_not_called()

        assert runtime.config == {"port": 1}
        assert runtime.config == {"port": 1}

    load.assert_called_once()
