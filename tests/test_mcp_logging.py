"""Tests for MCPLoggingMiddleware"""

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from dev_browser_mcp.middleware.mcp_logging import MCPLoggingMiddleware


@pytest.fixture
def middleware():
    return MCPLoggingMiddleware(log_request_params=True, log_response_data=True, max_log_length=10000)


@pytest.fixture
def context():
    ctx = MagicMock()
    ctx.message = MagicMock()
    return ctx


@pytest.fixture
def call_next():
    return AsyncMock(return_value={"content": [{"type": "text", "text": "- button \"Go\" [ref=e1]"}]})


class TestInit:
    def test_defaults(self):
        mw = MCPLoggingMiddleware()
        assert mw.log_request_params is True
        assert mw.log_response_data is False
        assert mw.max_log_length == 5000


class TestToolCalls:
    async def test_logs_request_and_timing(self, middleware, context, call_next, caplog):
        context.message.name = "browser_click"
        context.message.arguments = {"ref": "e3", "page": "search"}

        with caplog.at_level(logging.INFO):
            result = await middleware.on_call_tool(context, call_next)

        assert result is call_next.return_value
        assert "CLIENT_MCP → Tool call: browser_click" in caplog.text
        assert "CLIENT_MCP   Tool 'browser_click' arguments:" in caplog.text
        assert '"ref": "e3"' in caplog.text
        assert "CLIENT_MCP ← Tool result: browser_click" in caplog.text
        assert "ms)" in caplog.text

    async def test_logs_response_when_enabled(self, middleware, context, call_next, caplog):
        context.message.name = "browser_snapshot"
        context.message.arguments = {}

        with caplog.at_level(logging.INFO):
            await middleware.on_call_tool(context, call_next)

        assert "CLIENT_MCP   Tool 'browser_snapshot' result:" in caplog.text
        assert "[ref=e1]" in caplog.text

    async def test_no_response_logging_by_default(self, context, call_next, caplog):
        context.message.name = "browser_snapshot"
        context.message.arguments = {}

        with caplog.at_level(logging.INFO):
            await MCPLoggingMiddleware().on_call_tool(context, call_next)

        assert "Tool 'browser_snapshot' result:" not in caplog.text
        assert "[ref=e1]" not in caplog.text

    async def test_logs_and_reraises_errors(self, middleware, context, caplog):
        context.message.name = "browser_navigate"
        context.message.arguments = {"url": "https://example.com"}
        failing = AsyncMock(side_effect=RuntimeError("Navigation failed"))

        with caplog.at_level(logging.ERROR):
            with pytest.raises(RuntimeError):
                await middleware.on_call_tool(context, failing)

        assert "CLIENT_MCP ✗ Tool error: browser_navigate" in caplog.text
        assert "RuntimeError: Navigation failed" in caplog.text

    def test_log_arguments_empty(self, middleware, caplog):
        with caplog.at_level(logging.INFO):
            middleware._log_arguments("browser_list_pages", {})

        assert "CLIENT_MCP   Tool 'browser_list_pages' arguments: (none)" in caplog.text


class TestTruncation:
    def test_small_data_untouched(self, middleware):
        result = middleware._truncate_data({"page": "main"}, max_length=100)
        assert '"page": "main"' in result
        assert "..." not in result

    def test_large_data_truncated(self, middleware):
        result = middleware._truncate_data({"script": "x" * 10000}, max_length=100)
        assert len(result) <= 150
        assert "chars total" in result


class TestOtherRequests:
    async def test_read_resource(self, middleware, context, call_next, caplog):
        context.message.uri = "dev-browser://status"

        with caplog.at_level(logging.INFO):
            await middleware.on_read_resource(context, call_next)

        assert "CLIENT_MCP → Resource read: dev-browser://status" in caplog.text
        assert "CLIENT_MCP ← Resource result: dev-browser://status" in caplog.text

    async def test_read_resource_error(self, middleware, context, caplog):
        context.message.uri = "dev-browser://status"

        with caplog.at_level(logging.ERROR):
            with pytest.raises(RuntimeError):
                await middleware.on_read_resource(
                    context, AsyncMock(side_effect=RuntimeError("read failed"))
                )

        assert "CLIENT_MCP ✗ Resource error: dev-browser://status" in caplog.text

    async def test_initialize(self, middleware, context, call_next, caplog):
        context.message.params.clientInfo.name = "Claude Desktop"
        context.message.params.clientInfo.version = "1.0.0"
        context.message.params.protocolVersion = "2025-06-18"

        with caplog.at_level(logging.INFO):
            await middleware.on_initialize(context, call_next)

        assert "CLIENT_MCP → Initialize: Claude Desktop v1.0.0 (protocol: 2025-06-18)" in caplog.text
        assert "CLIENT_MCP ← Initialize complete" in caplog.text

    async def test_initialize_without_params(self, middleware, context, call_next, caplog):
        context.message.params = None

        with caplog.at_level(logging.INFO):
            await middleware.on_initialize(context, call_next)

        assert "CLIENT_MCP → Initialize: unknown vunknown (protocol: unknown)" in caplog.text

    async def test_list_tools(self, middleware, context, caplog):
        call_next = AsyncMock(return_value=[{"name": "browser_snapshot"}, {"name": "browser_click"}])

        with caplog.at_level(logging.INFO):
            result = await middleware.on_list_tools(context, call_next)

        assert len(result) == 2
        assert "CLIENT_MCP → List tools" in caplog.text
        assert "CLIENT_MCP ← List tools result: 2 tools" in caplog.text

    async def test_list_resources_error(self, middleware, context, caplog):
        with caplog.at_level(logging.ERROR):
            with pytest.raises(RuntimeError):
                await middleware.on_list_resources(
                    context, AsyncMock(side_effect=RuntimeError("boom"))
                )

        assert "CLIENT_MCP ✗ List resources error:" in caplog.text
