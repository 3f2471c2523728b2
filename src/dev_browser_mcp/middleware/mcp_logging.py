"""
MCP request/response logging middleware

Logs every client request reaching the server with a ``CLIENT_MCP`` prefix so
the client side of a session can be filtered out of the log file.
"""

import json
import time
from typing import Any

from fastmcp.server.middleware import Middleware, MiddlewareContext

from ..utils.logging_config import get_logger

logger = get_logger(__name__)

PREFIX = "CLIENT_MCP"


class MCPLoggingMiddleware(Middleware):
    """Logs MCP tool calls, resource reads, prompts and list requests"""

    def __init__(
        self,
        log_request_params: bool = True,
        log_response_data: bool = False,
        max_log_length: int = 5000,
    ):
        """
        Initialize the middleware.

        Args:
            log_request_params: Log tool and prompt arguments
            log_response_data: Log tool results (screenshots make this large)
            max_log_length: Characters of data logged before truncation
        """
        self.log_request_params = log_request_params
        self.log_response_data = log_response_data
        self.max_log_length = max_log_length

    def _truncate_data(self, data: Any, max_length: int) -> str:
        try:
            text = json.dumps(data, indent=2, default=str)
        except (TypeError, ValueError):
            text = str(data)

        if len(text) <= max_length:
            return text
        return f"{text[:max_length]}... ({len(text)} chars total)"

    def _log_arguments(self, tool_name: str, arguments: dict[str, Any] | None) -> None:
        if not arguments:
            logger.info(f"{PREFIX}   Tool '{tool_name}' arguments: (none)")
            return
        logger.info(
            f"{PREFIX}   Tool '{tool_name}' arguments: "
            f"{self._truncate_data(arguments, self.max_log_length)}"
        )

    @staticmethod
    def _elapsed_ms(start: float) -> float:
        return (time.perf_counter() - start) * 1000

    async def on_call_tool(self, context: MiddlewareContext, call_next):
        tool_name = context.message.name
        logger.info(f"{PREFIX} → Tool call: {tool_name}")
        if self.log_request_params:
            self._log_arguments(tool_name, context.message.arguments)

        start = time.perf_counter()
        try:
            result = await call_next(context)
        except Exception as e:
            logger.error(
                f"{PREFIX} ✗ Tool error: {tool_name} ({self._elapsed_ms(start):.1f}ms) "
                f"{type(e).__name__}: {e}"
            )
            raise

        logger.info(f"{PREFIX} ← Tool result: {tool_name} ({self._elapsed_ms(start):.1f}ms)")
        if self.log_response_data:
            logger.info(
                f"{PREFIX}   Tool '{tool_name}' result: "
                f"{self._truncate_data(result, self.max_log_length)}"
            )
        return result

    async def on_read_resource(self, context: MiddlewareContext, call_next):
        uri = context.message.uri
        logger.info(f"{PREFIX} → Resource read: {uri}")

        start = time.perf_counter()
        try:
            result = await call_next(context)
        except Exception as e:
            logger.error(f"{PREFIX} ✗ Resource error: {uri} {type(e).__name__}: {e}")
            raise

        logger.info(f"{PREFIX} ← Resource result: {uri} ({self._elapsed_ms(start):.1f}ms)")
        return result

    async def on_get_prompt(self, context: MiddlewareContext, call_next):
        name = context.message.name
        logger.info(f"{PREFIX} → Prompt request: {name}")
        if self.log_request_params:
            logger.info(
                f"{PREFIX}   Prompt arguments: "
                f"{self._truncate_data(context.message.arguments or {}, self.max_log_length)}"
            )

        try:
            result = await call_next(context)
        except Exception as e:
            logger.error(f"{PREFIX} ✗ Prompt error: {name} {type(e).__name__}: {e}")
            raise

        logger.info(f"{PREFIX} ← Prompt result: {name}")
        return result

    async def on_initialize(self, context: MiddlewareContext, call_next):
        params = getattr(context.message, "params", None)
        client_info = getattr(params, "clientInfo", None)
        client_name = getattr(client_info, "name", None) or "unknown"
        client_version = getattr(client_info, "version", None) or "unknown"
        protocol = getattr(params, "protocolVersion", None) or "unknown"

        logger.info(
            f"{PREFIX} → Initialize: {client_name} v{client_version} (protocol: {protocol})"
        )
        try:
            result = await call_next(context)
        except Exception as e:
            logger.error(f"{PREFIX} ✗ Initialize error: {type(e).__name__}: {e}")
            raise

        logger.info(f"{PREFIX} ← Initialize complete")
        return result

    async def _log_list(self, label: str, noun: str, context: MiddlewareContext, call_next):
        logger.info(f"{PREFIX} → List {label}")
        try:
            result = await call_next(context)
        except Exception as e:
            logger.error(f"{PREFIX} ✗ List {label} error: {type(e).__name__}: {e}")
            raise

        count = len(result) if hasattr(result, "__len__") else "?"
        logger.info(f"{PREFIX} ← List {label} result: {count} {noun}")
        return result

    async def on_list_tools(self, context: MiddlewareContext, call_next):
        return await self._log_list("tools", "tools", context, call_next)

    async def on_list_resources(self, context: MiddlewareContext, call_next):
        return await self._log_list("resources", "resources", context, call_next)

    async def on_list_prompts(self, context: MiddlewareContext, call_next):
        return await self._log_list("prompts", "prompts", context, call_next)
