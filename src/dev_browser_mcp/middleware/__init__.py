"""FastMCP middleware for dev-browser-mcp."""

from .mcp_logging import MCPLoggingMiddleware

__all__ = ["MCPLoggingMiddleware"]
