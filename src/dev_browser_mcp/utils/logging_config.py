"""
Logging configuration utilities for dev-browser-mcp

All logging goes to a file. The MCP server speaks JSON-RPC over stdio, so a
single stray line on stdout would corrupt the session.
"""

import functools
import json
import logging
from pathlib import Path
from typing import Any, Callable

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Substrings of config keys whose values never reach the log
SENSITIVE_KEY_PARTS = ("token", "password", "secret", "key", "cookie")

# One line per control API request otherwise
QUIET_LOGGERS = ("aiohttp.access",)


def setup_file_logging(
    log_file: str | Path = "logs/dev-browser-mcp.log",
    level: int = logging.INFO,
    format_string: str | None = None,
) -> logging.Logger:
    """
    Route all logging to ``log_file``, replacing any existing handlers.

    Used by both entry points: the stdio MCP server (where stdout belongs to
    the protocol) and the standalone browser host.

    Args:
        log_file: Path to the log file; parent directories are created
        level: Root logging level (default: logging.INFO)
        format_string: Custom format (default: timestamp - name - level - message)

    Returns:
        The root logger
    """
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=level,
        format=format_string or DEFAULT_FORMAT,
        handlers=[logging.FileHandler(log_path)],
        force=True,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    root = logging.getLogger()
    root.info(f"Logging configured: file={log_path}, level={logging.getLevelName(level)}")
    return root


def get_logger(name: str) -> logging.Logger:
    """Get the logger for a module (pass ``__name__``)."""
    return logging.getLogger(name)


def log_dict(
    logger: logging.Logger, message: str, data: dict[str, Any], level: int = logging.INFO
) -> None:
    """
    Log a heading line followed by one indented ``key: value`` line per entry.

    Values of keys containing a SENSITIVE_KEY_PARTS substring are redacted.
    """
    logger.log(level, message)
    for key, value in data.items():
        if any(part in key.lower() for part in SENSITIVE_KEY_PARTS):
            value = "***REDACTED***"
        logger.log(level, f"  {key}: {value}")


def _format_result(result: Any, max_length: int) -> str:
    """Render a tool result for the log, falling back to str() for non-JSON values."""
    if isinstance(result, str):
        text = result
    else:
        try:
            text = json.dumps(result, indent=2, default=str)
        except (TypeError, ValueError):
            text = str(result)

    if len(text) > max_length:
        return f"{text[:max_length]}... ({len(text)} chars total)"
    return text


def log_tool_result(
    logger: logging.Logger | None = None, max_length: int = 5000
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Decorator that logs the value returned by an async MCP tool.

    Args:
        logger: Logger to use (default: the decorated function's module logger)
        max_length: Maximum number of characters of the result to log

    Returns:
        Decorator preserving the wrapped function's name and signature
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        tool_logger = logger or logging.getLogger(func.__module__)

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            result = await func(*args, **kwargs)
            tool_logger.info(
                f"TOOL_RESULT [{func.__name__}] {_format_result(result, max_length)}"
            )
            return result

        return wrapper

    return decorator
