"""
Dev Browser MCP Server

Browser automation for AI tool callers over a browser that stays alive between
tool calls.

This server:
1. Starts (or attaches to) a browser host owning one persistent Chromium
2. Keeps named pages open across independent tool calls
3. Returns page snapshots with element refs ([ref=e3]) that later calls use
   to click, type into or build selectors for those elements
"""

import functools
import os
import sys
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable

from fastmcp import FastMCP
from fastmcp.utilities.types import Image

from .browser import BrowserRuntime, DevBrowserClient, wait_for_page_load
from .browser.client import format_script_result
from .browser.config import DEFAULT_LOG_FILE, ENV_PREFIX, load_browser_config
from .exceptions import DevBrowserError
from .middleware import MCPLoggingMiddleware
from .utils.logging_config import get_logger, log_dict, log_tool_result, setup_file_logging

# Configure logging using centralized utility
setup_file_logging(log_file=os.getenv(f"{ENV_PREFIX}LOG_FILE") or DEFAULT_LOG_FILE)
logger = get_logger(__name__)

logger.info(f"Python interpreter: {sys.executable}")
logger.info(f"Python version: {sys.version}")

DEFAULT_PAGE = "default"
SCROLL_SETTLE_TIMEOUT_MS = 2000

# Global components
runtime: BrowserRuntime | None = None


@asynccontextmanager
async def lifespan_context(server):
    """Lifespan context manager for startup and shutdown"""
    global runtime

    logger.info("=" * 60)
    logger.info("Starting Dev Browser MCP...")
    logger.info("=" * 60)

    try:
        config = load_browser_config()
        log_dict(logger, "Browser configuration:", dict(config))

        # The browser itself starts on the first tool call
        runtime = BrowserRuntime(config)

        logger.info("Dev Browser MCP started successfully")

        yield

    except Exception as e:
        logger.error(f"Failed to start Dev Browser MCP: {e}", exc_info=True)
        raise

    finally:
        logger.info("Shutting down Dev Browser MCP...")

        try:
            if runtime:
                await runtime.shutdown()
            logger.info("Dev Browser MCP shut down successfully")

        except Exception as e:
            logger.error(f"Error during shutdown: {e}", exc_info=True)


# Initialize the MCP server
mcp = FastMCP(
    name="Dev Browser MCP",
    instructions="""
    Browser automation against a persistent Chromium. Pages are addressed by
    name (default "default") and stay open between calls, along with their
    cookies, storage and navigation state.

    Call browser_snapshot to get an outline of the page where every usable
    element carries a ref such as [ref=e3]. Pass that ref to browser_click,
    browser_type or browser_get_selector. Refs belong to the latest snapshot
    of a page only: after taking a new snapshot, use the new refs.
    """,
    lifespan=lifespan_context,
)

# Logs all client MCP requests and responses with "CLIENT_MCP" prefix
# log_response_data=False: screenshot payloads would flood the log
mcp.add_middleware(
    MCPLoggingMiddleware(log_request_params=True, log_response_data=False, max_log_length=10000)
)


# =============================================================================
# HELPERS
# =============================================================================


def format_error(error: BaseException) -> str:
    """
    Render an exception as the text returned to the tool caller.

    Returns:
        ``Error [<Kind>]: <message>``
    """
    kind = error.kind if isinstance(error, DevBrowserError) else type(error).__name__
    message = str(error) or repr(error)
    return f"Error [{kind}]: {message}"


def tool_errors(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
    """
    Turn exceptions raised by a tool into an error result.

    Tools never raise to the transport: the caller always gets content.
    """

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            logger.error(f"Tool {func.__name__} failed: {type(e).__name__}: {e}", exc_info=True)
            return format_error(e)

    return wrapper


async def _get_client() -> DevBrowserClient:
    """Get the browser client, starting the browser on first use."""
    global runtime
    if runtime is None:
        # Tools invoked outside the server lifespan (e.g. embedding)
        runtime = BrowserRuntime()
    return await runtime.ensure()


# =============================================================================
# SNAPSHOT TOOLS
# =============================================================================


@mcp.tool()
@log_tool_result(logger)
@tool_errors
async def browser_snapshot(page: str = DEFAULT_PAGE) -> str:
    """
    Get an AI-friendly snapshot of a page.

    Returns a YAML-like outline where every usable element carries a ref such
    as [ref=e1]. Use these refs with the other tools. Taking a snapshot
    replaces the page's previous refs.

    Args:
        page: Page name (created if it doesn't exist). Default: "default"

    Returns:
        Page URL, title, snapshot number and the annotated outline
    """
    client = await _get_client()
    return await client.get_ai_snapshot(page)


@mcp.tool()
@log_tool_result(logger)
@tool_errors
async def browser_llm_tree(page: str = DEFAULT_PAGE) -> str:
    """
    Get a numbered tree of a page's elements for reading and exploration.

    Each line looks like [3]<button id="go">Go</button>; the number N is the
    same element as ref eN. Frames and shadow roots are delimited by
    |frame ...| and |shadow-root| lines. Taking the tree replaces the page's
    previous refs.

    Args:
        page: Page name (created if it doesn't exist). Default: "default"

    Returns:
        Page URL, title, snapshot number and the numbered tree
    """
    client = await _get_client()
    return await client.get_llm_tree(page)


# =============================================================================
# INTERACTION TOOLS
# =============================================================================


@mcp.tool()
@log_tool_result(logger)
@tool_errors
async def browser_navigate(url: str, page: str = DEFAULT_PAGE) -> str:
    """
    Navigate a page to a URL and return its new snapshot.

    Args:
        url: The URL to navigate to
        page: Page name (created if it doesn't exist). Default: "default"

    Returns:
        Confirmation followed by the page snapshot
    """
    if not url:
        raise ValueError("url is required")

    client = await _get_client()
    target = await client.page(page)
    await target.goto(url)
    await wait_for_page_load(target, client.page_load_timeout)

    snapshot = await client.get_ai_snapshot(page)
    return f"Navigated to {url}\n\n{snapshot}"


@mcp.tool()
@log_tool_result(logger)
@tool_errors
async def browser_click(ref: str, page: str = DEFAULT_PAGE, snapshot: int | None = None) -> str:
    """
    Click an element by its ref from the page's latest snapshot.

    Args:
        ref: Element ref from the snapshot (e.g. "e1", "e2")
        page: Page name. Default: "default"
        snapshot: Number from the snapshot's "- Snapshot: N" header. When
            given, a ref from an older snapshot is rejected as stale

    Returns:
        Confirmation followed by a fresh snapshot (the old refs are replaced)
    """
    if not ref:
        raise ValueError("ref is required")

    client = await _get_client()
    element = await client.select_snapshot_ref(page, ref, snapshot)
    try:
        await element.click()
    finally:
        await element.dispose()

    await wait_for_page_load(await client.page(page), client.page_load_timeout)

    outline = await client.get_ai_snapshot(page)
    return f"Clicked element [ref={ref}]\n\n{outline}"


@mcp.tool()
@log_tool_result(logger)
@tool_errors
async def browser_type(
    ref: str,
    text: str,
    clear: bool = False,
    page: str = DEFAULT_PAGE,
    snapshot: int | None = None,
) -> str:
    """
    Type text into an element.

    Args:
        ref: Element ref from the snapshot
        text: Text to type
        clear: Replace the existing text instead of appending. Default: False
        page: Page name. Default: "default"
        snapshot: Snapshot number the ref was read from (optional)

    Returns:
        Confirmation followed by a fresh snapshot
    """
    if not ref:
        raise ValueError("ref is required")
    if not text:
        raise ValueError("text is required")

    client = await _get_client()
    element = await client.select_snapshot_ref(page, ref, snapshot)
    try:
        if clear:
            await element.fill(text)
        else:
            await element.type(text)
    finally:
        await element.dispose()

    outline = await client.get_ai_snapshot(page)
    return f'Typed "{text}" into [ref={ref}]\n\n{outline}'


@mcp.tool()
@log_tool_result(logger)
@tool_errors
async def browser_screenshot(page: str = DEFAULT_PAGE, full_page: bool = False) -> Any:
    """
    Take a PNG screenshot of a page. You can't act on a screenshot; use
    browser_snapshot to get refs.

    Args:
        page: Page name. Default: "default"
        full_page: Capture the full scrollable page instead of the viewport. Default: False

    Returns:
        PNG image
    """
    client = await _get_client()
    target = await client.page(page)
    data = await target.screenshot(full_page=full_page, type="png")
    return Image(data=data, format="png")


@mcp.tool()
@log_tool_result(logger)
@tool_errors
async def browser_scroll(direction: str, amount: int = 500, page: str = DEFAULT_PAGE) -> str:
    """
    Scroll a page with the mouse wheel.

    Args:
        direction: "up" or "down"
        amount: Pixels to scroll. Default: 500
        page: Page name. Default: "default"

    Returns:
        Confirmation followed by a fresh snapshot
    """
    if direction not in ("up", "down"):
        raise ValueError(f"direction must be 'up' or 'down', got '{direction}'")
    amount = amount or 500

    client = await _get_client()
    target = await client.page(page)
    delta = amount if direction == "down" else -amount
    await target.mouse.wheel(0, delta)
    await wait_for_page_load(target, SCROLL_SETTLE_TIMEOUT_MS)

    snapshot = await client.get_ai_snapshot(page)
    return f"Scrolled {direction} {amount}px\n\n{snapshot}"


@mcp.tool()
@log_tool_result(logger)
@tool_errors
async def browser_run_script(script: str, page: str = DEFAULT_PAGE) -> str:
    """
    Run JavaScript inside a page and return its result.

    The script is the body of an async function running in the page. It
    receives `refs`, the elements of the latest snapshot keyed by ref
    (e.g. `refs.e3.textContent`). Use `return` to send a value back.
    Runs are bounded by DEV_BROWSER_SCRIPT_TIMEOUT.

    Args:
        script: JavaScript function body
        page: Page name. Default: "default"

    Returns:
        The returned value as JSON, or a confirmation when nothing is returned
    """
    if not script:
        raise ValueError("script is required")

    client = await _get_client()
    result = await client.run_script(page, script)
    return format_script_result(result)


@mcp.tool()
@log_tool_result(logger)
@tool_errors
async def browser_get_selector(
    ref: str, page: str = DEFAULT_PAGE, snapshot: int | None = None
) -> str:
    """
    Build a selector that matches exactly the element behind a ref.

    The selector works with Playwright locators, including elements inside
    frames and shadow roots.

    Args:
        ref: Element ref from the snapshot
        page: Page name. Default: "default"
        snapshot: Snapshot number the ref was read from (optional)

    Returns:
        The selector
    """
    if not ref:
        raise ValueError("ref is required")

    client = await _get_client()
    return await client.get_selector(page, ref, snapshot)


# =============================================================================
# PAGE TOOLS
# =============================================================================


@mcp.tool()
@log_tool_result(logger)
@tool_errors
async def browser_list_pages() -> str:
    """
    List all open named pages.

    Returns:
        One page name per line, or a note that no pages are open
    """
    client = await _get_client()
    pages = await client.list_pages()
    if not pages:
        return "No pages open"
    return "Open pages:\n" + "\n".join(f"- {name}" for name in pages)


@mcp.tool()
@log_tool_result(logger)
@tool_errors
async def browser_close_page(page: str) -> str:
    """
    Close a named page. The name can be reused later for a fresh page.

    Args:
        page: Page name to close

    Returns:
        Confirmation
    """
    if not page:
        raise ValueError("page is required")

    client = await _get_client()
    await client.close(page)
    return f'Closed page "{page}"'


# =============================================================================
# RESOURCES
# =============================================================================


@mcp.resource("dev-browser://status")
async def get_browser_status() -> str:
    """Get the current browser status"""
    if runtime is None or runtime.client is None:
        return "Dev browser is not started (it starts on the first tool call)"

    try:
        status = await runtime.status()
    except DevBrowserError as e:
        return f"Dev browser is unreachable: {e}"

    lines = [
        f"Dev browser is running ({'owned' if status['owns_browser'] else 'attached'})",
        f"Control API: {status['server_url']}",
    ]
    if status.get("ws_endpoint"):
        lines.append(f"WebSocket: {status['ws_endpoint']}")
    if "browser_healthy" in status:
        lines.append(f"CDP endpoint: {'responsive' if status['browser_healthy'] else 'not responding'}")
    pages = status.get("pages", [])
    lines.append(f"Pages ({len(pages)}):")
    for entry in pages:
        detail = f" (target {entry['target_id']})" if "target_id" in entry else ""
        lines.append(f"- {entry['name']}{detail}")
    return "\n".join(lines)


# =============================================================================
# MAIN
# =============================================================================


def main() -> None:
    """Run the MCP server"""
    logger.info("Initializing Dev Browser MCP Server...")
    mcp.run()


if __name__ == "__main__":
    main()
