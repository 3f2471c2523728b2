"""
Dev browser client

Facade used by the MCP tools: named pages, snapshots, ref resolution and
script execution against a running browser host. A client holds no state
that the host does not also hold, so any number of short-lived clients can
work with the same pages.
"""

import asyncio
import json
from typing import Any

from playwright.async_api import (
    ElementHandle,
    Error as PlaywrightError,
    Page,
    TimeoutError as PlaywrightTimeoutError,
)

from ..utils.logging_config import get_logger
from .config import BrowserConfig
from .connection import ConnectionBroker
from .dom_scripts import RUN_SCRIPT_TEMPLATE
from .refs import ReferenceResolver
from .snapshot import (
    DEFAULT_MAX_TEXT,
    Snapshot,
    SnapshotEngine,
    SnapshotStore,
    render_ai_snapshot,
    render_llm_tree,
)

logger = get_logger(__name__)


async def wait_for_page_load(page: Page, timeout_ms: int) -> None:
    """
    Wait for the page to load and the network to settle, within a bound.

    A timeout is logged, not raised: pages with long-polling or streaming
    connections never reach network idle.

    Args:
        page: Page to wait on
        timeout_ms: Bound for each of the two waits
    """
    for state in ("load", "networkidle"):
        try:
            await page.wait_for_load_state(state, timeout=timeout_ms)
        except PlaywrightTimeoutError:
            logger.debug(f"Page did not reach '{state}' within {timeout_ms}ms, continuing")
            return


class DevBrowserClient:
    """High-level operations on named pages of a browser host"""

    def __init__(self, server_url: str, config: BrowserConfig | None = None):
        """
        Initialize the client.

        Args:
            server_url: Base URL of the host's control API
            config: Browser configuration supplying timeouts and text limits
        """
        config = config or {}
        self.server_url = server_url
        self.timeout_action = config.get("timeout_action", 15000)
        self.timeout_navigation = config.get("timeout_navigation", 30000)
        self.page_load_timeout = config.get("page_load_timeout", 10000)
        self.script_timeout = config.get("script_timeout", 30000)

        self.broker = ConnectionBroker(server_url)
        self.store = SnapshotStore()
        self.engine = SnapshotEngine(self.store, config.get("snapshot_max_text", DEFAULT_MAX_TEXT))
        self.resolver = ReferenceResolver(self.broker, self.engine)

    async def page(self, name: str) -> Page:
        """
        Get (creating if needed) a named page.

        Args:
            name: Page name; the same name always refers to the same page

        Returns:
            Live page with the configured default timeouts
        """
        page, _ = await self.broker.page(name)
        page.set_default_timeout(self.timeout_action)
        page.set_default_navigation_timeout(self.timeout_navigation)
        return page

    async def list_pages(self) -> list[str]:
        """List page names on the host."""
        return await self.broker.list_pages()

    async def close(self, name: str) -> None:
        """
        Close a named page.

        Raises:
            PageNotFoundError: If the host has no such page
        """
        try:
            await self.broker.close_page(name)
        finally:
            self.store.discard(name)

    async def snapshot(self, name: str) -> Snapshot:
        """Take a new snapshot, superseding the page's previous one."""
        page, target_id = await self.broker.page(name)
        try:
            return await self.engine.capture(page, name, target_id)
        except PlaywrightError as e:
            self.broker.raise_if_lost(e, f"snapshotting page '{name}'")
            raise

    @staticmethod
    def _header(name: str, snapshot: Snapshot) -> str:
        return (
            f"- Page: {name}\n"
            f"- Page URL: {snapshot.url}\n"
            f"- Page Title: {snapshot.title}\n"
            f"- Snapshot: {snapshot.sequence}"
        )

    async def get_ai_snapshot(self, name: str) -> str:
        """
        Snapshot a page and render it in ref-annotated form.

        Returns:
            Header lines followed by the outline
        """
        snapshot = await self.snapshot(name)
        body = render_ai_snapshot(snapshot)
        return f"{self._header(name, snapshot)}\n\n{body}" if body else self._header(name, snapshot)

    async def get_llm_tree(self, name: str) -> str:
        """
        Snapshot a page and render it as an indexed tree.
        """
        snapshot = await self.snapshot(name)
        body = render_llm_tree(snapshot)
        return f"{self._header(name, snapshot)}\n\n{body}" if body else self._header(name, snapshot)

    async def select_snapshot_ref(
        self, name: str, ref: str | int, snapshot: int | None = None
    ) -> ElementHandle:
        """
        Resolve a ref from the page's current snapshot to an element handle.

        Args:
            name: Page name
            ref: Ref such as "e3"
            snapshot: Snapshot number the ref was read from, if known

        Raises:
            StaleRefError: No snapshot, unknown ref or superseded snapshot
            ElementDetachedError: The element left the document
        """
        return await self.resolver.resolve_element(name, ref, snapshot)

    async def get_selector(self, name: str, ref: str | int, snapshot: int | None = None) -> str:
        """
        Resolve a ref to a selector that matches exactly its element.

        Raises:
            SelectorSynthesisError: No unique selector could be built
        """
        return await self.resolver.resolve_selector(name, ref, snapshot)

    async def run_script(self, name: str, script: str) -> Any:
        """
        Run JavaScript inside a page.

        The script is the body of an async function and receives ``refs``,
        the elements of the page's current snapshot keyed by ref.

        Args:
            name: Page name
            script: Function body; use ``return`` to produce a result

        Returns:
            The JSON-serializable value returned by the script

        Raises:
            TimeoutError: If the script does not finish within script_timeout
        """
        page, target_id = await self.broker.page(name)
        try:
            # Another client may have superseded the snapshot this process holds
            snapshot = await self.engine.load(page, name, target_id)
            if snapshot is None:
                self.store.discard(name)
            snapshot_id = snapshot.snapshot_id if snapshot else None

            return await asyncio.wait_for(
                page.evaluate(RUN_SCRIPT_TEMPLATE % script, {"snapshotId": snapshot_id}),
                timeout=self.script_timeout / 1000,
            )
        except asyncio.TimeoutError as e:
            raise TimeoutError(f"Script did not finish within {self.script_timeout}ms") from e
        except PlaywrightError as e:
            self.broker.raise_if_lost(e, f"running a script on page '{name}'")
            raise

    async def disconnect(self) -> None:
        """Drop the browser connection. Pages stay open on the host."""
        await self.broker.disconnect()


def format_script_result(result: Any) -> str:
    """Render a script result as text, stringifying what JSON cannot hold."""
    if result is None:
        return "Script executed successfully (no return value)"
    if isinstance(result, str):
        return result
    return json.dumps(result, indent=2, default=str)
