"""
Named page registry

Maps caller-chosen page names to CDP target ids of pages inside the owned
browser. This is the only component that opens or closes pages.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone

from playwright.async_api import BrowserContext, Page

from ..exceptions import PageNotFoundError
from ..utils.logging_config import get_logger

logger = get_logger(__name__)


async def get_target_id(context: BrowserContext, page: Page) -> str:
    """
    Get the CDP target id of a page.

    Args:
        context: Context owning the page
        page: Page to query

    Returns:
        The opaque target id the browser assigned to the page
    """
    cdp_session = await context.new_cdp_session(page)
    try:
        info = await cdp_session.send("Target.getTargetInfo")
    finally:
        await cdp_session.detach()
    return info["targetInfo"]["targetId"]


@dataclass
class PageRegistryEntry:
    """A named page owned by the registry"""

    name: str
    target_id: str
    page: Page
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class PageRegistry:
    """Create-or-get and close semantics for named pages"""

    def __init__(self, context: BrowserContext):
        self._context = context
        self._entries: dict[str, PageRegistryEntry] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, name: str) -> asyncio.Lock:
        return self._locks.setdefault(name, asyncio.Lock())

    @staticmethod
    def _validate_name(name: str) -> None:
        if not isinstance(name, str) or not name:
            raise ValueError("Page name must be a non-empty string")

    async def get_or_create(self, name: str) -> str:
        """
        Get the target id for a page name, opening a page if needed.

        Concurrent calls with the same name serialize on a per-name lock, so
        they converge on one page and one target id. Calls for different names
        do not block each other.

        Args:
            name: Caller-chosen page name (used verbatim)

        Returns:
            The page's target id

        Raises:
            ValueError: If name is empty or not a string
        """
        self._validate_name(name)

        async with self._lock_for(name):
            entry = self._entries.get(name)
            if entry is not None:
                if not entry.page.is_closed():
                    return entry.target_id
                logger.warning(
                    f"Page '{name}' (target {entry.target_id}) was closed outside the registry, "
                    "opening a new one"
                )
                del self._entries[name]

            page = await self._context.new_page()
            try:
                target_id = await get_target_id(self._context, page)
            except Exception:
                await page.close()
                raise

            self._entries[name] = PageRegistryEntry(name=name, target_id=target_id, page=page)
            logger.info(f"Created page '{name}' (target {target_id})")
            return target_id

    def entries(self) -> list[PageRegistryEntry]:
        """Registered entries in creation order."""
        return list(self._entries.values())

    def get(self, name: str) -> PageRegistryEntry:
        """
        Get the entry for a name.

        Raises:
            PageNotFoundError: If the name is not registered
        """
        entry = self._entries.get(name)
        if entry is None:
            raise PageNotFoundError(name)
        return entry

    async def close(self, name: str) -> None:
        """
        Close a page and forget its name.

        Raises:
            PageNotFoundError: If the name is not registered
        """
        async with self._lock_for(name):
            entry = self._entries.pop(name, None)
            if entry is None:
                raise PageNotFoundError(name)

            if not entry.page.is_closed():
                await entry.page.close()
            logger.info(f"Closed page '{name}' (target {entry.target_id})")

    async def close_all(self) -> None:
        """Close every registered page (used at shutdown)."""
        for name in self.list():
            try:
                await self.close(name)
            except PageNotFoundError:
                pass
            except Exception as e:
                logger.error(f"Error closing page '{name}': {e}")

    # Defined last: the method name shadows the builtin in the class body.
    def list(self) -> list[str]:
        """
        List registered page names in creation order.
        """
        return list(self._entries)
