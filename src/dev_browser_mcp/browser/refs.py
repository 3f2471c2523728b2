"""
Reference resolver

Turns a ref from the current snapshot of a page back into a live element
handle, or into a selector that matches exactly that element.
"""

import uuid

from playwright.async_api import ElementHandle, Error as PlaywrightError, Page

from ..exceptions import ElementDetachedError, SelectorSynthesisError, StaleRefError
from ..utils.logging_config import get_logger
from .connection import ConnectionBroker
from .dom_scripts import (
    CLEAR_MARK_SCRIPT,
    HAS_MARK_SCRIPT,
    MARK_ELEMENT_SCRIPT,
    RESOLVE_REF_SCRIPT,
    SELECTOR_SCRIPT,
)
from .snapshot import Snapshot, SnapshotEngine, normalize_ref

logger = get_logger(__name__)


class ReferenceResolver:
    """Resolves refs against the page's current snapshot only."""

    def __init__(self, broker: ConnectionBroker, engine: SnapshotEngine):
        self.broker = broker
        self.engine = engine

    async def current_snapshot(self, page: Page, page_name: str, target_id: str) -> Snapshot | None:
        """
        Get the current snapshot of a page.

        Uses the in-process store when it describes the same page, otherwise
        adopts whatever snapshot the page itself carries.
        """
        snapshot = self.engine.store.current(page_name)
        if snapshot is not None and snapshot.target_id == target_id:
            return snapshot
        return await self.engine.load(page, page_name, target_id)

    async def _locate(
        self, page_name: str, ref: str | int, sequence: int | None
    ) -> tuple[Page, ElementHandle, str]:
        page, target_id = await self.broker.page(page_name)
        try:
            return await self._locate_on(page, page_name, target_id, ref, sequence)
        except PlaywrightError as e:
            self.broker.raise_if_lost(e, f"resolving [ref={ref}] on page '{page_name}'")
            raise

    async def _locate_on(
        self, page: Page, page_name: str, target_id: str, ref: str | int, sequence: int | None
    ) -> tuple[Page, ElementHandle, str]:
        snapshot = await self.current_snapshot(page, page_name, target_id)
        if snapshot is None:
            raise StaleRefError(str(ref), page_name, "no snapshot has been taken of this page")

        normalized = normalize_ref(ref)
        if normalized is None:
            raise StaleRefError(str(ref), page_name, "not a snapshot ref")

        if sequence is not None and sequence != snapshot.sequence:
            raise StaleRefError(
                normalized,
                page_name,
                f"snapshot {sequence} was superseded by snapshot {snapshot.sequence}",
            )

        locator = snapshot.locator_for(normalized)

        result = await page.evaluate_handle(
            RESOLVE_REF_SCRIPT,
            {
                "snapshotId": snapshot.snapshot_id,
                "ref": normalized,
                "locator": locator.to_payload(),
                "maxText": self.engine.max_text,
            },
        )
        status_handle = None
        try:
            status_handle = await result.get_property("status")
            status = await status_handle.json_value()
            if status == "stale":
                # Someone else snapshotted the page since; our copy is obsolete.
                self.engine.store.discard(page_name)
                raise StaleRefError(normalized, page_name, "a newer snapshot has been taken")
            if status != "ok":
                raise ElementDetachedError(normalized, page_name)

            element = (await result.get_property("element")).as_element()
        finally:
            if status_handle is not None:
                await status_handle.dispose()
            await result.dispose()

        if element is None:
            raise ElementDetachedError(normalized, page_name)
        return page, element, normalized

    async def resolve_element(
        self, page_name: str, ref: str | int, sequence: int | None = None
    ) -> ElementHandle:
        """
        Resolve a ref to a live element handle.

        Args:
            page_name: Registry name of the page
            ref: Ref from the page's current snapshot ("e3", "3" or 3)
            sequence: Snapshot number the ref was read from; when given,
                refs from any other snapshot are rejected

        Returns:
            Element handle valid for this process's connection

        Raises:
            StaleRefError: No snapshot, unknown ref or superseded snapshot
            ElementDetachedError: The element left the document
            ConnectionLostError: The browser dropped during resolution
        """
        _, element, normalized = await self._locate(page_name, ref, sequence)
        logger.debug(f"Resolved [ref={normalized}] on page '{page_name}'")
        return element

    async def resolve_selector(
        self, page_name: str, ref: str | int, sequence: int | None = None
    ) -> str:
        """
        Resolve a ref to a selector that matches exactly its element.

        Frames are crossed with ``internal:control=enter-frame`` and shadow
        roots with ``>>`` chaining. The selector is checked with Playwright's
        own selector engine before it is returned.

        Raises:
            StaleRefError: No snapshot, unknown ref or superseded snapshot
            ElementDetachedError: The element left the document
            SelectorSynthesisError: No unique selector could be built
        """
        page, element, normalized = await self._locate(page_name, ref, sequence)
        try:
            result = await element.evaluate(SELECTOR_SCRIPT)
            if not result or not result.get("ok"):
                reason = result.get("reason") if result else "selector script returned nothing"
                raise SelectorSynthesisError(normalized, reason)

            selector = result["selector"]
            await self._verify_selector(page, element, normalized, selector)
        except PlaywrightError as e:
            self.broker.raise_if_lost(e, f"building a selector for [ref={normalized}]")
            raise
        finally:
            await element.dispose()

        logger.debug(f"Selector for [ref={normalized}] on page '{page_name}': {selector}")
        return selector

    @staticmethod
    async def _verify_selector(page: Page, element: ElementHandle, ref: str, selector: str) -> None:
        """
        Check that ``selector`` matches exactly ``element`` in Playwright.

        The element is tagged with a JS property rather than compared by
        handle, since handles cannot cross into a child frame's context.
        """
        mark = uuid.uuid4().hex
        await element.evaluate(MARK_ELEMENT_SCRIPT, mark)
        try:
            locator = page.locator(selector)
            count = await locator.count()
            if count != 1:
                raise SelectorSynthesisError(ref, f"selector {selector!r} matches {count} elements")
            if not await locator.evaluate(HAS_MARK_SCRIPT, mark):
                raise SelectorSynthesisError(ref, f"selector {selector!r} matches another element")
        finally:
            await element.evaluate(CLEAR_MARK_SCRIPT)
