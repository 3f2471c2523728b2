"""
Snapshot engine

Walks a page's rendered DOM (including same-origin frames and open shadow
roots), assigns refs ``e1..eN`` in document order and renders the result in
two text forms:

- the AI snapshot, a YAML-like outline such as ``- button "Search" [ref=e3]``
- the LLM tree, an indented ``[3]<button>Search</button>`` listing

Each page has at most one current snapshot. Taking a new one supersedes the
previous snapshot, in the in-process store and in the page-side arena.
"""

import json
import re
import uuid
from dataclasses import dataclass, field
from typing import Any

from playwright.async_api import Page

from ..exceptions import StaleRefError
from ..types import LocatorPayload, SnapshotPayload, SnapshotRecord
from ..utils.logging_config import get_logger
from .dom_scripts import LOAD_ARENA_SCRIPT, SNAPSHOT_SCRIPT

logger = get_logger(__name__)

DEFAULT_MAX_TEXT = 100

_REF_PATTERN = re.compile(r"^\[?(?:ref=)?e?(\d+)\]?$")

# Attributes shown in the LLM tree, in display order
_LLM_ATTRS = ("id", "name", "type", "href", "placeholder", "aria-label", "role", "title", "alt")

# State flags shown in the AI snapshot
_AI_FLAGS = ("checked", "disabled", "selected")


def normalize_ref(ref: str | int) -> str | None:
    """
    Normalize a caller-supplied ref to the ``eN`` form.

    Accepts ``"e3"``, ``"3"``, ``3`` and ``"[ref=e3]"``.

    Returns:
        The normalized ref, or None if the value is not a ref
    """
    if isinstance(ref, bool):
        return None
    if isinstance(ref, int):
        return f"e{ref}" if ref > 0 else None
    if not isinstance(ref, str):
        return None

    match = _REF_PATTERN.match(ref.strip())
    if not match or int(match.group(1)) <= 0:
        return None
    return f"e{int(match.group(1))}"


@dataclass(frozen=True)
class ScopeStep:
    """A frame or shadow host crossed on the way to an element."""

    kind: str  # "frame" or "shadow"
    path: tuple[tuple[str, int], ...]


@dataclass(frozen=True)
class ElementLocator:
    """
    Enough information to find an element again and verify its identity.

    ``path`` is a chain of (tag, nth-of-type) steps from the root of the
    innermost scope. ``stable_attribute`` and ``fingerprint`` are compared
    after re-locating to detect a different element at the same position.
    """

    scopes: tuple[ScopeStep, ...]
    path: tuple[tuple[str, int], ...]
    tag: str
    stable_attribute: tuple[str, str] | None
    fingerprint: str

    @classmethod
    def from_payload(cls, payload: LocatorPayload) -> "ElementLocator":
        stable = payload.get("stable")
        return cls(
            scopes=tuple(
                ScopeStep(kind=s["kind"], path=tuple((t, int(n)) for t, n in s["path"]))
                for s in payload.get("scopes", [])
            ),
            path=tuple((t, int(n)) for t, n in payload["path"]),
            tag=payload["tag"],
            stable_attribute=(stable[0], stable[1]) if stable else None,
            fingerprint=payload.get("fingerprint", ""),
        )

    def to_payload(self) -> LocatorPayload:
        return LocatorPayload(
            scopes=[{"kind": s.kind, "path": [list(p) for p in s.path]} for s in self.scopes],
            path=[list(p) for p in self.path],
            tag=self.tag,
            stable=list(self.stable_attribute) if self.stable_attribute else None,
            fingerprint=self.fingerprint,
        )


@dataclass
class Snapshot:
    """The current ref assignment for one page."""

    page_name: str
    target_id: str
    snapshot_id: str
    sequence: int
    ref_map: dict[str, ElementLocator]
    records: list[SnapshotRecord] = field(default_factory=list)
    url: str = ""
    title: str = ""

    def locator_for(self, ref: str) -> ElementLocator:
        """
        Get the locator of a ref in this snapshot.

        Raises:
            StaleRefError: If the snapshot did not issue the ref
        """
        locator = self.ref_map.get(ref)
        if locator is None:
            raise StaleRefError(ref, self.page_name, f"snapshot {self.sequence} has no such ref")
        return locator


class SnapshotStore:
    """In-process record of the current snapshot per page name."""

    def __init__(self) -> None:
        self._current: dict[str, Snapshot] = {}
        self._sequences: dict[str, int] = {}

    def current(self, page_name: str) -> Snapshot | None:
        return self._current.get(page_name)

    def put(self, snapshot: Snapshot) -> None:
        """Make ``snapshot`` current for its page, superseding any earlier one."""
        self._current[snapshot.page_name] = snapshot
        self._sequences[snapshot.page_name] = max(
            self._sequences.get(snapshot.page_name, 0), snapshot.sequence
        )

    def discard(self, page_name: str) -> None:
        self._current.pop(page_name, None)

    def next_sequence(self, page_name: str) -> int:
        """Lowest sequence number the next snapshot of a page may use."""
        return self._sequences.get(page_name, 0) + 1


class SnapshotEngine:
    """Runs the in-page traversal and keeps the store current."""

    def __init__(self, store: SnapshotStore, max_text: int = DEFAULT_MAX_TEXT):
        self.store = store
        self.max_text = max_text

    async def capture(self, page: Page, page_name: str, target_id: str) -> Snapshot:
        """
        Walk the page and make the result its current snapshot.

        Args:
            page: Live page to walk
            page_name: Registry name of the page
            target_id: CDP target id of the page

        Returns:
            The new snapshot
        """
        snapshot_id = uuid.uuid4().hex
        payload: SnapshotPayload = await page.evaluate(
            SNAPSHOT_SCRIPT,
            {
                "maxText": self.max_text,
                "snapshotId": snapshot_id,
                "minSequence": self.store.next_sequence(page_name),
            },
        )

        snapshot = Snapshot(
            page_name=page_name,
            target_id=target_id,
            snapshot_id=snapshot_id,
            sequence=int(payload["sequence"]),
            ref_map={
                ref: ElementLocator.from_payload(loc) for ref, loc in payload["locators"].items()
            },
            records=payload["records"],
            url=payload.get("url", ""),
            title=payload.get("title", ""),
        )
        self.store.put(snapshot)
        logger.info(
            f"Snapshot {snapshot.sequence} of page '{page_name}': {len(snapshot.ref_map)} refs"
        )
        return snapshot

    async def load(self, page: Page, page_name: str, target_id: str) -> Snapshot | None:
        """
        Adopt the snapshot another process left in the page.

        Returns:
            The page's current snapshot without display records, or None if
            the page has none (never snapshotted, or navigated since)
        """
        payload = await page.evaluate(LOAD_ARENA_SCRIPT)
        if not payload:
            return None

        snapshot = Snapshot(
            page_name=page_name,
            target_id=target_id,
            snapshot_id=payload["snapshotId"],
            sequence=int(payload["sequence"]),
            ref_map={
                ref: ElementLocator.from_payload(loc) for ref, loc in payload["locators"].items()
            },
        )
        self.store.put(snapshot)
        logger.debug(f"Loaded snapshot {snapshot.sequence} of page '{page_name}' from the page")
        return snapshot

    async def snapshot(
        self, page: Page, page_name: str, target_id: str, form: str = "ai"
    ) -> tuple[str, dict[str, ElementLocator]]:
        """
        Capture and render in one step.

        Args:
            form: "ai" or "llm"

        Returns:
            Tuple of (rendered text, ref map)
        """
        snap = await self.capture(page, page_name, target_id)
        text = render_llm_tree(snap) if form == "llm" else render_ai_snapshot(snap)
        return text, snap.ref_map


def _quote(value: str) -> str:
    return json.dumps(value, ensure_ascii=False)


def _scroll_label(scroll: dict[str, Any]) -> str:
    return f"[scroll={scroll['top']},{scroll['left']} of {scroll['height']}]"


def render_ai_snapshot(snapshot: Snapshot) -> str:
    """
    Render a snapshot as a YAML-like outline, one line per record.
    """
    lines: list[str] = []

    for record in snapshot.records:
        indent = "  " * record.get("depth", 0)
        kind = record.get("kind")

        if kind == "frame-enter":
            src = record.get("src") or ""
            label = f"- iframe {_quote(src)}" if src else "- iframe"
            if record.get("accessible"):
                lines.append(f"{indent}{label}:")
            else:
                lines.append(f"{indent}{label} [cross-origin]")
            continue
        if kind == "shadow-root":
            lines.append(f"{indent}- shadow-root:")
            continue
        if kind != "element":
            # frame-exit and shadow-exit are implied by indentation
            continue

        parts = [f"{indent}- {record.get('role') or record.get('tag', 'generic')}"]
        if record.get("name"):
            parts.append(_quote(record["name"]))

        attrs = record.get("attrs") or {}
        if "level" in attrs:
            parts.append(f"[level={attrs['level']}]")
        for flag in _AI_FLAGS:
            if attrs.get(flag) == "true":
                parts.append(f"[{flag}]")
        if "expanded" in attrs:
            parts.append(f"[expanded={attrs['expanded']}]")

        parts.append(f"[ref={record['ref']}]")

        scroll = record.get("scroll")
        if scroll:
            parts.append(_scroll_label(scroll))

        line = " ".join(parts)
        content = record.get("value") or record.get("text")
        if content:
            line = f"{line}: {content}"
        if record.get("role") == "link" and attrs.get("href"):
            line = f"{line}\n{indent}  - /url: {attrs['href']}"
        lines.append(line)

    return "\n".join(lines)


def render_llm_tree(snapshot: Snapshot) -> str:
    """
    Render a snapshot as an indexed tree, e.g. ``[3]<button id="go">Go</button>``.
    """
    lines: list[str] = []

    for record in snapshot.records:
        indent = "  " * record.get("depth", 0)
        kind = record.get("kind")

        if kind == "frame-enter":
            marker = f"|frame src={record.get('src') or ''}"
            if not record.get("accessible"):
                marker += " inaccessible"
            lines.append(f"{indent}{marker}|")
            continue
        if kind == "frame-exit":
            lines.append(f"{indent}|/frame|")
            continue
        if kind == "shadow-root":
            lines.append(f"{indent}|shadow-root|")
            continue
        if kind == "shadow-exit":
            lines.append(f"{indent}|/shadow-root|")
            continue

        tag = record.get("tag", "div")
        attrs = record.get("attrs") or {}
        attr_text = "".join(
            f" {name}={_quote(attrs[name])}" for name in _LLM_ATTRS if attrs.get(name)
        )
        scroll = record.get("scroll")
        if scroll:
            attr_text += f' scroll="{scroll["top"]}/{scroll["height"]}"'

        index = record["ref"][1:]
        content = record.get("name") or record.get("text") or record.get("value")
        if content:
            lines.append(f"{indent}[{index}]<{tag}{attr_text}>{content}</{tag}>")
        else:
            lines.append(f"{indent}[{index}]<{tag}{attr_text} />")

    return "\n".join(lines)
