"""
Dev browser package

A persistent Chromium owned by a host process, a named-page registry behind an
HTTP control API, and a client that re-attaches over CDP, snapshots pages into
indexed refs and resolves those refs back to live elements.
"""

from .client import DevBrowserClient, wait_for_page_load
from .config import BrowserConfig, load_browser_config, server_url_for
from .connection import ConnectionBroker
from .control_api import ControlAPI
from .host import BrowserHost, serve
from .process_manager import BrowserProcessOwner
from .refs import ReferenceResolver
from .registry import PageRegistry, PageRegistryEntry
from .runtime import BrowserRuntime
from .snapshot import (
    ElementLocator,
    Snapshot,
    SnapshotEngine,
    SnapshotStore,
    normalize_ref,
    render_ai_snapshot,
    render_llm_tree,
)

__all__ = [
    "DevBrowserClient",
    "wait_for_page_load",
    "BrowserConfig",
    "load_browser_config",
    "server_url_for",
    "ConnectionBroker",
    "ControlAPI",
    "BrowserHost",
    "serve",
    "BrowserProcessOwner",
    "ReferenceResolver",
    "PageRegistry",
    "PageRegistryEntry",
    "BrowserRuntime",
    "ElementLocator",
    "Snapshot",
    "SnapshotEngine",
    "SnapshotStore",
    "normalize_ref",
    "render_ai_snapshot",
    "render_llm_tree",
]
