"""
Type Definitions

Define TypedDict classes for the control API wire format and the records
produced by the in-page snapshot traversal.
"""

from typing import Any, TypedDict


class ServerInfoResponse(TypedDict):
    """Response of ``GET /`` on the control API."""

    wsEndpoint: str


class GetPageRequest(TypedDict):
    """Body of ``POST /pages``."""

    name: str


class GetPageResponse(TypedDict):
    """Response of ``POST /pages``."""

    targetId: str


class ListPagesResponse(TypedDict):
    """Response of ``GET /pages``."""

    pages: list[str]


class ErrorResponse(TypedDict):
    """Body returned by the control API for 4xx answers."""

    error: str


class ScrollState(TypedDict):
    """Scroll offset of a scrollable container."""

    top: int
    left: int
    height: int
    width: int


class SnapshotRecord(TypedDict, total=False):
    """
    One record of the in-page traversal, in document order.

    ``kind`` is one of ``element``, ``frame-enter``, ``frame-exit``,
    ``shadow-root`` or ``shadow-exit``. Only ``element`` records carry a ref.
    """

    kind: str
    depth: int
    ref: str
    tag: str
    role: str
    name: str
    text: str
    value: str
    attrs: dict[str, str]
    scroll: ScrollState | None
    src: str
    accessible: bool


class LocatorPayload(TypedDict):
    """Serialized ``ElementLocator`` as stored in the page arena."""

    scopes: list[dict[str, Any]]
    path: list[list[Any]]
    tag: str
    stable: list[str] | None
    fingerprint: str


class SnapshotPayload(TypedDict):
    """Value returned by the traversal script."""

    records: list[SnapshotRecord]
    locators: dict[str, LocatorPayload]
    sequence: int
    url: str
    title: str


class PageStatus(TypedDict):
    """Registry entry as reported by the status resource."""

    name: str
    target_id: str
    created_at: str
