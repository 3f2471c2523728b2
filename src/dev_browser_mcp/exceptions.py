"""Error taxonomy for dev-browser-mcp."""


class DevBrowserError(Exception):
    """Base exception for dev-browser-mcp."""

    @property
    def kind(self) -> str:
        """Short error kind shown to tool callers."""
        return type(self).__name__


class PageNotFoundError(DevBrowserError):
    """The registry has no page with the given name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f'Page "{name}" not found')


class PageResolutionError(DevBrowserError):
    """The registry knows the page but no live page carries its target id."""

    def __init__(self, target_id: str, name: str | None = None):
        self.target_id = target_id
        self.name = name
        label = f'Page "{name}"' if name else "Page"
        super().__init__(
            f"{label} (target {target_id}) not found in browser contexts"
        )


class ConnectionLostError(DevBrowserError):
    """The browser connection dropped mid-operation."""

    pass


class ControlAPIError(DevBrowserError):
    """The control API answered with an unexpected status."""

    def __init__(self, message: str, status: int | None = None):
        self.status = status
        super().__init__(f"{message} (HTTP {status})" if status is not None else message)


class StaleRefError(DevBrowserError):
    """The ref is not part of the page's current snapshot."""

    def __init__(self, ref: str, page_name: str, reason: str | None = None):
        self.ref = ref
        self.page_name = page_name
        message = f'Ref "{ref}" is not in the current snapshot of page "{page_name}"'
        if reason:
            message = f"{message}: {reason}"
        super().__init__(f"{message}. Take a new snapshot.")


class ElementDetachedError(DevBrowserError):
    """The ref is current but its element is no longer in the document."""

    def __init__(self, ref: str, page_name: str):
        self.ref = ref
        self.page_name = page_name
        super().__init__(
            f'Element [ref={ref}] on page "{page_name}" is no longer attached to the document'
        )


class SelectorSynthesisError(DevBrowserError):
    """No selector could be built that matches exactly the referenced element."""

    def __init__(self, ref: str, reason: str):
        self.ref = ref
        self.reason = reason
        super().__init__(f"Cannot build a unique selector for [ref={ref}]: {reason}")
