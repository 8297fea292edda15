"""
BrowserHost contract and the page-level data model.

The host is the external engine that renders the page and runs scripts.
Everything in this package talks to it through the `BrowserHost` protocol;
`cdp_host.CdpBrowserHost` is the Chrome DevTools implementation.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

# Host event names (payloads are plain dicts, see telemetry.py).
CONSOLE_MESSAGE = "console-message"
NETWORK_REQUEST = "network-request"
NETWORK_RESPONSE = "network-response"
NETWORK_FINISHED = "network-finished"
NETWORK_FAILED = "network-failed"

HostListener = Callable[[dict[str, Any]], None]


class PageScriptError(Exception):
    """Raised by a host when a script crashes at page level."""


@dataclass(slots=True)
class PageState:
    url: str = ""
    title: str = ""
    is_loading: bool = False
    can_go_back: bool = False
    can_go_forward: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "title": self.title,
            "isLoading": self.is_loading,
            "canGoBack": self.can_go_back,
            "canGoForward": self.can_go_forward,
            **({"error": self.error} if self.error else {}),
        }


@dataclass(slots=True, frozen=True)
class NavigationResult:
    """Outcome of a navigation, after any retries (immutable)."""

    success: bool
    url: str
    title: str = ""
    load_time: int | None = None
    error: str | None = None
    category: str | None = None
    suggestion: str | None = None
    retryable: bool | None = None
    warning: str | None = None
    attempts: int = 1

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success, "url": self.url, "title": self.title}
        if self.load_time is not None:
            out["loadTime"] = self.load_time
        if self.error:
            out["error"] = self.error
        if self.category:
            out["errorCategory"] = self.category
        if self.suggestion:
            out["suggestion"] = self.suggestion
        if self.retryable is not None:
            out["isRetryable"] = self.retryable
        if self.warning:
            out["warning"] = self.warning
        if self.attempts > 1:
            out["attempts"] = self.attempts
        return out


@dataclass(slots=True)
class ElementInfo:
    tag: str
    id: str | None = None
    class_name: str | None = None
    text: str = ""
    attributes: dict[str, str] = field(default_factory=dict)
    rect: dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ElementInfo:
        attrs = raw.get("attributes")
        rect = raw.get("rect")
        return cls(
            tag=str(raw.get("tag") or ""),
            id=raw.get("id") or None,
            class_name=raw.get("className") or None,
            text=str(raw.get("text") or ""),
            attributes=dict(attrs) if isinstance(attrs, dict) else {},
            rect=dict(rect) if isinstance(rect, dict) else {},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "tag": self.tag,
            "id": self.id,
            "className": self.class_name,
            "text": self.text,
            "attributes": dict(self.attributes),
            "rect": dict(self.rect),
        }


@dataclass(slots=True)
class ScreenshotOptions:
    format: str = "png"
    quality: int = 80
    full_page: bool = False
    selector: str | None = None


@runtime_checkable
class BrowserHost(Protocol):
    """Engine-side primitives consumed by the control layer."""

    def navigate(self, url: str) -> NavigationResult: ...

    def evaluate(self, script: str) -> Any: ...

    def wait_for_element(self, selector: str, timeout: int, cancel: threading.Event | None = None) -> bool:
        """True once ``selector`` matches; False on timeout or when ``cancel`` is set."""
        ...

    def screenshot(self, options: ScreenshotOptions, timeout: int) -> str: ...

    def query_elements(self, selector: str, limit: int = 20) -> list[ElementInfo]: ...

    def go_back(self) -> bool: ...

    def go_forward(self) -> bool: ...

    def reload(self) -> None: ...

    def stop(self) -> None: ...

    def get_state(self) -> PageState: ...

    def get_url(self) -> str | None: ...

    def set_navigation_timeout(self, timeout: int) -> None: ...

    def add_listener(self, event: str, listener: HostListener) -> None: ...

    def remove_listener(self, event: str, listener: HostListener) -> None: ...
