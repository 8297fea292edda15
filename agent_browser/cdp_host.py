"""BrowserHost backed by a Chrome page over the DevTools protocol.

Two websocket connections per page:
- command connection: Page/Runtime commands issued by the control layer
- event bus: console/network/lifecycle events, translated to host events

Chrome must already run with `--remote-debugging-port` (see config).
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import suppress
from typing import Any
from urllib.parse import urlsplit

from . import host as host_events
from .cdp import CdpConnection, CdpEventBus
from .config import BrowserConfig
from .host import ElementInfo, HostListener, NavigationResult, PageScriptError, PageState, ScreenshotOptions
from .http_client import HttpClientError, get_json
from .js_ops import build_call
from .redaction import redact_url_brief

logger = logging.getLogger("agent_browser.cdp_host")

FULL_PAGE_MAX_HEIGHT = 8000

# Chrome net::ERR_* names -> human message (keyword-compatible with the classifier).
_NET_ERRORS: tuple[tuple[str, str], ...] = (
    ("ERR_NAME_NOT_RESOLVED", 'Could not find the site "{host}" - please check the URL is correct'),
    ("ERR_NAME_RESOLUTION_FAILED", 'Could not find the site "{host}" - please check the URL is correct'),
    ("ERR_INTERNET_DISCONNECTED", "No internet connection - please check your network"),
    ("ERR_CONNECTION_TIMED_OUT", "Connection timed out - the site may be slow or unavailable"),
    ("ERR_TIMED_OUT", "Connection timed out - the site may be slow or unavailable"),
    ("ERR_CERT_", "Security certificate error - the site's certificate may be invalid or expired"),
    ("ERR_SSL_", "Security certificate error - the site's certificate may be invalid or expired"),
    ("ERR_BLOCKED_BY_", "Request was blocked - the site may have restricted access"),
    ("ERR_CONNECTION_REFUSED", "Connection refused - the site may be down or blocking connections"),
)


def describe_net_error(error_text: str, url: str = "") -> str:
    """Map a Chrome `errorText` (e.g. "net::ERR_NAME_NOT_RESOLVED") to a readable message."""
    raw = str(error_text or "").strip()
    upper = raw.upper()
    host = urlsplit(url).hostname or url
    for code, message in _NET_ERRORS:
        if code in upper:
            return message.format(host=host)
    return raw or "Navigation failed"


def _now_ms() -> int:
    return int(time.time() * 1000)


def _remote_obj_to_str(obj: Any) -> str:
    if not isinstance(obj, dict):
        return str(obj)
    for k in ("value", "unserializableValue", "description"):
        if obj.get(k) is not None:
            return str(obj.get(k))
    typ = obj.get("type")
    subtype = obj.get("subtype")
    return f"<{typ}{('/' + subtype) if subtype else ''}>"


def _stack_top(params: dict[str, Any]) -> tuple[str | None, int | None]:
    st = params.get("stackTrace")
    frames = st.get("callFrames") if isinstance(st, dict) else None
    if not isinstance(frames, list) or not frames or not isinstance(frames[0], dict):
        return None, None
    f0 = frames[0]
    url = f0.get("url") if isinstance(f0.get("url"), str) and f0.get("url") else None
    line = f0.get("lineNumber") if isinstance(f0.get("lineNumber"), int) else None
    return url, line


def _pick_page_target(targets: Any) -> dict[str, Any] | None:
    if not isinstance(targets, list):
        return None
    for target in targets:
        if isinstance(target, dict) and target.get("type") == "page" and target.get("webSocketDebuggerUrl"):
            return target
    return None


class CdpBrowserHost:
    """Implements the BrowserHost protocol for one Chrome page target."""

    def __init__(self, conn: CdpConnection, *, target_id: str, ws_url: str, config: BrowserConfig) -> None:
        self._conn = conn
        self.target_id = target_id
        self.ws_url = ws_url
        self._config = config
        self._cmd_lock = threading.RLock()
        self._listeners: dict[str, list[HostListener]] = {}
        self._listeners_lock = threading.Lock()
        self._settled = threading.Event()
        self._settled.set()
        self._navigation_timeout_ms = config.navigation_timeout_ms
        self._last_url: str | None = None
        self._bus = CdpEventBus(ws_url=ws_url, on_event=self._on_cdp_event)

    @classmethod
    def connect(cls, config: BrowserConfig) -> CdpBrowserHost:
        """Attach to the first page target (creating one if none exists)."""
        base = config.cdp_http_base
        target = _pick_page_target(get_json(f"{base}/json/list"))
        if target is None:
            # Chrome requires PUT for /json/new.
            created = get_json(f"{base}/json/new?about:blank", method="PUT")
            target = created if isinstance(created, dict) and created.get("webSocketDebuggerUrl") else None
        if target is None:
            raise HttpClientError("No page target available on the DevTools endpoint")

        ws_url = str(target["webSocketDebuggerUrl"])
        conn = CdpConnection(ws_url, timeout=config.cdp_command_timeout_s)
        host = cls(conn, target_id=str(target.get("id") or ""), ws_url=ws_url, config=config)
        host._send("Page.enable")
        host._send("Runtime.enable")
        host._bus.start()
        logger.info("cdp host attached target=%s url=%s", host.target_id, redact_url_brief(str(target.get("url") or "")))
        return host

    def close(self) -> None:
        self._bus.stop()
        self._conn.close()

    # ─────────────────────────────────────────────────────────────────────────
    # Commands
    # ─────────────────────────────────────────────────────────────────────────

    def _send(self, method: str, params: dict[str, Any] | None = None, *, timeout: float | None = None) -> dict[str, Any]:
        with self._cmd_lock:
            return self._conn.send(method, params, timeout=timeout)

    def _call(self, operation: str, *args: Any) -> Any:
        value = self.evaluate(build_call(operation, *args))
        if isinstance(value, dict) and "__error" in value:
            raise PageScriptError(str(value["__error"]))
        return value

    def evaluate(self, script: str) -> Any:
        result = self._send(
            "Runtime.evaluate",
            {"expression": script, "returnByValue": True, "awaitPromise": True},
        )
        details = result.get("exceptionDetails")
        if isinstance(details, dict):
            exc = details.get("exception")
            desc = exc.get("description") if isinstance(exc, dict) else None
            raise PageScriptError(str(desc or details.get("text") or "Script execution failed"))
        value = result.get("result")
        if not isinstance(value, dict):
            return None
        if value.get("type") == "undefined":
            return None
        if value.get("type") == "object" and value.get("subtype") == "null":
            return None
        return value.get("value")

    # ─────────────────────────────────────────────────────────────────────────
    # Navigation
    # ─────────────────────────────────────────────────────────────────────────

    def set_navigation_timeout(self, timeout: int) -> None:
        self._navigation_timeout_ms = max(1, int(timeout))

    def navigate(self, url: str) -> NavigationResult:
        timeout_ms = self._navigation_timeout_ms
        start = time.time()
        self._settled.clear()
        with self._cmd_lock:
            self._conn.clear_events()
            try:
                result = self._conn.send("Page.navigate", {"url": url}, timeout=timeout_ms / 1000.0)
            except HttpClientError as exc:
                self._settled.set()
                return NavigationResult(success=False, url=url, error=str(exc))

            error_text = result.get("errorText")
            if error_text:
                self._settled.set()
                return NavigationResult(
                    success=False,
                    url=url,
                    error=describe_net_error(str(error_text), url),
                    load_time=int((time.time() - start) * 1000),
                )

            # Same-document navigations carry no loaderId and fire no load event.
            if result.get("loaderId"):
                remaining = timeout_ms / 1000.0 - (time.time() - start)
                loaded = self._conn.wait_for_event("Page.loadEventFired", timeout=max(0.0, remaining))
                if loaded is None:
                    self._settled.set()
                    return NavigationResult(
                        success=False,
                        url=url,
                        error=f"Navigation timeout after {timeout_ms}ms - the page took too long to respond",
                        load_time=int((time.time() - start) * 1000),
                    )
        self._settled.set()

        info = self._call("page_info") or {}
        final_url = str(info.get("url") or url)
        self._last_url = final_url
        return NavigationResult(
            success=True,
            url=final_url,
            title=str(info.get("title") or ""),
            load_time=int((time.time() - start) * 1000),
        )

    def _history(self) -> tuple[int, list[dict[str, Any]]]:
        result = self._send("Page.getNavigationHistory")
        entries = result.get("entries")
        return int(result.get("currentIndex") or 0), entries if isinstance(entries, list) else []

    def _go_history(self, delta: int) -> bool:
        index, entries = self._history()
        target = index + delta
        if target < 0 or target >= len(entries):
            return False
        self._settled.clear()
        self._send("Page.navigateToHistoryEntry", {"entryId": entries[target].get("id")})
        return True

    def go_back(self) -> bool:
        return self._go_history(-1)

    def go_forward(self) -> bool:
        return self._go_history(1)

    def reload(self) -> None:
        self._settled.clear()
        self._send("Page.reload", {"ignoreCache": False})

    def stop(self) -> None:
        self._send("Page.stopLoading")
        self._settled.set()

    def wait_until_settled(self, timeout: int) -> bool:
        """Block until the page fires its load (or same-document) event."""
        return self._settled.wait(max(0, timeout) / 1000.0)

    def get_url(self) -> str | None:
        with suppress(HttpClientError, PageScriptError):
            url = self.evaluate("window.location.href")
            if isinstance(url, str):
                self._last_url = url
                return url
        return self._last_url

    def get_state(self) -> PageState:
        try:
            info = self._call("page_info") or {}
            index, entries = self._history()
        except (HttpClientError, PageScriptError) as exc:
            return PageState(url=self._last_url or "", error=str(exc))
        url = str(info.get("url") or "")
        self._last_url = url or self._last_url
        return PageState(
            url=url,
            title=str(info.get("title") or ""),
            is_loading=info.get("readyState") != "complete",
            can_go_back=index > 0,
            can_go_forward=index < len(entries) - 1,
        )

    # ─────────────────────────────────────────────────────────────────────────
    # DOM
    # ─────────────────────────────────────────────────────────────────────────

    def wait_for_element(self, selector: str, timeout: int, cancel: threading.Event | None = None) -> bool:
        cancel = cancel or threading.Event()
        deadline = time.time() + max(0, timeout) / 1000.0
        while not cancel.is_set():
            if self._call("element_exists", selector) is True:
                return True
            remaining = deadline - time.time()
            if remaining <= 0:
                return False
            cancel.wait(min(0.1, remaining))
        return False

    def query_elements(self, selector: str, limit: int = 20) -> list[ElementInfo]:
        raw = self._call("query_elements", selector, int(limit))
        return [ElementInfo.from_dict(item) for item in raw or [] if isinstance(item, dict)]

    def screenshot(self, options: ScreenshotOptions, timeout: int) -> str:
        """Capture the viewport, an element or the full page; returns base64."""
        fmt = options.format if options.format in {"png", "jpeg", "webp"} else "png"
        params: dict[str, Any] = {"format": fmt, "fromSurface": True}
        if fmt != "png":
            params["quality"] = max(0, min(int(options.quality), 100))

        if options.selector:
            rect = self._call("element_rect", options.selector)
            params["clip"] = {
                "x": rect["x"],
                "y": rect["y"],
                "width": max(1, rect["width"]),
                "height": max(1, rect["height"]),
                "scale": 1,
            }
        elif options.full_page:
            dims = self._call("page_dimensions")
            params["clip"] = {
                "x": 0,
                "y": 0,
                "width": dims["width"],
                "height": min(int(dims["height"]), FULL_PAGE_MAX_HEIGHT),
                "scale": 1,
            }
            params["captureBeyondViewport"] = True

        result = self._send("Page.captureScreenshot", params, timeout=max(1, timeout) / 1000.0)
        data = result.get("data")
        if not isinstance(data, str) or not data:
            raise HttpClientError("Screenshot returned no data")
        return data

    # ─────────────────────────────────────────────────────────────────────────
    # Events
    # ─────────────────────────────────────────────────────────────────────────

    def add_listener(self, event: str, listener: HostListener) -> None:
        with self._listeners_lock:
            self._listeners.setdefault(event, []).append(listener)

    def remove_listener(self, event: str, listener: HostListener) -> None:
        with self._listeners_lock:
            listeners = self._listeners.get(event, [])
            if listener in listeners:
                listeners.remove(listener)

    def _emit(self, event: str, payload: dict[str, Any]) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners.get(event, ()))
        for listener in listeners:
            try:
                listener(payload)
            except Exception:
                logger.debug("host listener failed event=%s", event, exc_info=True)

    def _on_cdp_event(self, event: dict[str, Any]) -> None:
        method = event.get("method")
        params = event.get("params")
        if not isinstance(params, dict):
            params = {}

        if method in {"Page.loadEventFired", "Page.navigatedWithinDocument"}:
            self._settled.set()
            return

        if method == "Runtime.consoleAPICalled":
            args = params.get("args")
            message = " ".join(_remote_obj_to_str(a) for a in args[:8]) if isinstance(args, list) else ""
            source, line = _stack_top(params)
            ts = params.get("timestamp")
            self._emit(
                host_events.CONSOLE_MESSAGE,
                {
                    "level": params.get("type") or "log",
                    "message": message,
                    "timestamp": int(ts) if isinstance(ts, (int, float)) else _now_ms(),
                    "source": source,
                    "line": line,
                },
            )
            return

        if method == "Runtime.exceptionThrown":
            details = params.get("exceptionDetails")
            if not isinstance(details, dict):
                details = {}
            exc = details.get("exception")
            message = details.get("text") or "Uncaught exception"
            if isinstance(exc, dict):
                message = exc.get("description") or exc.get("value") or message
            self._emit(
                host_events.CONSOLE_MESSAGE,
                {
                    "level": "error",
                    "message": str(message),
                    "timestamp": _now_ms(),
                    "source": details.get("url") or None,
                    "line": details.get("lineNumber"),
                },
            )
            return

        request_id = params.get("requestId")
        if not isinstance(request_id, str):
            return

        if method == "Network.requestWillBeSent":
            req = params.get("request") if isinstance(params.get("request"), dict) else {}
            wall = params.get("wallTime")
            self._emit(
                host_events.NETWORK_REQUEST,
                {
                    "id": request_id,
                    "url": req.get("url") or "",
                    "method": req.get("method") or "GET",
                    "resourceType": str(params.get("type") or "other").lower(),
                    "timestamp": int(wall * 1000) if isinstance(wall, (int, float)) else _now_ms(),
                },
            )
        elif method == "Network.responseReceived":
            resp = params.get("response") if isinstance(params.get("response"), dict) else {}
            self._emit(
                host_events.NETWORK_RESPONSE,
                {"id": request_id, "status": resp.get("status"), "statusText": resp.get("statusText") or ""},
            )
        elif method == "Network.loadingFinished":
            self._emit(
                host_events.NETWORK_FINISHED,
                {"id": request_id, "timestamp": _now_ms(), "size": params.get("encodedDataLength")},
            )
        elif method == "Network.loadingFailed":
            self._emit(
                host_events.NETWORK_FAILED,
                {"id": request_id, "timestamp": _now_ms(), "error": params.get("errorText") or "failed"},
            )
