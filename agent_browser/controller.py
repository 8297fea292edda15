"""
Session-scoped browser controller.

One BrowserController owns one live page: its host connection, telemetry
buffers, ref table and the navigation/script/wait/snapshot components.
Every public method returns a ToolResult; nothing raises across this
boundary.
"""

from __future__ import annotations

import base64
import binascii
import functools
import io
import json
import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any

from PIL import Image, UnidentifiedImageError

from . import errors
from .config import BrowserConfig
from .errors import ResourceUnavailable, SmartToolError, ValidationError
from .host import PageScriptError, ScreenshotOptions
from .http_client import HttpClientError
from .navigation import NavigationController
from .redaction import redact_url
from .script import ScriptExecutor, ScriptResult
from .security import LocalSecurityPolicy
from .server.types import RETRY_NOTE, ToolResult
from .snapshot import AccessibilitySnapshotBuilder, RefTable, flatten_nodes, format_tree
from .telemetry import TelemetryCapture, format_bytes, summarize_network, truncate_url
from .wait import WaitCondition, WaitCoordinator

logger = logging.getLogger("agent_browser.controller")

HostFactory = Callable[[BrowserConfig], Any]

_MIME_TYPES = {"png": "image/png", "jpeg": "image/jpeg", "webp": "image/webp"}
_SCRIPT_RESULT_LIMIT = 10_000
_SCROLL_STEP = 500
_SCROLL_DIRECTIONS = ("up", "down", "top", "bottom")
_FIELD_KINDS = ("textbox", "textarea", "checkbox", "radio", "combobox", "slider")


def tool_boundary(tool: str):
    """Convert every exception escaping a controller method into a ToolResult."""

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(self: BrowserController, *args: Any, **kwargs: Any) -> ToolResult:
            try:
                self.telemetry.ensure_attached(self._host)
                return fn(self, *args, **kwargs)
            except SmartToolError as exc:
                logger.info("tool_error tool=%s action=%s reason=%s", exc.tool, exc.action, exc.reason)
                return ToolResult.from_exception(exc)
            except HttpClientError as exc:
                logger.info("cdp_error tool=%s: %s", tool, exc)
                return ToolResult.error(
                    f"{tool} failed: {exc}",
                    tool=tool,
                    category=errors.RESOURCE_UNAVAILABLE,
                    suggestion="Check that the browser is running with remote debugging enabled",
                    retryable=True,
                )
            except Exception as exc:
                logger.exception("tool_call_failed tool=%s", tool)
                return ToolResult.error(
                    f"{tool} failed: {exc}",
                    tool=tool,
                    category=errors.UNKNOWN,
                    suggestion="Inspect the page state with browser_state and retry",
                    retryable=True,
                )

        return wrapper

    return decorator


def _script_failure(tool: str, action: str, result: ScriptResult) -> ToolResult:
    if result.is_not_found:
        return ToolResult.error(
            f"{action}: {result.error}",
            tool=tool,
            category=errors.NOT_FOUND,
            suggestion="Use browser_snapshot or browser_query to find the right element",
        )
    return ToolResult.error(
        f"{action} failed: {result.error}",
        tool=tool,
        category=errors.SCRIPT_FAULT,
        suggestion="The page raised an error; check the script or wait for the page to finish loading",
        retryable=True,
    )


def _preview(value: Any) -> str:
    if isinstance(value, str):
        text = value
    else:
        try:
            text = json.dumps(value, ensure_ascii=False, indent=2, default=str)
        except (TypeError, ValueError):
            text = repr(value)
    if len(text) > _SCRIPT_RESULT_LIMIT:
        return text[:_SCRIPT_RESULT_LIMIT] + f"\n... (truncated, {len(text)} chars total)"
    return text


def _image_size(data_b64: str) -> tuple[int | None, int | None, int]:
    try:
        raw = base64.b64decode(data_b64, validate=False)
    except (binascii.Error, ValueError):
        return None, None, 0
    try:
        with Image.open(io.BytesIO(raw)) as img:
            width, height = img.size
    except (UnidentifiedImageError, OSError):
        return None, None, len(raw)
    return width, height, len(raw)


class BrowserController:
    """Control layer for a single live page."""

    def __init__(
        self,
        config: BrowserConfig | None = None,
        *,
        host: Any = None,
        host_factory: HostFactory | None = None,
        security: Any = None,
    ) -> None:
        self.config = config or BrowserConfig()
        self._host_factory = host_factory
        self.security = security or LocalSecurityPolicy(self.config.security)
        self.telemetry = TelemetryCapture(
            console_capacity=self.config.console_capacity,
            network_capacity=self.config.network_capacity,
        )
        self.refs = RefTable()
        self._host: Any = None
        self._screenshot_pool: ThreadPoolExecutor | None = None
        if host is not None:
            self._bind(host)

    # ─────────────────────────────────────────────────────────────────────
    # Host lifecycle
    # ─────────────────────────────────────────────────────────────────────

    @property
    def host(self) -> Any:
        return self._host

    def _bind(self, host: Any) -> None:
        self._host = host
        self.executor = ScriptExecutor(host)
        self.navigation = NavigationController(host, self.security, self.config, on_invalidate=self.refs.reset)
        self.waiter = WaitCoordinator(host, self.executor, poll_interval_ms=self.config.wait_poll_interval_ms)
        self.snapshots = AccessibilitySnapshotBuilder(
            self.executor, self.refs, max_depth=self.config.snapshot_max_depth
        )
        self.telemetry.attach(host)

    def ensure_host(self, tool: str) -> Any:
        if self._host is not None:
            return self._host
        if self._host_factory is not None:
            try:
                self._bind(self._host_factory(self.config))
            except (HttpClientError, OSError) as exc:
                raise ResourceUnavailable(
                    tool=tool,
                    action="connect",
                    reason=f"Browser is not available: {exc}",
                    suggestion=(
                        f"Start Chrome with --remote-debugging-port={self.config.cdp_port} "
                        "(or set AGENT_BROWSER_PORT) and retry"
                    ),
                ) from exc
            return self._host
        raise ResourceUnavailable(
            tool=tool,
            action="connect",
            reason="Browser is not initialized",
            suggestion="Initialize the browser first, then retry",
        )

    def close(self) -> None:
        self.telemetry.detach()
        if self._screenshot_pool is not None:
            self._screenshot_pool.shutdown(wait=False, cancel_futures=True)
            self._screenshot_pool = None
        host = self._host
        self._host = None
        self.refs.reset()
        closer = getattr(host, "close", None)
        if callable(closer):
            closer()

    # ─────────────────────────────────────────────────────────────────────
    # Navigation
    # ─────────────────────────────────────────────────────────────────────

    @tool_boundary("browser_navigate")
    def navigate(
        self, url: str, timeout: int | None = None, wait_for_selector: str | None = None, retries: int = 1
    ) -> ToolResult:
        self.ensure_host("browser_navigate")
        result = self.navigation.navigate(url, timeout=timeout, wait_for_selector=wait_for_selector, retries=retries)
        meta = result.to_dict()

        if not result.success:
            lines = [
                f"Navigation failed: {result.error}",
                f"URL: {result.url}",
                f"Error Category: {result.category}",
                f"Suggestion: {result.suggestion}",
            ]
            if result.attempts > 1:
                lines.insert(2, f"Attempts: {result.attempts}")
            if result.retryable:
                lines.append(RETRY_NOTE)
            return ToolResult(success=False, output="\n".join(lines), metadata=meta)

        lines = [f"Successfully navigated to: {result.url}", f"Title: {result.title}", f"Load time: {result.load_time}ms"]
        if result.warning == "selector_not_found":
            meta["selectorFound"] = False
            lines.append(
                f'[WARN] Selector "{wait_for_selector}" not found after navigation. '
                "Use browser_snapshot to see available elements or increase the timeout."
            )
        return ToolResult.ok("\n".join(lines), meta)

    def _history_result(self, moved: bool, direction: str) -> ToolResult:
        if not moved:
            return ToolResult.ok(f"Cannot go {direction}: no history entry", {"navigated": False})
        state = self._host.get_state()
        return ToolResult.ok(
            f"Went {direction} to: {state.url}\nTitle: {state.title}",
            {"navigated": True, **state.to_dict()},
        )

    @tool_boundary("browser_back")
    def back(self) -> ToolResult:
        self.ensure_host("browser_back")
        return self._history_result(self.navigation.go_back(), "back")

    @tool_boundary("browser_forward")
    def forward(self) -> ToolResult:
        self.ensure_host("browser_forward")
        return self._history_result(self.navigation.go_forward(), "forward")

    @tool_boundary("browser_reload")
    def reload(self) -> ToolResult:
        self.ensure_host("browser_reload")
        self.navigation.reload()
        state = self._host.get_state()
        return ToolResult.ok(f"Reloaded: {state.url}\nTitle: {state.title}", state.to_dict())

    @tool_boundary("browser_stop")
    def stop(self) -> ToolResult:
        self.ensure_host("browser_stop")
        self.navigation.stop()
        return ToolResult.ok("Stopped loading", {"stopped": True})

    # ─────────────────────────────────────────────────────────────────────
    # Scripts and waits
    # ─────────────────────────────────────────────────────────────────────

    @tool_boundary("browser_evaluate")
    def evaluate(self, script: str) -> ToolResult:
        if not isinstance(script, str) or not script.strip():
            raise ValidationError(
                tool="browser_evaluate",
                action="validate",
                reason="script is required",
                suggestion='Provide JavaScript, e.g. { "script": "document.title" }',
            )
        self.ensure_host("browser_evaluate")
        result = self.executor.evaluate(script)
        if not result.ok:
            return _script_failure("browser_evaluate", "Script", result)
        return ToolResult.ok(f"Result:\n{_preview(result.value)}", {"result": result.value})

    @tool_boundary("browser_wait")
    def wait(
        self,
        selector: str | None = None,
        text: str | None = None,
        text_gone: str | None = None,
        time: int | None = None,
        timeout: int | None = None,
        cancel: threading.Event | None = None,
    ) -> ToolResult:
        condition = WaitCondition.from_args(
            {"selector": selector, "text": text, "textGone": text_gone, "time": time, "timeout": timeout},
            default_timeout=self.config.wait_timeout_ms,
        )
        self.ensure_host("browser_wait")
        outcome = self.waiter.wait(condition, cancel)
        meta = outcome.to_dict()
        if outcome.cancelled:
            return ToolResult.error(
                f"Wait for {condition.describe()} cancelled after {outcome.elapsed_ms}ms",
                tool="browser_wait",
                category=errors.CANCELLED,
                details=meta,
            )
        if outcome.found:
            return ToolResult.ok(f"Condition met: {condition.describe()} ({outcome.elapsed_ms}ms)", meta)
        # A timeout is a negative result, not an error.
        return ToolResult(
            success=False,
            output=(
                f"Timed out waiting for {condition.describe()} after {outcome.elapsed_ms}ms\n"
                "Suggestion: increase the timeout or check the condition with browser_snapshot"
            ),
            metadata=meta,
        )

    # ─────────────────────────────────────────────────────────────────────
    # Telemetry
    # ─────────────────────────────────────────────────────────────────────

    @tool_boundary("browser_console")
    def console(self, level: str = "all", text: str | None = None, limit: int = 50, clear: bool = False) -> ToolResult:
        entries = self.telemetry.get_console_logs(level=level, text=text, limit=limit)
        meta: dict[str, Any] = {"count": len(entries), "logs": [e.to_dict() for e in entries]}
        if clear:
            meta["cleared"] = self.telemetry.clear_console_logs()
        if not entries:
            return ToolResult.ok(f"No console messages (level={level})", meta)
        lines = [f"Console messages ({len(entries)}):"]
        for e in entries:
            where = f" ({e.source}:{e.line})" if e.source and e.line is not None else ""
            lines.append(f"[{e.level.upper()}] {e.message}{where}")
        return ToolResult.ok("\n".join(lines), meta)

    @tool_boundary("browser_network")
    def network(
        self,
        type: str = "all",
        status: str = "all",
        url_pattern: str | None = None,
        limit: int = 50,
        clear: bool = False,
    ) -> ToolResult:
        entries = self.telemetry.get_network_requests(type=type, status=status, url_pattern=url_pattern, limit=limit)
        summary = summarize_network(entries)
        meta: dict[str, Any] = {"summary": summary, "requests": [e.to_dict() for e in entries]}
        if clear:
            meta["cleared"] = self.telemetry.clear_network_requests()
        if not entries:
            return ToolResult.ok("No network requests captured", meta)
        lines = [
            f"Network requests ({summary['total']}): "
            f"{summary['success']} ok, {summary['error']} failed, {summary['pending']} pending"
        ]
        for e in entries:
            code = e.error or (str(e.status) if e.status is not None else "pending")
            took = f" {e.duration}ms" if e.duration is not None else ""
            lines.append(
                f"{e.method} {code} {truncate_url(redact_url(e.url))} [{e.resource_type}] {format_bytes(e.size)}{took}"
            )
        return ToolResult.ok("\n".join(lines), meta)

    # ─────────────────────────────────────────────────────────────────────
    # Page structure
    # ─────────────────────────────────────────────────────────────────────

    @tool_boundary("browser_snapshot")
    def snapshot(
        self, selector: str | None = None, max_depth: int | None = None, interactive_only: bool = False
    ) -> ToolResult:
        self.ensure_host("browser_snapshot")
        result = self.snapshots.snapshot(selector, max_depth=max_depth, interactive_only=interactive_only)
        if result.is_not_found:
            return ToolResult.error(
                "Root element not found",
                tool="browser_snapshot",
                category=errors.NOT_FOUND,
                suggestion="Check the selector or omit it to snapshot the whole page",
                details={"selector": selector, "reason": result.error},
            )
        if not result.ok:
            return _script_failure("browser_snapshot", "Snapshot", result)

        nodes = result.value
        state = self._host.get_state()
        tree = format_tree(nodes) or "(empty)"
        output = (
            f"Page Snapshot: {state.title}\nURL: {state.url}\n\n{tree}\n\n"
            "Refs are valid until the next snapshot or navigation."
        )
        return ToolResult.ok(
            output,
            {
                "url": state.url,
                "title": state.title,
                "generation": self.refs.generation,
                "tree": [n.to_dict() for n in nodes],
                "nodes": [n.to_dict(include_children=False) for n in flatten_nodes(nodes)],
            },
        )

    @tool_boundary("browser_resolve_ref")
    def resolve_ref(self, ref: str) -> ToolResult:
        self.ensure_host("browser_resolve_ref")
        handle = self.refs.resolve(ref)
        if handle is None:
            return ToolResult.error(
                f"Unknown ref {ref!r} (snapshot generation {self.refs.generation})",
                tool="browser_resolve_ref",
                category=errors.NOT_FOUND,
                suggestion="Refs expire on navigation and on every snapshot; take a new browser_snapshot",
            )
        result = self.executor.call("describe_ref", handle)
        if not result.ok:
            return _script_failure("browser_resolve_ref", f"Ref {ref}", result)
        info = result.value or {}
        return ToolResult.ok(
            f"[{ref}] <{info.get('tag')}> {info.get('text', '')}".rstrip(),
            {"ref": ref, "generation": self.refs.generation, "element": info},
        )

    @tool_boundary("browser_query")
    def query(self, selector: str, limit: int = 20) -> ToolResult:
        if not isinstance(selector, str) or not selector.strip():
            raise ValidationError(
                tool="browser_query",
                action="validate",
                reason="selector is required",
                suggestion='Provide a CSS selector, e.g. { "selector": "a[href]" }',
            )
        self.ensure_host("browser_query")
        try:
            elements = self._host.query_elements(selector, limit)
        except PageScriptError as exc:
            return ToolResult.error(
                f"Query failed: {exc}",
                tool="browser_query",
                category=errors.NOT_FOUND,
                suggestion="Check the CSS selector syntax",
            )
        meta = {"selector": selector, "count": len(elements), "elements": [e.to_dict() for e in elements]}
        if not elements:
            return ToolResult.ok(f'No elements match "{selector}"', meta)
        lines = [f'{len(elements)} element(s) match "{selector}":']
        for i, el in enumerate(elements):
            ident = f"#{el.id}" if el.id else ""
            lines.append(f"{i + 1}. <{el.tag}{ident}> {el.text[:80]}".rstrip())
        return ToolResult.ok("\n".join(lines), meta)

    # ─────────────────────────────────────────────────────────────────────
    # Page actions
    # ─────────────────────────────────────────────────────────────────────

    def _target(
        self, tool: str, ref: str | None, selector: str | None, *, required: bool = True
    ) -> dict[str, Any] | None:
        """Page-side target for a snapshot ref (preferred) or a CSS selector."""
        if ref:
            handle = self.refs.resolve(ref)
            if handle is None:
                raise SmartToolError(
                    tool=tool,
                    action="resolve",
                    reason=f"Unknown ref {ref!r} (snapshot generation {self.refs.generation})",
                    suggestion="Refs expire on navigation and on every snapshot; take a new browser_snapshot",
                    category=errors.NOT_FOUND,
                )
            return {"handle": handle}
        if selector:
            return {"selector": selector}
        if required:
            raise ValidationError(
                tool=tool,
                action="validate",
                reason="ref or selector is required",
                suggestion='Pass a ref from browser_snapshot, e.g. { "ref": "e3" }, or a CSS selector',
            )
        return None

    @staticmethod
    def _label(ref: str | None, selector: str | None) -> str:
        return f"ref {ref}" if ref else f'"{selector}"'

    @tool_boundary("browser_click")
    def click(self, ref: str | None = None, selector: str | None = None) -> ToolResult:
        self.ensure_host("browser_click")
        target = self._target("browser_click", ref, selector)
        result = self.executor.call("click_element", target)
        if not result.ok:
            return _script_failure("browser_click", f"Click {self._label(ref, selector)}", result)
        info = result.value or {}
        lines = [f"Clicked <{info.get('tag')}> {info.get('text', '')}".rstrip()]
        if info.get("href"):
            lines.append(f"Link: {info['href']}")
        if info.get("disabled"):
            lines.append("[WARN] Element is disabled; the click may have had no effect")
        return ToolResult.ok("\n".join(lines), {"ref": ref, "selector": selector, "element": info})

    @tool_boundary("browser_type")
    def type(
        self,
        text: str,
        ref: str | None = None,
        selector: str | None = None,
        clear: bool = False,
        submit: bool = False,
    ) -> ToolResult:
        if not isinstance(text, str):
            raise ValidationError(
                tool="browser_type",
                action="validate",
                reason="text is required",
                suggestion='Provide the text to type, e.g. { "ref": "e3", "text": "hello" }',
            )
        self.ensure_host("browser_type")
        target = self._target("browser_type", ref, selector)
        result = self.executor.call("type_text", target, text, bool(clear), bool(submit))
        if not result.ok:
            return _script_failure("browser_type", f"Type into {self._label(ref, selector)}", result)
        info = result.value or {}
        output = f"Typed {len(text)} character(s) into <{info.get('tag')}> {self._label(ref, selector)}"
        if info.get("submitted"):
            output += "\nForm submitted"
        return ToolResult.ok(output, {"ref": ref, "selector": selector, **info})

    @tool_boundary("browser_fill")
    def fill(self, fields: list[dict[str, Any]], submit: bool = False, form_selector: str | None = None) -> ToolResult:
        if not isinstance(fields, list) or not fields:
            raise ValidationError(
                tool="browser_fill",
                action="validate",
                reason="fields must be a non-empty list",
                suggestion='Use e.g. { "fields": [{ "ref": "e3", "value": "alice" }] }',
            )
        self.ensure_host("browser_fill")
        results: list[dict[str, Any]] = []
        for index, field in enumerate(fields):
            if not isinstance(field, dict):
                raise ValidationError(
                    tool="browser_fill",
                    action="validate",
                    reason=f"fields[{index}] must be an object",
                    suggestion='Each field needs a ref or selector and a value, e.g. { "ref": "e3", "value": "x" }',
                )
            ref = field.get("ref")
            selector = field.get("selector")
            kind = field.get("type")
            if kind is not None and kind not in _FIELD_KINDS:
                raise ValidationError(
                    tool="browser_fill",
                    action="validate",
                    reason=f"fields[{index}].type {kind!r} is not supported",
                    suggestion=f"Use one of: {', '.join(_FIELD_KINDS)}",
                )
            name = str(field.get("name") or ref or selector or f"field {index}")
            entry: dict[str, Any] = {"field": name, "success": False}
            try:
                target = self._target("browser_fill", ref, selector)
            except SmartToolError as exc:
                if exc.category == errors.VALIDATION_ERROR:
                    raise
                entry["error"] = exc.reason
                results.append(entry)
                continue
            value = field.get("value")
            result = self.executor.call("fill_field", target, "" if value is None else value, kind)
            if result.ok:
                entry["success"] = True
                entry.update(result.value or {})
            else:
                entry["error"] = result.error
            results.append(entry)

        submitted: dict[str, Any] = {"attempted": False, "success": False}
        if submit:
            submitted["attempted"] = True
            outcome = self.executor.call("submit_form", form_selector)
            submitted["success"] = outcome.ok
            if not outcome.ok:
                submitted["error"] = outcome.error

        filled = sum(1 for r in results if r["success"])
        lines = [f"Form fill: {filled}/{len(results)} field(s) filled"]
        for r in results:
            mark = "ok" if r["success"] else "failed"
            lines.append(f"- {r['field']}: {mark}" + (f" ({r['error']})" if r.get("error") else ""))
        if submit:
            lines.append("Form submitted" if submitted["success"] else f"Form submit failed: {submitted.get('error')}")
        ok = filled == len(results) and (not submit or submitted["success"])
        return ToolResult(success=ok, output="\n".join(lines), metadata={"results": results, "submit": submitted})

    @tool_boundary("browser_scroll")
    def scroll(
        self,
        direction: str = "down",
        amount: int | None = None,
        ref: str | None = None,
        selector: str | None = None,
    ) -> ToolResult:
        if direction not in _SCROLL_DIRECTIONS:
            raise ValidationError(
                tool="browser_scroll",
                action="validate",
                reason=f"Unknown direction: {direction}",
                suggestion=f"Use one of: {', '.join(_SCROLL_DIRECTIONS)}",
            )
        self.ensure_host("browser_scroll")
        target = self._target("browser_scroll", ref, selector, required=False)
        step = int(amount) if amount is not None else _SCROLL_STEP
        result = self.executor.call("scroll_page", target, direction, step)
        if not result.ok:
            return _script_failure("browser_scroll", f"Scroll to {self._label(ref, selector)}", result)
        pos = result.value or {}
        where = f"Scrolled to {self._label(ref, selector)}" if target else f"Scrolled {direction}"
        return ToolResult.ok(f"{where} (position y={pos.get('y')} of {pos.get('height')})", pos)

    @tool_boundary("browser_extract_text")
    def extract_text(
        self, ref: str | None = None, selector: str | None = None, max_length: int = _SCRIPT_RESULT_LIMIT
    ) -> ToolResult:
        self.ensure_host("browser_extract_text")
        target = self._target("browser_extract_text", ref, selector, required=False)
        result = self.executor.call("extract_text", target)
        if not result.ok:
            return _script_failure("browser_extract_text", f"Text of {self._label(ref, selector)}", result)
        text = str(result.value or "")
        limit = max(0, int(max_length))
        truncated = len(text) > limit
        output = text[:limit] + (f"\n... (truncated, {len(text)} chars total)" if truncated else "")
        return ToolResult.ok(output or "(no text)", {"length": len(text), "truncated": truncated})

    @tool_boundary("browser_screenshot")
    def screenshot(
        self,
        format: str = "png",
        quality: int = 80,
        full_page: bool = False,
        selector: str | None = None,
        timeout: int | None = None,
        cancel: threading.Event | None = None,
    ) -> ToolResult:
        fmt = str(format or "png").lower()
        fmt = "jpeg" if fmt == "jpg" else fmt
        if fmt not in _MIME_TYPES:
            raise ValidationError(
                tool="browser_screenshot",
                action="validate",
                reason=f"Unsupported format: {format}",
                suggestion="Use png, jpeg or webp",
            )
        host = self.ensure_host("browser_screenshot")
        options = ScreenshotOptions(format=fmt, quality=int(quality), full_page=bool(full_page), selector=selector)
        internal_ms = int(timeout or self.config.screenshot_timeout_ms)
        # Caller-level bound, strictly above the host's own timeout.
        budget_s = (internal_ms + self.config.screenshot_safety_margin_ms) / 1000.0
        cancel = cancel or threading.Event()

        if self._screenshot_pool is None:
            self._screenshot_pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="agent-browser-shot")
        future = self._screenshot_pool.submit(host.screenshot, options, internal_ms)
        deadline = time.monotonic() + budget_s
        while True:
            if cancel.is_set():
                future.cancel()
                return ToolResult.error(
                    "Screenshot cancelled by user", tool="browser_screenshot", category=errors.CANCELLED
                )
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                future.cancel()
                return ToolResult.error(
                    f"Screenshot timed out after {internal_ms}ms",
                    tool="browser_screenshot",
                    category=errors.TIMEOUT,
                    suggestion="Retry with a smaller capture (no full_page) or a longer timeout",
                    retryable=True,
                )
            try:
                data = future.result(timeout=min(0.05, remaining))
                break
            except FutureTimeout:
                continue
            except PageScriptError as exc:
                return ToolResult.error(
                    f"Screenshot failed: {exc}",
                    tool="browser_screenshot",
                    category=errors.NOT_FOUND,
                    suggestion="Check the selector with browser_query",
                )

        width, height, size = _image_size(data)
        meta = {"format": fmt, "width": width, "height": height, "bytes": size, "fullPage": bool(full_page)}
        if selector:
            meta["selector"] = selector
        dims = f"{width}x{height}" if width and height else "unknown size"
        return ToolResult.with_image(
            f"Screenshot captured ({fmt}, {dims}, {format_bytes(size)})", data, _MIME_TYPES[fmt], meta
        )

    @tool_boundary("browser_state")
    def state(self) -> ToolResult:
        self.ensure_host("browser_state")
        state = self._host.get_state()
        if state.error is None and self.navigation.last_error:
            state.error = self.navigation.last_error
        meta = {
            **state.to_dict(),
            "refs": len(self.refs),
            "generation": self.refs.generation,
            "network": summarize_network(self.telemetry.get_network_requests()),
        }
        lines = [
            f"URL: {state.url}",
            f"Title: {state.title}",
            f"Loading: {'yes' if state.is_loading else 'no'}",
            f"Back: {'yes' if state.can_go_back else 'no'} / Forward: {'yes' if state.can_go_forward else 'no'}",
        ]
        if state.error:
            lines.append(f"Last error: {state.error}")
        return ToolResult.ok("\n".join(lines), meta)

    # ─────────────────────────────────────────────────────────────────────
    # Security
    # ─────────────────────────────────────────────────────────────────────

    @tool_boundary("browser_security")
    def security_info(self, action: str = "check", url: str | None = None, limit: int = 50, **settings: Any) -> ToolResult:
        if action == "check":
            if not url:
                raise ValidationError(
                    tool="browser_security",
                    action="validate",
                    reason="url is required for action=check",
                    suggestion='Use { "action": "check", "url": "https://example.com" }',
                )
            verdict = self.security.check_url_safety(url)
            lines = [f"{'SAFE' if verdict.safe else 'UNSAFE'}: {url} (risk score {verdict.risk_score}/100)"]
            lines += [f"- {w}" for w in verdict.warnings]
            return ToolResult.ok("\n".join(lines), verdict.to_dict())
        if action == "stats":
            stats = self.security.get_stats()
            return ToolResult.ok("\n".join(f"{k}: {v}" for k, v in stats.items()), {"stats": stats})
        if action == "events":
            events = self.security.get_events(limit)
            lines = [f"{e.get('type')}: {e.get('url')} ({e.get('reason')})" for e in events]
            return ToolResult.ok("\n".join(lines) or "No security events", {"events": events})
        if action == "config":
            if settings:
                updater = getattr(self.security, "update_config", None)
                if not callable(updater):
                    raise ValidationError(
                        tool="browser_security",
                        action="configure",
                        reason="The active security policy is read-only",
                        suggestion="Change the policy where it is stored",
                    )
                try:
                    updater(**settings)
                except ValueError as exc:
                    raise ValidationError(
                        tool="browser_security",
                        action="configure",
                        reason=str(exc),
                        suggestion="Use allow_list, custom_block_list, block_threshold, warning_threshold, "
                        "url_filtering_enabled or weights",
                    ) from exc
            config = self.security.get_config()
            return ToolResult.ok("\n".join(f"{k}: {v}" for k, v in config.items()), {"config": config})
        raise ValidationError(
            tool="browser_security",
            action="validate",
            reason=f"Unknown action: {action}",
            suggestion="Use one of: check, stats, events, config",
        )
