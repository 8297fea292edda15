"""
Tool registry with dispatch table for the stdio server.

Each handler takes the session controller and the raw tool arguments, parses
the arguments and calls one controller operation.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from ..errors import ValidationError
from .types import ToolResult

if TYPE_CHECKING:
    from ..controller import BrowserController

logger = logging.getLogger("agent_browser.registry")

HandlerFunc = Callable[["BrowserController", dict[str, Any]], ToolResult]

_SECURITY_SETTINGS = (
    "allow_list",
    "custom_block_list",
    "block_threshold",
    "warning_threshold",
    "url_filtering_enabled",
    "weights",
)


class ToolRegistry:
    """Registry for tool handlers."""

    def __init__(self) -> None:
        self._handlers: dict[str, HandlerFunc] = {}

    def register(self, name: str, handler: HandlerFunc) -> None:
        self._handlers[name] = handler

    def register_many(self, handlers: dict[str, HandlerFunc]) -> None:
        self._handlers.update(handlers)

    def get(self, name: str) -> HandlerFunc | None:
        return self._handlers.get(name)

    def has(self, name: str) -> bool:
        return name in self._handlers

    def dispatch(self, name: str, controller: BrowserController, arguments: dict[str, Any]) -> ToolResult:
        """Dispatch a tool call; raises KeyError for unknown tools."""
        handler = self._handlers.get(name)
        if handler is None:
            raise KeyError(f"Unknown tool: {name}")
        return handler(controller, arguments if isinstance(arguments, dict) else {})

    @property
    def tool_names(self) -> list[str]:
        return list(self._handlers)

    def __len__(self) -> int:
        return len(self._handlers)


# ─────────────────────────────────────────────────────────────────────────────
# Argument parsing
# ─────────────────────────────────────────────────────────────────────────────


def _opt_str(args: dict[str, Any], key: str) -> str | None:
    value = args.get(key)
    if value is None:
        return None
    return str(value)


def _opt_int(tool: str, args: dict[str, Any], key: str, default: int | None = None) -> int | None:
    value = args.get(key)
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ValidationError(
            tool=tool, action="validate", reason=f"{key} must be a number", suggestion=f"Pass {key} as an integer"
        )
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(
            tool=tool,
            action="validate",
            reason=f"{key} must be a number, got {value!r}",
            suggestion=f"Pass {key} as an integer",
        ) from exc


def _bool(args: dict[str, Any], key: str, default: bool = False) -> bool:
    value = args.get(key, default)
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


# ─────────────────────────────────────────────────────────────────────────────
# Handlers
# ─────────────────────────────────────────────────────────────────────────────


def _navigate(ctl: BrowserController, args: dict[str, Any]) -> ToolResult:
    return ctl.navigate(
        str(args.get("url") or ""),
        timeout=_opt_int("browser_navigate", args, "timeout"),
        wait_for_selector=_opt_str(args, "wait_for_selector") or _opt_str(args, "waitForSelector"),
        retries=_opt_int("browser_navigate", args, "retries", 1),
    )


def _wait(ctl: BrowserController, args: dict[str, Any]) -> ToolResult:
    return ctl.wait(
        selector=_opt_str(args, "selector"),
        text=_opt_str(args, "text"),
        text_gone=_opt_str(args, "textGone") or _opt_str(args, "text_gone"),
        time=_opt_int("browser_wait", args, "time"),
        timeout=_opt_int("browser_wait", args, "timeout"),
    )


def _console(ctl: BrowserController, args: dict[str, Any]) -> ToolResult:
    return ctl.console(
        level=str(args.get("level") or "all"),
        text=_opt_str(args, "text"),
        limit=_opt_int("browser_console", args, "limit", 50),
        clear=_bool(args, "clear"),
    )


def _network(ctl: BrowserController, args: dict[str, Any]) -> ToolResult:
    return ctl.network(
        type=str(args.get("type") or "all"),
        status=str(args.get("status") or "all"),
        url_pattern=_opt_str(args, "url_pattern") or _opt_str(args, "urlPattern"),
        limit=_opt_int("browser_network", args, "limit", 50),
        clear=_bool(args, "clear"),
    )


def _snapshot(ctl: BrowserController, args: dict[str, Any]) -> ToolResult:
    return ctl.snapshot(
        selector=_opt_str(args, "selector"),
        max_depth=_opt_int("browser_snapshot", args, "max_depth" if "max_depth" in args else "maxDepth"),
        interactive_only=_bool(args, "interactive_only") or _bool(args, "interactiveOnly"),
    )


def _ref_selector(args: dict[str, Any]) -> dict[str, str | None]:
    return {"ref": _opt_str(args, "ref"), "selector": _opt_str(args, "selector")}


def _type(ctl: BrowserController, args: dict[str, Any]) -> ToolResult:
    text = args.get("text")
    return ctl.type(
        text if text is None else str(text),
        clear=_bool(args, "clear"),
        submit=_bool(args, "submit"),
        **_ref_selector(args),
    )


def _fill(ctl: BrowserController, args: dict[str, Any]) -> ToolResult:
    return ctl.fill(
        args.get("fields") or [],
        submit=_bool(args, "submit"),
        form_selector=_opt_str(args, "form_selector") or _opt_str(args, "formSelector"),
    )


def _scroll(ctl: BrowserController, args: dict[str, Any]) -> ToolResult:
    return ctl.scroll(
        direction=str(args.get("direction") or "down"),
        amount=_opt_int("browser_scroll", args, "amount"),
        **_ref_selector(args),
    )


def _extract_text(ctl: BrowserController, args: dict[str, Any]) -> ToolResult:
    key = "max_length" if "max_length" in args else "maxLength"
    return ctl.extract_text(
        max_length=_opt_int("browser_extract_text", args, key, 10_000),
        **_ref_selector(args),
    )


def _screenshot(ctl: BrowserController, args: dict[str, Any]) -> ToolResult:
    return ctl.screenshot(
        format=str(args.get("format") or "png"),
        quality=_opt_int("browser_screenshot", args, "quality", 80),
        full_page=_bool(args, "full_page") or _bool(args, "fullPage"),
        selector=_opt_str(args, "selector"),
        timeout=_opt_int("browser_screenshot", args, "timeout"),
    )


def _security(ctl: BrowserController, args: dict[str, Any]) -> ToolResult:
    settings = {key: args[key] for key in _SECURITY_SETTINGS if key in args}
    return ctl.security_info(
        action=str(args.get("action") or "check"),
        url=_opt_str(args, "url"),
        limit=_opt_int("browser_security", args, "limit", 50),
        **settings,
    )


def create_default_registry() -> ToolRegistry:
    registry = ToolRegistry()
    registry.register_many(
        {
            "browser_navigate": _navigate,
            "browser_back": lambda ctl, args: ctl.back(),
            "browser_forward": lambda ctl, args: ctl.forward(),
            "browser_reload": lambda ctl, args: ctl.reload(),
            "browser_stop": lambda ctl, args: ctl.stop(),
            "browser_evaluate": lambda ctl, args: ctl.evaluate(str(args.get("script") or "")),
            "browser_wait": _wait,
            "browser_console": _console,
            "browser_network": _network,
            "browser_snapshot": _snapshot,
            "browser_resolve_ref": lambda ctl, args: ctl.resolve_ref(str(args.get("ref") or "")),
            "browser_query": lambda ctl, args: ctl.query(
                str(args.get("selector") or ""), limit=_opt_int("browser_query", args, "limit", 20)
            ),
            "browser_click": lambda ctl, args: ctl.click(**_ref_selector(args)),
            "browser_type": _type,
            "browser_fill": _fill,
            "browser_scroll": _scroll,
            "browser_extract_text": _extract_text,
            "browser_screenshot": _screenshot,
            "browser_state": lambda ctl, args: ctl.state(),
            "browser_security": _security,
        }
    )
    logger.debug("registry ready tools=%d", len(registry))
    return registry
