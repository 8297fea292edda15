"""
Script execution inside the live page.

ScriptExecutor never raises: every call yields a ScriptResult that is either
a value, a "not found" sentinel reported by the page, or a fault.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .js_ops import OPERATIONS, build_call

logger = logging.getLogger("agent_browser.script")

OK = "ok"
NOT_FOUND = "not_found"
FAULT = "fault"


@dataclass(slots=True, frozen=True)
class ScriptResult:
    status: str
    value: Any = None
    error: str | None = None

    @classmethod
    def success(cls, value: Any) -> ScriptResult:
        return cls(OK, value=value)

    @classmethod
    def not_found(cls, message: str) -> ScriptResult:
        return cls(NOT_FOUND, error=message)

    @classmethod
    def fault(cls, message: str) -> ScriptResult:
        return cls(FAULT, error=message)

    @property
    def ok(self) -> bool:
        return self.status == OK

    @property
    def is_not_found(self) -> bool:
        return self.status == NOT_FOUND

    @property
    def is_fault(self) -> bool:
        return self.status == FAULT


def _sentinel(value: Any) -> str | None:
    if isinstance(value, dict) and "__error" in value:
        return str(value.get("__error") or "Not found")
    return None


class ScriptExecutor:
    """Runs fragments and named operations through a BrowserHost."""

    def __init__(self, host: Any) -> None:
        self.host = host

    def evaluate(self, fragment: str) -> ScriptResult:
        """Run a caller-supplied fragment as-is."""
        try:
            value = self.host.evaluate(fragment)
        except Exception as exc:
            logger.warning("script fault: %s", exc)
            return ScriptResult.fault(str(exc) or type(exc).__name__)
        missing = _sentinel(value)
        if missing is not None:
            return ScriptResult.not_found(missing)
        return ScriptResult.success(value)

    def call(self, operation: str, *args: Any) -> ScriptResult:
        """Run a named page operation with JSON-encoded arguments."""
        if operation not in OPERATIONS:
            return ScriptResult.fault(f"Unknown page operation: {operation}")
        try:
            source = build_call(operation, *args)
        except (TypeError, ValueError) as exc:
            return ScriptResult.fault(f"Arguments for {operation} are not serialisable: {exc}")
        return self.evaluate(source)
