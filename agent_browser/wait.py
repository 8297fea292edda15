"""
Waiting for page conditions.

Conditions:
- time: fixed delay
- selector: element presence (host primitive)
- text / text_gone: visible page text polled every 200ms

Cancellation uses a threading.Event; the loop sleeps on it, so setting the
event ends the wait at once with `cancelled=True`.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any

from .errors import ValidationError
from .script import ScriptExecutor

logger = logging.getLogger("agent_browser.wait")

SELECTOR = "selector"
TEXT = "text"
TEXT_GONE = "text_gone"
TIME = "time"
KINDS = (SELECTOR, TEXT, TEXT_GONE, TIME)


@dataclass(slots=True, frozen=True)
class WaitCondition:
    kind: str
    value: Any
    timeout: int = 10_000

    @classmethod
    def selector(cls, selector: str, timeout: int = 10_000) -> WaitCondition:
        return cls(SELECTOR, selector, timeout)

    @classmethod
    def text(cls, text: str, timeout: int = 10_000) -> WaitCondition:
        return cls(TEXT, text, timeout)

    @classmethod
    def text_gone(cls, text: str, timeout: int = 10_000) -> WaitCondition:
        return cls(TEXT_GONE, text, timeout)

    @classmethod
    def time(cls, delay: int) -> WaitCondition:
        return cls(TIME, int(delay), int(delay))

    @classmethod
    def from_args(cls, args: dict[str, Any], default_timeout: int = 10_000) -> WaitCondition:
        """Build from tool arguments; exactly one of selector/text/textGone/time."""
        timeout = int(args.get("timeout") or default_timeout)
        given = [
            (kind, args.get(key))
            for kind, key in ((SELECTOR, "selector"), (TEXT, "text"), (TEXT_GONE, "textGone"), (TIME, "time"))
            if args.get(key) not in (None, "")
        ]
        if len(given) != 1:
            raise ValidationError(
                tool="browser_wait",
                action="validate",
                reason="Exactly one of selector, text, textGone or time is required",
                suggestion='Use e.g. { "text": "Welcome" } or { "selector": "#app", "timeout": 5000 }',
            )
        kind, value = given[0]
        if kind == TIME:
            try:
                delay = int(value)
            except (TypeError, ValueError) as exc:
                raise ValidationError(
                    tool="browser_wait",
                    action="validate",
                    reason=f"time must be a number of milliseconds, got {value!r}",
                    suggestion='Use e.g. { "time": 1000 }',
                ) from exc
            return cls.time(max(0, delay))
        return cls(kind, str(value), max(0, timeout))

    def describe(self) -> str:
        if self.kind == TIME:
            return f"{self.value}ms"
        if self.kind == TEXT_GONE:
            return f'text "{self.value}" to disappear'
        if self.kind == TEXT:
            return f'text "{self.value}"'
        return f'selector "{self.value}"'


@dataclass(slots=True, frozen=True)
class WaitOutcome:
    found: bool
    elapsed_ms: int
    condition: WaitCondition
    cancelled: bool = False

    @property
    def timed_out(self) -> bool:
        return not self.found and not self.cancelled

    def to_dict(self) -> dict[str, Any]:
        return {
            "found": self.found,
            "elapsedMs": self.elapsed_ms,
            "cancelled": self.cancelled,
            "timedOut": self.timed_out,
            "condition": self.condition.kind,
            "value": self.condition.value,
            "timeout": self.condition.timeout,
        }


class WaitCoordinator:
    """Bounded polling over host and script primitives."""

    def __init__(self, host: Any, executor: ScriptExecutor | None = None, *, poll_interval_ms: int = 200) -> None:
        self.host = host
        self.executor = executor or ScriptExecutor(host)
        self.poll_interval_ms = poll_interval_ms

    def wait(self, condition: WaitCondition, cancel: threading.Event | None = None) -> WaitOutcome:
        cancel = cancel or threading.Event()
        start = time.monotonic()

        def elapsed() -> int:
            return int((time.monotonic() - start) * 1000)

        if condition.kind == TIME:
            if cancel.wait(max(0, condition.value) / 1000.0):
                return WaitOutcome(False, elapsed(), condition, cancelled=True)
            return WaitOutcome(True, elapsed(), condition)

        if condition.kind == SELECTOR:
            if cancel.is_set():
                return WaitOutcome(False, elapsed(), condition, cancelled=True)
            try:
                found = bool(self.host.wait_for_element(condition.value, condition.timeout, cancel=cancel))
            except Exception as exc:
                logger.debug("wait selector=%s failed: %s", condition.value, exc)
                found = False
            return WaitOutcome(found, elapsed(), condition, cancelled=cancel.is_set() and not found)

        if condition.kind not in (TEXT, TEXT_GONE):
            raise ValueError(f"Unknown wait condition: {condition.kind}")

        want_present = condition.kind == TEXT
        deadline = start + condition.timeout / 1000.0
        interval = self.poll_interval_ms / 1000.0
        while True:
            if cancel.is_set():
                return WaitOutcome(False, elapsed(), condition, cancelled=True)
            result = self.executor.call("page_text_contains", condition.value)
            if result.ok:
                if bool(result.value) == want_present:
                    return WaitOutcome(True, elapsed(), condition)
            else:
                # A reloading page cannot answer yet.
                logger.debug("wait text poll failed: %s", result.error)
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                # Past the deadline; guards against float truncation below timeout.
                return WaitOutcome(False, max(elapsed(), condition.timeout), condition)
            if cancel.wait(min(interval, remaining)):
                return WaitOutcome(False, elapsed(), condition, cancelled=True)
