from __future__ import annotations

import threading
from typing import Any

import pytest

from agent_browser.errors import ValidationError
from agent_browser.wait import TEXT, TEXT_GONE, TIME, WaitCondition, WaitCoordinator


class _PollingHost:
    """Answers page_text_contains from a scripted sequence (last value repeats)."""

    def __init__(self, answers: list[Any] | None = None, *, element: Any = True, block: bool = False) -> None:
        self.answers = list(answers or [False])
        self.element = element
        self.block = block
        self.polls = 0
        self.element_calls: list[tuple[str, int]] = []

    def evaluate(self, script: str) -> Any:
        self.polls += 1
        answer = self.answers[min(self.polls - 1, len(self.answers) - 1)]
        if isinstance(answer, Exception):
            raise answer
        return answer

    def wait_for_element(self, selector: str, timeout: int, cancel: threading.Event | None = None) -> bool:
        self.element_calls.append((selector, timeout))
        if self.block:
            # Never matches; returns at the timeout or as soon as cancel is set.
            (cancel or threading.Event()).wait(timeout / 1000.0)
            return False
        if isinstance(self.element, Exception):
            raise self.element
        return bool(self.element)


def _waiter(host: _PollingHost, poll_ms: int = 5) -> WaitCoordinator:
    return WaitCoordinator(host, poll_interval_ms=poll_ms)


def test_from_args_requires_exactly_one_condition() -> None:
    with pytest.raises(ValidationError):
        WaitCondition.from_args({})
    with pytest.raises(ValidationError):
        WaitCondition.from_args({"text": "a", "selector": "#b"})
    with pytest.raises(ValidationError):
        WaitCondition.from_args({"time": "soon"})


def test_from_args_builds_conditions() -> None:
    cond = WaitCondition.from_args({"textGone": "Loading", "timeout": 2500})
    assert (cond.kind, cond.value, cond.timeout) == (TEXT_GONE, "Loading", 2500)

    cond = WaitCondition.from_args({"text": "Hello", "timeout": None}, default_timeout=7000)
    assert (cond.kind, cond.timeout) == (TEXT, 7000)

    cond = WaitCondition.from_args({"time": 250})
    assert (cond.kind, cond.value) == (TIME, 250)

    assert WaitCondition.selector("#app").describe() == 'selector "#app"'
    assert WaitCondition.text_gone("x").describe() == 'text "x" to disappear'


def test_time_condition_completes() -> None:
    outcome = _waiter(_PollingHost()).wait(WaitCondition.time(5))
    assert outcome.found is True
    assert outcome.cancelled is False


def test_text_found_after_a_few_polls() -> None:
    host = _PollingHost([False, False, True])
    outcome = _waiter(host).wait(WaitCondition.text("Welcome", timeout=5000))
    assert outcome.found is True
    assert host.polls == 3


def test_text_never_appears_times_out_within_bounds() -> None:
    host = _PollingHost([False])
    outcome = _waiter(host, poll_ms=10).wait(WaitCondition.text("never", timeout=60))
    assert outcome.found is False
    assert outcome.timed_out is True
    assert outcome.cancelled is False
    assert 60 <= outcome.elapsed_ms < 60 + 2000
    assert host.polls >= 2


def test_timeout_overshoot_stays_under_default_poll_interval() -> None:
    host = _PollingHost([False])
    outcome = WaitCoordinator(host).wait(WaitCondition.text("never", timeout=500))
    assert outcome.timed_out is True
    assert 500 <= outcome.elapsed_ms < 500 + 200


def test_text_gone_waits_for_disappearance() -> None:
    host = _PollingHost([True, True, False])
    outcome = _waiter(host).wait(WaitCondition.text_gone("Loading...", timeout=5000))
    assert outcome.found is True
    assert host.polls == 3


def test_failed_polls_keep_polling() -> None:
    host = _PollingHost([RuntimeError("Execution context was destroyed"), True])
    outcome = _waiter(host).wait(WaitCondition.text("ready", timeout=5000))
    assert outcome.found is True
    assert host.polls == 2


def test_preset_cancel_returns_immediately() -> None:
    host = _PollingHost([False])
    cancel = threading.Event()
    cancel.set()
    outcome = _waiter(host).wait(WaitCondition.text("x", timeout=5000), cancel)
    assert outcome.cancelled is True
    assert outcome.found is False
    assert outcome.timed_out is False
    assert host.polls == 0


def test_cancel_during_wait() -> None:
    host = _PollingHost([False])
    cancel = threading.Event()
    timer = threading.Timer(0.05, cancel.set)
    timer.start()
    try:
        outcome = _waiter(host, poll_ms=20).wait(WaitCondition.text("x", timeout=10_000), cancel)
    finally:
        timer.cancel()
    assert outcome.cancelled is True
    assert outcome.elapsed_ms < 10_000


def test_cancel_during_time_wait() -> None:
    cancel = threading.Event()
    timer = threading.Timer(0.05, cancel.set)
    timer.start()
    try:
        outcome = _waiter(_PollingHost()).wait(WaitCondition.time(10_000), cancel)
    finally:
        timer.cancel()
    assert outcome.cancelled is True
    assert outcome.found is False


def test_selector_uses_the_host_primitive() -> None:
    host = _PollingHost(element=True)
    outcome = _waiter(host).wait(WaitCondition.selector("#app", timeout=1234))
    assert outcome.found is True
    assert host.element_calls == [("#app", 1234)]


def test_cancel_during_selector_wait() -> None:
    host = _PollingHost(block=True)
    cancel = threading.Event()
    timer = threading.Timer(0.05, cancel.set)
    timer.start()
    try:
        outcome = _waiter(host).wait(WaitCondition.selector("#x", timeout=1500), cancel)
    finally:
        timer.cancel()
    assert outcome.cancelled is True
    assert outcome.found is False
    assert outcome.elapsed_ms < 1000


def test_selector_host_error_is_not_found() -> None:
    host = _PollingHost(element=RuntimeError("detached"))
    outcome = _waiter(host).wait(WaitCondition.selector("#app", timeout=10))
    assert outcome.found is False
    assert outcome.timed_out is True


def test_outcome_to_dict() -> None:
    host = _PollingHost([True])
    data = _waiter(host).wait(WaitCondition.text("hi", timeout=100)).to_dict()
    assert data["found"] is True
    assert data["condition"] == "text"
    assert data["value"] == "hi"
    assert data["timeout"] == 100
    assert data["timedOut"] is False
