from __future__ import annotations

import pytest

from agent_browser import navigation
from agent_browser.config import BrowserConfig
from agent_browser.errors import ValidationError
from agent_browser.host import NavigationResult
from agent_browser.navigation import (
    NavigationController,
    classify_navigation_error,
    detect_domain_typo,
    normalize_url,
)
from agent_browser.security import LocalSecurityPolicy


class _FakeHost:
    def __init__(
        self,
        result: NavigationResult | None = None,
        *,
        exc: Exception | None = None,
        element_found: bool = True,
        history: bool = True,
    ) -> None:
        self.result = result
        self.exc = exc
        self.element_found = element_found
        self.history = history
        self.calls: list[tuple] = []
        self.timeout: int | None = None

    def set_navigation_timeout(self, timeout: int) -> None:
        self.timeout = timeout

    def navigate(self, url: str) -> NavigationResult:
        self.calls.append(("navigate", url))
        if self.exc is not None:
            raise self.exc
        return self.result or NavigationResult(success=True, url=url, title="Example Domain", load_time=120)

    def wait_for_element(self, selector: str, timeout: int) -> bool:
        self.calls.append(("wait_for_element", selector, timeout))
        return self.element_found

    def go_back(self) -> bool:
        self.calls.append(("go_back",))
        return self.history

    def go_forward(self) -> bool:
        self.calls.append(("go_forward",))
        return self.history

    def reload(self) -> None:
        self.calls.append(("reload",))

    def stop(self) -> None:
        self.calls.append(("stop",))


class _SettlingHost(_FakeHost):
    def wait_until_settled(self, timeout: int) -> bool:
        self.calls.append(("settle", timeout))
        return True


def _controller(host: _FakeHost, **config) -> tuple[NavigationController, list[int]]:
    invalidations: list[int] = []
    ctl = NavigationController(
        host,
        LocalSecurityPolicy(),
        BrowserConfig(**config),
        on_invalidate=lambda: invalidations.append(1),
    )
    return ctl, invalidations


# ─────────────────────────────────────────────────────────────────────────────
# URL normalization
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("example.com", "https://example.com"),
        ("  example.com/path?q=1 ", "https://example.com/path?q=1"),
        ("localhost:3000", "https://localhost:3000"),
        ("http://example.com", "http://example.com"),
        ("HTTPS://Example.com", "HTTPS://Example.com"),
        ("file:///tmp/page.html", "file:///tmp/page.html"),
    ],
)
def test_normalize_url(raw: str, expected: str) -> None:
    assert normalize_url(raw) == expected


@pytest.mark.parametrize("raw", ["react.dev", "developer.mozilla.org/en-US/", "127.0.0.1:8080", "a.b"])
def test_normalize_url_without_scheme_gets_https(raw: str) -> None:
    assert normalize_url(raw).startswith("https://")


@pytest.mark.parametrize("raw", ["", "   ", "https://", "exa mple.com", "http://host:abc/"])
def test_normalize_url_rejects_invalid(raw: str) -> None:
    with pytest.raises(ValidationError) as info:
        normalize_url(raw)
    assert info.value.category == "validation_error"
    assert info.value.retryable is False


# ─────────────────────────────────────────────────────────────────────────────
# Error classification
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    ("message", "category", "retryable"),
    [
        ('Could not find the site "nope.example" - please check the URL is correct', "dns_error", False),
        ("net::ERR_NAME_NOT_RESOLVED", "dns_error", False),
        ("Connection refused - the site may be down or blocking connections", "connection_refused", False),
        ("Navigation timeout after 30000ms - the page took too long to respond", "timeout", True),
        ("Connection timed out - the site may be slow or unavailable", "timeout", True),
        ("Security certificate error - the site's certificate may be invalid or expired", "ssl_error", False),
        ("Request was blocked - the site may have restricted access", "security_blocked", False),
        ("Something odd happened", "unknown", True),
    ],
)
def test_classify_navigation_error(message: str, category: str, retryable: bool) -> None:
    info = classify_navigation_error(message)
    assert info.category == category
    assert info.retryable is retryable
    assert info.suggestion


def test_typo_hint_wins_and_becomes_the_suggestion() -> None:
    message = 'Could not find the site "gooogle.com". Did you mean "https://google.com"?'
    info = classify_navigation_error(message)
    assert info.category == "typo_detected"
    assert info.suggestion == message
    assert info.retryable is False


def test_detect_domain_typo() -> None:
    assert detect_domain_typo("https://gooogle.com") == "google.com"
    assert detect_domain_typo("https://www.githb.com/x") == "github.com"
    assert detect_domain_typo("https://google.com") is None
    assert detect_domain_typo("https://example.com") is None


# ─────────────────────────────────────────────────────────────────────────────
# NavigationController
# ─────────────────────────────────────────────────────────────────────────────


def test_navigate_success_normalizes_and_invalidates_refs() -> None:
    host = _FakeHost()
    ctl, invalidations = _controller(host)
    result = ctl.navigate("example.com")
    assert result.success is True
    assert result.url == "https://example.com"
    assert result.title == "Example Domain"
    assert result.load_time == 120
    assert host.calls == [("navigate", "https://example.com")]
    assert host.timeout == 30_000
    assert invalidations == [1]
    assert ctl.last_error is None


def test_navigate_passes_timeout_to_host() -> None:
    host = _FakeHost()
    ctl, _ = _controller(host)
    ctl.navigate("https://example.com", timeout=5000)
    assert host.timeout == 5000


def test_blocked_url_never_reaches_the_host() -> None:
    host = _FakeHost()
    ctl, invalidations = _controller(host)
    result = ctl.navigate("https://paypa1.com/login")
    assert result.success is False
    assert result.category == "security_blocked"
    assert result.retryable is False
    assert result.error.startswith("Navigation blocked:")
    assert "(risk score 80/100)" in result.error
    assert host.calls == []
    assert invalidations == [1]
    assert ctl.last_error == result.error


def test_invalid_url_is_a_validation_failure() -> None:
    host = _FakeHost()
    ctl, _ = _controller(host)
    result = ctl.navigate("")
    assert result.success is False
    assert result.category == "validation_error"
    assert result.retryable is False
    assert host.calls == []


def test_dns_failure_with_typo_suggests_the_popular_domain() -> None:
    host = _FakeHost(
        NavigationResult(
            success=False,
            url="https://gooogle.com",
            error='Could not find the site "gooogle.com" - please check the URL is correct',
        )
    )
    ctl, _ = _controller(host)
    result = ctl.navigate("gooogle.com")
    assert result.success is False
    assert result.category == "typo_detected"
    assert 'Did you mean "https://google.com"?' in result.error


def test_dns_failure_without_typo() -> None:
    host = _FakeHost(
        NavigationResult(success=False, url="https://nonexistent-site-xyz.com", error="net::ERR_NAME_NOT_RESOLVED")
    )
    ctl, _ = _controller(host)
    result = ctl.navigate("https://nonexistent-site-xyz.com")
    assert result.category == "dns_error"
    assert result.retryable is False
    assert "Did you mean" not in result.error


def test_host_exception_is_classified_not_raised() -> None:
    host = _FakeHost(exc=RuntimeError("Navigation timeout after 5ms - the page took too long to respond"))
    ctl, _ = _controller(host)
    result = ctl.navigate("https://example.com")
    assert result.success is False
    assert result.category == "timeout"
    assert result.retryable is True


def test_missing_selector_is_a_warning_not_a_failure() -> None:
    host = _FakeHost(element_found=False)
    ctl, _ = _controller(host)
    result = ctl.navigate("https://example.com", wait_for_selector="#app")
    assert result.success is True
    assert result.warning == "selector_not_found"
    assert ("wait_for_element", "#app", 10_000) in host.calls


def test_found_selector_has_no_warning() -> None:
    host = _FakeHost()
    ctl, _ = _controller(host)
    result = ctl.navigate("https://example.com", timeout=3000, wait_for_selector="main")
    assert result.warning is None
    assert ("wait_for_element", "main", 3000) in host.calls


def test_history_uses_settle_signal_when_available() -> None:
    host = _SettlingHost()
    ctl, invalidations = _controller(host, navigation_timeout_ms=7000)
    assert ctl.go_back() is True
    assert ctl.go_forward() is True
    ctl.reload()
    assert host.calls == [
        ("go_back",),
        ("settle", 7000),
        ("go_forward",),
        ("settle", 7000),
        ("reload",),
        ("settle", 7000),
    ]
    assert len(invalidations) == 3


def test_history_without_entry_does_not_settle() -> None:
    host = _SettlingHost(history=False)
    ctl, _ = _controller(host)
    assert ctl.go_back() is False
    assert host.calls == [("go_back",)]


def test_fixed_settle_delay_is_the_fallback(monkeypatch: pytest.MonkeyPatch) -> None:
    slept: list[float] = []
    monkeypatch.setattr(navigation.time, "sleep", lambda s: slept.append(s))
    host = _FakeHost()
    ctl, _ = _controller(host)
    ctl.go_back()
    ctl.reload()
    ctl.stop()
    assert slept == [0.5, 1.0]
    assert host.calls[-1] == ("stop",)


# ─────────────────────────────────────────────────────────────────────────────
# Retries
# ─────────────────────────────────────────────────────────────────────────────


class _SequenceHost(_FakeHost):
    """Answers successive navigations from a scripted list (last one repeats)."""

    def __init__(self, outcomes: list[NavigationResult]) -> None:
        super().__init__()
        self.outcomes = outcomes

    def navigate(self, url: str) -> NavigationResult:
        self.calls.append(("navigate", url))
        return self.outcomes[min(len(self.calls) - 1, len(self.outcomes) - 1)]


_TIMED_OUT = NavigationResult(
    success=False, url="https://example.org/", error="Navigation timeout after 100ms - the page took too long to respond"
)


@pytest.fixture
def slept(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    delays: list[float] = []
    monkeypatch.setattr(navigation.time, "sleep", lambda s: delays.append(s))
    return delays


def test_retryable_failure_is_retried_with_linear_backoff(slept: list[float]) -> None:
    host = _SequenceHost([_TIMED_OUT, NavigationResult(success=True, url="https://example.org/", title="Slow")])
    ctl, invalidations = _controller(host)
    result = ctl.navigate("https://example.org/", retries=3)
    assert result.success is True
    assert result.attempts == 2
    assert result.to_dict()["attempts"] == 2
    assert slept == [1.0]
    assert len(invalidations) == 2


def test_retries_stop_at_the_attempt_budget(slept: list[float]) -> None:
    host = _SequenceHost([_TIMED_OUT])
    ctl, _ = _controller(host, navigation_retry_backoff_ms=10)
    result = ctl.navigate("https://example.org/", retries=3)
    assert result.success is False
    assert result.category == "timeout"
    assert result.attempts == 3
    assert len(host.calls) == 3
    assert slept == [0.01, 0.02]


def test_non_retryable_failure_is_not_retried(slept: list[float]) -> None:
    refused = NavigationResult(
        success=False, url="https://example.com/", error="Connection refused - the site may be down or blocking connections"
    )
    host = _SequenceHost([refused])
    ctl, _ = _controller(host)
    result = ctl.navigate("https://example.com/", retries=5)
    assert result.category == "connection_refused"
    assert result.attempts == 1
    assert len(host.calls) == 1
    assert slept == []


def test_single_attempt_by_default(slept: list[float]) -> None:
    host = _SequenceHost([_TIMED_OUT])
    ctl, _ = _controller(host)
    result = ctl.navigate("https://example.org/")
    assert result.retryable is True
    assert result.attempts == 1
    assert "attempts" not in result.to_dict()
    assert slept == []
