"""
Navigation control: URL normalization, security gating, host navigation and
failure classification.

NavigationController.navigate never raises; every attempt yields a
NavigationResult whose `category`/`suggestion`/`retryable` describe failures.
"""

from __future__ import annotations

import difflib
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Any
from urllib.parse import urlsplit

from . import errors
from .config import BrowserConfig
from .errors import ValidationError
from .host import NavigationResult
from .redaction import redact_url

logger = logging.getLogger("agent_browser.navigation")

_SCHEMES = ("http://", "https://", "file://")

# Well-known hosts used for "Did you mean ...?" hints on DNS failures.
POPULAR_DOMAINS = (
    "google.com",
    "youtube.com",
    "github.com",
    "wikipedia.org",
    "amazon.com",
    "facebook.com",
    "twitter.com",
    "reddit.com",
    "stackoverflow.com",
    "microsoft.com",
    "apple.com",
    "netflix.com",
    "linkedin.com",
    "instagram.com",
    "mozilla.org",
    "python.org",
    "npmjs.com",
    "react.dev",
)


@dataclass(slots=True, frozen=True)
class NavigationErrorInfo:
    category: str
    suggestion: str
    retryable: bool


# Order matters: typo hints win over the DNS failure they are attached to.
_RULES: tuple[tuple[str, tuple[str, ...], str, bool], ...] = (
    (errors.TYPO_DETECTED, ("did you mean",), "", False),
    (
        errors.DNS_ERROR,
        ("could not find", "name_not_resolved"),
        "Check if the URL is spelled correctly. The domain may not exist.",
        False,
    ),
    (
        errors.CONNECTION_REFUSED,
        ("connection refused", "connection_refused"),
        "The server is not accepting connections. It may be down or blocking requests.",
        False,
    ),
    (
        errors.TIMEOUT,
        ("timeout", "timed out"),
        "Try increasing the timeout parameter or the page may be slow/unresponsive.",
        True,
    ),
    (
        errors.SSL_ERROR,
        ("certificate", "ssl", "err_cert"),
        "The website has an invalid SSL certificate. This may indicate a security issue.",
        False,
    ),
    (
        errors.SECURITY_BLOCKED,
        ("blocked", "dangerous"),
        "The URL was blocked for security reasons. Check if the URL is correct.",
        False,
    ),
)


def classify_navigation_error(message: str) -> NavigationErrorInfo:
    lower = str(message or "").lower()
    for category, needles, suggestion, retryable in _RULES:
        if any(n in lower for n in needles):
            # Typo hints carry their own suggestion.
            return NavigationErrorInfo(category, suggestion or str(message), retryable)
    return NavigationErrorInfo(errors.UNKNOWN, "Check the URL and try again.", True)


def normalize_url(url: str) -> str:
    """Prefix `https://` when no known scheme is present; validate the result."""
    raw = str(url or "").strip()
    if not raw:
        raise ValidationError(
            tool="browser_navigate",
            action="validate",
            reason="URL is required for navigation",
            suggestion='Provide a url, e.g. { "url": "https://react.dev" } or { "url": "localhost:3000" }',
        )
    normalized = raw if raw.lower().startswith(_SCHEMES) else f"https://{raw}"
    try:
        parts = urlsplit(normalized)
        # Accessing .port validates the netloc (e.g. "host:abc").
        _ = parts.port
    except ValueError as exc:
        raise ValidationError(
            tool="browser_navigate",
            action="validate",
            reason=f'Invalid URL format "{raw}"',
            suggestion="Use a valid URL such as https://react.dev, developer.mozilla.org or localhost:3000",
        ) from exc
    has_target = bool(parts.path) if parts.scheme == "file" else bool(parts.hostname)
    if not has_target or any(ch.isspace() for ch in (parts.netloc or "")):
        raise ValidationError(
            tool="browser_navigate",
            action="validate",
            reason=f'Invalid URL format "{raw}"',
            suggestion="Use a valid URL such as https://react.dev, developer.mozilla.org or localhost:3000",
        )
    return normalized


def detect_domain_typo(url: str) -> str | None:
    """Return a well-known domain that `url`'s host most likely misspells."""
    try:
        host = (urlsplit(url).hostname or "").lower()
    except ValueError:
        return None
    if host.startswith("www."):
        host = host[4:]
    if not host or host in POPULAR_DOMAINS:
        return None
    matches = difflib.get_close_matches(host, POPULAR_DOMAINS, n=1, cutoff=0.85)
    return matches[0] if matches else None


class NavigationController:
    """Drives host navigation for one page."""

    def __init__(
        self,
        host: Any,
        security: Any,
        config: BrowserConfig | None = None,
        *,
        on_invalidate: Callable[[], None] | None = None,
    ) -> None:
        self.host = host
        self.security = security
        self.config = config or BrowserConfig()
        self.on_invalidate = on_invalidate
        self.last_error: str | None = None

    def _invalidate(self) -> None:
        if self.on_invalidate is not None:
            self.on_invalidate()

    def _failure(self, url: str, message: str, info: NavigationErrorInfo) -> NavigationResult:
        self.last_error = message
        return NavigationResult(
            success=False,
            url=url,
            error=message,
            category=info.category,
            suggestion=info.suggestion,
            retryable=info.retryable,
        )

    def _attempt(self, url: str, timeout: int) -> tuple[NavigationResult, str, NavigationErrorInfo | None]:
        try:
            self.host.set_navigation_timeout(timeout)
            result = self.host.navigate(url)
        except Exception as exc:
            result = NavigationResult(success=False, url=url, error=str(exc) or type(exc).__name__)
        if result.success:
            return result, "", None
        message = result.error or "Navigation failed"
        return result, message, classify_navigation_error(message)

    def navigate(
        self,
        url: str,
        timeout: int | None = None,
        wait_for_selector: str | None = None,
        retries: int = 1,
    ) -> NavigationResult:
        """Navigate; `retries` is the total attempt budget for retryable failures."""
        self._invalidate()
        try:
            normalized = normalize_url(url)
        except ValidationError as exc:
            info = NavigationErrorInfo(errors.VALIDATION_ERROR, exc.suggestion, False)
            return self._failure(str(url or ""), exc.reason, info)

        verdict = self.security.check_url_safety(normalized)
        if not verdict.safe:
            reason = "; ".join(verdict.warnings) or "URL failed the security check"
            message = f"Navigation blocked: {reason} (risk score {verdict.risk_score}/100)"
            info = NavigationErrorInfo(
                errors.SECURITY_BLOCKED,
                "The URL was blocked for security reasons. Check if the URL is correct.",
                False,
            )
            logger.warning("navigate blocked url=%s score=%s", redact_url(normalized), verdict.risk_score)
            return self._failure(normalized, message, info)

        nav_timeout = int(timeout) if timeout else self.config.navigation_timeout_ms
        max_attempts = max(1, int(retries or 1))
        logger.info("navigate url=%s timeout=%sms", redact_url(normalized), nav_timeout)
        attempt = 1
        result, message, info = self._attempt(normalized, nav_timeout)
        while info is not None and info.retryable and attempt < max_attempts:
            delay_ms = self.config.navigation_retry_backoff_ms * attempt
            logger.warning(
                "navigate retry url=%s attempt=%d/%d category=%s next_in=%sms",
                redact_url(normalized),
                attempt,
                max_attempts,
                info.category,
                delay_ms,
            )
            time.sleep(delay_ms / 1000.0)
            self._invalidate()
            attempt += 1
            result, message, info = self._attempt(normalized, nav_timeout)

        if info is not None:
            if info.category == errors.DNS_ERROR:
                guess = detect_domain_typo(normalized)
                if guess:
                    message = f'{message}. Did you mean "https://{guess}"?'
                    info = classify_navigation_error(message)
            logger.info(
                "navigate failed url=%s category=%s attempts=%d", redact_url(normalized), info.category, attempt
            )
            failed = self._failure(result.url or normalized, message, info)
            return replace(failed, attempts=attempt)

        self.last_error = None
        warning = None
        if wait_for_selector:
            try:
                found = bool(self.host.wait_for_element(wait_for_selector, timeout or self.config.wait_timeout_ms))
            except Exception as exc:
                logger.debug("wait_for_selector failed selector=%s: %s", wait_for_selector, exc)
                found = False
            if not found:
                warning = "selector_not_found"
        return NavigationResult(
            success=True,
            url=result.url,
            title=result.title,
            load_time=result.load_time,
            warning=warning,
            attempts=attempt,
        )

    def _settle(self, fallback_ms: int) -> None:
        wait = getattr(self.host, "wait_until_settled", None)
        if callable(wait):
            if not wait(self.config.navigation_timeout_ms):
                logger.debug("settle signal not observed within %sms", self.config.navigation_timeout_ms)
            return
        time.sleep(fallback_ms / 1000.0)

    def go_back(self) -> bool:
        self._invalidate()
        moved = bool(self.host.go_back())
        if moved:
            self._settle(self.config.history_settle_ms)
        return moved

    def go_forward(self) -> bool:
        self._invalidate()
        moved = bool(self.host.go_forward())
        if moved:
            self._settle(self.config.history_settle_ms)
        return moved

    def reload(self) -> None:
        self._invalidate()
        self.host.reload()
        self._settle(self.config.reload_settle_ms)

    def stop(self) -> None:
        self._invalidate()
        self.host.stop()
