"""URL risk scoring consulted before every navigation.

`SecurityGate` is stateless: it turns a URL into a `SecurityVerdict` using the
weights in `SecurityConfig`. Counters and the event log belong to the
`SecurityPolicy` collaborator; `LocalSecurityPolicy` is the in-process one.
"""

from __future__ import annotations

import ipaddress
import logging
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Protocol
from urllib.parse import urlsplit, urlunsplit

from .config import SecurityConfig, SecurityWeights
from .redaction import redact_url_brief

logger = logging.getLogger("agent_browser.security")

# Matched against the lowercased URL; hostname patterns need a path ("/").
PHISHING_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"/login[-_.]?secure(?:/|$|\?)",
        r"/secure[-_.]?login(?:/|$|\?)",
        r"/account[-_.]?verify(?:/|$|\?)",
        r"/verify[-_.]?account(?:/|$|\?)",
        r"/password[-_.]?reset[-_.]?confirm(?:/|$|\?)",
        r"/update[-_.]?payment(?:/|$|\?)",
        r"/confirm[-_.]?identity(?:/|$|\?)",
        r"://[^/]+\.(?:tk|ml|ga|cf|gq)/",
        r"://[^/]*paypa1[^/]*/",
        r"://[^/]*(?:g00gle|go0gle|g0ogle|googl3)[^/]*/",
        r"://[^/]*amaz0n[^/]*/",
        r"://[^/]*(?:micr0s[o0]ft|micros0ft)[^/]*/",
        r"://[^/]*app1e[^/]*/",
        r"://[^/]*faceb(?:0o|o0|00)k[^/]*/",
        r"://(?:[^/]*\.)?(?:paypal|google|amazon|apple|microsoft|facebook)\.com[.-][^/]+/",
        r"/(?:wp-admin|wp-login|admin-login)\.php\?",
        r"[?&](?:email|user|login)=[^&]*@",
    )
)

MALWARE_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\.exe\?.*=(?:download|get|file)",
        r"/(?:crack|keygen|patch|serial|activator)/[^/]*\.(?:exe|msi|bat|cmd|vbs|scr)$",
        r"eval\s*\(\s*unescape\s*\(",
        r"document\.write\s*\(\s*unescape\s*\(",
        r"[?&]redirect=https?://(?!www\.google\.|accounts\.google\.|drive\.google\.)[^&]*\.(?:tk|ml|ga|cf|gq)/",
        r"[?&]goto=https?://(?!www\.google\.|accounts\.google\.)[^&]*\.(?:tk|ml|ga|cf|gq)/",
    )
)

DANGEROUS_DOMAINS = frozenset({"malware-test.com", "phishing-test.net", "virus-download.xyz"})

TRUSTED_DOMAINS = frozenset(
    {
        "google.com",
        "gstatic.com",
        "googleapis.com",
        "youtube.com",
        "paypal.com",
        "amazon.com",
        "microsoft.com",
        "apple.com",
        "facebook.com",
        "github.com",
        "githubusercontent.com",
        "wikipedia.org",
        "mozilla.org",
        "cloudflare.com",
        "python.org",
    }
)

_SUSPICIOUS_HOST_CHARS = re.compile(r"[^\w.-]")
_PERCENT_ESCAPE = re.compile(r"%[0-9a-f]{2}", re.IGNORECASE)
_LOCAL_HOSTNAMES = {"localhost", "127.0.0.1", "::1", "0.0.0.0"}

# Verdict categories
CATEGORY_DANGEROUS = "dangerous"
CATEGORY_MALWARE = "malware"
CATEGORY_PHISHING = "phishing"
CATEGORY_SUSPICIOUS = "suspicious"


@dataclass(slots=True)
class SecurityVerdict:
    safe: bool
    risk_score: int
    warnings: list[str] = field(default_factory=list)
    hard_block: bool = False
    category: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "safe": self.safe,
            "riskScore": self.risk_score,
            "warnings": list(self.warnings),
            "hardBlock": self.hard_block,
            **({"category": self.category} if self.category else {}),
        }


class SecurityPolicy(Protocol):
    def check_url_safety(self, url: str) -> SecurityVerdict: ...

    def get_stats(self) -> dict[str, int]: ...

    def get_config(self) -> dict[str, Any]: ...

    def get_events(self, limit: int = 50) -> list[dict[str, Any]]: ...


def _ip(host: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    try:
        return ipaddress.ip_address(host.strip("[]"))
    except ValueError:
        return None


def _is_local_host(host: str) -> bool:
    if host in _LOCAL_HOSTNAMES or host.endswith(".localhost") or host.endswith(".local"):
        return True
    ip = _ip(host)
    return ip is not None and (ip.is_loopback or ip.is_private)


def _registrable_domain(host: str) -> str:
    parts = host.split(".")
    return ".".join(parts[-2:]) if len(parts) > 2 else host


def _domain_matches(host: str, domain: str) -> bool:
    return host == domain or host.endswith("." + domain)


class SecurityGate:
    """Stateless URL risk evaluation."""

    def __init__(self, config: SecurityConfig | None = None) -> None:
        self.config = config or SecurityConfig()

    @property
    def weights(self) -> SecurityWeights:
        return self.config.weights

    def _is_allow_listed(self, host: str, port: int | None) -> bool:
        domain = _registrable_domain(host)
        for allowed in self.config.allow_list:
            a = allowed.lower()
            if _domain_matches(host, a) or domain == a:
                return True
            if a == "localhost" and host in {"localhost", "127.0.0.1"}:
                return True
        if host in _LOCAL_HOSTNAMES and port in self.config.trusted_localhost_ports:
            return True
        return any(_domain_matches(host, t) for t in TRUSTED_DOMAINS)

    def check_url_safety(self, url: str) -> SecurityVerdict:
        if not self.config.url_filtering_enabled:
            return SecurityVerdict(safe=True, risk_score=0)

        raw = str(url or "").strip()
        lower = raw.lower()
        w = self.weights

        if lower.startswith("data:"):
            return self._verdict(w.data_uri, ["Data URI detected"], hard_block=False, category=None)

        try:
            parts = urlsplit(raw)
            port = parts.port
        except ValueError:
            return self._invalid()
        scheme = parts.scheme.lower()
        host = (parts.hostname or "").lower()

        if scheme == "file":
            return SecurityVerdict(safe=True, risk_score=0)
        if scheme not in {"http", "https"} or not host:
            return self._invalid()

        blocked = next(
            (d for d in (*DANGEROUS_DOMAINS, *self.config.custom_block_list) if _domain_matches(host, d)),
            None,
        )
        if blocked:
            return self._verdict(
                w.dangerous_domain,
                [f"Known dangerous domain: {host}"],
                hard_block=True,
                category=CATEGORY_DANGEROUS,
            )

        if self._is_allow_listed(host, port):
            return SecurityVerdict(safe=True, risk_score=0)

        # Hostname patterns need a trailing path separator to anchor on.
        full = urlunsplit((scheme, parts.netloc.lower(), parts.path or "/", parts.query, parts.fragment))
        full_lower = full.lower()

        for pattern in MALWARE_PATTERNS:
            if pattern.search(full_lower):
                return self._verdict(
                    w.malware_pattern,
                    [f"URL matches malware distribution pattern: {pattern.pattern}"],
                    hard_block=True,
                    category=CATEGORY_MALWARE,
                )

        score = 0
        reasons: list[str] = []
        category: str | None = None

        for pattern in PHISHING_PATTERNS:
            if pattern.search(full_lower):
                score += w.phishing_pattern
                reasons.append(f"URL matches phishing pattern: {pattern.pattern}")
                category = CATEGORY_PHISHING

        ip = _ip(host)
        checks = (
            (ip is not None and not (ip.is_loopback or ip.is_private), w.ip_address, "IP address instead of domain"),
            (ip is None and len(host.split(".")) > 4, w.excessive_subdomains, "Excessive subdomains"),
            (scheme == "http" and not _is_local_host(host), w.insecure_scheme, "Insecure connection (http)"),
            (
                ip is None and (_SUSPICIOUS_HOST_CHARS.search(host) is not None or "xn--" in host),
                w.suspicious_characters,
                "Suspicious characters in domain",
            ),
            (len(parts.path) > 200, w.long_path, "Suspiciously long URL path"),
            (len(_PERCENT_ESCAPE.findall(raw)) > 10, w.encoded_characters, "Excessive URL encoding"),
            ("data:text/html" in lower, w.data_uri, "Data URI detected"),
        )
        for hit, delta, reason in checks:
            if hit:
                score += delta
                reasons.append(reason)

        return self._verdict(score, reasons, hard_block=False, category=category)

    def _invalid(self) -> SecurityVerdict:
        return SecurityVerdict(
            safe=False,
            risk_score=50,
            warnings=["Invalid URL format"],
            hard_block=True,
            category=CATEGORY_SUSPICIOUS,
        )

    def _verdict(
        self, score: int, reasons: list[str], *, hard_block: bool, category: str | None
    ) -> SecurityVerdict:
        score = max(0, min(int(score), 100))
        safe = score < self.config.block_threshold and not hard_block
        warnings = list(reasons)
        if safe and score > self.config.warning_threshold:
            warnings.append(f"URL has elevated risk score: {score}/100")
        if not safe and category is None:
            category = CATEGORY_SUSPICIOUS
        return SecurityVerdict(safe=safe, risk_score=score, warnings=warnings, hard_block=hard_block, category=category)


class LocalSecurityPolicy:
    """In-process SecurityPolicy: a gate plus cumulative counters and events."""

    max_events = 500

    def __init__(self, config: SecurityConfig | None = None) -> None:
        self._gate = SecurityGate(config)
        self._lock = threading.Lock()
        self._stats = {
            "blockedUrls": 0,
            "blockedPopups": 0,
            "blockedAds": 0,
            "blockedTrackers": 0,
            "blockedDownloads": 0,
            "warnings": 0,
        }
        self._events: list[dict[str, Any]] = []

    @property
    def gate(self) -> SecurityGate:
        return self._gate

    def check_url_safety(self, url: str) -> SecurityVerdict:
        verdict = self._gate.check_url_safety(url)
        if not verdict.safe:
            self._record("blockedUrls", "url_blocked", url, verdict)
            logger.warning(
                "security blocked url=%s score=%s category=%s",
                redact_url_brief(url),
                verdict.risk_score,
                verdict.category,
            )
        elif verdict.warnings:
            self._record("warnings", "url_warning", url, verdict)
        return verdict

    def _record(self, counter: str, kind: str, url: str, verdict: SecurityVerdict) -> None:
        event = {
            "type": kind,
            "url": redact_url_brief(url),
            "reason": verdict.warnings[0] if verdict.warnings else "",
            "riskScore": verdict.risk_score,
            "timestamp": int(time.time() * 1000),
            **({"category": verdict.category} if verdict.category else {}),
        }
        with self._lock:
            self._stats[counter] += 1
            self._events.append(event)
            if len(self._events) > self.max_events:
                del self._events[: len(self._events) - self.max_events]

    def get_stats(self) -> dict[str, int]:
        with self._lock:
            return dict(self._stats)

    def get_config(self) -> dict[str, Any]:
        return self._gate.config.to_dict()

    def get_events(self, limit: int = 50) -> list[dict[str, Any]]:
        with self._lock:
            events = list(self._events)
        return events[-limit:] if limit > 0 else []

    def update_config(self, **changes: Any) -> dict[str, Any]:
        """Apply partial config changes (snake_case keys); returns the new config."""
        cfg = self._gate.config
        for key, value in changes.items():
            if key == "weights":
                for wk, wv in dict(value or {}).items():
                    if not hasattr(cfg.weights, wk):
                        raise ValueError(f"Unknown security weight: {wk}")
                    setattr(cfg.weights, wk, int(wv))
            elif key in {"allow_list", "custom_block_list"}:
                setattr(cfg, key, [str(h).strip().lower() for h in value or [] if str(h).strip()])
            elif key in {"block_threshold", "warning_threshold"}:
                setattr(cfg, key, int(value))
            elif key == "url_filtering_enabled":
                cfg.url_filtering_enabled = bool(value)
            else:
                raise ValueError(f"Unknown security setting: {key}")
        logger.info("security config updated keys=%s", sorted(changes))
        return cfg.to_dict()
