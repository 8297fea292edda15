from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any


def _split_hosts(raw: str | None) -> list[str]:
    return [host.strip().lower() for host in (raw or "").split(",") if host.strip() and host.strip() != "*"]


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(float(raw))
    except (ValueError, OverflowError):
        return default


@dataclass
class SecurityWeights:
    """Per-signal risk score deltas used by the security gate."""

    dangerous_domain: int = 100
    malware_pattern: int = 90
    phishing_pattern: int = 80
    ip_address: int = 25
    excessive_subdomains: int = 15
    insecure_scheme: int = 10
    suspicious_characters: int = 20
    long_path: int = 10
    encoded_characters: int = 15
    data_uri: int = 30


@dataclass
class SecurityConfig:
    url_filtering_enabled: bool = True
    block_threshold: int = 61
    # Score above which a still-safe URL gets an "elevated risk" warning.
    warning_threshold: int = 30
    allow_list: list[str] = field(default_factory=list)
    custom_block_list: list[str] = field(default_factory=list)
    trusted_localhost_ports: list[int] = field(
        default_factory=lambda: [3000, 3001, 4000, 5000, 5173, 8000, 8080, 8888]
    )
    weights: SecurityWeights = field(default_factory=SecurityWeights)

    def to_dict(self) -> dict[str, Any]:
        return {
            "urlFilteringEnabled": self.url_filtering_enabled,
            "blockThreshold": self.block_threshold,
            "warningThreshold": self.warning_threshold,
            "allowList": list(self.allow_list),
            "customBlockList": list(self.custom_block_list),
            "trustedLocalhostPorts": list(self.trusted_localhost_ports),
            "weights": dict(vars(self.weights)),
        }


@dataclass
class BrowserConfig:
    cdp_host: str = "127.0.0.1"
    cdp_port: int = 9222
    cdp_command_timeout_s: float = 5.0
    navigation_timeout_ms: int = 30_000
    # Linear backoff between navigation retries: attempt N waits N times this.
    navigation_retry_backoff_ms: int = 1_000
    history_settle_ms: int = 500
    reload_settle_ms: int = 1_000
    wait_timeout_ms: int = 10_000
    wait_poll_interval_ms: int = 200
    console_capacity: int = 500
    network_capacity: int = 200
    screenshot_timeout_ms: int = 30_000
    screenshot_safety_margin_ms: int = 5_000
    snapshot_max_depth: int = 10
    security: SecurityConfig = field(default_factory=SecurityConfig)

    @property
    def cdp_http_base(self) -> str:
        return f"http://{self.cdp_host}:{self.cdp_port}"

    @classmethod
    def from_env(cls) -> BrowserConfig:
        security = SecurityConfig(
            allow_list=_split_hosts(os.environ.get("AGENT_BROWSER_ALLOW_HOSTS")),
            custom_block_list=_split_hosts(os.environ.get("AGENT_BROWSER_BLOCK_HOSTS")),
            block_threshold=_env_int("AGENT_BROWSER_BLOCK_THRESHOLD", 61),
        )
        return cls(
            cdp_host=(os.environ.get("AGENT_BROWSER_CDP_HOST") or "127.0.0.1").strip(),
            cdp_port=_env_int("AGENT_BROWSER_PORT", 9222),
            navigation_timeout_ms=_env_int("AGENT_BROWSER_NAV_TIMEOUT_MS", 30_000),
            wait_timeout_ms=_env_int("AGENT_BROWSER_WAIT_TIMEOUT_MS", 10_000),
            screenshot_timeout_ms=_env_int("AGENT_BROWSER_SCREENSHOT_TIMEOUT_MS", 30_000),
            security=security,
        )
