from __future__ import annotations

import pytest

from agent_browser.config import BrowserConfig, SecurityConfig


_ENV_KEYS = (
    "AGENT_BROWSER_ALLOW_HOSTS",
    "AGENT_BROWSER_BLOCK_HOSTS",
    "AGENT_BROWSER_BLOCK_THRESHOLD",
    "AGENT_BROWSER_CDP_HOST",
    "AGENT_BROWSER_PORT",
    "AGENT_BROWSER_NAV_TIMEOUT_MS",
    "AGENT_BROWSER_WAIT_TIMEOUT_MS",
    "AGENT_BROWSER_SCREENSHOT_TIMEOUT_MS",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_defaults() -> None:
    cfg = BrowserConfig.from_env()
    assert cfg.cdp_http_base == "http://127.0.0.1:9222"
    assert cfg.navigation_timeout_ms == 30_000
    assert cfg.wait_timeout_ms == 10_000
    assert cfg.screenshot_timeout_ms == 30_000
    assert cfg.screenshot_safety_margin_ms == 5_000
    assert cfg.security.block_threshold == 61
    assert cfg.security.allow_list == []


def test_from_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AGENT_BROWSER_CDP_HOST", " 10.0.0.5 ")
    monkeypatch.setenv("AGENT_BROWSER_PORT", "9333")
    monkeypatch.setenv("AGENT_BROWSER_NAV_TIMEOUT_MS", "1500.0")
    monkeypatch.setenv("AGENT_BROWSER_ALLOW_HOSTS", "Example.com, *, intranet.local")
    monkeypatch.setenv("AGENT_BROWSER_BLOCK_HOSTS", "bad.test")
    monkeypatch.setenv("AGENT_BROWSER_BLOCK_THRESHOLD", "40")
    cfg = BrowserConfig.from_env()
    assert cfg.cdp_http_base == "http://10.0.0.5:9333"
    assert cfg.navigation_timeout_ms == 1500
    assert cfg.security.allow_list == ["example.com", "intranet.local"]
    assert cfg.security.custom_block_list == ["bad.test"]
    assert cfg.security.block_threshold == 40


def test_invalid_numbers_fall_back_to_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AGENT_BROWSER_PORT", "not-a-port")
    monkeypatch.setenv("AGENT_BROWSER_WAIT_TIMEOUT_MS", "  ")
    cfg = BrowserConfig.from_env()
    assert cfg.cdp_port == 9222
    assert cfg.wait_timeout_ms == 10_000


def test_security_config_to_dict_is_a_copy() -> None:
    sec = SecurityConfig(allow_list=["example.com"])
    data = sec.to_dict()
    assert data["blockThreshold"] == 61
    assert data["weights"]["phishing_pattern"] == 80
    data["allowList"].append("other.com")
    data["weights"]["ip_address"] = 0
    assert sec.allow_list == ["example.com"]
    assert sec.weights.ip_address == 25


@pytest.mark.parametrize("raw", ["inf", "-inf", "nan", "1e999"])
def test_non_finite_numbers_fall_back_to_defaults(monkeypatch: pytest.MonkeyPatch, raw: str) -> None:
    monkeypatch.setenv("AGENT_BROWSER_PORT", raw)
    assert BrowserConfig.from_env().cdp_port == 9222
