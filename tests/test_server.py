from __future__ import annotations

from typing import Any

import pytest

from agent_browser import main as server_main
from agent_browser.config import BrowserConfig
from agent_browser.controller import BrowserController
from agent_browser.host import NavigationResult, PageState
from agent_browser.server.contract import LATEST_PROTOCOL_VERSION, SERVER_INFO
from agent_browser.server.definitions import TOOL_DEFINITIONS
from agent_browser.server.registry import create_default_registry
from agent_browser.server.types import ToolResult


class _DummyHost:
    def __init__(self) -> None:
        self.url = "about:blank"
        self.listeners: dict[str, list[Any]] = {}

    def set_navigation_timeout(self, timeout: int) -> None:
        pass

    def navigate(self, url: str) -> NavigationResult:
        self.url = url
        return NavigationResult(success=True, url=url, title="Example Domain", load_time=12)

    def wait_until_settled(self, timeout: int) -> bool:
        return True

    def get_url(self) -> str:
        return self.url

    def get_state(self) -> PageState:
        return PageState(url=self.url, title="Example Domain")

    def evaluate(self, script: str) -> Any:
        return 2

    def add_listener(self, event: str, listener: Any) -> None:
        self.listeners.setdefault(event, []).append(listener)

    def remove_listener(self, event: str, listener: Any) -> None:
        self.listeners.get(event, []).remove(listener)

    def close(self) -> None:
        pass


@pytest.fixture
def sent(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    messages: list[dict[str, Any]] = []
    monkeypatch.setattr(server_main, "_write_message", lambda payload: messages.append(payload))
    return messages


@pytest.fixture
def srv() -> server_main.McpServer:
    config = BrowserConfig()
    server = server_main.McpServer(controller=BrowserController(config, host=_DummyHost()), config=config)
    yield server
    server.close()


def test_initialize_echoes_supported_protocol(sent: list[dict[str, Any]], srv: server_main.McpServer) -> None:
    srv.handle_initialize(request_id="init", params={"protocolVersion": "2024-11-05"})
    result = sent[0]["result"]
    assert sent[0]["id"] == "init"
    assert result["protocolVersion"] == "2024-11-05"
    assert result["serverInfo"] == SERVER_INFO
    assert result["serverInfo"]["name"] == "agent-browser"
    assert "tools" in result["capabilities"]


def test_initialize_falls_back_to_latest(sent: list[dict[str, Any]], srv: server_main.McpServer) -> None:
    srv.dispatch({"id": 1, "method": "initialize", "params": {"protocolVersion": "1999-01-01"}})
    assert sent[0]["result"]["protocolVersion"] == LATEST_PROTOCOL_VERSION


def test_tools_list_matches_registry(sent: list[dict[str, Any]], srv: server_main.McpServer) -> None:
    srv.dispatch({"id": 2, "method": "tools/list"})
    names = [tool["name"] for tool in sent[0]["result"]["tools"]]
    assert len(names) == 20
    assert sorted(names) == sorted(create_default_registry().tool_names)
    assert "browser_resolve_ref" in names


def test_every_tool_definition_has_a_schema() -> None:
    for tool in TOOL_DEFINITIONS:
        assert tool["description"]
        assert tool["inputSchema"]["type"] == "object"


def test_tools_call_navigate(sent: list[dict[str, Any]], srv: server_main.McpServer) -> None:
    srv.dispatch(
        {"id": 3, "method": "tools/call", "params": {"name": "browser_navigate", "arguments": {"url": "example.com"}}}
    )
    result = sent[0]["result"]
    assert result["isError"] is False
    assert result["content"][0]["text"].startswith("Successfully navigated to: https://example.com")
    assert result["structuredContent"]["success"] is True


def test_tools_call_security_check_without_browser(sent: list[dict[str, Any]]) -> None:
    config = BrowserConfig()
    srv = server_main.McpServer(controller=BrowserController(config), config=config)
    srv.dispatch(
        {
            "id": 4,
            "method": "tools/call",
            "params": {"name": "browser_security", "arguments": {"action": "check", "url": "https://example.com"}},
        }
    )
    result = sent[0]["result"]
    assert result["isError"] is False
    assert result["structuredContent"]["safe"] is True
    assert result["content"][0]["text"].startswith("SAFE: https://example.com")


def test_unknown_tool_is_an_error_result(sent: list[dict[str, Any]], srv: server_main.McpServer) -> None:
    srv.dispatch({"id": 5, "method": "tools/call", "params": {"name": "browser_teleport", "arguments": {}}})
    result = sent[0]["result"]
    assert result["isError"] is True
    assert "Unknown tool: browser_teleport" in result["content"][0]["text"]


def test_bad_argument_type_is_a_validation_error(sent: list[dict[str, Any]], srv: server_main.McpServer) -> None:
    srv.dispatch(
        {"id": 6, "method": "tools/call", "params": {"name": "browser_console", "arguments": {"limit": "many"}}}
    )
    result = sent[0]["result"]
    assert result["isError"] is True
    assert result["structuredContent"]["errorCategory"] == "validation_error"


def test_call_tool_accepts_legacy_method_and_args_key(sent: list[dict[str, Any]], srv: server_main.McpServer) -> None:
    srv.dispatch({"id": 7, "method": "call_tool", "params": {"name": "browser_evaluate", "args": {"script": "1+1"}}})
    result = sent[0]["result"]
    assert result["isError"] is False
    assert result["structuredContent"]["result"] == 2


def test_ping(sent: list[dict[str, Any]], srv: server_main.McpServer) -> None:
    srv.dispatch({"id": "p", "method": "ping"})
    assert sent == [{"jsonrpc": "2.0", "id": "p", "result": {"pong": True}}]


def test_unknown_method(sent: list[dict[str, Any]], srv: server_main.McpServer) -> None:
    srv.dispatch({"id": "x", "method": "unknown"})
    assert sent[0]["error"]["code"] == -32601


@pytest.mark.parametrize("params", [["browser_navigate"], "browser_navigate", 42])
def test_non_object_params_are_invalid_params(
    sent: list[dict[str, Any]], srv: server_main.McpServer, params: Any
) -> None:
    srv.dispatch({"id": 8, "method": "tools/call", "params": params})
    srv.dispatch({"id": 9, "method": "ping"})
    assert sent[0]["id"] == 8
    assert sent[0]["error"]["code"] == -32602
    assert sent[1] == {"jsonrpc": "2.0", "id": 9, "result": {"pong": True}}


def test_non_object_arguments_are_invalid_params(sent: list[dict[str, Any]], srv: server_main.McpServer) -> None:
    srv.dispatch({"id": 10, "method": "tools/call", "params": {"name": "browser_evaluate", "arguments": ["1+1"]}})
    assert sent[0]["error"]["code"] == -32602
    assert "arguments" in sent[0]["error"]["message"]


def test_non_object_params_on_a_notification_are_silent(
    sent: list[dict[str, Any]], srv: server_main.McpServer
) -> None:
    srv.dispatch({"method": "notifications/cancelled", "params": [1, 2]})
    assert sent == []


def test_notifications_and_empty_frames_are_silent(sent: list[dict[str, Any]], srv: server_main.McpServer) -> None:
    srv.dispatch({"method": "notifications/initialized"})
    srv.dispatch({"method": "notifications/cancelled"})
    srv.dispatch({})
    assert sent == []


def test_call_tool_logs_redacted_arguments(
    srv: server_main.McpServer, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level("INFO", logger="agent_browser")
    srv.call_tool("browser_evaluate", {"script": "document.cookie = 'secret'"})
    assert "document.cookie" not in caplog.text
    assert "<redacted str len=" in caplog.text


class _RecordingController:
    """Records which controller operation a handler calls, and with what."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple, dict[str, Any]]] = []

    def __getattr__(self, name: str) -> Any:
        def record(*args: Any, **kwargs: Any) -> ToolResult:
            self.calls.append((name, args, kwargs))
            return ToolResult.ok("ok")

        return record


@pytest.mark.parametrize(
    ("arguments", "expected"),
    [({"max_depth": 3}, 3), ({"maxDepth": 4}, 4), ({"max_depth": 2, "maxDepth": 9}, 2), ({}, None)],
)
def test_snapshot_accepts_max_depth_spellings(arguments: dict[str, Any], expected: int | None) -> None:
    ctl = _RecordingController()
    create_default_registry().dispatch("browser_snapshot", ctl, arguments)
    assert ctl.calls[0][2]["max_depth"] == expected


@pytest.mark.parametrize(
    ("tool", "arguments", "expected"),
    [
        ("browser_click", {"ref": "e3"}, ("click", (), {"ref": "e3", "selector": None})),
        (
            "browser_type",
            {"selector": "#q", "text": "hi", "submit": "true"},
            ("type", ("hi",), {"clear": False, "submit": True, "ref": None, "selector": "#q"}),
        ),
        (
            "browser_fill",
            {"fields": [{"ref": "e1", "value": "a"}], "formSelector": "#login"},
            ("fill", ([{"ref": "e1", "value": "a"}],), {"submit": False, "form_selector": "#login"}),
        ),
        (
            "browser_scroll",
            {"direction": "bottom"},
            ("scroll", (), {"direction": "bottom", "amount": None, "ref": None, "selector": None}),
        ),
        (
            "browser_extract_text",
            {"selector": "main", "maxLength": 100},
            ("extract_text", (), {"max_length": 100, "ref": None, "selector": "main"}),
        ),
        (
            "browser_navigate",
            {"url": "example.com", "retries": 3},
            ("navigate", ("example.com",), {"timeout": None, "wait_for_selector": None, "retries": 3}),
        ),
    ],
)
def test_page_action_arguments(tool: str, arguments: dict[str, Any], expected: tuple) -> None:
    ctl = _RecordingController()
    create_default_registry().dispatch(tool, ctl, arguments)
    assert ctl.calls == [expected]
