"""Tool schema definitions for the browser control tools."""

from __future__ import annotations

from typing import Any

_SCHEMA = "http://json-schema.org/draft-07/schema#"


def _schema(properties: dict[str, Any] | None = None, required: list[str] | None = None) -> dict[str, Any]:
    schema: dict[str, Any] = {"$schema": _SCHEMA, "type": "object", "properties": properties or {}}
    if required:
        schema["required"] = required
    return schema


NAVIGATE_TOOL: dict[str, Any] = {
    "name": "browser_navigate",
    "description": """Navigate the page to a URL.
USAGE:
- browser_navigate(url="https://react.dev")
- Scheme is optional: browser_navigate(url="localhost:3000")
- Wait for content: browser_navigate(url="example.com", wait_for_selector="#app")
- Retry slow pages: browser_navigate(url="example.com", retries=3)

URLs are security-checked first; blocked URLs are never loaded.
Failures report an error category (dns_error, connection_refused, timeout,
ssl_error, security_blocked, typo_detected, validation_error) and a suggestion.""",
    "inputSchema": _schema(
        {
            "url": {"type": "string", "description": "Target URL (https:// is added when no scheme is given)"},
            "timeout": {"type": "integer", "description": "Navigation timeout in ms (default: 30000)"},
            "wait_for_selector": {
                "type": "string",
                "description": "CSS selector to wait for after load; a miss is a warning, not a failure",
            },
            "retries": {
                "type": "integer",
                "default": 1,
                "description": "Total attempts; only retryable failures (timeout, unknown) are retried",
            },
        },
        ["url"],
    ),
}

BACK_TOOL: dict[str, Any] = {
    "name": "browser_back",
    "description": "Go back one entry in the page history.",
    "inputSchema": _schema(),
}

FORWARD_TOOL: dict[str, Any] = {
    "name": "browser_forward",
    "description": "Go forward one entry in the page history.",
    "inputSchema": _schema(),
}

RELOAD_TOOL: dict[str, Any] = {
    "name": "browser_reload",
    "description": "Reload the current page.",
    "inputSchema": _schema(),
}

STOP_TOOL: dict[str, Any] = {
    "name": "browser_stop",
    "description": "Stop loading the current page.",
    "inputSchema": _schema(),
}

EVALUATE_TOOL: dict[str, Any] = {
    "name": "browser_evaluate",
    "description": """Run a JavaScript expression in the page and return its value.
USAGE:
- browser_evaluate(script="document.title")
- browser_evaluate(script="[...document.links].length")
- Promises are awaited: browser_evaluate(script="fetch('/api').then(r => r.status)")

The value must be JSON-serialisable; undefined is returned as null.""",
    "inputSchema": _schema({"script": {"type": "string", "description": "JavaScript expression"}}, ["script"]),
}

WAIT_TOOL: dict[str, Any] = {
    "name": "browser_wait",
    "description": """Wait for a page condition. Give exactly one of selector, text, textGone, time.
USAGE:
- browser_wait(selector="#results", timeout=5000)
- browser_wait(text="Welcome back")
- browser_wait(textGone="Loading...")
- browser_wait(time=1000)

A timeout is reported as found=false, not as an error.""",
    "inputSchema": _schema(
        {
            "selector": {"type": "string", "description": "CSS selector to appear"},
            "text": {"type": "string", "description": "Visible text to appear"},
            "textGone": {"type": "string", "description": "Visible text to disappear"},
            "time": {"type": "integer", "description": "Fixed delay in ms"},
            "timeout": {"type": "integer", "default": 10000, "description": "Timeout in ms"},
        }
    ),
}

CONSOLE_TOOL: dict[str, Any] = {
    "name": "browser_console",
    "description": """Read captured console messages (last 500).
USAGE:
- browser_console()
- browser_console(level="errors")
- browser_console(text="TypeError", limit=10)
- browser_console(clear=true)""",
    "inputSchema": _schema(
        {
            "level": {
                "type": "string",
                "enum": ["all", "errors", "warnings", "error", "warning", "info", "debug", "log"],
                "default": "all",
            },
            "text": {"type": "string", "description": "Case-insensitive substring filter"},
            "limit": {"type": "integer", "default": 50},
            "clear": {"type": "boolean", "default": False, "description": "Clear the buffer after reading"},
        }
    ),
}

NETWORK_TOOL: dict[str, Any] = {
    "name": "browser_network",
    "description": """Read captured network requests (last 200).
USAGE:
- browser_network()
- browser_network(type="xhr", status="error")
- browser_network(url_pattern="/api/", limit=20)""",
    "inputSchema": _schema(
        {
            "type": {
                "type": "string",
                "default": "all",
                "description": "Resource type: all, xhr (includes fetch), fetch, document, script, image, ...",
            },
            "status": {"type": "string", "enum": ["all", "success", "error", "pending"], "default": "all"},
            "url_pattern": {"type": "string", "description": "Case-insensitive URL substring"},
            "limit": {"type": "integer", "default": 50},
            "clear": {"type": "boolean", "default": False},
        }
    ),
}

SNAPSHOT_TOOL: dict[str, Any] = {
    "name": "browser_snapshot",
    "description": """Accessibility-style tree of the page with element refs (e0, e1, ...).
USAGE:
- browser_snapshot()
- browser_snapshot(interactive_only=true)
- browser_snapshot(selector="form#login", max_depth=5)

Refs are valid until the next snapshot or navigation.""",
    "inputSchema": _schema(
        {
            "selector": {"type": "string", "description": "Root element (default: document body)"},
            "max_depth": {"type": "integer", "default": 10},
            "maxDepth": {"type": "integer", "description": "Alias of max_depth"},
            "interactive_only": {"type": "boolean", "default": False},
        }
    ),
}

RESOLVE_REF_TOOL: dict[str, Any] = {
    "name": "browser_resolve_ref",
    "description": "Describe the live element behind a snapshot ref, e.g. browser_resolve_ref(ref=\"e3\").",
    "inputSchema": _schema({"ref": {"type": "string", "description": "Ref from the latest snapshot"}}, ["ref"]),
}

QUERY_TOOL: dict[str, Any] = {
    "name": "browser_query",
    "description": "List elements matching a CSS selector (tag, id, class, text, attributes, rect).",
    "inputSchema": _schema(
        {"selector": {"type": "string"}, "limit": {"type": "integer", "default": 20}},
        ["selector"],
    ),
}

_TARGET_PROPERTIES: dict[str, Any] = {
    "ref": {"type": "string", "description": "Ref from the latest browser_snapshot (preferred)"},
    "selector": {"type": "string", "description": "CSS selector, used when no ref is given"},
}

CLICK_TOOL: dict[str, Any] = {
    "name": "browser_click",
    "description": """Click an element by snapshot ref or CSS selector.
USAGE:
- browser_click(ref="e3")
- browser_click(selector="button[type=submit]")

A missing element is reported as not_found.""",
    "inputSchema": _schema(dict(_TARGET_PROPERTIES)),
}

TYPE_TOOL: dict[str, Any] = {
    "name": "browser_type",
    "description": """Type text into an input, textarea or contenteditable element.
USAGE:
- browser_type(ref="e5", text="hello")
- browser_type(selector="#search", text="python", clear=true, submit=true)""",
    "inputSchema": _schema(
        {
            **_TARGET_PROPERTIES,
            "text": {"type": "string"},
            "clear": {"type": "boolean", "default": False, "description": "Replace the current value"},
            "submit": {"type": "boolean", "default": False, "description": "Submit the enclosing form"},
        },
        ["text"],
    ),
}

FILL_TOOL: dict[str, Any] = {
    "name": "browser_fill",
    "description": """Fill several form fields at once.
USAGE:
- browser_fill(fields=[{"ref": "e3", "value": "alice"}, {"ref": "e4", "type": "checkbox", "value": true}])
- browser_fill(fields=[{"selector": "select#country", "value": "Norway"}], submit=true)

Field types: textbox, textarea, checkbox, radio, combobox (select by value or text), slider.
The type is inferred from the element when omitted.""",
    "inputSchema": _schema(
        {
            "fields": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        **_TARGET_PROPERTIES,
                        "name": {"type": "string", "description": "Label used in the report"},
                        "type": {
                            "type": "string",
                            "enum": ["textbox", "textarea", "checkbox", "radio", "combobox", "slider"],
                        },
                        "value": {},
                    },
                },
            },
            "submit": {"type": "boolean", "default": False},
            "form_selector": {"type": "string", "description": "Form to submit (default: focused field's form)"},
        },
        ["fields"],
    ),
}

SCROLL_TOOL: dict[str, Any] = {
    "name": "browser_scroll",
    "description": """Scroll the page, or scroll an element into view.
USAGE:
- browser_scroll(direction="down", amount=800)
- browser_scroll(direction="bottom")
- browser_scroll(ref="e12")""",
    "inputSchema": _schema(
        {
            **_TARGET_PROPERTIES,
            "direction": {"type": "string", "enum": ["up", "down", "top", "bottom"], "default": "down"},
            "amount": {"type": "integer", "default": 500, "description": "Pixels for up/down"},
        }
    ),
}

EXTRACT_TEXT_TOOL: dict[str, Any] = {
    "name": "browser_extract_text",
    "description": """Visible text of the page or of one element.
USAGE:
- browser_extract_text()
- browser_extract_text(selector="article", max_length=5000)""",
    "inputSchema": _schema(
        {
            **_TARGET_PROPERTIES,
            "max_length": {"type": "integer", "default": 10000},
        }
    ),
}

SCREENSHOT_TOOL: dict[str, Any] = {
    "name": "browser_screenshot",
    "description": """Capture the page as an image.
USAGE:
- browser_screenshot()
- browser_screenshot(full_page=true)
- browser_screenshot(selector="#chart", format="jpeg", quality=70)""",
    "inputSchema": _schema(
        {
            "format": {"type": "string", "enum": ["png", "jpeg", "webp"], "default": "png"},
            "quality": {"type": "integer", "default": 80, "description": "jpeg/webp quality 0-100"},
            "full_page": {"type": "boolean", "default": False},
            "selector": {"type": "string", "description": "Capture only this element"},
            "timeout": {"type": "integer", "default": 30000, "description": "Capture timeout in ms"},
        }
    ),
}

STATE_TOOL: dict[str, Any] = {
    "name": "browser_state",
    "description": "Current page state: url, title, loading, history availability, last error.",
    "inputSchema": _schema(),
}

SECURITY_TOOL: dict[str, Any] = {
    "name": "browser_security",
    "description": """URL security gate.
USAGE:
- Check a URL: browser_security(action="check", url="https://paypa1.com")
- Counters: browser_security(action="stats")
- Recent events: browser_security(action="events", limit=20)
- Read config: browser_security(action="config")
- Update config: browser_security(action="config", allow_list=["intranet.local"], block_threshold=70)""",
    "inputSchema": _schema(
        {
            "action": {"type": "string", "enum": ["check", "stats", "events", "config"], "default": "check"},
            "url": {"type": "string"},
            "limit": {"type": "integer", "default": 50},
            "allow_list": {"type": "array", "items": {"type": "string"}},
            "custom_block_list": {"type": "array", "items": {"type": "string"}},
            "block_threshold": {"type": "integer"},
            "warning_threshold": {"type": "integer"},
            "url_filtering_enabled": {"type": "boolean"},
            "weights": {"type": "object", "additionalProperties": {"type": "integer"}},
        }
    ),
}

TOOL_DEFINITIONS: list[dict[str, Any]] = [
    NAVIGATE_TOOL,
    BACK_TOOL,
    FORWARD_TOOL,
    RELOAD_TOOL,
    STOP_TOOL,
    EVALUATE_TOOL,
    WAIT_TOOL,
    CONSOLE_TOOL,
    NETWORK_TOOL,
    SNAPSHOT_TOOL,
    RESOLVE_REF_TOOL,
    QUERY_TOOL,
    CLICK_TOOL,
    TYPE_TOOL,
    FILL_TOOL,
    SCROLL_TOOL,
    EXTRACT_TEXT_TOOL,
    SCREENSHOT_TOOL,
    STATE_TOOL,
    SECURITY_TOOL,
]
