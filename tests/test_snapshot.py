from __future__ import annotations

from typing import Any

from agent_browser.script import ScriptExecutor
from agent_browser.snapshot import (
    AccessibilitySnapshotBuilder,
    RefTable,
    accessible_name,
    build_nodes,
    compute_role,
    flatten_nodes,
    format_tree,
    is_interactive,
)

_handles = iter(range(10_000))


def _el(tag: str, *children: dict[str, Any], text: str = "", **extra: Any) -> dict[str, Any]:
    attrs = extra.pop("attrs", {})
    return {"tag": tag, "handle": next(_handles), "attrs": attrs, "text": text, "children": list(children), **extra}


class _TreeHost:
    def __init__(self, tree: Any) -> None:
        self.tree = tree
        self.scripts: list[str] = []

    def evaluate(self, script: str) -> Any:
        self.scripts.append(script)
        return self.tree


def _login_form() -> dict[str, Any]:
    return _el(
        "BODY",
        _el(
            "DIV",
            _el(
                "DIV",
                _el("INPUT", attrs={"type": "email", "placeholder": "Email"}, value=""),
                _el("INPUT", attrs={"type": "password"}, label="Password", value=None),
                _el("BUTTON", text="Sign in"),
            ),
            _el("SPAN", text="Forgot password?"),
            _el("DIV", attrs={"style": "x"}, hidden=True),
        ),
    )


def test_compute_role() -> None:
    assert compute_role({"tag": "BUTTON"}) == "button"
    assert compute_role({"tag": "A", "attrs": {"href": "/x"}}) == "link"
    assert compute_role({"tag": "A", "attrs": {}}) == "generic"
    assert compute_role({"tag": "INPUT", "attrs": {"type": "checkbox"}}) == "checkbox"
    assert compute_role({"tag": "INPUT", "attrs": {}}) == "textbox"
    assert compute_role({"tag": "INPUT", "attrs": {"type": "search"}}) == "searchbox"
    assert compute_role({"tag": "H2"}) == "heading"
    assert compute_role({"tag": "DIV", "attrs": {"role": "tab"}}) == "tab"
    assert compute_role({"tag": "DIV"}) == "generic"


def test_accessible_name_precedence() -> None:
    assert accessible_name({"tag": "BUTTON", "attrs": {"aria-label": "Close"}, "text": "x"}) == "Close"
    assert accessible_name({"tag": "INPUT", "attrs": {"placeholder": "Search"}, "label": "Query"}) == "Query"
    assert accessible_name({"tag": "INPUT", "attrs": {"placeholder": "Search"}}) == "Search"
    assert accessible_name({"tag": "INPUT", "attrs": {"type": "submit"}, "value": "Go"}) == "Go"
    assert accessible_name({"tag": "IMG", "attrs": {"alt": "Logo"}}) == "Logo"
    assert accessible_name({"tag": "A", "attrs": {"href": "/"}, "text": "Home"}) == "Home"
    # Containers do not take their descendants' text as a name.
    assert accessible_name({"tag": "DIV", "text": "lots of text"}) == ""
    assert accessible_name({"tag": "DIV", "attrs": {"title": "Tip"}}) == "Tip"
    assert len(accessible_name({"tag": "BUTTON", "text": "y" * 300})) == 100


def test_is_interactive() -> None:
    assert is_interactive({"tag": "BUTTON"})
    assert is_interactive({"tag": "DIV", "attrs": {"role": "button"}})
    assert is_interactive({"tag": "DIV", "hasClickHandler": True})
    assert is_interactive({"tag": "DIV", "attrs": {"tabindex": "0"}})
    assert is_interactive({"tag": "DIV", "attrs": {"contenteditable": ""}})
    assert not is_interactive({"tag": "DIV", "attrs": {"contenteditable": "false"}})
    assert not is_interactive({"tag": "SPAN", "text": "hi"})


def test_refs_are_unique_and_in_preorder() -> None:
    refs = RefTable()
    nodes = build_nodes(_login_form(), refs)
    flat = flatten_nodes(nodes)
    assert [n.ref for n in flat] == [f"e{i}" for i in range(len(flat))]
    assert len(set(n.ref for n in flat)) == len(flat)
    assert len(refs) == len(flat)
    # The hidden DIV is skipped together with its subtree.
    assert len(flat) == 7


def test_interactive_only_flattens_wrappers() -> None:
    refs = RefTable()
    nodes = build_nodes(_login_form(), refs, interactive_only=True)
    assert [(n.role, n.name) for n in nodes] == [
        ("textbox", "Email"),
        ("textbox", "Password"),
        ("button", "Sign in"),
    ]
    assert all(not n.children for n in nodes)
    assert [n.ref for n in nodes] == ["e0", "e1", "e2"]


def test_node_state_flags_and_format_tree() -> None:
    raw = _el(
        "DIV",
        _el("INPUT", attrs={"type": "checkbox"}, checked=True, label="Remember me"),
        _el("BUTTON", attrs={"aria-expanded": "false"}, text="Menu", disabled=True),
        _el("INPUT", attrs={"type": "text"}, value="alice", focused=True, label="User"),
    )
    refs = RefTable()
    nodes = build_nodes(raw, refs)
    text = format_tree(nodes)
    assert text.splitlines() == [
        "- [e0] generic",
        '  - [e1] checkbox: "Remember me" [checked]',
        '  - [e2] button: "Menu" [disabled] [collapsed]',
        '  - [e3] textbox: "User" (value: "alice") [focused]',
    ]
    data = nodes[0].to_dict()
    assert data["children"][0]["checked"] is True
    assert data["children"][1]["expanded"] is False
    assert "children" not in nodes[0].to_dict(include_children=False)


def test_ref_table_reset_invalidates() -> None:
    refs = RefTable()
    ref = refs.register(3)
    assert refs.resolve(ref) == 3
    assert ref in refs
    generation = refs.generation
    refs.reset()
    assert refs.resolve(ref) is None
    assert refs.generation == generation + 1
    assert refs.register(9) == "e0"


def test_builder_snapshot_resets_refs_and_returns_nodes() -> None:
    refs = RefTable()
    refs.register(99)
    host = _TreeHost(_login_form())
    builder = AccessibilitySnapshotBuilder(ScriptExecutor(host), refs, max_depth=4)
    result = builder.snapshot(interactive_only=True)
    assert result.ok
    assert [n.ref for n in result.value] == ["e0", "e1", "e2"]
    assert refs.resolve("e3") is None
    (script,) = host.scripts
    assert script.endswith("(null, 4)")


def test_builder_snapshot_root_not_found() -> None:
    refs = RefTable()
    host = _TreeHost({"__error": "Root element not found: #missing"})
    builder = AccessibilitySnapshotBuilder(ScriptExecutor(host), refs)
    result = builder.snapshot("#missing", max_depth=3)
    assert result.is_not_found
    assert "#missing" in (result.error or "")
    assert len(refs) == 0
    assert host.scripts[0].endswith('("#missing", 3)')
