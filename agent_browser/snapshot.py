"""
Accessibility-style snapshot of the live page.

The page operation `collect_dom_tree` returns raw element facts in one round
trip and records every collected element in a page-side handle list. This
module turns those facts into AccessibilityNode trees:

- role: explicit `role` attribute, then the implicit tag/type table, then "generic"
- name: aria-label, aria-labelledby, <label>, alt, placeholder, own text, title
- refs: e0, e1, ... in pre-order over emitted nodes, stored in a RefTable

Refs are valid until the next snapshot or navigation. Reusing an older ref
is undefined: it may resolve to whatever the newer snapshot assigned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from .script import ScriptExecutor, ScriptResult

logger = logging.getLogger("agent_browser.snapshot")

DEFAULT_MAX_DEPTH = 10
NAME_TEXT_LIMIT = 100
FORMAT_NAME_LIMIT = 50

_INPUT_ROLES = {
    "button": "button",
    "checkbox": "checkbox",
    "radio": "radio",
    "text": "textbox",
    "password": "textbox",
    "email": "textbox",
    "tel": "textbox",
    "url": "textbox",
    "search": "searchbox",
    "number": "spinbutton",
    "range": "slider",
    "submit": "button",
    "reset": "button",
}

_TAG_ROLES = {
    "BUTTON": "button",
    "SELECT": "combobox",
    "TEXTAREA": "textbox",
    "NAV": "navigation",
    "MAIN": "main",
    "HEADER": "banner",
    "FOOTER": "contentinfo",
    "ASIDE": "complementary",
    "ARTICLE": "article",
    "SECTION": "region",
    "FORM": "form",
    "UL": "list",
    "OL": "list",
    "LI": "listitem",
    "TABLE": "table",
    "TR": "row",
    "TH": "columnheader",
    "TD": "cell",
    "DIALOG": "dialog",
    "MENU": "menu",
    "MENUITEM": "menuitem",
    "IMG": "img",
    **{f"H{i}": "heading" for i in range(1, 7)},
}

INTERACTIVE_TAGS = frozenset({"A", "BUTTON", "INPUT", "SELECT", "TEXTAREA"})
INTERACTIVE_ROLES = frozenset(
    {"button", "link", "textbox", "checkbox", "radio", "combobox", "slider", "menuitem", "tab"}
)
_TEXT_NAMED_ROLES = frozenset({"button", "link", "heading"})
_PLACEHOLDER_ROLES = frozenset({"textbox", "searchbox", "spinbutton", "combobox"})
_VALUE_NAMED_INPUTS = frozenset({"button", "submit", "reset"})


def _attrs(raw: dict[str, Any]) -> dict[str, str]:
    attrs = raw.get("attrs")
    return attrs if isinstance(attrs, dict) else {}


def _tag(raw: dict[str, Any]) -> str:
    return str(raw.get("tag") or "").upper()


def _input_type(raw: dict[str, Any]) -> str:
    return str(_attrs(raw).get("type") or "text").strip().lower()


def _tri_state(value: Any) -> bool | None:
    if value == "true":
        return True
    if value == "false":
        return False
    return None


def compute_role(raw: dict[str, Any]) -> str:
    explicit = str(_attrs(raw).get("role") or "").strip().split()
    if explicit:
        return explicit[0].lower()
    tag = _tag(raw)
    if tag == "A":
        return "link" if _attrs(raw).get("href") is not None else "generic"
    if tag == "INPUT":
        return _INPUT_ROLES.get(_input_type(raw), "textbox")
    return _TAG_ROLES.get(tag, "generic")


def accessible_name(raw: dict[str, Any], role: str | None = None) -> str:
    role = role or compute_role(raw)
    attrs = _attrs(raw)
    tag = _tag(raw)

    for candidate in (attrs.get("aria-label"), raw.get("labelledBy"), raw.get("label"), attrs.get("alt")):
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()

    placeholder = attrs.get("placeholder")
    if role in _PLACEHOLDER_ROLES and isinstance(placeholder, str) and placeholder.strip():
        return placeholder.strip()

    if tag == "INPUT" and _input_type(raw) in _VALUE_NAMED_INPUTS:
        own = str(raw.get("value") or "")
    elif role in _TEXT_NAMED_ROLES or tag == "LABEL":
        own = str(raw.get("text") or "")
    else:
        own = ""
    if own.strip():
        return own.strip()[:NAME_TEXT_LIMIT]

    title = attrs.get("title")
    return title.strip() if isinstance(title, str) else ""


def is_interactive(raw: dict[str, Any], role: str | None = None) -> bool:
    role = role or compute_role(raw)
    attrs = _attrs(raw)
    if _tag(raw) in INTERACTIVE_TAGS or role in INTERACTIVE_ROLES:
        return True
    if raw.get("hasClickHandler") or "onclick" in attrs or "tabindex" in attrs:
        return True
    if raw.get("editable"):
        return True
    editable = attrs.get("contenteditable")
    return editable is not None and editable.strip().lower() in {"", "true", "plaintext-only"}


@dataclass(slots=True)
class AccessibilityNode:
    role: str
    ref: str
    tag: str
    name: str = ""
    value: str | None = None
    children: list[AccessibilityNode] = field(default_factory=list)
    disabled: bool = False
    focused: bool = False
    checked: bool | None = None
    expanded: bool | None = None

    def to_dict(self, *, include_children: bool = True) -> dict[str, Any]:
        out: dict[str, Any] = {"ref": self.ref, "role": self.role, "tag": self.tag}
        if self.name:
            out["name"] = self.name
        if self.value:
            out["value"] = self.value
        if self.disabled:
            out["disabled"] = True
        if self.focused:
            out["focused"] = True
        if self.checked is not None:
            out["checked"] = self.checked
        if self.expanded is not None:
            out["expanded"] = self.expanded
        if include_children and self.children:
            out["children"] = [c.to_dict() for c in self.children]
        return out


class RefTable:
    """Maps snapshot refs to page-side handle indexes for one snapshot generation."""

    def __init__(self) -> None:
        self._handles: dict[str, int] = {}
        self._next = 0
        self.generation = 0

    def reset(self) -> None:
        self._handles.clear()
        self._next = 0
        self.generation += 1

    def register(self, handle: int) -> str:
        ref = f"e{self._next}"
        self._next += 1
        self._handles[ref] = handle
        return ref

    def resolve(self, ref: str) -> int | None:
        return self._handles.get(str(ref or "").strip())

    def __contains__(self, ref: object) -> bool:
        return ref in self._handles

    def __len__(self) -> int:
        return len(self._handles)


def _checked(raw: dict[str, Any], role: str) -> bool | None:
    if role in {"checkbox", "radio"} and isinstance(raw.get("checked"), bool):
        return raw["checked"]
    return _tri_state(_attrs(raw).get("aria-checked"))


def build_nodes(raw: Any, refs: RefTable, *, interactive_only: bool = False) -> list[AccessibilityNode]:
    """Convert raw DOM facts into nodes, assigning refs in pre-order.

    Hidden elements are dropped with their subtree. With `interactive_only`,
    non-interactive elements are omitted and their children take their place.
    """
    if not isinstance(raw, dict) or raw.get("hidden"):
        return []
    children = raw.get("children") if isinstance(raw.get("children"), list) else []
    role = compute_role(raw)

    if interactive_only and not is_interactive(raw, role):
        flattened: list[AccessibilityNode] = []
        for child in children:
            flattened.extend(build_nodes(child, refs, interactive_only=True))
        return flattened

    attrs = _attrs(raw)
    value = raw.get("value")
    node = AccessibilityNode(
        role=role,
        ref=refs.register(int(raw.get("handle", -1))),
        tag=_tag(raw).lower(),
        name=accessible_name(raw, role),
        value=value if isinstance(value, str) and value else None,
        disabled=bool(raw.get("disabled")) or attrs.get("aria-disabled") == "true",
        focused=bool(raw.get("focused")),
        checked=_checked(raw, role),
        expanded=_tri_state(attrs.get("aria-expanded")),
    )
    for child in children:
        node.children.extend(build_nodes(child, refs, interactive_only=interactive_only))
    return [node]


def flatten_nodes(nodes: list[AccessibilityNode]) -> list[AccessibilityNode]:
    """Pre-order list of every node in `nodes` (same order as format_tree)."""
    out: list[AccessibilityNode] = []
    for node in nodes:
        out.append(node)
        out.extend(flatten_nodes(node.children))
    return out


def format_tree(nodes: list[AccessibilityNode], indent: int = 0) -> str:
    lines: list[str] = []
    for node in nodes:
        line = f"{'  ' * indent}- [{node.ref}] {node.role}"
        if node.name:
            line += f': "{node.name[:FORMAT_NAME_LIMIT]}"'
        if node.value:
            line += f' (value: "{node.value}")'
        if node.disabled:
            line += " [disabled]"
        if node.focused:
            line += " [focused]"
        if node.checked is not None:
            line += " [checked]" if node.checked else " [unchecked]"
        if node.expanded is not None:
            line += " [expanded]" if node.expanded else " [collapsed]"
        lines.append(line)
        if node.children:
            lines.append(format_tree(node.children, indent + 1))
    return "\n".join(lines)


class AccessibilitySnapshotBuilder:
    def __init__(self, executor: ScriptExecutor, refs: RefTable, *, max_depth: int = DEFAULT_MAX_DEPTH) -> None:
        self.executor = executor
        self.refs = refs
        self.max_depth = max_depth

    def snapshot(
        self,
        root_selector: str | None = None,
        max_depth: int | None = None,
        interactive_only: bool = False,
    ) -> ScriptResult:
        """Build a snapshot; on success `value` is a list of top-level nodes.

        Previous refs are invalidated even when the snapshot fails.
        """
        self.refs.reset()
        depth = max(1, int(max_depth or self.max_depth))
        result = self.executor.call("collect_dom_tree", root_selector or None, depth)
        if not result.ok:
            logger.info("snapshot failed root=%s: %s", root_selector, result.error)
            return result
        nodes = build_nodes(result.value, self.refs, interactive_only=interactive_only)
        logger.debug("snapshot built nodes=%d refs=%d", len(flatten_nodes(nodes)), len(self.refs))
        return ScriptResult.success(nodes)
