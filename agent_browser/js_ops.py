"""
Named page operations.

Each operation is a JavaScript function expression. `ScriptExecutor.call`
invokes it as `(fn)(arg0, arg1, ...)` with every argument encoded by
`json.dumps`, so caller strings are never spliced into source text.

Operations report element-not-found style conditions by returning
`{__error: "..."}` from inside the page instead of throwing.
"""
from __future__ import annotations

import json
from typing import Any

# Page-side handle table for snapshot refs (indexes, not DOM attributes).
HANDLE_TABLE = "window.__agentBrowserHandles"

# ═══════════════════════════════════════════════════════════════════════════════
# Page text and info
# ═══════════════════════════════════════════════════════════════════════════════

PAGE_TEXT_CONTAINS = '''
(needle) => {
    const body = document.body;
    if (!body) return false;
    return (body.innerText || '').includes(needle);
}
'''

PAGE_INFO = '''
() => ({
    url: window.location.href,
    title: document.title || '',
    readyState: document.readyState,
})
'''

ELEMENT_EXISTS = '''
(selector) => {
    try {
        return document.querySelector(selector) !== null;
    } catch (e) {
        return {__error: 'Invalid selector: ' + selector};
    }
}
'''

# ═══════════════════════════════════════════════════════════════════════════════
# Element queries
# ═══════════════════════════════════════════════════════════════════════════════

DESCRIBE_ELEMENT = '''
const describeElement = (el) => {
    const attributes = {};
    for (const attr of Array.from(el.attributes || [])) {
        attributes[attr.name] = String(attr.value).slice(0, 200);
    }
    const r = el.getBoundingClientRect();
    return {
        tag: el.tagName.toLowerCase(),
        id: el.id || null,
        className: typeof el.className === 'string' ? (el.className || null) : null,
        text: (el.textContent || '').replace(/\\s+/g, ' ').trim().slice(0, 200),
        attributes,
        rect: {x: r.x, y: r.y, width: r.width, height: r.height},
    };
};
'''

QUERY_ELEMENTS = '''
(selector, limit) => {
    ''' + DESCRIBE_ELEMENT + '''
    let nodes;
    try {
        nodes = Array.from(document.querySelectorAll(selector));
    } catch (e) {
        return {__error: 'Invalid selector: ' + selector};
    }
    return nodes.slice(0, Math.max(0, limit)).map(describeElement);
}
'''

ELEMENT_RECT = '''
(selector) => {
    let el;
    try {
        el = document.querySelector(selector);
    } catch (e) {
        return {__error: 'Invalid selector: ' + selector};
    }
    if (!el) return {__error: 'Element not found: ' + selector};
    el.scrollIntoView({block: 'center', inline: 'center'});
    const r = el.getBoundingClientRect();
    return {x: r.x + window.scrollX, y: r.y + window.scrollY, width: r.width, height: r.height};
}
'''

PAGE_DIMENSIONS = '''
() => {
    const d = document.documentElement;
    const b = document.body || d;
    return {
        width: Math.max(d.scrollWidth, b.scrollWidth, d.clientWidth),
        height: Math.max(d.scrollHeight, b.scrollHeight, d.clientHeight),
    };
}
'''

DESCRIBE_REF = '''
(index) => {
    ''' + DESCRIBE_ELEMENT + '''
    const handles = ''' + HANDLE_TABLE + ''' || [];
    const el = handles[index];
    if (!el) return {__error: 'Unknown ref handle: ' + index};
    if (!el.isConnected) return {__error: 'Element is no longer attached to the page'};
    return describeElement(el);
}
'''

# ═══════════════════════════════════════════════════════════════════════════════
# Accessibility snapshot
# ═══════════════════════════════════════════════════════════════════════════════

# Collects raw facts only; role, name and refs are computed in snapshot.py.
COLLECT_DOM_TREE = '''
(rootSelector, maxDepth) => {
    const ATTRS = [
        'role', 'href', 'type', 'id', 'name', 'title', 'alt', 'placeholder',
        'tabindex', 'onclick', 'contenteditable',
        'aria-label', 'aria-labelledby', 'aria-checked', 'aria-expanded', 'aria-disabled',
    ];
    const VALUE_TAGS = new Set(['INPUT', 'TEXTAREA', 'SELECT']);
    const clean = (s) => (s || '').replace(/\\s+/g, ' ').trim();

    let root;
    if (rootSelector) {
        try {
            root = document.querySelector(rootSelector);
        } catch (e) {
            return {__error: 'Invalid selector: ' + rootSelector};
        }
        if (!root) return {__error: 'Root element not found: ' + rootSelector};
    } else {
        root = document.body || document.documentElement;
    }

    const handles = [];
    ''' + HANDLE_TABLE + ''' = handles;

    const labelText = (el) => {
        try {
            if (el.labels && el.labels.length) return clean(el.labels[0].textContent);
        } catch (e) {}
        const wrap = el.closest ? el.closest('label') : null;
        return wrap && wrap !== el ? clean(wrap.textContent) : '';
    };

    const labelledByText = (el) => {
        const ids = (el.getAttribute('aria-labelledby') || '').split(/\\s+/).filter(Boolean);
        return clean(ids.map((id) => {
            const ref = document.getElementById(id);
            return ref ? ref.textContent : '';
        }).join(' '));
    };

    const collect = (el, depth) => {
        const style = window.getComputedStyle(el);
        const tag = el.tagName.toUpperCase();
        if (style.display === 'none' || style.visibility === 'hidden') {
            return {tag, hidden: true};
        }
        const attrs = {};
        for (const a of ATTRS) {
            const v = el.getAttribute(a);
            if (v !== null) attrs[a] = v;
        }
        let value = null;
        if (VALUE_TAGS.has(tag) && (el.type || '').toLowerCase() !== 'password') {
            try {
                if (typeof el.value === 'string') value = el.value.slice(0, 100);
            } catch (e) {
                value = null;
            }
        }
        const node = {
            tag,
            handle: handles.push(el) - 1,
            attrs,
            text: clean(el.textContent).slice(0, 200),
            label: VALUE_TAGS.has(tag) ? labelText(el) : '',
            labelledBy: attrs['aria-labelledby'] ? labelledByText(el) : '',
            value,
            hasClickHandler: typeof el.onclick === 'function',
            editable: el.isContentEditable === true,
            disabled: el.disabled === true,
            focused: document.activeElement === el,
            checked: typeof el.checked === 'boolean' ? el.checked : null,
            children: [],
        };
        if (depth + 1 < maxDepth) {
            for (const child of Array.from(el.children)) {
                node.children.push(collect(child, depth + 1));
            }
        }
        return node;
    };

    return collect(root, 0);
}
'''

# ═══════════════════════════════════════════════════════════════════════════════
# Page actions
# ═══════════════════════════════════════════════════════════════════════════════

# A target is {handle: n} (snapshot ref) or {selector: "..."}.
RESOLVE_TARGET = '''
const resolveTarget = (target) => {
    if (target && typeof target.handle === 'number') {
        const el = (''' + HANDLE_TABLE + ''' || [])[target.handle];
        if (!el) return {__error: 'Unknown ref handle: ' + target.handle};
        if (!el.isConnected) return {__error: 'Element is no longer attached to the page'};
        return {el};
    }
    const selector = target ? target.selector : '';
    let el;
    try {
        el = document.querySelector(selector);
    } catch (e) {
        return {__error: 'Invalid selector: ' + selector};
    }
    if (!el) return {__error: 'Element not found: ' + selector};
    return {el};
};
'''

# Native setter first so framework-controlled inputs see the change.
SET_VALUE = '''
const setValue = (el, value) => {
    try {
        const proto = Object.getPrototypeOf(el);
        const desc = proto ? Object.getOwnPropertyDescriptor(proto, 'value') : null;
        if (desc && typeof desc.set === 'function') {
            desc.set.call(el, value);
            return;
        }
    } catch (e) {}
    el.value = value;
};
const fire = (el, name) => el.dispatchEvent(new Event(name, {bubbles: true}));
'''

CLICK_ELEMENT = '''
(target) => {
    ''' + RESOLVE_TARGET + '''
    const found = resolveTarget(target);
    if (found.__error) return found;
    const el = found.el;
    try {
        el.scrollIntoView({block: 'center', inline: 'center'});
    } catch (e) {}
    el.click();
    return {
        tag: el.tagName.toLowerCase(),
        text: (el.textContent || el.value || el.getAttribute('aria-label') || '').replace(/\\s+/g, ' ').trim().slice(0, 120),
        href: el.href || el.getAttribute('href') || null,
        disabled: el.disabled === true,
    };
}
'''

TYPE_TEXT = '''
(target, text, clear, submit) => {
    ''' + RESOLVE_TARGET + SET_VALUE + '''
    const found = resolveTarget(target);
    if (found.__error) return found;
    const el = found.el;
    const tag = el.tagName.toLowerCase();
    el.focus();
    let length;
    if (tag === 'input' || tag === 'textarea') {
        setValue(el, (clear ? '' : String(el.value || '')) + text);
        length = String(el.value).length;
    } else if (el.isContentEditable) {
        el.textContent = (clear ? '' : el.textContent || '') + text;
        length = el.textContent.length;
    } else {
        return {__error: 'Element does not accept text: <' + tag + '>'};
    }
    fire(el, 'input');
    fire(el, 'change');
    let submitted = false;
    if (submit && el.form) {
        if (typeof el.form.requestSubmit === 'function') el.form.requestSubmit();
        else el.form.submit();
        submitted = true;
    }
    return {tag, length, submitted};
}
'''

FILL_FIELD = '''
(target, value, kind) => {
    ''' + RESOLVE_TARGET + SET_VALUE + '''
    const found = resolveTarget(target);
    if (found.__error) return found;
    const el = found.el;
    const tag = el.tagName.toLowerCase();
    const type = String(el.type || '').toLowerCase();
    let mode = kind;
    if (!mode) {
        if (tag === 'select') mode = 'combobox';
        else if (type === 'checkbox' || type === 'radio') mode = type;
        else if (type === 'range') mode = 'slider';
        else mode = 'textbox';
    }
    if (mode === 'checkbox') {
        const want = value === true || String(value).toLowerCase() === 'true';
        if (el.checked !== want) el.click();
        return {kind: mode, checked: el.checked === true};
    }
    if (mode === 'radio') {
        if (!el.checked) el.click();
        return {kind: mode, checked: el.checked === true};
    }
    if (mode === 'combobox') {
        const wanted = String(value);
        const options = Array.from(el.options || el.querySelectorAll('option'));
        const opt = options.find((o) => o.value === wanted || (o.textContent || '').trim() === wanted);
        if (!opt) return {__error: 'Option not found: ' + wanted};
        setValue(el, opt.value);
        fire(el, 'input');
        fire(el, 'change');
        return {kind: mode, value: opt.value};
    }
    el.focus();
    if (el.isContentEditable) {
        el.textContent = String(value);
    } else if (tag === 'input' || tag === 'textarea') {
        setValue(el, String(value));
    } else {
        return {__error: 'Element is not a form field: <' + tag + '>'};
    }
    fire(el, 'input');
    fire(el, 'change');
    return {kind: mode};
}
'''

SUBMIT_FORM = '''
(formSelector) => {
    let form = null;
    if (formSelector) {
        try {
            form = document.querySelector(formSelector);
        } catch (e) {
            return {__error: 'Invalid selector: ' + formSelector};
        }
    } else {
        const active = document.activeElement;
        form = (active && active.form) || document.querySelector('form');
    }
    if (!form) return {__error: formSelector ? 'Form not found: ' + formSelector : 'No form on the page'};
    if (typeof form.requestSubmit === 'function') form.requestSubmit();
    else form.submit();
    return {submitted: true};
}
'''

SCROLL_PAGE = '''
(target, direction, amount) => {
    ''' + RESOLVE_TARGET + '''
    const root = document.scrollingElement || document.documentElement;
    if (target) {
        const found = resolveTarget(target);
        if (found.__error) return found;
        found.el.scrollIntoView({block: 'center', inline: 'nearest'});
    } else {
        const step = Math.max(0, amount);
        if (direction === 'up') window.scrollBy(0, -step);
        else if (direction === 'down') window.scrollBy(0, step);
        else if (direction === 'top') window.scrollTo(0, 0);
        else if (direction === 'bottom') window.scrollTo(0, root.scrollHeight);
    }
    return {x: window.scrollX, y: window.scrollY, height: root.scrollHeight, viewport: window.innerHeight};
}
'''

EXTRACT_TEXT = '''
(target) => {
    ''' + RESOLVE_TARGET + '''
    if (!target) {
        const body = document.body;
        return body ? (body.innerText || '').trim() : '';
    }
    const found = resolveTarget(target);
    if (found.__error) return found;
    return String(found.el.innerText || found.el.textContent || '').trim();
}
'''

OPERATIONS: dict[str, str] = {
    "page_text_contains": PAGE_TEXT_CONTAINS,
    "page_info": PAGE_INFO,
    "element_exists": ELEMENT_EXISTS,
    "query_elements": QUERY_ELEMENTS,
    "element_rect": ELEMENT_RECT,
    "page_dimensions": PAGE_DIMENSIONS,
    "describe_ref": DESCRIBE_REF,
    "collect_dom_tree": COLLECT_DOM_TREE,
    "click_element": CLICK_ELEMENT,
    "type_text": TYPE_TEXT,
    "fill_field": FILL_FIELD,
    "submit_form": SUBMIT_FORM,
    "scroll_page": SCROLL_PAGE,
    "extract_text": EXTRACT_TEXT,
}


def build_call(operation: str, *args: Any) -> str:
    """Render `(fn)(args...)` for a named operation.

    Raises KeyError for unknown operations and TypeError for arguments
    that are not JSON-serialisable.
    """
    source = OPERATIONS[operation].strip()
    encoded = ", ".join(json.dumps(arg) for arg in args)
    return f"({source})({encoded})"
