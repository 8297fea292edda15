"""Console and network telemetry for the controlled page.

Two bounded ring buffers fed by host events:
- console: last `console_capacity` messages (default 500)
- network: last `network_capacity` requests (default 200)

Buffers live on the session-scoped controller, never at module level, so two
controllers never share telemetry. Reads copy the buffer under the lock and
filter the copy.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, fields
from typing import Any

from . import host as host_events
from .redaction import redact_url_brief

logger = logging.getLogger("agent_browser.telemetry")

CONSOLE_LEVELS = ("error", "warning", "info", "debug", "log")
_LEVEL_ALIASES = {
    "warn": "warning",
    "err": "error",
    "verbose": "debug",
    "trace": "debug",
}
_LEVEL_FILTERS = {"errors": "error", "warnings": "warning"}


def _now_ms() -> int:
    return int(time.time() * 1000)


def _str(x: Any, *, max_len: int = 2000) -> str:
    try:
        s = str(x)
    except Exception:
        s = "<unstringifiable>"
    if len(s) <= max_len:
        return s
    return s[:max_len] + f"… <truncated len={len(s)}>"


def _opt_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def normalize_level(level: Any) -> str:
    lv = str(level or "log").strip().lower()
    lv = _LEVEL_ALIASES.get(lv, lv)
    return lv if lv in CONSOLE_LEVELS else "log"


@dataclass(slots=True)
class ConsoleLogEntry:
    level: str
    message: str
    timestamp: int
    source: str | None = None
    line: int | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"level": self.level, "message": self.message, "timestamp": self.timestamp}
        if self.source:
            out["source"] = self.source
        if self.line is not None:
            out["line"] = self.line
        return out


@dataclass(slots=True)
class NetworkRequestEntry:
    id: str
    url: str
    method: str = "GET"
    resource_type: str = "other"
    status: int | None = None
    status_text: str = ""
    start_time: int = 0
    end_time: int | None = None
    duration: int | None = None
    size: int | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "method": self.method,
            "resourceType": self.resource_type,
            "status": self.status,
            "statusText": self.status_text,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "duration": self.duration,
            "size": self.size,
            "error": self.error,
        }

    def is_success(self) -> bool:
        return self.status is not None and 200 <= self.status < 400

    def is_error(self) -> bool:
        return self.status is None or self.status >= 400 or bool(self.error)

    def is_pending(self) -> bool:
        return self.status is None and not self.error and self.end_time is None


_NETWORK_FIELDS = frozenset(f.name for f in fields(NetworkRequestEntry)) - {"id"}


def summarize_network(entries: list[NetworkRequestEntry]) -> dict[str, int]:
    """Count requests by outcome (pending requests and aborted 2xx responses also count as error)."""
    return {
        "total": len(entries),
        "success": sum(1 for e in entries if e.is_success()),
        "error": sum(1 for e in entries if e.is_error()),
        "pending": sum(1 for e in entries if e.is_pending()),
    }


def format_bytes(size: int | None) -> str:
    if size is None:
        return "-"
    if size < 1024:
        return f"{size}B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f}KB"
    return f"{size / (1024 * 1024):.1f}MB"


def truncate_url(url: str, max_len: int = 80) -> str:
    if len(url) <= max_len:
        return url
    return url[: max_len - 3] + "..."


class TelemetryCapture:
    """Bounded console/network logs with idempotent host listener setup."""

    def __init__(self, *, console_capacity: int = 500, network_capacity: int = 200) -> None:
        self.console_capacity = max(1, int(console_capacity))
        self.network_capacity = max(1, int(network_capacity))
        self._lock = threading.Lock()
        self._console: list[ConsoleLogEntry] = []
        self._network: list[NetworkRequestEntry] = []
        self._host: Any = None
        self._listeners: dict[str, Any] = {}
        self._deferral_logged = False

    # ─────────────────────────────────────────────────────────────────────
    # Console
    # ─────────────────────────────────────────────────────────────────────

    def add_console_log(self, entry: ConsoleLogEntry) -> None:
        with self._lock:
            self._console.append(entry)
            if len(self._console) > self.console_capacity:
                del self._console[: len(self._console) - self.console_capacity]

    def get_console_logs(
        self, level: str = "all", text: str | None = None, limit: int | None = None
    ) -> list[ConsoleLogEntry]:
        with self._lock:
            entries = list(self._console)

        lv = str(level or "all").strip().lower()
        if lv != "all":
            want = _LEVEL_FILTERS.get(lv, lv)
            entries = [e for e in entries if e.level == want]
        if text:
            needle = text.lower()
            entries = [e for e in entries if needle in e.message.lower()]
        if limit is not None and limit >= 0:
            entries = entries[-limit:] if limit else []
        return entries

    def clear_console_logs(self) -> int:
        with self._lock:
            n = len(self._console)
            self._console.clear()
        return n

    # ─────────────────────────────────────────────────────────────────────
    # Network
    # ─────────────────────────────────────────────────────────────────────

    def add_network_request(self, entry: NetworkRequestEntry) -> None:
        with self._lock:
            self._network.append(entry)
            if len(self._network) > self.network_capacity:
                del self._network[: len(self._network) - self.network_capacity]

    def update_network_request(self, request_id: str, **patch: Any) -> bool:
        """Merge `patch` into the most recent entry with `request_id`.

        Returns False when the request is unknown (e.g. already evicted).
        """
        unknown = set(patch) - _NETWORK_FIELDS
        if unknown:
            raise TypeError(f"Unknown network entry fields: {sorted(unknown)}")
        with self._lock:
            for entry in reversed(self._network):
                if entry.id != request_id:
                    continue
                for key, value in patch.items():
                    setattr(entry, key, value)
                if entry.end_time is not None:
                    entry.duration = entry.end_time - entry.start_time
                return True
        return False

    def get_network_requests(
        self,
        type: str = "all",
        status: str = "all",
        url_pattern: str | None = None,
        limit: int | None = None,
    ) -> list[NetworkRequestEntry]:
        with self._lock:
            entries = list(self._network)

        rtype = str(type or "all").strip().lower()
        if rtype in {"xhr", "fetch"}:
            entries = [e for e in entries if e.resource_type.lower() in {"xhr", "fetch"}]
        elif rtype != "all":
            entries = [e for e in entries if e.resource_type.lower() == rtype]

        st = str(status or "all").strip().lower()
        if st == "success":
            entries = [e for e in entries if e.is_success()]
        elif st == "error":
            entries = [e for e in entries if e.is_error()]
        elif st == "pending":
            entries = [e for e in entries if e.is_pending()]

        if url_pattern:
            needle = url_pattern.lower()
            entries = [e for e in entries if needle in e.url.lower()]
        if limit is not None and limit >= 0:
            entries = entries[-limit:] if limit else []
        return entries

    def clear_network_requests(self) -> int:
        with self._lock:
            n = len(self._network)
            self._network.clear()
        return n

    # ─────────────────────────────────────────────────────────────────────
    # Host listeners
    # ─────────────────────────────────────────────────────────────────────

    @property
    def attached(self) -> bool:
        return self._host is not None

    def attach(self, host: Any) -> None:
        """Subscribe to host events, dropping any previous subscription first."""
        self.detach()
        listeners = {
            host_events.CONSOLE_MESSAGE: self._on_console,
            host_events.NETWORK_REQUEST: self._on_request,
            host_events.NETWORK_RESPONSE: self._on_response,
            host_events.NETWORK_FINISHED: self._on_finished,
            host_events.NETWORK_FAILED: self._on_failed,
        }
        self._host = host
        self._listeners = {}
        try:
            for event, listener in listeners.items():
                host.add_listener(event, listener)
                self._listeners[event] = listener
        except Exception:
            # Roll back the partial subscription; the next ensure_attached() retries.
            self.detach()
            raise
        self._deferral_logged = False
        logger.debug("telemetry attached")

    def detach(self) -> None:
        host = self._host
        if host is None:
            return
        for event, listener in self._listeners.items():
            try:
                host.remove_listener(event, listener)
            except Exception as exc:
                logger.debug("telemetry detach failed event=%s: %s", event, exc)
        self._host = None
        self._listeners = {}

    def ensure_attached(self, host: Any) -> bool:
        """Attach lazily; called before every controller operation."""
        if host is None:
            if not self._deferral_logged:
                logger.info("telemetry setup deferred: browser host not available yet")
                self._deferral_logged = True
            return False
        if self._host is not host:
            self.attach(host)
        return True

    # Event payloads are host-level dicts (see cdp_host.py for the CDP mapping).

    def _on_console(self, payload: dict[str, Any]) -> None:
        line = _opt_int(payload.get("line"))
        source = payload.get("source")
        self.add_console_log(
            ConsoleLogEntry(
                level=normalize_level(payload.get("level")),
                message=_str(payload.get("message", "")),
                timestamp=_opt_int(payload.get("timestamp")) or _now_ms(),
                source=redact_url_brief(source) if isinstance(source, str) and source else None,
                line=line,
            )
        )

    def _on_request(self, payload: dict[str, Any]) -> None:
        request_id = payload.get("id")
        if not isinstance(request_id, str) or not request_id:
            return
        self.add_network_request(
            NetworkRequestEntry(
                id=request_id,
                url=_str(payload.get("url", ""), max_len=4000),
                method=str(payload.get("method") or "GET"),
                resource_type=str(payload.get("resourceType") or "other").lower(),
                start_time=_opt_int(payload.get("timestamp")) or _now_ms(),
            )
        )

    def _on_response(self, payload: dict[str, Any]) -> None:
        request_id = payload.get("id")
        if not isinstance(request_id, str):
            return
        patch: dict[str, Any] = {
            "status": _opt_int(payload.get("status")),
            "status_text": str(payload.get("statusText") or ""),
        }
        size = _opt_int(payload.get("size"))
        if size is not None:
            patch["size"] = size
        self.update_network_request(request_id, **patch)

    def _on_finished(self, payload: dict[str, Any]) -> None:
        request_id = payload.get("id")
        if not isinstance(request_id, str):
            return
        patch: dict[str, Any] = {"end_time": _opt_int(payload.get("timestamp")) or _now_ms()}
        size = _opt_int(payload.get("size"))
        if size is not None:
            patch["size"] = size
        self.update_network_request(request_id, **patch)

    def _on_failed(self, payload: dict[str, Any]) -> None:
        request_id = payload.get("id")
        if not isinstance(request_id, str):
            return
        self.update_network_request(
            request_id,
            error=_str(payload.get("error") or "failed", max_len=500),
            end_time=_opt_int(payload.get("timestamp")) or _now_ms(),
        )
