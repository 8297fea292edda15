"""Chrome DevTools Protocol transport over websocket-client.

CdpConnection: id-correlated request/response on one page websocket.
CdpEventBus: background reader on a second connection that forwards CDP
events (console, network, page lifecycle) to a sink and reconnects with
backoff.
"""

from __future__ import annotations

import json
import logging
import socket
import threading
import time
from collections import deque
from collections.abc import Callable
from contextlib import suppress
from typing import Any

import websocket

from .http_client import HttpClientError

logger = logging.getLogger("agent_browser.cdp")

EventSink = Callable[[dict[str, Any]], None]

_BACKLOG_LIMIT = 2000


def _is_timeout(exc: Exception) -> bool:
    return isinstance(exc, (TimeoutError, websocket.WebSocketTimeoutException)) or "timed out" in str(exc).lower()


def _is_event(data: Any) -> bool:
    return isinstance(data, dict) and isinstance(data.get("method"), str) and "id" not in data


def _event_params(event: dict[str, Any]) -> dict[str, Any]:
    params = event.get("params")
    return params if isinstance(params, dict) else {}


class CdpConnection:
    """One page websocket speaking CDP commands.

    Events read while a command is in flight go to a bounded backlog so a
    later wait_for_event() can still see them.
    """

    def __init__(self, ws_url: str, timeout: float = 5.0):
        try:
            self.ws = websocket.create_connection(ws_url, timeout=timeout)
        except (OSError, websocket.WebSocketException) as exc:
            raise HttpClientError(f"CDP connect failed: {exc}") from exc
        self.ws_url = ws_url
        self.timeout = timeout
        self._ids = 0
        self._backlog: deque[dict[str, Any]] = deque(maxlen=_BACKLOG_LIMIT)

    def clear_events(self) -> None:
        self._backlog.clear()

    def _take_backlog(self, event_name: str) -> dict[str, Any] | None:
        for event in self._backlog:
            if event.get("method") == event_name:
                self._backlog.remove(event)
                return _event_params(event)
        return None

    def send(self, method: str, params: dict[str, Any] | None = None, *, timeout: float | None = None) -> dict[str, Any]:
        """Run one CDP command and return its ``result`` object."""
        self._ids += 1
        command_id = self._ids
        frame: dict[str, Any] = {"id": command_id, "method": method}
        if params:
            frame["params"] = params
        try:
            self.ws.settimeout(min(2.0, max(0.5, float(self.timeout))))
            self.ws.send(json.dumps(frame))
        except (OSError, websocket.WebSocketException) as exc:
            raise HttpClientError(f"{method}: {exc}") from exc

        budget = self.timeout if timeout is None else timeout
        deadline = time.monotonic() + budget
        while (remaining := deadline - time.monotonic()) > 0:
            data = self._recv_json(remaining)
            if _is_event(data):
                self._backlog.append(data)
            elif isinstance(data, dict) and data.get("id") == command_id:
                return self._unwrap_reply(data)
        raise HttpClientError(f"CDP response timed out: {method} after {budget:.1f}s")

    @staticmethod
    def _unwrap_reply(reply: dict[str, Any]) -> dict[str, Any]:
        if "error" in reply:
            err = reply["error"]
            raise HttpClientError(str((err.get("message") if isinstance(err, dict) else None) or err))
        result = reply.get("result")
        return result if isinstance(result, dict) else {}

    def _recv_json(self, remaining: float) -> Any:
        """One bounded recv; None on timeout or an undecodable frame."""
        try:
            self.ws.settimeout(min(0.5, max(0.01, remaining)))
            raw = self.ws.recv()
        except (OSError, websocket.WebSocketException) as exc:
            if _is_timeout(exc):
                return None
            raise HttpClientError(f"CDP socket error: {exc}") from exc
        try:
            return json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            return None

    def wait_for_event(self, event_name: str, timeout: float = 10.0) -> dict[str, Any] | None:
        """Params of the next ``event_name`` event, or None after ``timeout`` seconds."""
        seen = self._take_backlog(event_name)
        if seen is not None:
            return seen
        deadline = time.monotonic() + timeout
        while (remaining := deadline - time.monotonic()) > 0:
            data = self._recv_json(remaining)
            if not _is_event(data):
                continue
            if data["method"] == event_name:
                return _event_params(data)
            self._backlog.append(data)
        return None

    def close(self) -> None:
        # websocket close() handshakes and can block on a dead peer; drop the socket instead.
        sock = getattr(self.ws, "sock", None)
        if sock is None:
            return
        with suppress(OSError):
            sock.shutdown(socket.SHUT_RDWR)
        with suppress(OSError):
            sock.close()


class CdpEventBus:
    """Background CDP event reader feeding host listeners between tool calls."""

    def __init__(self, *, ws_url: str, on_event: EventSink, name: str = "agent-browser-events") -> None:
        self.ws_url = ws_url
        self._on_event = on_event
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._conn: CdpConnection | None = None

    def start(self) -> None:
        if self._thread.is_alive():
            return
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        conn = self._conn
        if conn is not None:
            conn.close()

    def _run(self) -> None:
        backoff = 0.2
        while not self._stop.is_set():
            conn: CdpConnection | None = None
            try:
                conn = CdpConnection(self.ws_url, timeout=5.0)
                self._conn = conn
                for domain in ("Page", "Runtime", "Network"):
                    conn.send(f"{domain}.enable")
                backoff = 0.2

                while not self._stop.is_set():
                    data = conn._recv_json(0.5)
                    if _is_event(data):
                        try:
                            self._on_event(data)
                        except Exception:
                            logger.debug("event sink failed method=%s", data.get("method"), exc_info=True)
            except HttpClientError as exc:
                if not self._stop.is_set():
                    logger.debug("event bus disconnected: %s", exc)
            finally:
                if conn is not None:
                    conn.close()
                self._conn = None

            if self._stop.is_set():
                break
            # Event.wait returns early on stop().
            self._stop.wait(backoff)
            backoff = min(backoff * 1.5, 2.0)
