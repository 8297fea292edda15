from __future__ import annotations

import json
from typing import Any
from urllib.request import Request, urlopen


class HttpClientError(Exception):
    pass


def get_json(url: str, *, method: str = "GET", timeout: float = 2.0) -> Any:
    """Fetch a JSON document from the local DevTools HTTP endpoint."""
    req = Request(url, method=method, headers={"User-Agent": "agent-browser/1.0"})
    try:
        with urlopen(req, timeout=timeout) as resp:
            return json.loads(resp.read().decode())
    except OSError as exc:
        raise HttpClientError(str(exc)) from exc
    except json.JSONDecodeError as exc:
        raise HttpClientError(f"Invalid JSON from {url}: {exc}") from exc
