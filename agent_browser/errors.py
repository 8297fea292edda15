"""
Error taxonomy for the browser control layer.

Provides:
- SmartToolError: structured error with a suggestion for AI agents
- ValidationError: missing/unparsable input (not retryable)
- ResourceUnavailable: host not initialized yet (retryable)

"Not found" script sentinels and wait timeouts are result states, not errors.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

VALIDATION_ERROR = "validation_error"
DNS_ERROR = "dns_error"
CONNECTION_REFUSED = "connection_refused"
TIMEOUT = "timeout"
SSL_ERROR = "ssl_error"
SECURITY_BLOCKED = "security_blocked"
TYPO_DETECTED = "typo_detected"
UNKNOWN = "unknown"
SCRIPT_FAULT = "script_fault"
NOT_FOUND = "not_found"
RESOURCE_UNAVAILABLE = "resource_unavailable"
CANCELLED = "cancelled"


@dataclass
class SmartToolError(Exception):
    """Structured error with context for AI agents."""

    tool: str
    action: str
    reason: str
    suggestion: str
    details: dict[str, Any] = field(default_factory=dict)
    category: str = UNKNOWN
    retryable: bool = False

    def __str__(self) -> str:
        return f"[{self.tool}] {self.action} failed: {self.reason}. Suggestion: {self.suggestion}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": True,
            "tool": self.tool,
            "action": self.action,
            "reason": self.reason,
            "suggestion": self.suggestion,
            "category": self.category,
            "isRetryable": self.retryable,
            "details": self.details,
        }


@dataclass
class ValidationError(SmartToolError):
    category: str = VALIDATION_ERROR
    retryable: bool = False


@dataclass
class ResourceUnavailable(SmartToolError):
    category: str = RESOURCE_UNAVAILABLE
    retryable: bool = True
