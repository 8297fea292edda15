"""
Result types shared by the controller and the tool server.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..errors import SmartToolError

RETRY_NOTE = "This error may be temporary - you can try again."


@dataclass(slots=True)
class ToolContent:
    """Single content item in tool response."""

    type: str  # "text" or "image"
    text: str | None = None
    data: str | None = None  # base64 for images
    mime_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.type == "image":
            return {"type": "image", "data": self.data, "mimeType": self.mime_type}
        return {"type": "text", "text": self.text}


@dataclass(slots=True)
class ToolResult:
    """Outcome of one controller operation: flag, short summary, metadata."""

    success: bool
    output: str
    metadata: dict[str, Any] = field(default_factory=dict)
    image: ToolContent | None = None

    @property
    def is_error(self) -> bool:
        return not self.success

    @classmethod
    def ok(cls, output: str, metadata: dict[str, Any] | None = None) -> ToolResult:
        return cls(success=True, output=output, metadata=dict(metadata or {}))

    @classmethod
    def error(
        cls,
        message: str,
        *,
        tool: str | None = None,
        category: str | None = None,
        suggestion: str | None = None,
        retryable: bool = False,
        details: dict[str, Any] | None = None,
    ) -> ToolResult:
        lines = [message]
        if category:
            lines.append(f"Error Category: {category}")
        if suggestion:
            lines.append(f"Suggestion: {suggestion}")
        if retryable:
            lines.append(RETRY_NOTE)
        metadata: dict[str, Any] = {"error": message, "isRetryable": retryable}
        if tool:
            metadata["tool"] = tool
        if category:
            metadata["errorCategory"] = category
        if suggestion:
            metadata["suggestion"] = suggestion
        if details:
            metadata.update(details)
        return cls(success=False, output="\n".join(lines), metadata=metadata)

    @classmethod
    def from_exception(cls, exc: SmartToolError) -> ToolResult:
        return cls.error(
            f"{exc.action} failed: {exc.reason}",
            tool=exc.tool,
            category=exc.category,
            suggestion=exc.suggestion,
            retryable=exc.retryable,
            details=exc.details,
        )

    @classmethod
    def with_image(
        cls, text: str, data_b64: str, mime_type: str = "image/png", metadata: dict[str, Any] | None = None
    ) -> ToolResult:
        """Text plus image content. Omits the image if data is empty."""
        image = ToolContent(type="image", data=data_b64, mime_type=mime_type) if data_b64 else None
        return cls(success=True, output=text, metadata=dict(metadata or {}), image=image)

    def to_content_list(self) -> list[dict[str, Any]]:
        content = [ToolContent(type="text", text=self.output).to_dict()]
        if self.image is not None:
            content.append(self.image.to_dict())
        return content
