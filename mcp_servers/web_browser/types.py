"""Result shape returned to tool callers."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any


@dataclass(slots=True)
class ToolResult:
    success: bool
    data: Any | None = None
    error: str | None = None

    @classmethod
    def ok(cls, data: Any = None) -> ToolResult:
        return cls(success=True, data=data)

    @classmethod
    def failure(cls, message: str) -> ToolResult:
        return cls(success=False, error=str(message or "Unknown error"))

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": bool(self.success)}
        if self.success:
            if self.data is not None:
                out["data"] = self.data
        else:
            out["error"] = self.error or "Unknown error"
        return out

    def to_content_list(self) -> list[dict[str, Any]]:
        """Render as MCP text content."""
        if not self.success:
            return [{"type": "text", "text": f"Error: {self.error or 'Unknown error'}"}]
        if isinstance(self.data, str):
            text = self.data
        else:
            text = json.dumps(self.data, ensure_ascii=False, indent=2)
        return [{"type": "text", "text": text}]
