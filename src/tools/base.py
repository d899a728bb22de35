"""Base types for the tool-calling framework."""

import json
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel


@dataclass
class ToolResult:
    """Result of a tool execution.

    Every tool returns one of these. The transport serializes it into a
    structured text payload for the calling agent.
    """

    data: dict[str, Any] | None = None
    error: str | None = None
    error_type: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_content(self) -> str:
        """Serialize to the JSON text sent back to the caller."""
        if self.error:
            payload: dict[str, Any] = {"error": self.error, "is_error": True}
            if self.error_type:
                payload["error_type"] = self.error_type
            return json.dumps(payload)
        return json.dumps(self.data or {})


class ToolParams(BaseModel):
    """Base class for tool parameter models.

    Subclass with Field() definitions. The JSON schema is auto-generated
    via model_json_schema() for the tool definitions.
    """
