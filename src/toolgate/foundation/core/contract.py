"""Tool contracts: the declared, data-only half of a registered tool."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from toolgate.foundation.errors import JsonDict
from toolgate.foundation.schema import ParameterSchema


class ToolContract(BaseModel):
    """Metadata describing a tool and the arguments it accepts.

    Immutable once constructed. Used for:
    - Dispatch by name
    - Argument validation before execution
    - Tool listings for MCP clients (`tools/list`)
    - Retry hints (`declares_side_effects` makes timeouts non-retryable
      unless the caller supplied an idempotency key)

    Attributes:
        name: Unique identifier (e.g. "web_search", "fs.read")
        description: What the tool does
        parameter_schema: Accepted arguments
        declares_side_effects: Whether a call may change external state
    """

    model_config = ConfigDict(
        frozen=True, str_strip_whitespace=True, extra="forbid",
        json_schema_extra={"title": "Tool Contract"},
    )

    name: str = Field(..., min_length=1, max_length=128, pattern=r"^[A-Za-z][A-Za-z0-9_.\-]*$")
    description: str = Field(..., min_length=1)
    parameter_schema: ParameterSchema = Field(default_factory=ParameterSchema.empty)
    declares_side_effects: bool = False

    def to_mcp(self) -> JsonDict:
        """Render as an MCP tool descriptor."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.parameter_schema.to_json_schema(),
        }
