"""Data models shared by the interaction loop, the tool executor and the API.

These are the contract between the reasoning engine, the loop and the
tools.  They live apart from runtime logic so they can be imported anywhere
without side effects.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CustomerContext(BaseModel):
    """What we know about the customer on the other end of the SMS thread."""

    phone_number: str | None = Field(None, description="Customer phone number")
    name: str | None = Field(None, description="Customer name")
    phone_model: str | None = Field(None, description="Device the customer wants repaired")
    issue: str | None = Field(None, description="Reported problem with the device")


class ToolInvocationRequest(BaseModel):
    """One tool call requested by the reasoning engine.

    ``args`` is untrusted until the executor validates it.  ``error`` is set
    when the engine produced a call whose arguments could not be parsed.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    args: dict[str, Any] | None = None
    error: str | None = None


class ToolResult(BaseModel):
    """Outcome of a single tool execution.

    ``success=False`` means no side effect was committed.
    """

    model_config = ConfigDict(frozen=True)

    success: bool
    message: str
    payload: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    terminal: bool = False

    @classmethod
    def ok(cls, message: str, *, terminal: bool = False, **payload: Any) -> ToolResult:
        return cls(success=True, message=message, payload=payload, terminal=terminal)

    @classmethod
    def fail(cls, error: str, message: str | None = None) -> ToolResult:
        return cls(success=False, message=message or error, error=error)

    def as_payload(self) -> dict[str, Any]:
        """Flatten into the shape handed to the engine and to callers."""
        data: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.error is not None:
            data["error"] = self.error
        data.update(self.payload)
        return data


class InteractionResult(BaseModel):
    """Final output of one interaction, shaped for the webhook layer."""

    content: str
    tool_result: dict[str, Any] | None = None
    tool_results: list[dict[str, Any]] = Field(default_factory=list)
    conversation_closed: bool = False
    status: str = "done"
    tool_rounds: int = 0
