"""Declarations of every tool the reasoning engine may call.

Each tool has a Pydantic input model.  The catalog handed to the engine is
built from those models once at import time, and the executor validates
engine output against the very same models, so the two can never disagree.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from types import MappingProxyType
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ToolName(StrEnum):
    """The closed set of tools."""

    SCHEDULE_APPOINTMENT = "scheduleAppointment"
    STOP_CONVO = "stopConvo"
    REQUEST_HUMAN_CALLBACK = "requestHumanCallback"
    UPDATE_INFO = "updateInfo"
    UPDATE_APPOINTMENT = "updateAppointment"


# Tools whose use means the conversation should be treated as closed
TERMINAL_TOOLS: frozenset[ToolName] = frozenset({ToolName.STOP_CONVO})


def resolve_tool(name: Any) -> ToolName | None:
    """Map a raw tool name from the engine to a ``ToolName``, or ``None``."""
    try:
        return ToolName(name)
    except ValueError:
        return None


# ── Input schemas ────────────────────────────────────────────────────


class _ToolInput(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)


class ScheduleAppointmentInput(_ToolInput):
    customer_phone: str = Field(..., min_length=1, description="Customer's phone number")
    phone_model: str = Field(..., min_length=1, description="Customer's phone model")
    issue: str = Field(..., min_length=1, description="Description of the repair needed")
    preferred_time: datetime = Field(
        ...,
        description=(
            "Customer's preferred appointment time in ISO 8601 format "
            "(e.g. 2026-02-17T15:00:00Z). Must be in the future."
        ),
    )
    store_location: str = Field(
        ...,
        min_length=1,
        description=(
            "Store location name, address, city or store id; anything that "
            "identifies the store"
        ),
    )
    details: str = Field(
        ...,
        description=(
            "Details about the appointment: what the customer wants done and "
            "any other relevant information"
        ),
    )


class StopConvoInput(_ToolInput):
    customer_phone: str = Field(..., description="Customer's phone number")
    reason: str = Field(..., min_length=1, description="Reason for stopping the conversation")


class RequestHumanCallbackInput(_ToolInput):
    customer_phone: str = Field(..., description="Customer's phone number")
    urgency: Literal["low", "medium", "high"] = Field(
        ..., description="Priority level of the callback request",
    )
    reason: str = Field(..., min_length=1, description="Reason for requesting a human callback")


class CustomerUpdates(_ToolInput):
    name: str | None = Field(None, description="Updated customer name")
    phone_model: str | None = Field(None, description="Updated phone model")
    issue: str | None = Field(None, description="Updated repair issue")


class UpdateInfoInput(_ToolInput):
    customer_phone: str = Field(..., description="Customer's phone number")
    updates: CustomerUpdates = Field(..., description="Fields to update")
    reason: str | None = Field(None, description="Reason for the information update")


class UpdateAppointmentInput(_ToolInput):
    customer_phone: str = Field(..., description="Customer's phone number")
    new_time: datetime = Field(..., description="New appointment time (ISO 8601 format)")
    appointment_id: str | None = Field(None, description="ID of the appointment to update")
    reason: str | None = Field(None, description="Reason for the appointment update")


INPUT_MODELS: MappingProxyType[ToolName, type[_ToolInput]] = MappingProxyType({
    ToolName.SCHEDULE_APPOINTMENT: ScheduleAppointmentInput,
    ToolName.STOP_CONVO: StopConvoInput,
    ToolName.REQUEST_HUMAN_CALLBACK: RequestHumanCallbackInput,
    ToolName.UPDATE_INFO: UpdateInfoInput,
    ToolName.UPDATE_APPOINTMENT: UpdateAppointmentInput,
})

_DESCRIPTIONS: dict[ToolName, str] = {
    ToolName.SCHEDULE_APPOINTMENT: (
        "Schedules a repair appointment for a customer given their phone "
        "number, phone model, issue, store location and preferred time."
    ),
    ToolName.STOP_CONVO: (
        "Stops the conversation and marks it as completed when the repair is "
        "out of scope or the conversation needs to end."
    ),
    ToolName.REQUEST_HUMAN_CALLBACK: (
        "Requests a human callback for complex situations or when the "
        "customer specifically asks for human assistance."
    ),
    ToolName.UPDATE_INFO: (
        "Updates customer information when details need to be corrected or modified."
    ),
    ToolName.UPDATE_APPOINTMENT: (
        "Updates an existing appointment time or details for a customer."
    ),
}


def _inline_refs(node: Any, defs: dict[str, Any]) -> Any:
    """Replace ``$ref`` pointers with their definitions so each schema stands alone."""
    if isinstance(node, dict):
        ref = node.get("$ref")
        if isinstance(ref, str) and ref.startswith("#/$defs/"):
            resolved = dict(defs[ref.removeprefix("#/$defs/")])
            # Keep sibling keys such as the field description
            resolved.update({k: v for k, v in node.items() if k != "$ref"})
            return _inline_refs(resolved, defs)
        all_of = node.get("allOf")
        if isinstance(all_of, list) and len(all_of) == 1:
            merged = {k: v for k, v in node.items() if k != "allOf"}
            return _inline_refs({**all_of[0], **merged}, defs)
        return {k: _inline_refs(v, defs) for k, v in node.items() if k != "$defs"}
    if isinstance(node, list):
        return [_inline_refs(item, defs) for item in node]
    return node


def _to_anthropic_tool(name: ToolName) -> dict[str, Any]:
    """Render one tool in the Anthropic ``{name, description, input_schema}`` shape."""
    raw = INPUT_MODELS[name].model_json_schema()
    schema = _inline_refs(raw, raw.get("$defs", {}))
    schema.pop("title", None)
    return {
        "name": name.value,
        "description": _DESCRIPTIONS[name],
        "input_schema": schema,
    }


def _freeze(node: Any) -> Any:
    if isinstance(node, dict):
        return MappingProxyType({key: _freeze(value) for key, value in node.items()})
    if isinstance(node, list):
        return tuple(_freeze(item) for item in node)
    return node


def _thaw(node: Any) -> Any:
    if isinstance(node, MappingProxyType):
        return {key: _thaw(value) for key, value in node.items()}
    if isinstance(node, tuple):
        return [_thaw(item) for item in node]
    return node


# Built once and read-only all the way down; handed unchanged to the engine on every turn
TOOL_CATALOG: tuple[MappingProxyType, ...] = tuple(
    _freeze(_to_anthropic_tool(name)) for name in ToolName
)


def catalog_for_engine() -> list[dict[str, Any]]:
    """Return a fresh mutable copy of the catalog, the form ``bind_tools`` accepts."""
    return [_thaw(entry) for entry in TOOL_CATALOG]
