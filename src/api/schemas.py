"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from src.models import CustomerContext


class InboundMessage(BaseModel):
    """An inbound SMS, already normalized and enriched by the caller."""

    phone_number: str = Field(..., min_length=1, max_length=32, description="Sender phone number")
    message: str = Field(..., min_length=1, max_length=1600, description="The SMS body")
    customer: CustomerContext | None = Field(
        None, description="Known customer details for this phone number",
    )
    instructions: list[str] = Field(
        default_factory=list,
        description="Behavioral instructions produced by the conversation analyzer",
    )


class WebhookResponse(BaseModel):
    """What we replied and what the agent did to get there."""

    status: str = "success"
    message_sid: str
    content: str
    to: str
    tool_result: dict[str, Any] | None = None
    conversation_closed: bool = False


class TriggerMessageRequest(BaseModel):
    """Start a conversation with a customer who submitted a repair request."""

    phone_number: str = Field(..., min_length=1, max_length=32)
    customer: CustomerContext = Field(default_factory=CustomerContext)


class TriggerMessageResponse(BaseModel):
    status: str = "success"
    message_sid: str
    content: str
    to: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "sms-support-agent"
