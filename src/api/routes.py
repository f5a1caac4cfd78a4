"""FastAPI route definitions for the SMS support agent API."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request, Response

from src.agent import generate_first_contact_message
from src.api.schemas import (
    HealthResponse,
    InboundMessage,
    TriggerMessageRequest,
    TriggerMessageResponse,
    WebhookResponse,
)
from src.models import CustomerContext
from src.services.sms import ConsoleSMSService

logger = logging.getLogger(__name__)

router = APIRouter()

FALLBACK_SMS = "We're experiencing technical difficulties. Please try again in a few minutes."


def _get_loop(request: Request):
    """Retrieve the interaction loop from app state (set by the lifespan)."""
    loop = getattr(request.app.state, "loop", None)
    if loop is None:
        raise HTTPException(
            status_code=503,
            detail="The agent is still starting up. Please try again in a moment.",
        )
    return loop


def _get_sms(request: Request):
    sms = getattr(request.app.state, "sms", None)
    if sms is None:
        raise HTTPException(status_code=503, detail="SMS transport is not ready.")
    return sms


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@router.post("/webhook", response_model=WebhookResponse)
async def inbound_sms(inbound: InboundMessage, http_request: Request):
    """Answer an inbound SMS through the agent and text the reply back.

    The interaction loop never raises; whatever it returns is sent.  Only a
    failing SMS transport turns into a 500.
    """
    loop = _get_loop(http_request)
    sms = _get_sms(http_request)
    request_id = getattr(http_request.state, "request_id", "?")

    logger.info("[%s] Incoming message from %s", request_id, inbound.phone_number)

    customer = inbound.customer or CustomerContext()
    if customer.phone_number is None:
        customer = customer.model_copy(update={"phone_number": inbound.phone_number})

    result = await loop.run_interaction(inbound.message, customer, inbound.instructions)

    if result.tool_result is not None:
        logger.info("[%s] Tool result: %s", request_id, result.tool_result)

    try:
        sent = await sms.send_message(inbound.phone_number, result.content)
    except Exception as e:
        logger.exception("[%s] Error sending reply SMS", request_id)
        raise HTTPException(
            status_code=500,
            detail="An internal error occurred. Please try again.",
        ) from e

    return WebhookResponse(
        message_sid=sent.sid,
        content=result.content,
        to=inbound.phone_number,
        tool_result=result.tool_result,
        conversation_closed=result.conversation_closed,
    )


@router.post("/trigger-message", response_model=TriggerMessageResponse)
async def trigger_message(body: TriggerMessageRequest, http_request: Request):
    """Send the first-contact SMS for a new repair request."""
    sms = _get_sms(http_request)
    request_id = getattr(http_request.state, "request_id", "?")

    content = await generate_first_contact_message(body.customer)
    try:
        sent = await sms.send_message(body.phone_number, content)
    except Exception as e:
        logger.exception("[%s] Error sending first-contact SMS", request_id)
        raise HTTPException(
            status_code=500,
            detail="An internal error occurred. Please try again.",
        ) from e

    return TriggerMessageResponse(message_sid=sent.sid, content=content, to=body.phone_number)


@router.post("/webhook/fallback")
async def fallback_webhook(http_request: Request):
    """Provider fallback URL: acknowledge with a fixed TwiML reply."""
    request_id = getattr(http_request.state, "request_id", "?")
    logger.warning("[%s] Fallback webhook triggered", request_id)
    return Response(
        content=ConsoleSMSService.create_twiml_response(FALLBACK_SMS),
        media_type="text/xml",
    )
