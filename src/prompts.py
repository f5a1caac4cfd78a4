"""Prompt text for the SMS support agent."""

from collections.abc import Sequence
from datetime import UTC, datetime

from src.config import SUPPORT_PHONE_NUMBER
from src.models import CustomerContext

SYSTEM_PROMPT_TEMPLATE = """You are the SMS assistant for a phone repair shop. You text with customers who asked us to repair their phone.

## Current Date & Time
Today is **{current_date}** ({current_day_of_week}). The current time is **{current_time} UTC** ({current_iso}).
Use this to resolve relative dates like "tomorrow", "next week" or "this Monday".
Always send appointment times to tools as ISO 8601 timestamps.

## Customer
{customer_block}

## Conversation Guidance
{instructions_block}

## Tools
- `scheduleAppointment`: book a repair once you know the store location and a specific future time.
- `updateAppointment`: move an existing appointment to a new time.
- `updateInfo`: correct the customer's name, phone model or issue.
- `requestHumanCallback`: the customer asks for a person, or the situation is too complex for text.
- `stopConvo`: the repair is out of scope or the customer wants to end the conversation.

Call at most one tool at a time. When a tool reports `success: false`, explain the problem
to the customer and ask for what is missing (for example a corrected time). Never claim an
appointment is booked unless `scheduleAppointment` succeeded.

## Style
- This is SMS: reply in one to three short sentences, plain text, no markdown.
- Be warm and direct. Use the customer's name when you know it.
- Never give prices or repair guarantees you were not given.
- If you cannot help, point the customer to {support_phone}.
"""

FIRST_CONTACT_PROMPT_TEMPLATE = """Write the first SMS to a customer who just submitted a phone repair request.

Customer name: {name}
Phone model: {phone_model}
Issue: {issue}

Greet them by name, restate the phone model and issue, and ask them to confirm the details
are correct. One or two short sentences, plain text, no markdown. Reply with the SMS text only."""


def _customer_block(customer: CustomerContext) -> str:
    lines = [
        f"- Name: {customer.name or 'unknown'}",
        f"- Phone number: {customer.phone_number or 'unknown'}",
        f"- Phone model: {customer.phone_model or 'unknown'}",
        f"- Reported issue: {customer.issue or 'unknown'}",
    ]
    return "\n".join(lines)


def _instructions_block(instructions: str | Sequence[str] | None) -> str:
    if not instructions:
        return "No special instructions for this conversation."
    if isinstance(instructions, str):
        return instructions.strip()
    return "\n".join(f"- {item.strip()}" for item in instructions if item.strip())


def get_system_prompt(
    customer: CustomerContext,
    instructions: str | Sequence[str] | None = None,
    now: datetime | None = None,
) -> str:
    """Build the system prompt with the customer, analyzer instructions and time injected."""
    now = now or datetime.now(UTC)
    return SYSTEM_PROMPT_TEMPLATE.format(
        current_date=now.strftime("%d %B %Y"),
        current_day_of_week=now.strftime("%A"),
        current_time=now.strftime("%H:%M"),
        current_iso=now.isoformat(timespec="seconds"),
        customer_block=_customer_block(customer),
        instructions_block=_instructions_block(instructions),
        support_phone=SUPPORT_PHONE_NUMBER,
    )


def get_first_contact_prompt(customer: CustomerContext) -> str:
    return FIRST_CONTACT_PROMPT_TEMPLATE.format(
        name=customer.name or "there",
        phone_model=customer.phone_model or "your phone",
        issue=customer.issue or "the reported issue",
    )


def fallback_first_contact_message(customer: CustomerContext) -> str:
    """Template greeting used when the model is unavailable."""
    return (
        f"Hi {customer.name or 'there'}! We received your repair request for your "
        f"{customer.phone_model or 'phone'} regarding {customer.issue or 'the reported issue'}. "
        "Is this correct?"
    )
