"""Development SMS transport that logs messages instead of sending them.

It has the same surface a real provider client would (``send_message`` and a
TwiML helper for webhook replies) so the API layer does not care which one
it is talking to.
"""

from __future__ import annotations

import itertools
import logging
import time
from collections import deque
from xml.sax.saxutils import escape

from pydantic import BaseModel

logger = logging.getLogger(__name__)

_sid_counter = itertools.count(1)

# Only the most recent messages are kept for inspection
OUTBOX_SIZE = 100


class SentMessage(BaseModel):
    sid: str
    status: str
    to: str
    body: str


class ConsoleSMSService:
    """Logs outbound SMS and keeps the most recent ones in memory for inspection."""

    def __init__(self, phone_number: str = "DEV-NUMBER", outbox_size: int = OUTBOX_SIZE) -> None:
        self.phone_number = phone_number
        self.outbox: deque[SentMessage] = deque(maxlen=outbox_size)

    async def send_message(self, to_number: str, body: str) -> SentMessage:
        logger.info("[DEV SMS] To: %s | %s", to_number, body)
        message = SentMessage(
            sid=f"dev-message-{int(time.time() * 1000)}-{next(_sid_counter)}",
            status="delivered",
            to=to_number,
            body=body,
        )
        self.outbox.append(message)
        return message

    @staticmethod
    def create_twiml_response(message: str) -> str:
        return (
            '<?xml version="1.0" encoding="UTF-8"?>'
            f"<Response><Message>{escape(message)}</Message></Response>"
        )
