"""Shared test fixtures for the SMS support agent test suite."""

from __future__ import annotations

import asyncio
import itertools
import os
from datetime import UTC, datetime
from typing import Any

import pytest
from langchain_core.messages import AIMessage

# Monday 16 Feb 2026, noon UTC: "now" for every test that cares about time
FIXED_NOW = datetime(2026, 2, 16, 12, 0, tzinfo=UTC)


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("APPOINTMENT_API_TOKEN", "test-appointment-token-456")


# ── Engine stubs ─────────────────────────────────────────────────────


def tool_call_message(name: str, args: Any, call_id: str = "toolu_1", text: str = "") -> AIMessage:
    """An engine reply that requests a single tool."""
    return AIMessage(
        content=text,
        tool_calls=[{"name": name, "args": args, "id": call_id, "type": "tool_call"}],
    )


class ScriptedEngine:
    """Returns (or raises) the scripted replies in order and records every call."""

    def __init__(self, replies: list[Any], delay: float = 0) -> None:
        self._replies = list(replies)
        self._delay = delay
        self.calls: list[list[Any]] = []

    async def ainvoke(self, messages, *args, **kwargs):
        self.calls.append(list(messages))
        if self._delay:
            await asyncio.sleep(self._delay)
        if not self._replies:
            raise AssertionError("Engine called more times than scripted")
        reply = self._replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply


class AlwaysToolEngine:
    """An engine that never stops asking for a tool."""

    def __init__(self) -> None:
        self.calls = 0
        self._ids = itertools.count(1)

    async def ainvoke(self, messages, *args, **kwargs):
        self.calls += 1
        return tool_call_message(
            "requestHumanCallback",
            {"customer_phone": "+15555550100", "urgency": "low", "reason": "again"},
            call_id=f"toolu_{next(self._ids)}",
        )


# ── Appointment store stub ───────────────────────────────────────────


class StubAppointmentStore:
    """In-memory appointment backend that counts calls."""

    def __init__(self, error: Exception | None = None, delay: float = 0) -> None:
        self.calls: list[dict[str, Any]] = []
        self._error = error
        self._delay = delay

    async def create_appointment(self, *, location, time, details, customer_phone):
        from src.services.appointment_client import Appointment

        self.calls.append({
            "location": location,
            "time": time,
            "details": details,
            "customer_phone": customer_phone,
        })
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        return Appointment(
            id=f"apt_{len(self.calls)}",
            location=location,
            time=time,
            status="pending",
            details=details,
            customer_phone=customer_phone,
        )


@pytest.fixture
def store():
    return StubAppointmentStore()


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW


@pytest.fixture
def mock_http_response():
    """Factory fixture for creating mock httpx responses."""
    from unittest.mock import MagicMock

    def _make(data: Any, status_code: int = 200):
        mock = MagicMock()
        mock.status_code = status_code
        mock.json.return_value = data
        mock.text = str(data)
        return mock

    return _make
