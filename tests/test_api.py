"""Tests for the FastAPI endpoints."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from src.models import InteractionResult
from src.server import app
from src.services.sms import ConsoleSMSService


@pytest.fixture
def mock_loop():
    """Create a mock interaction loop and attach it to app state (mirrors the lifespan)."""
    loop = MagicMock()
    loop.run_interaction = AsyncMock(return_value=InteractionResult(
        content="You're booked for tomorrow at 3pm!",
        tool_result={"success": True, "message": "Booked", "appointment_id": "apt_1"},
    ))
    sms = ConsoleSMSService()

    app.state.loop = loop
    app.state.sms = sms
    yield loop
    app.state.loop = None
    app.state.sms = None


@pytest.fixture
def client(mock_loop):
    """FastAPI test client with the mock loop wired up."""
    return TestClient(app)


def _inbound(**overrides):
    body = {
        "phone_number": "+15555550100",
        "message": "I need to fix my screen tomorrow at 3pm at the downtown store",
        "customer": {"name": "Sam", "phone_model": "iPhone 13", "issue": "cracked screen"},
        "instructions": ["Customer already confirmed the issue"],
    }
    body.update(overrides)
    return body


class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "service": "sms-support-agent"}


class TestWebhookEndpoint:
    def test_returns_reply_and_tool_result(self, client):
        response = client.post("/api/webhook", json=_inbound())
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "success"
        assert data["content"] == "You're booked for tomorrow at 3pm!"
        assert data["to"] == "+15555550100"
        assert data["tool_result"]["appointment_id"] == "apt_1"
        assert data["message_sid"].startswith("dev-message-")
        assert data["conversation_closed"] is False

    def test_passes_message_customer_and_instructions(self, client, mock_loop):
        client.post("/api/webhook", json=_inbound())
        message, customer, instructions = mock_loop.run_interaction.call_args.args
        assert message.startswith("I need to fix my screen")
        assert customer.name == "Sam"
        assert customer.phone_number == "+15555550100"
        assert instructions == ["Customer already confirmed the issue"]

    def test_customer_is_optional(self, client, mock_loop):
        response = client.post(
            "/api/webhook", json={"phone_number": "+15555550100", "message": "hi"},
        )
        assert response.status_code == 200
        _, customer, _ = mock_loop.run_interaction.call_args.args
        assert customer.phone_number == "+15555550100"

    def test_reply_is_sent_by_sms(self, client):
        client.post("/api/webhook", json=_inbound())
        outbox = app.state.sms.outbox
        assert len(outbox) == 1
        assert outbox[0].to == "+15555550100"
        assert outbox[0].body == "You're booked for tomorrow at 3pm!"

    def test_validates_empty_message(self, client):
        response = client.post("/api/webhook", json=_inbound(message=""))
        assert response.status_code == 422

    def test_sms_failure_does_not_leak_details(self, client):
        app.state.sms = MagicMock()
        app.state.sms.send_message = AsyncMock(side_effect=RuntimeError("provider exploded"))
        response = client.post("/api/webhook", json=_inbound())
        assert response.status_code == 500
        detail = response.json()["detail"]
        assert "provider exploded" not in detail
        assert "internal error" in detail.lower()

    def test_response_includes_request_id_header(self, client):
        response = client.post(
            "/api/webhook", json=_inbound(), headers={"X-Request-ID": "trace-123"},
        )
        assert response.headers["X-Request-ID"] == "trace-123"


class TestTriggerMessage:
    @patch(
        "src.api.routes.generate_first_contact_message",
        new_callable=AsyncMock,
        return_value="Hi Sam! Is your iPhone 13 screen cracked?",
    )
    def test_sends_first_contact(self, mock_generate, client):
        response = client.post(
            "/api/trigger-message",
            json={"phone_number": "+15555550100", "customer": {"name": "Sam"}},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["content"] == "Hi Sam! Is your iPhone 13 screen cracked?"
        assert app.state.sms.outbox[-1].body == data["content"]
        assert mock_generate.await_args.args[0].name == "Sam"


class TestFallbackWebhook:
    def test_returns_twiml(self, client):
        response = client.post("/api/webhook/fallback", data={"Body": "hello"})
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/xml")
        assert "technical difficulties" in response.text


class TestAgentNotReady:
    def test_returns_503_when_loop_not_initialised(self):
        with TestClient(app) as tc:
            app.state.loop = None
            response = tc.post("/api/webhook", json=_inbound())
            assert response.status_code == 503
            assert "starting up" in response.json()["detail"].lower()


class TestRootEndpoint:
    def test_root_returns_service_info(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["service"] == "SMS Support Agent"
