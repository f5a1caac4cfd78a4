"""Tests for the AppointmentClient service."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from src.services.appointment_client import AppointmentAPIError, AppointmentClient

WHEN = datetime(2026, 2, 17, 15, 0, tzinfo=UTC)

RECORD = {
    "id": "apt_123",
    "location": "downtown store",
    "time": "2026-02-17T15:00:00Z",
    "status": "pending",
    "details": "iPhone 13 - cracked screen",
    "customer_phone": "+15555550100",
}


def _create(client: AppointmentClient):
    return asyncio.run(client.create_appointment(
        location="downtown store",
        time=WHEN,
        details="iPhone 13 - cracked screen",
        customer_phone="+15555550100",
    ))


class TestCreateAppointment:
    def test_returns_backend_record(self, mock_http_response):
        client = AppointmentClient(token="test-token", base_url="https://slri.test/api")
        with patch.object(
            client._client, "request", new=AsyncMock(return_value=mock_http_response(RECORD, 201)),
        ):
            appointment = _create(client)

        assert appointment.id == "apt_123"
        assert appointment.location == "downtown store"
        assert appointment.time == WHEN
        assert appointment.status == "pending"

    def test_accepts_wrapped_record(self, mock_http_response):
        client = AppointmentClient(token="test-token")
        with patch.object(
            client._client, "request",
            new=AsyncMock(return_value=mock_http_response({"appointment": RECORD})),
        ):
            assert _create(client).id == "apt_123"

    def test_sends_pending_appointment_payload(self, mock_http_response):
        client = AppointmentClient(token="test-token")
        mock_request = AsyncMock(return_value=mock_http_response(RECORD, 201))
        with patch.object(client._client, "request", new=mock_request):
            _create(client)

        method, path = mock_request.call_args.args
        body = mock_request.call_args.kwargs["json"]
        assert (method, path) == ("POST", "/appointments")
        assert body["status"] == "pending"
        assert body["time"] == "2026-02-17T15:00:00+00:00"
        assert body["location"] == "downtown store"
        assert body["customer_phone"] == "+15555550100"

    def test_sets_bearer_token(self):
        client = AppointmentClient(token="secret-token")
        assert client._client.headers["Authorization"] == "Bearer secret-token"


class TestErrors:
    def test_client_error_raises_with_status(self, mock_http_response):
        client = AppointmentClient(token="test-token")
        with patch.object(
            client._client, "request",
            new=AsyncMock(return_value=mock_http_response({"error": "slot taken"}, 409)),
        ):
            with pytest.raises(AppointmentAPIError) as exc_info:
                _create(client)
        assert exc_info.value.status_code == 409
        assert "Client error 409" in str(exc_info.value)

    def test_server_error_is_not_retried(self, mock_http_response):
        client = AppointmentClient(token="test-token")
        mock_request = AsyncMock(return_value=mock_http_response({"error": "boom"}, 500))
        with patch.object(client._client, "request", new=mock_request):
            with pytest.raises(AppointmentAPIError, match="Server error 500"):
                _create(client)
        assert mock_request.call_count == 1

    def test_connection_error_is_wrapped(self):
        client = AppointmentClient(token="test-token")
        with patch.object(
            client._client, "request",
            new=AsyncMock(side_effect=httpx.ConnectError("refused")),
        ):
            with pytest.raises(AppointmentAPIError, match="unreachable"):
                _create(client)

    def test_timeout_is_wrapped(self):
        client = AppointmentClient(token="test-token")
        with patch.object(
            client._client, "request",
            new=AsyncMock(side_effect=httpx.ReadTimeout("slow")),
        ):
            with pytest.raises(AppointmentAPIError):
                _create(client)

    def test_unexpected_payload_raises(self, mock_http_response):
        client = AppointmentClient(token="test-token")
        with patch.object(
            client._client, "request",
            new=AsyncMock(return_value=mock_http_response({"ok": True})),
        ):
            with pytest.raises(AppointmentAPIError, match="unexpected payload"):
                _create(client)
