"""Async HTTP client for the repair-shop appointment backend.

The backend owns appointments; we only create them and hold on to the id and
confirmed time it hands back.  All requests carry a bearer token.

Writes are **not** retried here: creating an appointment is not idempotent,
and retry policy belongs to the interaction loop, not to a single call.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from typing import Any, Protocol

import httpx
from pydantic import BaseModel, ValidationError

from src.config import APPOINTMENT_API_TOKEN, APPOINTMENT_API_URL
from src.services.metrics import metrics

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 10.0


class AppointmentAPIError(Exception):
    """Raised when the appointment backend rejects or fails a request."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class Appointment(BaseModel):
    """An appointment record as returned by the backend."""

    id: str
    location: str
    time: datetime
    status: str = "pending"
    details: str = ""
    customer_phone: str | None = None


class AppointmentStore(Protocol):
    """What the tool executor needs from an appointment backend."""

    async def create_appointment(
        self,
        *,
        location: str,
        time: datetime,
        details: str,
        customer_phone: str,
    ) -> Appointment: ...


class AppointmentClient:
    """Thin wrapper around the appointment backend REST API."""

    def __init__(
        self,
        token: str | None = None,
        base_url: str | None = None,
        *,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ):
        self._token = token or APPOINTMENT_API_TOKEN
        self._base_url = base_url or APPOINTMENT_API_URL
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={
                "Authorization": f"Bearer {self._token}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
        )

    # ── Internal helpers ─────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Execute a single HTTP request and decode the JSON body."""
        operation = f"{method} {path}"
        t0 = time.perf_counter()
        try:
            response = await self._client.request(method, path, json=json_body)
        except httpx.HTTPError as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                "appointments", operation,
                error_type=type(exc).__name__, latency_ms=elapsed,
            )
            raise AppointmentAPIError(
                f"Appointment service unreachable ({type(exc).__name__}): {exc}"
            ) from exc

        elapsed = (time.perf_counter() - t0) * 1000
        if response.status_code >= 400:
            kind = "Server" if response.status_code >= 500 else "Client"
            metrics.record_failure(
                "appointments", operation,
                error_type=f"{response.status_code // 100}xx", latency_ms=elapsed,
            )
            raise AppointmentAPIError(
                f"{kind} error {response.status_code}: {response.text}",
                status_code=response.status_code,
            )

        metrics.record_success("appointments", operation, latency_ms=elapsed)
        try:
            return response.json()
        except ValueError as exc:
            raise AppointmentAPIError(
                "Appointment service returned a non-JSON response",
                status_code=response.status_code,
            ) from exc

    # ── Public API methods ───────────────────────────────────────────

    async def create_appointment(
        self,
        *,
        location: str,
        time: datetime,
        details: str,
        customer_phone: str,
    ) -> Appointment:
        """Create a ``pending`` appointment and return the stored record.

        Args:
            location: Store name, address or id the customer asked for.
            time: Requested start time (timezone-aware).
            details: Free-form notes for the technician.
            customer_phone: Identifier of the customer on the SMS thread.

        Returns:
            The appointment as confirmed by the backend (id and time).
        """
        payload = {
            "location": location,
            "time": time.isoformat(),
            "details": details,
            "customer_phone": customer_phone,
            "status": "pending",
        }
        data = await self._request("POST", "/appointments", json_body=payload)

        # Accept both a bare record and one wrapped in {"appointment": {...}}
        record = data.get("appointment", data) if isinstance(data, dict) else data
        try:
            appointment = Appointment.model_validate(record)
        except ValidationError as exc:
            raise AppointmentAPIError(
                f"Appointment service returned an unexpected payload: {exc.error_count()} error(s)"
            ) from exc

        logger.info(
            "Created appointment %s at %s for %s",
            appointment.id, appointment.location, customer_phone,
        )
        return appointment

    async def aclose(self) -> None:
        await self._client.aclose()


# ── Module-level singleton (thread-safe) ────────────────────────────
_client: AppointmentClient | None = None
_client_lock = threading.Lock()


def get_appointment_client() -> AppointmentClient:
    """Return a module-level AppointmentClient singleton.

    Uses double-checked locking so that the lock is only acquired during
    the first initialisation, not on every subsequent call.
    """
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                _client = AppointmentClient()
    return _client


async def close_appointment_client() -> None:
    """Close the singleton's connection pool (called on server shutdown)."""
    global _client
    with _client_lock:
        client, _client = _client, None
    if client is not None:
        await client.aclose()
