"""Runs the tools the reasoning engine asks for.

Every call to :meth:`ToolExecutor.execute` returns a :class:`ToolResult`;
nothing raises out of it.  Tool names and inputs come from the model, so
both are treated as untrusted: unknown names and malformed inputs become
``success=False`` results that the engine gets to see and react to.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ValidationError

from src.models import ToolResult
from src.services.appointment_client import AppointmentAPIError, AppointmentStore
from src.services.metrics import metrics
from src.tools.catalog import (
    INPUT_MODELS,
    TERMINAL_TOOLS,
    RequestHumanCallbackInput,
    ScheduleAppointmentInput,
    StopConvoInput,
    ToolName,
    UpdateAppointmentInput,
    UpdateInfoInput,
    resolve_tool,
)

logger = logging.getLogger(__name__)

PAST_TIME_ERROR = (
    "Cannot schedule appointments in the past. "
    "Please provide a future date and time."
)

# Tool dimension for requests naming a tool that does not exist
UNSUPPORTED_TOOL_METRIC = "unsupported"

Clock = Callable[[], datetime]
Handler = Callable[[Any], Awaitable[ToolResult]]

_callback_counter = itertools.count(1)


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _as_aware(dt: datetime) -> datetime:
    """Treat naive datetimes from the model as UTC."""
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=UTC)


def format_time(dt: datetime) -> str:
    """Format a datetime as 'Tue 17 Feb 2026 at 15:00' for SMS replies."""
    return dt.strftime("%a %d %b %Y at %H:%M")


def _summarize_errors(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "input"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


class ToolExecutor:
    """Validate and execute tool calls against the backend.

    Args:
        store: Appointment backend used by ``scheduleAppointment``.
        timeout: Seconds a single tool may run before it counts as failed.
        clock: Source of "now" for past-date checks (injectable for tests).
    """

    def __init__(
        self,
        store: AppointmentStore,
        *,
        timeout: float,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._timeout = timeout
        self._clock = clock or _utc_now
        self._handlers: dict[ToolName, Handler] = {
            ToolName.SCHEDULE_APPOINTMENT: self._schedule_appointment,
            ToolName.STOP_CONVO: self._stop_convo,
            ToolName.REQUEST_HUMAN_CALLBACK: self._request_human_callback,
            ToolName.UPDATE_INFO: self._update_info,
            ToolName.UPDATE_APPOINTMENT: self._update_appointment,
        }

    async def execute(self, tool_name: str, tool_input: Any) -> ToolResult:
        """Run *tool_name* with *tool_input* and return its result."""
        tool = resolve_tool(tool_name)
        if tool is None:
            logger.warning("Engine requested unsupported tool %r", tool_name)
            metrics.record_tool(UNSUPPORTED_TOOL_METRIC, success=False, latency_ms=0.0)
            return ToolResult.fail(
                f"Unsupported tool: {tool_name}",
                message="That action is not available.",
            )

        t0 = time.perf_counter()
        result = await self._run(tool, tool_input)
        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_tool(tool.value, success=result.success, latency_ms=elapsed)
        logger.info(
            "Tool %s finished: success=%s (%.0fms)%s",
            tool.value, result.success, elapsed,
            f" error={result.error!r}" if result.error else "",
        )
        return result

    async def _run(self, tool: ToolName, tool_input: Any) -> ToolResult:
        if not isinstance(tool_input, dict):
            return ToolResult.fail(
                f"Invalid input for {tool.value}: expected an object, "
                f"got {type(tool_input).__name__}"
            )
        try:
            params = INPUT_MODELS[tool].model_validate(tool_input)
        except ValidationError as exc:
            return ToolResult.fail(f"Invalid input for {tool.value}: {_summarize_errors(exc)}")

        try:
            result = await asyncio.wait_for(self._handlers[tool](params), timeout=self._timeout)
        except TimeoutError:
            logger.error("Tool %s timed out after %.1fs", tool.value, self._timeout)
            return ToolResult.fail(
                f"{tool.value} timed out after {self._timeout:g} seconds",
                message="The request took too long. Please try again.",
            )
        except Exception as exc:
            logger.exception("Unhandled error in tool %s", tool.value)
            return ToolResult.fail(f"{tool.value} failed: {exc}")

        if tool in TERMINAL_TOOLS and result.success and not result.terminal:
            result = result.model_copy(update={"terminal": True})
        return result

    # ── Handlers ─────────────────────────────────────────────────────

    async def _schedule_appointment(self, params: ScheduleAppointmentInput) -> ToolResult:
        requested = _as_aware(params.preferred_time)
        if requested <= self._clock():
            return ToolResult.fail(PAST_TIME_ERROR)

        details = f"{params.phone_model} - {params.issue}"
        if params.details:
            details = f"{details}. {params.details}"

        try:
            appointment = await self._store.create_appointment(
                location=params.store_location,
                time=requested,
                details=details,
                customer_phone=params.customer_phone,
            )
        except AppointmentAPIError as exc:
            logger.error("Error scheduling appointment: %s", exc)
            return ToolResult.fail(str(exc), message="Failed to schedule appointment")

        confirmed = _as_aware(appointment.time)
        return ToolResult.ok(
            f"Appointment successfully scheduled at {appointment.location} "
            f"on {format_time(confirmed)}",
            appointment_id=appointment.id,
            scheduled_time=confirmed.isoformat(),
            location=appointment.location,
            status=appointment.status,
        )

    async def _stop_convo(self, params: StopConvoInput) -> ToolResult:
        return ToolResult.ok(
            "Conversation marked as completed",
            terminal=True,
            reason=params.reason,
            customer_phone=params.customer_phone,
        )

    async def _request_human_callback(self, params: RequestHumanCallbackInput) -> ToolResult:
        callback_id = f"CB-{int(time.time() * 1000)}-{next(_callback_counter)}"
        logger.info(
            "Human callback %s requested for %s (urgency=%s)",
            callback_id, params.customer_phone, params.urgency,
        )
        return ToolResult.ok(
            "Callback request registered",
            callback_id=callback_id,
            urgency=params.urgency,
            reason=params.reason,
        )

    async def _update_info(self, params: UpdateInfoInput) -> ToolResult:
        updated = _accepted_fields(params.updates)
        if not updated:
            return ToolResult.fail("No customer fields were provided to update")
        return ToolResult.ok(
            "Customer information updated successfully",
            updated_fields=updated,
            customer_phone=params.customer_phone,
        )

    async def _update_appointment(self, params: UpdateAppointmentInput) -> ToolResult:
        new_time = _as_aware(params.new_time)
        if new_time <= self._clock():
            return ToolResult.fail(PAST_TIME_ERROR)
        return ToolResult.ok(
            f"Appointment successfully updated to {format_time(new_time)}",
            updated_fields=_accepted_fields(params, exclude={"customer_phone"}),
            new_time=new_time.isoformat(),
            appointment_id=params.appointment_id,
            customer_phone=params.customer_phone,
        )


def _accepted_fields(model: BaseModel, exclude: set[str] | None = None) -> list[str]:
    """Names of the fields that were actually set, in declaration order."""
    values = model.model_dump(exclude_none=True, exclude=exclude)
    return [name for name in type(model).model_fields if name in values]
