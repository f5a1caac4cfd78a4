"""Turns the loop's terminal state into what the webhook layer consumes."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from src.models import InteractionResult, ToolResult

logger = logging.getLogger(__name__)


def assemble_response(state: Mapping[str, Any], fallback: str) -> InteractionResult:
    """Build an :class:`InteractionResult` from a finished loop state.

    ``tool_result`` is the last tool that actually ran on the way to the
    final answer, flattened for logging and auditing by the caller.
    """
    fired: list[ToolResult] = list(state.get("tool_results") or [])
    content = (state.get("content") or "").strip()
    if not content:
        logger.error("Interaction finished without content (status=%s)", state.get("status"))
        content = fallback

    return InteractionResult(
        content=content,
        tool_result=fired[-1].as_payload() if fired else None,
        tool_results=[result.as_payload() for result in fired],
        conversation_closed=any(result.terminal for result in fired),
        status=state.get("status") or "done",
        tool_rounds=state.get("tool_rounds", 0),
    )
