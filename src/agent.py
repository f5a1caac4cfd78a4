"""LangGraph interaction loop for the SMS support agent.

Architecture:
  One inbound SMS becomes one run of a small ``StateGraph``:

    1. **engine**      — calls the reasoning engine (Claude, tools bound)
                         with the full conversation context
    2. **tools**       — executes the *first* tool call of the engine's
                         reply and appends the result as a ``ToolMessage``
    3. **turn_limit**  — answers a tool request that arrives after the
                         round-trip ceiling and ends with a safe fallback

  Routing:
    engine → (final text / error?)       → END
    engine → (tool call, rounds left?)   → tools → engine (loop)
    engine → (tool call, ceiling hit?)   → turn_limit → END

  Every tool request the engine makes gets exactly one ``ToolMessage``
  before the engine is called again, so the context never holds a
  dangling request.  Engine failures end the run at once with a fixed
  apology; they are not retried.

  The engine and the executor are passed in, so every conversation can
  run concurrently on the same event loop and tests can swap in stubs.
"""

from __future__ import annotations

import asyncio
import json
import logging
import operator
import time
import uuid
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from typing import Annotated, Any, Protocol

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import (
    AIMessage,
    AnyMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)
from langgraph.graph import END, StateGraph
from langgraph.graph.message import add_messages
from typing_extensions import TypedDict

from src.config import (
    ANTHROPIC_API_KEY,
    ENGINE_TIMEOUT_SECONDS,
    FAST_MODEL_NAME,
    MAX_RESPONSE_TOKENS,
    MAX_TOOL_ROUNDS,
    MODEL_NAME,
    SUPPORT_PHONE_NUMBER,
    TOOL_TIMEOUT_SECONDS,
)
from src.models import CustomerContext, InteractionResult, ToolInvocationRequest, ToolResult
from src.prompts import (
    fallback_first_contact_message,
    get_first_contact_prompt,
    get_system_prompt,
)
from src.response import assemble_response
from src.services.appointment_client import get_appointment_client
from src.services.metrics import metrics
from src.tools.catalog import catalog_for_engine
from src.tools.executor import ToolExecutor

logger = logging.getLogger(__name__)


# ── Fallback replies ─────────────────────────────────────────────────

ENGINE_FALLBACK_REPLY = (
    "Sorry, I'm having trouble right now. "
    f"Please call us at {SUPPORT_PHONE_NUMBER} for immediate assistance."
)
EMPTY_REPLY_FALLBACK = (
    "Sorry, I didn't quite get that. "
    "Could you tell me a bit more about what you need?"
)
TURN_LIMIT_FALLBACK = (
    "Sorry, I couldn't finish that request by text. "
    f"A member of our team will follow up, or you can call us at {SUPPORT_PHONE_NUMBER}."
)

SKIPPED_CALL_ERROR = (
    "Not executed: only one tool call is handled per turn. "
    "Request it again if it is still needed."
)
TURN_LIMIT_ERROR = "Not executed: the tool call limit for this message was reached."


class ReasoningEngine(Protocol):
    """Anything that answers a message list with an ``AIMessage``."""

    async def ainvoke(self, input: Sequence[BaseMessage], *args: Any, **kwargs: Any) -> Any: ...


# ── State schema ─────────────────────────────────────────────────────


class InteractionState(TypedDict):
    """The state that flows through the graph.

    ``messages`` and ``tool_results`` are append-only (reducers), so no
    node can rewrite a turn once it is in the context.  ``status`` stays
    empty until a node decides the run is over.
    """

    messages: Annotated[list[AnyMessage], add_messages]
    tool_results: Annotated[list[ToolResult], operator.add]
    tool_rounds: int
    status: str
    content: str


# ── Message helpers ──────────────────────────────────────────────────


def extract_text(content: Any) -> str:
    """Pull the plain text out of an engine reply's content."""
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text") or "")
        return "\n".join(p.strip() for p in parts if p and p.strip())
    return ""


def pending_tool_calls(message: BaseMessage) -> list[ToolInvocationRequest]:
    """Return the tool requests carried by an engine reply, in order.

    Calls whose arguments could not be parsed (``invalid_tool_calls``) are
    kept, flagged with ``error``, so they still get a result turn.
    """
    if not isinstance(message, AIMessage):
        return []
    requests = [
        ToolInvocationRequest(
            id=call.get("id") or "",
            name=str(call.get("name") or ""),
            args=call.get("args"),
        )
        for call in message.tool_calls
    ]
    requests.extend(
        ToolInvocationRequest(
            id=call.get("id") or "",
            name=str(call.get("name") or ""),
            error=call.get("error") or "arguments could not be parsed",
        )
        for call in message.invalid_tool_calls
    )
    return requests


def with_call_ids(message: AIMessage) -> AIMessage:
    """Return *message* with an id on every tool call.

    Ids are assigned once, before the reply enters the context, so each
    result turn can name the request it answers.
    """
    calls = [*message.tool_calls, *message.invalid_tool_calls]
    if all(call.get("id") for call in calls):
        return message

    def _fill(call: dict) -> dict:
        return {**call, "id": call.get("id") or f"call_{uuid.uuid4().hex}"}

    return message.model_copy(update={
        "tool_calls": [_fill(call) for call in message.tool_calls],
        "invalid_tool_calls": [_fill(call) for call in message.invalid_tool_calls],
    })


def result_turn(request: ToolInvocationRequest, result: ToolResult) -> ToolMessage:
    """Wrap a ToolResult as the turn the engine sees for its own request."""
    return ToolMessage(
        content=json.dumps(result.as_payload(), default=str),
        tool_call_id=request.id,
        name=request.name,
        status="success" if result.success else "error",
        artifact=result,
    )


# ── LLM builders ────────────────────────────────────────────────────


def _build_engine() -> ReasoningEngine:
    """Build the Claude engine with the tool catalog bound once."""
    llm = ChatAnthropic(
        model=MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=0.2,
        max_tokens=MAX_RESPONSE_TOKENS,
        max_retries=0,  # Engine failures end the turn; the loop never retries
        default_request_timeout=ENGINE_TIMEOUT_SECONDS,
    )
    return llm.bind_tools(catalog_for_engine())


def _build_fast_llm() -> ChatAnthropic:
    """Build a small tool-less model for first-contact greetings."""
    return ChatAnthropic(
        model=FAST_MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=0.3,
        max_tokens=150,
        max_retries=0,
        default_request_timeout=ENGINE_TIMEOUT_SECONDS,
    )


# ── Node: engine ─────────────────────────────────────────────────────


def _make_engine_node(engine: ReasoningEngine, timeout: float):
    """Create the node that asks the engine for its next move."""

    async def engine_node(state: InteractionState) -> dict:
        t0 = time.perf_counter()
        try:
            response = await asyncio.wait_for(engine.ainvoke(state["messages"]), timeout=timeout)
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                "anthropic", "engine_invoke",
                error_type=type(exc).__name__, latency_ms=elapsed,
            )
            logger.error("Reasoning engine call failed (%s): %s", type(exc).__name__, exc)
            return {"status": "engine_error", "content": ENGINE_FALLBACK_REPLY}

        elapsed = (time.perf_counter() - t0) * 1000
        if not isinstance(response, AIMessage):
            metrics.record_failure(
                "anthropic", "engine_invoke",
                error_type="UnusableReply", latency_ms=elapsed,
            )
            logger.error(
                "Reasoning engine returned an unusable reply of type %s",
                type(response).__name__,
            )
            return {"status": "engine_error", "content": ENGINE_FALLBACK_REPLY}

        metrics.record_success("anthropic", "engine_invoke", latency_ms=elapsed)

        if response.tool_calls or response.invalid_tool_calls:
            response = with_call_ids(response)
            logger.debug(
                "Engine requested tools %s (%.0fms)",
                [call.name for call in pending_tool_calls(response)], elapsed,
            )
            return {"messages": [response]}

        text = extract_text(response.content)
        if not text:
            logger.error(
                "Engine returned neither text nor a tool call (stop_reason=%s)",
                response.response_metadata.get("stop_reason"),
            )
            return {"status": "empty_reply", "content": EMPTY_REPLY_FALLBACK}

        logger.debug("Engine answered in %.0fms", elapsed)
        return {"messages": [response], "status": "done", "content": text}

    return engine_node


# ── Node: tools ──────────────────────────────────────────────────────


def _make_tools_node(executor: ToolExecutor):
    """Create the node that runs the first requested tool of a turn."""

    async def tools_node(state: InteractionState) -> dict:
        requests = pending_tool_calls(state["messages"][-1])
        first, rest = requests[0], requests[1:]

        if first.error is not None:
            result = ToolResult.fail(f"Malformed input for {first.name or 'tool'}: {first.error}")
        else:
            logger.info("Executing tool %s (call %s)", first.name, first.id)
            result = await executor.execute(first.name, first.args)

        turns = [result_turn(first, result)]
        if rest:
            logger.warning(
                "Engine requested %d tool calls in one turn; only %s was executed",
                len(requests), first.name,
            )
            turns.extend(result_turn(r, ToolResult.fail(SKIPPED_CALL_ERROR)) for r in rest)

        return {
            "messages": turns,
            "tool_results": [result],
            "tool_rounds": state["tool_rounds"] + 1,
        }

    return tools_node


# ── Node: turn_limit ─────────────────────────────────────────────────


def turn_limit_node(state: InteractionState) -> dict:
    """Close out a tool request made after the ceiling and stop the run."""
    requests = pending_tool_calls(state["messages"][-1])
    logger.warning(
        "Tool round ceiling reached after %d rounds; refusing %s",
        state["tool_rounds"], [r.name for r in requests],
    )
    return {
        "messages": [result_turn(r, ToolResult.fail(TURN_LIMIT_ERROR)) for r in requests],
        "status": "turn_limit",
        "content": TURN_LIMIT_FALLBACK,
    }


# ── Conditional edges ────────────────────────────────────────────────


def next_step(state: InteractionState, max_tool_rounds: int) -> str:
    """Decide where to go after the engine node."""
    if state.get("status"):
        return END
    if state.get("tool_rounds", 0) >= max_tool_rounds:
        return "turn_limit"
    return "tools"


# ── Loop ─────────────────────────────────────────────────────────────


class InteractionLoop:
    """Drives one inbound message to exactly one reply.

    Args:
        engine: Reasoning engine with the tool catalog already bound.
        executor: Runs the tools the engine asks for.
        max_tool_rounds: Tool round-trips allowed per inbound message.
        engine_timeout: Seconds a single engine call may take.
        clock: Source of "now" for the system prompt.
    """

    def __init__(
        self,
        engine: ReasoningEngine,
        executor: ToolExecutor,
        *,
        max_tool_rounds: int,
        engine_timeout: float,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if max_tool_rounds < 1:
            raise ValueError("max_tool_rounds must be at least 1")
        self.max_tool_rounds = max_tool_rounds
        self._clock = clock or (lambda: datetime.now(UTC))
        self._graph = self._compile(engine, executor, engine_timeout)

    def _compile(self, engine: ReasoningEngine, executor: ToolExecutor, engine_timeout: float):
        graph = StateGraph(InteractionState)

        graph.add_node("engine", _make_engine_node(engine, engine_timeout))
        graph.add_node("tools", _make_tools_node(executor))
        graph.add_node("turn_limit", turn_limit_node)

        graph.set_entry_point("engine")

        max_rounds = self.max_tool_rounds

        def route_after_engine(state: InteractionState) -> str:
            return next_step(state, max_rounds)

        graph.add_conditional_edges(
            "engine",
            route_after_engine,
            {"tools": "tools", "turn_limit": "turn_limit", END: END},
        )
        graph.add_edge("tools", "engine")
        graph.add_edge("turn_limit", END)

        return graph.compile()

    def seed_messages(
        self,
        message: str,
        customer: CustomerContext,
        instructions: str | Sequence[str] | None,
    ) -> list[BaseMessage]:
        """The opening context: system turn plus the customer's SMS."""
        return [
            SystemMessage(content=get_system_prompt(customer, instructions, now=self._clock())),
            HumanMessage(content=message),
        ]

    async def run_interaction(
        self,
        message: str,
        customer: CustomerContext | None = None,
        instructions: str | Sequence[str] | None = None,
    ) -> InteractionResult:
        """Answer one inbound message.  Never raises (cancellation aside)."""
        customer = customer or CustomerContext()
        initial: InteractionState = {
            "messages": self.seed_messages(message, customer, instructions),
            "tool_results": [],
            "tool_rounds": 0,
            "status": "",
            "content": "",
        }
        # Each round is two graph steps (engine + tools), plus the last answer
        config = {"recursion_limit": 2 * self.max_tool_rounds + 4}

        t0 = time.perf_counter()
        try:
            state = await self._graph.ainvoke(initial, config=config)
        except Exception:
            logger.exception("Interaction loop failed for %s", customer.phone_number or "unknown")
            state = {"status": "error", "content": ENGINE_FALLBACK_REPLY}

        result = assemble_response(state, fallback=EMPTY_REPLY_FALLBACK)
        metrics.record_interaction(result.status, result.tool_rounds)
        logger.info(
            "Interaction for %s finished: status=%s rounds=%d closed=%s (%.0fms)",
            customer.phone_number or "unknown", result.status, result.tool_rounds,
            result.conversation_closed, (time.perf_counter() - t0) * 1000,
        )
        return result


def create_interaction_loop(
    engine: ReasoningEngine | None = None,
    executor: ToolExecutor | None = None,
) -> InteractionLoop:
    """Build the production loop from configuration.

    Returns a loop that can be awaited with:
        await loop.run_interaction("Can I come in tomorrow?", customer, instructions)
    """
    loop = InteractionLoop(
        engine or _build_engine(),
        executor or ToolExecutor(get_appointment_client(), timeout=TOOL_TIMEOUT_SECONDS),
        max_tool_rounds=MAX_TOOL_ROUNDS,
        engine_timeout=ENGINE_TIMEOUT_SECONDS,
    )
    logger.debug(
        "Interaction loop compiled — model: %s, max tool rounds: %d",
        MODEL_NAME, MAX_TOOL_ROUNDS,
    )
    return loop


# ── First contact ────────────────────────────────────────────────────


async def generate_first_contact_message(
    customer: CustomerContext,
    llm: ReasoningEngine | None = None,
) -> str:
    """Write the opening SMS for a new repair request.

    Falls back to a fixed template if the model is unavailable.
    """
    llm = llm or _build_fast_llm()
    t0 = time.perf_counter()
    try:
        response = await asyncio.wait_for(
            llm.ainvoke([HumanMessage(content=get_first_contact_prompt(customer))]),
            timeout=ENGINE_TIMEOUT_SECONDS,
        )
    except Exception as exc:
        metrics.record_failure(
            "anthropic", "first_contact",
            error_type=type(exc).__name__, latency_ms=(time.perf_counter() - t0) * 1000,
        )
        logger.warning("First-contact generation failed, using template: %s", exc)
        return fallback_first_contact_message(customer)

    metrics.record_success(
        "anthropic", "first_contact", latency_ms=(time.perf_counter() - t0) * 1000,
    )
    text = extract_text(getattr(response, "content", None))
    if not text:
        logger.warning("First-contact generation returned no text, using template")
        return fallback_first_contact_message(customer)
    return text
