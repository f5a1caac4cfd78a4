"""SMS Support Agent — an AI assistant that answers repair-shop customers by text.

Architecture Overview
=====================

Each inbound SMS runs through a **LangGraph** interaction loop with three
nodes:

1. **engine** — Invokes Claude with the conversation context and the tool
   catalog. The model either answers in text or requests a tool.

2. **tools** — Runs the first requested tool through the ``ToolExecutor``
   and appends the structured result as a ``ToolMessage``.

3. **turn_limit** — Ends the run with a safe reply when the model keeps
   asking for tools past the configured ceiling.

Routing: engine → (tool call?) → tools → engine (loop until text → END)

Key Design Decisions
--------------------
- **Untrusted engine output**: tool names and inputs are validated against
  the same Pydantic models the catalog is built from. Unknown tools, bad
  inputs, past-dated appointments and backend failures all become
  ``success: false`` results the model can react to.
- **No dangling tool calls**: every tool request gets exactly one result
  turn before the engine is called again.
- **Bounded**: tool round-trips, engine calls and tool executions each have
  an explicit limit (``MAX_TOOL_ROUNDS``, ``ENGINE_TIMEOUT_SECONDS``,
  ``TOOL_TIMEOUT_SECONDS``).
- **Never throws to the caller**: every failure path ends in a fallback SMS.

Package Structure
-----------------
- ``src/agent.py`` — Interaction loop (LangGraph StateGraph)
- ``src/response.py`` — Maps the loop's final state to the caller's result
- ``src/models.py`` — Shared data models
- ``src/config.py`` — Centralized configuration from environment variables
- ``src/prompts.py`` — System and first-contact prompts
- ``src/server.py`` — FastAPI application
- ``src/main.py`` — CLI SMS simulator
- ``src/services/`` — Appointment backend client, SMS transport, metrics
- ``src/tools/`` — Tool catalog and executor
- ``src/api/`` — FastAPI routes and Pydantic schemas
"""
