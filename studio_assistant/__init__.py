"""Studio Assistant — a conversational front-end over the Mindbody API.

Architecture Overview
=====================

Studio staff ask questions in plain language ("how many new clients came
back for a second visit?"); Claude answers by calling typed tools that wrap
the Mindbody public API v6.

The agent is a **LangGraph** state machine with three nodes:

1. **select_tools** — a cheap Haiku call narrows the ~26-tool catalog to
   the few the message needs (falls back to all of them on any failure).

2. **chatbot** — Claude Sonnet with the selected tools bound, each wrapped
   by a validator that rejects calls missing a client/class ID and tells
   the model how to look it up.

3. **tools** — runs the requested calls one at a time; errors become tool
   results the model can react to.

Routing: select_tools → chatbot → (tool calls?) → tools → chatbot (loop until
no tool calls or the step budget is spent → END)

Key Design Decisions
--------------------
- **Session object**: the HTTP pool, staff token and response cache live on
  one ``MindbodySession`` created in the FastAPI lifespan.
- **Tokens**: staff tokens are issued, reused until one hour before expiry,
  renewed up to seven times, then re-issued; concurrent refreshes share one
  in-flight request.
- **Cache**: GET responses are memoized for five minutes.
- **Streaming**: ``POST /api/chat`` streams NDJSON events; the client owns
  the conversation history.

Package Structure
-----------------
- ``studio_assistant/agent.py`` — LangGraph StateGraph and chat streaming
- ``studio_assistant/config.py`` — Configuration from env / SSM
- ``studio_assistant/prompts.py`` — System and tool-selection prompts
- ``studio_assistant/server.py`` — FastAPI application
- ``studio_assistant/main.py`` — CLI chat interface
- ``studio_assistant/services/`` — Mindbody gateway, tokens, cache, metrics
- ``studio_assistant/tools/`` — Tool registry, catalog, selector, validator
- ``studio_assistant/api/`` — FastAPI routes and Pydantic schemas
"""
