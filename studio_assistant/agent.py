"""LangGraph-based orchestrator for the Studio Assistant.

Architecture:
  The agent is a LangGraph StateGraph with three nodes:

    1. **select_tools** — cheap Haiku call that narrows the Mindbody tool
                          catalog to what the latest message needs
    2. **chatbot**      — Sonnet LLM bound to the selected (validated) tools
    3. **tools**        — runs the tool calls the LLM requested, one at a time

  Routing:
    select_tools → chatbot → (tool calls and budget left?) → tools → chatbot (loop)
                           → (otherwise)                   → END

  Tools are per request: the tool registry is bound to the caller's
  Mindbody credentials and passed in ``config["configurable"]``, so one
  compiled graph serves every request.

  Memory:
    There is no checkpointer.  The client sends the conversation history
    with every request and :func:`stream_chat` replays it into the graph.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import AsyncIterator
from typing import Annotated, Any

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import (
    AIMessage,
    AIMessageChunk,
    AnyMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)
from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, StateGraph
from langgraph.graph.message import add_messages
from pydantic import ValidationError
from typing_extensions import TypedDict

from studio_assistant.config import (
    ConfigurationError,
    MAX_TOOL_STEPS,
    MODEL_NAME,
    SELECTOR_MODEL_NAME,
    get_anthropic_api_key,
)
from studio_assistant.prompts import get_system_prompt
from studio_assistant.services.metrics import metrics
from studio_assistant.services.mindbody_client import MindbodyAPIError, MindbodyAuthError
from studio_assistant.services.structured import content_text
from studio_assistant.tools.registry import ToolDescriptor, ToolRegistry
from studio_assistant.tools.selector import select_tools
from studio_assistant.tools.validation import validated_tools

logger = logging.getLogger(__name__)


# ── State schema ─────────────────────────────────────────────────────


class AgentState(TypedDict):
    """The state that flows through the graph.

    ``messages`` uses the LangGraph ``add_messages`` reducer so that each
    node can append messages without overwriting the full history.

    ``selected_tools`` / ``selection_reasoning`` are written once per turn
    by the selector.  ``tool_steps`` counts tool rounds against
    ``MAX_TOOL_STEPS``.
    """

    messages: Annotated[list[AnyMessage], add_messages]
    selected_tools: list[str]
    selection_reasoning: str
    tool_steps: int


def _registry(config: RunnableConfig) -> ToolRegistry:
    registry = config.get("configurable", {}).get("tool_registry")
    if registry is None:
        raise RuntimeError("No tool_registry in config['configurable']")
    return registry


def _latest_human_text(messages: list[AnyMessage]) -> str:
    for msg in reversed(messages):
        if isinstance(msg, HumanMessage):
            return content_text(msg.content)
    return ""


# ── LLM builders ────────────────────────────────────────────────────


def _build_selector_llm() -> ChatAnthropic:
    """Build a lightweight Haiku LLM for tool selection (no tools)."""
    return ChatAnthropic(
        model=SELECTOR_MODEL_NAME,
        api_key=get_anthropic_api_key(),
        temperature=0.0,  # Deterministic selection
        max_tokens=512,
    )


def _build_llm() -> ChatAnthropic:
    """Build the primary LLM.  Tools are bound per turn in the chatbot node."""
    return ChatAnthropic(
        model=MODEL_NAME,
        api_key=get_anthropic_api_key(),
        temperature=0.5,
        max_tokens=4096,
    )


# ── Node: select_tools (Haiku) ──────────────────────────────────────


def _make_selector_node():
    """Create the node that picks the tools for this turn."""
    selector_llm = _build_selector_llm()

    async def selector_node(state: AgentState, config: RunnableConfig) -> dict:
        registry = _registry(config)
        selection = await select_tools(
            selector_llm, registry.names(), _latest_human_text(state["messages"]),
        )
        return {
            "selected_tools": selection.tools,
            "selection_reasoning": selection.reasoning,
            "tool_steps": 0,
        }

    return selector_node


# ── Node: chatbot (Sonnet, with the selected tools) ─────────────────


def _make_chatbot_node():
    """Create the chatbot node.

    The base LLM is captured in the closure; the selected tools are bound
    on each invocation because they change from turn to turn.
    """
    llm = _build_llm()

    async def chatbot_node(state: AgentState, config: RunnableConfig) -> dict:
        tools = validated_tools(_registry(config), state.get("selected_tools", []))
        model = (
            llm.bind_tools([d.to_anthropic_tool() for d in tools.values()]) if tools else llm
        )
        logger.debug("chatbot node invoked — model: %s, %d tools", MODEL_NAME, len(tools))

        system = SystemMessage(content=get_system_prompt())
        t0 = time.perf_counter()
        try:
            response = await model.ainvoke([system] + state["messages"], config)
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                "anthropic", "chat", error_type=type(exc).__name__, latency_ms=elapsed,
            )
            raise
        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_success("anthropic", "chat", latency_ms=elapsed)
        logger.debug("chatbot responded in %.0fms", elapsed)
        return {"messages": [response]}

    return chatbot_node


# ── Node: tools ─────────────────────────────────────────────────────


async def run_tool_call(tools: dict[str, ToolDescriptor], call: dict[str, Any]) -> Any:
    """Execute one tool call.  Tool-level failures become the returned result."""
    name = call.get("name", "")
    descriptor = tools.get(name)
    if descriptor is None:
        logger.warning("Model called unavailable tool %r", name)
        return {
            "success": False,
            "error": f"Unknown tool: {name}. Available tools: {', '.join(tools) or 'none'}",
        }

    logger.info("Tool call: %s", name)
    try:
        return await descriptor.executor(call.get("args") or {})
    except ValidationError as exc:
        logger.warning("Invalid arguments for %s: %s", name, exc)
        return {
            "success": False,
            "error": f"Invalid arguments for {name}",
            "details": exc.errors(include_url=False),
        }
    except MindbodyAuthError as exc:
        return {"success": False, "kind": "authentication", "error": str(exc)}
    except MindbodyAPIError as exc:
        return {"success": False, "error": str(exc), "statusCode": exc.status_code}


def _make_tools_node():
    """Create the node that executes the last AI message's tool calls sequentially."""

    async def tools_node(state: AgentState, config: RunnableConfig) -> dict:
        tools = validated_tools(_registry(config), state.get("selected_tools", []))
        last_message = state["messages"][-1]
        results = []
        for call in getattr(last_message, "tool_calls", []):
            result = await run_tool_call(tools, call)
            results.append(
                ToolMessage(
                    content=json.dumps(result, default=str),
                    tool_call_id=call["id"],
                    name=call["name"],
                )
            )
        return {"messages": results, "tool_steps": state.get("tool_steps", 0) + 1}

    return tools_node


# ── Conditional edges ────────────────────────────────────────────────


def should_use_tools(state: AgentState) -> str:
    """Route to tools while the model asks for them and the step budget lasts."""
    last_message = state["messages"][-1]
    if not getattr(last_message, "tool_calls", None):
        return END
    if state.get("tool_steps", 0) >= MAX_TOOL_STEPS:
        logger.warning("Tool step budget (%d) exhausted, ending turn", MAX_TOOL_STEPS)
        return END
    return "tools"


# ── Graph assembly ───────────────────────────────────────────────────


def create_studio_agent():
    """Build and compile the Studio Assistant LangGraph agent.

    Returns a compiled graph that can be streamed with:
        graph.astream(
            {"messages": [HumanMessage(content="...")]},
            config={"configurable": {"tool_registry": registry}},
        )
    """
    graph = StateGraph(AgentState)

    graph.add_node("select_tools", _make_selector_node())
    graph.add_node("chatbot", _make_chatbot_node())
    graph.add_node("tools", _make_tools_node())

    graph.set_entry_point("select_tools")
    graph.add_edge("select_tools", "chatbot")
    graph.add_conditional_edges(
        "chatbot", should_use_tools, {"tools": "tools", END: END},
    )
    graph.add_edge("tools", "chatbot")

    compiled = graph.compile()
    logger.debug(
        "Studio agent compiled — selector: %s, chat: %s, max tool steps: %d",
        SELECTOR_MODEL_NAME, MODEL_NAME, MAX_TOOL_STEPS,
    )
    return compiled


# ── Streaming ────────────────────────────────────────────────────────


def to_messages(history: list[dict[str, str]], message: str) -> list[AnyMessage]:
    """Turn ``[{role, content}]`` history plus the new message into LangChain messages."""
    messages: list[AnyMessage] = []
    for turn in history:
        # Anthropic rejects empty message content
        if not turn["content"].strip():
            continue
        if turn["role"] == "user":
            messages.append(HumanMessage(content=turn["content"]))
        else:
            messages.append(AIMessage(content=turn["content"]))
    messages.append(HumanMessage(content=message))
    return messages


def _decode_tool_result(content: Any) -> Any:
    try:
        return json.loads(content)
    except (TypeError, ValueError):
        return content


async def stream_chat(
    agent,
    history: list[dict[str, str]],
    message: str,
    registry: ToolRegistry,
) -> AsyncIterator[dict[str, Any]]:
    """Run one chat turn and yield UI events.

    Events: ``tools_selected``, ``text`` (incremental), ``tool`` (one per
    executed call) and finally ``done`` with the full reply text.
    """
    config: RunnableConfig = {
        "configurable": {"tool_registry": registry},
        "recursion_limit": MAX_TOOL_STEPS * 2 + 4,
    }
    inputs = {"messages": to_messages(history, message)}

    pending_calls: dict[str, dict[str, Any]] = {}
    streamed_this_step = False
    reply_parts: list[str] = []

    async for mode, chunk in agent.astream(inputs, config, stream_mode=["messages", "updates"]):
        if mode == "messages":
            msg, metadata = chunk
            if metadata.get("langgraph_node") != "chatbot" or not isinstance(msg, AIMessageChunk):
                continue
            text = content_text(msg.content)
            if text:
                streamed_this_step = True
                reply_parts.append(text)
                yield {"type": "text", "text": text}
            continue

        for node, update in chunk.items():
            if not update:
                continue
            if node == "select_tools":
                yield {
                    "type": "tools_selected",
                    "tools": update.get("selected_tools", []),
                    "reasoning": update.get("selection_reasoning", ""),
                }
            elif node == "chatbot":
                ai = update["messages"][-1]
                if not streamed_this_step:
                    text = content_text(ai.content)
                    if text:
                        reply_parts.append(text)
                        yield {"type": "text", "text": text}
                streamed_this_step = False
                for call in getattr(ai, "tool_calls", []):
                    pending_calls[call["id"]] = call
            elif node == "tools":
                for tool_msg in update["messages"]:
                    call = pending_calls.pop(tool_msg.tool_call_id, {})
                    yield {
                        "type": "tool",
                        "name": tool_msg.name,
                        "args": call.get("args", {}),
                        "result": _decode_tool_result(tool_msg.content),
                    }

    yield {"type": "done", "message": "".join(reply_parts)}


def describe_failure(exc: BaseException) -> dict[str, str]:
    """Map a failed turn to a user-safe error and a remediation hint."""
    text = str(exc)
    lowered = text.lower()
    module = type(exc).__module__ or ""

    if isinstance(exc, ConfigurationError):
        hint = exc.hint
    elif isinstance(exc, TimeoutError):
        hint = "The request took too long. Try a narrower question (fewer clients or a shorter date range)."
    elif isinstance(exc, MindbodyAPIError) or "mindbody" in lowered:
        hint = (
            "Check your Mindbody credentials (MINDBODY_API_KEY, MINDBODY_SITE_ID, "
            "MINDBODY_USERNAME / MINDBODY_PASSWORD) in .env."
        )
    elif module.startswith("anthropic") or "anthropic" in lowered:
        hint = "Check your ANTHROPIC_API_KEY in .env. Get one at https://console.anthropic.com/"
    else:
        hint = "Check the server logs for more details."

    return {"error": "Sorry, something went wrong while answering your request.", "hint": hint}
