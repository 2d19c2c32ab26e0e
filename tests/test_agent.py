"""Tests for the orchestrator graph.

Covers:
  - Selector / chatbot / tools nodes with mocked LLMs
  - Tool-call error mapping and the step budget
  - End-to-end streaming of a lookup-then-detail conversation
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from langchain_core.messages import AIMessage, HumanMessage, ToolMessage
from langgraph.graph import END

from studio_assistant.agent import (
    _make_chatbot_node,
    _make_selector_node,
    _make_tools_node,
    create_studio_agent,
    describe_failure,
    run_tool_call,
    should_use_tools,
    stream_chat,
    to_messages,
)
from studio_assistant.config import ConfigurationError, MindbodyCredentials
from studio_assistant.services.cache import ResponseCache
from studio_assistant.services.mindbody_client import (
    MindbodyAPIError,
    MindbodyAuthError,
    MindbodySession,
)
from studio_assistant.tools.mindbody import build_mindbody_tools
from studio_assistant.tools.validation import validated_tools

BASE = "https://mb.test/public/v6"

JANE = {"Id": "100015", "FirstName": "Jane", "LastName": "Doe", "Email": "jane@example.com"}
JANE_VISITS = [
    {"StartDateTime": "2026-03-01T09:00:00", "Name": "Vinyasa Flow"},
    {"StartDateTime": "2026-02-22T09:00:00", "Name": "Reformer"},
]


# ── Helpers ──────────────────────────────────────────────────────────


def _mindbody_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path.endswith("/client/clients"):
        return httpx.Response(200, json={"Clients": [JANE]})
    if path.endswith("/client/clientvisits"):
        return httpx.Response(200, json={"Visits": JANE_VISITS})
    return httpx.Response(404, text="not found")


@pytest.fixture
def session(mock_http):
    return MindbodySession(http=mock_http(_mindbody_handler), cache=ResponseCache(), base_url=BASE)


@pytest.fixture
def registry(session):
    return build_mindbody_tools(
        session.client(MindbodyCredentials(api_key="k", static_token="tok")),
    )


def _config(registry):
    return {"configurable": {"tool_registry": registry}}


def _selector_llm(tools, reasoning="needed"):
    llm = MagicMock()
    llm.ainvoke = AsyncMock(
        return_value=AIMessage(content=json.dumps({"tools": tools, "reasoning": reasoning})),
    )
    return llm


def _chat_llm(*responses):
    """A mock chat model whose bound and unbound forms return *responses* in order."""
    llm = MagicMock()
    llm.ainvoke = AsyncMock(side_effect=list(responses))
    llm.bind_tools.return_value = llm
    return llm


def _tool_call(name, args, call_id):
    return {"name": name, "args": args, "id": call_id, "type": "tool_call"}


# ── Selector node ────────────────────────────────────────────────────


class TestSelectorNode:
    @pytest.mark.asyncio
    @patch("studio_assistant.agent._build_selector_llm")
    async def test_selector_writes_selection_to_state(self, mock_build, registry):
        mock_build.return_value = _selector_llm(["get_clients"], "lookup")
        node = _make_selector_node()

        result = await node(
            {"messages": [HumanMessage(content="Find Jane Doe")]}, _config(registry),
        )

        assert result == {
            "selected_tools": ["get_clients"],
            "selection_reasoning": "lookup",
            "tool_steps": 0,
        }

    @pytest.mark.asyncio
    @patch("studio_assistant.agent._build_selector_llm")
    async def test_selector_uses_latest_human_message(self, mock_build, registry):
        llm = _selector_llm([])
        mock_build.return_value = llm
        node = _make_selector_node()

        await node(
            {
                "messages": [
                    HumanMessage(content="old question"),
                    AIMessage(content="old answer"),
                    HumanMessage(content="newest question"),
                ]
            },
            _config(registry),
        )

        prompt = llm.ainvoke.await_args.args[0][0].content
        assert "newest question" in prompt
        assert "old question" not in prompt


# ── Chatbot node ─────────────────────────────────────────────────────


class TestChatbotNode:
    @pytest.mark.asyncio
    @patch("studio_assistant.agent._build_llm")
    async def test_binds_only_selected_tools(self, mock_build, registry):
        llm = _chat_llm(AIMessage(content="ok"))
        mock_build.return_value = llm
        node = _make_chatbot_node()

        result = await node(
            {
                "messages": [HumanMessage(content="hi")],
                "selected_tools": ["get_clients", "get_client_visits"],
            },
            _config(registry),
        )

        assert result["messages"][0].content == "ok"
        bound = llm.bind_tools.call_args.args[0]
        assert [t["name"] for t in bound] == ["get_clients", "get_client_visits"]
        assert all("input_schema" in t for t in bound)

    @pytest.mark.asyncio
    @patch("studio_assistant.agent._build_llm")
    async def test_no_tools_selected_calls_plain_llm(self, mock_build, registry):
        llm = _chat_llm(AIMessage(content="Hello!"))
        mock_build.return_value = llm
        node = _make_chatbot_node()

        await node({"messages": [HumanMessage(content="hi")], "selected_tools": []}, _config(registry))

        llm.bind_tools.assert_not_called()
        sent = llm.ainvoke.await_args.args[0]
        assert sent[0].type == "system"
        assert sent[-1].content == "hi"

    @pytest.mark.asyncio
    @patch("studio_assistant.agent._build_llm")
    async def test_llm_errors_propagate(self, mock_build, registry):
        llm = _chat_llm(RuntimeError("anthropic overloaded"))
        mock_build.return_value = llm
        node = _make_chatbot_node()

        with pytest.raises(RuntimeError):
            await node({"messages": [HumanMessage(content="hi")]}, _config(registry))


# ── Tools node & error mapping ───────────────────────────────────────


class TestToolExecution:
    @pytest.mark.asyncio
    async def test_tools_node_runs_calls_and_counts_step(self, registry, session):
        node = _make_tools_node()
        state = {
            "messages": [
                AIMessage(
                    content="",
                    tool_calls=[_tool_call("get_clients", {"searchText": "Jane Doe"}, "c1")],
                )
            ],
            "selected_tools": ["get_clients"],
            "tool_steps": 2,
        }

        result = await node(state, _config(registry))

        assert result["tool_steps"] == 3
        message = result["messages"][0]
        assert isinstance(message, ToolMessage)
        assert message.tool_call_id == "c1"
        assert json.loads(message.content)["Clients"][0]["Id"] == "100015"

    @pytest.mark.asyncio
    async def test_missing_client_id_is_rejected_without_network(self, registry, session):
        tools = validated_tools(registry, ["get_client_visits"])
        result = await run_tool_call(tools, _tool_call("get_client_visits", {}, "c1"))

        assert result["success"] is False
        assert result["missingParameters"] == ["clientId"]
        assert session.http.requests == []

    @pytest.mark.asyncio
    async def test_unselected_tool_is_reported_as_unknown(self, registry):
        tools = validated_tools(registry, ["get_clients"])
        result = await run_tool_call(tools, _tool_call("get_sales", {}, "c1"))
        assert result["success"] is False
        assert "Unknown tool: get_sales" in result["error"]

    @pytest.mark.asyncio
    async def test_bad_argument_types_become_tool_result(self, registry):
        tools = validated_tools(registry, ["get_clients"])
        result = await run_tool_call(tools, _tool_call("get_clients", {"limit": "lots"}, "c1"))
        assert result["success"] is False
        assert result["error"] == "Invalid arguments for get_clients"

    @pytest.mark.asyncio
    async def test_auth_error_becomes_tool_result(self):
        descriptor = MagicMock()
        descriptor.executor = AsyncMock(side_effect=MindbodyAuthError("denied", status_code=401))
        result = await run_tool_call({"t": descriptor}, _tool_call("t", {}, "c1"))
        assert result == {"success": False, "kind": "authentication", "error": "denied"}

    @pytest.mark.asyncio
    async def test_upstream_error_becomes_tool_result(self):
        descriptor = MagicMock()
        descriptor.executor = AsyncMock(side_effect=MindbodyAPIError("bad", status_code=500))
        result = await run_tool_call({"t": descriptor}, _tool_call("t", {}, "c1"))
        assert result == {"success": False, "error": "bad", "statusCode": 500}


class TestShouldUseTools:
    def test_tool_calls_route_to_tools(self):
        state = {
            "messages": [AIMessage(content="", tool_calls=[_tool_call("get_clients", {}, "c")])],
            "tool_steps": 0,
        }
        assert should_use_tools(state) == "tools"

    def test_plain_reply_ends(self):
        assert should_use_tools({"messages": [AIMessage(content="done")]}) == END

    @patch("studio_assistant.agent.MAX_TOOL_STEPS", 3)
    def test_budget_exhausted_ends(self):
        state = {
            "messages": [AIMessage(content="", tool_calls=[_tool_call("get_clients", {}, "c")])],
            "tool_steps": 3,
        }
        assert should_use_tools(state) == END


# ── Helpers ──────────────────────────────────────────────────────────


class TestHistoryAndFailures:
    def test_to_messages(self):
        messages = to_messages(
            [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}],
            "find Jane",
        )
        assert [m.type for m in messages] == ["human", "ai", "human"]
        assert messages[-1].content == "find Jane"

    def test_to_messages_skips_blank_turns(self):
        messages = to_messages(
            [
                {"role": "user", "content": "visits for Jane?"},
                {"role": "assistant", "content": ""},
                {"role": "user", "content": "  "},
                {"role": "assistant", "content": "She came 4 times."},
            ],
            "thanks",
        )
        assert [m.type for m in messages] == ["human", "ai", "human"]
        assert all(m.content.strip() for m in messages)

    def test_mindbody_failures_get_mindbody_hint(self):
        failure = describe_failure(MindbodyAPIError("Mindbody API error: 500"))
        assert "MINDBODY_API_KEY" in failure["hint"]
        assert "500" not in failure["error"]

    def test_anthropic_failures_get_anthropic_hint(self):
        failure = describe_failure(RuntimeError("Anthropic API returned 529"))
        assert "ANTHROPIC_API_KEY" in failure["hint"]

    def test_configuration_error_uses_its_hint(self):
        failure = describe_failure(ConfigurationError("MINDBODY_API_KEY", "Set it."))
        assert failure["hint"] == "Set it."

    def test_timeout(self):
        assert "too long" in describe_failure(TimeoutError())["hint"]

    def test_other_failures_get_generic_hint(self):
        assert describe_failure(ValueError("x"))["hint"] == "Check the server logs for more details."


# ── End-to-end ───────────────────────────────────────────────────────


class TestEndToEnd:
    @pytest.mark.asyncio
    @patch("studio_assistant.agent._build_llm")
    @patch("studio_assistant.agent._build_selector_llm")
    async def test_lookup_then_visits(self, mock_selector, mock_llm, registry, session):
        mock_selector.return_value = _selector_llm(["get_clients", "get_client_visits"])
        mock_llm.return_value = _chat_llm(
            AIMessage(
                content="Let me look Jane up.",
                tool_calls=[_tool_call("get_clients", {"searchText": "Jane Doe"}, "call_1")],
            ),
            AIMessage(
                content="",
                tool_calls=[_tool_call("get_client_visits", {"clientId": 100015}, "call_2")],
            ),
            AIMessage(content="Jane Doe has visited twice: Vinyasa Flow and Reformer."),
        )
        agent = create_studio_agent()

        events = [
            event
            async for event in stream_chat(agent, [], "Show me Jane Doe's visit history", registry)
        ]

        assert events[0] == {
            "type": "tools_selected",
            "tools": ["get_clients", "get_client_visits"],
            "reasoning": "needed",
        }
        tool_events = [e for e in events if e["type"] == "tool"]
        assert [e["name"] for e in tool_events] == ["get_clients", "get_client_visits"]
        assert tool_events[0]["args"] == {"searchText": "Jane Doe"}
        assert tool_events[0]["result"]["Clients"][0]["Id"] == "100015"
        assert tool_events[1]["result"]["Visits"] == JANE_VISITS

        lookup, visits = session.http.requests
        assert lookup.url.params["searchText"] == "Jane Doe"
        assert visits.url.params["clientId"] == "100015"

        assert events[-1]["type"] == "done"
        assert events[-1]["message"].endswith("Vinyasa Flow and Reformer.")
        texts = [e["text"] for e in events if e["type"] == "text"]
        assert texts == [
            "Let me look Jane up.",
            "Jane Doe has visited twice: Vinyasa Flow and Reformer.",
        ]

    @pytest.mark.asyncio
    @patch("studio_assistant.agent._build_llm")
    @patch("studio_assistant.agent._build_selector_llm")
    async def test_greeting_runs_without_tools(self, mock_selector, mock_llm, registry, session):
        mock_selector.return_value = _selector_llm([], "greeting")
        chat = _chat_llm(AIMessage(content="Hi! How can I help?"))
        mock_llm.return_value = chat
        agent = create_studio_agent()

        events = [e async for e in stream_chat(agent, [], "Hello", registry)]

        assert [e["type"] for e in events] == ["tools_selected", "text", "done"]
        chat.bind_tools.assert_not_called()
        assert session.http.requests == []

    @pytest.mark.asyncio
    @patch("studio_assistant.agent._build_llm")
    @patch("studio_assistant.agent._build_selector_llm")
    async def test_selector_failure_binds_full_catalog(self, mock_selector, mock_llm, registry):
        broken = MagicMock()
        broken.ainvoke = AsyncMock(side_effect=RuntimeError("selector down"))
        mock_selector.return_value = broken
        chat = _chat_llm(AIMessage(content="Sure."))
        mock_llm.return_value = chat
        agent = create_studio_agent()

        events = [e async for e in stream_chat(agent, [], "Find Jane", registry)]

        assert events[0]["tools"] == registry.names()
        assert len(chat.bind_tools.call_args.args[0]) == len(registry)
