"""
Unit tests for the AgentBridge LLM-backed agent session.

Tests streamed content, tool-call delta accumulation, the agentic tool
loop, upstream failures, tool execution, and session construction.
"""

import json
import os
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest

from agentbridge.exceptions import ConfigurationError, ToolExecutionError
from agentbridge.llm import (
    DEFAULT_SYSTEM_PROMPT,
    LLMAgentSession,
    LLMConfig,
    _decode_arguments,
    create_session,
)
from agentbridge.models import (
    AgentEventType,
    ContentFragment,
    ErrorFragment,
    ToolCallRequest,
    ToolInvocationFragment,
    ToolResultFragment,
)
from agentbridge.server.config import AuthStrategy, ServerConfig
from agentbridge.session import CancellationToken
from agentbridge.tools import ToolRegistry, define_tool
from agentbridge.turn import run_turn

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


def content_chunk(text):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=text, tool_calls=None))])


def tool_chunk(index, call_id=None, name=None, arguments=None):
    tc = SimpleNamespace(
        index=index,
        id=call_id,
        function=SimpleNamespace(name=name, arguments=arguments),
    )
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=None, tool_calls=[tc]))])


class FakeStream:
    def __init__(self, chunks):
        self.chunks = chunks
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk

    async def close(self):
        self.closed = True


def make_client(*rounds):
    client = MagicMock()
    client.chat.completions.create = AsyncMock(
        side_effect=[r if isinstance(r, Exception) else FakeStream(r) for r in rounds]
    )
    client.close = AsyncMock()
    return client


@define_tool(
    description="Add two numbers.",
    parameters={
        "type": "object",
        "properties": {"a": {"type": "number"}, "b": {"type": "number"}},
        "required": ["a", "b"],
    },
)
def add(a, b):
    return a + b


@define_tool(description="Always fails.")
async def explode(input=""):
    raise RuntimeError("kaboom")


def make_session(client, max_tool_rounds=10, tools=None):
    config = LLMConfig(model="test-model", system_prompt="be brief", max_tool_rounds=max_tool_rounds)
    registry = ToolRegistry([add, explode] if tools is None else tools)
    return LLMAgentSession(config, tools=registry, client=client)


async def collect_events(session, prompt="hi", token=None):
    return [e async for e in session.start_turn(prompt, token or CancellationToken())]


# ---------------------------------------------------------------------------
# Streaming rounds
# ---------------------------------------------------------------------------


class TestStartTurn:
    @pytest.mark.asyncio
    async def test_content_only_round(self):
        client = make_client([content_chunk("Hel"), content_chunk("lo")])
        session = make_session(client)

        events = await collect_events(session, prompt="Say hello")

        assert [e.type for e in events] == [AgentEventType.CONTENT, AgentEventType.CONTENT]
        assert [e.value for e in events] == ["Hel", "lo"]
        assert client.chat.completions.create.await_count == 1
        assert session.messages == [
            {"role": "system", "content": "be brief"},
            {"role": "user", "content": "Say hello"},
            {"role": "assistant", "content": "Hello"},
        ]

    @pytest.mark.asyncio
    async def test_call_kwargs(self):
        client = make_client([content_chunk("ok")])
        session = make_session(client)
        await collect_events(session)

        kwargs = client.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["stream"] is True
        assert [t["function"]["name"] for t in kwargs["tools"]] == ["add", "explode"]
        assert "temperature" not in kwargs

    @pytest.mark.asyncio
    async def test_no_tools_key_without_tools(self):
        client = make_client([content_chunk("ok")])
        session = make_session(client, tools=[])
        await collect_events(session)
        assert "tools" not in client.chat.completions.create.await_args.kwargs

    @pytest.mark.asyncio
    async def test_chunks_without_choices_are_skipped(self):
        client = make_client([SimpleNamespace(choices=[]), content_chunk("x")])
        events = await collect_events(make_session(client))
        assert [e.value for e in events] == ["x"]

    @pytest.mark.asyncio
    async def test_tool_call_deltas_are_merged(self):
        client = make_client(
            [
                tool_chunk(0, call_id="call_a", name="add", arguments='{"a": 1, '),
                tool_chunk(0, arguments='"b": 2}'),
                tool_chunk(1, call_id="call_b", name="add", arguments='{"a": 3, "b": 4}'),
            ],
            [content_chunk("done")],
        )
        session = make_session(client)
        events = []
        async for event in session.start_turn("sum", CancellationToken()):
            events.append(event)
            if event.type == AgentEventType.TOOL_CALL_REQUEST:
                await session.execute(event.value, CancellationToken())

        requests = [e.value for e in events if e.type == AgentEventType.TOOL_CALL_REQUEST]
        assert requests == [
            ToolCallRequest(call_id="call_a", name="add", args={"a": 1, "b": 2}),
            ToolCallRequest(call_id="call_b", name="add", args={"a": 3, "b": 4}),
        ]
        assert events[-1].value == "done"

    @pytest.mark.asyncio
    async def test_missing_call_id_is_generated(self):
        client = make_client([tool_chunk(0, name="add", arguments='{"a": 1, "b": 1}')], [])
        session = make_session(client)
        events = await collect_events(session)
        request = events[0].value
        assert request.call_id.startswith("call_")
        assert session.messages[2]["tool_calls"][0]["id"] == request.call_id

    @pytest.mark.asyncio
    async def test_upstream_failure_becomes_error_event(self):
        error = openai.APIConnectionError(
            message="boom", request=httpx.Request("POST", "http://upstream")
        )
        client = make_client(error)
        events = await collect_events(make_session(client))
        assert len(events) == 1
        assert events[0].type == AgentEventType.ERROR
        assert events[0].error_message == "boom"

    @pytest.mark.asyncio
    async def test_stream_is_closed(self):
        stream = FakeStream([content_chunk("a")])
        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=stream)
        await collect_events(make_session(client))
        assert stream.closed is True

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self):
        client = make_client([content_chunk("never")])
        token = CancellationToken()
        token.cancel()
        assert await collect_events(make_session(client), token=token) == []
        client.chat.completions.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_round_limit(self):
        client = make_client(
            [tool_chunk(0, call_id="c1", name="add", arguments='{"a": 1, "b": 1}')],
            [content_chunk("never reached")],
        )
        session = make_session(client, max_tool_rounds=1)
        fragments = [f async for f in run_turn("loop", session, session)]
        assert fragments == [
            ToolInvocationFragment("c1", "add", {"a": 1, "b": 1}),
            ToolResultFragment("c1", "2"),
        ]
        assert client.chat.completions.create.await_count == 1


# ---------------------------------------------------------------------------
# Driven through the turn driver
# ---------------------------------------------------------------------------


class TestAgenticLoop:
    @pytest.mark.asyncio
    async def test_tool_result_is_sent_back_to_model(self):
        client = make_client(
            [
                content_chunk("Let me add. "),
                tool_chunk(0, call_id="call_1", name="add", arguments='{"a": 2, "b": 3}'),
            ],
            [content_chunk("It is 5.")],
        )
        session = make_session(client)

        fragments = [f async for f in run_turn("2+3?", session, session)]

        assert fragments == [
            ContentFragment("Let me add. "),
            ToolInvocationFragment("call_1", "add", {"a": 2, "b": 3}),
            ToolResultFragment("call_1", "5"),
            ContentFragment("It is 5."),
        ]
        assert client.chat.completions.create.await_count == 2
        assert session.messages[2] == {
            "role": "assistant",
            "content": "Let me add. ",
            "tool_calls": [
                {
                    "id": "call_1",
                    "type": "function",
                    "function": {"name": "add", "arguments": '{"a": 2, "b": 3}'},
                }
            ],
        }
        assert session.messages[3] == {"role": "tool", "tool_call_id": "call_1", "content": "5"}
        assert session.messages[4] == {"role": "assistant", "content": "It is 5."}

    @pytest.mark.asyncio
    async def test_tool_failure_is_reported_to_model_and_client(self):
        client = make_client(
            [tool_chunk(0, call_id="call_1", name="explode", arguments="{}")],
            [content_chunk("Sorry.")],
        )
        session = make_session(client)

        fragments = [f async for f in run_turn("go", session, session)]

        assert fragments[1] == ErrorFragment("Tool explode failed: kaboom", call_id="call_1")
        assert fragments[2] == ContentFragment("Sorry.")
        assert session.messages[3] == {
            "role": "tool",
            "tool_call_id": "call_1",
            "content": "Error: kaboom",
        }


# ---------------------------------------------------------------------------
# Tool execution
# ---------------------------------------------------------------------------


class TestExecute:
    @pytest.mark.asyncio
    async def test_unknown_tool(self):
        session = make_session(make_client())
        with pytest.raises(ToolExecutionError, match="Unknown tool: nope"):
            await session.execute(ToolCallRequest("c1", "nope"), CancellationToken())
        assert session.messages[-1]["content"] == "Error: Unknown tool: nope"

    @pytest.mark.asyncio
    async def test_handler_error_is_wrapped(self):
        session = make_session(make_client())
        with pytest.raises(ToolExecutionError) as exc_info:
            await session.execute(ToolCallRequest("c1", "explode"), CancellationToken())
        assert exc_info.value.tool_name == "explode"
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    @pytest.mark.asyncio
    async def test_structured_result_is_serialized(self):
        @define_tool(description="Return a dict.")
        def info(input=""):
            return {"files": 3}

        session = make_session(make_client(), tools=[info])
        result = await session.execute(ToolCallRequest("c1", "info"), CancellationToken())
        assert result.result_display == json.dumps({"files": 3})
        assert result.data == {"files": 3}

    @pytest.mark.asyncio
    async def test_empty_result_has_no_display(self):
        @define_tool(description="Return nothing.")
        def quiet(input=""):
            return ""

        session = make_session(make_client(), tools=[quiet])
        result = await session.execute(ToolCallRequest("c1", "quiet"), CancellationToken())
        assert result.result_display is None

    @pytest.mark.asyncio
    async def test_refuses_after_cancellation(self):
        session = make_session(make_client())
        token = CancellationToken()
        token.cancel()
        with pytest.raises(ToolExecutionError):
            await session.execute(ToolCallRequest("c1", "add", {"a": 1, "b": 2}), token)

    @pytest.mark.asyncio
    async def test_close_closes_client(self):
        client = make_client()
        await make_session(client).close()
        client.close.assert_awaited_once()


class TestDecodeArguments:
    def test_object(self):
        assert _decode_arguments('{"path": "a"}') == {"path": "a"}

    def test_empty_and_malformed(self):
        assert _decode_arguments("") == {}
        assert _decode_arguments("{not json") == {}

    def test_non_object_is_wrapped(self):
        assert _decode_arguments('"README.md"') == {"input": "README.md"}


class TestCreateSession:
    def test_requires_api_key(self):
        with patch.dict(os.environ, {}, clear=True):
            config = ServerConfig()
        with pytest.raises(ConfigurationError, match="QWEN_API_KEY"):
            create_session(config)

    def test_builds_session_with_workspace_tools(self, tmp_path):
        config = ServerConfig(
            auth_strategy=AuthStrategy.USE_OPENAI,
            api_key="sk-test",
            target_dir=str(tmp_path),
        )
        session = create_session(config)
        assert isinstance(session, LLMAgentSession)
        assert session._config.model == "qwen3-coder-plus"
        assert session._config.system_prompt == DEFAULT_SYSTEM_PROMPT.format(target_dir=str(tmp_path))
        assert set(session._tools.names()) == {"read_file", "list_directory", "search_file_content"}
