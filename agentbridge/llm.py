"""
AgentBridge - LLM-backed agent session.

Runs an agentic tool loop against any OpenAI-compatible chat-completions
endpoint (OpenAI, Gemini's compatibility endpoint, DashScope for Qwen) and
exposes it as an agent event source plus tool executor.

The session never executes tools itself inside ``start_turn``: it yields
``tool_call_request`` events and relies on the turn driver to call
``execute`` for each of them before pulling the next event. By the time the
generator resumes after the last request of a round, every result is in the
message history, so the next round can send them back to the model.

Usage:
    ```python
    from agentbridge.llm import create_session
    from agentbridge.server.config import ServerConfig

    session = create_session(ServerConfig.from_env())
    ```
"""

import json
import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, AsyncIterator, Optional

import openai
from openai import AsyncOpenAI

from .exceptions import ConfigurationError, ToolExecutionError
from .models import AgentEvent, AgentEventType, ToolCallRequest, ToolResult
from .session import CancellationToken
from .tools import ToolRegistry, workspace_tools

if TYPE_CHECKING:
    from .server.config import ServerConfig

logger = logging.getLogger("agentbridge.llm")

DEFAULT_SYSTEM_PROMPT = (
    "You are a coding assistant working in the directory {target_dir}. "
    "Use the available tools to inspect files before answering questions "
    "about them, and answer concisely."
)


@dataclass
class LLMConfig:
    """Configuration for the model behind a session."""

    model: str
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    system_prompt: Optional[str] = None
    temperature: Optional[float] = None
    max_tool_rounds: int = 10

    @classmethod
    def from_server_config(cls, config: "ServerConfig") -> "LLMConfig":
        return cls(
            model=config.model,
            api_key=config.api_key,
            base_url=config.base_url,
            system_prompt=config.system_prompt
            or DEFAULT_SYSTEM_PROMPT.format(target_dir=config.target_dir),
            temperature=config.temperature,
            max_tool_rounds=config.max_tool_rounds,
        )


def _decode_arguments(raw: str) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return {}
    if isinstance(parsed, dict):
        return parsed
    return {"input": parsed}


class LLMAgentSession:
    """Agent session over an OpenAI-compatible streaming API.

    One session serves one turn; create a fresh one per request.
    """

    def __init__(
        self,
        llm_config: LLMConfig,
        tools: Optional[ToolRegistry] = None,
        client: Any = None,
    ) -> None:
        self._config = llm_config
        self._tools = tools or ToolRegistry()
        self._client = client or AsyncOpenAI(
            api_key=llm_config.api_key,
            base_url=llm_config.base_url,
        )
        self._messages: list[dict[str, Any]] = []

    @property
    def messages(self) -> list[dict[str, Any]]:
        """Conversation sent to the model so far."""
        return self._messages

    async def start_turn(
        self, prompt: str, cancellation: CancellationToken
    ) -> AsyncIterator[AgentEvent]:
        self._messages = []
        if self._config.system_prompt:
            self._messages.append({"role": "system", "content": self._config.system_prompt})
        self._messages.append({"role": "user", "content": prompt})

        for _round in range(self._config.max_tool_rounds):
            if cancellation.cancelled:
                return

            content_parts: list[str] = []
            pending: dict[int, dict[str, str]] = {}

            try:
                stream = await self._client.chat.completions.create(**self._call_kwargs())
                try:
                    async for chunk in stream:
                        if cancellation.cancelled:
                            return
                        if not chunk.choices:
                            continue
                        delta = chunk.choices[0].delta
                        if getattr(delta, "content", None):
                            content_parts.append(delta.content)
                            yield AgentEvent(type=AgentEventType.CONTENT, value=delta.content)
                        for tc in getattr(delta, "tool_calls", None) or []:
                            self._accumulate_tool_call(pending, tc)
                finally:
                    await stream.close()
            except openai.OpenAIError as e:
                logger.warning("Model call failed: %s", e)
                yield AgentEvent.error(str(e))
                return

            for slot in pending.values():
                if not slot["id"]:
                    slot["id"] = f"call_{uuid.uuid4().hex[:24]}"

            requests = [
                ToolCallRequest(
                    call_id=slot["id"],
                    name=slot["name"],
                    args=_decode_arguments(slot["arguments"]),
                )
                for _, slot in sorted(pending.items())
            ]
            self._messages.append(self._assistant_message("".join(content_parts), pending))

            if not requests:
                return

            for request in requests:
                yield AgentEvent(type=AgentEventType.TOOL_CALL_REQUEST, value=request)

        logger.warning(
            "Stopped after %d tool rounds without a final answer",
            self._config.max_tool_rounds,
        )

    async def execute(
        self, request: ToolCallRequest, cancellation: CancellationToken
    ) -> ToolResult:
        if cancellation.cancelled:
            raise ToolExecutionError("Turn was cancelled", tool_name=request.name)

        tool = self._tools.get(request.name)
        try:
            if tool is None:
                raise ToolExecutionError(f"Unknown tool: {request.name}", tool_name=request.name)
            raw = await tool.invoke(request.args)
        except Exception as e:
            self._record_tool_result(request.call_id, f"Error: {e}")
            if isinstance(e, ToolExecutionError):
                raise
            raise ToolExecutionError(str(e), tool_name=request.name) from e

        display = raw if isinstance(raw, str) else json.dumps(raw, default=str)
        self._record_tool_result(request.call_id, display)
        return ToolResult(result_display=display or None, data=raw)

    async def close(self) -> None:
        await self._client.close()

    # -----------------------------------------------------------------------
    # Message building
    # -----------------------------------------------------------------------

    def _call_kwargs(self) -> dict[str, Any]:
        call_kwargs: dict[str, Any] = {
            "model": self._config.model,
            "messages": self._messages,
            "stream": True,
        }
        if len(self._tools):
            call_kwargs["tools"] = self._tools.to_openai()
        if self._config.temperature is not None:
            call_kwargs["temperature"] = self._config.temperature
        return call_kwargs

    @staticmethod
    def _accumulate_tool_call(pending: dict[int, dict[str, str]], tc: Any) -> None:
        """Merge one streamed tool-call delta into its slot."""
        index = getattr(tc, "index", None)
        if index is None:
            index = len(pending)
        slot = pending.setdefault(index, {"id": "", "name": "", "arguments": ""})
        if getattr(tc, "id", None):
            slot["id"] = tc.id
        function = getattr(tc, "function", None)
        if function is not None:
            if getattr(function, "name", None):
                slot["name"] += function.name
            if getattr(function, "arguments", None):
                slot["arguments"] += function.arguments

    @staticmethod
    def _assistant_message(content: str, pending: dict[int, dict[str, str]]) -> dict[str, Any]:
        msg: dict[str, Any] = {"role": "assistant", "content": content}
        if pending:
            msg["tool_calls"] = [
                {
                    "id": slot["id"],
                    "type": "function",
                    "function": {"name": slot["name"], "arguments": slot["arguments"] or "{}"},
                }
                for _, slot in sorted(pending.items())
            ]
        return msg

    def _record_tool_result(self, call_id: str, content: str) -> None:
        self._messages.append({"role": "tool", "tool_call_id": call_id, "content": content})


def create_session(config: "ServerConfig") -> LLMAgentSession:
    """Build a fresh session for one request from the server configuration."""
    if not config.api_key:
        raise ConfigurationError(
            f"No API key configured for {config.auth_strategy.name}; "
            f"set {config.credential_variable}"
        )
    return LLMAgentSession(
        LLMConfig.from_server_config(config),
        tools=ToolRegistry(workspace_tools(config.target_dir)),
    )
