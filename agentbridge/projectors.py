"""
AgentBridge - OpenAI wire projections of a turn.

Both projectors consume the same fragment sequence produced by
:func:`agentbridge.turn.run_turn`:

- :class:`StreamingProjector` yields one ``chat.completion.chunk`` per
  fragment, then a single ``finish_reason: "stop"`` chunk.
- :class:`AggregateProjector` folds the whole turn into one
  ``chat.completion`` object.

The text a fragment contributes is defined once (:func:`fragment_text`), so
the aggregated ``message.content`` always equals the concatenation of the
streamed ``delta.content`` values.
"""

import json
import time
import uuid
from typing import Any, AsyncIterable, AsyncIterator, Optional

from sse_starlette.sse import ServerSentEvent

from .models import (
    ContentFragment,
    ErrorFragment,
    ToolInvocationFragment,
    ToolResultFragment,
    TurnFragment,
)

CHUNK_OBJECT = "chat.completion.chunk"
COMPLETION_OBJECT = "chat.completion"
SSE_SEPARATOR = "\n"


def tool_result_marker(display_text: str) -> str:
    return f"[Tool Response: {display_text}]"


def error_marker(message: str) -> str:
    return f"[Error: {message}]"


def fragment_text(fragment: TurnFragment) -> Optional[str]:
    """Text a fragment contributes to the assistant message, if any."""
    if isinstance(fragment, ContentFragment):
        return fragment.text
    if isinstance(fragment, ToolResultFragment):
        return tool_result_marker(fragment.display_text)
    if isinstance(fragment, ErrorFragment):
        return error_marker(fragment.message)
    return None


def tool_call_payload(fragment: ToolInvocationFragment) -> dict[str, Any]:
    """OpenAI ``tool_calls`` entry for an invocation."""
    return {
        "id": fragment.call_id,
        "type": "function",
        "function": {
            "name": fragment.tool_name,
            "arguments": json.dumps(fragment.arguments),
        },
    }


def encode_sse(payload: dict[str, Any]) -> bytes:
    """Serialize one payload as a ``data: <json>\\n\\n`` SSE event."""
    return ServerSentEvent(data=json.dumps(payload), sep=SSE_SEPARATOR).encode()


class _Projector:
    """Shared completion identity: one id and timestamp per turn."""

    def __init__(
        self,
        model: str,
        completion_id: Optional[str] = None,
        created: Optional[int] = None,
    ) -> None:
        self.model = model
        self.completion_id = completion_id or f"chatcmpl-{uuid.uuid4().hex}"
        self.created = created if created is not None else int(time.time())

    def _envelope(self, obj: str, choice: dict[str, Any]) -> dict[str, Any]:
        return {
            "id": self.completion_id,
            "object": obj,
            "created": self.created,
            "model": self.model,
            "choices": [choice],
        }


class StreamingProjector(_Projector):
    """Maps fragments to incremental chat-completion chunks."""

    def chunk(self, delta: dict[str, Any], finish_reason: Optional[str] = None) -> dict[str, Any]:
        return self._envelope(
            CHUNK_OBJECT,
            {"index": 0, "delta": delta, "finish_reason": finish_reason},
        )

    def final_chunk(self) -> dict[str, Any]:
        return self.chunk({}, finish_reason="stop")

    async def chunks(self, fragments: AsyncIterable[TurnFragment]) -> AsyncIterator[dict[str, Any]]:
        """Yield one chunk per fragment and a trailing stop chunk.

        Chunks are produced as soon as their fragment arrives; nothing is
        held back.
        """
        tool_index = 0
        async for fragment in fragments:
            if isinstance(fragment, ToolInvocationFragment):
                call = tool_call_payload(fragment)
                call["index"] = tool_index
                tool_index += 1
                yield self.chunk({"tool_calls": [call]})
                continue

            text = fragment_text(fragment)
            if text is not None:
                yield self.chunk({"content": text})

        yield self.final_chunk()

    async def events(self, fragments: AsyncIterable[TurnFragment]) -> AsyncIterator[ServerSentEvent]:
        """Like :meth:`chunks`, wrapped as SSE events."""
        async for chunk in self.chunks(fragments):
            yield ServerSentEvent(data=json.dumps(chunk), sep=SSE_SEPARATOR)

    async def project(self, fragments: AsyncIterable[TurnFragment]) -> AsyncIterator[bytes]:
        """Like :meth:`chunks`, serialized to SSE wire bytes."""
        async for event in self.events(fragments):
            yield event.encode()


class AggregateProjector(_Projector):
    """Folds a complete turn into a single chat-completion object."""

    async def project(self, fragments: AsyncIterable[TurnFragment]) -> dict[str, Any]:
        parts: list[str] = []
        tool_calls: list[dict[str, Any]] = []

        async for fragment in fragments:
            if isinstance(fragment, ToolInvocationFragment):
                tool_calls.append(tool_call_payload(fragment))
                continue
            text = fragment_text(fragment)
            if text is not None:
                parts.append(text)

        message: dict[str, Any] = {"role": "assistant", "content": "".join(parts)}
        # Absent and empty tool_calls mean different things to OpenAI clients.
        if tool_calls:
            message["tool_calls"] = tool_calls

        return self._envelope(
            COMPLETION_OBJECT,
            {"index": 0, "message": message, "finish_reason": "stop"},
        )
