"""
AgentBridge - Data models for agent events and turn fragments.

Agent events are what an agent session produces for one user turn. Turn
fragments are the normalized records the turn driver derives from them;
both response projections are computed from the same fragment sequence.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union


class AgentEventType(str, Enum):
    """Kinds of events an agent session emits during a turn."""

    CONTENT = "content"
    TOOL_CALL_REQUEST = "tool_call_request"
    ERROR = "error"


@dataclass
class ToolCallRequest:
    """A named function call requested by the agent."""

    call_id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolResult:
    """Outcome of a tool execution. ``result_display`` may be absent."""

    result_display: Optional[str] = None
    data: Any = None


@dataclass
class AgentEvent:
    """A single typed event from an agent event source."""

    type: AgentEventType
    value: Any = None

    @classmethod
    def content(cls, text: str) -> "AgentEvent":
        return cls(type=AgentEventType.CONTENT, value=text)

    @classmethod
    def tool_call_request(
        cls, call_id: str, name: str, args: Optional[dict[str, Any]] = None
    ) -> "AgentEvent":
        return cls(
            type=AgentEventType.TOOL_CALL_REQUEST,
            value=ToolCallRequest(call_id=call_id, name=name, args=args or {}),
        )

    @classmethod
    def error(cls, message: str) -> "AgentEvent":
        return cls(type=AgentEventType.ERROR, value={"error": {"message": message}})

    @property
    def error_message(self) -> str:
        """Best-effort message for an ``error`` event.

        Accepts a plain string, an exception, ``{"message": ...}`` or the
        nested ``{"error": {"message": ...}}`` shape.
        """
        value = self.value
        if isinstance(value, BaseException):
            return str(value) or type(value).__name__
        if isinstance(value, dict):
            inner = value.get("error", value)
            if isinstance(inner, dict):
                return str(inner.get("message", "Unknown error"))
            return str(inner)
        if value is None:
            return "Unknown error"
        return str(value)


# ---------------------------------------------------------------------------
# Turn fragments
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ContentFragment:
    """A piece of generated text."""

    text: str


@dataclass(frozen=True)
class ToolInvocationFragment:
    """A tool call that was requested and is about to execute."""

    call_id: str
    tool_name: str
    arguments: Any = None


@dataclass(frozen=True)
class ToolResultFragment:
    """The display outcome of the invocation with the same ``call_id``."""

    call_id: str
    display_text: str


@dataclass(frozen=True)
class ErrorFragment:
    """A failure folded into the turn output.

    ``call_id`` is set when the failure belongs to a tool invocation, in
    which case the fragment takes the place of its result.
    """

    message: str
    call_id: Optional[str] = None


TurnFragment = Union[ContentFragment, ToolInvocationFragment, ToolResultFragment, ErrorFragment]
