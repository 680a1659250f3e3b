"""
AgentBridge - OpenAI-compatible chat completions over a tool-using agent.

Translates an agent's event stream (content, tool-call requests, errors)
into OpenAI ``chat.completion`` and ``chat.completion.chunk`` responses.
"""

from .exceptions import (
    AgentBridgeError,
    ConfigurationError,
    MissingPromptError,
    ParseError,
    ToolExecutionError,
    TransportError,
    UpstreamEventError,
)
from .models import (
    AgentEvent,
    AgentEventType,
    ContentFragment,
    ErrorFragment,
    ToolCallRequest,
    ToolInvocationFragment,
    ToolResult,
    ToolResultFragment,
    TurnFragment,
)
from .projectors import AggregateProjector, StreamingProjector
from .session import (
    AgentEventSource,
    AgentSession,
    CancellationToken,
    SessionFactory,
    ToolExecutor,
)
from .tools import ToolDef, ToolRegistry, define_tool
from .turn import run_turn

__version__ = "0.1.0"

__all__ = [
    "AgentBridgeError",
    "ConfigurationError",
    "MissingPromptError",
    "ParseError",
    "ToolExecutionError",
    "TransportError",
    "UpstreamEventError",
    "AgentEvent",
    "AgentEventType",
    "ToolCallRequest",
    "ToolResult",
    "ContentFragment",
    "ToolInvocationFragment",
    "ToolResultFragment",
    "ErrorFragment",
    "TurnFragment",
    "run_turn",
    "StreamingProjector",
    "AggregateProjector",
    "AgentEventSource",
    "ToolExecutor",
    "AgentSession",
    "SessionFactory",
    "CancellationToken",
    "ToolDef",
    "ToolRegistry",
    "define_tool",
]
