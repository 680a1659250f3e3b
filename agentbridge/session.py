"""
AgentBridge - Agent session interfaces.

The turn driver only needs two things from the agent backend: a lazy,
ordered stream of events for a prompt, and a way to execute the tool calls
that stream requests. Both take a :class:`CancellationToken` so a client
disconnect can be propagated down to the backend.
"""

import asyncio
from typing import TYPE_CHECKING, AsyncGenerator, Callable, Optional, Protocol, runtime_checkable

from .models import AgentEvent, ToolCallRequest, ToolResult

if TYPE_CHECKING:
    from .server.config import ServerConfig


class CancellationToken:
    """One-way cancellation flag shared by a turn and its collaborators."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


@runtime_checkable
class AgentEventSource(Protocol):
    """Produces the events of one user turn as an async generator."""

    def start_turn(
        self, prompt: str, cancellation: CancellationToken
    ) -> AsyncGenerator[AgentEvent, None]: ...


@runtime_checkable
class ToolExecutor(Protocol):
    """Executes a single tool call. May raise."""

    async def execute(
        self, request: ToolCallRequest, cancellation: CancellationToken
    ) -> ToolResult: ...


@runtime_checkable
class AgentSession(AgentEventSource, ToolExecutor, Protocol):
    """An event source that also executes its own tool calls."""

    async def close(self) -> None: ...


SessionFactory = Callable[["ServerConfig"], AgentSession]
