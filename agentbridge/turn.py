"""
AgentBridge - Turn driver.

Consumes the agent event stream for one prompt, executes every requested
tool call in line, and yields the normalized fragment sequence that both
response projections are built from.
"""

import asyncio
import dataclasses
import logging
import uuid
from contextlib import aclosing
from typing import Any, AsyncIterator, Optional

from .models import (
    AgentEventType,
    ContentFragment,
    ErrorFragment,
    ToolCallRequest,
    ToolInvocationFragment,
    ToolResultFragment,
    TurnFragment,
)
from .session import AgentEventSource, CancellationToken, ToolExecutor

logger = logging.getLogger("agentbridge.turn")

TOOL_SUCCESS_FALLBACK = "Tool executed successfully"


def _discard_orphan_result(task: "asyncio.Future[Any]") -> None:
    """Retrieve the outcome of a tool call whose turn was torn down."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("Tool call finished with an error after turn cancellation: %s", exc)


async def run_turn(
    prompt: str,
    source: AgentEventSource,
    executor: ToolExecutor,
    cancellation: Optional[CancellationToken] = None,
) -> AsyncIterator[TurnFragment]:
    """Drive one turn and yield its fragments as they are produced.

    Tool calls run one at a time: the next source event is not pulled until
    the current call has resolved, so each ``ToolInvocationFragment`` is
    immediately followed by its ``ToolResultFragment`` (or an
    ``ErrorFragment`` carrying the same ``call_id``). Tool failures and
    upstream error events are folded into the output; only exhaustion of
    the source ends the turn.

    Once ``cancellation`` is set no further events are pulled and no new
    tool call is started. A tool call already running when the consumer is
    cancelled is left to finish in the background.
    """
    token = cancellation or CancellationToken()
    seen_call_ids: set[str] = set()

    async with aclosing(source.start_turn(prompt, token)) as events:
        while True:
            if token.cancelled:
                logger.debug("Turn cancelled (%s), releasing event source", token.reason)
                break
            try:
                event = await events.__anext__()
            except StopAsyncIteration:
                break

            if event.type == AgentEventType.CONTENT:
                if event.value:
                    yield ContentFragment(text=str(event.value))

            elif event.type == AgentEventType.TOOL_CALL_REQUEST:
                request = _unique_request(event.value, seen_call_ids)
                yield ToolInvocationFragment(
                    call_id=request.call_id,
                    tool_name=request.name,
                    arguments=request.args,
                )
                if token.cancelled:
                    break
                yield await _execute(request, executor, token)

            elif event.type == AgentEventType.ERROR:
                message = event.error_message
                logger.warning("Agent reported an error: %s", message)
                yield ErrorFragment(message=message)

            else:
                logger.debug("Ignoring unknown agent event type %r", event.type)


async def _execute(
    request: ToolCallRequest,
    executor: ToolExecutor,
    token: CancellationToken,
) -> TurnFragment:
    logger.debug("Executing tool %s (call %s)", request.name, request.call_id)
    task = asyncio.ensure_future(executor.execute(request, token))
    try:
        result = await asyncio.shield(task)
    except asyncio.CancelledError:
        token.cancel("client disconnected")
        task.add_done_callback(_discard_orphan_result)
        raise
    except Exception as e:
        logger.warning("Tool %s failed: %s", request.name, e, exc_info=True)
        return ErrorFragment(
            message=f"Tool {request.name} failed: {e}",
            call_id=request.call_id,
        )

    display = result.result_display if result is not None else None
    return ToolResultFragment(
        call_id=request.call_id,
        display_text=display or TOOL_SUCCESS_FALLBACK,
    )


def _unique_request(value: Any, seen: set[str]) -> ToolCallRequest:
    """Coerce an event payload to a request with a call id unique in the turn."""
    if isinstance(value, ToolCallRequest):
        request = value
    elif isinstance(value, dict):
        request = ToolCallRequest(
            call_id=str(value.get("call_id") or value.get("callId") or ""),
            name=str(value.get("name", "")),
            args=value.get("args") or {},
        )
    else:
        raise TypeError(f"Unsupported tool call payload: {type(value).__name__}")

    if not request.call_id or request.call_id in seen:
        fresh = f"call_{uuid.uuid4().hex[:24]}"
        if request.call_id:
            logger.warning("Duplicate tool call id %s, reassigned to %s", request.call_id, fresh)
        request = dataclasses.replace(request, call_id=fresh)
    seen.add(request.call_id)
    return request
