"""
FastAPI application for AgentBridge.

Exposes the agent backend as an OpenAI-compatible
``POST /v1/chat/completions`` endpoint. Each request becomes one turn: the
turn driver's fragments are projected either to an SSE chunk stream or to a
single JSON completion, depending on the request's ``stream`` flag.
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import anyio
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, ValidationError
from sse_starlette.sse import EventSourceResponse, ServerSentEvent
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.requests import ClientDisconnect

from ..exceptions import AgentBridgeError, MissingPromptError, ParseError, TransportError
from ..projectors import SSE_SEPARATOR, AggregateProjector, StreamingProjector
from ..session import AgentSession, CancellationToken, SessionFactory
from ..turn import run_turn
from .config import ServerConfig, credential_presence

logger = logging.getLogger("agentbridge.server")


class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    role: Optional[str] = None
    content: Any = None


class ChatCompletionRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    messages: Optional[list[ChatMessage]] = None
    stream: Any = True
    model: Optional[str] = None

    @property
    def is_streaming(self) -> bool:
        return self.stream is not False


def _content_text(content: Any) -> str:
    if not content:
        return ""
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return str(content)
    parts = []
    for part in content:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(str(part.get("text", "")))
    return "".join(parts)


def extract_prompt(messages: Optional[list[ChatMessage]]) -> str:
    """Return the content of the last ``user`` message.

    Raises:
        MissingPromptError: if there is no user message or its content is empty.
    """
    user_messages = [m for m in messages or [] if m.role == "user"]
    if not user_messages:
        raise MissingPromptError()
    prompt = _content_text(user_messages[-1].content)
    if not prompt:
        raise MissingPromptError()
    return prompt


def parse_request(raw: bytes) -> ChatCompletionRequest:
    """Decode and validate a chat-completion request body."""
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ParseError(f"Invalid JSON body: {e}")
    if not isinstance(payload, dict):
        raise ParseError("Request body must be a JSON object")
    try:
        return ChatCompletionRequest.model_validate(payload)
    except ValidationError as e:
        raise ParseError("Invalid chat completion request", errors=e.errors())


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


def error_status(error: BaseException) -> int:
    if isinstance(error, AgentBridgeError):
        return error.status_code
    return 500


def error_body(error: BaseException) -> dict[str, str]:
    message = error.message if isinstance(error, AgentBridgeError) else str(error)
    return {"error": message or "Internal Server Error"}


async def _single_error_event(error: BaseException) -> AsyncIterator[ServerSentEvent]:
    yield ServerSentEvent(data=json.dumps(error_body(error)), sep=SSE_SEPARATOR)


def create_app(
    config: Optional[ServerConfig] = None,
    session_factory: Optional[SessionFactory] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    if config is None:
        config = ServerConfig.from_env()
    if session_factory is None:
        from ..llm import create_session

        session_factory = create_session

    cors_headers = {"Access-Control-Allow-Origin": config.cors_origin}
    preflight_headers = {
        **cors_headers,
        "Access-Control-Allow-Methods": "POST, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type",
    }

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.config = config
        logger.info("Using auth strategy %s", config.auth_strategy.name)
        for name, state in credential_presence().items():
            logger.info("%s: %s", name, state)
        yield

    app = FastAPI(
        title="AgentBridge",
        description="OpenAI-compatible chat completions over an agent backend",
        version="0.1.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    def error_response(error: BaseException, stream: bool) -> Response:
        """Render a failure in the shape the response mode allows.

        An SSE response always carries status 200, so the error travels as
        a single ``data:`` payload before the stream closes.
        """
        if stream:
            return EventSourceResponse(
                _single_error_event(error),
                headers={**cors_headers, "Cache-Control": "no-cache"},
                sep=SSE_SEPARATOR,
            )
        return JSONResponse(
            status_code=error_status(error),
            content=error_body(error),
            headers=cors_headers,
        )

    async def close_session(session: AgentSession) -> None:
        with anyio.CancelScope(shield=True):
            try:
                await session.close()
            except Exception:
                logger.warning("Failed to close agent session", exc_info=True)

    async def stream_turn(
        prompt: str,
        session: AgentSession,
        projector: StreamingProjector,
    ) -> AsyncIterator[ServerSentEvent]:
        token = CancellationToken()
        try:
            async for event in projector.events(run_turn(prompt, session, session, token)):
                yield event
        except Exception as e:
            logger.exception("Streaming turn failed")
            yield ServerSentEvent(data=json.dumps(error_body(e)), sep=SSE_SEPARATOR)
        finally:
            token.cancel("response closed")
            await close_session(session)

    @app.options("/{path:path}", include_in_schema=False)
    async def preflight(path: str):
        return Response(status_code=204, headers=preflight_headers)

    @app.post("/v1/chat/completions")
    async def chat_completions(request: Request):
        try:
            raw = await request.body()
        except ClientDisconnect:
            logger.info("Client disconnected before sending the request body")
            return error_response(TransportError("Client disconnected"), stream=False)

        try:
            body = parse_request(raw)
        except ParseError as e:
            logger.warning("Rejected request: %s", e.message)
            return error_response(e, stream=False)

        stream = body.is_streaming
        logger.debug("Streaming: %s, auth strategy: %s", stream, config.auth_strategy.name)

        try:
            prompt = extract_prompt(body.messages)
            session = session_factory(config)
        except Exception as e:
            if not isinstance(e, MissingPromptError):
                logger.exception("Could not start turn")
            return error_response(e, stream)

        model = body.model or config.response_model

        if stream:
            return EventSourceResponse(
                stream_turn(prompt, session, StreamingProjector(model)),
                headers={**cors_headers, "Cache-Control": "no-cache"},
                sep=SSE_SEPARATOR,
            )

        token = CancellationToken()
        try:
            completion = await AggregateProjector(model).project(
                run_turn(prompt, session, session, token)
            )
        except Exception as e:
            logger.exception("Turn failed")
            return error_response(e, stream=False)
        finally:
            await close_session(session)

        return JSONResponse(content=completion, headers=cors_headers)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        # Unknown paths and unsupported methods are both reported as 404.
        if exc.status_code in (404, 405):
            return JSONResponse(status_code=404, content={"error": "Not Found"})
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    return app


class AgentBridgeServer:
    """High-level server class for running AgentBridge."""

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 3000,
        session_factory: Optional[SessionFactory] = None,
        **kwargs,
    ):
        self.config = ServerConfig(host=host, port=port, **kwargs)
        self.app = create_app(self.config, session_factory=session_factory)

    def run(self):
        """Run the server (blocking)."""
        import uvicorn

        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level,
        )

    async def run_async(self):
        """Run the server asynchronously."""
        import uvicorn

        config = uvicorn.Config(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level,
        )
        server = uvicorn.Server(config)
        await server.serve()
