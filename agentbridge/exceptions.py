"""
AgentBridge - Custom exceptions for error handling.
"""

from typing import Any, Optional


class AgentBridgeError(Exception):
    """Base exception for all AgentBridge errors."""

    status_code_default: int = 500

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code if status_code is not None else self.status_code_default
        self.response = response


class MissingPromptError(AgentBridgeError):
    """Raised when a request carries no usable user prompt."""

    status_code_default = 400

    def __init__(self, message: str = "No prompt provided", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class ParseError(AgentBridgeError):
    """Raised when a request body is not a valid chat-completion payload."""

    def __init__(self, message: str, errors: Optional[list[Any]] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.errors = errors or []


class ToolExecutionError(AgentBridgeError):
    """Raised when a tool call cannot be executed."""

    def __init__(self, message: str, tool_name: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.tool_name = tool_name


class UpstreamEventError(AgentBridgeError):
    """An error reported by the agent backend inside its event stream."""

    pass


class TransportError(AgentBridgeError):
    """Raised when the response cannot be produced or written."""

    pass


class ConfigurationError(AgentBridgeError):
    """Raised when an agent session cannot be built from the configuration."""

    pass
