"""
Server configuration for AgentBridge.
"""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional


class AuthStrategy(str, Enum):
    """How the agent backend authenticates."""

    USE_OPENAI = "openai-api-key"
    USE_GEMINI = "gemini-api-key"
    USE_QWEN = "qwen-api-key"


@dataclass(frozen=True)
class BackendProfile:
    """OpenAI-compatible endpoint and credential variable for a strategy."""

    api_key_env: str
    base_url: Optional[str]


BACKEND_PROFILES: dict[AuthStrategy, BackendProfile] = {
    AuthStrategy.USE_OPENAI: BackendProfile(
        api_key_env="OPENAI_API_KEY",
        base_url=None,
    ),
    AuthStrategy.USE_GEMINI: BackendProfile(
        api_key_env="GEMINI_API_KEY",
        base_url="https://generativelanguage.googleapis.com/v1beta/openai/",
    ),
    AuthStrategy.USE_QWEN: BackendProfile(
        api_key_env="QWEN_API_KEY",
        base_url="https://dashscope.aliyuncs.com/compatible-mode/v1",
    ),
}

CREDENTIAL_VARIABLES = ("OPENAI_API_KEY", "GEMINI_API_KEY", "QWEN_API_KEY")


def resolve_auth_strategy(environ: Optional[Mapping[str, str]] = None) -> AuthStrategy:
    """Pick the auth strategy from which credentials are present.

    ``OPENAI_API_KEY`` wins over ``GEMINI_API_KEY``; Qwen is the default.
    """
    env = os.environ if environ is None else environ
    if env.get("OPENAI_API_KEY"):
        return AuthStrategy.USE_OPENAI
    if env.get("GEMINI_API_KEY"):
        return AuthStrategy.USE_GEMINI
    return AuthStrategy.USE_QWEN


def credential_presence(environ: Optional[Mapping[str, str]] = None) -> dict[str, str]:
    """Map each credential variable to ``SET`` / ``NOT SET`` for logging."""
    env = os.environ if environ is None else environ
    return {name: "SET" if env.get(name) else "NOT SET" for name in CREDENTIAL_VARIABLES}


@dataclass
class ServerConfig:
    """Configuration for the AgentBridge server."""

    host: str = "127.0.0.1"
    port: int = 3000

    model: str = "qwen3-coder-plus"
    response_model: str = "qwen-code"

    auth_strategy: Optional[AuthStrategy] = None
    api_key: Optional[str] = None
    base_url: Optional[str] = None

    target_dir: Optional[str] = None
    system_prompt: Optional[str] = None
    temperature: Optional[float] = None
    max_tool_rounds: int = 10

    cors_origin: str = "*"

    debug: bool = False

    log_level: str = "info"

    def __post_init__(self):
        if self.auth_strategy is None:
            self.auth_strategy = resolve_auth_strategy()

        profile = BACKEND_PROFILES[self.auth_strategy]
        if self.api_key is None:
            self.api_key = os.environ.get(profile.api_key_env)
        if self.base_url is None:
            self.base_url = os.environ.get("AGENTBRIDGE_BASE_URL") or profile.base_url

        if self.target_dir is None:
            self.target_dir = os.getcwd()

    @property
    def credential_variable(self) -> str:
        """Environment variable holding the key for the active strategy."""
        return BACKEND_PROFILES[self.auth_strategy].api_key_env

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Create configuration from environment variables."""
        return cls(
            host=os.environ.get("AGENTBRIDGE_HOST", "127.0.0.1"),
            port=int(os.environ.get("PORT", "3000")),
            model=os.environ.get("AGENTBRIDGE_MODEL", "qwen3-coder-plus"),
            target_dir=os.environ.get("AGENTBRIDGE_TARGET_DIR"),
            debug=os.environ.get("AGENTBRIDGE_DEBUG", "").lower() == "true",
            log_level=os.environ.get("AGENTBRIDGE_LOG_LEVEL", "info"),
        )
