"""
AgentBridge Server - OpenAI-compatible chat completions for an agent backend.

Run with:
    agentbridge-server            # CLI entry point
    python -m agentbridge.server  # Module entry point

Or programmatically:
    from agentbridge.server import AgentBridgeServer
    server = AgentBridgeServer(port=3000)
    server.run()
"""

from .app import AgentBridgeServer, create_app
from .config import AuthStrategy, ServerConfig, resolve_auth_strategy

__all__ = [
    "create_app",
    "AgentBridgeServer",
    "AuthStrategy",
    "ServerConfig",
    "resolve_auth_strategy",
]
