"""
Command-line interface for the AgentBridge server.
"""

import argparse
import logging
import os
import sys

from .. import __version__


def main(argv=None):
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="agentbridge-server",
        description="AgentBridge - OpenAI-compatible chat completions over a tool-using agent",
    )

    parser.add_argument(
        "--host",
        default=os.environ.get("AGENTBRIDGE_HOST", "127.0.0.1"),
        help="Host to bind to (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("PORT", "3000")),
        help="Port to bind to (default: $PORT or 3000)",
    )
    parser.add_argument(
        "--model",
        default=os.environ.get("AGENTBRIDGE_MODEL", "qwen3-coder-plus"),
        help="Backend model name (default: qwen3-coder-plus)",
    )
    parser.add_argument(
        "--target-dir",
        default=os.environ.get("AGENTBRIDGE_TARGET_DIR"),
        help="Workspace directory the agent's tools operate on (default: current directory)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("AGENTBRIDGE_LOG_LEVEL", "info"),
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: info)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    args = parser.parse_args(argv)

    log_level = "debug" if args.debug else args.log_level
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    from .app import AgentBridgeServer

    server = AgentBridgeServer(
        host=args.host,
        port=args.port,
        model=args.model,
        target_dir=args.target_dir,
        debug=args.debug,
        log_level=log_level,
    )
    config = server.config

    print(f"""
╔══════════════════════════════════════════════════════════════╗
║                    AgentBridge Server v{__version__:<22}║
╠══════════════════════════════════════════════════════════════╣
║  Host: {config.host:<54}║
║  Port: {config.port:<54}║
║  Model: {config.model[:52]:<53}║
║  Auth: {config.auth_strategy.name:<54}║
╚══════════════════════════════════════════════════════════════╝

Test with: curl -N http://localhost:{config.port}/v1/chat/completions \\
  -H "Content-Type: application/json" \\
  -d '{{"messages":[{{"role":"user","content":"Hello"}}]}}'

Press Ctrl+C to stop the server.
""")

    try:
        server.run()
    except KeyboardInterrupt:
        print("\nServer stopped.")
        sys.exit(0)


if __name__ == "__main__":
    main()
