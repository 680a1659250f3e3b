"""
Entry point for running the server as a module.

Usage:
    python -m agentbridge.server
    python -m agentbridge.server --port 3000 --host 127.0.0.1
"""

from .cli import main

if __name__ == "__main__":
    main()
