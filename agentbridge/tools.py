"""
AgentBridge - Tool definitions and the default workspace tool registry.

Usage:
    ```python
    from agentbridge.tools import ToolRegistry, define_tool

    @define_tool(description="Echo the input back.")
    async def echo(input: str) -> str:
        return input

    registry = ToolRegistry([echo])
    ```
"""

import functools
import inspect
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

import anyio.to_thread

logger = logging.getLogger("agentbridge.tools")

MAX_READ_BYTES = 256 * 1024
MAX_SEARCH_MATCHES = 200


@dataclass
class ToolDef:
    """Definition for a tool the agent can call.

    Gives the model a description and a JSON-schema parameter spec; when the
    model invokes the tool, ``handler`` is called locally with the decoded
    arguments as keyword arguments.

    Example::

        ToolDef(
            name="read_file",
            description="Read a text file from the workspace.",
            parameters={
                "type": "object",
                "properties": {
                    "path": {"type": "string", "description": "Relative path."},
                },
                "required": ["path"],
            },
            handler=read_file,
        )
    """

    name: str
    description: str
    parameters: dict = field(
        default_factory=lambda: {
            "type": "object",
            "properties": {
                "input": {"type": "string", "description": "Input for the tool."},
            },
            "required": ["input"],
        }
    )
    handler: Optional[Callable] = None

    def to_schema(self) -> dict:
        """Return the tool definition as a JSON-schema dict."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }

    def to_openai(self) -> dict:
        """Return the tool in OpenAI ``tools`` format."""
        return {"type": "function", "function": self.to_schema()}

    async def invoke(self, arguments: dict[str, Any]) -> Any:
        """Call the handler with *arguments*; sync handlers run in a worker thread."""
        if self.handler is None:
            raise ValueError(f"Tool {self.name} has no handler")
        if inspect.iscoroutinefunction(self.handler):
            return await self.handler(**arguments)
        return await anyio.to_thread.run_sync(functools.partial(self.handler, **arguments))


def define_tool(
    name: Optional[str] = None,
    description: str = "",
    parameters: Optional[dict] = None,
) -> Callable:
    """Decorator that turns a function into a :class:`ToolDef`.

    The function's ``__name__`` is the tool name unless *name* is given.
    """

    def decorator(func: Callable) -> ToolDef:
        tool_name = name or func.__name__
        tool_params = parameters or {
            "type": "object",
            "properties": {
                "input": {"type": "string", "description": "Input for the tool."},
            },
            "required": ["input"],
        }
        return ToolDef(
            name=tool_name,
            description=description or func.__doc__ or f"Tool: {tool_name}",
            parameters=tool_params,
            handler=func,
        )

    return decorator


class ToolRegistry:
    """Name-indexed collection of tools available to a session."""

    def __init__(self, tools: Optional[Iterable[ToolDef]] = None) -> None:
        self._tools: dict[str, ToolDef] = {}
        for t in tools or []:
            self.register(t)

    def register(self, tool: ToolDef) -> None:
        if tool.name in self._tools:
            logger.warning("Replacing already registered tool %s", tool.name)
        self._tools[tool.name] = tool

    def get(self, name: str) -> Optional[ToolDef]:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def to_openai(self) -> list[dict]:
        return [t.to_openai() for t in self._tools.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


# ---------------------------------------------------------------------------
# Workspace tools
# ---------------------------------------------------------------------------


def _resolve_inside(root: Path, relative: str) -> Path:
    target = (root / relative).resolve()
    if target != root and root not in target.parents:
        raise PermissionError(f"Path escapes the workspace: {relative}")
    return target


def workspace_tools(target_dir: str) -> list[ToolDef]:
    """Read-only file tools confined to ``target_dir``."""
    root = Path(target_dir).resolve()

    @define_tool(
        description="Read a UTF-8 text file from the workspace.",
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Path relative to the workspace root."},
            },
            "required": ["path"],
        },
    )
    def read_file(path: str) -> str:
        target = _resolve_inside(root, path)
        if not target.is_file():
            raise FileNotFoundError(f"No such file: {path}")
        data = target.read_bytes()[:MAX_READ_BYTES]
        return data.decode("utf-8", errors="replace")

    @define_tool(
        description="List the entries of a workspace directory.",
        parameters={
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Directory relative to the workspace root.",
                    "default": ".",
                },
            },
        },
    )
    def list_directory(path: str = ".") -> str:
        target = _resolve_inside(root, path)
        if not target.is_dir():
            raise NotADirectoryError(f"Not a directory: {path}")
        entries = sorted(
            f"{p.name}/" if p.is_dir() else p.name for p in target.iterdir()
        )
        return "\n".join(entries)

    @define_tool(
        description="Search workspace files for lines matching a regular expression.",
        parameters={
            "type": "object",
            "properties": {
                "pattern": {"type": "string", "description": "Python regular expression."},
                "path": {
                    "type": "string",
                    "description": "Directory to search, relative to the workspace root.",
                    "default": ".",
                },
            },
            "required": ["pattern"],
        },
    )
    def search_file_content(pattern: str, path: str = ".") -> str:
        regex = re.compile(pattern)
        base = _resolve_inside(root, path)
        matches: list[str] = []
        for dirpath, dirnames, filenames in os.walk(base):
            dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
            for filename in sorted(filenames):
                file_path = Path(dirpath) / filename
                try:
                    text = file_path.read_text(encoding="utf-8")
                except (UnicodeDecodeError, OSError):
                    continue
                for lineno, line in enumerate(text.splitlines(), start=1):
                    if regex.search(line):
                        rel = file_path.relative_to(root)
                        matches.append(f"{rel}:{lineno}: {line.strip()}")
                        if len(matches) >= MAX_SEARCH_MATCHES:
                            return "\n".join(matches)
        return "\n".join(matches) if matches else "No matches found"

    return [read_file, list_directory, search_file_content]
