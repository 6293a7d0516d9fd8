"""Tool model, schema generation and the dispatch boundary.

A Tool is a description, a compact parameter schema and a function
taking the model's raw argument dict. Schema strings are "string",
"number" or "boolean", with a trailing "?" for optional parameters;
a dict value is a full JSON-Schema fragment passed through verbatim.
"""
from __future__ import annotations

import inspect
import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Union

from ..errors import ToolArgumentError

if TYPE_CHECKING:
    from ..sandbox import SandboxExecutor
    from ..todo_state import TodoState

logger = logging.getLogger(__name__)

ToolFunc = Callable[[dict[str, Any]], Union[str, Awaitable[str]]]


@dataclass
class Tool:
    description: str
    schema: dict[str, Any]
    func: ToolFunc


@dataclass
class ToolDef:
    """Tool schema as sent to the model."""
    name: str
    description: str
    input_schema: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


@dataclass
class ToolContext:
    """Per-task state the tools operate on."""
    work_dir: str = "."
    executor: SandboxExecutor | None = None
    todo_state: TodoState | None = None

    def resolve_path(self, path: str) -> str:
        if os.path.isabs(path):
            return path
        return os.path.join(self.work_dir, path)


def make_schema(tools: dict[str, Tool]) -> list[ToolDef]:
    """Convert tool definitions to model-facing ToolDefs, sorted by name."""
    result: list[ToolDef] = []
    for name in sorted(tools):
        tool = tools[name]
        props: dict[str, Any] = {}
        required: list[str] = []
        for param, spec in tool.schema.items():
            if isinstance(spec, dict):
                props[param] = spec
                required.append(param)
                continue
            if not isinstance(spec, str):
                continue
            base = spec.rstrip("?")
            json_type = "string"
            if base == "number":
                json_type = "integer"
            elif base == "boolean":
                json_type = "boolean"
            props[param] = {"type": json_type}
            if not spec.endswith("?"):
                required.append(param)
        result.append(ToolDef(
            name=name,
            description=tool.description,
            input_schema={
                "type": "object",
                "properties": props,
                "required": required,
            },
        ))
    return result


# ── Argument decoding ───────────────────────────────────────────
#
# Each tool turns its raw dict into a typed dataclass before doing any
# work. These helpers raise ToolArgumentError, which the registry
# reports back to the model as "error: <field> <reason>".


def arg_str(
    tool: str,
    args: dict[str, Any],
    name: str,
    required: bool = True,
    default: str = "",
) -> str:
    value = args.get(name)
    if value is None:
        if required:
            raise ToolArgumentError(tool, name, "is required")
        return default
    if not isinstance(value, str):
        raise ToolArgumentError(tool, name, "must be a string")
    return value


def arg_int(tool: str, args: dict[str, Any], name: str, default: int = 0) -> int:
    value = args.get(name)
    if value is None:
        return default
    if isinstance(value, bool):
        raise ToolArgumentError(tool, name, "must be a number")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise ToolArgumentError(tool, name, "must be a number")


def arg_bool(tool: str, args: dict[str, Any], name: str, default: bool = False) -> bool:
    value = args.get(name)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ToolArgumentError(tool, name, "must be a boolean")
    return value


def arg_list(tool: str, args: dict[str, Any], name: str) -> list[Any]:
    value = args.get(name)
    if value is None:
        raise ToolArgumentError(tool, name, "is required")
    if not isinstance(value, list):
        raise ToolArgumentError(tool, name, "must be an array")
    return value


# ── Registry ────────────────────────────────────────────────────


@dataclass
class ToolRegistry:
    """All tools available to one task, bound to its ToolContext."""

    ctx: ToolContext
    tools: dict[str, Tool] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.tools:
            self._register_all()

    def _register_all(self) -> None:
        from .bash import make_bash_tool
        from .files import (
            make_edit_tool,
            make_ls_tool,
            make_multiedit_tool,
            make_read_tool,
            make_write_tool,
        )
        from .search import make_glob_tool, make_grep_tool
        from .todos import make_todos_tool

        self.tools["read"] = make_read_tool(self.ctx)
        self.tools["write"] = make_write_tool(self.ctx)
        self.tools["edit"] = make_edit_tool(self.ctx)
        self.tools["multiedit"] = make_multiedit_tool(self.ctx)
        self.tools["glob"] = make_glob_tool(self.ctx)
        self.tools["grep"] = make_grep_tool(self.ctx)
        self.tools["bash"] = make_bash_tool(self.ctx)
        self.tools["ls"] = make_ls_tool(self.ctx)
        self.tools["todos"] = make_todos_tool(self.ctx)

    def get(self, name: str) -> Tool | None:
        return self.tools.get(name)

    def all(self) -> dict[str, Tool]:
        return dict(self.tools)

    def schema(self) -> list[ToolDef]:
        return make_schema(self.tools)

    async def invoke(self, name: str, args: dict[str, Any]) -> str:
        """Run a tool and always return a string for the model.

        Argument errors and unexpected failures are reported as
        "error: ..." results so every tool call gets an answer.
        """
        tool = self.tools.get(name)
        if tool is None:
            logger.warning("Model requested unknown tool %s", name)
            return f"error: unknown tool {name}"
        try:
            result = tool.func(args if isinstance(args, dict) else {})
            if inspect.isawaitable(result):
                result = await result
        except ToolArgumentError as exc:
            logger.debug("Tool %s rejected arguments: %s", name, exc)
            return f"error: {exc}"
        except Exception as exc:
            logger.exception("Tool %s failed", name)
            return f"error: tool {name} failed: {exc}"
        return result
