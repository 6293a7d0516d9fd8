"""Shell tool backed by the sandboxed executor."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..errors import SandboxError, SandboxTimeoutError
from ..sandbox import SandboxExecutor
from .base import Tool, ToolContext, arg_str


@dataclass
class BashArgs:
    cmd: str

    @classmethod
    def from_args(cls, args: dict[str, Any]) -> BashArgs:
        return cls(cmd=arg_str("bash", args, "cmd"))


def make_bash_tool(ctx: ToolContext) -> Tool:
    async def bash(raw: dict[str, Any]) -> str:
        args = BashArgs.from_args(raw)
        if ctx.executor is None:
            ctx.executor = SandboxExecutor()

        try:
            result = await ctx.executor.execute(ctx.work_dir, args.cmd, allowlist=True)
        except SandboxTimeoutError as exc:
            output = exc.result.stdout + exc.result.stderr
            output += f"\n(exit: {exc})"
        except SandboxError as exc:
            return f"error: {exc}"
        else:
            output = result.stdout + result.stderr
            if result.exit_code != 0:
                output += f"\n(exit: status {result.exit_code})"

        if not output.strip():
            return "(empty)"
        return output

    return Tool(
        description="Run shell command",
        schema={"cmd": "string"},
        func=bash,
    )
