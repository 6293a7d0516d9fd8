"""Search tools: glob by filename pattern, grep by regex."""
from __future__ import annotations

import glob as globmod
import os
import re
from dataclasses import dataclass
from typing import Any

from .base import Tool, ToolContext, arg_str

MAX_GREP_HITS = 50
_SKIP_DIRS = {".git", "node_modules"}


@dataclass
class SearchArgs:
    pat: str
    path: str | None = None

    @classmethod
    def from_args(cls, tool: str, args: dict[str, Any]) -> SearchArgs:
        return cls(
            pat=arg_str(tool, args, "pat"),
            path=arg_str(tool, args, "path", required=False) or None,
        )


def _relative(ctx: ToolContext, path: str) -> str:
    try:
        rel = os.path.relpath(path, ctx.work_dir)
    except ValueError:
        return path
    return rel or path


def make_glob_tool(ctx: ToolContext) -> Tool:
    def glob(raw: dict[str, Any]) -> str:
        args = SearchArgs.from_args("glob", raw)
        base = ctx.resolve_path(args.path) if args.path else ctx.work_dir
        matches = globmod.glob(os.path.join(base, args.pat), recursive=True)

        stamped: list[tuple[float, str]] = []
        for match in matches:
            try:
                stamped.append((os.stat(match).st_mtime, match))
            except OSError:
                continue
        if not stamped:
            return "none"

        # Newest first, path ascending on equal mtimes
        stamped.sort(key=lambda item: (-item[0], item[1]))
        return "".join(_relative(ctx, path) + "\n" for _, path in stamped)

    return Tool(
        description="Find files by pattern",
        schema={"pat": "string", "path": "string?"},
        func=glob,
    )


def _walk_files(base: str):
    if os.path.isfile(base):
        yield base
        return
    for root, dirs, files in os.walk(base):
        dirs[:] = sorted(d for d in dirs if d not in _SKIP_DIRS)
        for name in sorted(files):
            yield os.path.join(root, name)


def make_grep_tool(ctx: ToolContext) -> Tool:
    def grep(raw: dict[str, Any]) -> str:
        args = SearchArgs.from_args("grep", raw)
        base = ctx.resolve_path(args.path) if args.path else ctx.work_dir
        try:
            regex = re.compile(args.pat)
        except re.error as exc:
            return f"error: invalid regex: {exc}"

        hits: list[str] = []
        for path in _walk_files(base):
            try:
                with open(path, "rb") as fh:
                    data = fh.read()
            except OSError:
                continue
            if b"\0" in data:
                continue
            text = data.decode("utf-8", errors="replace")
            for lineno, line in enumerate(text.split("\n"), start=1):
                if regex.search(line):
                    hits.append(f"{_relative(ctx, path)}:{lineno}:{line.strip()}")
                    if len(hits) >= MAX_GREP_HITS:
                        return "\n".join(hits)

        if not hits:
            return "none"
        return "\n".join(hits)

    return Tool(
        description="Search files for regex pattern",
        schema={"pat": "string", "path": "string?"},
        func=grep,
    )
