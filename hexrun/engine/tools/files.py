"""File tools: read, write, edit, multiedit and ls."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..errors import ToolArgumentError
from .base import Tool, ToolContext, arg_bool, arg_int, arg_list, arg_str


# ── read ────────────────────────────────────────────────────────


@dataclass
class ReadArgs:
    path: str
    offset: int = 0
    limit: int = 0

    @classmethod
    def from_args(cls, args: dict[str, Any]) -> ReadArgs:
        return cls(
            path=arg_str("read", args, "path"),
            offset=arg_int("read", args, "offset"),
            limit=arg_int("read", args, "limit"),
        )


def make_read_tool(ctx: ToolContext) -> Tool:
    def read(raw: dict[str, Any]) -> str:
        args = ReadArgs.from_args(raw)
        path = Path(ctx.resolve_path(args.path))
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            return f"error: {exc}"
        lines = text.split("\n")
        offset = max(args.offset, 0)
        limit = args.limit if args.limit > 0 else len(lines)
        end = min(offset + limit, len(lines))
        return "".join(
            "%4d| %s\n" % (i + 1, lines[i]) for i in range(offset, end)
        )

    return Tool(
        description="Read file with line numbers",
        schema={"path": "string", "offset": "number?", "limit": "number?"},
        func=read,
    )


# ── write ───────────────────────────────────────────────────────


@dataclass
class WriteArgs:
    path: str
    content: str

    @classmethod
    def from_args(cls, args: dict[str, Any]) -> WriteArgs:
        return cls(
            path=arg_str("write", args, "path"),
            content=arg_str("write", args, "content"),
        )


def make_write_tool(ctx: ToolContext) -> Tool:
    def write(raw: dict[str, Any]) -> str:
        args = WriteArgs.from_args(raw)
        path = Path(ctx.resolve_path(args.path))
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(args.content, encoding="utf-8")
        except OSError as exc:
            return f"error: {exc}"
        return "ok"

    return Tool(
        description="Write content to file",
        schema={"path": "string", "content": "string"},
        func=write,
    )


# ── edit ────────────────────────────────────────────────────────


@dataclass
class EditArgs:
    path: str
    old: str
    new: str
    all: bool = False

    @classmethod
    def from_args(cls, args: dict[str, Any]) -> EditArgs:
        return cls(
            path=arg_str("edit", args, "path"),
            old=arg_str("edit", args, "old"),
            new=arg_str("edit", args, "new"),
            all=arg_bool("edit", args, "all"),
        )


def make_edit_tool(ctx: ToolContext) -> Tool:
    def edit(raw: dict[str, Any]) -> str:
        args = EditArgs.from_args(raw)
        path = Path(ctx.resolve_path(args.path))
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            return f"error: {exc}"

        if args.old not in text:
            return "error: old_string not found"
        count = text.count(args.old)
        if not args.all and count > 1:
            return f"error: old_string appears {count} times, use all=true"

        if args.all:
            updated = text.replace(args.old, args.new)
        else:
            updated = text.replace(args.old, args.new, 1)
        try:
            path.write_text(updated, encoding="utf-8")
        except OSError as exc:
            return f"error: {exc}"
        return "ok"

    return Tool(
        description="Replace old with new in file",
        schema={"path": "string", "old": "string", "new": "string", "all": "boolean?"},
        func=edit,
    )


# ── multiedit ───────────────────────────────────────────────────


MULTIEDIT_DESCRIPTION = """\
Make multiple edits to a single file in one operation.

Edits are applied in order, each one to the result of the previous one.
Each edit replaces old_string with new_string; old_string must match
exactly, including whitespace and indentation, and must be unique in
the file unless replace_all is true. An edit that fails is reported
with its 1-based index and does not stop the edits after it. The file
is only written when the final content differs from the original.
"""


@dataclass
class EditOp:
    old_string: str
    new_string: str
    replace_all: bool = False


@dataclass
class MultieditArgs:
    file_path: str
    # Raw entries; each is decoded individually so one bad edit does
    # not reject the whole call.
    edits: list[Any] = field(default_factory=list)

    @classmethod
    def from_args(cls, args: dict[str, Any]) -> MultieditArgs:
        return cls(
            file_path=arg_str("multiedit", args, "file_path"),
            edits=arg_list("multiedit", args, "edits"),
        )


class EditFailure(Exception):
    pass


def _decode_edit(raw: Any) -> EditOp:
    if not isinstance(raw, dict):
        raise EditFailure("edit must be an object")
    try:
        return EditOp(
            old_string=arg_str("multiedit", raw, "old_string", required=False),
            new_string=arg_str("multiedit", raw, "new_string", required=False),
            replace_all=arg_bool("multiedit", raw, "replace_all"),
        )
    except ToolArgumentError as exc:
        raise EditFailure(str(exc)) from exc


def apply_edit(content: str, op: EditOp) -> str:
    """Apply one edit to ``content``, raising EditFailure on a miss."""
    if op.old_string == "":
        raise EditFailure("old_string cannot be empty")
    if op.old_string not in content:
        raise EditFailure("old_string not found in content")
    if op.replace_all:
        return content.replace(op.old_string, op.new_string)
    count = content.count(op.old_string)
    if count > 1:
        raise EditFailure(
            f"old_string appears {count} times, "
            "use replace_all=true or add more context"
        )
    return content.replace(op.old_string, op.new_string, 1)


def make_multiedit_tool(ctx: ToolContext) -> Tool:
    def multiedit(raw: dict[str, Any]) -> str:
        args = MultieditArgs.from_args(raw)
        if not args.edits:
            return "error: at least one edit operation is required"

        path = Path(ctx.resolve_path(args.file_path))
        try:
            original = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return f"error: file not found: {path}"
        except (OSError, UnicodeDecodeError) as exc:
            return f"error: failed to read file: {exc}"

        current = original
        failed: list[dict[str, Any]] = []
        applied = 0
        for index, raw_edit in enumerate(args.edits, start=1):
            try:
                current = apply_edit(current, _decode_edit(raw_edit))
            except EditFailure as exc:
                failed.append({"index": index, "error": str(exc)})
                continue
            applied += 1

        if current == original:
            if failed:
                return (
                    f"error: no changes made - all {len(failed)} edit(s) failed\n"
                    f"failed_edits: {json.dumps(failed)}"
                )
            return "error: no changes made - all edits resulted in identical content"

        try:
            path.write_text(current, encoding="utf-8")
        except OSError as exc:
            return f"error: failed to write file: {exc}"

        if failed:
            return (
                f"Applied {applied} of {len(args.edits)} edits ({len(failed)} failed)\n"
                f"failed_edits: {json.dumps(failed)}"
            )
        return f"Applied {applied} edits successfully"

    return Tool(
        description=MULTIEDIT_DESCRIPTION,
        schema={
            "file_path": "string",
            "edits": {
                "type": "array",
                "description": "Array of edit operations to perform sequentially on the file",
                "items": {
                    "type": "object",
                    "properties": {
                        "old_string": {
                            "type": "string",
                            "description": "Text to replace (must match exactly including whitespace/indentation)",
                        },
                        "new_string": {
                            "type": "string",
                            "description": "Replacement text",
                        },
                        "replace_all": {
                            "type": "boolean",
                            "description": "Replace all occurrences (optional, defaults to false)",
                        },
                    },
                    "required": ["old_string", "new_string"],
                },
            },
        },
        func=multiedit,
    )


# ── ls ──────────────────────────────────────────────────────────


@dataclass
class LsArgs:
    path: str | None = None

    @classmethod
    def from_args(cls, args: dict[str, Any]) -> LsArgs:
        return cls(path=arg_str("ls", args, "path", required=False) or None)


def make_ls_tool(ctx: ToolContext) -> Tool:
    def ls(raw: dict[str, Any]) -> str:
        args = LsArgs.from_args(raw)
        path = Path(ctx.resolve_path(args.path) if args.path else ctx.work_dir)
        try:
            entries = sorted(path.iterdir(), key=lambda p: p.name)
        except OSError as exc:
            return f"error: {exc}"
        return "".join(
            entry.name + ("/" if entry.is_dir() else "") + "\n"
            for entry in entries
        )

    return Tool(
        description="List directory contents",
        schema={"path": "string?"},
        func=ls,
    )
