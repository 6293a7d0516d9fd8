"""OpenAI Codex CLI backend.

Runs ``codex exec --json`` and normalizes its JSONL event stream into
canonical events. Thread lifecycle lines map to session/done/error;
item lines carry either an agent message (text) or a tool item, whose
start and completion become a tool / tool_result pair.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Union

from ..models import (
    EventType,
    Message,
    Role,
    StreamEvent,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
)
from .base import BackendInfo, BackendType, CLIBackend

logger = logging.getLogger(__name__)

TOOL_ITEM_TYPES = frozenset({
    "command_execution", "file_change", "mcp_tool_call", "web_search",
    "tool_call", "tool_use", "tool_result", "tool_output",
})
TEXT_ITEM_TYPES = frozenset({"agent_message", "assistant_message"})


# ── Line types ──────────────────────────────────────────────────


@dataclass
class ThreadStarted:
    thread_id: str


@dataclass
class TurnCompleted:
    pass


@dataclass
class TurnFailed:
    message: str


@dataclass
class ItemEvent:
    phase: str  # "started", "updated" or "completed"
    item_type: str
    item: dict[str, Any] = field(default_factory=dict)


@dataclass
class UnknownLine:
    type: str


CodexLine = Union[ThreadStarted, TurnCompleted, TurnFailed, ItemEvent, UnknownLine]


def _get_str(data: dict[str, Any] | None, key: str) -> str:
    if not data:
        return ""
    value = data.get(key)
    return value if isinstance(value, str) else ""


def extract_error(data: dict[str, Any]) -> str:
    """Best-effort error text from a turn.failed / error line."""
    for key in ("message", "error"):
        msg = _get_str(data, key)
        if msg:
            return msg
    payload = data.get("error")
    if isinstance(payload, dict):
        return _get_str(payload, "message") or json.dumps(payload)
    return "Codex execution failed"


def decode_line(data: dict[str, Any]) -> CodexLine:
    """Decode one ``codex exec --json`` object by its ``type`` discriminator."""
    line_type = _get_str(data, "type")
    if line_type == "thread.started":
        return ThreadStarted(thread_id=_get_str(data, "thread_id"))
    if line_type == "turn.completed":
        return TurnCompleted()
    if line_type in ("turn.failed", "error"):
        return TurnFailed(message=extract_error(data))
    if line_type in ("item.started", "item.updated", "item.completed"):
        item = data.get("item")
        if isinstance(item, dict):
            item_type = _get_str(item, "type") or _get_str(item, "item_type")
            return ItemEvent(
                phase=line_type.split(".", 1)[1],
                item_type=item_type,
                item=item,
            )
    return UnknownLine(type=line_type)


def looks_like_tool_item(item_type: str, item: dict[str, Any]) -> bool:
    if item_type in TOOL_ITEM_TYPES:
        return True
    if any(word in item_type for word in ("tool", "command", "file", "search")):
        return True
    return any(key in item for key in ("command", "tool", "tool_name", "query"))


def tool_name(item_type: str, item: dict[str, Any]) -> str:
    return (
        _get_str(item, "tool_name")
        or _get_str(item, "tool")
        or _get_str(item, "name")
        or item_type
    )


def tool_summary(name: str, item: dict[str, Any]) -> str:
    cmd = _get_str(item, "command")
    if cmd:
        return f"Running {cmd}"
    query = _get_str(item, "query")
    if query:
        return f"Searching: {query}"
    return f"Running {name}"


def extract_tool_result(item: dict[str, Any]) -> str:
    """Tool output from a completed item, or "" if it carries none."""
    for key in ("output", "result", "text", "diff"):
        out = _get_str(item, key)
        if out:
            return out
    stdout = _get_str(item, "stdout")
    stderr = _get_str(item, "stderr")
    if stdout and stderr:
        return f"stdout:\n{stdout}\n\nstderr:\n{stderr}"
    if stdout or stderr:
        return stdout or stderr
    files = item.get("files")
    if isinstance(files, list) and files:
        return json.dumps(files)
    return ""


def extract_text(content: Any) -> str:
    """Flatten message content (str, block list or block) to text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(extract_text(part) for part in content)
    if isinstance(content, dict):
        block_type = content.get("type")
        if block_type is not None and block_type not in ("text", "output_text", "input_text"):
            return ""
        if isinstance(content.get("text"), str):
            return content["text"]
        if "content" in content:
            return extract_text(content["content"])
    return ""


class CodexBackend(CLIBackend):
    """Wraps the Codex CLI as a backend."""

    backend_type = BackendType.CODEX
    default_binary = "codex"

    def __init__(self, *args: Any, extra_args: list[str] | None = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.extra_args = list(extra_args or [])

    def info(self) -> BackendInfo:
        return BackendInfo(
            type=self.backend_type,
            capabilities=["stateful", "introspectable", "session"],
        )

    def build_command(self, prompt: str) -> tuple[list[str], dict[str, str]]:
        argv = [self.binary, "exec"]
        if self.session_id:
            argv.append("resume")
        argv += ["--json", "--full-auto"]
        if not self.session_id:
            argv += ["--cd", self.work_dir]
        if self.model:
            argv += ["--model", self.model]
        argv += self.extra_args
        if self.session_id:
            argv.append(self.session_id)
        if prompt:
            argv.append(prompt)

        env = self.base_env()
        if self.api_key:
            env["CODEX_API_KEY"] = self.api_key
            env["OPENAI_API_KEY"] = self.api_key
        if self.base_url:
            env["OPENAI_BASE_URL"] = self.base_url
            env["OPENAI_API_BASE"] = self.base_url
        return argv, env

    async def handle_line(self, data: dict[str, Any]) -> None:
        line = decode_line(data)

        if isinstance(line, ThreadStarted):
            await self.set_session_id(line.thread_id)

        elif isinstance(line, TurnCompleted):
            await self.emit(StreamEvent(type=EventType.DONE))

        elif isinstance(line, TurnFailed):
            logger.error("[%s] Turn failed: %s", self.name, line.message)
            await self.emit(StreamEvent(type=EventType.ERROR, content=line.message))

        elif isinstance(line, ItemEvent):
            await self._handle_item(line)

        else:
            logger.debug("[%s] Skipping %s line", self.name, line.type or "untyped")

    async def _handle_item(self, event: ItemEvent) -> None:
        item_type, item = event.item_type, event.item

        if item_type == "reasoning":
            return
        if event.phase == "updated":
            # Partial agent messages repeat in the completed item
            return

        if item_type in TEXT_ITEM_TYPES or item_type == "plan_update":
            if event.phase == "completed":
                await self._emit_text(item)
            return

        if not looks_like_tool_item(item_type, item):
            if event.phase == "completed":
                await self._emit_text(item)
            return

        if event.phase == "completed":
            await self._emit_tool_result(item_type, item)
        else:
            await self._emit_tool_call(item_type, item)

    async def _emit_text(self, item: dict[str, Any]) -> None:
        text = (extract_text(item.get("content")) or _get_str(item, "text")).strip()
        if not text:
            return
        self._messages.append(Message(role=Role.ASSISTANT, content=[TextBlock(text=text)]))
        self._final_message += text
        await self.emit(StreamEvent(type=EventType.TEXT, content=text))

    async def _emit_tool_call(self, item_type: str, item: dict[str, Any]) -> None:
        name = tool_name(item_type, item)
        tool_id = _get_str(item, "id")
        self._messages.append(Message(
            role=Role.ASSISTANT,
            content=[ToolUseBlock(id=tool_id, name=name, input=dict(item))],
        ))
        await self.emit(StreamEvent(
            type=EventType.TOOL,
            content=tool_summary(name, item),
            tool=name,
            args=json.dumps(item),
            tool_id=tool_id,
        ))

    async def _emit_tool_result(self, item_type: str, item: dict[str, Any]) -> None:
        name = tool_name(item_type, item)
        tool_id = (
            _get_str(item, "tool_call_id")
            or _get_str(item, "tool_use_id")
            or _get_str(item, "id")
        )
        output = extract_tool_result(item) or f"{name} completed"
        self._messages.append(Message(
            role=Role.USER,
            content=[ToolResultBlock(tool_use_id=tool_id, content=output)],
        ))
        await self.emit(StreamEvent(
            type=EventType.TOOL_RESULT,
            content=output,
            tool=name,
            tool_id=tool_id,
        ))
