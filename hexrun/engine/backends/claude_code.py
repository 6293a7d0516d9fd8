"""Claude Code CLI backend.

Runs ``claude --print --output-format stream-json`` and normalizes its
JSONL stream into canonical events. Each stdout object is decoded into
one of the line types below; anything unrecognized becomes UnknownLine
and is skipped.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Union

from ..models import (
    ContentBlock,
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

# Forces every model tier to GLM when running against z.ai
GLM_MODEL = "glm-4.7"


# ── Line types ──────────────────────────────────────────────────


@dataclass
class SystemLine:
    session_id: str = ""


@dataclass
class UserLine:
    texts: list[str] = field(default_factory=list)


@dataclass
class AssistantLine:
    blocks: list[ContentBlock] = field(default_factory=list)


@dataclass
class ToolResultLine:
    tool_use_id: str
    content: str


@dataclass
class ResultLine:
    result: str = ""
    is_error: bool = False


@dataclass
class ToolUseLine:
    block: ToolUseBlock


@dataclass
class TextDeltaLine:
    text: str


@dataclass
class UnknownLine:
    type: str


ClaudeLine = Union[
    SystemLine, UserLine, AssistantLine, ToolUseLine, TextDeltaLine,
    ToolResultLine, ResultLine, UnknownLine,
]


def _tool_use_block(raw: dict[str, Any]) -> ToolUseBlock:
    tool_input = raw.get("input")
    return ToolUseBlock(
        id=str(raw.get("id") or ""),
        name=str(raw.get("name") or ""),
        input=tool_input if isinstance(tool_input, dict) else {},
    )


def _content_list(data: dict[str, Any]) -> list[Any]:
    message = data.get("message")
    if not isinstance(message, dict):
        return []
    content = message.get("content")
    return content if isinstance(content, list) else []


def decode_line(data: dict[str, Any]) -> ClaudeLine:
    """Decode one stream-json object by its ``type`` discriminator."""
    line_type = data.get("type")
    if line_type == "system":
        session_id = data.get("session_id")
        return SystemLine(session_id=session_id if isinstance(session_id, str) else "")
    if line_type == "user":
        return UserLine(texts=[
            b["text"] for b in _content_list(data)
            if isinstance(b, dict) and isinstance(b.get("text"), str)
        ])
    if line_type == "assistant":
        blocks: list[ContentBlock] = []
        for raw in _content_list(data):
            if not isinstance(raw, dict):
                continue
            if raw.get("type") == "text" and isinstance(raw.get("text"), str):
                blocks.append(TextBlock(text=raw["text"]))
            elif raw.get("type") == "tool_use":
                blocks.append(_tool_use_block(raw))
        return AssistantLine(blocks=blocks)
    if line_type == "tool_use":
        return ToolUseLine(block=_tool_use_block(data))
    if line_type == "content_block_delta":
        delta = data.get("delta")
        text = delta.get("text") if isinstance(delta, dict) else None
        return TextDeltaLine(text=text if isinstance(text, str) else "")
    if line_type == "tool_result":
        content = data.get("content")
        if not isinstance(content, str):
            content = json.dumps(content) if content is not None else ""
        return ToolResultLine(
            tool_use_id=str(data.get("tool_use_id") or ""),
            content=content,
        )
    if line_type == "result":
        result = data.get("result")
        return ResultLine(
            result=result if isinstance(result, str) else "",
            is_error=data.get("is_error") is True,
        )
    return UnknownLine(type=str(line_type))


class ClaudeCodeBackend(CLIBackend):
    """Wraps the Claude Code CLI as a backend."""

    backend_type = BackendType.CLAUDE_CODE
    default_binary = "claude"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        # Text streamed via content_block_delta, not yet in history
        self._stream_text = ""

    def info(self) -> BackendInfo:
        return BackendInfo(
            type=self.backend_type,
            capabilities=["stateful", "introspectable", "session"],
        )

    def build_command(self, prompt: str) -> tuple[list[str], dict[str, str]]:
        # --verbose is required for stream-json output
        argv = [
            self.binary,
            "--print",
            "--verbose",
            "--output-format", "stream-json",
            "--dangerously-skip-permissions",
        ]
        if self.model:
            argv += ["--model", self.model]
        if self.session_id:
            argv += ["-r", self.session_id]
        argv += ["--", prompt]

        env = self.base_env()
        if self.base_url:
            env["ANTHROPIC_BASE_URL"] = self.base_url
            if self.api_key:
                env["ANTHROPIC_AUTH_TOKEN"] = self.api_key
            # Custom endpoints authenticate with the token only
            env["ANTHROPIC_API_KEY"] = ""
        elif self.api_key:
            env["ANTHROPIC_API_KEY"] = self.api_key

        if self.model == GLM_MODEL:
            env["ANTHROPIC_DEFAULT_HAIKU_MODEL"] = GLM_MODEL
            env["ANTHROPIC_DEFAULT_SONNET_MODEL"] = GLM_MODEL
            env["ANTHROPIC_DEFAULT_OPUS_MODEL"] = GLM_MODEL
        return argv, env

    async def handle_stderr(self, line: str) -> None:
        await super().handle_stderr(line)
        await self.emit(StreamEvent(type=EventType.ERROR, content=line))

    async def handle_line(self, data: dict[str, Any]) -> None:
        line = decode_line(data)

        if isinstance(line, SystemLine):
            await self.set_session_id(line.session_id)

        elif isinstance(line, UserLine):
            if line.texts:
                self._messages.append(Message(
                    role=Role.USER,
                    content=[TextBlock(text=t) for t in line.texts],
                ))

        elif isinstance(line, TextDeltaLine):
            if line.text:
                self._stream_text += line.text
                self._final_message += line.text
                await self.emit(StreamEvent(type=EventType.TEXT, content=line.text))

        elif isinstance(line, AssistantLine):
            self._flush_stream_text()
            if line.blocks:
                self._messages.append(Message(role=Role.ASSISTANT, content=line.blocks))
            for block in line.blocks:
                if isinstance(block, TextBlock):
                    self._final_message += block.text
                    await self.emit(StreamEvent(type=EventType.TEXT, content=block.text))
                elif isinstance(block, ToolUseBlock):
                    await self._emit_tool(block)

        elif isinstance(line, ToolUseLine):
            self._flush_stream_text()
            self._messages.append(Message(role=Role.ASSISTANT, content=[line.block]))
            await self._emit_tool(line.block)

        elif isinstance(line, ToolResultLine):
            self._flush_stream_text()
            self._messages.append(Message(
                role=Role.USER,
                content=[ToolResultBlock(tool_use_id=line.tool_use_id, content=line.content)],
            ))
            await self.emit(StreamEvent(
                type=EventType.TOOL_RESULT,
                content=line.content,
                tool_id=line.tool_use_id,
            ))

        elif isinstance(line, ResultLine):
            if line.is_error:
                logger.error("[%s] Result error: %s", self.name, line.result)
                await self.emit(StreamEvent(type=EventType.ERROR, content=line.result))
            else:
                self._flush_stream_text()
                await self.emit(StreamEvent(type=EventType.DONE, content=line.result))

        else:
            logger.debug("[%s] Skipping %s line", self.name, line.type)

    def _flush_stream_text(self) -> None:
        """Move pending streamed text into history as one assistant turn."""
        if not self._stream_text:
            return
        self._messages.append(Message(
            role=Role.ASSISTANT,
            content=[TextBlock(text=self._stream_text)],
        ))
        self._stream_text = ""

    async def _emit_tool(self, block: ToolUseBlock) -> None:
        await self.emit(StreamEvent(
            type=EventType.TOOL,
            content=f"Running {block.name}",
            tool=block.name,
            args=json.dumps(block.input),
            tool_id=block.id,
        ))
