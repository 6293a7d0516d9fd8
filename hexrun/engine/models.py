"""Core data models for the agent runtime.

Conversation messages, the content-block variants they carry, the
canonical stream event every backend emits, and todo items. Single
source of truth to avoid circular imports.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class EventType(str, Enum):
    """Closed set of canonical stream event types."""
    PLAN = "plan"
    TOOL = "tool"
    RESULT = "result"
    TEXT = "text"
    ERROR = "error"
    DONE = "done"
    SESSION = "session"
    TOOL_RESULT = "tool_result"
    TODO = "todo"


class TodoStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


# ── Content blocks ──────────────────────────────────────────────


@dataclass(frozen=True)
class TextBlock:
    text: str
    type: str = field(default="text", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "text": self.text}


@dataclass(frozen=True)
class ToolUseBlock:
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    type: str = field(default="tool_use", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "id": self.id,
            "name": self.name,
            "input": self.input,
        }


@dataclass(frozen=True)
class ToolResultBlock:
    tool_use_id: str
    content: str
    type: str = field(default="tool_result", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "tool_use_id": self.tool_use_id,
            "content": self.content,
        }


ContentBlock = Union[TextBlock, ToolUseBlock, ToolResultBlock]


def block_from_dict(data: dict[str, Any]) -> ContentBlock:
    """Decode one wire-format content block.

    Raises ValueError for block types outside the closed set.
    """
    block_type = data.get("type")
    if block_type == "text":
        return TextBlock(text=str(data.get("text") or ""))
    if block_type == "tool_use":
        raw_input = data.get("input")
        return ToolUseBlock(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            input=raw_input if isinstance(raw_input, dict) else {},
        )
    if block_type == "tool_result":
        content = data.get("content")
        if not isinstance(content, str):
            content = json.dumps(content) if content is not None else ""
        return ToolResultBlock(
            tool_use_id=str(data.get("tool_use_id") or ""),
            content=content,
        )
    raise ValueError(f"unknown content block type: {block_type!r}")


@dataclass
class Message:
    role: Role
    content: list[ContentBlock] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role.value,
            "content": [block.to_dict() for block in self.content],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            role=Role(data["role"]),
            content=[block_from_dict(b) for b in data.get("content") or []],
        )

    @classmethod
    def user_text(cls, text: str) -> Message:
        return cls(role=Role.USER, content=[TextBlock(text=text)])

    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.content if isinstance(b, ToolUseBlock)]


def messages_to_json(messages: list[Message]) -> str:
    return json.dumps([m.to_dict() for m in messages])


def messages_from_json(raw: str) -> list[Message]:
    if not raw:
        return []
    data = json.loads(raw)
    if not isinstance(data, list):
        raise ValueError("message history must be a JSON array")
    return [Message.from_dict(item) for item in data]


# ── Stream events ───────────────────────────────────────────────


@dataclass
class StreamEvent:
    """The single output contract every backend produces."""
    type: EventType
    content: str = ""
    tool: str | None = None
    args: str | None = None
    tool_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type.value, "content": self.content}
        if self.tool is not None:
            data["tool"] = self.tool
        if self.args is not None:
            data["args"] = self.args
        if self.tool_id is not None:
            data["tool_id"] = self.tool_id
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


# ── Todos ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class TodoItem:
    content: str
    status: TodoStatus
    active_form: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            "content": self.content,
            "status": self.status.value,
            "active_form": self.active_form,
        }
