"""Todo list tool.

The model sends the whole list every call. The list is validated in
full before TodoState is touched, then replaced atomically; the reply
summarizes progress and names what just started or finished.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ..errors import ToolArgumentError
from ..models import TodoItem, TodoStatus
from .base import Tool, ToolContext, arg_list

logger = logging.getLogger(__name__)

TODOS_DESCRIPTION = """\
Manage a structured task list for tracking progress on complex tasks.
Use this for multi-step tasks, work that needs planning, or when the
user gives several tasks at once. Always send the complete list. Each
task needs content (imperative, e.g. "Add tests"), status (pending,
in_progress or completed) and active_form (present continuous, e.g.
"Adding tests"). Keep exactly one task in_progress while working.
"""

_STATUSES = {status.value: status for status in TodoStatus}


@dataclass
class TodosArgs:
    todos: list[TodoItem] = field(default_factory=list)

    @classmethod
    def from_args(cls, args: dict[str, Any]) -> TodosArgs:
        items: list[TodoItem] = []
        for raw in arg_list("todos", args, "todos"):
            if not isinstance(raw, dict):
                raise ToolArgumentError("todos", "todos", "entries must be objects")
            content = raw.get("content")
            if not isinstance(content, str) or not content:
                raise ToolArgumentError("todos", "content", "is required")
            status = raw.get("status")
            if not isinstance(status, str) or status not in _STATUSES:
                raise ToolArgumentError(
                    "todos", "status",
                    f"{status!r} is invalid, must be pending/in_progress/completed",
                )
            active_form = raw.get("active_form")
            items.append(TodoItem(
                content=content,
                status=_STATUSES[status],
                active_form=active_form if isinstance(active_form, str) else "",
            ))
        return cls(todos=items)


def summarize(previous: list[TodoItem], current: list[TodoItem]) -> str:
    """Build the progress reply from the old and new lists."""
    old_status = {item.content: item.status for item in previous}
    pending = in_progress = completed = 0
    just_started = ""
    just_completed: list[str] = []

    for item in current:
        before = old_status.get(item.content)
        if item.status == TodoStatus.PENDING:
            pending += 1
        elif item.status == TodoStatus.IN_PROGRESS:
            in_progress += 1
            if before != TodoStatus.IN_PROGRESS:
                just_started = item.active_form or item.content
        elif item.status == TodoStatus.COMPLETED:
            completed += 1
            if before is not None and before != TodoStatus.COMPLETED:
                just_completed.append(item.content)

    response = "Todo list updated. "
    response += (
        f"Status: {pending} pending, {in_progress} in progress, "
        f"{completed} completed. "
    )
    if just_started:
        response += f"Started: {just_started}. "
    if just_completed:
        response += f"Completed: [{', '.join(just_completed)}]. "
    response += "Continue with current tasks."
    return response


def make_todos_tool(ctx: ToolContext) -> Tool:
    def todos(raw: dict[str, Any]) -> str:
        args = TodosArgs.from_args(raw)
        if ctx.todo_state is None:
            return "error: todo state not initialized"
        previous = ctx.todo_state.set_todos(args.todos)
        done, total = ctx.todo_state.get_progress()
        logger.debug("Todo list replaced: %d/%d completed", done, total)
        return summarize(previous, args.todos)

    return Tool(
        description=TODOS_DESCRIPTION,
        schema={
            "todos": {
                "type": "array",
                "description": "The updated todo list",
                "items": {
                    "type": "object",
                    "properties": {
                        "content": {
                            "type": "string",
                            "description": "What needs to be done (imperative form, e.g., 'Add user authentication')",
                        },
                        "status": {
                            "type": "string",
                            "enum": ["pending", "in_progress", "completed"],
                            "description": "Task status: pending, in_progress, or completed",
                        },
                        "active_form": {
                            "type": "string",
                            "description": "Present continuous form shown during execution (e.g., 'Adding user authentication')",
                        },
                    },
                    "required": ["content", "status", "active_form"],
                },
            },
        },
        func=todos,
    )
