"""Native backend: the tool-calling loop against an LLM HTTP API.

One iteration sends the full history plus the tool schema, appends the
assistant turn, then answers every tool_use block with exactly one
tool_result before the next call. A turn without tool calls ends the
task.

    AwaitingResponse -> DispatchingTools -> AwaitingResponse -> ... -> Done
"""
from __future__ import annotations

import asyncio
import json
import logging
import queue

from ..config import EngineConfig, EventCallback
from ..errors import ConfigError, MaxIterationsError, ProtocolError, TransportError
from ..event_bus import EventBus
from ..llm.caller import LLMCaller, build_llm_caller
from ..llm.provider import LLMProvider
from ..models import (
    EventType,
    Message,
    Role,
    StreamEvent,
    TextBlock,
    TodoItem,
    ToolResultBlock,
    ToolUseBlock,
)
from ..sandbox import SandboxExecutor
from ..todo_state import TodoState
from ..tools.base import ToolContext, ToolRegistry
from .base import Backend, BackendInfo, BackendType

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a coding assistant. Work directory: {work_dir}. "
    "Be concise. Make changes directly."
)
RESULT_DISPLAY_LIMIT = 200


def truncate_for_display(text: str, limit: int = RESULT_DISPLAY_LIMIT) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


class NativeBackend(Backend):
    """Runs the agent loop in-process against an LLM provider."""

    backend_type = BackendType.NATIVE

    def __init__(
        self,
        provider: LLMProvider | None = None,
        work_dir: str = ".",
        callback: EventCallback | None = None,
        event_bus: EventBus | None = None,
        *,
        config: EngineConfig | None = None,
        caller: LLMCaller | None = None,
        system_prompt: str | None = None,
        max_iterations: int | None = None,
        executor: SandboxExecutor | None = None,
    ) -> None:
        super().__init__(work_dir=work_dir, callback=callback, event_bus=event_bus)
        if caller is None and provider is None:
            raise ConfigError("provider", "native backend needs a provider or a caller")
        self.config = config or EngineConfig()
        self.provider = provider if provider is not None else caller.provider
        self.caller = caller or build_llm_caller(provider)
        self.system_prompt = system_prompt or DEFAULT_SYSTEM_PROMPT.format(work_dir=work_dir)
        self.max_iterations = max_iterations

        self.todo_state = TodoState()
        self._todo_sub = self.todo_state.subscribe()
        self.registry = ToolRegistry(ToolContext(
            work_dir=work_dir,
            executor=executor or SandboxExecutor(self.config.sandbox),
            todo_state=self.todo_state,
        ))

    def info(self) -> BackendInfo:
        return BackendInfo(
            type=self.backend_type,
            capabilities=["stateful", "introspectable", "todos"],
        )

    def todos(self) -> list[TodoItem]:
        return self.todo_state.get_todos()

    async def run(self, task: str, cancel: asyncio.Event | None = None) -> str:
        """Start on *task*, after any history seeded by restore_state()."""
        await self.emit(StreamEvent(type=EventType.PLAN, content=f"Analyzing task: {task}"))
        self._messages.append(Message.user_text(task))
        return await self._loop(cancel)

    async def send(self, message: str, cancel: asyncio.Event | None = None) -> str:
        await self.emit(StreamEvent(type=EventType.PLAN, content=f"Continuing with: {message}"))
        self._messages.append(Message.user_text(message))
        return await self._loop(cancel)

    async def close(self) -> None:
        self.todo_state.unsubscribe(self._todo_sub)
        await self.caller.close()

    # ── Loop ──────────────────────────────────────────────────

    async def _loop(self, cancel: asyncio.Event | None) -> str:
        self._final_message = ""
        tools = self.registry.schema()
        iteration = 0
        while True:
            if cancel is not None and cancel.is_set():
                logger.info("Native loop cancelled before iteration %d", iteration + 1)
                raise asyncio.CancelledError()
            if self.max_iterations is not None and iteration >= self.max_iterations:
                await self.emit(StreamEvent(
                    type=EventType.ERROR,
                    content=f"Stopped after {self.max_iterations} iterations",
                ))
                raise MaxIterationsError(self.max_iterations)
            iteration += 1

            await self.emit(StreamEvent(type=EventType.PLAN, content="Calling LLM API..."))
            try:
                response = await self.caller.call(self._messages, tools, self.system_prompt)
            except (TransportError, ProtocolError) as exc:
                logger.error("LLM call failed on iteration %d: %s", iteration, exc)
                await self.emit(StreamEvent(type=EventType.ERROR, content=str(exc)))
                raise

            self._messages.append(Message(role=Role.ASSISTANT, content=list(response.content)))
            await self.emit(StreamEvent(
                type=EventType.PLAN,
                content=f"Received response with {len(response.content)} content blocks",
            ))

            results: list[ToolResultBlock] = []
            for block in response.content:
                if isinstance(block, TextBlock):
                    if block.text:
                        self._final_message += block.text
                        await self.emit(StreamEvent(type=EventType.TEXT, content=block.text))
                elif isinstance(block, ToolUseBlock):
                    results.append(await self._dispatch(block))

            if not results:
                await self.emit(StreamEvent(
                    type=EventType.PLAN,
                    content="No more tools to run, completing task",
                ))
                await self.emit(StreamEvent(type=EventType.DONE, content="Task completed"))
                return self._final_message

            self._messages.append(Message(role=Role.USER, content=list(results)))
            await self.emit(StreamEvent(
                type=EventType.PLAN,
                content=f"Running {len(results)} tool result(s) through agent loop",
            ))

    async def _dispatch(self, block: ToolUseBlock) -> ToolResultBlock:
        await self.emit(StreamEvent(
            type=EventType.TOOL,
            content=f"Running {block.name}",
            tool=block.name,
            args=json.dumps(block.input),
            tool_id=block.id,
        ))
        output = await self.registry.invoke(block.name, block.input)
        await self.emit(StreamEvent(
            type=EventType.RESULT,
            content=truncate_for_display(output),
            tool=block.name,
            tool_id=block.id,
        ))
        await self._forward_todos()
        return ToolResultBlock(tool_use_id=block.id, content=output)

    async def _forward_todos(self) -> None:
        while True:
            try:
                snapshot = self._todo_sub.get_nowait()
            except queue.Empty:
                return
            await self.emit(StreamEvent(
                type=EventType.TODO,
                content=json.dumps([item.to_dict() for item in snapshot]),
            ))
