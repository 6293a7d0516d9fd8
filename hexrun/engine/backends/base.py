"""Abstract base for execution backends.

Each backend runs a task a different way: the native loop calls an
LLM API directly, the CLI backends wrap an agent CLI as a child
process. All of them report progress only as canonical StreamEvents
through one EventSink, so callers stay backend-agnostic.
"""
from __future__ import annotations

import abc
import asyncio
import json
import logging
import os
import shutil
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..config import EventCallback
from ..errors import BackendNotAvailableError, BackendProcessError
from ..event_bus import EventBus, EventSink
from ..models import (
    EventType,
    Message,
    StreamEvent,
    TodoItem,
    messages_from_json,
    messages_to_json,
)

logger = logging.getLogger(__name__)


class BackendType(str, Enum):
    NATIVE = "native"
    CLAUDE_CODE = "claude-code"
    CODEX = "codex"


@dataclass
class BackendInfo:
    type: BackendType
    version: str = "1.0.0"
    capabilities: list[str] = field(default_factory=list)


class Backend(abc.ABC):
    """Abstract backend interface.

    Lifecycle: construct -> run / send (repeat) -> close.
    Callers must not run two tasks on one backend concurrently.
    """

    def __init__(
        self,
        work_dir: str = ".",
        callback: EventCallback | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self.work_dir = work_dir
        self._sink = EventSink(callback=callback, event_bus=event_bus)
        self._messages: list[Message] = []
        self._final_message = ""

    @abc.abstractmethod
    async def run(self, task: str) -> str:
        """Execute a task, streaming events. Returns the final message."""

    @abc.abstractmethod
    async def send(self, message: str) -> str:
        """Continue the conversation with a follow-up message."""

    @abc.abstractmethod
    def info(self) -> BackendInfo:
        """Describe this backend."""

    async def close(self) -> None:
        """Release resources. Safe to call more than once."""
        return None

    # ── Stateful ──────────────────────────────────────────────

    def get_state(self) -> str:
        """Conversation history as JSON, "" when nothing has run."""
        if not self._messages:
            return ""
        return messages_to_json(self._messages)

    def restore_state(self, state_json: str) -> None:
        """Seed the history before run(); "" is a no-op."""
        if not state_json:
            return
        self._messages = messages_from_json(state_json)

    # ── Introspection ─────────────────────────────────────────

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    @property
    def final_message(self) -> str:
        return self._final_message

    def todos(self) -> list[TodoItem]:
        return []

    async def emit(self, event: StreamEvent) -> None:
        await self._sink.emit(event)


async def read_line_unbounded(stream: asyncio.StreamReader) -> bytes:
    """Read a full line from *stream* with no size limit.

    Unlike ``StreamReader.readline()``, this never raises
    ``LimitOverrunError``. When the buffer fills before a newline is
    found, the buffered bytes are drained and accumulation continues
    until the separator or EOF. A single JSONL event (a tool result
    carrying a large file listing) easily exceeds the 64 KiB default.
    """
    chunks: list[bytes] = []
    while True:
        try:
            chunks.append(await stream.readuntil(b"\n"))
            return b"".join(chunks)
        except asyncio.LimitOverrunError as exc:
            chunks.append(await stream.read(exc.consumed))
        except asyncio.IncompleteReadError as exc:
            # EOF before newline
            chunks.append(exc.partial)
            return b"".join(chunks)


class CLIBackend(Backend):
    """Backend that runs an agent CLI and parses its JSONL stdout.

    Subclasses build the argv/env and turn each decoded JSON object
    into canonical events via handle_line().
    """

    backend_type: BackendType
    default_binary: str

    def __init__(
        self,
        work_dir: str = ".",
        callback: EventCallback | None = None,
        event_bus: EventBus | None = None,
        *,
        binary: str | None = None,
        api_key: str = "",
        base_url: str = "",
        model: str | None = None,
        session_id: str | None = None,
    ) -> None:
        super().__init__(work_dir=work_dir, callback=callback, event_bus=event_bus)
        self.binary = binary or self.default_binary
        if shutil.which(self.binary) is None:
            raise BackendNotAvailableError(self.backend_type.value, self.binary)
        self.api_key = api_key
        self.base_url = base_url
        self.model = model
        self.session_id = session_id
        self._process: asyncio.subprocess.Process | None = None

    @property
    def name(self) -> str:
        return self.backend_type.value

    @abc.abstractmethod
    def build_command(self, prompt: str) -> tuple[list[str], dict[str, str]]:
        """Return (argv, env) for one CLI invocation."""

    @abc.abstractmethod
    async def handle_line(self, data: dict[str, Any]) -> None:
        """Translate one decoded stdout line into events."""

    async def handle_stderr(self, line: str) -> None:
        logger.warning("[%s] stderr: %s", self.name, line)

    async def run(self, task: str) -> str:
        return await self._execute(task)

    async def send(self, message: str) -> str:
        # The CLI keeps its own history; session_id makes the next
        # invocation resume it.
        return await self._execute(message)

    async def set_session_id(self, session_id: str) -> None:
        """Record a session id, emitting a session event when it changes."""
        if not session_id or session_id == self.session_id:
            return
        self.session_id = session_id
        logger.info("[%s] Session ID detected: %s", self.name, session_id)
        await self.emit(StreamEvent(type=EventType.SESSION, content=session_id))

    async def _execute(self, prompt: str) -> str:
        self._messages.append(Message.user_text(prompt))
        argv, env = self.build_command(prompt)
        logger.info(
            "[%s] Starting command: %s (workdir=%s, api_key_len=%d, base_url=%s)",
            self.name, argv[0], self.work_dir, len(self.api_key), self.base_url or "-",
        )
        try:
            # Safe array-based subprocess, no shell
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                cwd=self.work_dir,
                start_new_session=True,
            )
        except FileNotFoundError as exc:
            raise BackendNotAvailableError(self.name, argv[0]) from exc
        except OSError as exc:
            raise BackendProcessError(self.name, -1, str(exc)) from exc
        self._process = proc

        stderr_lines: list[str] = []
        stdout_task = asyncio.create_task(self._read_stdout(proc.stdout))
        stderr_task = asyncio.create_task(self._read_stderr(proc.stderr, stderr_lines))
        try:
            await asyncio.gather(stdout_task, stderr_task)
            returncode = await proc.wait()
        except BaseException:
            # Kill and reap the child on cancellation or a reader failure
            stdout_task.cancel()
            stderr_task.cancel()
            await self.close()
            raise
        finally:
            self._process = None

        if returncode != 0:
            raise BackendProcessError(self.name, returncode, "\n".join(stderr_lines))
        return self._final_message

    async def _read_stdout(self, stream: asyncio.StreamReader | None) -> None:
        if stream is None:
            return
        while True:
            raw = await read_line_unbounded(stream)
            if not raw:
                return
            line = raw.decode("utf-8", errors="replace").strip()
            if line:
                await self.process_line(line)

    async def _read_stderr(
        self,
        stream: asyncio.StreamReader | None,
        lines: list[str],
    ) -> None:
        if stream is None:
            return
        while True:
            raw = await read_line_unbounded(stream)
            if not raw:
                return
            line = raw.decode("utf-8", errors="replace").strip()
            if line:
                lines.append(line)
                await self.handle_stderr(line)

    async def process_line(self, line: str) -> None:
        """Decode one JSONL line; malformed lines are logged and skipped."""
        try:
            data = json.loads(line)
        except ValueError:
            logger.warning("[%s] Skipping non-JSON line: %.200s", self.name, line)
            return
        if not isinstance(data, dict):
            logger.warning("[%s] Skipping non-object line: %.200s", self.name, line)
            return
        await self.handle_line(data)

    async def close(self) -> None:
        proc = self._process
        if proc is None or proc.returncode is not None:
            return
        logger.info("[%s] Killing running process pid=%d", self.name, proc.pid)
        try:
            proc.kill()
        except ProcessLookupError:
            return
        await proc.wait()

    def base_env(self) -> dict[str, str]:
        return dict(os.environ)
