"""Sandboxed shell command execution.

Commands run through ``bash -c``. On Linux with bubblewrap installed
they run inside a jail that sees the work dir as /workspace and the
host system read-only. Allowlisted commands, and every command on
hosts without bwrap, run directly.

Every command gets a hard wall-clock timeout and a per-stream byte cap.
"""
from __future__ import annotations

import asyncio
import logging
import os
import shutil
import signal
import sys
import time
from dataclasses import dataclass

from .config import SandboxConfig
from .errors import SandboxError, SandboxTimeoutError

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n... [output truncated] ..."

_RO_BIND_DIRS = ("/usr", "/lib", "/lib64", "/bin", "/etc")
_READ_CHUNK = 64 * 1024


@dataclass
class SandboxResult:
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    truncated: bool = False
    timed_out: bool = False
    duration: float = 0.0

    def combined_output(self) -> str:
        if not self.stderr:
            return self.stdout
        if not self.stdout:
            return self.stderr
        return self.stdout + "\n" + self.stderr


class LimitedBuffer:
    """Byte buffer that keeps at most ``limit`` bytes.

    The first write that would overflow stores what fits, appends the
    truncation marker once, and everything after is discarded.
    """

    def __init__(self, limit: int) -> None:
        self.limit = limit
        self.written = 0
        self.truncated = False
        self._chunks: list[bytes] = []

    def write(self, data: bytes) -> int:
        if self.truncated:
            return len(data)
        remaining = self.limit - self.written
        if len(data) > remaining:
            if remaining > 0:
                self._chunks.append(data[:remaining])
                self.written += remaining
            self.truncated = True
            self._chunks.append(TRUNCATION_MARKER.encode())
            return len(data)
        self._chunks.append(data)
        self.written += len(data)
        return len(data)

    def getvalue(self) -> str:
        return b"".join(self._chunks).decode("utf-8", errors="replace")


def _truncate_cmd(cmd: str, max_len: int = 50) -> str:
    if len(cmd) <= max_len:
        return cmd
    return cmd[:max_len] + "..."


def _exit_code(returncode: int | None) -> int:
    if returncode is None:
        return -1
    if returncode < 0:
        # Killed by signal N
        return 128 - returncode
    return returncode


class SandboxExecutor:
    """Runs shell commands with optional bubblewrap isolation."""

    def __init__(self, config: SandboxConfig | None = None) -> None:
        self.config = config or SandboxConfig()
        self._bwrap_path = shutil.which("bwrap")
        if sys.platform.startswith("linux") and self._bwrap_path is None:
            logger.warning("Bubblewrap (bwrap) not found - sandboxing disabled on Linux!")

    def is_sandboxed(self) -> bool:
        return sys.platform.startswith("linux") and self._bwrap_path is not None

    def is_allowed(self, cmd: str) -> bool:
        """Check the command's base executable against the allowlist."""
        parts = cmd.split()
        if not parts:
            return False
        base = parts[0].rsplit("/", 1)[-1]
        return self.config.is_command_allowed(base)

    def build_bwrap_args(self, work_dir: str, cmd: str) -> list[str]:
        args = [self._bwrap_path or "bwrap", "--die-with-parent", "--unshare-pid"]
        for path in _RO_BIND_DIRS:
            if os.path.exists(path):
                args += ["--ro-bind", path, path]
        args += [
            "--tmpfs", "/tmp",
            "--bind", os.path.abspath(work_dir), "/workspace",
            "--chdir", "/workspace",
            "--dev", "/dev",
            "--proc", "/proc",
            "bash", "-c", cmd,
        ]
        return args

    async def execute(
        self,
        work_dir: str,
        cmd: str,
        allowlist: bool = False,
    ) -> SandboxResult:
        """Run ``cmd`` and capture its output.

        Raises SandboxTimeoutError (carrying the partial result) when the
        command exceeds the timeout, and SandboxError when it cannot be
        started at all.
        """
        if allowlist and self.is_allowed(cmd):
            logger.debug("Running allowed command without sandbox: %s", _truncate_cmd(cmd))
            return await self._run(["bash", "-c", cmd], cwd=work_dir)

        if self.is_sandboxed():
            logger.debug("Running command in sandbox: %s", _truncate_cmd(cmd))
            return await self._run(self.build_bwrap_args(work_dir, cmd), cwd=None)

        if sys.platform == "darwin":
            logger.debug("Running command without sandbox (macOS dev mode): %s", _truncate_cmd(cmd))
        else:
            logger.warning("Running command without sandbox (bwrap unavailable): %s", _truncate_cmd(cmd))
        return await self._run(["bash", "-c", cmd], cwd=work_dir)

    async def _run(self, argv: list[str], cwd: str | None) -> SandboxResult:
        start = time.monotonic()
        limit = self.config.sandbox_output_limit
        timeout = self.config.sandbox_timeout_seconds
        try:
            # Safe array-based subprocess, no shell parsing of argv
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                start_new_session=True,
            )
        except OSError as exc:
            raise SandboxError(f"failed to execute command: {exc}") from exc

        stdout_buf = LimitedBuffer(limit)
        stderr_buf = LimitedBuffer(limit)
        readers = asyncio.gather(
            self._pump(proc.stdout, stdout_buf),
            self._pump(proc.stderr, stderr_buf),
        )
        # Output and exit share one deadline
        waiter = asyncio.gather(readers, proc.wait())
        timed_out = False
        try:
            await asyncio.wait_for(asyncio.shield(waiter), timeout=timeout)
        except asyncio.TimeoutError:
            timed_out = True
            logger.warning("Command exceeded %gs timeout, killing pid %d", timeout, proc.pid)
            self._kill(proc)
            await proc.wait()
            waiter.cancel()
            try:
                await waiter
            except asyncio.CancelledError:
                pass
        except asyncio.CancelledError:
            self._kill(proc)
            await proc.wait()
            waiter.cancel()
            raise

        result = SandboxResult(
            stdout=stdout_buf.getvalue(),
            stderr=stderr_buf.getvalue(),
            exit_code=0 if timed_out else _exit_code(proc.returncode),
            truncated=stdout_buf.truncated or stderr_buf.truncated,
            timed_out=timed_out,
            duration=time.monotonic() - start,
        )
        if timed_out:
            raise SandboxTimeoutError(timeout, result)
        return result

    @staticmethod
    async def _pump(stream: asyncio.StreamReader | None, buf: LimitedBuffer) -> None:
        if stream is None:
            return
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                return
            buf.write(chunk)

    @staticmethod
    def _kill(proc: asyncio.subprocess.Process) -> None:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            try:
                proc.kill()
            except ProcessLookupError:
                pass
