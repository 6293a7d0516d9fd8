"""Exception hierarchy for the agent runtime.

Specific exceptions for each failure mode. Tool-level failures are
turned into "error: ..." strings for the model; everything here is
for failures the caller has to see.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .sandbox import SandboxResult


class HexrunError(Exception):
    """Base exception for all runtime errors."""


class ConfigError(HexrunError):
    """A configuration value is missing or malformed."""
    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class ToolArgumentError(HexrunError):
    """A tool was called with a missing or mistyped argument."""
    def __init__(self, tool_name: str, field: str, reason: str):
        self.tool_name = tool_name
        self.field = field
        self.reason = reason
        super().__init__(f"{field} {reason}")


class SandboxError(HexrunError):
    """A sandboxed command could not be started."""


class SandboxTimeoutError(SandboxError):
    """A sandboxed command exceeded its wall-clock budget.

    Carries the partial result so callers can still show what the
    command printed before it was killed.
    """
    def __init__(self, timeout_seconds: float, result: SandboxResult):
        self.timeout_seconds = timeout_seconds
        self.result = result
        super().__init__(f"command timed out after {timeout_seconds:g}s")


class TransportError(HexrunError):
    """The LLM HTTP call failed (network error or non-2xx status)."""
    def __init__(self, message: str, status: int | None = None, body: str = ""):
        self.status = status
        self.body = body
        super().__init__(message)


class ProtocolError(HexrunError):
    """A peer answered with data we could not decode."""


class BackendNotAvailableError(HexrunError):
    """The CLI binary for a subprocess backend is not installed."""
    def __init__(self, backend: str, binary: str):
        self.backend = backend
        self.binary = binary
        super().__init__(
            f"Backend '{backend}' is not available: "
            f"'{binary}' not found in PATH"
        )


class BackendProcessError(HexrunError):
    """A subprocess backend exited with a nonzero status."""
    def __init__(self, backend: str, returncode: int, stderr: str = ""):
        self.backend = backend
        self.returncode = returncode
        self.stderr = stderr
        message = f"{backend} exited with status {returncode}"
        if stderr:
            message = f"{message}: {stderr}"
        super().__init__(message)


class MaxIterationsError(HexrunError):
    """The native loop hit its caller-imposed iteration cap."""
    def __init__(self, max_iterations: int):
        self.max_iterations = max_iterations
        super().__init__(f"stopped after {max_iterations} iterations")
