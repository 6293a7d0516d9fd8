"""Execution backends: native loop plus CLI adapters."""
from .base import Backend, BackendInfo, BackendType, CLIBackend
from .claude_code import ClaudeCodeBackend
from .codex import CodexBackend
from .native import NativeBackend
from .registry import build_backend, get_availability_report

__all__ = [
    "Backend",
    "BackendInfo",
    "BackendType",
    "CLIBackend",
    "ClaudeCodeBackend",
    "CodexBackend",
    "NativeBackend",
    "build_backend",
    "get_availability_report",
]
