"""hexrun engine: multi-backend agent execution runtime."""
from .models import (
    ContentBlock,
    EventType,
    Message,
    Role,
    StreamEvent,
    TextBlock,
    TodoItem,
    TodoStatus,
    ToolResultBlock,
    ToolUseBlock,
)
from .config import EngineConfig, SandboxConfig
from .event_bus import EventBus
from .todo_state import TodoState
from .errors import (
    BackendNotAvailableError,
    BackendProcessError,
    ConfigError,
    HexrunError,
    MaxIterationsError,
    ProtocolError,
    SandboxError,
    SandboxTimeoutError,
    ToolArgumentError,
    TransportError,
)

__all__ = [
    # Models
    "ContentBlock",
    "EventType",
    "Message",
    "Role",
    "StreamEvent",
    "TextBlock",
    "TodoItem",
    "TodoStatus",
    "ToolResultBlock",
    "ToolUseBlock",
    # Config
    "EngineConfig",
    "SandboxConfig",
    "EventBus",
    "TodoState",
    # YAML config (lazy import)
    "HexrunConfig",
    "load_yaml_config",
    # Sandbox (lazy import)
    "SandboxExecutor",
    # LLM (lazy import)
    "LLMProvider",
    # Backends (lazy import)
    "Backend",
    "NativeBackend",
    "ClaudeCodeBackend",
    "CodexBackend",
    "build_backend",
    # Errors
    "BackendNotAvailableError",
    "BackendProcessError",
    "ConfigError",
    "HexrunError",
    "MaxIterationsError",
    "ProtocolError",
    "SandboxError",
    "SandboxTimeoutError",
    "ToolArgumentError",
    "TransportError",
]


def __getattr__(name: str):
    if name == "HexrunConfig":
        from .yaml_config import HexrunConfig
        return HexrunConfig
    if name == "load_yaml_config":
        from .yaml_config import load_yaml_config
        return load_yaml_config
    if name == "SandboxExecutor":
        from .sandbox import SandboxExecutor
        return SandboxExecutor
    if name == "LLMProvider":
        from .llm.provider import LLMProvider
        return LLMProvider
    if name == "Backend":
        from .backends.base import Backend
        return Backend
    if name == "NativeBackend":
        from .backends.native import NativeBackend
        return NativeBackend
    if name == "ClaudeCodeBackend":
        from .backends.claude_code import ClaudeCodeBackend
        return ClaudeCodeBackend
    if name == "CodexBackend":
        from .backends.codex import CodexBackend
        return CodexBackend
    if name == "build_backend":
        from .backends.registry import build_backend
        return build_backend
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
