"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via HEXRUN_* env vars,
or load a YAML file with yaml_config.load_yaml_config().
"""
from __future__ import annotations

import inspect
import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Union

from .models import StreamEvent

logger = logging.getLogger(__name__)


# Callback for canonical events. May be a plain function or a coroutine
# function; both are accepted by fire_event().
EventCallback = Callable[[StreamEvent], Union[Awaitable[None], None]]


async def fire_event(
    callback: EventCallback | None,
    event: StreamEvent,
) -> None:
    """Fire an event callback if set, logging and swallowing errors."""
    if callback is None:
        return
    try:
        result = callback(event)
        if inspect.isawaitable(result):
            await result
    except Exception:
        # Never let observer errors break the agent loop
        logger.exception("Event callback failed for %s event", event.type.value)


DEFAULT_ALLOWLIST = (
    "git", "ls", "cat", "head", "tail", "grep", "find", "wc", "sort", "uniq",
)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid %s=%r, using default %s", name, raw, default)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid %s=%r, using default %s", name, raw, default)
        return default


def _env_list(name: str, default: tuple[str, ...]) -> list[str]:
    raw = os.getenv(name)
    if raw is None:
        return list(default)
    return [part.strip() for part in raw.split(",") if part.strip()]


@dataclass
class SandboxConfig:
    """Policy for running shell commands from the bash tool."""

    # Commands whose base executable may bypass the jail.
    allowlist: list[str] = field(default_factory=lambda: list(DEFAULT_ALLOWLIST))
    # Hard wall-clock limit per command.
    sandbox_timeout_seconds: float = 600.0
    # Byte cap per captured stream (stdout and stderr separately).
    sandbox_output_limit: int = 1024 * 1024

    def is_command_allowed(self, command: str) -> bool:
        return command in self.allowlist

    @classmethod
    def from_env(cls) -> SandboxConfig:
        return cls(
            allowlist=_env_list("HEXRUN_ALLOWLIST", DEFAULT_ALLOWLIST),
            sandbox_timeout_seconds=_env_float(
                "HEXRUN_SANDBOX_TIMEOUT", cls.sandbox_timeout_seconds
            ),
            sandbox_output_limit=_env_int(
                "HEXRUN_SANDBOX_OUTPUT_LIMIT", cls.sandbox_output_limit
            ),
        )


@dataclass
class EngineConfig:
    """Runtime configuration shared by all backends."""

    # Which backend runs a task: "native", "claude-code" or "codex".
    default_backend: str = "native"
    # Model override passed to whichever backend runs the task.
    default_model: str | None = None
    default_cwd: str = "."

    # Capacity of the bounded event queue used by EventBus.
    event_queue_size: int = 64
    # How long a producer waits on a full queue before dropping.
    event_put_timeout_seconds: float = 30.0

    log_level: str = "INFO"

    sandbox: SandboxConfig = field(default_factory=SandboxConfig)

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Load configuration from HEXRUN_* environment variables."""
        env_vars = {
            k: v for k, v in os.environ.items() if k.startswith("HEXRUN_")
        }
        if env_vars:
            logger.info(
                "EngineConfig.from_env: HEXRUN_* env overrides: %s",
                ", ".join(sorted(env_vars)),
            )
        else:
            logger.debug("EngineConfig.from_env: no HEXRUN_* env vars set, using defaults")

        config = cls(
            default_backend=os.getenv("HEXRUN_BACKEND", cls.default_backend),
            default_model=os.getenv("HEXRUN_MODEL") or None,
            default_cwd=os.getenv("HEXRUN_CWD", cls.default_cwd),
            event_queue_size=_env_int(
                "HEXRUN_EVENT_QUEUE_SIZE", cls.event_queue_size
            ),
            log_level=os.getenv("HEXRUN_LOG_LEVEL", cls.log_level),
            sandbox=SandboxConfig.from_env(),
        )
        logger.info(
            "EngineConfig.from_env: backend=%s model=%s cwd=%s allowlist=%d",
            config.default_backend, config.default_model,
            config.default_cwd, len(config.sandbox.allowlist),
        )
        return config
