"""Backend registry: maps backend names to constructors."""
from __future__ import annotations

import logging
import shutil
from dataclasses import replace
from typing import TYPE_CHECKING, Callable

from ..config import EngineConfig, EventCallback
from ..errors import ConfigError
from ..event_bus import EventBus
from .base import Backend, BackendType
from .claude_code import ClaudeCodeBackend
from .codex import CodexBackend
from .native import NativeBackend

if TYPE_CHECKING:
    from ..llm.provider import LLMProvider
    from ..yaml_config import HexrunConfig

logger = logging.getLogger(__name__)

_CLI_BACKENDS: dict[str, type] = {
    BackendType.CLAUDE_CODE.value: ClaudeCodeBackend,
    BackendType.CODEX.value: CodexBackend,
}


def list_backends() -> list[str]:
    return [t.value for t in BackendType]


def get_availability_report(yaml_config: HexrunConfig | None = None) -> dict[str, bool]:
    """Return a mapping of backend name -> runnable on this host.

    The native backend is always available; CLI backends need their
    binary on PATH.
    """
    report = {BackendType.NATIVE.value: True}
    for name, cls in _CLI_BACKENDS.items():
        binary = cls.default_binary
        if yaml_config is not None and name in yaml_config.backends:
            binary = yaml_config.backends[name].command or binary
        report[name] = shutil.which(binary) is not None
    return report


def validate(yaml_config: HexrunConfig | None = None) -> dict[str, bool]:
    """Log which backends can run and return the availability report."""
    report = get_availability_report(yaml_config)
    available = [n for n, ok in report.items() if ok]
    unavailable = [n for n, ok in report.items() if not ok]
    logger.info("Available backends: %s", ", ".join(available))
    if unavailable:
        logger.warning(
            "Unavailable backends (CLI not installed): %s",
            ", ".join(unavailable),
        )
    return report


def build_backend(
    name: str | None = None,
    config: EngineConfig | None = None,
    *,
    provider: LLMProvider | None = None,
    yaml_config: HexrunConfig | None = None,
    callback: EventCallback | None = None,
    event_bus: EventBus | None = None,
    work_dir: str | None = None,
    model: str | None = None,
) -> Backend:
    """Construct a backend by name.

    *name* defaults to config.default_backend. A YAML backends entry
    with a matching name supplies the binary, credentials and extra
    args of CLI backends; the native backend takes *provider*, or the
    YAML default provider, or LLMProvider.from_env().
    """
    config = config or (yaml_config.engine if yaml_config else EngineConfig())
    name = name or config.default_backend
    work_dir = work_dir or config.default_cwd
    model = model or config.default_model

    entry = yaml_config.backends.get(name) if yaml_config else None
    kind = entry.type if entry is not None else name
    logger.info("build_backend: name=%s type=%s work_dir=%s", name, kind, work_dir)

    if kind == BackendType.NATIVE.value:
        if provider is None:
            if yaml_config is not None and (yaml_config.providers or yaml_config.defaults.provider):
                provider = yaml_config.provider()
            else:
                from ..llm.provider import LLMProvider
                provider = LLMProvider.from_env()
        if model:
            provider = replace(provider, model=model)
        return NativeBackend(
            provider,
            work_dir=work_dir,
            callback=callback,
            event_bus=event_bus,
            config=config,
        )

    factory: Callable[..., Backend] | None = _CLI_BACKENDS.get(kind)
    if factory is None:
        raise ConfigError(
            "backend",
            f"unknown backend {kind!r}, expected one of {', '.join(list_backends())}",
        )
    kwargs: dict = {}
    if entry is not None:
        kwargs.update(
            binary=entry.command,
            api_key=entry.api_key,
            base_url=entry.base_url or "",
            model=model or entry.model,
        )
        if kind == BackendType.CODEX.value:
            kwargs["extra_args"] = entry.extra_args
    else:
        kwargs["model"] = model
    return factory(work_dir, callback, event_bus, **kwargs)
