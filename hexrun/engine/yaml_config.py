"""YAML configuration loader.

Loads a single YAML file describing the engine, the sandbox policy,
LLM providers for the native backend and the CLI backends. When no
YAML is provided, EngineConfig.from_env() works on its own.

Example YAML:
    engine:
      default_backend: native
      default_cwd: /path/to/worktree
      event_queue_size: 64
      log_level: INFO

    sandbox:
      allowlist: [git, ls, cat, grep]
      timeout_seconds: 600
      output_limit: 1048576

    providers:
      anthropic:
        type: anthropic
        api_key_env: ANTHROPIC_API_KEY
        model: claude-opus-4-5
      zai:
        type: openai
        api_url: https://api.z.ai/api/coding/paas/v4/chat/completions
        api_key_env: ZAI_API_KEY
        model: glm-4.7

    backends:
      claude-code:
        type: claude-code
        command: claude
        model: glm-4.7
        api_key_env: ZAI_API_KEY
        base_url: https://api.z.ai/api/anthropic
      codex:
        type: codex
        extra_args: [--skip-git-repo-check]

    defaults:
      backend: native
      provider: anthropic
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .config import DEFAULT_ALLOWLIST, EngineConfig, SandboxConfig
from .errors import ConfigError
from .llm.provider import LLMProvider

logger = logging.getLogger(__name__)

_PROVIDER_PRESETS = ("anthropic", "openrouter", "zai")


@dataclass
class ProviderConfig:
    """One LLM provider entry for the native backend."""
    name: str
    type: str = "anthropic"  # wire shape: "anthropic" or "openai"
    api_url: str | None = None
    api_version: str | None = None
    api_key_env: str | None = None
    model: str | None = None

    def build(self) -> LLMProvider:
        """Resolve the API key from the environment and build a provider."""
        api_key = os.getenv(self.api_key_env, "") if self.api_key_env else ""
        if self.api_key_env and not api_key:
            logger.warning(
                "Provider %s: env var %s is not set", self.name, self.api_key_env,
            )
        if self.api_url is None and self.name in _PROVIDER_PRESETS:
            provider = LLMProvider.by_name(self.name, api_key, self.model)
            if self.api_version is not None:
                provider.api_version = self.api_version
            return provider
        if not self.api_url:
            raise ConfigError(
                f"providers.{self.name}.api_url",
                "required for providers without a preset",
            )
        return LLMProvider(
            api_url=self.api_url,
            api_version=self.api_version or "",
            api_key=api_key,
            model=self.model or "",
            type=self.type,
        )


@dataclass
class BackendConfig:
    """One CLI backend entry (claude-code or codex)."""
    name: str
    type: str
    command: str | None = None
    model: str | None = None
    api_key_env: str | None = None
    base_url: str | None = None
    extra_args: list[str] = field(default_factory=list)

    @property
    def api_key(self) -> str:
        return os.getenv(self.api_key_env, "") if self.api_key_env else ""


@dataclass
class DefaultsConfig:
    backend: str | None = None
    provider: str | None = None


@dataclass
class HexrunConfig:
    """Complete parsed YAML configuration."""
    engine: EngineConfig
    providers: dict[str, ProviderConfig] = field(default_factory=dict)
    backends: dict[str, BackendConfig] = field(default_factory=dict)
    defaults: DefaultsConfig = field(default_factory=DefaultsConfig)

    def provider(self, name: str | None = None) -> LLMProvider:
        """Build the named provider, or the default one."""
        name = name or self.defaults.provider
        if name is None:
            if len(self.providers) == 1:
                name = next(iter(self.providers))
            else:
                raise ConfigError("defaults.provider", "no provider selected")
        entry = self.providers.get(name)
        if entry is None:
            if name in _PROVIDER_PRESETS:
                entry = ProviderConfig(name=name)
            else:
                raise ConfigError(
                    "providers",
                    f"provider {name!r} not found, available: "
                    f"{', '.join(sorted(self.providers)) or 'none'}",
                )
        return entry.build()


def _section(raw: dict[str, Any], key: str) -> dict[str, Any]:
    value = raw.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigError(key, "must be a mapping")
    return value


def _parse_sandbox(raw: dict[str, Any]) -> SandboxConfig:
    allowlist = raw.get("allowlist", list(DEFAULT_ALLOWLIST))
    if not isinstance(allowlist, list):
        raise ConfigError("sandbox.allowlist", "must be a list of command names")
    try:
        return SandboxConfig(
            allowlist=[str(cmd) for cmd in allowlist],
            sandbox_timeout_seconds=float(
                raw.get("timeout_seconds", SandboxConfig.sandbox_timeout_seconds)
            ),
            sandbox_output_limit=int(
                raw.get("output_limit", SandboxConfig.sandbox_output_limit)
            ),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError("sandbox", str(exc)) from exc


def load_yaml_config(path: str | Path) -> HexrunConfig:
    """Load and parse a YAML config file.

    A missing file re-raises FileNotFoundError; malformed YAML or a
    malformed section raises ConfigError.
    """
    path = Path(path)
    logger.info("load_yaml_config: loading config from %s", path)
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error(
            "load_yaml_config: config file not found at %s (absolute path: %s)",
            path, path.absolute(),
        )
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise ConfigError(str(path), f"invalid YAML: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(str(path), "top level must be a mapping")

    logger.info(
        "Parsed YAML config %s, sections: %s",
        path.name, ", ".join(sorted(raw)) or "(empty)",
    )

    # ── Engine + sandbox ──────────────────────────────────────
    engine_raw = _section(raw, "engine")
    try:
        engine = EngineConfig(
            default_backend=str(engine_raw.get(
                "default_backend", EngineConfig.default_backend
            )),
            default_model=engine_raw.get("default_model", EngineConfig.default_model),
            default_cwd=str(engine_raw.get("default_cwd", EngineConfig.default_cwd)),
            event_queue_size=int(engine_raw.get(
                "event_queue_size", EngineConfig.event_queue_size
            )),
            event_put_timeout_seconds=float(engine_raw.get(
                "event_put_timeout_seconds", EngineConfig.event_put_timeout_seconds
            )),
            log_level=str(engine_raw.get("log_level", EngineConfig.log_level)),
            sandbox=_parse_sandbox(_section(raw, "sandbox")),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError("engine", str(exc)) from exc

    # ── Providers ─────────────────────────────────────────────
    providers: dict[str, ProviderConfig] = {}
    for name, cfg in _section(raw, "providers").items():
        cfg = cfg or {}
        providers[name] = ProviderConfig(
            name=name,
            type=cfg.get("type", "anthropic"),
            api_url=cfg.get("api_url"),
            api_version=cfg.get("api_version"),
            api_key_env=cfg.get("api_key_env"),
            model=cfg.get("model"),
        )

    # ── Backends ──────────────────────────────────────────────
    backends: dict[str, BackendConfig] = {}
    for name, cfg in _section(raw, "backends").items():
        cfg = cfg or {}
        extra_args = cfg.get("extra_args") or []
        if not isinstance(extra_args, list):
            raise ConfigError(f"backends.{name}.extra_args", "must be a list")
        backends[name] = BackendConfig(
            name=name,
            type=cfg.get("type", name),
            command=cfg.get("command"),
            model=cfg.get("model"),
            api_key_env=cfg.get("api_key_env"),
            base_url=cfg.get("base_url"),
            extra_args=[str(a) for a in extra_args],
        )

    defaults_raw = _section(raw, "defaults")
    defaults = DefaultsConfig(
        backend=defaults_raw.get("backend"),
        provider=defaults_raw.get("provider"),
    )
    if defaults.backend:
        engine.default_backend = defaults.backend

    logger.info(
        "load_yaml_config: %d provider(s), %d backend(s), default backend=%s",
        len(providers), len(backends), engine.default_backend,
    )
    return HexrunConfig(
        engine=engine,
        providers=providers,
        backends=backends,
        defaults=defaults,
    )
