"""Tests for env and YAML configuration and provider resolution."""
from __future__ import annotations

import textwrap

import pytest

from hexrun.engine.config import DEFAULT_ALLOWLIST, EngineConfig, SandboxConfig
from hexrun.engine.errors import ConfigError
from hexrun.engine.llm.provider import (
    ANTHROPIC_API_URL,
    ZAI_API_URL,
    LLMProvider,
    parse_model_id,
)
from hexrun.engine.yaml_config import load_yaml_config


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:
    for name in (
        "HEXRUN_BACKEND", "HEXRUN_MODEL", "HEXRUN_CWD", "HEXRUN_PROVIDER",
        "HEXRUN_ALLOWLIST", "HEXRUN_SANDBOX_TIMEOUT", "HEXRUN_SANDBOX_OUTPUT_LIMIT",
        "HEXRUN_EVENT_QUEUE_SIZE", "HEXRUN_LOG_LEVEL",
        "ANTHROPIC_API_KEY", "OPENROUTER_API_KEY", "ZAI_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)


def _write(tmp_path, body: str):
    path = tmp_path / "hexrun.yaml"
    path.write_text(textwrap.dedent(body))
    return path


# ── Environment ───────────────────────────────────────────────


def test_engine_config_defaults() -> None:
    """Defaults apply when no HEXRUN_* variables are set."""
    config = EngineConfig.from_env()
    assert config.default_backend == "native"
    assert config.event_queue_size == 64
    assert config.sandbox.allowlist == list(DEFAULT_ALLOWLIST)
    assert config.sandbox.sandbox_timeout_seconds == 600.0
    assert config.sandbox.sandbox_output_limit == 1024 * 1024


def test_engine_config_env_overrides(monkeypatch) -> None:
    """Valid env values override defaults; invalid numbers fall back."""
    monkeypatch.setenv("HEXRUN_BACKEND", "codex")
    monkeypatch.setenv("HEXRUN_ALLOWLIST", "git, make ,")
    monkeypatch.setenv("HEXRUN_SANDBOX_TIMEOUT", "12.5")
    monkeypatch.setenv("HEXRUN_SANDBOX_OUTPUT_LIMIT", "not-a-number")

    config = EngineConfig.from_env()
    assert config.default_backend == "codex"
    assert config.sandbox.allowlist == ["git", "make"]
    assert config.sandbox.sandbox_timeout_seconds == 12.5
    assert config.sandbox.sandbox_output_limit == SandboxConfig.sandbox_output_limit
    assert config.sandbox.is_command_allowed("make")
    assert not config.sandbox.is_command_allowed("rm")


# ── Providers ─────────────────────────────────────────────────


def test_parse_model_id() -> None:
    """Catalog prefixes resolve to provider names."""
    assert parse_model_id("o#openai/gpt-5.2") == ("openrouter", "openai/gpt-5.2")
    assert parse_model_id("zai#glm-4.7") == ("zai", "glm-4.7")
    assert parse_model_id("claude-opus-4-5") == ("", "claude-opus-4-5")


def test_provider_from_env_uses_catalog_id(monkeypatch) -> None:
    """A catalog id in HEXRUN_MODEL selects the provider and its key."""
    monkeypatch.setenv("HEXRUN_MODEL", "zai#glm-4.7")
    monkeypatch.setenv("ZAI_API_KEY", "zk")

    provider = LLMProvider.from_env()
    assert provider.api_url == ZAI_API_URL
    assert provider.type == "openai"
    assert provider.api_key == "zk"
    assert provider.model == "glm-4.7"


def test_unknown_provider_name() -> None:
    """An unknown provider name is a ConfigError."""
    with pytest.raises(ConfigError):
        LLMProvider.by_name("nowhere", "key")


# ── YAML ──────────────────────────────────────────────────────


def test_load_yaml_config_full(tmp_path, monkeypatch) -> None:
    """Every YAML section is parsed into typed config."""
    monkeypatch.setenv("MY_ANTHROPIC_KEY", "ak")
    monkeypatch.setenv("MY_ZAI_KEY", "zk")
    path = _write(tmp_path, """
        engine:
          default_cwd: /work
          event_queue_size: 16
        sandbox:
          allowlist: [git]
          timeout_seconds: 30
          output_limit: 2048
        providers:
          anthropic:
            api_key_env: MY_ANTHROPIC_KEY
            model: claude-opus-4-5
          local:
            type: openai
            api_url: http://localhost:8080/v1/chat/completions
            model: qwen
        backends:
          claude-code:
            type: claude-code
            command: claude
            model: glm-4.7
            api_key_env: MY_ZAI_KEY
            base_url: https://api.z.ai/api/anthropic
          codex:
            extra_args: [--skip-git-repo-check]
        defaults:
          backend: claude-code
          provider: anthropic
    """)

    config = load_yaml_config(path)
    assert config.engine.default_cwd == "/work"
    assert config.engine.event_queue_size == 16
    assert config.engine.default_backend == "claude-code"
    assert config.engine.sandbox.allowlist == ["git"]
    assert config.engine.sandbox.sandbox_timeout_seconds == 30.0
    assert config.engine.sandbox.sandbox_output_limit == 2048

    claude = config.backends["claude-code"]
    assert claude.api_key == "zk"
    assert claude.base_url == "https://api.z.ai/api/anthropic"
    assert config.backends["codex"].type == "codex"
    assert config.backends["codex"].extra_args == ["--skip-git-repo-check"]

    default = config.provider()
    assert default.api_url == ANTHROPIC_API_URL
    assert default.api_key == "ak"
    local = config.provider("local")
    assert local.type == "openai"
    assert local.model == "qwen"


def test_load_yaml_config_empty_file(tmp_path) -> None:
    """An empty file yields the default config."""
    config = load_yaml_config(_write(tmp_path, ""))
    assert config.engine.default_backend == "native"
    assert config.providers == {}


def test_load_yaml_config_errors(tmp_path) -> None:
    """Missing files re-raise; malformed or mistyped YAML is a ConfigError."""
    with pytest.raises(FileNotFoundError):
        load_yaml_config(tmp_path / "missing.yaml")
    with pytest.raises(ConfigError):
        load_yaml_config(_write(tmp_path, "engine: [unclosed"))
    with pytest.raises(ConfigError):
        load_yaml_config(_write(tmp_path, "sandbox:\n  allowlist: git\n"))
    with pytest.raises(ConfigError):
        load_yaml_config(_write(tmp_path, "- just\n- a list\n"))


def test_provider_without_url_or_preset(tmp_path) -> None:
    """A provider entry needs either an api_url or a known preset."""
    config = load_yaml_config(_write(tmp_path, """
        providers:
          custom:
            type: openai
    """))
    with pytest.raises(ConfigError):
        config.provider()
    with pytest.raises(ConfigError):
        config.provider("absent")
