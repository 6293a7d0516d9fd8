"""LLM provider descriptions.

A provider is pure configuration: where to send requests, which wire
shape to use and which credentials to attach. Credentials are injected
by the caller; nothing here is process-global.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from ..errors import ConfigError

logger = logging.getLogger(__name__)

ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_API_VERSION = "2023-06-01"
OPENROUTER_API_URL = "https://openrouter.ai/api/v1/messages"
ZAI_API_URL = "https://api.z.ai/api/coding/paas/v4/chat/completions"


@dataclass
class LLMProvider:
    api_url: str
    model: str
    api_key: str = ""
    api_version: str = ""
    # Wire shape: "anthropic" or "openai".
    type: str = "anthropic"

    @classmethod
    def anthropic(cls, api_key: str, model: str = "claude-opus-4-5") -> LLMProvider:
        return cls(
            api_url=ANTHROPIC_API_URL,
            api_version=ANTHROPIC_API_VERSION,
            api_key=api_key,
            model=model,
            type="anthropic",
        )

    @classmethod
    def openrouter(
        cls, api_key: str, model: str = "anthropic/claude-sonnet-4.5",
    ) -> LLMProvider:
        return cls(
            api_url=OPENROUTER_API_URL,
            api_key=api_key,
            model=model,
            type="anthropic",
        )

    @classmethod
    def zai(cls, api_key: str, model: str = "glm-4.7") -> LLMProvider:
        return cls(
            api_url=ZAI_API_URL,
            api_key=api_key,
            model=model,
            type="openai",
        )

    @classmethod
    def by_name(cls, name: str, api_key: str, model: str | None = None) -> LLMProvider:
        factories = {
            "anthropic": cls.anthropic,
            "openrouter": cls.openrouter,
            "zai": cls.zai,
        }
        factory = factories.get(name)
        if factory is None:
            raise ConfigError(
                "provider",
                f"unknown provider {name!r}, expected one of {sorted(factories)}",
            )
        if model:
            return factory(api_key, model)
        return factory(api_key)

    @classmethod
    def from_env(cls) -> LLMProvider:
        """Build a provider from HEXRUN_PROVIDER and the matching key.

        Keys come from ANTHROPIC_API_KEY, OPENROUTER_API_KEY or
        ZAI_API_KEY. HEXRUN_MODEL overrides the preset model; a catalog
        id such as "o#openai/gpt-5.2" also selects the provider.
        """
        name = os.getenv("HEXRUN_PROVIDER", "anthropic")
        model = os.getenv("HEXRUN_MODEL") or None
        if model and "#" in model:
            name, model = parse_model_id(model)
        key_var = _KEY_ENV.get(name, "")
        api_key = os.getenv(key_var, "") if key_var else ""
        if not api_key:
            logger.warning("LLMProvider.from_env: %s is not set", key_var or "API key")
        provider = cls.by_name(name, api_key, model)
        logger.info(
            "LLMProvider.from_env: provider=%s model=%s url=%s",
            name, provider.model, provider.api_url,
        )
        return provider


_KEY_ENV = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "zai": "ZAI_API_KEY",
}


# ── Model catalog ───────────────────────────────────────────────


@dataclass(frozen=True)
class ModelInfo:
    id: str
    name: str
    provider: str


MODELS = (
    ModelInfo("o#anthropic/claude-sonnet-4.5", "Claude Sonnet 4.5", "openrouter"),
    ModelInfo("o#anthropic/claude-opus-4.5", "Claude Opus 4.5", "openrouter"),
    ModelInfo("o#google/gemini-3-pro-preview", "Gemini 3 Pro Preview", "openrouter"),
    ModelInfo("o#google/gemini-3-flash-preview", "Gemini 3 Flash Preview", "openrouter"),
    ModelInfo("o#openai/gpt-5.2", "GPT 5.2", "openrouter"),
    ModelInfo("o#openai/gpt-5.1-codex-max", "GPT 5.1 Codex Max", "openrouter"),
    ModelInfo("zai#glm-4.7", "GLM 4.7", "zai"),
)

_PREFIXES = {"o": "openrouter", "zai": "zai", "a": "anthropic"}


def parse_model_id(model_id: str) -> tuple[str, str]:
    """Split "prefix#model" into (provider name, model).

    Ids without a "#" are returned as ("", model_id).
    """
    prefix, sep, model = model_id.partition("#")
    if not sep:
        return "", model_id
    return _PREFIXES.get(prefix, prefix), model


def detect_provider_type(api_url: str) -> str:
    """Classify an API URL for header selection: anthropic, openrouter, zai or ""."""
    if "anthropic" in api_url:
        return "anthropic"
    if "openrouter" in api_url:
        return "openrouter"
    if "z.ai" in api_url:
        return "zai"
    return ""
