"""LLM providers and the HTTP adapters that call them."""
from .caller import (
    AnthropicCaller,
    LLMCaller,
    LLMResponse,
    OpenAICaller,
    build_llm_caller,
)
from .provider import LLMProvider, parse_model_id

__all__ = [
    "AnthropicCaller",
    "LLMCaller",
    "LLMProvider",
    "LLMResponse",
    "OpenAICaller",
    "build_llm_caller",
    "parse_model_id",
]
