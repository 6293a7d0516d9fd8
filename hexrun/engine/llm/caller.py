"""LLM protocol adapters.

Two wire shapes sit behind one interface. AnthropicCaller speaks the
Messages API (content blocks in, content blocks out). OpenAICaller
speaks chat completions and translates tool calls and tool results to
and from content blocks, so the orchestration loop never branches on
provider type.
"""
from __future__ import annotations

import abc
import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from ..errors import ProtocolError, TransportError
from ..models import (
    ContentBlock,
    Message,
    Role,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    block_from_dict,
)
from ..tools.base import ToolDef
from .provider import LLMProvider, detect_provider_type

logger = logging.getLogger(__name__)

MAX_TOKENS = 8192
DEFAULT_TIMEOUT_SECONDS = 120.0
OPENROUTER_REFERER = "https://counterspell.dev"


@dataclass
class LLMResponse:
    """One model turn, normalized to content blocks."""
    content: list[ContentBlock] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.content if isinstance(b, ToolUseBlock)]


class LLMCaller(abc.ABC):
    """Sends the full conversation to a model and returns its reply."""

    def __init__(
        self,
        provider: LLMProvider,
        session: aiohttp.ClientSession | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.provider = provider
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    @abc.abstractmethod
    async def call(
        self,
        messages: list[Message],
        tools: list[ToolDef],
        system_prompt: str,
    ) -> LLMResponse:
        """Run one model turn over the full history."""

    @abc.abstractmethod
    def build_headers(self) -> dict[str, str]:
        """HTTP headers for this provider, including auth."""

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def _post(self, body: dict[str, Any]) -> dict[str, Any]:
        url = self.provider.api_url
        session = await self._get_session()
        logger.debug("LLM payload: %s", json.dumps(body, indent=2))
        try:
            async with session.post(
                url,
                json=body,
                headers=self.build_headers(),
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                text = await resp.text()
                if not 200 <= resp.status < 300:
                    raise TransportError(
                        f"api error {resp.status}: {text}",
                        status=resp.status,
                        body=text,
                    )
        except aiohttp.ClientError as exc:
            raise TransportError(f"request to {url} failed: {exc}") from exc
        except asyncio.TimeoutError as exc:
            raise TransportError(
                f"request to {url} timed out after {self.timeout:g}s"
            ) from exc

        try:
            data = json.loads(text)
        except ValueError as exc:
            raise ProtocolError(f"invalid JSON from {url}: {exc}") from exc
        if not isinstance(data, dict):
            raise ProtocolError(f"expected a JSON object from {url}")
        return data


class AnthropicCaller(LLMCaller):
    """Anthropic Messages API and compatible endpoints (OpenRouter)."""

    def build_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        provider = self.provider
        kind = detect_provider_type(provider.api_url)
        if kind == "anthropic":
            headers["x-api-key"] = provider.api_key
            headers["anthropic-version"] = provider.api_version
        elif kind == "openrouter":
            headers["Authorization"] = f"Bearer {provider.api_key}"
            headers["HTTP-Referer"] = OPENROUTER_REFERER
        else:
            headers["x-api-key"] = provider.api_key
            if provider.api_version:
                headers["anthropic-version"] = provider.api_version
        return headers

    def build_body(
        self,
        messages: list[Message],
        tools: list[ToolDef],
        system_prompt: str,
    ) -> dict[str, Any]:
        return {
            "model": self.provider.model,
            "max_tokens": MAX_TOKENS,
            "system": system_prompt,
            "messages": [m.to_dict() for m in messages],
            "tools": [t.to_dict() for t in tools],
        }

    async def call(
        self,
        messages: list[Message],
        tools: list[ToolDef],
        system_prompt: str,
    ) -> LLMResponse:
        logger.info(
            "LLM call: url=%s model=%s messages=%d tools=%d",
            self.provider.api_url, self.provider.model, len(messages), len(tools),
        )
        data = await self._post(self.build_body(messages, tools, system_prompt))
        raw_blocks = data.get("content")
        if not isinstance(raw_blocks, list):
            raise ProtocolError("response has no content array")

        content: list[ContentBlock] = []
        for raw in raw_blocks:
            if not isinstance(raw, dict):
                continue
            try:
                block = block_from_dict(raw)
            except ValueError:
                # thinking, redacted_thinking, server tool blocks
                logger.debug("Skipping %s block in response", raw.get("type"))
                continue
            if isinstance(block, ToolResultBlock):
                continue
            content.append(block)
        return LLMResponse(content=content, raw=data)


class OpenAICaller(LLMCaller):
    """OpenAI chat completions and compatible endpoints (z.ai)."""

    @property
    def supports_tools(self) -> bool:
        return detect_provider_type(self.provider.api_url) != "zai"

    def build_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.provider.api_key}",
        }

    def convert_messages(
        self,
        messages: list[Message],
        system_prompt: str,
    ) -> list[dict[str, Any]]:
        supports_tools = self.supports_tools
        out: list[dict[str, Any]] = [{"role": "system", "content": system_prompt}]

        for msg in messages:
            results = [b for b in msg.content if isinstance(b, ToolResultBlock)]
            if results:
                if supports_tools:
                    for block in results:
                        out.append({
                            "role": "tool",
                            "tool_call_id": block.tool_use_id,
                            "content": block.content,
                        })
                continue

            text = "".join(b.text for b in msg.content if isinstance(b, TextBlock))
            if msg.role == Role.USER:
                out.append({"role": "user", "content": text})
                continue

            entry: dict[str, Any] = {"role": "assistant", "content": text}
            if supports_tools:
                calls = [
                    {
                        "id": block.id,
                        "type": "function",
                        "function": {
                            "name": block.name,
                            "arguments": json.dumps(block.input),
                        },
                    }
                    for block in msg.tool_uses()
                ]
                if calls:
                    entry["tool_calls"] = calls
            elif not text:
                continue
            out.append(entry)
        return out

    def build_body(
        self,
        messages: list[Message],
        tools: list[ToolDef],
        system_prompt: str,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.provider.model,
            "messages": self.convert_messages(messages, system_prompt),
        }
        if self.supports_tools and tools:
            body["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.input_schema,
                    },
                }
                for t in tools
            ]
        return body

    async def call(
        self,
        messages: list[Message],
        tools: list[ToolDef],
        system_prompt: str,
    ) -> LLMResponse:
        logger.info(
            "LLM call: url=%s model=%s messages=%d tools=%d",
            self.provider.api_url, self.provider.model, len(messages),
            len(tools) if self.supports_tools else 0,
        )
        data = await self._post(self.build_body(messages, tools, system_prompt))
        choices = data.get("choices")
        if not isinstance(choices, list) or not choices:
            raise ProtocolError("response has no choices")
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        if not isinstance(message, dict):
            raise ProtocolError("response choice has no message")

        content: list[ContentBlock] = []
        text = message.get("content")
        if isinstance(text, str) and text:
            content.append(TextBlock(text=text))
        for call in message.get("tool_calls") or []:
            function = call.get("function") or {}
            content.append(ToolUseBlock(
                id=str(call.get("id") or ""),
                name=str(function.get("name") or ""),
                input=self._decode_arguments(function.get("arguments")),
            ))
        return LLMResponse(content=content, raw=data)

    @staticmethod
    def _decode_arguments(raw: Any) -> dict[str, Any]:
        if isinstance(raw, dict):
            return raw
        if not raw:
            return {}
        try:
            decoded = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Unparseable tool call arguments, using {}: %.200s", raw)
            return {}
        if not isinstance(decoded, dict):
            logger.warning("Tool call arguments are not an object, using {}")
            return {}
        return decoded


def build_llm_caller(
    provider: LLMProvider,
    session: aiohttp.ClientSession | None = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> LLMCaller:
    """Pick the adapter for the provider's wire shape."""
    if provider.type == "openai":
        return OpenAICaller(provider, session=session, timeout=timeout)
    return AnthropicCaller(provider, session=session, timeout=timeout)
