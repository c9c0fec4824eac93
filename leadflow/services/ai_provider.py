"""Model clients used for email classification.

OpenAI and Google Gemini share one chat interface; every transport, HTTP or
payload failure surfaces as ModelCallError so callers can fall back to the
next model.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

from leadflow.core.config import settings

logger = logging.getLogger(__name__)


class ModelCallError(Exception):
    """A single model call failed (HTTP error, timeout or empty completion)."""

    def __init__(self, message: str, *, model: str | None = None):
        super().__init__(message)
        self.model = model


@dataclass
class ChatMessage:
    role: str  # 'system', 'user', 'assistant'
    content: str


@dataclass
class ChatResponse:
    content: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    model: str


class AIProvider(ABC):
    """Chat-completion client for one vendor."""

    @abstractmethod
    async def chat(
        self,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.3,
        max_tokens: int = 1000,
        json_mode: bool = False,
    ) -> ChatResponse:
        """Send a chat completion request; raise ModelCallError on failure."""

    async def complete(
        self,
        prompt: str,
        model: str,
        *,
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Single-prompt JSON-mode completion returning raw text."""
        messages = []
        if system:
            messages.append(ChatMessage(role="system", content=system))
        messages.append(ChatMessage(role="user", content=prompt))
        response = await self.chat(
            messages,
            model=model,
            temperature=settings.AI_TEMPERATURE if temperature is None else temperature,
            max_tokens=max_tokens or settings.AI_MAX_TOKENS,
            json_mode=True,
        )
        if not response.content:
            raise ModelCallError(f"{model} returned an empty completion", model=model)
        return response.content


class HTTPChatProvider(AIProvider):
    """Shared request/response handling; vendors supply payload and parsing."""

    base_url: str = ""

    def __init__(self, api_key: str, default_model: str, *, transport: httpx.AsyncBaseTransport | None = None):
        self.api_key = api_key
        self.default_model = default_model
        self._transport = transport

    @abstractmethod
    def build_request(
        self,
        messages: list[ChatMessage],
        model: str,
        temperature: float,
        max_tokens: int,
        json_mode: bool,
    ) -> tuple[str, dict[str, Any], dict[str, str], dict[str, Any]]:
        """Return (url, query params, headers, JSON body)."""

    @abstractmethod
    def parse_response(self, data: dict[str, Any], model: str) -> ChatResponse:
        """Turn the vendor payload into a ChatResponse."""

    async def chat(
        self,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.3,
        max_tokens: int = 1000,
        json_mode: bool = False,
    ) -> ChatResponse:
        model = model or self.default_model
        url, params, headers, body = self.build_request(messages, model, temperature, max_tokens, json_mode)
        try:
            async with httpx.AsyncClient(
                timeout=settings.AI_REQUEST_TIMEOUT_SECONDS, transport=self._transport
            ) as client:
                response = await client.post(url, params=params, headers=headers, json=body)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as exc:
            raise ModelCallError(f"{model} returned HTTP {exc.response.status_code}", model=model) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise ModelCallError(f"{model} call failed: {exc}", model=model) from exc

        try:
            return self.parse_response(data, model)
        except (KeyError, IndexError, TypeError) as exc:
            raise ModelCallError(f"{model} returned an unexpected payload", model=model) from exc


class OpenAIProvider(HTTPChatProvider):
    base_url = "https://api.openai.com/v1"

    def __init__(self, api_key: str, default_model: str = "gpt-4o-mini", **kwargs):
        super().__init__(api_key, default_model, **kwargs)

    def build_request(self, messages, model, temperature, max_tokens, json_mode):
        body: dict[str, Any] = {
            "model": model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            body["response_format"] = {"type": "json_object"}
        headers = {"Authorization": f"Bearer {self.api_key}"}
        return f"{self.base_url}/chat/completions", {}, headers, body

    def parse_response(self, data, model):
        usage = data.get("usage") or {}
        return ChatResponse(
            content=data["choices"][0]["message"]["content"] or "",
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
            total_tokens=usage.get("total_tokens", 0),
            model=model,
        )


class GeminiProvider(HTTPChatProvider):
    base_url = "https://generativelanguage.googleapis.com/v1beta"

    def __init__(self, api_key: str, default_model: str = "gemini-2.0-flash", **kwargs):
        super().__init__(api_key, default_model, **kwargs)

    def build_request(self, messages, model, temperature, max_tokens, json_mode):
        # System text goes in systemInstruction; assistant turns use the 'model' role.
        system_parts = [{"text": m.content} for m in messages if m.role == "system"]
        contents = [
            {"role": "model" if m.role == "assistant" else "user", "parts": [{"text": m.content}]}
            for m in messages
            if m.role != "system"
        ]
        config: dict[str, Any] = {"temperature": temperature, "maxOutputTokens": max_tokens}
        if json_mode:
            config["responseMimeType"] = "application/json"
        body: dict[str, Any] = {"contents": contents, "generationConfig": config}
        if system_parts:
            body["systemInstruction"] = {"parts": system_parts}
        return f"{self.base_url}/models/{model}:generateContent", {"key": self.api_key}, {}, body

    def parse_response(self, data, model):
        parts = data["candidates"][0]["content"]["parts"]
        usage = data.get("usageMetadata") or {}
        prompt_tokens = usage.get("promptTokenCount", 0)
        completion_tokens = usage.get("candidatesTokenCount", 0)
        return ChatResponse(
            content="".join(part.get("text", "") for part in parts),
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
            model=model,
        )


PROVIDERS: dict[str, type[HTTPChatProvider]] = {
    "openai": OpenAIProvider,
    "gemini": GeminiProvider,
}


def get_provider(provider_name: str, api_key: str, model: str | None = None) -> AIProvider:
    """Build the client for a configured vendor name."""
    try:
        provider_cls = PROVIDERS[provider_name]
    except KeyError:
        raise ValueError(f"Unknown provider: {provider_name}")
    if model:
        return provider_cls(api_key, default_model=model)
    return provider_cls(api_key)


def get_configured_provider() -> AIProvider | None:
    """Provider from settings, or None when no API key is configured."""
    if not settings.AI_API_KEY:
        return None
    return get_provider(settings.AI_PROVIDER, settings.AI_API_KEY, settings.AI_PRIMARY_MODEL)
