"""Streaming adapters for model providers.

OpenAI goes through the ``openai`` SDK. Anthropic and Gemini requests are
formatted here and their server-sent events decoded into plain text deltas.
Failures are raised as ProviderError with a kind the invoker uses to decide
between retry, fallback and the long-context model.
"""

import json
import logging
from enum import Enum
from typing import Any, AsyncIterator

import httpx
import openai
from openai import AsyncOpenAI

from branchchat.config import settings

logger = logging.getLogger(__name__)

MAX_OUTPUT_TOKENS = 1000

CONTEXT_LENGTH_MARKERS = ("context length", "maximum context", "token limit", "context window")
TRANSIENT_MARKERS = ("rate limit", "timeout", "timed out", "overloaded")
TRANSIENT_CODES = {"rate_limit", "rate_limit_exceeded", "rate_limit_error", "overloaded_error", "RESOURCE_EXHAUSTED", "ETIMEDOUT"}
TRANSIENT_STATUSES = {408, 429, 503, 529}


class ProviderErrorKind(str, Enum):
    """How a provider failure should be handled."""

    TRANSIENT = "transient"
    CONTEXT_LENGTH = "context_length"
    OTHER = "other"


class ProviderError(Exception):
    """A failed provider call."""

    def __init__(
        self,
        message: str,
        kind: ProviderErrorKind = ProviderErrorKind.OTHER,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.status_code = status_code

    @property
    def is_transient(self) -> bool:
        return self.kind == ProviderErrorKind.TRANSIENT

    @property
    def is_context_length(self) -> bool:
        return self.kind == ProviderErrorKind.CONTEXT_LENGTH


def classify_error(
    status_code: int | None, message: str, code: str | None = None
) -> ProviderErrorKind:
    """Classify a provider failure from its status, message and error code."""
    lower = (message or "").lower()
    if code == "context_length_exceeded" or any(m in lower for m in CONTEXT_LENGTH_MARKERS):
        return ProviderErrorKind.CONTEXT_LENGTH
    if status_code in TRANSIENT_STATUSES or code in TRANSIENT_CODES:
        return ProviderErrorKind.TRANSIENT
    if any(m in lower for m in TRANSIENT_MARKERS):
        return ProviderErrorKind.TRANSIENT
    return ProviderErrorKind.OTHER


def _error_details(payload: Any) -> tuple[str | None, str | None]:
    """Pull (message, code) out of a vendor error body."""
    if not isinstance(payload, dict):
        return None, None
    error = payload.get("error")
    if not isinstance(error, dict):
        return None, None
    message = error.get("message") if isinstance(error.get("message"), str) else None
    code = error.get("code") or error.get("type") or error.get("status")
    return message, str(code) if code is not None else None


class ProviderAdapter:
    """Base adapter: HTTP streaming and SSE line decoding."""

    provider = ""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout if timeout is not None else settings.provider_timeout
        self._transport = transport

    def build_request(
        self,
        model: str,
        messages: list[dict[str, str]],
        system_prompt: str,
        reasoning_effort: str | None,
        max_output_tokens: int,
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        """Return (url, headers, json body)."""
        raise NotImplementedError

    def extract_delta(self, event: dict[str, Any]) -> str:
        """Return the text carried by one decoded stream event."""
        raise NotImplementedError

    def _require_key(self, env_name: str) -> str:
        if not self.api_key:
            raise ProviderError(f"{env_name} is not set")
        return self.api_key

    def _raise_for_error_event(self, event: dict[str, Any]):
        message, code = _error_details(event)
        if message is not None or code is not None:
            message = message or f"{self.provider} stream error"
            raise ProviderError(message, classify_error(None, message, code))

    async def stream(
        self,
        model: str,
        messages: list[dict[str, str]],
        system_prompt: str,
        reasoning_effort: str | None = None,
        max_output_tokens: int = MAX_OUTPUT_TOKENS,
    ) -> AsyncIterator[str]:
        """Yield text deltas in arrival order."""
        url, headers, body = self.build_request(
            model, messages, system_prompt, reasoning_effort, max_output_tokens
        )
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                async with client.stream("POST", url, headers=headers, json=body) as response:
                    if response.status_code >= 400:
                        await response.aread()
                        raise self._error_from_response(response)
                    async for line in response.aiter_lines():
                        if not line.startswith("data:"):
                            continue
                        data = line[5:].strip()
                        if data == "[DONE]":
                            break
                        try:
                            event = json.loads(data)
                        except json.JSONDecodeError:
                            continue
                        text = self.extract_delta(event)
                        if text:
                            yield text
            except httpx.TimeoutException as e:
                raise ProviderError(
                    f"{self.provider} request timed out", ProviderErrorKind.TRANSIENT
                ) from e
            except httpx.RequestError as e:
                raise ProviderError(f"{self.provider} request failed: {e}") from e

    def _error_from_response(self, response: httpx.Response) -> ProviderError:
        try:
            payload = response.json()
        except ValueError:
            payload = None
        message, code = _error_details(payload)
        message = message or f"{self.provider} API error (HTTP {response.status_code})"
        logger.warning(f"{self.provider} HTTP {response.status_code}: {message}")
        return ProviderError(
            message,
            classify_error(response.status_code, message, code),
            status_code=response.status_code,
        )


def openai_client(
    api_key: str,
    base_url: str,
    timeout: float,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncOpenAI:
    """AsyncOpenAI without SDK retries; callers decide whether to retry."""
    http_client = httpx.AsyncClient(transport=transport) if transport is not None else None
    return AsyncOpenAI(
        api_key=api_key,
        base_url=base_url,
        timeout=timeout,
        max_retries=0,
        http_client=http_client,
    )


def _sdk_error_details(error: openai.APIError) -> tuple[str, str | None]:
    """(message, code) from an SDK error, preferring the vendor's own message."""
    body = error.body if isinstance(error.body, dict) else {}
    message = body.get("message") if isinstance(body.get("message"), str) else error.message
    code = error.code or error.type
    return message, str(code) if code is not None else None


class OpenAIAdapter(ProviderAdapter):
    """OpenAI chat completions, streamed through the ``openai`` SDK."""

    provider = "openai"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.api_key = self.api_key if self.api_key is not None else settings.openai_api_key
        self.base_url = (self.base_url or settings.openai_base_url).rstrip("/")

    async def stream(
        self,
        model: str,
        messages: list[dict[str, str]],
        system_prompt: str,
        reasoning_effort: str | None = None,
        max_output_tokens: int = MAX_OUTPUT_TOKENS,
    ) -> AsyncIterator[str]:
        api_key = self._require_key("OPENAI_API_KEY")
        params: dict[str, Any] = {
            "model": model,
            "messages": [{"role": "system", "content": system_prompt}, *messages],
            "max_completion_tokens": max_output_tokens,
            "stream": True,
        }
        if reasoning_effort:
            params["reasoning_effort"] = reasoning_effort

        client = openai_client(api_key, self.base_url, self.timeout, self._transport)
        try:
            async with client:
                stream = await client.chat.completions.create(**params)
                async for chunk in stream:
                    if not chunk.choices:
                        continue
                    text = chunk.choices[0].delta.content
                    if text:
                        yield text
        except openai.APITimeoutError as e:
            raise ProviderError(
                f"{self.provider} request timed out", ProviderErrorKind.TRANSIENT
            ) from e
        except openai.APIConnectionError as e:
            raise ProviderError(f"{self.provider} request failed: {e}") from e
        except openai.APIStatusError as e:
            message, code = _sdk_error_details(e)
            logger.warning(f"{self.provider} HTTP {e.status_code}: {message}")
            raise ProviderError(
                message, classify_error(e.status_code, message, code), status_code=e.status_code
            ) from e
        except openai.APIError as e:
            message, code = _sdk_error_details(e)
            raise ProviderError(message, classify_error(None, message, code)) from e


class AnthropicAdapter(ProviderAdapter):
    """Anthropic messages API with ``stream: true``."""

    provider = "anthropic"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.api_key = self.api_key if self.api_key is not None else settings.anthropic_api_key
        self.base_url = (self.base_url or settings.anthropic_base_url).rstrip("/")

    def build_request(self, model, messages, system_prompt, reasoning_effort, max_output_tokens):
        api_key = self._require_key("ANTHROPIC_API_KEY")
        return (
            f"{self.base_url}/messages",
            {
                "content-type": "application/json",
                "x-api-key": api_key,
                "anthropic-version": "2023-06-01",
            },
            {
                "model": model,
                "max_tokens": max_output_tokens,
                "system": system_prompt,
                "messages": messages,
                "stream": True,
            },
        )

    def extract_delta(self, event):
        if event.get("type") == "error":
            self._raise_for_error_event(event)
        if event.get("type") != "content_block_delta":
            return ""
        delta = event.get("delta") or {}
        if delta.get("type") != "text_delta":
            return ""
        return delta.get("text") or ""


class GeminiAdapter(ProviderAdapter):
    """Gemini ``streamGenerateContent`` with SSE output."""

    provider = "gemini"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.api_key = self.api_key if self.api_key is not None else settings.gemini_api_key
        self.base_url = (self.base_url or settings.gemini_base_url).rstrip("/")

    def build_request(self, model, messages, system_prompt, reasoning_effort, max_output_tokens):
        api_key = self._require_key("GEMINI_API_KEY")
        return (
            f"{self.base_url}/models/{model}:streamGenerateContent?alt=sse",
            {"content-type": "application/json", "x-goog-api-key": api_key},
            {
                "systemInstruction": {"parts": [{"text": system_prompt}]},
                "contents": [
                    {
                        "role": "model" if message["role"] == "assistant" else "user",
                        "parts": [{"text": message["content"]}],
                    }
                    for message in messages
                ],
                "generationConfig": {"maxOutputTokens": max_output_tokens},
            },
        )

    def extract_delta(self, event):
        self._raise_for_error_event(event)
        candidates = event.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(part.get("text") or "" for part in parts)


ADAPTERS: dict[str, type[ProviderAdapter]] = {
    "openai": OpenAIAdapter,
    "anthropic": AnthropicAdapter,
    "gemini": GeminiAdapter,
}


def get_adapter(provider: str) -> type[ProviderAdapter]:
    """Look up the adapter class for a provider ID."""
    try:
        return ADAPTERS[provider]
    except KeyError:
        raise ValueError(f"Unknown model provider: {provider}") from None
