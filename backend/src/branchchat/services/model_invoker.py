"""Model invocation with retry, provider fallback and token streaming."""

import inspect
import logging
from typing import Awaitable, Callable

from models import ModelSelection
from branchchat.config import settings
from branchchat.errors import ModelUnavailable
from branchchat.services.dev_response import DEV_ASSISTANT_TEXT, dev_response_chunks
from branchchat.services.model_catalog import FALLBACK_ORDER, LONG_CONTEXT_MODEL
from branchchat.services.providers import (
    MAX_OUTPUT_TOKENS,
    ProviderAdapter,
    ProviderError,
    get_adapter,
)

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are a helpful AI assistant."

TokenSink = Callable[[str], Awaitable[None] | None]


def build_system_prompt(memory_summary_json: str | None = None) -> str:
    """System instruction, with the memory summary appended when present."""
    if memory_summary_json:
        return f"{SYSTEM_PROMPT}\n\nMemory summary JSON:\n{memory_summary_json}"
    return SYSTEM_PROMPT


class TokenForwarder:
    """Pushes tokens to an optional sink.

    Sinks may be plain functions or coroutines. A sink that raises is
    dropped for the rest of the turn; generation carries on. ``started`` is
    set once any token has gone out.
    """

    def __init__(self, sink: TokenSink | None = None):
        self._sink = sink
        self.started = False

    async def __call__(self, token: str):
        if self._sink is None:
            return
        self.started = True
        try:
            result = self._sink(token)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"Token sink failed, no longer forwarding tokens: {e}")
            self._sink = None


class ModelInvoker:
    """Calls the selected model, falling back across providers."""

    def __init__(
        self,
        adapters: dict[str, ProviderAdapter] | None = None,
        fallback_order: list[ModelSelection] | None = None,
        long_context_model: ModelSelection | None = None,
        max_output_tokens: int = MAX_OUTPUT_TOKENS,
    ):
        self._adapters: dict[str, ProviderAdapter] = dict(adapters or {})
        self.fallback_order = fallback_order if fallback_order is not None else FALLBACK_ORDER
        self.long_context_model = long_context_model or LONG_CONTEXT_MODEL
        self.max_output_tokens = max_output_tokens

    def adapter_for(self, provider: str) -> ProviderAdapter:
        if provider not in self._adapters:
            self._adapters[provider] = get_adapter(provider)()
        return self._adapters[provider]

    def candidates_for(self, primary: ModelSelection) -> list[ModelSelection]:
        """Primary model followed by the fallback order, without the primary."""
        return [primary] + [
            candidate
            for candidate in self.fallback_order
            if (candidate.provider, candidate.name) != (primary.provider, primary.name)
        ]

    async def invoke(
        self,
        model: ModelSelection,
        messages: list[dict[str, str]],
        memory_summary_json: str | None = None,
        on_token: TokenSink | None = None,
    ) -> str:
        """Generate a reply and return the full text.

        Each text delta is pushed to ``on_token`` as it arrives. Retry and
        fallback only happen while nothing has been streamed.

        Raises:
            ModelUnavailable: every candidate failed, or an attempt failed
                after its tokens reached the sink.
        """
        forward = TokenForwarder(on_token)

        if settings.use_dev_assistant_response:
            for chunk in dev_response_chunks():
                await forward(chunk)
            return DEV_ASSISTANT_TEXT

        system_prompt = build_system_prompt(memory_summary_json)
        tried_long_context = False
        last_error: ProviderError | None = None

        for index, candidate in enumerate(self.candidates_for(model)):
            if index > 0:
                logger.info(f"Falling back to {candidate.label}")
            try:
                return await self._generate_with_retry(candidate, messages, system_prompt, forward)
            except ProviderError as e:
                last_error = e
                logger.warning(f"Model {candidate.label} failed ({e.kind.value}): {e.message}")
                self._stop_if_streamed(forward, candidate, e)
                if not tried_long_context and e.is_context_length:
                    tried_long_context = True
                    logger.info(f"Context too long, trying {self.long_context_model.label}")
                    try:
                        return await self._generate_with_retry(
                            self.long_context_model, messages, system_prompt, forward
                        )
                    except ProviderError as inner:
                        last_error = inner
                        logger.warning(
                            f"Long-context model {self.long_context_model.label} failed: {inner.message}"
                        )
                        self._stop_if_streamed(forward, self.long_context_model, inner)

        message = last_error.message if last_error else "Model invocation failed"
        raise ModelUnavailable(message)

    @staticmethod
    def _stop_if_streamed(forward: TokenForwarder, model: ModelSelection, error: ProviderError):
        if forward.started:
            raise ModelUnavailable(
                f"{model.label} failed after streaming began: {error.message}"
            ) from error

    async def _generate_with_retry(
        self,
        model: ModelSelection,
        messages: list[dict[str, str]],
        system_prompt: str,
        forward: TokenForwarder,
    ) -> str:
        try:
            return await self._generate(model, messages, system_prompt, forward)
        except ProviderError as e:
            if not e.is_transient or forward.started:
                raise
            logger.info(f"Retrying {model.label} after transient error: {e.message}")
            return await self._generate(model, messages, system_prompt, forward)

    async def _generate(
        self,
        model: ModelSelection,
        messages: list[dict[str, str]],
        system_prompt: str,
        forward: TokenForwarder,
    ) -> str:
        adapter = self.adapter_for(model.provider)
        collected: list[str] = []
        async for text in adapter.stream(
            model.name,
            messages,
            system_prompt,
            reasoning_effort=model.reasoning_effort,
            max_output_tokens=self.max_output_tokens,
        ):
            collected.append(text)
            await forward(text)
        if not collected:
            raise ProviderError(f"{model.label} returned an empty response")
        return "".join(collected)
