"""Moderation API client and the two-layer safety check."""

import logging

import httpx
import openai

from branchchat.config import settings
from branchchat.errors import ModerationUnavailable, UnsafeContent
from branchchat.services.providers import openai_client
from branchchat.services.safety_filter import (
    CRITICAL_THRESHOLD,
    DEFAULT_THRESHOLD,
    SafetyVerdict,
    evaluate_fast_gate,
    evaluate_moderation_result,
)

logger = logging.getLogger(__name__)


class ModerationClient:
    """Client for the OpenAI moderation endpoint, through the ``openai`` SDK."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
    ):
        self.api_key = api_key if api_key is not None else settings.openai_api_key
        self.base_url = (base_url or settings.openai_base_url).rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def moderate(self, text: str) -> dict:
        """Return the first moderation result: ``flagged`` and ``category_scores``."""
        client = openai_client(self.api_key, self.base_url, self.timeout, self._transport)
        try:
            async with client:
                response = await client.moderations.create(
                    model=settings.moderation_model, input=text
                )
        except openai.APIStatusError as e:
            status = e.status_code
            if status == 401:
                message = "OpenAI API key is invalid or missing."
            elif status == 403:
                message = "OpenAI moderation request forbidden. Check API key permissions or project access."
            elif status == 429:
                message = "OpenAI moderation rate limited. Please retry shortly."
            else:
                message = f"OpenAI moderation request failed: HTTP {status}"
            logger.error(f"Moderation HTTP error: {status}")
            raise ModerationUnavailable(
                message, status if status in (401, 403, 429) else 502
            ) from e
        except openai.APIError as e:
            logger.error(f"Moderation request error: {e}")
            raise ModerationUnavailable(f"OpenAI moderation request failed: {e}") from e

        if not response.results:
            return {}
        return response.results[0].to_dict()

    async def check(
        self,
        text: str,
        critical_threshold: float = CRITICAL_THRESHOLD,
        default_threshold: float = DEFAULT_THRESHOLD,
    ) -> SafetyVerdict:
        """Moderate text and apply the blocking policy."""
        if settings.disable_moderation:
            return SafetyVerdict(blocked=False, reason="disabled")
        result = await self.moderate(text)
        return evaluate_moderation_result(result, critical_threshold, default_threshold)


class SafetyFilter:
    """Fast gate followed by the moderation API.

    Used on the user's input before the model is called and on the
    generated text before it is persisted.
    """

    def __init__(self, moderation: ModerationClient | None = None):
        self.moderation = moderation or ModerationClient()

    async def _check(self, text: str, message: str):
        verdict = evaluate_fast_gate(text)
        if not verdict.blocked:
            verdict = await self.moderation.check(text)
        if verdict.blocked:
            logger.warning(
                f"{message}: reason={verdict.reason} category={verdict.category} rule={verdict.rule}"
            )
            raise UnsafeContent(message, reason=verdict.reason, category=verdict.category)

    async def check_input(self, text: str):
        """Raise UnsafeContent if the user's input is blocked."""
        await self._check(text, "Unsafe input detected")

    async def check_output(self, text: str):
        """Raise UnsafeContent if generated text is blocked."""
        await self._check(text, "Unsafe output detected")
