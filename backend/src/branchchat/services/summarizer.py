"""Conversation memory summaries.

Summarizes the oldest turns of a long history into a structured
MemorySummary that is handed to the model as system context. Summaries are
built per turn and never stored. Failures return an empty summary so the
turn can still go ahead.
"""

import json
import logging
import re
from datetime import datetime, timezone

from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    ResultMessage,
    TextBlock,
    query,
)
from pydantic import ValidationError

from models import MemorySummary
from branchchat.config import settings

logger = logging.getLogger(__name__)

SUMMARY_SYSTEM_PROMPT = "Return only JSON that matches the provided schema."

SENTIMENTS = ("positive", "neutral", "negative", "mixed")

_FENCED_JSON = re.compile(r"```json\s*(.*?)\s*```", re.IGNORECASE | re.DOTALL)


def extract_json_block(text: str) -> str:
    """Find the JSON object in a model reply (fenced block or outermost braces)."""
    if not text:
        return ""
    fenced = _FENCED_JSON.search(text)
    if fenced:
        return fenced.group(1)
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return ""
    return text[start : end + 1]


def parse_memory_summary(text: str) -> MemorySummary:
    """Parse a model reply into a MemorySummary.

    Fields that fail validation fall back to their defaults; the rest of the
    summary is kept. Unparseable replies give the empty summary.
    """
    block = extract_json_block(text)
    if not block:
        return MemorySummary()
    try:
        parsed = json.loads(block)
    except json.JSONDecodeError:
        return MemorySummary()
    if not isinstance(parsed, dict):
        return MemorySummary()

    fields = {key: value for key, value in parsed.items() if key in MemorySummary.model_fields}
    sentiment = fields.get("sentiment")
    if isinstance(sentiment, str):
        sentiment = sentiment.strip().lower()
        fields["sentiment"] = sentiment if sentiment in SENTIMENTS else "neutral"

    try:
        return MemorySummary.model_validate(fields)
    except ValidationError as e:
        invalid = {error["loc"][0] for error in e.errors() if error["loc"]}
        logger.warning(f"Memory summary fields reset to defaults: {sorted(invalid)}")
    return MemorySummary.model_validate(
        {key: value for key, value in fields.items() if key not in invalid}
    )


def build_memory_summary_prompt(conversation_text: str, turn_count: int) -> str:
    schema = {
        "summary": "2-4 sentences",
        "key_facts": ["fact"],
        "user_goal": "goal",
        "action_items": ["item"],
        "sentiment": "positive | neutral | negative | mixed",
        "entities": ["entity"],
        "last_updated": "ISO-8601 timestamp",
        "turn_count": turn_count,
    }
    return "\n".join(
        [
            "Summarize the conversation memory as JSON with this schema:",
            json.dumps(schema),
            "Conversation:",
            conversation_text,
        ]
    )


class Summarizer:
    """Builds MemorySummary digests with a lightweight model."""

    def __init__(self, model: str | None = None):
        self.model = model or settings.summary_model

    async def _complete(self, prompt: str) -> str:
        options = ClaudeAgentOptions(
            model=self.model,
            system_prompt=SUMMARY_SYSTEM_PROMPT,
            max_turns=1,
            permission_mode="bypassPermissions",
        )

        collected_text: list[str] = []
        async for msg in query(prompt=prompt, options=options):
            if isinstance(msg, AssistantMessage):
                for block in msg.content:
                    if isinstance(block, TextBlock):
                        collected_text.append(block.text)
            elif isinstance(msg, ResultMessage):
                if msg.is_error:
                    logger.error(f"Summarization error: {msg.result}")
                    return ""
        return "\n".join(collected_text)

    async def summarize(self, messages: list[dict[str, str]], turn_count: int) -> MemorySummary:
        """Summarize messages; ``turn_count`` is the full history length."""
        if not messages:
            return MemorySummary()

        conversation_text = "\n".join(
            f"{message['role'].upper()}: {message['content']}" for message in messages
        )
        prompt = build_memory_summary_prompt(conversation_text, turn_count)

        try:
            raw = await self._complete(prompt)
        except Exception as e:
            logger.error(f"Failed to summarize messages: {e}")
            return MemorySummary()

        summary = parse_memory_summary(raw)
        if summary == MemorySummary():
            logger.warning("Summarizer returned no usable summary")
            return summary

        if not summary.last_updated:
            summary.last_updated = datetime.now(timezone.utc).isoformat()
        if not summary.turn_count:
            summary.turn_count = turn_count
        logger.info(f"Summarized {len(messages)} older messages (turn_count={summary.turn_count})")
        return summary
