"""Conversation path reconstruction and context compaction."""

import logging
import math
from dataclasses import dataclass, field

from models import MemorySummary, Message
from branchchat.config import settings
from branchchat.services.content import message_plain_text
from branchchat.services.summarizer import Summarizer

logger = logging.getLogger(__name__)


def estimate_tokens(text: str) -> int:
    """Rough token count: four characters per token."""
    return math.ceil(len(text) / 4)


def build_parent_chain(messages: list[Message], parent_message_id: str | None) -> list[Message]:
    """Walk parent pointers from ``parent_message_id`` back to the root.

    Returns the chain oldest first. Stops at a missing parent or a cycle.
    """
    if not parent_message_id:
        return []

    message_by_id = {message.id: message for message in messages}
    chain: list[Message] = []
    seen: set[str] = set()
    current_id: str | None = parent_message_id

    while current_id and current_id not in seen:
        current = message_by_id.get(current_id)
        if current is None:
            break
        seen.add(current_id)
        chain.append(current)
        current_id = current.parent_message_id

    chain.reverse()
    return chain


def trim_history_to_token_limit(
    history: list[dict[str, str]],
    user_content: str,
    memory_summary_json: str | None = None,
    max_tokens: int | None = None,
) -> list[dict[str, str]]:
    """Drop the oldest messages until summary + history + new turn fit the budget.

    A trimmed history always starts on a user message.
    """
    if max_tokens is None:
        max_tokens = settings.max_context_tokens
    summary_tokens = estimate_tokens(memory_summary_json) if memory_summary_json else 0
    total_tokens = (
        summary_tokens
        + estimate_tokens(user_content)
        + sum(estimate_tokens(message["content"]) for message in history)
    )
    trimmed = list(history)
    while trimmed and total_tokens > max_tokens:
        removed = trimmed.pop(0)
        total_tokens -= estimate_tokens(removed["content"])
    if len(trimmed) < len(history):
        while trimmed and trimmed[0]["role"] != "user":
            trimmed.pop(0)
    if len(trimmed) < len(history):
        logger.info(f"Trimmed {len(history) - len(trimmed)} messages to fit {max_tokens} tokens")
    return trimmed


@dataclass
class AssembledHistory:
    """History for one turn: literal messages plus an optional summary."""

    messages: list[dict[str, str]] = field(default_factory=list)
    memory_summary: MemorySummary | None = None
    total_messages: int = 0

    @property
    def memory_summary_json(self) -> str | None:
        if self.memory_summary is None or self.memory_summary == MemorySummary():
            return None
        return self.memory_summary.model_dump_json()


class HistoryBuilder:
    """Rebuilds the message path leading to a turn and compacts it."""

    def __init__(self, db, summarizer: Summarizer | None = None, max_messages: int | None = None):
        self.db = db
        self.summarizer = summarizer or Summarizer()
        self.max_messages = max_messages or settings.max_history_messages

    async def load_path(self, conversation_id: str, parent_message_id: str | None) -> list[Message]:
        """Main thread when there is no parent, otherwise the parent's ancestor chain."""
        if not parent_message_id:
            return await self.db.get_main_thread_messages(conversation_id)
        messages = await self.db.get_messages(conversation_id)
        return build_parent_chain(messages, parent_message_id)

    async def build(self, conversation_id: str, parent_message_id: str | None) -> AssembledHistory:
        path = await self.load_path(conversation_id, parent_message_id)
        history = [
            {"role": message.role, "content": message_plain_text(message.content)}
            for message in path
        ]

        memory_summary = None
        if len(history) > self.max_messages:
            older = history[: len(history) - self.max_messages]
            logger.info(
                f"History for {conversation_id} has {len(history)} messages, "
                f"summarizing oldest {len(older)}"
            )
            memory_summary = await self.summarizer.summarize(older, len(history))
            history = history[-self.max_messages :]

        return AssembledHistory(
            messages=history,
            memory_summary=memory_summary,
            total_messages=len(path),
        )
