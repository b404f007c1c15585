"""Background title generation for new conversations."""

import asyncio
import logging

from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    ResultMessage,
    TextBlock,
    query,
)

from branchchat.config import settings

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 50
TITLE_SYSTEM_PROMPT = (
    "Generate a concise chat title in the user's language. Return only the title."
)


def fallback_title(content: str) -> str:
    return content[:TITLE_MAX_LENGTH]


class TitleGenerator:
    """Derives short titles off the critical path of a turn."""

    def __init__(self, db, model: str | None = None):
        self.db = db
        self.model = model or settings.title_model
        self._tasks: set[asyncio.Task] = set()

    async def generate(self, content: str) -> str:
        """Ask a lightweight model for a title; truncated content on any failure."""
        if settings.use_dev_assistant_response:
            return fallback_title(content)
        try:
            options = ClaudeAgentOptions(
                model=self.model,
                system_prompt=TITLE_SYSTEM_PROMPT,
                max_turns=1,
                permission_mode="bypassPermissions",
            )
            collected_text: list[str] = []
            async for msg in query(prompt=content, options=options):
                if isinstance(msg, AssistantMessage):
                    for block in msg.content:
                        if isinstance(block, TextBlock):
                            collected_text.append(block.text)
                elif isinstance(msg, ResultMessage):
                    if msg.is_error:
                        logger.error(f"Title generation error: {msg.result}")
                        return fallback_title(content)
        except Exception as e:
            logger.error(f"Failed to generate title: {e}")
            return fallback_title(content)

        title = "".join(collected_text).strip().strip('"')
        return title[:TITLE_MAX_LENGTH] if title else fallback_title(content)

    async def update_title(self, conversation_id: str, content: str):
        """Generate and store a title. Never raises."""
        try:
            title = await self.generate(content)
            await self.db.update_conversation_title(conversation_id, title)
            logger.info(f"Titled conversation {conversation_id}: {title!r}")
        except Exception as e:
            logger.error(f"Title update failed for conversation {conversation_id}: {e}")

    def schedule(self, conversation_id: str, content: str) -> asyncio.Task:
        """Fire-and-forget title update.

        Does not block the calling code.
        """
        task = asyncio.create_task(self.update_title(conversation_id, content))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug(f"Scheduled title generation for conversation {conversation_id}")
        return task

    async def drain(self):
        """Wait for pending title tasks (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
