"""Idempotent persistence of a completed turn."""

import logging

from models import Conversation, Message
from branchchat.db import DuplicateRequestError
from branchchat.errors import IdempotentResponseMissing, Internal, InvalidInput
from branchchat.services.content import serialize_markdown_content
from branchchat.services.turn_context import TurnContext
from branchchat.services.usage_gate import CONSTRAINED_PLANS, usage_day

logger = logging.getLogger(__name__)


class PersistenceLayer:
    """Writes user and assistant messages once per request ID."""

    def __init__(self, db):
        self.db = db

    async def find_replay(
        self, user_id: str, request_id: str
    ) -> tuple[Conversation, Message, Message] | None:
        """Look up a finished turn for a request ID.

        Returns None when the request ID is unused.

        Raises:
            IdempotentResponseMissing: the user message exists without a reply.
        """
        existing = await self.db.get_message_by_request_id(request_id)
        if existing is None:
            return None

        conversation = await self.db.get_conversation(existing.conversation_id, user_id)
        if conversation is None:
            raise InvalidInput("Request ID already in use")

        assistant_message = await self.db.get_assistant_reply(existing.id)
        if assistant_message is None:
            logger.warning(f"Request {request_id} has a user message but no reply")
            raise IdempotentResponseMissing("Idempotent response missing")

        logger.info(f"Replaying stored turn for request {request_id}")
        return conversation, existing, assistant_message

    async def apply_replay(self, ctx: TurnContext) -> bool:
        """Fill the context from a stored turn. Returns True on a replay."""
        replay = await self.find_replay(ctx.request.user_id, ctx.request_id)
        if replay is None:
            return False
        ctx.conversation, ctx.user_message, ctx.assistant_message = replay
        ctx.replayed = True
        return True

    def build_messages(self, ctx: TurnContext) -> tuple[Message, Message]:
        conversation_id = ctx.conversation.id
        model = ctx.model
        user_message = Message(
            conversation_id=conversation_id,
            role="user",
            content=ctx.content,
            parent_message_id=ctx.parent_message_id,
            branch_id=ctx.branch_id,
            model_provider=model.provider if model else None,
            model_name=model.name if model else None,
            model_reasoning_effort=model.reasoning_effort if model else None,
            request_id=ctx.request_id,
        )
        assistant_message = Message(
            conversation_id=conversation_id,
            role="assistant",
            content=serialize_markdown_content(ctx.assistant_text),
            parent_message_id=user_message.id,
            branch_id=ctx.branch_id,
            model_provider=user_message.model_provider,
            model_name=user_message.model_name,
            model_reasoning_effort=user_message.model_reasoning_effort,
        )
        return user_message, assistant_message

    async def persist(self, ctx: TurnContext):
        """Write the turn, or resolve to the stored turn on a duplicate request ID."""
        user_message, assistant_message = self.build_messages(ctx)
        day = usage_day() if ctx.plan_type in CONSTRAINED_PLANS else None

        try:
            root_set = await self.db.persist_turn(
                ctx.request.user_id, user_message, assistant_message, usage_day=day
            )
        except DuplicateRequestError:
            logger.info(f"Request {ctx.request_id} was persisted concurrently")
            if not await self.apply_replay(ctx):
                raise Internal("Duplicate request could not be resolved")
            return
        except Exception as e:
            logger.exception(f"Failed to persist turn {ctx.request_id}")
            raise Internal("Failed to save messages") from e

        if root_set:
            ctx.conversation = ctx.conversation.model_copy(
                update={"root_message_id": user_message.id}
            )
        ctx.user_message = user_message
        ctx.assistant_message = assistant_message
