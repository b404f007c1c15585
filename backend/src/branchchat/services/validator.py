"""Turn input validation and target resolution.

Resolves the conversation, branch and model a turn writes to. New
conversation and branch rows are written here, before the model is called.
"""

import logging
import uuid

from models import Branch, ModelSelection
from branchchat.config import settings
from branchchat.errors import InvalidInput, NotFound
from branchchat.services.model_catalog import is_model_provider, is_reasoning_effort
from branchchat.services.turn_context import TurnContext

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 50
BRANCH_SIDES = ("left", "right")


class Validator:
    """First pipeline stage."""

    def __init__(self, db):
        self.db = db

    def normalize(self, ctx: TurnContext):
        """Trim content and settle the request ID. No I/O."""
        content = (ctx.request.content or "").strip()
        if not content:
            raise InvalidInput("Content is required")
        ctx.content = content
        ctx.request_id = ctx.request.request_id or str(uuid.uuid4())

    async def resolve(self, ctx: TurnContext):
        """Resolve plan, conversation, branch and model for the turn."""
        request = ctx.request
        ctx.plan_type = await self.db.get_user_plan(request.user_id)

        if request.conversation_id:
            conversation = await self.db.get_conversation(request.conversation_id, request.user_id)
            if conversation is None:
                raise NotFound("Chat not found")
        else:
            conversation = await self.db.create_conversation(
                request.user_id, title=ctx.content[:TITLE_MAX_LENGTH]
            )
            ctx.created_conversation = True
            logger.info(f"Created conversation {conversation.id} for user {request.user_id}")
        ctx.conversation = conversation

        ctx.parent_message_id = request.parent_message_id or None
        branch = await self.resolve_branch(
            conversation.id,
            ctx.parent_message_id,
            request.branch_id or None,
            request.branch_side or None,
        )
        ctx.branch_id = branch.id if branch else None

        ctx.model = await self.resolve_model(
            conversation.id,
            request.model_provider,
            request.model_name,
            request.model_reasoning_effort,
            lookup_history=not ctx.created_conversation,
        )

    async def resolve_branch(
        self,
        conversation_id: str,
        parent_message_id: str | None,
        branch_id: str | None,
        side: str | None,
    ) -> Branch | None:
        """Find the branch a turn belongs to, opening a new one for (parent, side)."""
        if side is not None and side not in BRANCH_SIDES:
            raise InvalidInput(f"Invalid branch side: {side}")

        parent = None
        if parent_message_id:
            parent = await self.db.get_message(parent_message_id)
            if parent is None or parent.conversation_id != conversation_id:
                raise NotFound("Parent message not found")

        if branch_id:
            branch = await self.db.get_branch(branch_id)
            if branch is None or branch.conversation_id != conversation_id:
                raise NotFound("Branch not found")
            if parent_message_id and branch.parent_message_id != parent_message_id:
                raise InvalidInput("Branch parent mismatch")
            return branch

        if parent is None or side is None:
            return None

        if parent.role != "assistant":
            raise InvalidInput("Branches can only fork from an assistant message")

        existing = await self.db.find_branch(parent.id, side)
        if existing is not None:
            if await self.db.branch_has_messages(existing.id):
                raise InvalidInput(f"A {side} branch already exists for this message")
            return existing

        branch = await self.db.create_branch(conversation_id, parent.id, side)
        logger.info(f"Opened {side} branch {branch.id} on message {parent.id}")
        return branch

    async def resolve_model(
        self,
        conversation_id: str,
        provider: str | None,
        name: str | None,
        reasoning_effort: str | None,
        lookup_history: bool = True,
    ) -> ModelSelection:
        """Explicit selection, else the conversation's latest, else the default."""
        effort = reasoning_effort if is_reasoning_effort(reasoning_effort) else None
        if is_model_provider(provider) and name:
            return ModelSelection(provider=provider, name=name, reasoning_effort=effort)

        if lookup_history:
            latest = await self.db.get_latest_model_selection(conversation_id)
            if latest is not None:
                return latest

        return ModelSelection(
            provider=settings.default_model_provider,
            name=settings.default_model_name,
        )
