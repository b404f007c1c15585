"""Conversation, message and branch models."""

from datetime import datetime, timezone
from typing import Literal
from pydantic import BaseModel, Field
import uuid


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


MessageRole = Literal["user", "assistant"]
BranchSide = Literal["left", "right"]


class Message(BaseModel):
    """A single message in a conversation tree."""

    id: str = Field(default_factory=_uuid, description="Unique message ID")
    conversation_id: str = Field(..., description="Parent conversation ID")
    role: MessageRole = Field(..., description="Message role")
    content: str = Field(..., description="Serialized message document")
    parent_message_id: str | None = Field(
        None, description="Parent message ID (None for the root of the main thread)"
    )
    branch_id: str | None = Field(None, description="Branch ID (None for the main thread)")
    model_provider: str | None = Field(None, description="Provider used for the turn")
    model_name: str | None = Field(None, description="Model used for the turn")
    model_reasoning_effort: str | None = Field(None, description="Reasoning tier")
    request_id: str | None = Field(None, description="Idempotency key (user messages only)")
    created_at: datetime = Field(default_factory=_now, description="Creation timestamp")


class Conversation(BaseModel):
    """A conversation ("chat") owned by a user."""

    id: str = Field(default_factory=_uuid, description="Unique conversation ID")
    user_id: str = Field(..., description="Owner user ID")
    title: str | None = Field(None, description="Conversation title")
    root_message_id: str | None = Field(None, description="First top-level user message")
    is_archived: bool = Field(False, description="Hidden from conversation lists")
    created_at: datetime = Field(default_factory=_now, description="Creation timestamp")
    updated_at: datetime = Field(default_factory=_now, description="Last update timestamp")


class Branch(BaseModel):
    """A fork of discussion rooted at an assistant message."""

    id: str = Field(default_factory=_uuid, description="Unique branch ID")
    conversation_id: str = Field(..., description="Parent conversation ID")
    parent_message_id: str = Field(..., description="Assistant message the branch forks from")
    side: BranchSide = Field(..., description="Which side of the parent the branch opens on")
    created_at: datetime = Field(default_factory=_now, description="Creation timestamp")
