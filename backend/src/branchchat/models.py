"""API request/response models and pipeline input/output."""

from pydantic import BaseModel, Field

from models import Branch, Conversation, Message


class TurnRequest(BaseModel):
    """One incoming user message, as handed to the pipeline."""

    user_id: str = Field(..., description="Authenticated user ID")
    content: str = Field("", description="User message")
    conversation_id: str | None = Field(None, description="Existing conversation ID")
    parent_message_id: str | None = Field(None, description="Message this turn continues from")
    branch_id: str | None = Field(None, description="Existing branch ID")
    branch_side: str | None = Field(None, description="Side for a new branch: left or right")
    model_provider: str | None = Field(None, description="openai, anthropic or gemini")
    model_name: str | None = Field(None, description="Provider model name")
    model_reasoning_effort: str | None = Field(None, description="low, medium or high")
    request_id: str | None = Field(None, description="Client idempotency key")


class TurnResult(BaseModel):
    """Persisted outcome of a turn."""

    conversation: Conversation
    user_message: Message
    assistant_message: Message


class ChatRequest(BaseModel):
    """Request model for sending a message."""

    content: str = Field("", description="User message")
    conversation_id: str | None = Field(None, description="Existing conversation ID")
    parent_message_id: str | None = Field(None, description="Message this turn continues from")
    branch_id: str | None = Field(None, description="Existing branch ID")
    branch_side: str | None = Field(None, description="Side for a new branch: left or right")
    model_provider: str | None = Field(None, description="openai, anthropic or gemini")
    model_name: str | None = Field(None, description="Provider model name")
    model_reasoning_effort: str | None = Field(None, description="low, medium or high")
    request_id: str | None = Field(None, description="Client idempotency key")
    stream: bool = Field(False, description="Stream tokens as server-sent events")

    def to_turn_request(self, user_id: str) -> TurnRequest:
        return TurnRequest(user_id=user_id, **self.model_dump(exclude={"stream"}))


class ConversationResponse(BaseModel):
    """Response model for conversation with messages."""

    conversation: Conversation
    messages: list[Message] = Field(default_factory=list)
    branches: list[Branch] = Field(default_factory=list)


class ConversationListResponse(BaseModel):
    """Response model for list of conversations."""

    conversations: list[Conversation]
    total: int


class ModelOption(BaseModel):
    """A selectable model."""

    provider: str
    model: str
    label: str
