"""Memory summary produced when conversation history is compacted."""

from typing import Literal
from pydantic import BaseModel, Field


class MemorySummary(BaseModel):
    """Structured digest of older turns. Never persisted."""

    summary: str = Field("", description="2-4 sentence free-text summary")
    key_facts: list[str] = Field(default_factory=list)
    user_goal: str = Field("")
    action_items: list[str] = Field(default_factory=list)
    sentiment: Literal["positive", "neutral", "negative", "mixed"] = Field("neutral")
    entities: list[str] = Field(default_factory=list)
    last_updated: str = Field("", description="ISO-8601 timestamp")
    turn_count: int = Field(0, description="History length when the summary was made")
