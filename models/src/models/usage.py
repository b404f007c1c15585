"""Usage accounting and model selection models."""

from datetime import date
from typing import Literal
from pydantic import BaseModel, Field

ModelProvider = Literal["openai", "anthropic", "gemini"]
ReasoningEffort = Literal["low", "medium", "high"]
PlanType = Literal["free", "pro"]


class UsageStat(BaseModel):
    """Messages sent by a user on one calendar day."""

    user_id: str = Field(..., description="User ID")
    day: date = Field(..., description="Day in the usage reference timezone")
    message_count: int = Field(0, description="Completed turns that day")


class ModelSelection(BaseModel):
    """Resolved provider/model pair for a turn."""

    provider: ModelProvider
    name: str
    reasoning_effort: ReasoningEffort | None = None

    @property
    def label(self) -> str:
        return f"{self.provider}/{self.name}"
