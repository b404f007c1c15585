"""Shared Pydantic models for branchchat."""

from models.conversation import Branch, BranchSide, Conversation, Message, MessageRole
from models.memory import MemorySummary
from models.usage import (
    ModelProvider,
    ModelSelection,
    PlanType,
    ReasoningEffort,
    UsageStat,
)

__all__ = [
    # Conversation tree
    "Conversation",
    "Message",
    "MessageRole",
    "Branch",
    "BranchSide",
    # Compaction
    "MemorySummary",
    # Usage and model selection
    "UsageStat",
    "ModelSelection",
    "ModelProvider",
    "ReasoningEffort",
    "PlanType",
]
