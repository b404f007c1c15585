"""Known providers, models and the fallback order."""

from models import ModelSelection

MODEL_PROVIDERS = ("openai", "anthropic", "gemini")
REASONING_EFFORTS = ("low", "medium", "high")

# Selectable models: (provider, model, label)
MODEL_OPTIONS = [
    ("openai", "gpt-5.2", "GPT-5.2"),
    ("anthropic", "claude-opus-4-5", "Claude Opus 4.5"),
    ("anthropic", "claude-sonnet-4-5", "Claude Sonnet 4.5"),
    ("gemini", "gemini-3-pro-preview", "Gemini 3 Pro"),
    ("gemini", "gemini-3-flash-preview", "Gemini 3 Flash"),
]

# Tried in order after the primary model fails
FALLBACK_ORDER = [
    ModelSelection(provider="openai", name="gpt-5.2"),
    ModelSelection(provider="anthropic", name="claude-sonnet-4-5"),
    ModelSelection(provider="gemini", name="gemini-3-flash-preview"),
]

# Used once when a candidate fails with a context-length error
LONG_CONTEXT_MODEL = ModelSelection(provider="gemini", name="gemini-2.5-pro")


def is_model_provider(value: str | None) -> bool:
    return value in MODEL_PROVIDERS


def is_reasoning_effort(value: str | None) -> bool:
    return value in REASONING_EFFORTS

