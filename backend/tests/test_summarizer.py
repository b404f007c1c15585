"""Tests for memory summaries."""

import json

import pytest

from models import MemorySummary
from branchchat.services import summarizer as summarizer_module
from branchchat.services.summarizer import (
    Summarizer,
    build_memory_summary_prompt,
    extract_json_block,
    parse_memory_summary,
)

MESSAGES = [
    {"role": "user", "content": "I'm planning a dinner party"},
    {"role": "assistant", "content": "What are you serving?"},
]


class TestParsing:
    def test_fenced_block(self):
        text = 'Here you go:\n```json\n{"summary": "Dinner party"}\n```'
        assert extract_json_block(text) == '{"summary": "Dinner party"}'

    def test_outermost_braces(self):
        assert extract_json_block('noise {"a": {"b": 1}} trailing') == '{"a": {"b": 1}}'

    def test_no_json(self):
        assert extract_json_block("no json here") == ""
        assert extract_json_block("") == ""

    def test_parse_valid_summary(self):
        text = json.dumps(
            {
                "summary": "Planning a dinner party.",
                "key_facts": ["six guests"],
                "sentiment": "positive",
                "turn_count": 12,
            }
        )

        summary = parse_memory_summary(text)
        assert summary.summary == "Planning a dinner party."
        assert summary.key_facts == ["six guests"]
        assert summary.sentiment == "positive"
        assert summary.turn_count == 12

    @pytest.mark.parametrize(
        "text",
        ["", "not json", "{broken", "[1, 2]", '{"sentiment": "furious"}'],
    )
    def test_parse_failures_return_empty(self, text):
        assert parse_memory_summary(text) == MemorySummary()

    def test_sentiment_is_normalized(self):
        assert parse_memory_summary('{"summary": "x", "sentiment": " Mixed "}').sentiment == "mixed"
        assert parse_memory_summary('{"summary": "x", "sentiment": "furious"}').sentiment == "neutral"

    def test_invalid_fields_keep_the_rest(self):
        text = json.dumps(
            {
                "summary": "Planning a dinner party.",
                "key_facts": ["six guests", {"course": "dessert"}],
                "turn_count": "many",
                "user_goal": "Pick a menu",
                "unknown": True,
            }
        )

        summary = parse_memory_summary(text)
        assert summary.summary == "Planning a dinner party."
        assert summary.user_goal == "Pick a menu"
        assert summary.key_facts == []
        assert summary.turn_count == 0

    def test_prompt_contains_schema_and_conversation(self):
        prompt = build_memory_summary_prompt("USER: hi", 7)

        assert '"turn_count": 7' in prompt
        assert prompt.endswith("Conversation:\nUSER: hi")


class TestSummarize:
    @pytest.mark.asyncio
    async def test_fills_metadata(self, monkeypatch):
        summarizer = Summarizer(model="haiku")
        prompts: list[str] = []

        async def complete(prompt):
            prompts.append(prompt)
            return '```json\n{"summary": "Dinner party planning", "user_goal": "menu"}\n```'

        monkeypatch.setattr(summarizer, "_complete", complete)

        summary = await summarizer.summarize(MESSAGES, turn_count=45)

        assert summary.summary == "Dinner party planning"
        assert summary.user_goal == "menu"
        assert summary.turn_count == 45
        assert summary.last_updated
        assert "USER: I'm planning a dinner party" in prompts[0]
        assert "ASSISTANT: What are you serving?" in prompts[0]

    @pytest.mark.asyncio
    async def test_unusable_reply(self, monkeypatch):
        summarizer = Summarizer(model="haiku")

        async def complete(prompt):
            return "Sorry, I can't do that."

        monkeypatch.setattr(summarizer, "_complete", complete)

        assert await summarizer.summarize(MESSAGES, turn_count=45) == MemorySummary()

    @pytest.mark.asyncio
    async def test_model_failure_returns_empty(self, monkeypatch):
        def failing_query(**kwargs):
            raise RuntimeError("CLI not available")

        monkeypatch.setattr(summarizer_module, "query", failing_query)

        summary = await Summarizer(model="haiku").summarize(MESSAGES, turn_count=45)
        assert summary == MemorySummary()

    @pytest.mark.asyncio
    async def test_nothing_to_summarize(self):
        assert await Summarizer(model="haiku").summarize([], turn_count=0) == MemorySummary()
