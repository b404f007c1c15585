"""Shared fixtures: an in-memory database and scripted collaborators."""

import inspect
from datetime import date, datetime, timezone

import pytest

from models import Branch, Conversation, MemorySummary, Message, ModelSelection, UsageStat
from branchchat.config import settings
from branchchat.db import DuplicateRequestError
from branchchat.services.chat_pipeline import ChatPipeline
from branchchat.services.moderation import SafetyFilter
from branchchat.services.safety_filter import SafetyVerdict


class FakeDatabase:
    """In-memory stand-in for Database with the same method surface."""

    def __init__(self):
        self.plans: dict[str, str] = {}
        self.conversations: dict[str, Conversation] = {}
        self.branches: dict[str, Branch] = {}
        self.messages: list[Message] = []
        self.usage: dict[tuple[str, date], int] = {}
        self.persist_error: Exception | None = None

    async def get_user_plan(self, user_id: str) -> str:
        return self.plans.get(user_id, "free")

    # Conversations

    async def create_conversation(self, user_id: str, title: str | None = None) -> Conversation:
        conversation = Conversation(user_id=user_id, title=title or "New Chat")
        self.conversations[conversation.id] = conversation
        return conversation

    async def get_conversation(self, conversation_id: str, user_id: str | None = None):
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            return None
        if user_id is not None and conversation.user_id != user_id:
            return None
        return conversation

    async def list_conversations(self, user_id: str, include_archived: bool = False, limit: int = 50):
        conversations = [
            c
            for c in self.conversations.values()
            if c.user_id == user_id and (include_archived or not c.is_archived)
        ]
        conversations.sort(key=lambda c: c.updated_at, reverse=True)
        return conversations[:limit]

    async def update_conversation_title(self, conversation_id: str, title: str):
        conversation = self.conversations[conversation_id]
        self.conversations[conversation_id] = conversation.model_copy(update={"title": title})

    # Branches

    async def get_branch(self, branch_id: str):
        return self.branches.get(branch_id)

    async def find_branch(self, parent_message_id: str, side: str):
        for branch in self.branches.values():
            if branch.parent_message_id == parent_message_id and branch.side == side:
                return branch
        return None

    async def create_branch(self, conversation_id: str, parent_message_id: str, side: str):
        existing = await self.find_branch(parent_message_id, side)
        if existing is not None:
            return existing
        branch = Branch(
            conversation_id=conversation_id, parent_message_id=parent_message_id, side=side
        )
        self.branches[branch.id] = branch
        return branch

    async def branch_has_messages(self, branch_id: str) -> bool:
        return any(m.branch_id == branch_id for m in self.messages)

    async def list_branches(self, conversation_id: str):
        return [b for b in self.branches.values() if b.conversation_id == conversation_id]

    # Messages

    async def get_message(self, message_id: str):
        return next((m for m in self.messages if m.id == message_id), None)

    async def get_message_by_request_id(self, request_id: str):
        return next((m for m in self.messages if m.request_id == request_id), None)

    async def get_assistant_reply(self, user_message_id: str):
        return next(
            (
                m
                for m in self.messages
                if m.parent_message_id == user_message_id and m.role == "assistant"
            ),
            None,
        )

    async def get_latest_model_selection(self, conversation_id: str):
        for message in reversed(self.messages):
            if message.conversation_id != conversation_id:
                continue
            if not message.model_provider or not message.model_name:
                return None
            return ModelSelection(
                provider=message.model_provider,
                name=message.model_name,
                reasoning_effort=message.model_reasoning_effort,
            )
        return None

    async def get_messages(self, conversation_id: str):
        return [m for m in self.messages if m.conversation_id == conversation_id]

    async def get_main_thread_messages(self, conversation_id: str):
        return [
            m for m in self.messages if m.conversation_id == conversation_id and m.branch_id is None
        ]

    async def persist_turn(
        self,
        user_id: str,
        user_message: Message,
        assistant_message: Message,
        usage_day: date | None = None,
    ) -> bool:
        if self.persist_error is not None:
            raise self.persist_error
        if user_message.request_id and await self.get_message_by_request_id(
            user_message.request_id
        ):
            raise DuplicateRequestError(user_message.request_id)

        root_set = False
        conversation = self.conversations[user_message.conversation_id]
        if user_message.parent_message_id is None and conversation.root_message_id is None:
            conversation = conversation.model_copy(update={"root_message_id": user_message.id})
            root_set = True
        self.conversations[conversation.id] = conversation.model_copy(
            update={"updated_at": datetime.now(timezone.utc)}
        )

        self.messages.extend([user_message, assistant_message])
        if usage_day is not None:
            key = (user_id, usage_day)
            self.usage[key] = self.usage.get(key, 0) + 1
        return root_set

    async def get_usage(self, user_id: str, day: date) -> UsageStat:
        return UsageStat(user_id=user_id, day=day, message_count=self.usage.get((user_id, day), 0))

    # Test helpers

    def add_turn(
        self,
        conversation_id: str,
        user_text: str,
        assistant_text: str,
        parent_message_id: str | None = None,
        request_id: str | None = None,
    ) -> tuple[Message, Message]:
        user_message = Message(
            conversation_id=conversation_id,
            role="user",
            content=user_text,
            parent_message_id=parent_message_id,
            request_id=request_id,
        )
        assistant_message = Message(
            conversation_id=conversation_id,
            role="assistant",
            content=assistant_text,
            parent_message_id=user_message.id,
        )
        self.messages.extend([user_message, assistant_message])
        return user_message, assistant_message


class FakeInvoker:
    """Streams a fixed reply and records what it was asked."""

    def __init__(self, reply: str = "Hello there", chunk_size: int = 4):
        self.reply = reply
        self.chunk_size = chunk_size
        self.calls: list[dict] = []
        self.error: Exception | None = None
        self.before_reply = None

    async def invoke(self, model, messages, memory_summary_json=None, on_token=None):
        self.calls.append(
            {
                "model": model,
                "messages": messages,
                "memory_summary_json": memory_summary_json,
                "on_token": on_token,
            }
        )
        if self.error is not None:
            raise self.error
        if self.before_reply is not None:
            self.before_reply()
        for index in range(0, len(self.reply), self.chunk_size):
            if on_token is not None:
                result = on_token(self.reply[index : index + self.chunk_size])
                if inspect.isawaitable(result):
                    await result
        return self.reply


class FakeModeration:
    """Moderation client that blocks texts containing configured words."""

    def __init__(self):
        self.blocked_words: list[str] = []
        self.checked: list[str] = []

    async def check(self, text: str) -> SafetyVerdict:
        self.checked.append(text)
        for word in self.blocked_words:
            if word in text:
                return SafetyVerdict(blocked=True, reason="flagged")
        return SafetyVerdict(blocked=False, reason="ok")


class FakeSummarizer:
    def __init__(self, summary: MemorySummary | None = None):
        self.summary = summary or MemorySummary(summary="Earlier discussion", turn_count=1)
        self.calls: list[tuple[list, int]] = []

    async def summarize(self, messages, turn_count):
        self.calls.append((messages, turn_count))
        return self.summary


class FakeTitleGenerator:
    def __init__(self):
        self.scheduled: list[tuple[str, str]] = []

    def schedule(self, conversation_id: str, content: str):
        self.scheduled.append((conversation_id, content))

    async def drain(self):
        pass


@pytest.fixture(autouse=True)
def local_settings(monkeypatch):
    """Deterministic settings regardless of the developer's .env."""
    monkeypatch.setattr(settings, "use_dev_assistant_response", False)
    monkeypatch.setattr(settings, "disable_moderation", False)
    monkeypatch.setattr(settings, "disable_daily_limit", False)
    monkeypatch.setattr(settings, "free_plan_daily_limit", 10)
    monkeypatch.setattr(settings, "moderation_fast_gate_rules", "")
    monkeypatch.setattr(settings, "max_history_messages", 40)
    monkeypatch.setattr(settings, "max_context_tokens", 8000)


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def fake_invoker():
    return FakeInvoker()


@pytest.fixture
def fake_moderation():
    return FakeModeration()


@pytest.fixture
def fake_summarizer():
    return FakeSummarizer()


@pytest.fixture
def fake_titles():
    return FakeTitleGenerator()


@pytest.fixture
def pipeline(fake_db, fake_invoker, fake_moderation, fake_summarizer, fake_titles):
    return ChatPipeline(
        fake_db,
        invoker=fake_invoker,
        safety=SafetyFilter(moderation=fake_moderation),
        summarizer=fake_summarizer,
        title_generator=fake_titles,
    )
