"""PostgreSQL client for conversation persistence."""

import asyncpg
from datetime import date, datetime, timezone
from contextlib import asynccontextmanager

from models import Branch, Conversation, Message, ModelSelection, UsageStat
from branchchat.config import settings


# SQL schema for conversation tables
SCHEMA_SQL = """
-- Users (owned by the auth service, read here for plan type only)
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    plan_type TEXT NOT NULL DEFAULT 'free'
);

-- Conversations
CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    title TEXT,
    root_message_id TEXT,
    is_archived BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_conversations_user_id ON conversations(user_id);

-- Branches (one per parent message and side)
CREATE TABLE IF NOT EXISTS branches (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL REFERENCES conversations(id),
    parent_message_id TEXT NOT NULL,
    side TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (parent_message_id, side)
);
CREATE INDEX IF NOT EXISTS idx_branches_conversation ON branches(conversation_id);

-- Messages
CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL REFERENCES conversations(id),
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    parent_message_id TEXT,
    branch_id TEXT REFERENCES branches(id),
    model_provider TEXT,
    model_name TEXT,
    model_reasoning_effort TEXT,
    request_id TEXT UNIQUE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id);
CREATE INDEX IF NOT EXISTS idx_messages_parent ON messages(parent_message_id);
CREATE INDEX IF NOT EXISTS idx_messages_branch ON messages(branch_id);

-- Daily usage counters
CREATE TABLE IF NOT EXISTS usage_stats (
    user_id TEXT NOT NULL,
    day DATE NOT NULL,
    message_count INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (user_id, day)
);
"""


class DuplicateRequestError(Exception):
    """A user message with this request ID already exists."""

    def __init__(self, request_id: str):
        super().__init__(f"Duplicate request {request_id}")
        self.request_id = request_id


class Database:
    """PostgreSQL database client for conversations, branches and usage."""

    def __init__(self):
        self._pool: asyncpg.Pool | None = None

    async def connect(self):
        """Create connection pool."""
        if not settings.database_url:
            return
        self._pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=2,
            max_size=10,
        )

    async def disconnect(self):
        """Close connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None

    @asynccontextmanager
    async def connection(self):
        """Get a connection from the pool."""
        if not self._pool:
            raise RuntimeError("Database not connected")
        async with self._pool.acquire() as conn:
            yield conn

    async def ensure_tables_exist(self):
        """Create tables if they don't exist."""
        if not self._pool:
            return
        async with self.connection() as conn:
            await conn.execute(SCHEMA_SQL)

    # ============= User Operations =============

    async def get_user_plan(self, user_id: str) -> str:
        """Get the user's plan type. Unknown users are on the free plan."""
        async with self.connection() as conn:
            plan = await conn.fetchval(
                "SELECT plan_type FROM users WHERE id = $1", user_id
            )
        return plan or "free"

    # ============= Conversation Operations =============

    async def create_conversation(self, user_id: str, title: str | None = None) -> Conversation:
        """Create a new conversation."""
        conversation = Conversation(user_id=user_id, title=title or "New Chat")
        async with self.connection() as conn:
            await conn.execute(
                """
                INSERT INTO conversations (id, user_id, title, is_archived, created_at, updated_at)
                VALUES ($1, $2, $3, $4, $5, $6)
                """,
                conversation.id,
                conversation.user_id,
                conversation.title,
                conversation.is_archived,
                conversation.created_at,
                conversation.updated_at,
            )
        return conversation

    async def get_conversation(
        self, conversation_id: str, user_id: str | None = None
    ) -> Conversation | None:
        """Get a conversation by ID, optionally scoped to its owner."""
        query = "SELECT * FROM conversations WHERE id = $1"
        params: list = [conversation_id]
        if user_id is not None:
            query += " AND user_id = $2"
            params.append(user_id)
        async with self.connection() as conn:
            row = await conn.fetchrow(query, *params)
        if not row:
            return None
        return self._row_to_conversation(row)

    async def list_conversations(
        self, user_id: str, include_archived: bool = False, limit: int = 50
    ) -> list[Conversation]:
        """List conversations for a user, most recently updated first."""
        query = "SELECT * FROM conversations WHERE user_id = $1"
        if not include_archived:
            query += " AND is_archived = FALSE"
        query += " ORDER BY updated_at DESC LIMIT $2"
        async with self.connection() as conn:
            rows = await conn.fetch(query, user_id, limit)
        return [self._row_to_conversation(row) for row in rows]

    async def update_conversation_title(self, conversation_id: str, title: str):
        """Overwrite a conversation's title."""
        async with self.connection() as conn:
            await conn.execute(
                "UPDATE conversations SET title = $1, updated_at = $2 WHERE id = $3",
                title,
                datetime.now(timezone.utc),
                conversation_id,
            )

    def _row_to_conversation(self, row: asyncpg.Record) -> Conversation:
        return Conversation(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            root_message_id=row["root_message_id"],
            is_archived=row["is_archived"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # ============= Branch Operations =============

    async def get_branch(self, branch_id: str) -> Branch | None:
        """Get a branch by ID."""
        async with self.connection() as conn:
            row = await conn.fetchrow("SELECT * FROM branches WHERE id = $1", branch_id)
        if not row:
            return None
        return self._row_to_branch(row)

    async def find_branch(self, parent_message_id: str, side: str) -> Branch | None:
        """Get the branch opened on a side of a parent message, if any."""
        async with self.connection() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM branches WHERE parent_message_id = $1 AND side = $2",
                parent_message_id,
                side,
            )
        if not row:
            return None
        return self._row_to_branch(row)

    async def create_branch(
        self, conversation_id: str, parent_message_id: str, side: str
    ) -> Branch:
        """Create a branch, returning the existing row if one won a race."""
        branch = Branch(
            conversation_id=conversation_id,
            parent_message_id=parent_message_id,
            side=side,  # type: ignore
        )
        async with self.connection() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO branches (id, conversation_id, parent_message_id, side, created_at)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (parent_message_id, side) DO NOTHING
                RETURNING *
                """,
                branch.id,
                branch.conversation_id,
                branch.parent_message_id,
                branch.side,
                branch.created_at,
            )
            if row is None:
                row = await conn.fetchrow(
                    "SELECT * FROM branches WHERE parent_message_id = $1 AND side = $2",
                    parent_message_id,
                    side,
                )
        return self._row_to_branch(row)

    async def branch_has_messages(self, branch_id: str) -> bool:
        """Check whether any message has been written under a branch."""
        async with self.connection() as conn:
            return await conn.fetchval(
                "SELECT EXISTS(SELECT 1 FROM messages WHERE branch_id = $1)", branch_id
            )

    async def list_branches(self, conversation_id: str) -> list[Branch]:
        """List all branches of a conversation."""
        async with self.connection() as conn:
            rows = await conn.fetch(
                "SELECT * FROM branches WHERE conversation_id = $1 ORDER BY created_at ASC",
                conversation_id,
            )
        return [self._row_to_branch(row) for row in rows]

    def _row_to_branch(self, row: asyncpg.Record) -> Branch:
        return Branch(
            id=row["id"],
            conversation_id=row["conversation_id"],
            parent_message_id=row["parent_message_id"],
            side=row["side"],
            created_at=row["created_at"],
        )

    # ============= Message Operations =============

    async def get_message(self, message_id: str) -> Message | None:
        """Get a message by ID."""
        async with self.connection() as conn:
            row = await conn.fetchrow("SELECT * FROM messages WHERE id = $1", message_id)
        if not row:
            return None
        return self._row_to_message(row)

    async def get_message_by_request_id(self, request_id: str) -> Message | None:
        """Get the user message submitted with a request ID."""
        async with self.connection() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM messages WHERE request_id = $1", request_id
            )
        if not row:
            return None
        return self._row_to_message(row)

    async def get_assistant_reply(self, user_message_id: str) -> Message | None:
        """Get the assistant message produced for a user message."""
        async with self.connection() as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM messages
                WHERE parent_message_id = $1 AND role = 'assistant'
                ORDER BY created_at ASC
                LIMIT 1
                """,
                user_message_id,
            )
        if not row:
            return None
        return self._row_to_message(row)

    async def get_latest_model_selection(self, conversation_id: str) -> ModelSelection | None:
        """Get the provider/model of the most recent message that recorded one."""
        async with self.connection() as conn:
            row = await conn.fetchrow(
                """
                SELECT model_provider, model_name, model_reasoning_effort FROM messages
                WHERE conversation_id = $1
                ORDER BY created_at DESC
                LIMIT 1
                """,
                conversation_id,
            )
        if not row or not row["model_provider"] or not row["model_name"]:
            return None
        try:
            return ModelSelection(
                provider=row["model_provider"],
                name=row["model_name"],
                reasoning_effort=row["model_reasoning_effort"],
            )
        except ValueError:
            # Provider or tier no longer in the catalog
            return None

    async def get_messages(self, conversation_id: str) -> list[Message]:
        """Get all messages for a conversation in creation order."""
        async with self.connection() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM messages
                WHERE conversation_id = $1
                ORDER BY created_at ASC
                """,
                conversation_id,
            )
        return [self._row_to_message(row) for row in rows]

    async def get_main_thread_messages(self, conversation_id: str) -> list[Message]:
        """Get messages with no branch, in creation order."""
        async with self.connection() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM messages
                WHERE conversation_id = $1 AND branch_id IS NULL
                ORDER BY created_at ASC
                """,
                conversation_id,
            )
        return [self._row_to_message(row) for row in rows]

    async def persist_turn(
        self,
        user_id: str,
        user_message: Message,
        assistant_message: Message,
        usage_day: date | None = None,
    ) -> bool:
        """Write both messages of a turn in one transaction.

        Sets the conversation's root pointer when the user message starts the
        main thread and none is set yet. Increments the day's usage counter
        when ``usage_day`` is given.

        Returns:
            True if the root pointer was set by this turn.

        Raises:
            DuplicateRequestError: a user message with the same request ID exists.
        """
        root_set = False
        async with self.connection() as conn:
            async with conn.transaction():
                inserted = await conn.fetchval(
                    """
                    INSERT INTO messages
                    (id, conversation_id, role, content, parent_message_id, branch_id,
                     model_provider, model_name, model_reasoning_effort, request_id, created_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
                    ON CONFLICT (request_id) DO NOTHING
                    RETURNING id
                    """,
                    *self._message_values(user_message),
                )
                if inserted is None:
                    raise DuplicateRequestError(user_message.request_id or "")

                if user_message.parent_message_id is None:
                    updated = await conn.fetchval(
                        """
                        UPDATE conversations SET root_message_id = $1
                        WHERE id = $2 AND root_message_id IS NULL
                        RETURNING id
                        """,
                        user_message.id,
                        user_message.conversation_id,
                    )
                    root_set = updated is not None

                await conn.execute(
                    """
                    INSERT INTO messages
                    (id, conversation_id, role, content, parent_message_id, branch_id,
                     model_provider, model_name, model_reasoning_effort, request_id, created_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
                    """,
                    *self._message_values(assistant_message),
                )
                await conn.execute(
                    "UPDATE conversations SET updated_at = $1 WHERE id = $2",
                    datetime.now(timezone.utc),
                    user_message.conversation_id,
                )

                if usage_day is not None:
                    await conn.execute(
                        """
                        INSERT INTO usage_stats (user_id, day, message_count)
                        VALUES ($1, $2, 1)
                        ON CONFLICT (user_id, day)
                        DO UPDATE SET message_count = usage_stats.message_count + 1
                        """,
                        user_id,
                        usage_day,
                    )
        return root_set

    def _message_values(self, message: Message) -> tuple:
        return (
            message.id,
            message.conversation_id,
            message.role,
            message.content,
            message.parent_message_id,
            message.branch_id,
            message.model_provider,
            message.model_name,
            message.model_reasoning_effort,
            message.request_id,
            message.created_at,
        )

    def _row_to_message(self, row: asyncpg.Record) -> Message:
        return Message(
            id=row["id"],
            conversation_id=row["conversation_id"],
            role=row["role"],  # type: ignore
            content=row["content"],
            parent_message_id=row["parent_message_id"],
            branch_id=row["branch_id"],
            model_provider=row["model_provider"],
            model_name=row["model_name"],
            model_reasoning_effort=row["model_reasoning_effort"],
            request_id=row["request_id"],
            created_at=row["created_at"],
        )

    # ============= Usage Operations =============

    async def get_usage(self, user_id: str, day: date) -> UsageStat:
        """Get a user's counter for a day. Days without a row count as zero."""
        async with self.connection() as conn:
            count = await conn.fetchval(
                "SELECT message_count FROM usage_stats WHERE user_id = $1 AND day = $2",
                user_id,
                day,
            )
        return UsageStat(user_id=user_id, day=day, message_count=count or 0)


# Global database instance
db = Database()
