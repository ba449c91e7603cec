"""
SQLite-backed chat, memory and workspace-search store.

Uses ``aiosqlite`` for async database access with a write lock to serialise
mutations (SQLite only supports one writer at a time in WAL mode).

Schema is version-tracked via a ``schema_version`` table.  Migrations are
applied automatically on ``init()``.  Message text is mirrored into an FTS5
index by triggers so workspace search never scans the messages table.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

from chatrelay.store.base import ConversationStore, MemoryStore, WorkspaceSearch
from chatrelay.types import (
    ChatContext,
    ChatNotFoundError,
    ConversationTurn,
    Memory,
    ModelStats,
    SearchHit,
    Usage,
    UserStats,
)

GLOBAL_SYSTEM_PROMPT_KEY = "global_system_prompt"

# ---------------------------------------------------------------------------
# Schema management
# ---------------------------------------------------------------------------

SCHEMA_VERSION = 2

MIGRATIONS: dict[int, list[str]] = {
    1: [
        """CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER NOT NULL
        )""",
        """CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT
        )""",
        """CREATE TABLE IF NOT EXISTS chats (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            workspace_id TEXT,
            title TEXT NOT NULL DEFAULT 'New Chat',
            system_prompt TEXT NOT NULL DEFAULT '',
            model TEXT,
            temperature REAL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )""",
        """CREATE TABLE IF NOT EXISTS messages (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            id TEXT NOT NULL UNIQUE,
            chat_id TEXT NOT NULL,
            role TEXT NOT NULL,
            content TEXT NOT NULL DEFAULT '',
            reasoning_content TEXT,
            tool_calls TEXT,
            tool_call_id TEXT,
            name TEXT,
            model TEXT,
            prompt_tokens INTEGER,
            completion_tokens INTEGER,
            response_time_ms INTEGER,
            created_at TEXT NOT NULL,
            FOREIGN KEY (chat_id) REFERENCES chats(id) ON DELETE CASCADE
        )""",
        """CREATE INDEX IF NOT EXISTS idx_messages_chat ON messages(chat_id, seq)""",
        """CREATE TABLE IF NOT EXISTS memories (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            content TEXT NOT NULL,
            category TEXT NOT NULL DEFAULT 'general',
            importance INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )""",
        """CREATE INDEX IF NOT EXISTS idx_memories_user ON memories(user_id)""",
        """CREATE VIRTUAL TABLE IF NOT EXISTS messages_fts USING fts5(
            content,
            message_id UNINDEXED
        )""",
        """CREATE TRIGGER IF NOT EXISTS messages_fts_insert
           AFTER INSERT ON messages
           WHEN NEW.role IN ('user', 'assistant') AND NEW.content != ''
           BEGIN
               INSERT INTO messages_fts (content, message_id)
               VALUES (NEW.content, NEW.id);
           END""",
        """CREATE TRIGGER IF NOT EXISTS messages_fts_delete
           AFTER DELETE ON messages
           BEGIN
               DELETE FROM messages_fts WHERE message_id = OLD.id;
           END""",
    ],
    2: [
        "ALTER TABLE messages ADD COLUMN cost REAL",
        "ALTER TABLE messages ADD COLUMN used_default_key INTEGER NOT NULL DEFAULT 0",
        """CREATE TABLE IF NOT EXISTS user_stats (
            user_id TEXT PRIMARY KEY,
            total_messages INTEGER NOT NULL DEFAULT 0,
            total_prompt_tokens INTEGER NOT NULL DEFAULT 0,
            total_completion_tokens INTEGER NOT NULL DEFAULT 0,
            total_cost REAL NOT NULL DEFAULT 0,
            total_reasoning_chars INTEGER NOT NULL DEFAULT 0,
            default_key_tokens INTEGER NOT NULL DEFAULT 0,
            default_key_cost REAL NOT NULL DEFAULT 0,
            personal_key_tokens INTEGER NOT NULL DEFAULT 0,
            personal_key_cost REAL NOT NULL DEFAULT 0,
            updated_at TEXT NOT NULL
        )""",
        """CREATE TABLE IF NOT EXISTS user_model_stats (
            user_id TEXT NOT NULL,
            model TEXT NOT NULL,
            usage_count INTEGER NOT NULL DEFAULT 0,
            total_prompt_tokens INTEGER NOT NULL DEFAULT 0,
            total_completion_tokens INTEGER NOT NULL DEFAULT 0,
            total_cost REAL NOT NULL DEFAULT 0,
            updated_at TEXT NOT NULL,
            PRIMARY KEY (user_id, model)
        )""",
    ],
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class SQLiteStore(ConversationStore, MemoryStore, WorkspaceSearch):
    """
    Async SQLite store for chats, turns and memories.

    Usage::

        store = SQLiteStore("~/.chatrelay/chatrelay.db")
        await store.init()
        chat_id = await store.create_chat(user_id="u1")
        await store.append_turn(chat_id, ConversationTurn("user", "hi"))
        ctx = await store.load_context(chat_id)
        await store.close()
    """

    def __init__(self, db_path: str, memory_context_limit: int = 5) -> None:
        if db_path == ":memory:":
            self.db_path = db_path
        else:
            path = Path(db_path).expanduser().resolve()
            path.parent.mkdir(parents=True, exist_ok=True)
            self.db_path = str(path)
        self.memory_context_limit = memory_context_limit
        self._write_lock = asyncio.Lock()
        self._db: aiosqlite.Connection | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Open the database and ensure the schema is up to date."""
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA foreign_keys=ON")
        await self._run_migrations()

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Store is not initialised -- call init() first")
        return self._db

    # ------------------------------------------------------------------
    # Migration runner
    # ------------------------------------------------------------------

    async def _get_schema_version(self) -> int:
        """Return the current schema version, or 0 if not initialised."""
        cursor = await self.db.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
        )
        if await cursor.fetchone() is None:
            return 0
        cursor = await self.db.execute("SELECT version FROM schema_version LIMIT 1")
        row = await cursor.fetchone()
        return 0 if row is None else int(row[0])

    async def _run_migrations(self) -> None:
        """Apply any pending migrations sequentially."""
        current = await self._get_schema_version()
        if current >= SCHEMA_VERSION:
            return

        for version in range(current + 1, SCHEMA_VERSION + 1):
            stmts = MIGRATIONS.get(version)
            if stmts is None:
                raise RuntimeError(f"Missing migration for schema version {version}")
            for stmt in stmts:
                await self.db.execute(stmt)

        await self.db.execute("DELETE FROM schema_version")
        await self.db.execute(
            "INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
        )
        await self.db.commit()

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    async def set_setting(self, key: str, value: str) -> None:
        async with self._write_lock:
            await self.db.execute(
                "INSERT INTO settings (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value),
            )
            await self.db.commit()

    async def get_setting(self, key: str) -> str | None:
        cursor = await self.db.execute("SELECT value FROM settings WHERE key = ?", (key,))
        row = await cursor.fetchone()
        return None if row is None else row[0]

    # ------------------------------------------------------------------
    # Chats
    # ------------------------------------------------------------------

    async def create_chat(
        self,
        user_id: str,
        *,
        title: str = "New Chat",
        workspace_id: str | None = None,
        system_prompt: str = "",
        model: str | None = None,
        temperature: float | None = None,
    ) -> str:
        chat_id = str(uuid.uuid4())
        now = _now()
        async with self._write_lock:
            await self.db.execute(
                """INSERT INTO chats
                   (id, user_id, workspace_id, title, system_prompt, model,
                    temperature, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (chat_id, user_id, workspace_id, title, system_prompt, model,
                 temperature, now, now),
            )
            await self.db.commit()
        return chat_id

    async def get_chat(self, chat_id: str) -> dict | None:
        cursor = await self.db.execute("SELECT * FROM chats WHERE id = ?", (chat_id,))
        row = await cursor.fetchone()
        return None if row is None else dict(row)

    async def list_chats(self, user_id: str) -> list[dict]:
        """Chats for *user_id*, most recently updated first."""
        cursor = await self.db.execute(
            "SELECT * FROM chats WHERE user_id = ? ORDER BY updated_at DESC", (user_id,)
        )
        return [dict(row) for row in await cursor.fetchall()]

    async def touch_chat(self, chat_id: str) -> None:
        async with self._write_lock:
            await self.db.execute(
                "UPDATE chats SET updated_at = ? WHERE id = ?", (_now(), chat_id)
            )
            await self.db.commit()

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    async def append_turn(self, chat_id: str, turn: ConversationTurn) -> str:
        turn_id = turn.id or str(uuid.uuid4())
        created = turn.created_at or datetime.now(timezone.utc)
        async with self._write_lock:
            await self.db.execute(
                """INSERT INTO messages
                   (id, chat_id, role, content, reasoning_content, tool_calls,
                    tool_call_id, name, model, prompt_tokens, completion_tokens,
                    response_time_ms, cost, used_default_key, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    turn_id,
                    chat_id,
                    turn.role,
                    turn.content or "",
                    turn.reasoning or None,
                    json.dumps(turn.tool_calls) if turn.tool_calls else None,
                    turn.tool_call_id,
                    turn.name,
                    turn.model,
                    turn.prompt_tokens,
                    turn.completion_tokens,
                    turn.response_time_ms,
                    turn.cost,
                    int(turn.used_default_key),
                    created.isoformat(),
                ),
            )
            await self.db.commit()
        turn.id = turn_id
        turn.created_at = created
        return turn_id

    async def list_turns(self, chat_id: str) -> list[ConversationTurn]:
        cursor = await self.db.execute(
            "SELECT * FROM messages WHERE chat_id = ? ORDER BY seq ASC", (chat_id,)
        )
        return [self._row_to_turn(row) for row in await cursor.fetchall()]

    @staticmethod
    def _row_to_turn(row: aiosqlite.Row) -> ConversationTurn:
        return ConversationTurn(
            role=row["role"],
            content=row["content"],
            reasoning=row["reasoning_content"],
            tool_calls=json.loads(row["tool_calls"]) if row["tool_calls"] else None,
            tool_call_id=row["tool_call_id"],
            name=row["name"],
            model=row["model"],
            prompt_tokens=row["prompt_tokens"],
            completion_tokens=row["completion_tokens"],
            response_time_ms=row["response_time_ms"],
            cost=row["cost"],
            used_default_key=bool(row["used_default_key"]),
            id=row["id"],
            created_at=_parse_ts(row["created_at"]),
        )

    async def load_context(self, chat_id: str) -> ChatContext:
        chat = await self.get_chat(chat_id)
        if chat is None:
            raise ChatNotFoundError(f"Chat not found: {chat_id}")

        prompts = [
            p for p in (await self.get_setting(GLOBAL_SYSTEM_PROMPT_KEY), chat["system_prompt"])
            if p
        ]
        memories = await self.list_memories(chat["user_id"], limit=self.memory_context_limit)

        return ChatContext(
            chat_id=chat_id,
            user_id=chat["user_id"],
            workspace_id=chat["workspace_id"],
            system_prompt="\n\n".join(prompts),
            prior_turns=await self.list_turns(chat_id),
            memory_snippets=[m.content for m in memories],
            model=chat["model"],
            temperature=chat["temperature"],
        )

    # ------------------------------------------------------------------
    # Usage accounting
    # ------------------------------------------------------------------

    async def record_usage(
        self,
        user_id: str,
        model: str,
        usage: Usage | None,
        *,
        reasoning_chars: int = 0,
        used_default_key: bool = False,
    ) -> None:
        prompt = usage.prompt_tokens if usage else 0
        completion = usage.completion_tokens if usage else 0
        cost = usage.cost if usage else 0.0
        tokens = prompt + completion
        default_tokens, default_cost = (tokens, cost) if used_default_key else (0, 0.0)
        personal_tokens, personal_cost = (0, 0.0) if used_default_key else (tokens, cost)
        now = _now()

        async with self._write_lock:
            await self.db.execute(
                """INSERT INTO user_stats
                   (user_id, total_messages, total_prompt_tokens, total_completion_tokens,
                    total_cost, total_reasoning_chars, default_key_tokens, default_key_cost,
                    personal_key_tokens, personal_key_cost, updated_at)
                   VALUES (?, 1, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(user_id) DO UPDATE SET
                     total_messages = total_messages + 1,
                     total_prompt_tokens = total_prompt_tokens + excluded.total_prompt_tokens,
                     total_completion_tokens =
                       total_completion_tokens + excluded.total_completion_tokens,
                     total_cost = total_cost + excluded.total_cost,
                     total_reasoning_chars =
                       total_reasoning_chars + excluded.total_reasoning_chars,
                     default_key_tokens = default_key_tokens + excluded.default_key_tokens,
                     default_key_cost = default_key_cost + excluded.default_key_cost,
                     personal_key_tokens = personal_key_tokens + excluded.personal_key_tokens,
                     personal_key_cost = personal_key_cost + excluded.personal_key_cost,
                     updated_at = excluded.updated_at""",
                (user_id, prompt, completion, cost, reasoning_chars,
                 default_tokens, default_cost, personal_tokens, personal_cost, now),
            )
            await self.db.execute(
                """INSERT INTO user_model_stats
                   (user_id, model, usage_count, total_prompt_tokens,
                    total_completion_tokens, total_cost, updated_at)
                   VALUES (?, ?, 1, ?, ?, ?, ?)
                   ON CONFLICT(user_id, model) DO UPDATE SET
                     usage_count = usage_count + 1,
                     total_prompt_tokens = total_prompt_tokens + excluded.total_prompt_tokens,
                     total_completion_tokens =
                       total_completion_tokens + excluded.total_completion_tokens,
                     total_cost = total_cost + excluded.total_cost,
                     updated_at = excluded.updated_at""",
                (user_id, model, prompt, completion, cost, now),
            )
            await self.db.commit()

    async def get_user_stats(self, user_id: str) -> UserStats | None:
        cursor = await self.db.execute(
            "SELECT * FROM user_stats WHERE user_id = ?", (user_id,)
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        data = dict(row)
        data.pop("updated_at")
        return UserStats(**data)

    async def list_model_stats(self, user_id: str) -> list[ModelStats]:
        """Per-model totals for *user_id*, most used first."""
        cursor = await self.db.execute(
            """SELECT model, usage_count, total_prompt_tokens,
                      total_completion_tokens, total_cost
               FROM user_model_stats
               WHERE user_id = ?
               ORDER BY usage_count DESC, model ASC""",
            (user_id,),
        )
        return [ModelStats(**dict(row)) for row in await cursor.fetchall()]

    # ------------------------------------------------------------------
    # Memories
    # ------------------------------------------------------------------

    async def add_memory(
        self, user_id: str, content: str, category: str, importance: int
    ) -> int:
        now = _now()
        async with self._write_lock:
            cursor = await self.db.execute(
                """INSERT INTO memories
                   (user_id, content, category, importance, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (user_id, content, category, importance, now, now),
            )
            await self.db.commit()
        return int(cursor.lastrowid)

    async def list_memories(
        self,
        user_id: str,
        category: str | None = None,
        query: str | None = None,
        limit: int = 10,
    ) -> list[Memory]:
        clauses = ["user_id = ?"]
        params: list = [user_id]
        if category:
            clauses.append("category = ?")
            params.append(category)
        if query:
            clauses.append("instr(lower(content), lower(?)) > 0")
            params.append(query)
        params.append(limit)

        cursor = await self.db.execute(
            f"""SELECT id, content, category, importance, updated_at
                FROM memories
                WHERE {' AND '.join(clauses)}
                ORDER BY importance DESC, updated_at DESC, id DESC
                LIMIT ?""",
            params,
        )
        return [
            Memory(
                id=row["id"],
                content=row["content"],
                category=row["category"],
                importance=row["importance"],
                updated_at=_parse_ts(row["updated_at"]),
            )
            for row in await cursor.fetchall()
        ]

    # ------------------------------------------------------------------
    # Workspace search
    # ------------------------------------------------------------------

    async def search_workspace(
        self, match_query: str, workspace_id: str, user_id: str, limit: int
    ) -> list[SearchHit]:
        cursor = await self.db.execute(
            """SELECT m.chat_id, c.title, m.role, m.content, m.created_at
               FROM messages_fts
               JOIN messages m ON m.id = messages_fts.message_id
               JOIN chats c ON c.id = m.chat_id
               WHERE messages_fts MATCH ? AND c.workspace_id = ? AND c.user_id = ?
               ORDER BY rank
               LIMIT ?""",
            (match_query, workspace_id, user_id, limit),
        )
        return [
            SearchHit(
                chat_id=row[0],
                chat_title=row[1],
                role=row[2],
                content=row[3],
                created_at=_parse_ts(row[4]),
            )
            for row in await cursor.fetchall()
        ]
