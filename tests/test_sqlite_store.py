"""Tests for SQLiteStore: chats, turns, memories and workspace search."""

from __future__ import annotations

import pytest

import aiosqlite

from chatrelay.store.sqlite import (
    GLOBAL_SYSTEM_PROMPT_KEY,
    MIGRATIONS,
    SCHEMA_VERSION,
    SQLiteStore,
)
from chatrelay.types import ChatNotFoundError, ConversationTurn, Usage


@pytest.fixture
async def store(tmp_path):
    s = SQLiteStore(str(tmp_path / "test.db"))
    await s.init()
    yield s
    await s.close()


class TestLifecycle:
    async def test_schema_version_recorded(self, store):
        assert await store._get_schema_version() == SCHEMA_VERSION

    async def test_reopen_is_idempotent(self, tmp_path):
        path = str(tmp_path / "re.db")
        s1 = SQLiteStore(path)
        await s1.init()
        chat_id = await s1.create_chat("u1")
        await s1.close()

        s2 = SQLiteStore(path)
        await s2.init()
        assert (await s2.get_chat(chat_id))["user_id"] == "u1"
        await s2.close()

    async def test_in_memory(self):
        s = SQLiteStore(":memory:")
        await s.init()
        assert await s.list_chats("u1") == []
        await s.close()

    def test_uninitialised_access_raises(self):
        with pytest.raises(RuntimeError, match="init"):
            SQLiteStore(":memory:").db

    async def test_upgrades_version_one_database(self, tmp_path):
        path = str(tmp_path / "v1.db")
        async with aiosqlite.connect(path) as db:
            for stmt in MIGRATIONS[1]:
                await db.execute(stmt)
            await db.execute("INSERT INTO schema_version (version) VALUES (1)")
            await db.execute(
                "INSERT INTO chats (id, user_id, created_at, updated_at) "
                "VALUES ('c1', 'u1', 't', 't')"
            )
            await db.execute(
                "INSERT INTO messages (id, chat_id, role, content, created_at) "
                "VALUES ('m1', 'c1', 'user', 'old', '2024-01-01T00:00:00+00:00')"
            )
            await db.commit()

        s = SQLiteStore(path)
        await s.init()
        assert await s._get_schema_version() == SCHEMA_VERSION
        old = (await s.list_turns("c1"))[0]
        assert old.cost is None
        assert old.used_default_key is False
        await s.record_usage("u1", "m", Usage(1, 1))
        assert (await s.get_user_stats("u1")).total_messages == 1
        await s.close()


class TestChatsAndTurns:
    async def test_append_and_list_in_order(self, store):
        chat_id = await store.create_chat("u1")
        await store.append_turn(chat_id, ConversationTurn(role="user", content="hi"))
        await store.append_turn(
            chat_id,
            ConversationTurn(
                role="assistant",
                content="",
                reasoning="thinking",
                tool_calls=[{"id": "c1", "type": "function",
                             "function": {"name": "calculator", "arguments": "{}"}}],
                model="m",
                prompt_tokens=5,
                completion_tokens=2,
            ),
        )
        await store.append_turn(
            chat_id, ConversationTurn(role="tool", content="4", tool_call_id="c1", name="calculator")
        )

        turns = await store.list_turns(chat_id)
        assert [t.role for t in turns] == ["user", "assistant", "tool"]
        assert turns[1].reasoning == "thinking"
        assert turns[1].tool_calls[0]["function"]["name"] == "calculator"
        assert turns[1].prompt_tokens == 5
        assert turns[2].tool_call_id == "c1"
        assert all(t.id and t.created_at for t in turns)

    async def test_append_sets_id_on_turn(self, store):
        chat_id = await store.create_chat("u1")
        turn = ConversationTurn(role="user", content="hello")
        turn_id = await store.append_turn(chat_id, turn)
        assert turn.id == turn_id

    async def test_list_chats_most_recent_first(self, store):
        first = await store.create_chat("u1", title="first")
        second = await store.create_chat("u1", title="second")
        await store.touch_chat(first)
        chats = await store.list_chats("u1")
        assert [c["id"] for c in chats] == [first, second]

    async def test_tool_turn_round_trips_to_wire(self, store):
        chat_id = await store.create_chat("u1")
        await store.append_turn(
            chat_id, ConversationTurn(role="tool", content="ok", tool_call_id="c9", name="web_fetch")
        )
        wire = (await store.list_turns(chat_id))[0].to_wire()
        assert wire == {"role": "tool", "content": "ok", "tool_call_id": "c9", "name": "web_fetch"}


class TestLoadContext:
    async def test_unknown_chat(self, store):
        with pytest.raises(ChatNotFoundError):
            await store.load_context("missing")

    async def test_prompts_joined(self, store):
        await store.set_setting(GLOBAL_SYSTEM_PROMPT_KEY, "Be brief.")
        chat_id = await store.create_chat("u1", system_prompt="Speak French.")
        ctx = await store.load_context(chat_id)
        assert ctx.system_prompt == "Be brief.\n\nSpeak French."

    async def test_empty_prompts(self, store):
        chat_id = await store.create_chat("u1")
        ctx = await store.load_context(chat_id)
        assert ctx.system_prompt == ""

    async def test_memory_snippets_limited_and_ranked(self, tmp_path):
        s = SQLiteStore(str(tmp_path / "m.db"), memory_context_limit=2)
        await s.init()
        await s.add_memory("u1", "likes tea", "preferences", 1)
        await s.add_memory("u1", "works at Acme", "work", 5)
        await s.add_memory("u1", "has a cat", "personal", 3)
        await s.add_memory("u2", "not mine", "general", 5)
        chat_id = await s.create_chat("u1", workspace_id="ws1", model="m1", temperature=0.2)

        ctx = await s.load_context(chat_id)
        assert ctx.memory_snippets == ["works at Acme", "has a cat"]
        assert ctx.user_id == "u1"
        assert ctx.workspace_id == "ws1"
        assert ctx.model == "m1"
        assert ctx.temperature == 0.2
        await s.close()


class TestMemories:
    async def test_filters(self, store):
        await store.add_memory("u1", "Prefers dark mode", "preferences", 2)
        await store.add_memory("u1", "Uses vim", "preferences", 4)
        await store.add_memory("u1", "Team lead at Acme", "work", 3)

        prefs = await store.list_memories("u1", category="preferences")
        assert [m.content for m in prefs] == ["Uses vim", "Prefers dark mode"]

        dark = await store.list_memories("u1", query="DARK")
        assert [m.content for m in dark] == ["Prefers dark mode"]

        both = await store.list_memories("u1", category="work", query="vim")
        assert both == []

    async def test_limit(self, store):
        for i in range(5):
            await store.add_memory("u1", f"fact {i}", "general", 1)
        assert len(await store.list_memories("u1", limit=3)) == 3

    async def test_ties_newest_first(self, store):
        await store.add_memory("u1", "older", "general", 2)
        await store.add_memory("u1", "newer", "general", 2)
        assert [m.content for m in await store.list_memories("u1")] == ["newer", "older"]


class TestWorkspaceSearch:
    async def test_scoped_to_workspace_and_user(self, store):
        mine = await store.create_chat("u1", title="Deploys", workspace_id="ws1")
        other_ws = await store.create_chat("u1", title="Elsewhere", workspace_id="ws2")
        other_user = await store.create_chat("u2", title="Theirs", workspace_id="ws1")
        for chat_id in (mine, other_ws, other_user):
            await store.append_turn(
                chat_id, ConversationTurn(role="user", content="How do I deploy the cluster?")
            )

        hits = await store.search_workspace('"deploy"*', "ws1", "u1", 10)
        assert len(hits) == 1
        assert hits[0].chat_id == mine
        assert hits[0].chat_title == "Deploys"
        assert hits[0].role == "user"

    async def test_prefix_match(self, store):
        chat_id = await store.create_chat("u1", workspace_id="ws1")
        await store.append_turn(chat_id, ConversationTurn(role="assistant", content="Deployment finished"))
        hits = await store.search_workspace('"deploy"*', "ws1", "u1", 10)
        assert [h.content for h in hits] == ["Deployment finished"]

    async def test_tool_turns_not_indexed(self, store):
        chat_id = await store.create_chat("u1", workspace_id="ws1")
        await store.append_turn(
            chat_id, ConversationTurn(role="tool", content="deploy log", tool_call_id="c", name="x")
        )
        assert await store.search_workspace('"deploy"*', "ws1", "u1", 10) == []


class TestUsageStats:
    async def test_unknown_user_has_no_stats(self, store):
        assert await store.get_user_stats("nobody") is None
        assert await store.list_model_stats("nobody") == []

    async def test_cost_and_key_round_trip_on_turn(self, store):
        chat_id = await store.create_chat("u1")
        await store.append_turn(
            chat_id,
            ConversationTurn(role="assistant", content="a", cost=0.01, used_default_key=True),
        )
        turn = (await store.list_turns(chat_id))[0]
        assert turn.cost == 0.01
        assert turn.used_default_key is True

    async def test_totals_accumulate_per_user_and_model(self, store):
        await store.record_usage("u1", "m1", Usage(10, 5, cost=0.5), reasoning_chars=7)
        await store.record_usage("u1", "m1", Usage(2, 1, cost=0.25), used_default_key=True)
        await store.record_usage("u1", "m2", None)
        await store.record_usage("u2", "m1", Usage(100, 100, cost=1.0))

        stats = await store.get_user_stats("u1")
        assert stats.total_messages == 3
        assert stats.total_prompt_tokens == 12
        assert stats.total_completion_tokens == 6
        assert stats.total_cost == 0.75
        assert stats.total_reasoning_chars == 7
        assert (stats.default_key_tokens, stats.default_key_cost) == (3, 0.25)
        assert (stats.personal_key_tokens, stats.personal_key_cost) == (15, 0.5)

        models = await store.list_model_stats("u1")
        assert [(m.model, m.usage_count) for m in models] == [("m1", 2), ("m2", 1)]
        assert models[0].total_prompt_tokens == 12
