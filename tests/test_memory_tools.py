"""Tests for add_memory and read_memories."""

from __future__ import annotations

import pytest

from chatrelay.llm.types import CompletedToolCall
from chatrelay.store.sqlite import SQLiteStore
from chatrelay.tools.base import ToolContext
from chatrelay.tools.dispatcher import ToolDispatcher
from chatrelay.tools.memory import (
    NO_MEMORIES,
    AddMemoryTool,
    ReadMemoriesTool,
    normalize_category,
    stars,
)
from chatrelay.tools.registry import ToolRegistry

CTX = ToolContext(user_id="u1")


@pytest.fixture
async def store(tmp_path):
    s = SQLiteStore(str(tmp_path / "mem.db"))
    await s.init()
    yield s
    await s.close()


class TestHelpers:
    def test_normalize_category(self):
        assert normalize_category("  Work ") == "work"
        assert normalize_category("") == "general"
        assert normalize_category(None) == "general"

    def test_stars(self):
        assert stars(3) == "★★★☆☆"
        assert stars(9) == "★★★★★"
        assert stars(0) == "★☆☆☆☆"


class TestAddMemory:
    async def test_saves_with_defaults(self, store):
        out = await AddMemoryTool(store).execute({"content": "Likes green tea"}, CTX)
        assert out == "Memory saved (id: 1, category: general, importance: 1/5)."
        saved = await store.list_memories("u1")
        assert saved[0].content == "Likes green tea"

    @pytest.mark.parametrize("given, stored", [(99, 5), (0, 1), (-4, 1), (3, 3), ("4", 4), ("lots", 1)])
    async def test_importance_clamped(self, store, given, stored):
        await AddMemoryTool(store).execute({"content": "x", "importance": given}, CTX)
        assert (await store.list_memories("u1"))[0].importance == stored

    @pytest.mark.parametrize("given, stored", [("4", 4), (2.0, 2), (None, 1)])
    async def test_loose_importance_passes_dispatch(self, store, given, stored):
        registry = ToolRegistry()
        registry.register(AddMemoryTool(store))
        call = CompletedToolCall(
            id="c1", name="add_memory", arguments={"content": "x", "importance": given}
        )
        result = await ToolDispatcher(registry).dispatch(call, "u1")
        assert result.content.startswith("Memory saved")
        assert (await store.list_memories("u1"))[0].importance == stored

    async def test_category_normalised(self, store):
        out = await AddMemoryTool(store).execute(
            {"content": "Ships on Fridays", "category": " Work "}, CTX
        )
        assert "category: work" in out

    async def test_empty_content_rejected(self, store):
        out = await AddMemoryTool(store).execute({"content": "   "}, CTX)
        assert out.startswith("Cannot save an empty memory.")
        assert await store.list_memories("u1") == []

    async def test_requires_user(self, store):
        out = await AddMemoryTool(store).execute({"content": "x"}, ToolContext())
        assert out == "Cannot save memories without a signed-in user."


class TestReadMemories:
    async def test_no_memories_message(self, store):
        out = await ReadMemoriesTool(store).execute({}, CTX)
        assert out == "No memories found. You haven't saved any memories yet."
        assert out == NO_MEMORIES

    async def test_filtered_empty_messages(self, store):
        tool = ReadMemoriesTool(store)
        assert await tool.execute({"category": "work"}, CTX) == 'No memories found in category "work".'
        assert await tool.execute({"query": "cat"}, CTX) == 'No memories found matching "cat".'
        assert (
            await tool.execute({"category": "Work", "query": "cat"}, CTX)
            == 'No memories found in category "work" matching "cat".'
        )

    async def test_lists_by_importance(self, store):
        await store.add_memory("u1", "Has a cat", "personal", 2)
        await store.add_memory("u1", "Allergic to peanuts", "health", 5)
        out = await ReadMemoriesTool(store).execute({}, CTX)
        assert out == (
            "Found 2 memories:\n"
            "\n"
            "1. [★★★★★] (health) Allergic to peanuts\n"
            "2. [★★☆☆☆] (personal) Has a cat"
        )

    async def test_singular_heading(self, store):
        await store.add_memory("u1", "Has a cat", "personal", 2)
        out = await ReadMemoriesTool(store).execute({"query": "cat"}, CTX)
        assert out.startswith("Found 1 memory:")

    async def test_other_users_memories_hidden(self, store):
        await store.add_memory("u2", "secret", "general", 5)
        assert await ReadMemoriesTool(store).execute({}, CTX) == NO_MEMORIES

    async def test_limit_clamped(self, store):
        for i in range(3):
            await store.add_memory("u1", f"fact {i}", "general", 1)
        out = await ReadMemoriesTool(store).execute({"limit": 0}, CTX)
        assert out.startswith("Found 1 memory:")
