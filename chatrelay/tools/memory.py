"""Long-term user memory tools: ``add_memory`` and ``read_memories``."""

from __future__ import annotations

import logging

from chatrelay.store.base import MemoryStore
from chatrelay.tools.base import Tool, ToolContext, ToolKind
from chatrelay.tools.workspace import clamp

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "general"
NO_MEMORIES = "No memories found. You haven't saved any memories yet."


def normalize_category(category) -> str:
    cat = str(category or "").strip().lower()
    return cat or DEFAULT_CATEGORY


def stars(importance: int) -> str:
    filled = clamp(importance, 1, 5, 1)
    return "★" * filled + "☆" * (5 - filled)


class AddMemoryTool(Tool):
    def __init__(self, store: MemoryStore) -> None:
        self._store = store

    @property
    def kind(self) -> ToolKind:
        return ToolKind.ADD_MEMORY

    @property
    def description(self) -> str:
        return (
            "Save a fact about the user for future conversations "
            "(preferences, projects, personal details they share)"
        )

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "content": {"type": "string", "description": "The fact to remember"},
                "category": {
                    "type": "string",
                    "description": "Short category, e.g. preferences, work, personal",
                },
                "importance": {
                    "type": ["integer", "number", "string", "null"],
                    "description": "1 (trivia) to 5 (critical)",
                },
            },
            "required": ["content"],
        }

    async def execute(self, args: dict, ctx: ToolContext) -> str:
        if not ctx.user_id:
            return "Cannot save memories without a signed-in user."

        content = (args.get("content") or "").strip()
        if not content:
            return "Cannot save an empty memory. Please provide the content to remember."

        category = normalize_category(args.get("category"))
        importance = clamp(args.get("importance", 1), 1, 5, 1)

        memory_id = await self._store.add_memory(ctx.user_id, content, category, importance)
        logger.info("Saved memory %s for user %s", memory_id, ctx.user_id)
        return (
            f"Memory saved (id: {memory_id}, category: {category}, "
            f"importance: {importance}/5)."
        )


class ReadMemoriesTool(Tool):
    def __init__(self, store: MemoryStore) -> None:
        self._store = store

    @property
    def kind(self) -> ToolKind:
        return ToolKind.READ_MEMORIES

    @property
    def description(self) -> str:
        return "Recall saved facts about the user, optionally filtered by category or text"

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "category": {"type": "string", "description": "Exact category to filter by"},
                "query": {"type": "string", "description": "Text the memory must contain"},
                "limit": {"type": "integer", "description": "Maximum memories (1-50, default 10)"},
            },
        }

    async def execute(self, args: dict, ctx: ToolContext) -> str:
        if not ctx.user_id:
            return "Cannot read memories without a signed-in user."

        category = args.get("category")
        category = normalize_category(category) if category and str(category).strip() else None
        query = (args.get("query") or "").strip() or None
        limit = clamp(args.get("limit", 10), 1, 50, 10)

        memories = await self._store.list_memories(
            ctx.user_id, category=category, query=query, limit=limit
        )

        if not memories:
            if category and query:
                return f'No memories found in category "{category}" matching "{query}".'
            if category:
                return f'No memories found in category "{category}".'
            if query:
                return f'No memories found matching "{query}".'
            return NO_MEMORIES

        lines = [f"Found {len(memories)} memor{'y' if len(memories) == 1 else 'ies'}:", ""]
        for i, m in enumerate(memories, 1):
            lines.append(f"{i}. [{stars(m.importance)}] ({m.category}) {m.content}")
        return "\n".join(lines)
