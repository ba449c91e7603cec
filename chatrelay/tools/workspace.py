from __future__ import annotations

import re

from chatrelay.store.base import WorkspaceSearch
from chatrelay.tools.base import Tool, ToolContext, ToolKind

EXCERPT_CHARS = 200
DEFAULT_LIMIT = 5
MAX_LIMIT = 20

_UNSAFE_RE = re.compile(r"[^\w]", re.UNICODE)


def build_match_query(query: str) -> str:
    """
    Turn free text into a broad-recall full-text query.

    ``"deploy k8s-cluster"`` becomes ``"deploy"* OR "k8scluster"*``.
    Returns an empty string when no usable term remains.
    """
    terms = []
    for raw in query.split():
        term = _UNSAFE_RE.sub("", raw)
        if term:
            terms.append(f'"{term}"*')
    return " OR ".join(terms)


def clamp(value, low: int, high: int, default: int) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        return default
    return max(low, min(high, n))


def excerpt(text: str, length: int = EXCERPT_CHARS) -> str:
    flat = " ".join(text.split())
    if len(flat) <= length:
        return flat
    return flat[:length].rstrip() + "..."


class WorkspaceSearchTool(Tool):
    def __init__(self, search: WorkspaceSearch) -> None:
        self._search = search

    @property
    def kind(self) -> ToolKind:
        return ToolKind.WORKSPACE_SEARCH

    @property
    def description(self) -> str:
        return (
            "Search past conversations in the current workspace for relevant "
            "messages"
        )

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Words to search for"},
                "limit": {
                    "type": "integer",
                    "description": f"Maximum results (1-{MAX_LIMIT}, default {DEFAULT_LIMIT})",
                },
            },
            "required": ["query"],
        }

    async def execute(self, args: dict, ctx: ToolContext) -> str:
        if not ctx.user_id:
            return "Workspace search requires a signed-in user."
        if not ctx.workspace_id:
            return (
                "Workspace search is only available in chats that belong to a "
                "workspace. This chat is not part of a workspace."
            )

        query = args["query"]
        match_query = build_match_query(query)
        if not match_query:
            return "Please provide a search query with at least one word."

        limit = clamp(args.get("limit", DEFAULT_LIMIT), 1, MAX_LIMIT, DEFAULT_LIMIT)
        hits = await self._search.search_workspace(
            match_query, ctx.workspace_id, ctx.user_id, limit
        )
        if not hits:
            return f'No messages found in this workspace matching "{query}".'

        lines = [f'Found {len(hits)} result(s) in this workspace for "{query}":', ""]
        for i, hit in enumerate(hits, 1):
            date = hit.created_at.strftime("%b %d") if hit.created_at else "unknown date"
            lines.append(
                f"{i}. [{hit.chat_title or 'Untitled'}] {date} {hit.role}: "
                f"{excerpt(hit.content)}"
            )
        return "\n".join(lines)
