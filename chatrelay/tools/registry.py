from __future__ import annotations

from chatrelay.tools.base import Tool, ToolKind


class ToolRegistry:
    def __init__(self):
        self._tools: dict[ToolKind, Tool] = {}

    def register(self, tool: Tool, *, overwrite: bool = False) -> None:
        if tool.kind in self._tools and not overwrite:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.kind] = tool

    def unregister(self, kind: ToolKind) -> None:
        self._tools.pop(kind, None)

    def get(self, kind: ToolKind) -> Tool | None:
        return self._tools.get(kind)

    def resolve(self, name: str) -> Tool | None:
        """Look up a tool by its wire name; ``None`` for unknown names."""
        kind = ToolKind.lookup(name)
        if kind is None:
            return None
        return self.get(kind)

    def list(self) -> list[Tool]:
        return sorted(self._tools.values(), key=lambda t: t.name)

    def to_openai_schema(self) -> list[dict]:
        return [t.to_openai_schema() for t in self.list()]
