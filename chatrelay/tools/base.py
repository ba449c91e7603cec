from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum


class ToolKind(Enum):
    """The closed set of tools the dispatcher knows how to run."""

    WEB_SEARCH = "web_search"
    WEB_FETCH = "web_fetch"
    CALCULATOR = "calculator"
    CODE_INTERPRETER = "code_interpreter"
    WORKSPACE_SEARCH = "workspace_search"
    ADD_MEMORY = "add_memory"
    READ_MEMORIES = "read_memories"

    @classmethod
    def lookup(cls, name: str) -> ToolKind | None:
        try:
            return cls(name)
        except ValueError:
            return None


@dataclass(frozen=True)
class ToolContext:
    """Who a tool runs for, and the workspace the chat belongs to (if any)."""

    user_id: str | None = None
    workspace_id: str | None = None


def normalize_schema(schema: dict) -> dict:
    s = dict(schema or {})
    s.setdefault("type", "object")
    s.setdefault("additionalProperties", False)
    return s


class Tool(ABC):
    @property
    @abstractmethod
    def kind(self) -> ToolKind: ...

    @property
    def name(self) -> str:
        return self.kind.value

    @property
    @abstractmethod
    def description(self) -> str: ...

    @property
    @abstractmethod
    def parameters(self) -> dict: ...

    @property
    def rate_limited(self) -> bool:
        """Whether calls draw from the per-user external-operation budget."""
        return False

    @abstractmethod
    async def execute(self, args: dict, ctx: ToolContext) -> str:
        """Run the tool and return model-readable text."""
        ...

    def to_openai_schema(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": normalize_schema(self.parameters),
            },
        }
