from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


class ChatRelayError(Exception):
    """Base class for errors raised by chatrelay."""


class ConfigurationError(ChatRelayError):
    """No usable credential or setting; raised before a stream is opened."""


class UpstreamError(ChatRelayError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ChatNotFoundError(ChatRelayError):
    pass


@dataclass
class ToolResult:
    tool_call_id: str
    name: str
    content: str

    def to_dict(self) -> dict:
        return {
            "tool_call_id": self.tool_call_id,
            "name": self.name,
            "result": self.content,
        }


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cost: float = 0.0

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Usage:
        prompt = int(raw.get("prompt_tokens") or 0)
        completion = int(raw.get("completion_tokens") or 0)
        return cls(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=int(raw.get("total_tokens") or prompt + completion),
            cost=float(raw.get("cost") or 0.0),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
            "cost": self.cost,
        }


@dataclass
class ConversationTurn:
    """A persisted conversation entry. ``id`` and ``created_at`` are set by the store."""

    role: str  # "user", "assistant", "tool"
    content: str
    reasoning: str | None = None
    tool_calls: list[dict] | None = None
    tool_call_id: str | None = None
    name: str | None = None
    model: str | None = None
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    response_time_ms: int | None = None
    cost: float | None = None
    used_default_key: bool = False
    id: str | None = None
    created_at: datetime | None = None

    def to_wire(self) -> dict[str, Any]:
        """Render in the upstream chat-completion message shape."""
        m: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            m["tool_calls"] = self.tool_calls
        if self.tool_call_id:
            m["tool_call_id"] = self.tool_call_id
        if self.name:
            m["name"] = self.name
        return m


@dataclass
class ChatContext:
    chat_id: str
    user_id: str
    workspace_id: str | None = None
    system_prompt: str = ""
    prior_turns: list[ConversationTurn] = field(default_factory=list)
    memory_snippets: list[str] = field(default_factory=list)
    model: str | None = None
    temperature: float | None = None


@dataclass
class Memory:
    id: int
    content: str
    category: str = "general"
    importance: int = 1
    updated_at: datetime | None = None


@dataclass
class SearchHit:
    chat_id: str
    chat_title: str
    role: str
    content: str
    created_at: datetime | None = None


@dataclass
class UserStats:
    """Running usage totals for one user; kept apart from messages so they survive deletion."""

    user_id: str
    total_messages: int = 0
    total_prompt_tokens: int = 0
    total_completion_tokens: int = 0
    total_cost: float = 0.0
    total_reasoning_chars: int = 0
    default_key_tokens: int = 0
    default_key_cost: float = 0.0
    personal_key_tokens: int = 0
    personal_key_cost: float = 0.0


@dataclass
class ModelStats:
    model: str
    usage_count: int = 0
    total_prompt_tokens: int = 0
    total_completion_tokens: int = 0
    total_cost: float = 0.0
