"""
Outbound turn events and the emitters that deliver them.

Every event the client sees is a ``TurnEvent``: a ``type`` tag plus a flat
JSON-compatible payload.  ``SSEEmitter`` frames them as Server-Sent Events::

    data: {"type": "content", "content": "Hel"}\\n\\n
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from chatrelay.llm.types import CompletedToolCall
from chatrelay.types import ToolResult, Usage


@dataclass
class TurnEvent:
    type: str
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, **self.payload}

    def to_sse(self) -> str:
        return f"data: {json.dumps(self.to_dict())}\n\n"


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

EVENT_CONTENT = "content"
EVENT_REASONING = "reasoning"
EVENT_USAGE = "usage"
EVENT_TOOL_CALLS = "tool_calls"
EVENT_TOOL_RESULT = "tool_result"
EVENT_DONE = "done"
EVENT_ERROR = "error"


# ---------------------------------------------------------------------------
# Factory helpers
# ---------------------------------------------------------------------------


def content_event(text: str) -> TurnEvent:
    return TurnEvent(EVENT_CONTENT, {"content": text})


def reasoning_event(text: str) -> TurnEvent:
    return TurnEvent(EVENT_REASONING, {"content": text})


def usage_event(usage: Usage) -> TurnEvent:
    return TurnEvent(EVENT_USAGE, {"usage": usage.to_dict()})


def tool_calls_event(calls: list[CompletedToolCall]) -> TurnEvent:
    return TurnEvent(EVENT_TOOL_CALLS, {"tool_calls": [c.to_openai() for c in calls]})


def tool_result_event(result: ToolResult) -> TurnEvent:
    return TurnEvent(EVENT_TOOL_RESULT, result.to_dict())


def done_event(message_id: str | None, usage: Usage | None, model: str) -> TurnEvent:
    return TurnEvent(
        EVENT_DONE,
        {
            "message_id": message_id,
            "usage": usage.to_dict() if usage else None,
            "model": model,
            "cost": usage.cost if usage else 0,
        },
    )


def error_event(message: str) -> TurnEvent:
    return TurnEvent(EVENT_ERROR, {"error": message})


# ---------------------------------------------------------------------------
# Emitters
# ---------------------------------------------------------------------------


class Emitter(ABC):
    @abstractmethod
    async def emit(self, event: TurnEvent) -> None: ...


class SSEEmitter(Emitter):
    """Writes SSE frames through an async ``write(str)`` callable."""

    def __init__(self, write: Callable[[str], Awaitable[None]]) -> None:
        self._write = write

    async def emit(self, event: TurnEvent) -> None:
        await self._write(event.to_sse())


class ListEmitter(Emitter):
    """Collects events in memory."""

    def __init__(self) -> None:
        self.events: list[TurnEvent] = []

    async def emit(self, event: TurnEvent) -> None:
        self.events.append(event)
