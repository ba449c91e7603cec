"""Core types for the LLM streaming subsystem."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from chatrelay.types import Usage


class EventKind(Enum):
    CONTENT = "content"
    REASONING = "reasoning"
    TOOL_CALL_DELTA = "tool_call_delta"
    USAGE = "usage"
    FINISH = "finish"


@dataclass
class RawToolDelta:
    """
    An incremental fragment of a streamed tool call.

    ``slot_index`` is the provider-assigned position of the call; fragments
    for different slots may interleave.  ``args_delta`` is concatenated onto
    earlier fragments, never substituted for them.
    """

    slot_index: int
    id: str | None = None
    name: str | None = None
    args_delta: str = ""


@dataclass
class StreamEvent:
    """A single classified event produced by ``StreamDecoder``."""

    kind: EventKind
    text: str = ""
    delta: RawToolDelta | None = None
    usage: Usage | None = None
    finish_reason: str | None = None


@dataclass
class CompletedToolCall:
    """
    A tool call whose fragments have been fully assembled.

    When ``error`` is set the raw argument buffer did not parse into a JSON
    object; the call is still returned so it can be answered with an error
    result instead of being silently dropped.
    """

    id: str
    name: str
    arguments: dict = field(default_factory=dict)
    raw_arguments: str = ""
    error: str | None = None

    @property
    def malformed(self) -> bool:
        return self.error is not None

    def to_openai(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {
                "name": self.name,
                "arguments": self.raw_arguments
                if self.malformed
                else json.dumps(self.arguments),
            },
        }


@dataclass
class ChatRequest:
    model: str
    messages: list[dict[str, Any]]
    temperature: float | None = None
    tools: list[dict] | None = None
