"""LLM subsystem -- providers, stream decoding, and tool-call assembly."""

from chatrelay.llm.types import (
    ChatRequest,
    CompletedToolCall,
    EventKind,
    RawToolDelta,
    StreamEvent,
)
from chatrelay.llm.stream_decoder import StreamDecoder
from chatrelay.llm.tool_call_assembler import ToolCallAssembler

__all__ = [
    "ChatRequest",
    "CompletedToolCall",
    "EventKind",
    "RawToolDelta",
    "StreamDecoder",
    "StreamEvent",
    "ToolCallAssembler",
]
