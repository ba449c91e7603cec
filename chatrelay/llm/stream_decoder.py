"""
Classifies raw provider chunks into ``StreamEvent`` objects.

Chunks follow the OpenAI chat-completion streaming shape::

    {"choices": [{"delta": {...}, "finish_reason": null}], "usage": {...}}

Reasoning text arrives under different field names depending on the
provider; all of them are normalised into ``EventKind.REASONING`` here.
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterable, AsyncIterator

from chatrelay.llm.types import EventKind, RawToolDelta, StreamEvent
from chatrelay.types import Usage

logger = logging.getLogger(__name__)

REASONING_FIELDS = ("reasoning_content", "reasoning", "thought")


class StreamDecoder:
    """
    Single-use decoder for one upstream stream.

    After a finish reason is seen the decoder ignores further deltas but keeps
    reading so a trailing usage-only chunk is still captured; ``finish`` is
    emitted once the upstream closes.
    """

    def __init__(self) -> None:
        self._used = False
        self.finish_reason: str | None = None

    async def decode(
        self, chunks: AsyncIterable[dict[str, Any]]
    ) -> AsyncIterator[StreamEvent]:
        if self._used:
            raise RuntimeError("StreamDecoder is single-use; create a new one per turn")
        self._used = True

        finished = False
        try:
            async for chunk in chunks:
                usage = chunk.get("usage")
                choices = chunk.get("choices") or []
                choice = choices[0] if choices else {}
                delta = choice.get("delta")

                if not delta and not usage and not choice.get("finish_reason"):
                    continue

                if finished:
                    if usage:
                        yield StreamEvent(EventKind.USAGE, usage=Usage.from_dict(usage))
                    continue

                if delta:
                    for event in self._classify_delta(delta):
                        yield event

                if usage:
                    yield StreamEvent(EventKind.USAGE, usage=Usage.from_dict(usage))

                if choice.get("finish_reason"):
                    self.finish_reason = choice["finish_reason"]
                    finished = True
        finally:
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()

        if not finished:
            logger.debug("Upstream closed without a finish reason")
        yield StreamEvent(EventKind.FINISH, finish_reason=self.finish_reason)

    @staticmethod
    def _classify_delta(delta: dict[str, Any]) -> list[StreamEvent]:
        events: list[StreamEvent] = []

        for key in REASONING_FIELDS:
            text = delta.get(key)
            if text and isinstance(text, str):
                events.append(StreamEvent(EventKind.REASONING, text=text))
                break

        content = delta.get("content")
        if content:
            events.append(StreamEvent(EventKind.CONTENT, text=content))

        for raw_tc in delta.get("tool_calls") or []:
            slot = _slot_index(raw_tc.get("index"))
            if slot is None:
                logger.warning("Dropping tool-call fragment with index %r", raw_tc.get("index"))
                continue
            func = raw_tc.get("function") or {}
            events.append(
                StreamEvent(
                    EventKind.TOOL_CALL_DELTA,
                    delta=RawToolDelta(
                        slot_index=slot,
                        id=raw_tc.get("id"),
                        name=func.get("name") or None,
                        args_delta=func.get("arguments") or "",
                    ),
                )
            )

        return events


def _slot_index(value: Any) -> int | None:
    """
    Normalise a tool-call ``index``.

    Missing or ``null`` means slot 0 (single-call relays omit it); integral
    strings are accepted; anything else is unusable and yields ``None``.
    """
    if value is None:
        return 0
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value)
    return None
