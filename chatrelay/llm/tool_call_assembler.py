"""
Assembles streaming tool-call deltas into ``CompletedToolCall`` objects.

Design goals:
  - Accumulate ``RawToolDelta`` fragments keyed by ``slot_index``.  Slots may
    interleave and need not be contiguous.
  - Argument fragments are appended in arrival order; the name is replaced
    whenever a fragment carries one.
  - ``finalize()`` parses every buffer.  A buffer that is not a JSON object
    becomes a *malformed* call (``error`` set) rather than an exception, so
    one bad call never hides its siblings.
"""

from __future__ import annotations

import json
import logging

from chatrelay.llm.types import CompletedToolCall, RawToolDelta

logger = logging.getLogger(__name__)


class ToolCallAssembler:
    """Buffers raw tool-call deltas for the lifetime of one assistant turn."""

    def __init__(self) -> None:
        self._buf: dict[int, dict] = {}
        self.errors: list[str] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def ingest(self, delta: RawToolDelta) -> None:
        buf = self._buf.get(delta.slot_index)
        if buf is None:
            buf = {"id": delta.id, "name": "", "args": ""}
            self._buf[delta.slot_index] = buf
        elif delta.id and not buf["id"]:
            buf["id"] = delta.id

        if delta.name:
            buf["name"] = delta.name

        if delta.args_delta:
            buf["args"] += delta.args_delta

    def finalize(self) -> list[CompletedToolCall]:
        """
        Return all buffered calls sorted by slot index and clear the table.
        """
        calls = [self._complete(idx, self._buf[idx]) for idx in sorted(self._buf)]
        self._buf.clear()
        return calls

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _complete(self, idx: int, buf: dict) -> CompletedToolCall:
        call_id = buf["id"] or f"call_{idx}"
        name = buf["name"].strip()
        raw_args = buf["args"]

        try:
            args = json.loads(raw_args or "{}")
        except (json.JSONDecodeError, ValueError) as exc:
            return self._malformed(idx, call_id, name, raw_args, str(exc))

        if not isinstance(args, dict):
            return self._malformed(
                idx, call_id, name, raw_args,
                f"expected a JSON object, got {type(args).__name__}",
            )

        return CompletedToolCall(
            id=call_id, name=name, arguments=args, raw_arguments=raw_args,
        )

    def _malformed(
        self, idx: int, call_id: str, name: str, raw_args: str, err: str
    ) -> CompletedToolCall:
        self.errors.append(f"tool_call_json_parse_failed idx={idx} err={err}")
        logger.warning("Malformed tool-call arguments for slot %d (%s): %s", idx, name, err)
        return CompletedToolCall(
            id=call_id, name=name, arguments={}, raw_arguments=raw_args, error=err,
        )
