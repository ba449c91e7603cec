"""
Tool dispatcher -- runs one completed tool call and always returns text.

Nothing raised by a handler crosses this boundary: malformed arguments,
unknown tools, schema violations and handler exceptions all become a
``ToolResult`` whose content explains what went wrong, so the model (or the
user) can decide what to do next.
"""

from __future__ import annotations

import logging
import time

import jsonschema

from chatrelay.llm.types import CompletedToolCall
from chatrelay.tools.base import Tool, ToolContext, normalize_schema
from chatrelay.tools.registry import ToolRegistry
from chatrelay.types import ToolResult

logger = logging.getLogger(__name__)


def validate_arguments(tool: Tool, arguments: dict) -> str | None:
    """Return a validation message, or ``None`` if *arguments* fit the schema."""
    try:
        jsonschema.validate(instance=arguments, schema=normalize_schema(tool.parameters))
    except jsonschema.ValidationError as e:
        return str(e.message)
    return None


class ToolDispatcher:
    def __init__(self, registry: ToolRegistry) -> None:
        self.registry = registry

    def schemas(self) -> list[dict]:
        return self.registry.to_openai_schema()

    async def dispatch(
        self,
        call: CompletedToolCall,
        user_id: str | None,
        scope: ToolContext | None = None,
    ) -> ToolResult:
        ctx = scope or ToolContext(user_id=user_id)
        if ctx.user_id is None and user_id is not None:
            ctx = ToolContext(user_id=user_id, workspace_id=ctx.workspace_id)

        def result(content: str) -> ToolResult:
            return ToolResult(tool_call_id=call.id, name=call.name, content=content)

        if call.malformed:
            return result(f"Error parsing arguments: {call.error}")

        tool = self.registry.resolve(call.name)
        if tool is None:
            logger.warning("Unknown tool requested: %r", call.name)
            return result(f"Unknown tool: {call.name}")

        error_msg = validate_arguments(tool, call.arguments)
        if error_msg is not None:
            return result(f"Invalid arguments for {call.name}: {error_msg}")

        start = time.monotonic()
        try:
            content = await tool.execute(call.arguments, ctx)
        except Exception as e:
            logger.exception("Tool %s failed", call.name)
            return result(f"Error executing {call.name}: {e}")

        logger.info(
            "Tool %s finished in %dms (%d chars)",
            call.name,
            int((time.monotonic() - start) * 1000),
            len(content),
        )
        return result(content)
