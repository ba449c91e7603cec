from __future__ import annotations

import logging

from chatrelay.config import ToolsConfig
from chatrelay.store.base import CredentialProvider, MemoryStore, WorkspaceSearch
from chatrelay.tools.base import ToolKind
from chatrelay.tools.calculator import CalculatorTool
from chatrelay.tools.code_interpreter import CodeInterpreterTool
from chatrelay.tools.memory import AddMemoryTool, ReadMemoriesTool
from chatrelay.tools.rate_limit import RateLimiter
from chatrelay.tools.registry import ToolRegistry
from chatrelay.tools.web import WebFetchTool, WebSearchTool
from chatrelay.tools.workspace import WorkspaceSearchTool

logger = logging.getLogger(__name__)


def build_default_registry(
    *,
    credentials: CredentialProvider,
    rate_limiter: RateLimiter,
    memory_store: MemoryStore,
    workspace_search: WorkspaceSearch,
    config: ToolsConfig | None = None,
) -> ToolRegistry:
    """Register every built-in tool, minus those listed in ``config.disabled``."""
    cfg = config or ToolsConfig()
    registry = ToolRegistry()
    registry.register(
        WebSearchTool(credentials, rate_limiter, max_results=cfg.search_max_results)
    )
    registry.register(
        WebFetchTool(
            rate_limiter,
            timeout=cfg.fetch_timeout_seconds,
            max_chars=cfg.fetch_max_chars,
        )
    )
    registry.register(CalculatorTool())
    registry.register(CodeInterpreterTool())
    registry.register(WorkspaceSearchTool(workspace_search))
    registry.register(AddMemoryTool(memory_store))
    registry.register(ReadMemoriesTool(memory_store))

    for name in cfg.disabled:
        kind = ToolKind.lookup(name)
        if kind is None:
            logger.warning("Ignoring unknown tool in tools.disabled: %s", name)
            continue
        registry.unregister(kind)

    return registry
