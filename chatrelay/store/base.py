"""
Interfaces the orchestrator and tools consume from the outside world.

The bundled ``SQLiteStore`` implements the three storage interfaces; hosts
embedding chatrelay in a larger application can supply their own.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from chatrelay.types import ChatContext, ConversationTurn, Memory, SearchHit, Usage


class ConversationStore(ABC):
    @abstractmethod
    async def load_context(self, chat_id: str) -> ChatContext:
        """
        Return system prompt, prior turns (oldest first) and memory snippets.

        Raises ``ChatNotFoundError`` for unknown chats.
        """
        ...

    @abstractmethod
    async def append_turn(self, chat_id: str, turn: ConversationTurn) -> str:
        """Persist *turn* and return its id."""
        ...

    @abstractmethod
    async def touch_chat(self, chat_id: str) -> None:
        """Refresh the chat's last-updated timestamp."""
        ...

    @abstractmethod
    async def record_usage(
        self,
        user_id: str,
        model: str,
        usage: Usage | None,
        *,
        reasoning_chars: int = 0,
        used_default_key: bool = False,
    ) -> None:
        """Add one completed assistant reply to the user and per-model totals."""
        ...


class MemoryStore(ABC):
    @abstractmethod
    async def add_memory(
        self, user_id: str, content: str, category: str, importance: int
    ) -> int: ...

    @abstractmethod
    async def list_memories(
        self,
        user_id: str,
        category: str | None = None,
        query: str | None = None,
        limit: int = 10,
    ) -> list[Memory]:
        """Memories ordered by importance (desc) then recency (desc)."""
        ...


class WorkspaceSearch(ABC):
    @abstractmethod
    async def search_workspace(
        self, match_query: str, workspace_id: str, user_id: str, limit: int
    ) -> list[SearchHit]:
        """Ranked full-text hits for *match_query* within one workspace."""
        ...


class CredentialProvider(ABC):
    @abstractmethod
    def get_api_credential(self, user_id: str) -> str | None: ...

    @abstractmethod
    def get_search_credential(self) -> str | None: ...

    def uses_default_credential(self, user_id: str) -> bool:
        """True when *user_id* has no personal key and runs on the shared one."""
        return False
