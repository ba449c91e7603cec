"""Persistence and credential interfaces, plus the bundled SQLite store."""

from chatrelay.store.base import (
    ConversationStore,
    CredentialProvider,
    MemoryStore,
    WorkspaceSearch,
)
from chatrelay.store.credentials import ConfigCredentials
from chatrelay.store.sqlite import SQLiteStore

__all__ = [
    "ConfigCredentials",
    "ConversationStore",
    "CredentialProvider",
    "MemoryStore",
    "SQLiteStore",
    "WorkspaceSearch",
]
