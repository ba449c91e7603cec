"""chatrelay -- streaming chat-completion orchestrator with tool dispatch."""

__version__ = "0.1.0"
