"""Abstract base class for upstream chat-completion providers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator

from chatrelay.llm.types import ChatRequest


class Provider(ABC):
    """
    A provider encapsulates access to a single streaming LLM endpoint.

    Implementations yield the raw chunk dicts of the upstream stream; they do
    not interpret deltas (that is ``StreamDecoder``'s job).  Transport or
    status failures are raised as ``UpstreamError``.
    """

    @abstractmethod
    async def stream(
        self, request: ChatRequest, api_key: str
    ) -> AsyncIterator[dict[str, Any]]:
        """Open the stream and yield raw chunk dicts until it closes."""
        ...
        # Make the method an async generator so sub-classes can ``yield``.
        if False:  # pragma: no cover
            yield {}

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable provider name (e.g. ``"openai-compat"``)."""
        ...
