"""
OpenAI-compatible streaming chat-completion provider.

Works with any endpoint that speaks the OpenAI ``/v1/chat/completions`` wire
protocol -- OpenRouter, OpenAI itself, vLLM, LM Studio, etc.

Dependencies: ``httpx`` (async HTTP client).  No ``openai`` SDK needed.
Requests are never retried; a failed stream is reported to the caller.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import httpx

from chatrelay.llm.providers.base import Provider
from chatrelay.llm.types import ChatRequest
from chatrelay.types import UpstreamError

logger = logging.getLogger(__name__)


class OpenAICompatProvider(Provider):
    """
    Stream-capable provider for any OpenAI-API-compatible endpoint.

    Parameters
    ----------
    url:
        Base URL of the API, e.g. ``"https://openrouter.ai/api/v1"``.
    timeout:
        HTTP request timeout in seconds.
    include_usage:
        Ask the endpoint to append usage totals to the stream.
    extra_body:
        Additional top-level fields merged into every request body.
    transport:
        Optional ``httpx`` transport, used by tests.
    """

    def __init__(
        self,
        url: str = "https://openrouter.ai/api/v1",
        timeout: float = 120.0,
        include_usage: bool = True,
        extra_body: dict | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url.rstrip("/")
        self._timeout = timeout
        self._include_usage = include_usage
        self._extra_body = dict(extra_body or {})
        self._transport = transport

    @property
    def name(self) -> str:
        return "openai-compat"

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def _build_headers(self, api_key: str) -> dict[str, str]:
        headers: dict[str, str] = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        return headers

    def _build_body(self, request: ChatRequest) -> dict:
        body: dict = {
            "model": request.model,
            "messages": request.messages,
            "stream": True,
        }
        if request.temperature is not None:
            body["temperature"] = request.temperature
        if request.tools:
            body["tools"] = request.tools
        if self._include_usage:
            body["stream_options"] = {"include_usage": True}
        body.update(self._extra_body)
        logger.info(
            "REQUEST: model=%s tools=%d messages=%d",
            request.model,
            len(request.tools) if request.tools else 0,
            len(request.messages),
        )
        return body

    # ------------------------------------------------------------------
    # Streaming request
    # ------------------------------------------------------------------

    async def stream(
        self, request: ChatRequest, api_key: str
    ) -> AsyncIterator[dict[str, Any]]:
        url = f"{self._url}/chat/completions"
        body = self._build_body(request)
        headers = self._build_headers(api_key)

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                async with client.stream(
                    "POST", url, json=body, headers=headers
                ) as response:
                    if response.status_code >= 400:
                        detail = (await response.aread()).decode("utf-8", errors="replace")
                        raise UpstreamError(
                            f"Upstream returned HTTP {response.status_code}: {detail[:200]}",
                            status_code=response.status_code,
                        )
                    async for data in self._parse_sse_stream(response):
                        yield data
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Upstream request failed: {exc}") from exc

    async def _parse_sse_stream(
        self, response: httpx.Response
    ) -> AsyncIterator[dict[str, Any]]:
        """
        Parse Server-Sent Events from the response line by line.

        Each SSE event has the form::

            data: {json}\\n\\n

        The sentinel ``data: [DONE]`` terminates the stream.  Comment lines
        (``: keep-alive``) are ignored.  ``aiter_lines`` decodes incrementally,
        so a multi-byte character split across network reads stays intact.
        """
        async for line in response.aiter_lines():
            if not line.startswith("data:"):
                continue

            data_str = line[len("data:"):].strip()
            if data_str == "[DONE]":
                return

            try:
                data = json.loads(data_str)
            except json.JSONDecodeError:
                logger.warning("Failed to parse SSE data: %s", data_str[:200])
                continue

            if isinstance(data, dict) and data.get("error"):
                raise UpstreamError(f"Upstream error: {data['error']}")
            if isinstance(data, dict):
                yield data
