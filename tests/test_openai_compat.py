"""Tests for OpenAICompatProvider using httpx.MockTransport."""

from __future__ import annotations

import json

import httpx
import pytest

from chatrelay.llm.providers.openai_compat import OpenAICompatProvider
from chatrelay.llm.types import ChatRequest
from chatrelay.types import UpstreamError


def _sse(*payloads) -> bytes:
    lines = []
    for p in payloads:
        lines.append(p if isinstance(p, str) else f"data: {json.dumps(p)}")
        lines.append("")
    return ("\n".join(lines) + "\n").encode()


class Capture:
    def __init__(self, status: int = 200, body: bytes = b"", exc: Exception | None = None):
        self.status = status
        self.body = body
        self.exc = exc
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.exc is not None:
            raise self.exc
        return httpx.Response(
            self.status, headers={"content-type": "text/event-stream"}, content=self.body
        )


REQUEST = ChatRequest(
    model="openai/gpt-4o-mini",
    messages=[{"role": "user", "content": "hi"}],
    temperature=0.3,
    tools=[{"type": "function", "function": {"name": "calculator", "parameters": {}}}],
)


async def _drain(provider, request=REQUEST, key="sk-test"):
    return [c async for c in provider.stream(request, key)]


class TestRequest:
    async def test_body_and_headers(self):
        cap = Capture(body=_sse("data: [DONE]"))
        provider = OpenAICompatProvider(
            url="https://upstream.test/v1/", extra_body={"provider": {"sort": "price"}},
            transport=httpx.MockTransport(cap),
        )
        await _drain(provider)

        req = cap.requests[0]
        assert str(req.url) == "https://upstream.test/v1/chat/completions"
        assert req.headers["Authorization"] == "Bearer sk-test"
        body = json.loads(req.content)
        assert body["model"] == "openai/gpt-4o-mini"
        assert body["stream"] is True
        assert body["temperature"] == 0.3
        assert body["tools"][0]["function"]["name"] == "calculator"
        assert body["stream_options"] == {"include_usage": True}
        assert body["provider"] == {"sort": "price"}

    async def test_optional_fields_omitted(self):
        cap = Capture(body=_sse("data: [DONE]"))
        provider = OpenAICompatProvider(include_usage=False, transport=httpx.MockTransport(cap))
        await _drain(provider, ChatRequest(model="m", messages=[]))
        body = json.loads(cap.requests[0].content)
        assert "temperature" not in body
        assert "tools" not in body
        assert "stream_options" not in body


class TestStreamParsing:
    async def test_yields_chunks_until_done(self):
        body = _sse(
            ": keep-alive",
            {"choices": [{"delta": {"content": "Hel"}}]},
            {"choices": [{"delta": {"content": "lo"}}]},
            "data: [DONE]",
            {"choices": [{"delta": {"content": "after done"}}]},
        )
        provider = OpenAICompatProvider(transport=httpx.MockTransport(Capture(body=body)))
        chunks = await _drain(provider)
        assert [c["choices"][0]["delta"]["content"] for c in chunks] == ["Hel", "lo"]

    async def test_bad_json_skipped(self):
        body = _sse("data: {not json", {"choices": []}, "data: [DONE]")
        provider = OpenAICompatProvider(transport=httpx.MockTransport(Capture(body=body)))
        assert await _drain(provider) == [{"choices": []}]

    async def test_crlf_lines(self):
        body = b'data: {"choices": []}\r\n\r\ndata: [DONE]\r\n\r\n'
        provider = OpenAICompatProvider(transport=httpx.MockTransport(Capture(body=body)))
        assert await _drain(provider) == [{"choices": []}]

    async def test_in_stream_error_raises(self):
        body = _sse({"error": {"message": "overloaded"}})
        provider = OpenAICompatProvider(transport=httpx.MockTransport(Capture(body=body)))
        with pytest.raises(UpstreamError, match="overloaded"):
            await _drain(provider)


class TestFailures:
    async def test_http_status_error(self):
        cap = Capture(status=401, body=b'{"error": "bad key"}')
        provider = OpenAICompatProvider(transport=httpx.MockTransport(cap))
        with pytest.raises(UpstreamError) as exc_info:
            await _drain(provider)
        assert exc_info.value.status_code == 401
        assert "bad key" in str(exc_info.value)

    async def test_transport_error_wrapped(self):
        cap = Capture(exc=httpx.ConnectError("refused"))
        provider = OpenAICompatProvider(transport=httpx.MockTransport(cap))
        with pytest.raises(UpstreamError, match="refused"):
            await _drain(provider)
        assert len(cap.requests) == 1


class TestChunkBoundaries:
    async def test_multibyte_character_split_across_reads(self):
        frame = 'data: {"choices": [{"delta": {"content": "héllo ✓"}}]}\n\ndata: [DONE]\n\n'.encode()
        cut = frame.index("✓".encode()) + 1

        async def pieces():
            yield frame[:cut]
            yield frame[cut:]

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200, headers={"content-type": "text/event-stream"}, content=pieces()
            )

        provider = OpenAICompatProvider(transport=httpx.MockTransport(handler))
        chunks = await _drain(provider)
        assert chunks[0]["choices"][0]["delta"]["content"] == "héllo ✓"

    async def test_frame_split_mid_line(self):
        frame = _sse({"choices": [{"delta": {"content": "joined"}}]}, "data: [DONE]")

        async def pieces():
            for i in range(0, len(frame), 7):
                yield frame[i:i + 7]

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=pieces())

        provider = OpenAICompatProvider(transport=httpx.MockTransport(handler))
        chunks = await _drain(provider)
        assert [c["choices"][0]["delta"]["content"] for c in chunks] == ["joined"]
