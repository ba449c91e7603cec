"""End-to-end test: real provider over a mocked SSE transport, built-in tools, SQLite."""

from __future__ import annotations

import json

import httpx
import pytest

from chatrelay.config import ChatRelayConfig
from chatrelay.llm.providers.openai_compat import OpenAICompatProvider
from chatrelay.orchestrator.core import ConversationOrchestrator
from chatrelay.orchestrator.events import SSEEmitter
from chatrelay.store.credentials import ConfigCredentials
from chatrelay.store.sqlite import SQLiteStore
from chatrelay.tools.builtin import build_default_registry
from chatrelay.tools.dispatcher import ToolDispatcher
from chatrelay.tools.rate_limit import RateLimiter


def _sse_body(chunks: list[dict]) -> bytes:
    frames = [f"data: {json.dumps(c)}\n\n" for c in chunks]
    frames.append("data: [DONE]\n\n")
    return "".join(frames).encode()


class ScriptedUpstream:
    """Serves one scripted SSE body per request, in order."""

    def __init__(self, *bodies: list[dict]) -> None:
        self.bodies = list(bodies)
        self.requests: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        body = _sse_body(self.bodies.pop(0))
        return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body)


@pytest.fixture
async def full_stack(tmp_path):
    """Wire up the complete stack with a scripted upstream."""
    cfg = ChatRelayConfig()
    store = SQLiteStore(str(tmp_path / "e2e.db"))
    await store.init()
    credentials = ConfigCredentials(cfg, environ={"OPENROUTER_API_KEY": "sk-default"})
    registry = build_default_registry(
        credentials=credentials,
        rate_limiter=RateLimiter(),
        memory_store=store,
        workspace_search=store,
    )

    def make_orchestrator(upstream: ScriptedUpstream) -> ConversationOrchestrator:
        return ConversationOrchestrator(
            store=store,
            provider=OpenAICompatProvider(transport=httpx.MockTransport(upstream)),
            dispatcher=ToolDispatcher(registry),
            credentials=credentials,
            model=cfg.llm.model,
            temperature=cfg.llm.temperature,
        )

    yield store, make_orchestrator

    await store.close()


async def _run_sse(orch, chat_id: str, content: str) -> list[dict]:
    frames: list[str] = []

    async def write(frame: str) -> None:
        frames.append(frame)

    await orch.run(chat_id, "u1", content, SSEEmitter(write))
    assert all(f.startswith("data: ") and f.endswith("\n\n") for f in frames)
    return [json.loads(f[len("data: "):]) for f in frames]


class TestE2EMemoryRoundTrip:
    async def test_save_then_recall(self, full_stack):
        store, make_orchestrator = full_stack
        chat_id = await store.create_chat("u1", title="Me")

        upstream = ScriptedUpstream([
            {"choices": [{"delta": {"content": "Noted."}}]},
            {"choices": [{"delta": {"tool_calls": [{
                "index": 0, "id": "call_m",
                "function": {"name": "add_memory", "arguments": ""},
            }]}}]},
            {"choices": [{"delta": {"tool_calls": [{
                "index": 0,
                "function": {"arguments": '{"content": "Prefers Python", '},
            }]}}]},
            {"choices": [{"delta": {"tool_calls": [{
                "index": 0,
                "function": {"arguments": '"category": "Preferences", "importance": 4}'},
            }]}}]},
            {"choices": [{"delta": {}, "finish_reason": "tool_calls"}]},
            {"choices": [], "usage": {"prompt_tokens": 20, "completion_tokens": 8, "cost": 0.0002}},
        ])
        events = await _run_sse(make_orchestrator(upstream), chat_id, "I prefer Python")

        assert [e["type"] for e in events] == ["content", "usage", "tool_calls", "tool_result", "done"]
        assert events[3]["result"] == "Memory saved (id: 1, category: preferences, importance: 4/5)."
        assert events[4]["cost"] == 0.0002

        assistant = (await store.list_turns(chat_id))[1]
        assert assistant.cost == 0.0002
        assert assistant.used_default_key is True
        stats = await store.get_user_stats("u1")
        assert (stats.default_key_tokens, stats.personal_key_tokens) == (28, 0)

        sent = upstream.requests[0]
        assert sent["stream"] is True
        assert {t["function"]["name"] for t in sent["tools"]} >= {"add_memory", "read_memories"}

        # The next turn carries the memory as context and replays the tool round.
        follow_up = ScriptedUpstream([
            {"choices": [{"delta": {"content": "You like Python."}, "finish_reason": "stop"}]},
        ])
        events = await _run_sse(make_orchestrator(follow_up), chat_id, "What do I like?")
        assert [e["type"] for e in events] == ["content", "done"]

        messages = follow_up.requests[0]["messages"]
        assert messages[0] == {
            "role": "system", "content": "Previous context about the user:\nPrefers Python",
        }
        roles = [m["role"] for m in messages]
        assert roles == ["system", "user", "assistant", "tool", "user"]
        assert messages[3]["tool_call_id"] == "call_m"

    async def test_search_without_key_reports_configuration(self, full_stack):
        store, make_orchestrator = full_stack
        chat_id = await store.create_chat("u1")
        upstream = ScriptedUpstream([
            {"choices": [{"delta": {"tool_calls": [{
                "index": 0, "id": "call_w",
                "function": {"name": "web_search", "arguments": '{"query": "news"}'},
            }]}, "finish_reason": "tool_calls"}]},
        ])
        events = await _run_sse(make_orchestrator(upstream), chat_id, "any news?")
        assert events[1]["result"].startswith("Web search is not configured.")
