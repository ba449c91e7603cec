"""
Orchestrator core -- drives one user turn from request to ``done``.

For each turn the orchestrator:
1. Checks the caller has a usable upstream credential
2. Loads chat context (system prompt, prior turns, memory snippets)
3. Streams the upstream response, forwarding content/reasoning as it arrives
   and feeding tool-call fragments to the assembler
4. Persists the assistant turn exactly once and adds the reply to the
   per-user and per-model usage totals
5. Executes any assembled tool calls sequentially, persisting and forwarding
   each result before starting the next
6. Refreshes the chat timestamp and emits ``done``

Only one tool round runs per user turn: tool results are not sent back to
the model until the user's next message.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator

from chatrelay.llm.providers.base import Provider
from chatrelay.llm.stream_decoder import StreamDecoder
from chatrelay.llm.tool_call_assembler import ToolCallAssembler
from chatrelay.llm.types import ChatRequest, CompletedToolCall, EventKind
from chatrelay.orchestrator.events import (
    Emitter,
    TurnEvent,
    content_event,
    done_event,
    error_event,
    reasoning_event,
    tool_calls_event,
    tool_result_event,
    usage_event,
)
from chatrelay.store.base import ConversationStore, CredentialProvider
from chatrelay.tools.base import ToolContext
from chatrelay.tools.dispatcher import ToolDispatcher
from chatrelay.types import (
    ChatContext,
    ChatNotFoundError,
    ConfigurationError,
    ConversationTurn,
    UpstreamError,
    Usage,
)

logger = logging.getLogger(__name__)

MEMORY_HEADER = "Previous context about the user:"


class TurnState(Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    DISPATCHING = "dispatching"
    PERSISTED = "persisted"
    DONE = "done"
    ERRORED = "errored"


@dataclass
class TurnRecord:
    """Mutable bookkeeping for a single in-flight turn."""

    chat_id: str
    user_id: str
    state: TurnState = TurnState.IDLE
    content_parts: list[str] = field(default_factory=list)
    reasoning_parts: list[str] = field(default_factory=list)
    usage: Usage | None = None
    tool_calls: list[CompletedToolCall] = field(default_factory=list)
    message_id: str | None = None
    emitted: bool = False
    used_default_key: bool = False

    @property
    def content(self) -> str:
        return "".join(self.content_parts)

    @property
    def reasoning(self) -> str:
        return "".join(self.reasoning_parts)

    def transition(self, state: TurnState) -> None:
        logger.debug("turn chat=%s %s -> %s", self.chat_id, self.state.value, state.value)
        self.state = state


class ConversationOrchestrator:
    """
    Parameters
    ----------
    store : ConversationStore
        Source of chat context and sink for new turns.
    provider : Provider
        Upstream streaming chat-completion endpoint.
    dispatcher : ToolDispatcher
        Runs tool calls; its registry supplies the advertised tool schemas.
    credentials : CredentialProvider
        Resolves the upstream API key per user.
    model : str
        Model used when the chat does not pin one.
    temperature : float
        Temperature used when the chat does not pin one.
    """

    def __init__(
        self,
        store: ConversationStore,
        provider: Provider,
        dispatcher: ToolDispatcher,
        credentials: CredentialProvider,
        *,
        model: str,
        temperature: float | None = None,
    ) -> None:
        self.store = store
        self.provider = provider
        self.dispatcher = dispatcher
        self.credentials = credentials
        self.model = model
        self.temperature = temperature
        self.last_turn: TurnRecord | None = None

    @property
    def state(self) -> TurnState:
        """State of the most recent turn, ``IDLE`` before the first one."""
        return self.last_turn.state if self.last_turn else TurnState.IDLE

    async def run(
        self, chat_id: str, user_id: str, content: str, emitter: Emitter
    ) -> TurnRecord:
        """Drive ``handle_turn`` into *emitter*; returns the turn record."""
        async with aclosing(self.handle_turn(chat_id, user_id, content)) as events:
            async for event in events:
                await emitter.emit(event)
        assert self.last_turn is not None
        return self.last_turn

    async def handle_turn(
        self, chat_id: str, user_id: str, content: str
    ) -> AsyncIterator[TurnEvent]:
        """
        Process one user message and yield the client-facing events in order.

        Raises ``ConfigurationError``, ``ChatNotFoundError`` or
        ``UpstreamError`` before the first event when the turn cannot start;
        failures after output has begun are reported as an ``error`` event.
        """
        turn = TurnRecord(chat_id=chat_id, user_id=user_id)
        self.last_turn = turn

        api_key = self.credentials.get_api_credential(user_id)
        if not api_key:
            turn.transition(TurnState.ERRORED)
            raise ConfigurationError(
                "No API key configured. Set a personal API key or ask an "
                "administrator to enable the default key."
            )
        turn.used_default_key = self.credentials.uses_default_credential(user_id)

        ctx = await self.store.load_context(chat_id)
        if ctx.user_id != user_id:
            turn.transition(TurnState.ERRORED)
            raise ChatNotFoundError(f"Chat not found: {chat_id}")

        await self.store.append_turn(chat_id, ConversationTurn(role="user", content=content))

        model = ctx.model or self.model
        request = ChatRequest(
            model=model,
            messages=self.build_messages(ctx, content),
            temperature=ctx.temperature if ctx.temperature is not None else self.temperature,
            tools=self.dispatcher.schemas() or None,
        )

        # --- Streaming ---
        turn.transition(TurnState.STREAMING)
        assembler = ToolCallAssembler()
        start = time.monotonic()
        logger.info("Starting stream for chat=%s model=%s", chat_id, model)

        try:
            async with aclosing(
                StreamDecoder().decode(self.provider.stream(request, api_key))
            ) as stream:
                async for ev in stream:
                    if ev.kind is EventKind.CONTENT:
                        turn.content_parts.append(ev.text)
                        turn.emitted = True
                        yield content_event(ev.text)
                    elif ev.kind is EventKind.REASONING:
                        turn.reasoning_parts.append(ev.text)
                        turn.emitted = True
                        yield reasoning_event(ev.text)
                    elif ev.kind is EventKind.TOOL_CALL_DELTA:
                        assembler.ingest(ev.delta)
                    elif ev.kind is EventKind.USAGE:
                        turn.usage = ev.usage
                        turn.emitted = True
                        yield usage_event(ev.usage)
                    elif ev.kind is EventKind.FINISH:
                        break
        except (GeneratorExit, asyncio.CancelledError):
            logger.info("Client went away mid-stream for chat=%s; skipping dispatch", chat_id)
            turn.transition(TurnState.ERRORED)
            await self._persist_assistant(turn, model, start, include_tools=False)
            raise
        except Exception as exc:
            turn.transition(TurnState.ERRORED)
            if not turn.emitted:
                logger.error("Upstream failed before output for chat=%s: %s", chat_id, exc)
                if isinstance(exc, UpstreamError):
                    raise
                raise UpstreamError(str(exc)) from exc
            logger.exception("Upstream failed mid-stream for chat=%s", chat_id)
            await self._persist_assistant(turn, model, start, include_tools=False)
            await self.store.touch_chat(chat_id)
            yield error_event(str(exc))
            return

        # --- Finalizing ---
        turn.transition(TurnState.FINALIZING)
        turn.tool_calls = assembler.finalize()
        await self._persist_assistant(turn, model, start, include_tools=True)
        await self.store.record_usage(
            user_id,
            model,
            turn.usage,
            reasoning_chars=len(turn.reasoning),
            used_default_key=turn.used_default_key,
        )
        logger.info(
            "Stream complete for chat=%s: %d reasoning chars, %d content chars, %d tool calls",
            chat_id, len(turn.reasoning), len(turn.content), len(turn.tool_calls),
        )

        # --- Dispatching ---
        if turn.tool_calls:
            turn.transition(TurnState.DISPATCHING)
            yield tool_calls_event(turn.tool_calls)
            scope = ToolContext(user_id=user_id, workspace_id=ctx.workspace_id)
            for call in turn.tool_calls:
                result = await self.dispatcher.dispatch(call, user_id, scope)
                await self.store.append_turn(
                    chat_id,
                    ConversationTurn(
                        role="tool",
                        content=result.content,
                        tool_call_id=result.tool_call_id,
                        name=result.name,
                    ),
                )
                yield tool_result_event(result)

        # --- Persisted / Done ---
        await self.store.touch_chat(chat_id)
        turn.transition(TurnState.PERSISTED)
        yield done_event(turn.message_id, turn.usage, model)
        turn.transition(TurnState.DONE)

    def build_messages(self, ctx: ChatContext, user_content: str) -> list[dict[str, Any]]:
        """Assemble the upstream message list for this turn."""
        messages: list[dict[str, Any]] = []
        if ctx.system_prompt:
            messages.append({"role": "system", "content": ctx.system_prompt})
        if ctx.memory_snippets:
            messages.append({
                "role": "system",
                "content": MEMORY_HEADER + "\n" + "\n".join(ctx.memory_snippets),
            })
        # calls whose round was cut short have no tool turn; upstream rejects those
        answered = {t.tool_call_id for t in ctx.prior_turns if t.role == "tool"}
        for turn in ctx.prior_turns:
            m = turn.to_wire()
            if "tool_calls" in m:
                calls = [c for c in m["tool_calls"] if c.get("id") in answered]
                if calls:
                    m["tool_calls"] = calls
                else:
                    del m["tool_calls"]
            messages.append(m)
        messages.append({"role": "user", "content": user_content})
        return messages

    async def _persist_assistant(
        self, turn: TurnRecord, model: str, start: float, *, include_tools: bool
    ) -> None:
        if turn.message_id is not None:
            return
        calls = turn.tool_calls if include_tools else []
        assistant = ConversationTurn(
            role="assistant",
            content=turn.content,
            reasoning=turn.reasoning or None,
            tool_calls=[c.to_openai() for c in calls] or None,
            model=model,
            prompt_tokens=turn.usage.prompt_tokens if turn.usage else None,
            completion_tokens=turn.usage.completion_tokens if turn.usage else None,
            response_time_ms=int((time.monotonic() - start) * 1000),
            cost=turn.usage.cost if turn.usage else None,
            used_default_key=turn.used_default_key,
        )
        turn.message_id = await self.store.append_turn(turn.chat_id, assistant)
