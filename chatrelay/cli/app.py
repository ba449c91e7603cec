"""
Main CLI application for chatrelay.

Usage:
    chatrelay chat [--chat ID] [--user ID] [--workspace ID] [--profile NAME]
    chatrelay send MESSAGE --chat ID [--user ID] [--sse]
    chatrelay chats list|create|history
    chatrelay memories list|add
    chatrelay stats [--user ID]
    chatrelay tools list|info
    chatrelay config show|validate|set-prompt
    chatrelay version
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from chatrelay import __version__
from chatrelay.config import ChatRelayConfig, load_config

app = typer.Typer(name="chatrelay", help="chatrelay - streaming chat relay with tool calling")
chats_app = typer.Typer(help="Chat management")
memories_app = typer.Typer(help="Long-term memory management")
tools_app = typer.Typer(help="Tool management")
config_app = typer.Typer(help="Configuration management")

app.add_typer(chats_app, name="chats")
app.add_typer(memories_app, name="memories")
app.add_typer(tools_app, name="tools")
app.add_typer(config_app, name="config")

console = Console()

DEFAULT_USER = "local"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_config_path() -> Path | None:
    """Find config file in standard locations."""
    candidates = [
        Path.cwd() / "chatrelay.yaml",
        Path.cwd() / "chatrelay.yml",
        Path.home() / ".config" / "chatrelay" / "config.yaml",
        Path.home() / ".chatrelay" / "config.yaml",
    ]
    for p in candidates:
        if p.is_file():
            return p
    return None


async def _open_store(cfg: ChatRelayConfig):
    from chatrelay.store.sqlite import SQLiteStore

    store = SQLiteStore(cfg.storage.db_path, cfg.storage.memory_context_limit)
    await store.init()
    return store


def _build_registry(cfg: ChatRelayConfig, store):
    from chatrelay.store.credentials import ConfigCredentials
    from chatrelay.tools.builtin import build_default_registry
    from chatrelay.tools.rate_limit import RateLimiter

    return build_default_registry(
        credentials=ConfigCredentials(cfg),
        rate_limiter=RateLimiter(cfg.rate_limit.max_requests, cfg.rate_limit.window_seconds),
        memory_store=store,
        workspace_search=store,
        config=cfg.tools,
    )


async def _setup_stack(profile: str | None = None):
    """Wire up store, tools, provider and orchestrator."""
    from chatrelay.llm.providers.openai_compat import OpenAICompatProvider
    from chatrelay.orchestrator.core import ConversationOrchestrator
    from chatrelay.store.credentials import ConfigCredentials
    from chatrelay.tools.dispatcher import ToolDispatcher

    cfg = load_config(_get_config_path(), profile=profile)
    store = await _open_store(cfg)

    provider = OpenAICompatProvider(
        url=cfg.llm.api_base,
        timeout=float(cfg.llm.timeout_seconds),
        include_usage=cfg.llm.include_usage,
        extra_body=cfg.llm.extra,
    )
    orchestrator = ConversationOrchestrator(
        store=store,
        provider=provider,
        dispatcher=ToolDispatcher(_build_registry(cfg, store)),
        credentials=ConfigCredentials(cfg),
        model=cfg.llm.model,
        temperature=cfg.llm.temperature,
    )
    return orchestrator, store


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.callback()
def _main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def chat(
    chat_id: Optional[str] = typer.Option(None, "--chat", help="Resume chat ID"),
    user: str = typer.Option(DEFAULT_USER, help="User ID"),
    workspace: Optional[str] = typer.Option(None, help="Workspace for a new chat"),
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
    reasoning: bool = typer.Option(False, "--reasoning", help="Show reasoning text"),
):
    """Start an interactive chat."""
    from chatrelay.cli.chat import ChatHandler

    async def _run():
        orchestrator, store = await _setup_stack(profile)
        try:
            cid = chat_id or await store.create_chat(user, workspace_id=workspace)
            handler = ChatHandler(
                orchestrator, store, cid, user, console=console, show_reasoning=reasoning
            )
            await handler.run_loop()
        finally:
            await store.close()

    asyncio.run(_run())


@app.command()
def send(
    message: str = typer.Argument(..., help="Message text"),
    chat_id: str = typer.Option(..., "--chat", help="Chat ID"),
    user: str = typer.Option(DEFAULT_USER, help="User ID"),
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
    sse: bool = typer.Option(False, "--sse", help="Write raw SSE frames to stdout"),
):
    """Send one message and stream the reply."""
    from chatrelay.cli.chat import ConsoleEmitter
    from chatrelay.cli.output import OutputFormatter
    from chatrelay.orchestrator.events import SSEEmitter
    from chatrelay.types import ChatRelayError

    async def _write(frame: str) -> None:
        sys.stdout.write(frame)
        sys.stdout.flush()

    async def _run():
        orchestrator, store = await _setup_stack(profile)
        try:
            emitter = SSEEmitter(_write) if sse else ConsoleEmitter(OutputFormatter(console))
            await orchestrator.run(chat_id, user, message, emitter)
        finally:
            await store.close()

    try:
        asyncio.run(_run())
    except ChatRelayError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


@chats_app.command("list")
def chats_list(user: str = typer.Option(DEFAULT_USER, help="User ID")):
    """List a user's chats."""
    from chatrelay.cli.output import OutputFormatter

    async def _run():
        store = await _open_store(load_config(_get_config_path()))
        try:
            OutputFormatter(console).format_chat_list(await store.list_chats(user))
        finally:
            await store.close()

    asyncio.run(_run())


@chats_app.command("create")
def chats_create(
    user: str = typer.Option(DEFAULT_USER, help="User ID"),
    title: str = typer.Option("New Chat", help="Chat title"),
    workspace: Optional[str] = typer.Option(None, help="Workspace ID"),
    system_prompt: str = typer.Option("", "--system-prompt", help="Chat-level system prompt"),
    model: Optional[str] = typer.Option(None, help="Pin a model for this chat"),
):
    """Create a chat and print its ID."""

    async def _run():
        store = await _open_store(load_config(_get_config_path()))
        try:
            chat_id = await store.create_chat(
                user, title=title, workspace_id=workspace,
                system_prompt=system_prompt, model=model,
            )
            console.print(chat_id)
        finally:
            await store.close()

    asyncio.run(_run())


@chats_app.command("history")
def chats_history(chat_id: str = typer.Argument(..., help="Chat ID")):
    """Show a chat's messages."""
    from chatrelay.cli.output import OutputFormatter

    async def _run():
        store = await _open_store(load_config(_get_config_path()))
        try:
            OutputFormatter(console).format_history(await store.list_turns(chat_id))
        finally:
            await store.close()

    asyncio.run(_run())


@app.command()
def stats(user: str = typer.Option(DEFAULT_USER, help="User ID")):
    """Show token and cost totals for a user."""
    from chatrelay.cli.output import OutputFormatter

    async def _run():
        store = await _open_store(load_config(_get_config_path()))
        try:
            totals = await store.get_user_stats(user)
            models = await store.list_model_stats(user)
            OutputFormatter(console).format_usage(totals, models)
        finally:
            await store.close()

    asyncio.run(_run())


@memories_app.command("list")
def memories_list(
    user: str = typer.Option(DEFAULT_USER, help="User ID"),
    category: Optional[str] = typer.Option(None, help="Category filter"),
    query: Optional[str] = typer.Option(None, help="Substring filter"),
    limit: int = typer.Option(50, help="Maximum rows"),
):
    """List saved memories, most important first."""
    from chatrelay.cli.output import OutputFormatter

    async def _run():
        store = await _open_store(load_config(_get_config_path()))
        try:
            memories = await store.list_memories(user, category=category, query=query, limit=limit)
            OutputFormatter(console).format_memories(memories)
        finally:
            await store.close()

    asyncio.run(_run())


@memories_app.command("add")
def memories_add(
    content: str = typer.Argument(..., help="Fact to remember"),
    user: str = typer.Option(DEFAULT_USER, help="User ID"),
    category: str = typer.Option("general", help="Category"),
    importance: int = typer.Option(1, min=1, max=5, help="Importance 1-5"),
):
    """Save a memory directly."""
    from chatrelay.tools.memory import normalize_category

    async def _run():
        store = await _open_store(load_config(_get_config_path()))
        try:
            mem_id = await store.add_memory(user, content, normalize_category(category), importance)
            console.print(f"Saved memory {mem_id}")
        finally:
            await store.close()

    asyncio.run(_run())


@tools_app.command("list")
def tools_list():
    """List enabled tools."""
    from chatrelay.cli.output import OutputFormatter
    from chatrelay.store.sqlite import SQLiteStore

    cfg = load_config(_get_config_path())
    registry = _build_registry(cfg, SQLiteStore(":memory:"))
    OutputFormatter(console).format_tool_list(registry.list())


@tools_app.command("info")
def tools_info(tool_name: str = typer.Argument(..., help="Tool name")):
    """Show tool details and schema."""
    from chatrelay.cli.output import OutputFormatter
    from chatrelay.store.sqlite import SQLiteStore

    cfg = load_config(_get_config_path())
    tool = _build_registry(cfg, SQLiteStore(":memory:")).resolve(tool_name)
    if not tool:
        console.print(f"[red]Tool not found:[/red] {tool_name}")
        raise typer.Exit(1)

    OutputFormatter(console).format_tool_info(tool)


@config_app.command("show")
def config_show():
    """Show effective config."""
    from chatrelay.cli.output import OutputFormatter

    cfg = load_config(_get_config_path())
    OutputFormatter(console).format_config(cfg.to_dict())


@config_app.command("validate")
def config_validate():
    """Validate config and report which keys are available."""
    import os

    config_path = _get_config_path()
    try:
        cfg = load_config(config_path)
    except Exception as e:
        console.print(f"[red]Config validation failed:[/red] {e}")
        raise typer.Exit(1)

    console.print("[green]Config is valid.[/green]")
    if config_path:
        console.print(f"  Loaded from: {config_path}")
    else:
        console.print("  [dim]No config file found, using defaults.[/dim]")
    console.print(f"  Upstream: {cfg.llm.api_base} ({cfg.llm.model})")
    has_key = bool(os.environ.get(cfg.llm.api_key_env))
    console.print(f"  Default key ({cfg.llm.api_key_env}): {'set' if has_key else 'missing'}")
    has_search = bool(os.environ.get(cfg.credentials.search_api_key_env))
    console.print(
        f"  Search key ({cfg.credentials.search_api_key_env}): {'set' if has_search else 'missing'}"
    )
    console.print(f"  Disabled tools: {cfg.tools.disabled or 'none'}")


@config_app.command("set-prompt")
def config_set_prompt(prompt: str = typer.Argument(..., help="Global system prompt")):
    """Set the global system prompt prepended to every chat."""
    from chatrelay.store.sqlite import GLOBAL_SYSTEM_PROMPT_KEY

    async def _run():
        store = await _open_store(load_config(_get_config_path()))
        try:
            await store.set_setting(GLOBAL_SYSTEM_PROMPT_KEY, prompt)
        finally:
            await store.close()

    asyncio.run(_run())
    console.print("Global system prompt updated.")


@app.command()
def version():
    """Show version."""
    console.print(f"chatrelay v{__version__}")


def main():
    app()


if __name__ == "__main__":
    main()
