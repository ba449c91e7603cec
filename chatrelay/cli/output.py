"""Output formatting utilities for the CLI."""

from __future__ import annotations

import json
from datetime import datetime

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from chatrelay.orchestrator.events import (
    EVENT_CONTENT,
    EVENT_DONE,
    EVENT_ERROR,
    EVENT_REASONING,
    EVENT_TOOL_CALLS,
    EVENT_TOOL_RESULT,
    EVENT_USAGE,
    TurnEvent,
)
from chatrelay.tools.base import Tool
from chatrelay.tools.memory import stars
from chatrelay.types import ConversationTurn, Memory, ModelStats, UserStats

ROLE_COLORS = {
    "user": "blue",
    "assistant": "green",
    "tool": "cyan",
    "system": "dim",
}


class OutputFormatter:
    """Rich-based output formatting for the chatrelay CLI."""

    def __init__(self, console: Console | None = None, show_reasoning: bool = False) -> None:
        self.console = console or Console()
        self.show_reasoning = show_reasoning

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    def format_tool_list(self, tools: list[Tool]) -> None:
        table = Table(title="Registered Tools", show_lines=True)
        table.add_column("Name", style="cyan", no_wrap=True)
        table.add_column("Rate limited", no_wrap=True)
        table.add_column("Description")

        for t in tools:
            limited = Text("yes", style="yellow") if t.rate_limited else Text("no", style="green")
            table.add_row(t.name, limited, t.description)

        self.console.print(table)

    def format_tool_info(self, tool: Tool) -> None:
        self.console.print(Panel(
            f"[bold]{tool.name}[/bold]\n\n"
            f"[dim]Rate limited:[/dim] {'yes' if tool.rate_limited else 'no'}\n\n"
            f"{tool.description}",
            title=f"Tool: {tool.name}",
        ))
        schema_json = json.dumps(tool.to_openai_schema()["function"]["parameters"], indent=2)
        self.console.print(Syntax(schema_json, "json", theme="monokai"))

    # ------------------------------------------------------------------
    # Streaming turn events
    # ------------------------------------------------------------------

    def format_event(self, event: TurnEvent) -> None:
        p = event.payload
        if event.type == EVENT_CONTENT:
            self.console.print(p["content"], end="", markup=False, highlight=False)
        elif event.type == EVENT_REASONING:
            if self.show_reasoning:
                self.console.print(Text(p["content"], style="dim italic"), end="")
        elif event.type == EVENT_USAGE:
            pass
        elif event.type == EVENT_TOOL_CALLS:
            self.console.print()
            for call in p["tool_calls"]:
                fn = call["function"]
                self.console.print(Text.assemble(
                    ("  -> ", "yellow"), (fn["name"], "bold"), f"({fn['arguments'][:80]})"
                ))
        elif event.type == EVENT_TOOL_RESULT:
            self.console.print(Text.assemble(
                ("  [" + p["name"] + "] ", "cyan"), p["result"][:200]
            ))
        elif event.type == EVENT_DONE:
            self.console.print()
            usage = p.get("usage")
            if usage:
                self.console.print(
                    f"[dim]{p['model']} - {usage['prompt_tokens']} prompt / "
                    f"{usage['completion_tokens']} completion tokens[/dim]"
                )
        elif event.type == EVENT_ERROR:
            self.console.print(f"\n[red]Error:[/red] {p['error']}")

    # ------------------------------------------------------------------
    # Chats and history
    # ------------------------------------------------------------------

    def format_chat_list(self, chats: list[dict]) -> None:
        if not chats:
            self.console.print("[dim]No chats found.[/dim]")
            return

        table = Table(title="Chats")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Title")
        table.add_column("Workspace", no_wrap=True)
        table.add_column("Updated", no_wrap=True)

        for c in chats:
            table.add_row(
                c.get("id", "?"),
                c.get("title", ""),
                c.get("workspace_id") or "-",
                c.get("updated_at", "?"),
            )

        self.console.print(table)

    def format_history(self, turns: list[ConversationTurn]) -> None:
        if not turns:
            self.console.print("[dim]No messages.[/dim]")
            return

        for t in turns:
            ts = t.created_at.strftime("%H:%M:%S") if isinstance(t.created_at, datetime) else ""
            color = ROLE_COLORS.get(t.role, "white")
            if t.role == "tool":
                body = f"{t.name}: {t.content[:100]}"
            elif t.tool_calls:
                names = ", ".join(c["function"]["name"] for c in t.tool_calls)
                body = f"{t.content[:80]} [calls: {names}]"
            else:
                body = t.content[:100]
            self.console.print(f"  [{color}]{ts} {t.role:>9s}[/{color}]  ", end="")
            self.console.print(body, markup=False)

    # ------------------------------------------------------------------
    # Memories and config
    # ------------------------------------------------------------------

    def format_memories(self, memories: list[Memory]) -> None:
        if not memories:
            self.console.print("[dim]No memories saved.[/dim]")
            return

        table = Table(title="Memories")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Importance", no_wrap=True)
        table.add_column("Category", no_wrap=True)
        table.add_column("Content")

        for m in memories:
            table.add_row(str(m.id), stars(m.importance), m.category, m.content)

        self.console.print(table)

    def format_usage(self, stats: UserStats | None, models: list[ModelStats]) -> None:
        if stats is None:
            self.console.print("[dim]No usage recorded.[/dim]")
            return

        summary = Table(title=f"Usage for {stats.user_id}", show_header=False)
        summary.add_column("Metric", style="cyan")
        summary.add_column("Value", justify="right")
        summary.add_row("Replies", str(stats.total_messages))
        summary.add_row("Prompt tokens", f"{stats.total_prompt_tokens:,}")
        summary.add_row("Completion tokens", f"{stats.total_completion_tokens:,}")
        summary.add_row("Reasoning chars", f"{stats.total_reasoning_chars:,}")
        summary.add_row("Cost", f"${stats.total_cost:.4f}")
        summary.add_row(
            "Shared key", f"{stats.default_key_tokens:,} tok / ${stats.default_key_cost:.4f}"
        )
        summary.add_row(
            "Personal key", f"{stats.personal_key_tokens:,} tok / ${stats.personal_key_cost:.4f}"
        )
        self.console.print(summary)

        if not models:
            return
        table = Table(title="By model")
        table.add_column("Model", style="cyan")
        table.add_column("Replies", justify="right")
        table.add_column("Prompt", justify="right")
        table.add_column("Completion", justify="right")
        table.add_column("Cost", justify="right")
        for m in models:
            table.add_row(
                m.model,
                str(m.usage_count),
                f"{m.total_prompt_tokens:,}",
                f"{m.total_completion_tokens:,}",
                f"${m.total_cost:.4f}",
            )
        self.console.print(table)

    def format_config(self, config: dict) -> None:
        json_str = json.dumps(config, indent=2, default=str)
        self.console.print(Syntax(json_str, "json", theme="monokai"))
