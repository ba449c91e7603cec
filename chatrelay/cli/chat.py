"""Interactive chat session handler."""

from __future__ import annotations

import asyncio

from rich.console import Console

from chatrelay.cli.output import OutputFormatter
from chatrelay.orchestrator.core import ConversationOrchestrator
from chatrelay.orchestrator.events import Emitter, TurnEvent
from chatrelay.store.sqlite import SQLiteStore
from chatrelay.types import ChatRelayError


class ConsoleEmitter(Emitter):
    """Renders turn events to the terminal as they arrive."""

    def __init__(self, formatter: OutputFormatter) -> None:
        self.formatter = formatter

    async def emit(self, event: TurnEvent) -> None:
        self.formatter.format_event(event)


class ChatHandler:
    """
    Manages the interactive chat loop for one chat.

    Handles streaming output and inline commands.
    """

    def __init__(
        self,
        orchestrator: ConversationOrchestrator,
        store: SQLiteStore,
        chat_id: str,
        user_id: str,
        console: Console | None = None,
        show_reasoning: bool = False,
    ) -> None:
        self.orchestrator = orchestrator
        self.store = store
        self.chat_id = chat_id
        self.user_id = user_id
        self.console = console or Console()
        self.formatter = OutputFormatter(self.console, show_reasoning=show_reasoning)
        self._running = True

    async def handle_command(self, command: str) -> bool:
        """
        Handle inline commands. Returns True if the command was handled.
        """
        cmd = command.strip().split(None, 1)[0].lower()

        if cmd == "/quit":
            self._running = False
            self.console.print("[dim]Goodbye.[/dim]")
            return True

        if cmd == "/history":
            self.formatter.format_history(await self.store.list_turns(self.chat_id))
            return True

        if cmd == "/tools":
            self.formatter.format_tool_list(self.orchestrator.dispatcher.registry.list())
            return True

        if cmd == "/memories":
            self.formatter.format_memories(await self.store.list_memories(self.user_id, limit=50))
            return True

        if cmd == "/help":
            self.console.print(
                "  [bold]Commands:[/bold]\n"
                "  /quit      - Exit the chat\n"
                "  /history   - Show this chat's messages\n"
                "  /tools     - List available tools\n"
                "  /memories  - Show saved memories\n"
                "  /help      - Show this help\n"
            )
            return True

        return False

    async def handle_input(self, user_input: str) -> None:
        """Run one turn through the orchestrator, streaming events to the console."""
        try:
            await self.orchestrator.run(
                self.chat_id, self.user_id, user_input, ConsoleEmitter(self.formatter)
            )
        except ChatRelayError as e:
            self.console.print(f"\n[red]Error:[/red] {e}")

    async def run_loop(self) -> None:
        """Main interactive loop."""
        self.console.print(
            "[bold]chatrelay[/bold]\n"
            f"[dim]Chat {self.chat_id}. Type /help for commands, /quit to exit.[/dim]\n"
        )

        while self._running:
            try:
                user_input = await asyncio.get_running_loop().run_in_executor(
                    None, lambda: input("you> ").strip()
                )
            except (EOFError, KeyboardInterrupt):
                self.console.print("\n[dim]Goodbye.[/dim]")
                break

            if not user_input:
                continue

            if user_input.startswith("/"):
                handled = await self.handle_command(user_input)
                if handled:
                    continue

            self.console.print("[dim]assistant>[/dim] ", end="")
            await self.handle_input(user_input)
