"""CLI entrypoint: a line-oriented chat REPL on top of the conversation engine."""

from __future__ import annotations

import argparse
import asyncio
from collections.abc import Sequence
from importlib import metadata
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .capabilities import Feature, available_models, capabilities_for, resolve_model
from .config import Config, ensure_config_dir, load_config
from .events.bus import Event, EventBus
from .events.domain import TURN_NARRATION
from .exceptions import GeminiChatError
from .logging_utils import configure_logging
from .managers import ConversationManager
from .observability import CompositeFailureSink, LoggingFailureSink, MemoryFailureSink
from .provider import GeminiClient
from .session import TurnStatus
from .triggers import SidePanelPayload

HELP_TEXT = """\
/new                 start a new conversation
/list                list open conversations
/switch <id>         make another conversation active
/model <id>          switch model (features it does not permit are cleared)
/mode <feature|none> select the single active mode
/temp <0.0-1.0>      set the temperature
/system <text>       set the custom system prompt (empty clears it)
/export              write a markdown transcript
/errors              show recent failures
/quit                exit"""


class ConsoleSidePanel:
    """Render side-panel payloads as a rich panel below the reply."""

    def __init__(self, console: Console) -> None:
        self.console = console

    def open(self, payload: SidePanelPayload) -> None:
        body = payload.url or payload.content or ""
        self.console.print(Panel(body, title=payload.title, border_style="cyan"))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gemini-chat",
        description="Gemini Chat - conversational front-end for Gemini models",
    )
    parser.add_argument("--version", action="store_true", help="Print version and exit")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.toml")
    parser.add_argument("--model", default=None, help="Model for the new conversation")
    parser.add_argument(
        "--conversation", default=None, help="Resume a persisted conversation id"
    )
    return parser


class ChatRepl:
    """Read lines, dispatch slash commands, and submit everything else."""

    def __init__(
        self,
        manager: ConversationManager,
        console: Console,
        errors: MemoryFailureSink,
    ) -> None:
        self.manager = manager
        self.console = console
        self.errors = errors
        self.active_id: str | None = None

    def on_narration(self, event: Event) -> None:
        narration = event.data["event"]
        if narration.conversation_id == self.active_id:
            self.console.print(f"[dim]{narration.narration}[/dim]")

    def _describe_active(self) -> str:
        session = self.manager.get(self.active_id)
        config = session.config
        caps = capabilities_for(config.model)
        features = ", ".join(sorted(f.value for f in config.features)) or "none"
        return f"{session.title} | {caps.display_name} | features: {features}"

    def _list(self) -> None:
        table = Table("id", "title", "model", "turns")
        for session in self.manager.list_conversations():
            marker = "*" if session.conversation_id == self.active_id else ""
            table.add_row(
                f"{marker}{session.conversation_id}",
                session.title,
                session.config.model.value,
                str(len(session.turns)),
            )
        self.console.print(table)

    def handle_command(self, line: str) -> bool:
        """Run a slash command; returns False when the REPL should exit."""
        command, _, argument = line[1:].partition(" ")
        argument = argument.strip()
        active = self.active_id

        if command in {"quit", "exit"}:
            return False
        if command == "help":
            self.console.print(HELP_TEXT)
        elif command == "new":
            self.active_id = self.manager.create_conversation().conversation_id
            self.console.print(f"[green]New conversation {self.active_id}[/green]")
        elif command == "list":
            self._list()
        elif command == "switch":
            self.active_id = self.manager.get(argument).conversation_id
            self.console.print(self._describe_active())
        elif command == "model":
            model = resolve_model(argument)
            cleared = self.manager.switch_model(active, model)
            if cleared:
                names = ", ".join(sorted(f.value for f in cleared))
                self.console.print(f"[yellow]Cleared unsupported features: {names}[/yellow]")
            self.console.print(self._describe_active())
        elif command == "mode":
            feature = None if argument in {"", "none"} else Feature(argument)
            if feature is not None and not self.manager.select_mode(active, feature):
                self.console.print(f"[yellow]{feature.value} is not available for this model[/yellow]")
            elif feature is None:
                self.manager.select_mode(active, None)
            self.console.print(self._describe_active())
        elif command == "temp":
            self.manager.set_temperature(active, float(argument))
        elif command == "system":
            self.manager.set_system_prompt(active, argument)
        elif command == "export":
            path = self.manager.export_markdown(active)
            self.console.print(f"Exported to {path}")
        elif command == "errors":
            for record in self.errors.records[-10:]:
                self.console.print(
                    f"{record.timestamp:%H:%M:%S} {record.conversation_id}/{record.turn_id} "
                    f"{record.error_type}: {record.error_message}"
                )
        else:
            self.console.print(f"[red]Unknown command /{command}[/red] (try /help)")
        return True

    async def run(self) -> None:
        self.console.print(f"[bold]{self._describe_active()}[/bold]  (/help for commands)")
        while True:
            try:
                line = await asyncio.to_thread(self.console.input, "[bold blue]> [/bold blue]")
            except (EOFError, KeyboardInterrupt):
                break
            line = line.strip()
            if not line:
                continue
            try:
                if line.startswith("/"):
                    if not self.handle_command(line):
                        break
                    continue
                outcome = await self.manager.send(self.active_id, line)
            except (GeminiChatError, ValueError) as exc:
                self.console.print(f"[red]{exc}[/red]")
                continue

            style = "red" if outcome.assistant_turn.status is TurnStatus.ERROR else "green"
            self.console.print(f"[{style}]{outcome.assistant_turn.content}[/{style}]")
            await self.manager.wait_for_background()


async def _run(config: Config, args: argparse.Namespace, console: Console) -> None:
    errors = MemoryFailureSink()
    bus = EventBus()
    async with GeminiClient(
        api_key=config.provider.api_key,
        base_url=config.provider.base_url,
        timeout=config.provider.timeout,
    ) as client:
        manager = ConversationManager.from_config(
            config,
            client,
            sink=CompositeFailureSink(LoggingFailureSink(), errors),
            event_bus=bus,
            presenter=ConsoleSidePanel(console),
        )
        manager.load_all()
        repl = ChatRepl(manager, console, errors)
        bus.subscribe(TURN_NARRATION, repl.on_narration)

        if args.conversation and args.conversation in {
            s.conversation_id for s in manager.list_conversations()
        }:
            repl.active_id = args.conversation
        else:
            if args.conversation:
                console.print(f"[yellow]Conversation {args.conversation!r} not found.[/yellow]")
            session = manager.create_conversation()
            if args.model:
                manager.switch_model(session.conversation_id, args.model)
            repl.active_id = session.conversation_id
        try:
            await repl.run()
        finally:
            await manager.close()


def main(argv: Sequence[str] | None = None) -> None:
    """Load configuration, configure logging and run the REPL."""
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.version:
        try:
            version = metadata.version("gemini-chat")
        except metadata.PackageNotFoundError:
            version = "0.0.0"
        print(f"gemini-chat {version}")
        return

    ensure_config_dir()
    config = load_config(args.config)
    configure_logging(config.logging.model_dump())
    console = Console()
    if not config.provider.api_key:
        console.print(
            "[red]No API key configured.[/red] Set provider.api_key in config.toml "
            "or the GEMINI_API_KEY environment variable."
        )
        raise SystemExit(2)
    if args.model and args.model.strip().lower() not in {m.value for m in available_models()}:
        console.print(f"[yellow]Unknown model {args.model!r}; using the restricted model.[/yellow]")
    asyncio.run(_run(config, args, console))


if __name__ == "__main__":
    main()
