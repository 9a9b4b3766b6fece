#!/usr/bin/env python3

from __future__ import annotations
import asyncio
from pathlib import Path
from typing import List, Optional

import typer
from aioconsole import ainput
from rich.console import Console
from rich.markup import escape

from broker_client.display import TextDisplay
from broker_client.ws_client import BrokerSession
from broker_shared.config import BrokerConfig, ConfigError, load_config
from broker_shared.log import configure_root_logging, get_logger
from broker_shared.topics import ReservedTopic

app = typer.Typer(help="Topic broker client")
console = Console()
logger = get_logger(__name__)

HELP_TEXT = "/send <topic> <payload>, /show, /id, /help, /quit"


def _load(config_file: Optional[Path]) -> BrokerConfig:
    try:
        return load_config(config_file)
    except ConfigError as e:
        console.print(f"[red]Config error[/]: {e}")
        raise typer.Exit(code=2)


async def handle_line(session: BrokerSession, display: TextDisplay, line: str) -> bool:
    """
    Execute one console command.

    Returns:
        False when the user asked to quit, True otherwise
    """
    line = line.strip()
    if not line:
        return True
    if line in {"/quit", "/exit"}:
        return False
    if line == "/help":
        console.print(HELP_TEXT)
        return True
    if line == "/show":
        console.print(display.render())
        return True
    if line == "/id":
        console.print(f"broker_id: {session.broker_id or '<unassigned>'}")
        return True
    if line.startswith("/send "):
        parts = line.split(" ", 2)
        if len(parts) < 3:
            console.print("Usage: /send <topic> <payload>")
            return True
        await session.send(parts[1], parts[2])
        return True
    console.print(f"Unknown command. Try {HELP_TEXT}")
    return True


@app.command()
def run(
    url: Optional[str] = typer.Option(None, help="WebSocket URL of the broker (ws://host:port/ws)"),
    origin: Optional[str] = typer.Option(None, help="Page origin to derive the URL from when --url is not given"),
    topic: List[str] = typer.Option([], "--topic", "-t", help="Topic to show in the display table (repeatable)"),
    config_file: Optional[Path] = typer.Option(None, "--config", help="YAML config file"),
    timeout: float = typer.Option(5.0, help="Seconds to wait for the connection to open"),
):
    """Connect to the broker, print deliveries and read commands from the console."""
    config = _load(config_file).merged(url=url, origin=origin)
    if config.url is None and config.origin is None:
        # Local broker server
        config = config.merged(origin=f"{config.host}:{config.port}")
    configure_root_logging(config.log_level, config.log_file)

    display = TextDisplay.with_keys(topic)

    def print_delivery(t: str, payload: str) -> None:
        style = "bold magenta" if t == ReservedTopic.BROKER_ID.value else "bold cyan"
        console.print(f"[{style}]{escape(t)}[/] {escape(payload)}", highlight=False)

    async def main_loop() -> int:
        session = BrokerSession(display)
        session.on_message(print_delivery)
        session.initialize(config.url, config.origin)
        if not await session.wait_open(timeout):
            console.print(f"[red]Could not connect[/] to {session.url or '<no url>'}")
            await session.close()
            return 1

        console.print(f"[bold green]Connected[/] to {session.url}. {HELP_TEXT}")
        try:
            while True:
                line = await ainput(": ")
                if not await handle_line(session, display, line):
                    break
        except EOFError:
            pass
        finally:
            await session.close()
        return 0

    raise typer.Exit(code=asyncio.run(main_loop()))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
