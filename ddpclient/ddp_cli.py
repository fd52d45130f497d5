#!/usr/bin/env python3

from __future__ import annotations
import asyncio
from pathlib import Path
from typing import Optional

import typer
from aioconsole import ainput
from rich.console import Console

from ddpclient.credentials import DIGEST_ALGORITHM, hash_secret
from ddpclient.repl import CommandShell
from ddpclient.ws_client import DDPSession
from shared.config import ClientConfig, config_from_dict, load_config
from shared.errors import HandshakeFailed, RequestTimeout, TransportFailed
from shared.log import configure_root_logging, get_logger

app = typer.Typer(help="DDP chat client CLI")
console = Console()
logger = get_logger(__name__)


@app.command()
def digest(
    password: str = typer.Option(..., prompt=True, hide_input=True, help="Password to hash"),
):
    """Print the digest that would be sent in place of the password."""
    console.print(f"{DIGEST_ALGORITHM} {hash_secret(password)}")


@app.command()
def run(
    username: str = typer.Argument(..., help="Account to log in as"),
    password: str = typer.Option(..., prompt=True, hide_input=True, help="Password; prompted when omitted"),
    server: Optional[str] = typer.Option(None, help="Server websocket URL (http:// is accepted)"),
    config: Optional[Path] = typer.Option(None, help="YAML config file"),
    timeout: Optional[float] = typer.Option(None, help="Per-request timeout in seconds"),
    log_level: Optional[str] = typer.Option(None, help="DEBUG, INFO, WARNING or ERROR"),
):
    """Log in and start the interactive command loop."""
    settings = load_config(config)
    overrides = {k: v for k, v in {"server_url": server, "request_timeout": timeout, "log_level": log_level}.items() if v is not None}
    settings = config_from_dict(overrides, base=settings)
    configure_root_logging(settings.log_level)

    secret = hash_secret(password)
    console.print(f"[bold green]DDP client starting[/] as {username} on {settings.server_url}")
    try:
        asyncio.run(main_loop(settings, username, secret))
    except (HandshakeFailed, TransportFailed, RequestTimeout) as e:
        console.print(f"[red]{type(e).__name__}[/]: {e}")
        raise typer.Exit(code=1)


async def main_loop(settings: ClientConfig, username: str, secret: str) -> None:
    session = DDPSession(settings.server_url, settings)
    try:
        credential = await session.start(username, secret, DIGEST_ALGORITHM)
        expires = credential.token_expires.isoformat() if credential.token_expires else "never"
        console.print(f"Logged in as [bold]{credential.user_id}[/] (token expires {expires})")
        if credential.is_expired():
            console.print("[yellow]The server issued a token that has already expired[/]")

        shell = CommandShell(session, console)
        shell.bind_stream_output()
        while session.is_ready:
            try:
                line = (await ainput(CommandShell.PROMPT)).strip()
            except EOFError:
                break
            if not await shell.execute(line):
                break
    finally:
        await session.shutdown()


def main() -> None:
    app()


if __name__ == "__main__":
    main()
