"""
Command-line interface for peerchat.
"""

from __future__ import annotations

import logging
import os
import threading
import time

import click

from peerchat.common.config import Config
from peerchat.common.interfaces import SessionListener
from peerchat.common.logging_utils import configure_package_logging
from peerchat.common.models import SessionConfig
from peerchat.session import (
    ConnectionManager,
    ConnectionState,
    Origin,
    SessionStatus,
    TranscriptEntry,
)
from peerchat.transport import RelayTransport

HELP_TEXT = (
    "Commands: /connect <peer-id>, /disconnect, /name <name>, /typing, /quit. "
    "Anything else is sent as a message."
)


class ConsoleListener(SessionListener):
    """Prints session events to the terminal."""

    def __init__(self) -> None:
        self.remote_name: str | None = None
        self.ready = threading.Event()

    def status_changed(self, status: SessionStatus) -> None:
        if status.state is ConnectionState.READY:
            self.ready.set()
        click.echo(f"[{status}]")

    def transcript_appended(self, entry: TranscriptEntry) -> None:
        if entry.origin is Origin.LOCAL:
            label = "you"
        elif entry.origin is Origin.REMOTE:
            label = self.remote_name or "peer"
        else:
            label = "system"
        click.echo(f"{entry.timestamp} {label}: {entry.text}")

    def presence_changed(self, is_typing: bool, name: str) -> None:  # noqa: FBT001
        if is_typing:
            click.echo(f"{name} is typing...")

    def remote_name_changed(self, name: str) -> None:
        self.remote_name = name
        click.echo(f"Chatting with {name}")

    def notify(self, message: str) -> None:
        click.echo(f"* {message}", err=True)


def handle_line(manager: ConnectionManager, line: str) -> bool:
    """Apply one console line to the session. Returns False to quit."""
    text = line.rstrip("\r\n")
    command, _, argument = text.partition(" ")
    if command == "/quit":
        return False
    if command == "/connect":
        manager.connect_to(argument)
    elif command == "/disconnect":
        manager.disconnect()
    elif command == "/name":
        manager.set_display_name(argument)
    elif command == "/typing":
        manager.notify_local_activity()
    elif command == "/help":
        click.echo(HELP_TEXT)
    else:
        manager.send_chat_message(text)
    return True


@click.group()
def cli() -> None:
    """peerchat: end-to-end encrypted two-party chat"""


@cli.command()
@click.option(
    "--host",
    default=None,
    help="Host to bind the relay to (default: from PEERCHAT_RELAY_HOST env or 127.0.0.1)",
)
@click.option(
    "--port",
    default=None,
    type=int,
    help="Port to bind the relay to (default: from PEERCHAT_RELAY_PORT env or 9000)",
)
def relay(host: str | None, port: int | None) -> None:
    """Start the relay server"""
    # Set environment variables before building the config
    if host:
        os.environ["PEERCHAT_RELAY_HOST"] = host
    if port:
        os.environ["PEERCHAT_RELAY_PORT"] = str(port)

    from peerchat.relay import start_relay  # noqa: PLC0415

    config = Config()
    configure_package_logging(config.LOG_LEVEL)
    start_relay(config)


@cli.command()
@click.option("--name", prompt="Your name", help="Display name announced to the peer")
@click.option(
    "--relay-url",
    default=None,
    help="Relay to register with (default: from PEERCHAT_RELAY_URL env)",
)
@click.option("--peer-id", default=None, help="Request a specific peer id")
@click.option(
    "--connect", "remote_id", default=None, help="Peer id to connect to once ready"
)
@click.option("--verbose", is_flag=True, help="Show session logs")
def chat(
    name: str,
    relay_url: str | None,
    peer_id: str | None,
    remote_id: str | None,
    verbose: bool,  # noqa: FBT001
) -> None:
    """Start an encrypted chat session through the relay"""
    config = Config()
    configure_package_logging(config.LOG_LEVEL if verbose else logging.WARNING)

    listener = ConsoleListener()
    manager = ConnectionManager(
        RelayTransport(relay_url=relay_url, peer_id=peer_id),
        listener=listener,
        session_config=SessionConfig(display_name=name),
    )
    manager.dispatcher.start_in_thread()
    try:
        manager.start()
        deadline = time.monotonic() + config.RELAY_REQUEST_TIMEOUT + 5
        while not listener.ready.wait(0.1):
            if manager.setup_error is not None:
                raise click.ClickException(manager.setup_error)
            if time.monotonic() > deadline:
                msg = "Timed out waiting for the relay"
                raise click.ClickException(msg)

        click.echo(f"Your Peer ID: {manager.session.local_id}")
        click.echo(HELP_TEXT)
        if remote_id:
            manager.connect_to(remote_id)
        for line in click.get_text_stream("stdin"):
            if not handle_line(manager, line):
                break
    finally:
        manager.shutdown()
        manager.dispatcher.stop_thread(timeout=5)


if __name__ == "__main__":
    cli()
