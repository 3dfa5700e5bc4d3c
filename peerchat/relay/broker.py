"""
Peer, channel and mailbox state for the relay.
"""

from __future__ import annotations

import asyncio
import hmac
import secrets
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Any

from peerchat.common.exceptions import PeerUnavailableError, RelayError
from peerchat.common.models import RelayEvent


class Mailbox:
    """Pending events for one peer, woken when something arrives."""

    def __init__(self, max_pending: int, token: str) -> None:
        self.token = token
        self.events: deque[RelayEvent] = deque()
        self.ready = asyncio.Event()
        self.max_pending = max_pending

    def push(self, event: RelayEvent) -> None:
        if len(self.events) >= self.max_pending:
            msg = "peer is not draining its events"
            raise RelayError(msg, 429)
        self.events.append(event)
        self.ready.set()

    def drain(self) -> list[RelayEvent]:
        events = list(self.events)
        self.events.clear()
        self.ready.clear()
        return events


@dataclass
class ChannelRecord:
    channel_id: str
    initiator: str
    acceptor: str

    def other(self, peer_id: str) -> str:
        return self.acceptor if peer_id == self.initiator else self.initiator

    def has_member(self, peer_id: str) -> bool:
        return peer_id in (self.initiator, self.acceptor)


class RelayBroker:
    """
    In-memory relay state.

    Only touched from the server's event loop, so no locking is needed.
    """

    def __init__(self, max_pending_events: int):
        self.mailboxes: dict[str, Mailbox] = {}
        self.channels: dict[str, ChannelRecord] = {}
        self.max_pending_events = max_pending_events

    def register(self, peer_id: str | None = None) -> tuple[str, str]:
        """
        Register a peer, generating an id when none is requested.

        Returns the id and the bearer token that proves ownership of it.
        """
        if peer_id is None:
            peer_id = uuid.uuid4().hex[:12]
        elif peer_id in self.mailboxes:
            msg = f"ID {peer_id!r} is taken"
            raise RelayError(msg, 409)
        token = secrets.token_urlsafe(32)
        self.mailboxes[peer_id] = Mailbox(self.max_pending_events, token)
        return peer_id, token

    def authorize(self, peer_id: str, token: str | None) -> None:
        """Check that the caller holds the token issued for ``peer_id``."""
        mailbox = self.mailbox(peer_id)
        if token is None:
            msg = "missing bearer token"
            raise RelayError(msg, 401)
        if not hmac.compare_digest(token.encode(), mailbox.token.encode()):
            msg = f"token does not match peer {peer_id}"
            raise RelayError(msg, 403)

    def unregister(self, peer_id: str) -> None:
        """Remove a peer and close every channel it belongs to."""
        self.mailbox(peer_id)
        for record in [c for c in self.channels.values() if c.has_member(peer_id)]:
            self._close(record)
        del self.mailboxes[peer_id]

    def open_channel(self, peer_id: str, remote_id: str) -> str:
        """Pair two peers; the remote learns about it through an incoming event."""
        caller = self.mailbox(peer_id)
        remote = self.mailboxes.get(remote_id)
        if remote is None or remote_id == peer_id:
            msg = f"Could not connect to peer {remote_id}"
            raise PeerUnavailableError(msg)
        channel_id = uuid.uuid4().hex
        remote.push(
            RelayEvent(event="incoming", channel_id=channel_id, remote_id=peer_id)
        )
        self.channels[channel_id] = ChannelRecord(channel_id, peer_id, remote_id)
        caller.push(RelayEvent(event="open", channel_id=channel_id, remote_id=remote_id))
        return channel_id

    def relay(self, peer_id: str, channel_id: str, data: dict[str, Any]) -> None:
        """Forward one payload to the other end of a channel."""
        record = self._channel_for(peer_id, channel_id)
        self.mailbox(record.other(peer_id)).push(
            RelayEvent(event="data", channel_id=channel_id, data=data)
        )

    def close_channel(self, peer_id: str, channel_id: str) -> None:
        self._close(self._channel_for(peer_id, channel_id))

    def mailbox(self, peer_id: str) -> Mailbox:
        mailbox = self.mailboxes.get(peer_id)
        if mailbox is None:
            msg = f"unknown peer {peer_id}"
            raise RelayError(msg, 404)
        return mailbox

    async def wait_for_events(self, peer_id: str, timeout: float) -> list[RelayEvent]:
        """Return queued events, waiting up to ``timeout`` seconds for the first one."""
        mailbox = self.mailbox(peer_id)
        if not mailbox.events and timeout > 0:
            try:
                await asyncio.wait_for(mailbox.ready.wait(), timeout)
            except asyncio.TimeoutError:
                pass
        return mailbox.drain()

    def _channel_for(self, peer_id: str, channel_id: str) -> ChannelRecord:
        self.mailbox(peer_id)
        record = self.channels.get(channel_id)
        if record is None or not record.has_member(peer_id):
            msg = f"unknown channel {channel_id}"
            raise RelayError(msg, 404)
        return record

    def _close(self, record: ChannelRecord) -> None:
        self.channels.pop(record.channel_id, None)
        for member in (record.initiator, record.acceptor):
            mailbox = self.mailboxes.get(member)
            if mailbox is not None:
                mailbox.events.append(
                    RelayEvent(event="close", channel_id=record.channel_id)
                )
                mailbox.ready.set()
