"""
In-process transport provider.

``MemoryNetwork`` plays the switchboard: each ``MemoryTransport`` registers a
peer id on it and channels are pairs of ``MemoryChannel`` ends that hand
payloads straight to the other end's listener. Payloads are copied through
JSON on the way, as they would be on a real wire.
"""

from __future__ import annotations

import itertools
import json
import logging
import threading
from typing import TYPE_CHECKING, Any

from peerchat.common.exceptions import TransportError
from peerchat.transport.channel import BufferedChannel

if TYPE_CHECKING:
    from peerchat.common.interfaces import ChannelListener, TransportListener

logger = logging.getLogger(__name__)


class MemoryNetwork:
    """Registry of in-process peers."""

    def __init__(self) -> None:
        self._peers: dict[str, MemoryTransport] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def register(self, transport: MemoryTransport, peer_id: str | None = None) -> str:
        with self._lock:
            if peer_id is None:
                peer_id = f"peer-{next(self._ids)}"
                while peer_id in self._peers:
                    peer_id = f"peer-{next(self._ids)}"
            elif peer_id in self._peers:
                msg = f"ID {peer_id!r} is taken"
                raise TransportError(msg)
            self._peers[peer_id] = transport
        return peer_id

    def unregister(self, peer_id: str) -> None:
        with self._lock:
            self._peers.pop(peer_id, None)

    def lookup(self, peer_id: str) -> MemoryTransport | None:
        with self._lock:
            return self._peers.get(peer_id)


class MemoryChannel(BufferedChannel):
    """One end of an in-process channel."""

    def __init__(self, remote_id: str) -> None:
        super().__init__(remote_id)
        self.peer: MemoryChannel | None = None

    def _transmit(self, payload: dict[str, Any]) -> None:
        if self.peer is None:
            msg = f"Channel to {self.remote_id} was never opened"
            raise TransportError(msg)
        try:
            wire = json.loads(json.dumps(payload))
        except (TypeError, ValueError) as e:
            msg = f"Payload is not JSON serializable: {e}"
            raise TransportError(msg) from e
        self.peer.deliver(wire)

    def _release(self) -> None:
        if self.peer is not None:
            self.peer.remote_closed()


class MemoryTransport:
    """Transport provider backed by a ``MemoryNetwork``."""

    def __init__(
        self,
        network: MemoryNetwork,
        peer_id: str | None = None,
        setup_error: str | None = None,
    ) -> None:
        self.network = network
        self.requested_id = peer_id
        self.setup_error = setup_error
        self.peer_id: str | None = None
        self.channels: list[MemoryChannel] = []
        self.connect_calls: list[str] = []
        self.listener: TransportListener | None = None

    def open(self, listener: TransportListener) -> None:
        self.listener = listener
        if self.setup_error is not None:
            listener.on_transport_error(self.setup_error)
            return
        try:
            self.peer_id = self.network.register(self, self.requested_id)
        except TransportError as e:
            listener.on_transport_error(str(e))
            return
        listener.on_ready(self.peer_id)

    def connect(self, remote_id: str, listener: ChannelListener) -> MemoryChannel:
        self.connect_calls.append(remote_id)
        if self.peer_id is None:
            msg = "Transport is not open"
            raise TransportError(msg)
        local = MemoryChannel(remote_id)
        local.bind(listener)
        self.channels.append(local)
        remote = self.network.lookup(remote_id)
        if remote is None or remote.listener is None:
            local.fail(f"Could not connect to peer {remote_id}")
            return local
        far = MemoryChannel(self.peer_id)
        local.peer, far.peer = far, local
        remote.channels.append(far)
        remote.listener.on_incoming_channel(far)
        local.opened()
        return local

    def shutdown(self) -> None:
        for channel in self.channels:
            channel.close()
        self.channels.clear()
        if self.peer_id is not None:
            self.network.unregister(self.peer_id)
            logger.debug("Peer %s left the memory network", self.peer_id)
            self.peer_id = None
