"""
Channel base shared by the transports.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any

from peerchat.common.exceptions import TransportError

if TYPE_CHECKING:
    from peerchat.common.interfaces import ChannelListener


class BufferedChannel:
    """
    Channel end that backlogs payloads until a listener is bound.

    An accepted channel can receive data before the session has processed
    the incoming-channel event; ``bind`` replays that backlog in order.
    ``close`` reports the close to the local listener exactly once.
    """

    def __init__(self, remote_id: str) -> None:
        self.remote_id = remote_id
        self.closed = False
        self._listener: ChannelListener | None = None
        self._backlog: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def bind(self, listener: ChannelListener) -> None:
        with self._lock:
            self._listener = listener
            pending, self._backlog = self._backlog, []
        for payload in pending:
            listener.on_data(self, payload)

    def send(self, payload: dict[str, Any]) -> None:
        if self.closed:
            msg = f"Channel to {self.remote_id} is closed"
            raise TransportError(msg)
        self._transmit(payload)

    def close(self) -> None:
        if not self._mark_closed():
            return
        self._release()

    def deliver(self, payload: dict[str, Any]) -> None:
        with self._lock:
            if self.closed:
                return
            listener = self._listener
            if listener is None:
                self._backlog.append(payload)
                return
        listener.on_data(self, payload)

    def opened(self) -> None:
        if self._listener is not None:
            self._listener.on_open(self)

    def remote_closed(self) -> None:
        self._mark_closed()

    def fail(self, reason: str) -> None:
        if self._listener is not None:
            self._listener.on_error(self, reason)

    def _mark_closed(self) -> bool:
        with self._lock:
            if self.closed:
                return False
            self.closed = True
            listener = self._listener
        if listener is not None:
            listener.on_close(self)
        return True

    def _transmit(self, payload: dict[str, Any]) -> None:
        raise NotImplementedError

    def _release(self) -> None:
        """Tell the other end the channel is gone."""
