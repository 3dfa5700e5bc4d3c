from __future__ import annotations

from datetime import datetime
from typing import Any, Callable

import pytest

from peerchat.common.exceptions import TransportError
from peerchat.common.interfaces import SessionListener
from peerchat.common.models import SessionConfig
from peerchat.session import ConnectionManager
from peerchat.transport import MemoryNetwork, MemoryTransport

FIXED_TIME = datetime(2024, 1, 2, 15, 4, 5)


class ManualTimer:
    def __init__(self, when: float, callback: Callable[[], None]) -> None:
        self.when = when
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler driven by a fake clock; timers only fire inside ``advance``."""

    def __init__(self) -> None:
        self.now = 0.0
        self.timers: list[ManualTimer] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self.now + delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[ManualTimer]:
        return [t for t in self.timers if not (t.cancelled or t.fired)]

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [t for t in self.pending if t.when <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.when)
            self.now = timer.when
            timer.fired = True
            timer.callback()
        self.now = target


class RecordingListener(SessionListener):
    """Collects every session event for assertions."""

    def __init__(self) -> None:
        self.statuses: list[Any] = []
        self.entries: list[Any] = []
        self.presence: list[tuple[bool, str]] = []
        self.names: list[str] = []
        self.notifications: list[str] = []

    def status_changed(self, status: Any) -> None:
        self.statuses.append(status)

    def transcript_appended(self, entry: Any) -> None:
        self.entries.append(entry)

    def presence_changed(self, is_typing: bool, name: str) -> None:  # noqa: FBT001
        self.presence.append((is_typing, name))

    def remote_name_changed(self, name: str) -> None:
        self.names.append(name)

    def notify(self, message: str) -> None:
        self.notifications.append(message)


class FakeChannel:
    """Channel that records what the session sends on it."""

    def __init__(self, remote_id: str = "remote") -> None:
        self.remote_id = remote_id
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self.fail_sends = False
        self.listener: Any = None

    def bind(self, listener: Any) -> None:
        self.listener = listener

    def send(self, payload: dict[str, Any]) -> None:
        if self.fail_sends:
            msg = "link down"
            raise TransportError(msg)
        self.sent.append(payload)

    def close(self) -> None:
        self.closed = True

    def types(self) -> list[str]:
        return [p["type"] for p in self.sent]


class FakeTransport:
    """Transport provider that hands out ``FakeChannel`` objects."""

    def __init__(self, local_id: str = "local", error: str | None = None) -> None:
        self.local_id = local_id
        self.error = error
        self.listener: Any = None
        self.channels: list[FakeChannel] = []
        self.connect_calls: list[str] = []
        self.is_shut_down = False

    def open(self, listener: Any) -> None:
        self.listener = listener
        if self.error is not None:
            listener.on_transport_error(self.error)
        else:
            listener.on_ready(self.local_id)

    def connect(self, remote_id: str, listener: Any) -> FakeChannel:
        self.connect_calls.append(remote_id)
        channel = FakeChannel(remote_id)
        channel.bind(listener)
        self.channels.append(channel)
        return channel

    def shutdown(self) -> None:
        self.is_shut_down = True


@pytest.fixture
def scheduler() -> ManualScheduler:
    """Fake-clock scheduler shared by every manager in a test."""
    return ManualScheduler()


@pytest.fixture
def new_channel() -> Callable[..., FakeChannel]:
    """Factory for channels offered to a manager as inbound connections."""
    return FakeChannel


@pytest.fixture
def network() -> MemoryNetwork:
    return MemoryNetwork()


@pytest.fixture
def make_fake_manager(
    scheduler: ManualScheduler,
) -> Callable[..., ConnectionManager]:
    """Build a started manager on a ``FakeTransport``."""

    def factory(
        name: str | None = None, error: str | None = None, **config: Any
    ) -> ConnectionManager:
        manager = ConnectionManager(
            FakeTransport(error=error),
            listener=RecordingListener(),
            session_config=SessionConfig(display_name=name, **config),
            scheduler=scheduler,
            clock=lambda: FIXED_TIME,
        )
        manager.start()
        manager.dispatcher.run_pending()
        return manager

    return factory


@pytest.fixture
def make_peer(
    network: MemoryNetwork, scheduler: ManualScheduler
) -> Callable[..., ConnectionManager]:
    """Build a manager on the in-memory network; call ``start()`` yourself."""

    def factory(
        peer_id: str | None = None,
        name: str | None = None,
        setup_error: str | None = None,
    ) -> ConnectionManager:
        return ConnectionManager(
            MemoryTransport(network, peer_id=peer_id, setup_error=setup_error),
            listener=RecordingListener(),
            session_config=SessionConfig(display_name=name),
            scheduler=scheduler,
            clock=lambda: FIXED_TIME,
        )

    return factory


@pytest.fixture
def pump() -> Callable[..., int]:
    """Run queued session tasks on every manager until all queues are empty."""

    def run(*managers: ConnectionManager) -> int:
        total = 0
        while True:
            ran = sum(m.dispatcher.run_pending() for m in managers)
            if not ran:
                return total
            total += ran

    return run
