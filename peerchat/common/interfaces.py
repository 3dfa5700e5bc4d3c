"""
Interfaces and protocols for the transport, scheduling and presentation seams.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Protocol

if TYPE_CHECKING:
    from peerchat.session.domain.entities import SessionStatus, TranscriptEntry


class ChannelListener(Protocol):
    """Receives events for one channel."""

    def on_open(self, channel: IChannel) -> None: ...

    def on_data(self, channel: IChannel, payload: dict[str, Any]) -> None: ...

    def on_close(self, channel: IChannel) -> None: ...

    def on_error(self, channel: IChannel, reason: str) -> None: ...


class TransportListener(ChannelListener, Protocol):
    """Receives provider-level events in addition to channel events."""

    def on_ready(self, local_id: str) -> None: ...

    def on_incoming_channel(self, channel: IChannel) -> None: ...

    def on_transport_error(self, reason: str) -> None: ...


class IChannel(Protocol):
    """Protocol for one reliable, ordered channel to a remote peer."""

    remote_id: str

    def send(self, payload: dict[str, Any]) -> None: ...

    def close(self) -> None: ...

    def bind(self, listener: ChannelListener) -> None: ...


class ITransport(Protocol):
    """Protocol for the transport provider."""

    def open(self, listener: TransportListener) -> None: ...

    def connect(self, remote_id: str, listener: ChannelListener) -> IChannel: ...

    def shutdown(self) -> None: ...


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class IScheduler(Protocol):
    """Protocol for delayed callbacks."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class SessionListener:
    """
    Presentation-side observer of session events.

    Every method is a no-op; subclasses override what they render.
    """

    def status_changed(self, status: SessionStatus) -> None:
        pass

    def transcript_appended(self, entry: TranscriptEntry) -> None:
        pass

    def presence_changed(self, is_typing: bool, name: str) -> None:  # noqa: FBT001
        pass

    def remote_name_changed(self, name: str) -> None:
        pass

    def notify(self, message: str) -> None:
        pass
