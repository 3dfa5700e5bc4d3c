"""Domain layer: session state, transcript and presence entities.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Iterator

if TYPE_CHECKING:
    from peerchat.common.interfaces import TimerHandle


class ConnectionState(str, Enum):
    IDLE = "Idle"
    READY = "Ready"
    CONNECTING = "Connecting"
    CONNECTED = "Connected"
    DISCONNECTED = "Disconnected"
    ERROR = "Error"


@dataclass(frozen=True)
class SessionStatus:
    """Connection state as reported to the presentation layer."""

    state: ConnectionState
    reason: str | None = None

    def __str__(self) -> str:
        if self.state is ConnectionState.ERROR and self.reason:
            return f"Error: {self.reason}"
        return self.state.value


@dataclass
class Session:
    """The single active or pending session, owned by the connection manager."""

    local_id: str | None = None
    remote_id: str | None = None
    state: ConnectionState = ConnectionState.IDLE
    error_reason: str | None = None
    local_key: bytes | None = None
    shared_key: bytes | None = None
    local_name: str | None = None
    remote_name: str | None = None

    @property
    def status(self) -> SessionStatus:
        return SessionStatus(self.state, self.error_reason)

    def reset(self) -> None:
        """Forget the peer and every key; identity and local name survive."""
        self.remote_id = None
        self.error_reason = None
        self.local_key = None
        self.shared_key = None
        self.remote_name = None


class Origin(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"
    SYSTEM = "system"


@dataclass(frozen=True)
class TranscriptEntry:
    origin: Origin
    text: str
    timestamp: str


class Transcript:
    """Append-only, ordered record of chat messages and system events."""

    def __init__(self) -> None:
        self._entries: list[TranscriptEntry] = []

    def append(self, entry: TranscriptEntry) -> None:
        self._entries.append(entry)

    @property
    def entries(self) -> tuple[TranscriptEntry, ...]:
        return tuple(self._entries)

    def texts(self, origin: Origin | None = None) -> list[str]:
        return [e.text for e in self._entries if origin is None or e.origin is origin]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[TranscriptEntry]:
        return iter(tuple(self._entries))


@dataclass
class PresenceState:
    """Typing indicator state; the stop timer is replaced, never left dangling."""

    remote_is_typing: bool = False
    remote_name: str = ""
    pending_stop_timer: TimerHandle | None = field(default=None, repr=False)
