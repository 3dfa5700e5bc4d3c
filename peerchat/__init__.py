# peerchat: end-to-end encrypted two-party chat sessions

from peerchat.session import ConnectionManager, ConnectionState, Origin
from peerchat.transport import MemoryNetwork, MemoryTransport, RelayTransport

__all__ = [
    "ConnectionManager",
    "ConnectionState",
    "MemoryNetwork",
    "MemoryTransport",
    "Origin",
    "RelayTransport",
]
