# Transport providers
from peerchat.transport.memory import MemoryChannel, MemoryNetwork, MemoryTransport
from peerchat.transport.relay import RelayChannel, RelayTransport

__all__ = [
    "MemoryChannel",
    "MemoryNetwork",
    "MemoryTransport",
    "RelayChannel",
    "RelayTransport",
]
