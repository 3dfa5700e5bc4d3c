# Session protocol: key exchange, encryption, presence and connection lifecycle
from peerchat.session.cipher_codec import CipherCodec
from peerchat.session.connection_manager import ConnectionManager
from peerchat.session.domain.entities import (
    ConnectionState,
    Origin,
    SessionStatus,
    TranscriptEntry,
)
from peerchat.session.envelope_codec import EnvelopeCodec
from peerchat.session.key_exchange import KeyExchange
from peerchat.session.presence import PresenceSignal

__all__ = [
    "CipherCodec",
    "ConnectionManager",
    "ConnectionState",
    "EnvelopeCodec",
    "KeyExchange",
    "Origin",
    "PresenceSignal",
    "SessionStatus",
    "TranscriptEntry",
]
