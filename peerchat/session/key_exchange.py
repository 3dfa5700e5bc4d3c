"""
Session key generation, export and import.
"""

from __future__ import annotations

import logging

from peerchat.common.exceptions import CipherError, KeyExchangeError
from peerchat.session.cipher_codec import CipherCodec

logger = logging.getLogger(__name__)


class KeyExchange:
    """
    One symmetric key per session.

    The side that initiates a connection announces the key it generated at
    Ready; the accepting side adopts the announced key. A later announce
    replaces the key in use.
    """

    def __init__(self, codec: CipherCodec | None = None) -> None:
        self.codec = codec or CipherCodec()

    def generate_session_key(self) -> bytes:
        """Generate the local session key."""
        try:
            key = self.codec.generate_key()
        except CipherError as e:
            msg = "Failed to generate encryption key"
            raise KeyExchangeError(msg) from e
        logger.debug("Generated local session key")
        return key

    def export_for_transmission(self, key: bytes) -> bytes:
        """Portable form of the key, carried in a KeyAnnounce envelope."""
        try:
            return self.codec.export_key(key)
        except CipherError as e:
            msg = "Failed to export encryption key"
            raise KeyExchangeError(msg) from e

    def import_received(self, data: bytes) -> bytes:
        """Import a key announced by the peer."""
        try:
            key = self.codec.import_key(data)
        except CipherError as e:
            msg = "Failed to import encryption key"
            raise KeyExchangeError(msg) from e
        logger.debug("Imported session key announced by peer")
        return key
