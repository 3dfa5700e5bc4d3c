"""
AES-GCM encryption of chat payloads and session key handling.
"""

from __future__ import annotations

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from peerchat.common.config import Config
from peerchat.common.exceptions import CipherError, DecryptionError


class CipherCodec:
    """Wraps the AEAD provider: 256-bit keys, a fresh 96-bit nonce per message."""

    def __init__(
        self,
        key_size_bits: int | None = None,
        nonce_size: int | None = None,
    ) -> None:
        config = Config()
        self.key_size_bits = key_size_bits or config.KEY_SIZE_BITS
        self.nonce_size = nonce_size or config.NONCE_SIZE

    def generate_key(self) -> bytes:
        """Generate a new random session key."""
        try:
            return AESGCM.generate_key(bit_length=self.key_size_bits)
        except (ValueError, OSError) as e:
            msg = f"Could not generate a {self.key_size_bits}-bit key"
            raise CipherError(msg) from e

    def export_key(self, key: bytes) -> bytes:
        """Return the portable raw form of a key."""
        self._check_key(key)
        return bytes(key)

    def import_key(self, data: bytes) -> bytes:
        """Validate raw key bytes received from a peer."""
        self._check_key(data)
        return bytes(data)

    def encrypt(self, key: bytes, plaintext: str) -> tuple[bytes, bytes]:
        """
        Encrypt a text message.

        Returns:
            (nonce, ciphertext) where the ciphertext carries the GCM tag.
        """
        self._check_key(key)
        nonce = os.urandom(self.nonce_size)
        ciphertext = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
        return nonce, ciphertext

    def decrypt(self, key: bytes, nonce: bytes, ciphertext: bytes) -> str:
        """Decrypt and authenticate a message, raising DecryptionError on failure."""
        self._check_key(key)
        try:
            plaintext = AESGCM(key).decrypt(nonce, ciphertext, None)
        except InvalidTag as e:
            msg = "Message failed authentication"
            raise DecryptionError(msg) from e
        except ValueError as e:
            # Raised for nonce lengths the cipher does not accept
            msg = f"Malformed message: {e}"
            raise DecryptionError(msg) from e
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            msg = "Message is not valid UTF-8 text"
            raise DecryptionError(msg) from e

    def _check_key(self, key: bytes) -> None:
        if not isinstance(key, (bytes, bytearray)):
            msg = "Key must be bytes"
            raise CipherError(msg)
        if len(key) * 8 != self.key_size_bits:
            msg = f"Key must be {self.key_size_bits} bits, got {len(key) * 8}"
            raise CipherError(msg)
