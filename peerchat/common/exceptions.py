"""
Custom exceptions for the peer chat system.
"""

from __future__ import annotations


class PeerChatError(Exception):
    """Base exception for session and relay failures."""


class TransportError(PeerChatError):
    """Exception for channel or transport provider failures."""


class EnvelopeError(PeerChatError):
    """Exception for malformed wire envelopes."""


class CipherError(PeerChatError):
    """Exception for cryptographic provider failures."""


class DecryptionError(CipherError):
    """Exception for authentication failures while decrypting."""


class KeyExchangeError(PeerChatError):
    """Exception for key generation or import failures."""


class RelayError(PeerChatError):
    """Exception for relay broker rejections."""

    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code


class PeerUnavailableError(RelayError):
    """Exception for channel requests to unknown peers."""

    def __init__(self, message: str) -> None:
        super().__init__(message, 404)
