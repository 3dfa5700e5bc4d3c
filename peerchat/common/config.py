"""
Configuration settings for the peer chat session layer and relay.
"""

from __future__ import annotations

import logging
import os


class Config:
    """Central configuration class for all system settings."""

    def __init__(self) -> None:
        # Session protocol settings
        self.TYPING_STOP_DELAY: float = 2.0  # Seconds of inactivity before stop-typing
        self.KEY_SIZE_BITS: int = 256  # AES-GCM session key size
        self.NONCE_SIZE: int = 12  # 96-bit GCM nonce
        self.DECRYPTION_PLACEHOLDER: str = "Decryption error"
        self.DEFAULT_REMOTE_NAME: str = "Peer"
        self.TIMESTAMP_FORMAT: str = "%m/%d/%Y, %I:%M:%S %p"

        # Relay settings
        self.RELAY_HOST: str = os.getenv("PEERCHAT_RELAY_HOST", "127.0.0.1")
        self.RELAY_PORT: int = int(os.getenv("PEERCHAT_RELAY_PORT", "9000"))
        self.RELAY_URL: str = os.getenv(
            "PEERCHAT_RELAY_URL", f"http://{self.RELAY_HOST}:{self.RELAY_PORT}"
        )
        self.RELAY_POLL_TIMEOUT: float = 25.0  # Long-poll wait on the relay side
        self.RELAY_MAX_POLL_TIMEOUT: float = 60.0
        self.RELAY_REQUEST_TIMEOUT: float = 10.0  # Added on top of the poll wait
        self.RELAY_MAX_MESSAGE_BYTES: int = 64 * 1024  # Prevent relay memory abuse
        self.RELAY_MAX_PENDING_EVENTS: int = 1000  # Per-peer mailbox bound
        self.RELAY_RETRY_DELAY: float = 2.0  # Pause between failed polls

        # Logging
        self.LOG_LEVEL: int = getattr(
            logging, os.getenv("PEERCHAT_LOG_LEVEL", "INFO").upper(), logging.INFO
        )
