"""
Relay server using FastAPI.

Plays the transport provider's broker role: hands out peer ids and bearer
tokens, pairs channels and forwards envelopes. Envelopes pass through in the
clear, key announcements included, so the relay operator must be trusted.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI

from peerchat.common import setup_logger
from peerchat.common.config import Config

from .broker import RelayBroker
from .routes import RelayRoutes


class RelayServer:
    """Main relay server class wiring the broker into a FastAPI app."""

    def __init__(  # noqa: PLR0913
        self,
        config: Config | None = None,
        log_level: int | None = None,
        host: str | None = None,
        port: int | None = None,
        max_message_bytes: int | None = None,
        poll_timeout: float | None = None,
        max_poll_timeout: float | None = None,
        max_pending_events: int | None = None,
    ):
        self.config = config or Config()
        self.logger = logging.getLogger(__name__)
        setup_logger(
            self.logger, log_level if log_level is not None else self.config.LOG_LEVEL
        )
        self.host = host or self.config.RELAY_HOST
        self.port = port or self.config.RELAY_PORT
        self.max_message_bytes = max_message_bytes or self.config.RELAY_MAX_MESSAGE_BYTES
        self.poll_timeout = (
            poll_timeout if poll_timeout is not None else self.config.RELAY_POLL_TIMEOUT
        )
        self.max_poll_timeout = max_poll_timeout or self.config.RELAY_MAX_POLL_TIMEOUT
        self.max_pending_events = (
            max_pending_events or self.config.RELAY_MAX_PENDING_EVENTS
        )

        self.broker = RelayBroker(self.max_pending_events)
        self.app = FastAPI(title="peerchat relay")
        RelayRoutes(
            self.broker,
            max_message_bytes=self.max_message_bytes,
            default_poll_timeout=self.poll_timeout,
            max_poll_timeout=self.max_poll_timeout,
        ).setup_routes(self.app)

        self.logger.info("Relay configured on http://%s:%s", self.host, self.port)
        self.logger.info(
            "Clients must set relay_url='http://%s:%s' to connect", self.host, self.port
        )
