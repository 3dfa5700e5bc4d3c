"""
Routes for the relay server.

Every ``/peers/{peer_id}/...`` route requires the bearer token handed out
when ``peer_id`` was registered.
"""

import json
from typing import Any

from fastapi import FastAPI, Header, HTTPException

from peerchat.common.exceptions import RelayError
from peerchat.common.models import (
    EventBatch,
    OpenChannelRequest,
    OpenChannelResponse,
    RegisterRequest,
    RegisterResponse,
    RelayMessage,
)

from .broker import RelayBroker


def bearer_token(authorization: str | None) -> str | None:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if authorization is None:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def http_error(e: RelayError) -> HTTPException:
    headers = {"WWW-Authenticate": "Bearer"} if e.status_code == 401 else None  # noqa: PLR2004
    return HTTPException(e.status_code, str(e), headers=headers)


class RelayRoutes:
    """Handles FastAPI routes for the relay server."""

    def __init__(
        self,
        broker: RelayBroker,
        max_message_bytes: int,
        default_poll_timeout: float,
        max_poll_timeout: float,
    ):
        self.broker = broker
        self.max_message_bytes = max_message_bytes
        self.default_poll_timeout = default_poll_timeout
        self.max_poll_timeout = max_poll_timeout

    def setup_routes(self, app: FastAPI) -> None:
        """Setup API routes on the FastAPI app."""

        app.get("/health")(self.health)
        app.post("/peers", status_code=201)(self.register)
        app.delete("/peers/{peer_id}")(self.unregister)
        app.post("/peers/{peer_id}/channels", status_code=201)(self.open_channel)
        app.post("/peers/{peer_id}/channels/{channel_id}/messages")(
            self.relay_message
        )
        app.delete("/peers/{peer_id}/channels/{channel_id}")(self.close_channel)
        app.get("/peers/{peer_id}/events")(self.poll_events)

    async def health(self) -> dict[str, Any]:
        """Handle /health endpoint."""
        return {
            "status": "ok",
            "peers": len(self.broker.mailboxes),
            "channels": len(self.broker.channels),
        }

    async def register(self, req: RegisterRequest) -> RegisterResponse:
        """Register a peer and hand out its id and token."""
        try:
            peer_id, token = self.broker.register(req.peer_id)
        except RelayError as e:
            raise http_error(e) from e
        return RegisterResponse(peer_id=peer_id, token=token)

    async def unregister(
        self, peer_id: str, authorization: str | None = Header(default=None)
    ) -> dict[str, str]:
        try:
            self.broker.authorize(peer_id, bearer_token(authorization))
            self.broker.unregister(peer_id)
        except RelayError as e:
            raise http_error(e) from e
        return {"status": "ok"}

    async def open_channel(
        self,
        peer_id: str,
        req: OpenChannelRequest,
        authorization: str | None = Header(default=None),
    ) -> OpenChannelResponse:
        """Open a channel from ``peer_id`` to ``req.remote_id``."""
        try:
            self.broker.authorize(peer_id, bearer_token(authorization))
            channel_id = self.broker.open_channel(peer_id, req.remote_id)
        except RelayError as e:
            raise http_error(e) from e
        return OpenChannelResponse(channel_id=channel_id)

    async def relay_message(
        self,
        peer_id: str,
        channel_id: str,
        req: RelayMessage,
        authorization: str | None = Header(default=None),
    ) -> dict[str, str]:
        """Forward one envelope to the other end of the channel."""
        try:
            self.broker.authorize(peer_id, bearer_token(authorization))
            if len(json.dumps(req.data)) > self.max_message_bytes:
                raise RelayError("message too large", 413)  # noqa: TRY301
            self.broker.relay(peer_id, channel_id, req.data)
        except RelayError as e:
            raise http_error(e) from e
        return {"status": "ok"}

    async def close_channel(
        self,
        peer_id: str,
        channel_id: str,
        authorization: str | None = Header(default=None),
    ) -> dict[str, str]:
        try:
            self.broker.authorize(peer_id, bearer_token(authorization))
            self.broker.close_channel(peer_id, channel_id)
        except RelayError as e:
            raise http_error(e) from e
        return {"status": "ok"}

    async def poll_events(
        self,
        peer_id: str,
        timeout: float | None = None,
        authorization: str | None = Header(default=None),
    ) -> EventBatch:
        """Long-poll the peer's mailbox."""
        wait = self.default_poll_timeout if timeout is None else timeout
        wait = min(max(wait, 0.0), self.max_poll_timeout)
        try:
            self.broker.authorize(peer_id, bearer_token(authorization))
            events = await self.broker.wait_for_events(peer_id, wait)
        except RelayError as e:
            raise http_error(e) from e
        return EventBatch(events=events)
