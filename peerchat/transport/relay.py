"""
Transport provider that talks to the peerchat relay over HTTP.

Registration, channel setup and every envelope are plain ``requests`` calls;
inbound events are fetched by long-polling ``/peers/{peer_id}/events`` from a
daemon thread (or by calling ``poll_once`` directly). Every per-peer call
carries the bearer token the relay issued at registration.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any

import requests
from pydantic import ValidationError as PydanticValidationError

from peerchat.common.config import Config
from peerchat.common.exceptions import TransportError
from peerchat.common.models import (
    EventBatch,
    OpenChannelRequest,
    OpenChannelResponse,
    RegisterRequest,
    RegisterResponse,
    RelayEvent,
    RelayMessage,
)
from peerchat.transport.channel import BufferedChannel

if TYPE_CHECKING:
    from peerchat.common.interfaces import ChannelListener, TransportListener

logger = logging.getLogger(__name__)


class RelayChannel(BufferedChannel):
    """Channel routed through the relay."""

    def __init__(
        self, transport: RelayTransport, channel_id: str | None, remote_id: str
    ) -> None:
        super().__init__(remote_id)
        self.transport = transport
        self.channel_id = channel_id

    def _transmit(self, payload: dict[str, Any]) -> None:
        if self.channel_id is None:
            msg = f"Channel to {self.remote_id} was never opened"
            raise TransportError(msg)
        self.transport.post_message(self.channel_id, payload)

    def _release(self) -> None:
        if self.channel_id is not None:
            self.transport.release_channel(self.channel_id)


class RelayTransport:
    """HTTP relay client implementing the transport provider contract."""

    def __init__(  # noqa: PLR0913
        self,
        relay_url: str | None = None,
        peer_id: str | None = None,
        poll_timeout: float | None = None,
        request_timeout: float | None = None,
        retry_delay: float | None = None,
        http: requests.Session | None = None,
        poll_in_thread: bool = True,  # noqa: FBT001, FBT002
    ):
        config = Config()
        self.relay_url = (relay_url or config.RELAY_URL).rstrip("/")
        self.requested_id = peer_id
        self.poll_timeout = (
            poll_timeout if poll_timeout is not None else config.RELAY_POLL_TIMEOUT
        )
        self.request_timeout = (
            request_timeout
            if request_timeout is not None
            else config.RELAY_REQUEST_TIMEOUT
        )
        self.retry_delay = (
            retry_delay if retry_delay is not None else config.RELAY_RETRY_DELAY
        )
        self.http = http or requests.Session()
        self.poll_in_thread = poll_in_thread
        self.peer_id: str | None = None
        self._token: str | None = None

        self._listener: TransportListener | None = None
        self._channels: dict[str, RelayChannel] = {}
        self._orphans: dict[str, list[RelayEvent]] = {}
        self._retired: set[str] = set()
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._stopped = threading.Event()
        self._outage = False

    # Transport provider contract

    def open(self, listener: TransportListener) -> None:
        """Register with the relay and start receiving events."""
        self._listener = listener
        try:
            r = self.http.post(
                f"{self.relay_url}/peers",
                json=RegisterRequest(peer_id=self.requested_id).model_dump(),
                timeout=self.request_timeout,
            )
            r.raise_for_status()
            registration = RegisterResponse.model_validate(r.json())
        except requests.RequestException as e:
            listener.on_transport_error(
                f"Could not register with relay: {self._describe(e)}"
            )
            return
        except PydanticValidationError:
            listener.on_transport_error("Relay sent an invalid registration reply")
            return

        self.peer_id = registration.peer_id
        self._token = registration.token
        logger.info("Registered with relay %s as %s", self.relay_url, self.peer_id)
        self._stopped.clear()
        self._outage = False
        listener.on_ready(self.peer_id)
        if self.poll_in_thread:
            self._thread = threading.Thread(
                target=self._poll_loop, name="peerchat-relay-poll", daemon=True
            )
            self._thread.start()

    def connect(self, remote_id: str, listener: ChannelListener) -> RelayChannel:
        """Ask the relay for a channel; an unknown peer is reported on the channel."""
        peer_id = self._require_open()
        try:
            r = self.http.post(
                f"{self.relay_url}/peers/{peer_id}/channels",
                json=OpenChannelRequest(remote_id=remote_id).model_dump(),
                timeout=self.request_timeout,
                headers=self._auth_headers(),
            )
            r.raise_for_status()
            channel_id = OpenChannelResponse.model_validate(r.json()).channel_id
        except requests.HTTPError as e:
            channel = RelayChannel(self, None, remote_id)
            channel.bind(listener)
            channel.fail(self._describe(e))
            return channel
        except requests.RequestException as e:
            msg = f"Relay unreachable: {self._describe(e)}"
            raise TransportError(msg) from e

        channel = RelayChannel(self, channel_id, remote_id)
        channel.bind(listener)
        self._register_channel(channel)
        return channel

    def shutdown(self) -> None:
        """Close every channel and unregister from the relay."""
        self._stopped.set()
        with self._lock:
            channels = list(self._channels.values())
        for channel in channels:
            channel.close()
        if self.peer_id is not None:
            try:
                self.http.delete(
                    f"{self.relay_url}/peers/{self.peer_id}",
                    timeout=self.request_timeout,
                    headers=self._auth_headers(),
                )
            except requests.RequestException as e:
                logger.warning("Could not unregister from relay: %s", e)
            self.peer_id = None
            self._token = None

    # Channel operations

    def post_message(self, channel_id: str, payload: dict[str, Any]) -> None:
        peer_id = self._require_open()
        try:
            r = self.http.post(
                f"{self.relay_url}/peers/{peer_id}/channels/{channel_id}/messages",
                json=RelayMessage(data=payload).model_dump(),
                timeout=self.request_timeout,
                headers=self._auth_headers(),
            )
            r.raise_for_status()
        except requests.RequestException as e:
            msg = f"Relay rejected message: {self._describe(e)}"
            raise TransportError(msg) from e

    def release_channel(self, channel_id: str) -> None:
        with self._lock:
            self._channels.pop(channel_id, None)
            self._retired.add(channel_id)
        if self.peer_id is None:
            return
        try:
            self.http.delete(
                f"{self.relay_url}/peers/{self.peer_id}/channels/{channel_id}",
                timeout=self.request_timeout,
                headers=self._auth_headers(),
            )
        except requests.RequestException as e:
            logger.warning("Could not close channel %s on relay: %s", channel_id, e)

    # Event polling

    def poll_once(self, timeout: float | None = None) -> int:
        """Fetch and dispatch one batch of relay events. Returns the batch size."""
        peer_id = self._require_open()
        wait = self.poll_timeout if timeout is None else timeout
        try:
            r = self.http.get(
                f"{self.relay_url}/peers/{peer_id}/events",
                params={"timeout": wait},
                timeout=wait + self.request_timeout,
                headers=self._auth_headers(),
            )
            r.raise_for_status()
            batch = EventBatch.model_validate(r.json())
        except requests.RequestException as e:
            msg = f"Relay connection lost: {self._describe(e)}"
            raise TransportError(msg) from e
        except PydanticValidationError as e:
            msg = "Relay sent an invalid event batch"
            raise TransportError(msg) from e

        for event in batch.events:
            self._dispatch(event)
        return len(batch.events)

    def pump_events(self, timeout: float | None = None) -> bool:
        """
        Poll once, reporting only the first failure of an outage to the listener.

        Returns False when the poll failed.
        """
        try:
            self.poll_once(timeout)
        except TransportError as e:
            if self._stopped.is_set() or self.peer_id is None:
                return False
            if not self._outage:
                self._outage = True
                logger.error("Lost relay connection: %s", e)  # noqa: TRY400
                if self._listener is not None:
                    self._listener.on_transport_error(str(e))
            return False
        if self._outage:
            self._outage = False
            logger.info("Relay connection restored")
        return True

    def _poll_loop(self) -> None:
        while not self._stopped.is_set():
            if not self.pump_events():
                self._stopped.wait(self.retry_delay)

    def _dispatch(self, event: RelayEvent) -> None:
        if event.event == "incoming":
            channel = RelayChannel(self, event.channel_id, event.remote_id or "")
            self._register_channel(channel)
            if self._listener is not None:
                self._listener.on_incoming_channel(channel)
            return
        with self._lock:
            if event.channel_id in self._retired:
                return
            channel = self._channels.get(event.channel_id)
            if channel is None:
                # The POST that created this channel has not returned yet
                self._orphans.setdefault(event.channel_id, []).append(event)
                return
        self._apply(channel, event)

    def _apply(self, channel: RelayChannel, event: RelayEvent) -> None:
        if event.event == "open":
            channel.opened()
        elif event.event == "data":
            channel.deliver(event.data or {})
        elif event.event == "close":
            with self._lock:
                self._channels.pop(event.channel_id, None)
                self._retired.add(event.channel_id)
            channel.remote_closed()

    def _register_channel(self, channel: RelayChannel) -> None:
        if channel.channel_id is None:
            msg = f"Channel to {channel.remote_id} has no relay id"
            raise TransportError(msg)
        with self._lock:
            self._channels[channel.channel_id] = channel
            pending = self._orphans.pop(channel.channel_id, [])
        for event in pending:
            self._apply(channel, event)

    def _require_open(self) -> str:
        if self.peer_id is None:
            msg = "Transport is not open"
            raise TransportError(msg)
        return self.peer_id

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._token}"} if self._token else {}

    @staticmethod
    def _describe(error: requests.RequestException) -> str:
        response = error.response
        if response is not None:
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and isinstance(body.get("detail"), str):
                return body["detail"]
        return str(error)
