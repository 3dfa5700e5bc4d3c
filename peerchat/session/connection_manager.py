"""
Connection lifecycle state machine for one peer-to-peer chat session.

``ConnectionManager`` is the only owner of the ``Session`` record. Transport
callbacks, presence timer fires and public calls are all funnelled through
its ``SerialDispatcher``; the ``_handle_*`` and ``_do_*`` methods below run
one at a time and never concurrently with each other.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

from peerchat.common import Configurable, SerialDispatcher, setup_logger
from peerchat.common.config import Config
from peerchat.common.dispatch import DispatchingScheduler, ThreadingScheduler
from peerchat.common.exceptions import (
    CipherError,
    EnvelopeError,
    KeyExchangeError,
    TransportError,
)
from peerchat.common.interfaces import SessionListener
from peerchat.common.models import (
    ChatMessage,
    KeyAnnounce,
    SessionConfig,
    TypingStart,
    TypingStop,
    UserInfo,
)
from peerchat.session.cipher_codec import CipherCodec
from peerchat.session.domain.entities import (
    ConnectionState,
    Origin,
    PresenceState,
    Session,
    SessionStatus,
    Transcript,
    TranscriptEntry,
)
from peerchat.session.envelope_codec import EnvelopeCodec
from peerchat.session.key_exchange import KeyExchange
from peerchat.session.presence import PresenceSignal

if TYPE_CHECKING:
    from peerchat.common.interfaces import IChannel, IScheduler, ITransport
    from peerchat.common.models import Envelope

logger = logging.getLogger(__name__)

NOT_READY_TO_SEND = (
    "You need to be connected and have an encryption key to send a message"
)
DISCONNECTED_TEXT = "Connection has been disconnected"

CONNECTABLE_STATES = frozenset(
    {ConnectionState.READY, ConnectionState.DISCONNECTED, ConnectionState.ERROR}
)
ACTIVE_STATES = frozenset({ConnectionState.CONNECTING, ConnectionState.CONNECTED})


class ConnectionManager(Configurable):
    """Orchestrates transport events, key exchange, messaging and presence."""

    def __init__(  # noqa: PLR0913
        self,
        transport: ITransport,
        listener: SessionListener | None = None,
        session_config: SessionConfig | None = None,
        cipher_codec: CipherCodec | None = None,
        scheduler: IScheduler | None = None,
        dispatcher: SerialDispatcher | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.config: Config = Config()
        overrides = (session_config or SessionConfig()).model_dump(exclude_none=True)
        self.apply_overrides(
            overrides,
            self.config,
            [
                "typing_stop_delay",
                "decryption_placeholder",
                "default_remote_name",
                "timestamp_format",
                "log_level",
            ],
        )
        if "log_level" in overrides:
            setup_logger(logger, self.log_level)

        self.transport = transport
        self.listener = listener or SessionListener()
        self.dispatcher = dispatcher or SerialDispatcher()
        self.cipher_codec = cipher_codec or CipherCodec()
        self.key_exchange = KeyExchange(self.cipher_codec)
        self.envelope_codec = EnvelopeCodec()
        self.presence = PresenceSignal(
            DispatchingScheduler(scheduler or ThreadingScheduler(), self.dispatcher),
            stop_delay=self.typing_stop_delay,
            default_remote_name=self.default_remote_name,
        )
        display_name = (overrides.get("display_name") or "").strip()
        self.session = Session(local_name=display_name or None)
        self.transcript = Transcript()
        self.setup_error: str | None = None
        self._channel: IChannel | None = None
        self._clock = clock or datetime.now

    # Read-only views

    @property
    def state(self) -> ConnectionState:
        return self.session.state

    @property
    def status(self) -> SessionStatus:
        return self.session.status

    @property
    def presence_state(self) -> PresenceState:
        return self.presence.state

    # Public operations. Called from a listener callback, an operation is
    # queued behind the event being handled and reports True.

    def start(self) -> bool:
        """Request a local identity from the transport provider."""
        return bool(self.dispatcher.call(self._do_start))

    def set_display_name(self, name: str) -> bool:
        """Set the name announced to the peer. Blank names are rejected."""
        return bool(self.dispatcher.call(self._do_set_display_name, name))

    def connect_to(self, remote_id: str) -> bool:
        """
        Open a channel to a remote peer.

        Valid from Ready, Disconnected or Error. Blank ids are rejected with a
        notification before the transport is involved.
        """
        return bool(self.dispatcher.call(self._do_connect_to, remote_id))

    def send_chat_message(self, text: str) -> bool:
        """Encrypt and send one chat message; empty text is silently ignored."""
        return bool(self.dispatcher.call(self._do_send_chat_message, text))

    def notify_local_activity(self) -> bool:
        """Report local typing activity."""
        return bool(self.dispatcher.call(self._do_notify_local_activity))

    def disconnect(self) -> bool:
        """Close the active or pending channel."""
        return bool(self.dispatcher.call(self._do_disconnect))

    def shutdown(self) -> None:
        """Disconnect and release the transport provider."""
        self.dispatcher.call(self._do_shutdown)

    # TransportListener / ChannelListener: may be called from any thread

    def on_ready(self, local_id: str) -> None:
        self.dispatcher.post(self._handle_ready, local_id)

    def on_transport_error(self, reason: str) -> None:
        self.dispatcher.post(self._handle_transport_error, reason)

    def on_incoming_channel(self, channel: IChannel) -> None:
        self.dispatcher.post(self._handle_incoming_channel, channel)

    def on_open(self, channel: IChannel) -> None:
        self.dispatcher.post(self._handle_open, channel)

    def on_data(self, channel: IChannel, payload: dict[str, Any]) -> None:
        self.dispatcher.post(self._handle_data, channel, payload)

    def on_close(self, channel: IChannel) -> None:
        self.dispatcher.post(self._handle_close, channel)

    def on_error(self, channel: IChannel, reason: str) -> None:
        self.dispatcher.post(self._handle_channel_error, channel, reason)

    # Operations

    def _do_start(self) -> bool:
        if self.session.state is not ConnectionState.IDLE:
            logger.warning("start() ignored in state %s", self.session.status)
            return False
        self.setup_error = None
        try:
            self.transport.open(self)
        except TransportError as e:
            self._setup_failed(str(e))
            return False
        return True

    def _do_set_display_name(self, name: str) -> bool:
        name = (name or "").strip()
        if not name:
            self._notify("Please enter a name")
            return False
        self.session.local_name = name
        if self._is_connected():
            self._send(UserInfo(name=name))
        return True

    def _do_connect_to(self, remote_id: str) -> bool:
        remote_id = (remote_id or "").strip()
        if not remote_id:
            self._notify("Please enter a Peer ID")
            return False
        if self.session.state not in CONNECTABLE_STATES:
            self._notify(f"Cannot connect while {self.session.status}")
            return False
        if remote_id == self.session.local_id:
            self._notify("Cannot connect to your own Peer ID")
            return False

        if self.session.state is not ConnectionState.READY:
            self._reenter_ready()
        self.session.remote_id = remote_id
        self._transition(ConnectionState.CONNECTING)
        try:
            channel = self.transport.connect(remote_id, self)
        except TransportError as e:
            self._enter_error(str(e))
            return False
        self._channel = channel
        return True

    def _do_send_chat_message(self, text: str) -> bool:
        if not text:
            return False
        key = self.session.shared_key
        if key is None or not self._is_connected():
            self._notify(NOT_READY_TO_SEND)
            return False
        try:
            nonce, ciphertext = self.cipher_codec.encrypt(key, text)
        except CipherError:
            logger.exception("Encrypting outgoing message failed")
            self._notify("Failed to encrypt message")
            return False
        if not self._send(ChatMessage(nonce=nonce, ciphertext=ciphertext)):
            return False
        self._record(Origin.LOCAL, text)
        self.presence.supersede(self._send)
        return True

    def _do_notify_local_activity(self) -> bool:
        if not self._is_connected():
            return False
        self.presence.notify_local_activity(self._send, self.session.local_name or "")
        if not self._is_connected():
            # The typing frame itself failed and moved the session to Error
            self.presence.cancel()
            return False
        return True

    def _do_disconnect(self) -> bool:
        if self.session.state not in ACTIVE_STATES:
            return False
        self._drop_channel()
        self._enter_disconnected()
        return True

    def _do_shutdown(self) -> None:
        if self.session.state in ACTIVE_STATES:
            self._do_disconnect()
        self.presence.cancel()
        try:
            self.transport.shutdown()
        except TransportError as e:
            logger.warning("Transport shutdown failed: %s", e)

    # Transport event handlers

    def _handle_ready(self, local_id: str) -> None:
        if self.session.state is not ConnectionState.IDLE:
            logger.warning("Ignoring ready event in state %s", self.session.status)
            return
        self.session.local_id = local_id
        logger.info("Local peer id assigned: %s", local_id)
        self._transition(ConnectionState.READY)
        self._generate_local_key()

    def _handle_transport_error(self, reason: str) -> None:
        if self.session.state is ConnectionState.IDLE:
            self._setup_failed(reason)
        else:
            self._enter_error(reason)

    def _handle_incoming_channel(self, channel: IChannel) -> None:
        if self.session.state not in CONNECTABLE_STATES:
            logger.warning(
                "Refusing channel from %s in state %s",
                channel.remote_id,
                self.session.status,
            )
            self._close_quietly(channel)
            self._notify(f"Refused connection from {channel.remote_id}")
            return
        if self.session.state is not ConnectionState.READY:
            self._reenter_ready()
        # Passive side: keep the key generated at Ready until the peer announces its own
        self._channel = channel
        self.session.remote_id = channel.remote_id
        channel.bind(self)
        logger.info("Accepted channel from %s", channel.remote_id)
        self._transition(ConnectionState.CONNECTED)
        self._notify("New connection established")

    def _handle_open(self, channel: IChannel) -> None:
        connecting = self.session.state is ConnectionState.CONNECTING
        if channel is not self._channel or not connecting:
            logger.debug("Ignoring open event for inactive channel")
            return
        self._transition(ConnectionState.CONNECTED)
        if not self._announce_key():
            return
        self._notify("Connection established")

    def _handle_data(self, channel: IChannel, payload: Any) -> None:
        if channel is not self._channel:
            logger.debug("Ignoring data from inactive channel")
            return
        if self.session.state is not ConnectionState.CONNECTED:
            logger.debug("Ignoring data in state %s", self.session.status)
            return
        try:
            envelope = self.envelope_codec.decode(payload)
        except EnvelopeError as e:
            logger.warning("Dropping envelope from %s: %s", self.session.remote_id, e)
            return
        if envelope is None:
            logger.debug("Ignoring envelope with unknown type from %s", self.session.remote_id)
            return
        self._dispatch_envelope(envelope)

    def _handle_close(self, channel: IChannel) -> None:
        if channel is not self._channel:
            logger.debug("Ignoring close of inactive channel")
            return
        self._enter_disconnected()

    def _handle_channel_error(self, channel: IChannel, reason: str) -> None:
        if channel is not self._channel:
            logger.debug("Ignoring error on inactive channel: %s", reason)
            return
        self._enter_error(reason)

    # Envelope handlers

    def _dispatch_envelope(self, envelope: Envelope) -> None:
        if isinstance(envelope, KeyAnnounce):
            self._on_key_announce(envelope)
        elif isinstance(envelope, ChatMessage):
            self._on_chat_message(envelope)
        elif isinstance(envelope, TypingStart):
            if self.presence.on_remote_typing(envelope.name):
                self._presence_changed()
        elif isinstance(envelope, TypingStop):
            if self.presence.on_remote_stop():
                self._presence_changed()
        elif isinstance(envelope, UserInfo):
            self._on_user_info(envelope)

    def _on_key_announce(self, envelope: KeyAnnounce) -> None:
        try:
            key = self.key_exchange.import_received(envelope.key)
        except KeyExchangeError as e:
            logger.warning("Rejected key announced by %s: %s", self.session.remote_id, e)
            self._record(Origin.SYSTEM, str(e))
            self._notify(str(e))
            return
        if self.session.shared_key is not None:
            logger.info("Session key replaced by a new announce")
        self.session.shared_key = key
        self._record(Origin.SYSTEM, "Received encryption key")

    def _on_chat_message(self, envelope: ChatMessage) -> None:
        key = self.session.shared_key
        if key is None:
            logger.warning("Message from %s arrived before any key", self.session.remote_id)
            text = self.decryption_placeholder
        else:
            try:
                text = self.cipher_codec.decrypt(key, envelope.nonce, envelope.ciphertext)
            except CipherError as e:
                logger.warning("Could not decrypt message from %s: %s", self.session.remote_id, e)
                text = self.decryption_placeholder
        self._record(Origin.REMOTE, text)
        self._notify("New message received")

    def _on_user_info(self, envelope: UserInfo) -> None:
        name = envelope.name.strip()
        if not name or name == self.session.remote_name:
            return
        self.session.remote_name = name
        self.listener.remote_name_changed(name)

    # State helpers

    def _is_connected(self) -> bool:
        return self.session.state is ConnectionState.CONNECTED and self._channel is not None

    def _transition(self, state: ConnectionState, reason: str | None = None) -> None:
        previous = self.session.status
        self.session.state = state
        self.session.error_reason = reason
        status = self.session.status
        if status != previous:
            logger.info("Session state %s -> %s", previous, status)
            self.listener.status_changed(status)

    def _generate_local_key(self) -> None:
        try:
            self.session.local_key = self.key_exchange.generate_session_key()
        except KeyExchangeError as e:
            self.session.local_key = None
            logger.error("Session key generation failed: %s", e)  # noqa: TRY400
            self._notify(str(e))

    def _announce_key(self) -> bool:
        """Initiator side: send the local key and adopt it as the shared key."""
        key = self.session.local_key
        if key is None:
            self._record(Origin.SYSTEM, "No encryption key available to send")
            return True
        try:
            exported = self.key_exchange.export_for_transmission(key)
        except KeyExchangeError as e:
            logger.error("Could not export local key: %s", e)  # noqa: TRY400
            self._record(Origin.SYSTEM, str(e))
            return True
        if not self._send(KeyAnnounce(key=exported)):
            return False
        self.session.shared_key = key
        if self.session.local_name and not self._send(UserInfo(name=self.session.local_name)):
            return False
        self._record(Origin.SYSTEM, "Sent encryption key")
        return True

    def _reenter_ready(self) -> None:
        self._drop_channel()
        self.presence.cancel()
        self.session.reset()
        self._transition(ConnectionState.READY)
        self._generate_local_key()

    def _enter_disconnected(self) -> None:
        self._channel = None
        self.presence.cancel()
        if self.presence.clear_remote():
            self._presence_changed()
        self.session.reset()
        self._transition(ConnectionState.DISCONNECTED)
        self._record(Origin.SYSTEM, DISCONNECTED_TEXT)
        self._notify(DISCONNECTED_TEXT)

    def _enter_error(self, reason: str) -> None:
        logger.warning("Session error: %s", reason)
        self.presence.cancel()
        self._transition(ConnectionState.ERROR, reason)
        self._record(Origin.SYSTEM, f"Connection error: {reason}")
        self._notify(f"Connection error: {reason}")

    def _setup_failed(self, reason: str) -> None:
        self.setup_error = reason
        logger.error("Could not obtain a local identity: %s", reason)
        self._record(Origin.SYSTEM, f"Error: {reason}")
        self._notify(f"Error: {reason}")

    def _drop_channel(self) -> None:
        channel, self._channel = self._channel, None
        if channel is not None:
            self._close_quietly(channel)

    @staticmethod
    def _close_quietly(channel: IChannel) -> None:
        try:
            channel.close()
        except TransportError as e:
            logger.debug("Closing channel to %s failed: %s", channel.remote_id, e)

    def _send(self, envelope: Envelope) -> bool:
        channel = self._channel
        if channel is None:
            return False
        try:
            channel.send(self.envelope_codec.encode(envelope))
        except TransportError as e:
            logger.warning("Send to %s failed: %s", channel.remote_id, e)
            self._enter_error(str(e))
            return False
        return True

    # Presentation events

    def _record(self, origin: Origin, text: str) -> None:
        entry = TranscriptEntry(
            origin=origin,
            text=text,
            timestamp=self._clock().strftime(self.timestamp_format),
        )
        self.transcript.append(entry)
        self.listener.transcript_appended(entry)

    def _presence_changed(self) -> None:
        state = self.presence.state
        self.listener.presence_changed(state.remote_is_typing, state.remote_name)

    def _notify(self, message: str) -> None:
        logger.debug("Notify: %s", message)
        self.listener.notify(message)
