"""
RelayTransport against the real relay app, routed through FastAPI's TestClient.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Iterator
from unittest.mock import MagicMock, Mock

import pytest
import requests
from fastapi.testclient import TestClient

from peerchat.common.exceptions import TransportError
from peerchat.relay import RelayServer
from peerchat.session import ConnectionManager, ConnectionState, Origin, SessionStatus
from peerchat.transport import RelayTransport
from peerchat.transport.relay import RelayChannel

RELAY_URL = "http://testserver"


class RelayResponse:
    """requests-style view of a TestClient response."""

    def __init__(self, response: Any) -> None:
        self._response = response
        self.status_code = response.status_code

    def json(self) -> Any:
        return self._response.json()

    def raise_for_status(self) -> None:
        if self.status_code >= 400:  # noqa: PLR2004
            msg = f"{self.status_code} error"
            raise requests.HTTPError(msg, response=self)  # type: ignore[arg-type]


class RelaySession:
    """Stands in for ``requests.Session``; every call goes to the in-process app."""

    def __init__(self, client: TestClient) -> None:
        self.client = client

    def request(self, method: str, url: str, **kwargs: Any) -> RelayResponse:
        kwargs.pop("timeout", None)
        return RelayResponse(self.client.request(method, url, **kwargs))

    def post(self, url: str, **kwargs: Any) -> RelayResponse:
        return self.request("POST", url, **kwargs)

    def get(self, url: str, **kwargs: Any) -> RelayResponse:
        return self.request("GET", url, **kwargs)

    def delete(self, url: str, **kwargs: Any) -> RelayResponse:
        return self.request("DELETE", url, **kwargs)


class FlakyRelaySession(RelaySession):
    """Fails the next ``failures`` event polls with a connection error."""

    def __init__(self, client: TestClient) -> None:
        super().__init__(client)
        self.failures = 0

    def get(self, url: str, **kwargs: Any) -> RelayResponse:
        if self.failures:
            self.failures -= 1
            msg = "blip"
            raise requests.ConnectionError(msg)
        return super().get(url, **kwargs)


@pytest.fixture
def client() -> Iterator[TestClient]:
    with TestClient(RelayServer().app) as c:
        yield c


@pytest.fixture
def make_transport(client: TestClient) -> Callable[..., RelayTransport]:
    def factory(peer_id: str | None = None) -> RelayTransport:
        return RelayTransport(
            relay_url=RELAY_URL,
            peer_id=peer_id,
            http=RelaySession(client),  # type: ignore[arg-type]
            poll_in_thread=False,
        )

    return factory


def pump(*managers: ConnectionManager) -> None:
    """Poll every relay transport and run session tasks until nothing moves."""
    while True:
        moved = 0
        for manager in managers:
            transport = manager.transport
            if isinstance(transport, RelayTransport) and transport.peer_id is not None:
                moved += transport.poll_once(timeout=0)
            moved += manager.dispatcher.run_pending()
        if not moved:
            return


def test_open_registers_with_relay(make_transport: Callable[..., RelayTransport]) -> None:
    transport = make_transport("alice")
    listener = Mock()

    transport.open(listener)

    listener.on_ready.assert_called_once_with("alice")
    assert transport.peer_id == "alice"


def test_open_reports_taken_id(make_transport: Callable[..., RelayTransport]) -> None:
    make_transport("alice").open(Mock())
    listener = Mock()

    make_transport("alice").open(listener)

    listener.on_ready.assert_not_called()
    listener.on_transport_error.assert_called_once_with(
        "Could not register with relay: ID 'alice' is taken"
    )


def test_open_reports_unreachable_relay() -> None:
    http = MagicMock()
    http.post.side_effect = requests.ConnectionError("connection refused")
    transport = RelayTransport(relay_url=RELAY_URL, http=http, poll_in_thread=False)
    listener = Mock()

    transport.open(listener)

    message = listener.on_transport_error.call_args.args[0]
    assert message.startswith("Could not register with relay")
    assert "connection refused" in message


def test_connect_before_open_raises(make_transport: Callable[..., RelayTransport]) -> None:
    with pytest.raises(TransportError, match="not open"):
        make_transport("alice").connect("bob", Mock())


def test_connect_to_unknown_peer_fails_channel(
    make_transport: Callable[..., RelayTransport],
) -> None:
    transport = make_transport("alice")
    transport.open(Mock())
    listener = Mock()

    channel = transport.connect("ghost", listener)

    listener.on_error.assert_called_once_with(channel, "Could not connect to peer ghost")
    with pytest.raises(TransportError):
        channel.send({"type": "stop-typing"})


def test_poll_failure_raises_transport_error() -> None:
    http = MagicMock()
    http.post.return_value.json.return_value = {"peer_id": "alice", "token": "t0k"}
    http.get.side_effect = requests.ConnectionError("gone")
    transport = RelayTransport(relay_url=RELAY_URL, http=http, poll_in_thread=False)
    transport.open(Mock())

    with pytest.raises(TransportError, match="Relay connection lost"):
        transport.poll_once(timeout=0)


def test_session_over_relay(make_transport: Callable[..., RelayTransport]) -> None:
    alice = ConnectionManager(make_transport("alice"))
    bob = ConnectionManager(make_transport("bob"))
    alice.start()
    bob.start()
    pump(alice, bob)
    assert alice.state is ConnectionState.READY
    assert bob.state is ConnectionState.READY

    alice.connect_to("bob")
    pump(alice, bob)

    assert alice.state is ConnectionState.CONNECTED
    assert bob.state is ConnectionState.CONNECTED
    assert alice.session.shared_key is not None
    assert bob.session.shared_key == alice.session.shared_key

    alice.send_chat_message("over the relay")
    pump(alice, bob)
    bob.send_chat_message("loud and clear")
    pump(alice, bob)
    assert bob.transcript.texts(Origin.REMOTE) == ["over the relay"]
    assert alice.transcript.texts(Origin.REMOTE) == ["loud and clear"]

    alice.disconnect()
    pump(alice, bob)
    assert alice.state is ConnectionState.DISCONNECTED
    assert bob.state is ConnectionState.DISCONNECTED


def test_shutdown_unregisters(
    make_transport: Callable[..., RelayTransport], client: TestClient
) -> None:
    transport = make_transport("alice")
    transport.open(Mock())

    transport.shutdown()

    assert transport.peer_id is None
    assert client.get("/health").json()["peers"] == 0


def registered_mock(token: str = "t0k") -> MagicMock:
    http = MagicMock()
    http.post.return_value.json.return_value = {"peer_id": "alice", "token": token}
    http.get.return_value.json.return_value = {"events": []}
    return http


def test_requests_carry_bearer_token() -> None:
    http = registered_mock()
    transport = RelayTransport(relay_url=RELAY_URL, http=http, poll_in_thread=False)
    transport.open(Mock())

    transport.poll_once(timeout=0)
    transport.shutdown()

    expected = {"Authorization": "Bearer t0k"}
    assert "headers" not in http.post.call_args_list[0].kwargs
    assert http.get.call_args.kwargs["headers"] == expected
    assert http.delete.call_args.kwargs["headers"] == expected


def test_key_exchange_hidden_from_other_clients(
    make_transport: Callable[..., RelayTransport], client: TestClient
) -> None:
    alice = ConnectionManager(make_transport("alice"))
    bob = ConnectionManager(make_transport("bob"))
    eve = make_transport("eve")
    eve.open(Mock())
    alice.start()
    bob.start()
    pump(alice, bob)

    alice.connect_to("bob")
    pump(alice)

    anonymous = client.get("/peers/bob/events", params={"timeout": 0})
    assert anonymous.status_code == 401  # noqa: PLR2004
    eve.peer_id = "bob"
    with pytest.raises(TransportError, match="token does not match peer bob"):
        eve.poll_once(timeout=0)

    pump(alice, bob)
    assert bob.state is ConnectionState.CONNECTED
    assert bob.session.shared_key == alice.session.shared_key


def test_outage_reported_once_until_relay_recovers() -> None:
    http = registered_mock()
    ok = http.get.return_value
    http.get.side_effect = [
        requests.ConnectionError("a"),
        requests.ConnectionError("b"),
        ok,
        requests.ConnectionError("c"),
    ]
    transport = RelayTransport(relay_url=RELAY_URL, http=http, poll_in_thread=False)
    listener = Mock()
    transport.open(listener)

    results = [transport.pump_events(timeout=0) for _ in range(4)]

    assert results == [False, False, True, False]
    assert [c.args[0] for c in listener.on_transport_error.call_args_list] == [
        "Relay connection lost: a",
        "Relay connection lost: c",
    ]


def test_retry_after_poll_failure_connects(
    make_transport: Callable[..., RelayTransport], client: TestClient
) -> None:
    flaky = FlakyRelaySession(client)
    alice_transport = RelayTransport(
        relay_url=RELAY_URL,
        peer_id="alice",
        http=flaky,  # type: ignore[arg-type]
        poll_in_thread=False,
    )
    alice = ConnectionManager(alice_transport)
    bob = ConnectionManager(make_transport("bob"))
    alice.start()
    bob.start()
    pump(alice, bob)

    flaky.failures = 1
    assert alice_transport.pump_events(timeout=0) is False
    alice.dispatcher.run_pending()
    assert alice.status == SessionStatus(
        ConnectionState.ERROR, "Relay connection lost: blip"
    )

    assert alice.connect_to("bob") is True
    assert alice_transport.pump_events(timeout=0) is True
    pump(alice, bob)

    assert alice.state is ConnectionState.CONNECTED
    assert bob.state is ConnectionState.CONNECTED
    assert bob.session.shared_key == alice.session.shared_key


def test_poll_thread_keeps_running_after_failure() -> None:
    http = registered_mock()
    ok = http.get.return_value
    polled_again = threading.Event()
    attempts: list[str] = []

    def get(url: str, **kwargs: Any) -> Any:
        attempts.append(url)
        if len(attempts) == 1:
            raise requests.ConnectionError("blip")
        polled_again.set()
        time.sleep(0.01)
        return ok

    http.get.side_effect = get
    transport = RelayTransport(relay_url=RELAY_URL, http=http, retry_delay=0.01)
    listener = Mock()
    transport.open(listener)
    try:
        assert polled_again.wait(5)
    finally:
        transport.shutdown()

    listener.on_transport_error.assert_called_once_with("Relay connection lost: blip")


def test_channel_without_relay_id_is_not_tracked() -> None:
    transport = RelayTransport(
        relay_url=RELAY_URL, http=registered_mock(), poll_in_thread=False
    )
    transport.open(Mock())

    with pytest.raises(TransportError, match="has no relay id"):
        transport._register_channel(RelayChannel(transport, None, "bob"))  # noqa: SLF001
