"""
Loopback example: two sessions talking over the in-memory network.

Alice connects to Bob, both exchange a message and Bob shows the typing
indicator before Alice hangs up.
"""

import logging
import sys
import time
from pathlib import Path

# Add the project root to the path to import peerchat
sys.path.insert(0, str(Path(__file__).parent.parent))

from peerchat.common.interfaces import SessionListener
from peerchat.common.models import SessionConfig
from peerchat.session import ConnectionManager
from peerchat.transport import MemoryNetwork, MemoryTransport


class PrintingListener(SessionListener):
    def __init__(self, label: str) -> None:
        self.label = label

    def status_changed(self, status) -> None:  # noqa: ANN001
        print(f"[{self.label}] status: {status}")

    def transcript_appended(self, entry) -> None:  # noqa: ANN001
        print(f"[{self.label}] {entry.origin.value}: {entry.text}")

    def presence_changed(self, is_typing: bool, name: str) -> None:  # noqa: FBT001
        print(f"[{self.label}] {name} {'is typing' if is_typing else 'stopped typing'}")


def make_session(network: MemoryNetwork, peer_id: str, name: str) -> ConnectionManager:
    manager = ConnectionManager(
        MemoryTransport(network, peer_id=peer_id),
        listener=PrintingListener(name),
        session_config=SessionConfig(display_name=name, typing_stop_delay=0.5),
    )
    manager.dispatcher.start_in_thread()
    manager.start()
    return manager


def main() -> None:
    logging.basicConfig(level=logging.WARNING)
    network = MemoryNetwork()
    alice = make_session(network, "alice", "Alice")
    bob = make_session(network, "bob", "Bob")

    try:
        time.sleep(0.1)
        alice.connect_to("bob")
        time.sleep(0.1)

        alice.send_chat_message("Hi Bob, can you read this?")
        bob.notify_local_activity()
        time.sleep(0.8)  # Let the stop-typing timer fire
        bob.send_chat_message("Loud and clear")
        time.sleep(0.1)
    finally:
        alice.shutdown()
        bob.shutdown()
        alice.dispatcher.stop_thread(timeout=2)
        bob.dispatcher.stop_thread(timeout=2)


if __name__ == "__main__":
    main()
