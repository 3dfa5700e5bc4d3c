"""
Typing indicator sub-protocol.

The local half turns bursts of activity into one ``typing`` frame per call
and a single ``stop-typing`` frame once activity has paused for the stop
delay. The remote half mirrors what the peer announces; it has no timer of
its own and is cleared by the disconnect handler.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from peerchat.common.config import Config
from peerchat.common.models import TypingStart, TypingStop
from peerchat.session.domain.entities import PresenceState

if TYPE_CHECKING:
    from peerchat.common.interfaces import IScheduler
    from peerchat.common.models import Envelope

logger = logging.getLogger(__name__)

SendEnvelope = Callable[["Envelope"], object]


class PresenceSignal:
    """Debounced typing state machine for both directions."""

    def __init__(
        self,
        scheduler: IScheduler,
        stop_delay: float | None = None,
        default_remote_name: str | None = None,
    ) -> None:
        config = Config()
        self.scheduler = scheduler
        self.stop_delay = stop_delay if stop_delay is not None else config.TYPING_STOP_DELAY
        self.default_remote_name = default_remote_name or config.DEFAULT_REMOTE_NAME
        self.state = PresenceState()
        self._send: SendEnvelope | None = None
        self._token: object | None = None

    @property
    def is_local_typing(self) -> bool:
        return self.state.pending_stop_timer is not None

    def notify_local_activity(self, send: SendEnvelope, name: str) -> None:
        """Announce typing and push the stop signal back by the full delay."""
        send(TypingStart(name=name))
        self._arm(send)

    def fire_stop_timer(self, token: object | None = None) -> bool:
        """
        Timer entry point: send ``stop-typing`` and disarm.

        A fire carrying a token from a timer that has since been replaced or
        cancelled is ignored.
        """
        if self._send is None or (token is not None and token is not self._token):
            return False
        send = self._send
        self._disarm()
        send(TypingStop())
        return True

    def supersede(self, send: SendEnvelope) -> bool:
        """A sent message ends the typing indicator at once."""
        if not self.is_local_typing:
            return False
        self._disarm()
        send(TypingStop())
        return True

    def cancel(self) -> None:
        """Disarm without signalling; used when the channel is gone."""
        self._disarm()

    def on_remote_typing(self, name: str) -> bool:
        name = name or self.default_remote_name
        changed = not self.state.remote_is_typing or self.state.remote_name != name
        self.state.remote_is_typing = True
        self.state.remote_name = name
        return changed

    def on_remote_stop(self) -> bool:
        changed = self.state.remote_is_typing
        self.state.remote_is_typing = False
        return changed

    def clear_remote(self) -> bool:
        return self.on_remote_stop()

    def _arm(self, send: SendEnvelope) -> None:
        self._disarm()
        token = object()
        self._token = token
        self._send = send
        self.state.pending_stop_timer = self.scheduler.call_later(
            self.stop_delay, lambda: self.fire_stop_timer(token)
        )

    def _disarm(self) -> None:
        timer = self.state.pending_stop_timer
        if timer is not None:
            timer.cancel()
        self.state.pending_stop_timer = None
        self._send = None
        self._token = None
