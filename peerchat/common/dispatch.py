"""
Serialized task execution and timers for session event handling.

Transport callbacks, timer fires and user calls may arrive on any thread.
Everything that touches session state goes through one ``SerialDispatcher``
so the handlers run strictly one at a time, in arrival order.
"""

from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import Future
from functools import partial
from typing import TYPE_CHECKING, Any, Callable

if TYPE_CHECKING:
    from peerchat.common.interfaces import IScheduler, TimerHandle

logger = logging.getLogger(__name__)

_Task = tuple[Callable[..., Any], tuple[Any, ...], "Future[Any]"]


class SerialDispatcher:
    """Single-consumer task queue with an optional worker thread."""

    def __init__(self) -> None:
        self._queue: queue.Queue[_Task | None] = queue.Queue()
        self._thread: threading.Thread | None = None
        self._running = False
        self._active: threading.Thread | None = None

    @property
    def is_threaded(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def post(self, fn: Callable[..., Any], *args: Any) -> Future[Any]:
        """Queue a task; safe to call from any thread."""
        future: Future[Any] = Future()
        self._queue.put((fn, args, future))
        return future

    def call(self, fn: Callable[..., Any], *args: Any) -> Any:
        """
        Run a task after everything queued before it and return its result.

        Called from inside a running task, the work is queued behind that task
        instead and its ``Future`` is returned.
        """
        if self._active is threading.current_thread():
            return self.post(fn, *args)
        if self.is_threaded:
            return self.post(fn, *args).result()
        self.run_pending()
        self._active = threading.current_thread()
        try:
            return fn(*args)
        finally:
            self._active = None

    def run_pending(self) -> int:
        """Drain the queue on the calling thread. Returns the number of tasks run."""
        if self.is_threaded:
            msg = "run_pending() cannot be used while the worker thread is running"
            raise RuntimeError(msg)
        count = 0
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                break
            if item is not None:
                self._execute(item)
                count += 1
        return count

    def run(self) -> None:
        """Process tasks until ``stop_thread`` is called."""
        self._running = True
        while self._running:
            item = self._queue.get()
            if item is None:
                break
            self._execute(item)

    def start_in_thread(self) -> None:
        """Start the worker loop in a separate daemon thread."""
        if self.is_threaded:
            logger.warning("Dispatcher is already running in a thread")
            return
        self._thread = threading.Thread(
            target=self.run, name="peerchat-dispatcher", daemon=True
        )
        self._thread.start()
        logger.debug("Dispatcher started in background thread")

    def stop_thread(self, timeout: float | None = None) -> None:
        """Stop the worker loop after the tasks already queued."""
        self._running = False
        self._queue.put(None)
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None

    def _execute(self, item: _Task) -> None:
        fn, args, future = item
        if not future.set_running_or_notify_cancel():
            return
        self._active = threading.current_thread()
        try:
            result = fn(*args)
        except Exception as e:
            logger.exception("Session task %s failed", getattr(fn, "__name__", fn))
            future.set_exception(e)
        else:
            future.set_result(result)
        finally:
            self._active = None


class ThreadingScheduler:
    """Runs callbacks on ``threading.Timer`` daemon threads."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return timer


class DispatchingScheduler:
    """Wraps a scheduler so that every fired callback runs as a dispatcher task."""

    def __init__(self, scheduler: IScheduler, dispatcher: SerialDispatcher) -> None:
        self._scheduler = scheduler
        self._dispatcher = dispatcher

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return self._scheduler.call_later(
            delay, partial(self._dispatcher.post, callback)
        )
