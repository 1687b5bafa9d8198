from __future__ import annotations

import logging
from queue import Empty, Queue
from threading import Event
from typing import Any, Callable, Tuple

logger = logging.getLogger(__name__)

Task = Tuple[Callable[..., Any], Tuple[Any, ...]]


class UiLoop:
    """Serializes callbacks onto one thread.

    Any thread may ``post``; only the thread running ``run`` or ``run_pending``
    executes the callbacks, so state owned by the UI side needs no locking.
    """

    def __init__(self, poll_interval: float = 0.1):
        self.poll_interval = poll_interval
        self._queue: "Queue[Task]" = Queue()

    def post(self, fn: Callable[..., Any], *args: Any) -> None:
        self._queue.put((fn, args))

    def run(self, stop_event: Event) -> None:
        while not stop_event.is_set():
            try:
                fn, args = self._queue.get(timeout=self.poll_interval)
            except Empty:
                continue
            self._execute(fn, args)

    def run_pending(self) -> int:
        executed = 0
        while True:
            try:
                fn, args = self._queue.get_nowait()
            except Empty:
                return executed
            self._execute(fn, args)
            executed += 1

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def _execute(self, fn: Callable[..., Any], args: Tuple[Any, ...]) -> None:
        try:
            fn(*args)
        except Exception:
            logger.error("UI callback %s failed", getattr(fn, "__name__", fn), exc_info=True)
