"""Ordered, single-threaded event delivery for one recognition session."""

from __future__ import annotations

import logging
import threading
from queue import Empty, Queue
from typing import Callable, Optional

from models import RecognitionEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[RecognitionEvent], None]
Task = Callable[[], None]


def ignore_event(event: RecognitionEvent) -> None:
    return None


class EventChannel:
    """Runs posted tasks one at a time, in order, on a private thread.

    Backend callbacks arrive on arbitrary threads; they post work here so
    transcript state has a single writer and observers never see two
    events of the same session concurrently.
    """

    def __init__(self, name: str = "recognition-events") -> None:
        self._name = name
        self._queue: Queue[Optional[Task]] = Queue()
        self._thread: Optional[threading.Thread] = None
        self._closed = threading.Event()

    @property
    def is_current(self) -> bool:
        return self._thread is threading.current_thread()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._closed.clear()
        self._thread = threading.Thread(target=self._worker, name=self._name, daemon=True)
        self._thread.start()

    def post(self, task: Task) -> bool:
        if self._closed.is_set():
            return False
        self._queue.put(task)
        return True

    def close(self) -> None:
        """Stop after the tasks already posted have run."""
        if self._closed.is_set():
            return
        self._closed.set()
        self._queue.put(None)

    def join(self, timeout: float = 1.0) -> None:
        thread = self._thread
        if thread and thread.is_alive() and not self.is_current:
            thread.join(timeout=timeout)

    def _worker(self) -> None:
        while True:
            try:
                task = self._queue.get(timeout=0.2)
            except Empty:
                continue
            if task is None:
                return
            try:
                task()
            except Exception:
                logger.exception("event task failed on %s", self._name)
