"""Bounded-size chunking of encoded audio onto a network send primitive."""

from __future__ import annotations

import logging
import threading
from queue import Empty, Full, Queue
from typing import Callable, Iterator, Mapping, Optional

from errors import TransportError

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 4096

AUDIO_EVENT_HEADERS = {
    ":content-type": "audio/pcm",
    ":message-type": "event",
    ":event-type": "AudioEvent",
}

SendFn = Callable[[bytes, Mapping[str, str]], None]
ErrorCallback = Callable[[TransportError], None]


def split_payload(payload: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
    """Yield consecutive slices of ``payload`` no longer than ``chunk_size``."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    view = memoryview(payload)
    for start in range(0, len(view), chunk_size):
        yield bytes(view[start : start + chunk_size])


class ChunkedTransport:
    """Single-sender FIFO between the capture thread and the network.

    Every chunk of one payload is sent before the first chunk of the next,
    and the end-of-stream primitive runs only after all earlier payloads.
    """

    def __init__(
        self,
        send: SendFn,
        end_stream: Callable[[], None],
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        headers: Mapping[str, str] = AUDIO_EVENT_HEADERS,
        queue_maxsize: int = 200,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self._send = send
        self._end_stream = end_stream
        self.chunk_size = chunk_size
        self._headers = dict(headers)
        self._on_error = on_error
        self._queue: Queue[bytes] = Queue(maxsize=queue_maxsize)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._finishing = False
        self.sent_chunks = 0
        self.dropped_payloads = 0

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._worker, name="chunked-transport", daemon=True)
        self._thread.start()

    def submit(self, payload: bytes) -> bool:
        """Queue one payload without blocking; False if it was dropped."""
        if self._finishing or self._stop_event.is_set() or not payload:
            return False
        try:
            self._queue.put_nowait(payload)
        except Full:
            self.dropped_payloads += 1
            logger.warning("transport queue full, dropped %d byte payload", len(payload))
            return False
        return True

    def finish(self) -> None:
        """Send end-of-stream after everything already queued."""
        if self._finishing:
            return
        self._finishing = True

    def close(self) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=0.5)

    def _worker(self) -> None:
        while not self._stop_event.is_set():
            try:
                item = self._queue.get(timeout=0.2)
            except Empty:
                if self._finishing:
                    self._guarded(self._end_stream)
                    return
                continue
            self._guarded(lambda: self._send_payload(item))

    def _send_payload(self, payload: bytes) -> None:
        for chunk in split_payload(payload, self.chunk_size):
            if self._stop_event.is_set():
                return
            self._send(chunk, dict(self._headers))
            self.sent_chunks += 1

    def _guarded(self, action: Callable[[], None]) -> None:
        if self._stop_event.is_set():
            return
        try:
            action()
        except Exception as exc:
            self._stop_event.set()
            error = exc if isinstance(exc, TransportError) else TransportError(str(exc))
            logger.warning("transport send failed: %s", error)
            if self._on_error:
                self._on_error(error)
