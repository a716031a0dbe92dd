"""Recognizer state machine and the DashScope cloud streaming variant.

Each call to ``start`` opens one recognition session: a private event
channel, a fresh transcript merger and the backend handle for that
session. Backend callbacks arrive on SDK or worker threads and are posted
onto the session's channel, which applies them to the merger and delivers
``RecognitionEvent`` objects to ``event_handler`` strictly in order.
"""

from __future__ import annotations

import logging
import os
import threading
import uuid
from typing import Any, Callable, Optional

from audio_convert import FormatConverter
from cloud_client import DEFAULT_CLOUD_MODEL, DashscopeStreamingClient
from errors import (
    SessionInitError,
    TranscriptionError,
    UnsupportedFormat,
    classify_backend_error,
)
from events import EventChannel, EventHandler, ignore_event
from interfaces import AuthorizationCallback, StreamingClient
from models import (
    PCM16_MONO_16K,
    AudioFormat,
    AudioFrame,
    AuthorizationStatus,
    Provider,
    RecognitionEvent,
    RecognitionKind,
    RecognizerState,
    ResultBatch,
)
from transcript import TranscriptMerger
from transport import DEFAULT_CHUNK_SIZE, ChunkedTransport

logger = logging.getLogger(__name__)


class RecognitionRun:
    """Everything owned by one recognition session."""

    def __init__(self, provider: str, on_ready: Callable[[], None]) -> None:
        self.id = str(uuid.uuid4())
        self.merger = TranscriptMerger(provider=provider)
        self.channel = EventChannel(name=f"recognition-{self.id[:8]}")
        self.on_ready = on_ready
        self.finished = False
        self.cancelled = False
        self.backend: Any = None
        self.transport: Optional[ChunkedTransport] = None


class BaseRecognizer:
    provider = Provider.CLOUD.value

    def __init__(
        self,
        target_format: AudioFormat = PCM16_MONO_16K,
        event_handler: Optional[EventHandler] = None,
    ) -> None:
        self.event_handler: EventHandler = event_handler or ignore_event
        self.target_format = target_format
        self._converter = FormatConverter(target_format)
        self._lock = threading.RLock()
        self._state = RecognizerState.IDLE
        self._run: Optional[RecognitionRun] = None
        self.dropped_frames = 0

    @property
    def state(self) -> RecognizerState:
        return self._state

    def is_authorized(self) -> bool:
        raise NotImplementedError

    def request_authorization(self, callback: AuthorizationCallback) -> None:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def start(self, on_ready: Callable[[], None]) -> None:
        with self._lock:
            if self._state not in (RecognizerState.IDLE, RecognizerState.CLOSED):
                raise SessionInitError(f"recognition session already {self._state.value}")
            if not self.is_authorized():
                raise SessionInitError("speech recognition is not authorized")

            run = RecognitionRun(self.provider, on_ready)
            self._converter.reset()
            self._run = run
            self._transition(RecognizerState.STARTING)
            run.channel.start()
            try:
                self._open(run)
            except Exception as exc:
                self._run = None
                self._transition(RecognizerState.CLOSED)
                run.channel.close()
                if isinstance(exc, SessionInitError):
                    raise
                raise SessionInitError(str(exc)) from exc

    def feed(self, frame: AudioFrame) -> None:
        run = self._run
        if run is None or self._state is not RecognizerState.STREAMING:
            return
        try:
            payload = self._converter.convert(frame)
        except UnsupportedFormat as exc:
            self.dropped_frames += 1
            logger.debug("dropping frame: %s", exc)
            return
        if payload:
            self._submit(run, payload)

    def stop(self) -> None:
        with self._lock:
            run = self._run
            if run is None or self._state not in (
                RecognizerState.STARTING,
                RecognizerState.STREAMING,
            ):
                return
            self._transition(RecognizerState.FINISHING)
            self._begin_stopping(run)
            self._end_input(run)

    def cancel(self) -> None:
        """Abort the session; no further results are delivered."""
        with self._lock:
            run = self._run
            if run is None or self._state in (RecognizerState.IDLE, RecognizerState.CLOSED):
                return
            self._transition(RecognizerState.CLOSED)
            self._run = None
            run.cancelled = True
        run.channel.post(lambda: self._complete(run, None))

    # ------------------------------------------------------------------
    # Variant hooks
    # ------------------------------------------------------------------

    def _begin_stopping(self, run: RecognitionRun) -> None:
        run.channel.post(run.merger.begin_stopping)

    def _open(self, run: RecognitionRun) -> None:
        raise NotImplementedError

    def _submit(self, run: RecognitionRun, payload: bytes) -> None:
        raise NotImplementedError

    def _end_input(self, run: RecognitionRun) -> None:
        raise NotImplementedError

    def _close_backend(self, run: RecognitionRun) -> None:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Called from backend threads
    # ------------------------------------------------------------------

    def _mark_ready(self, run: RecognitionRun) -> None:
        with self._lock:
            if self._run is not run or self._state is not RecognizerState.STARTING:
                return
            self._transition(RecognizerState.STREAMING)
        run.channel.post(lambda: self._deliver_ready(run))

    def _post_batch(self, run: RecognitionRun, batch: ResultBatch) -> None:
        run.channel.post(lambda: self._apply_batch(run, batch))

    def _post_closed(self, run: RecognitionRun) -> None:
        run.channel.post(lambda: self._backend_closed(run))

    def _fail(self, run: RecognitionRun, error: Exception) -> None:
        if not isinstance(error, TranscriptionError):
            error = classify_backend_error(str(error))
        run.channel.post(lambda: self._complete(run, error))

    # ------------------------------------------------------------------
    # Run on the session's event channel
    # ------------------------------------------------------------------

    def _deliver_ready(self, run: RecognitionRun) -> None:
        if run.finished or run.cancelled:
            return
        run.on_ready()
        self._emit(RecognitionEvent(kind=RecognitionKind.READY.value, source_id=run.id))

    def _apply_batch(self, run: RecognitionRun, batch: ResultBatch) -> None:
        if run.finished or run.cancelled:
            return
        update = run.merger.apply(batch)
        if update is None:
            return
        self._emit(RecognitionEvent.from_update(update))
        if run.merger.closed:
            self._complete(run, None)

    def _backend_closed(self, run: RecognitionRun) -> None:
        if run.finished or run.cancelled:
            return
        update = run.merger.finish()
        if update is not None:
            self._emit(RecognitionEvent.from_update(update))
        self._complete(run, None)

    def _complete(self, run: RecognitionRun, error: Optional[Exception]) -> None:
        if run.finished:
            return
        run.finished = True
        with self._lock:
            if self._run is run:
                self._transition(RecognizerState.CLOSED)
        try:
            self._close_backend(run)
        except Exception as exc:
            logger.warning("closing %s backend failed: %s", self.provider, exc)
        if error is not None:
            logger.warning("%s recognition ended with error: %s", self.provider, error)
        if not run.cancelled:
            self._emit(RecognitionEvent(kind=RecognitionKind.FINISHED.value, source_id=run.id, error=error))
        run.channel.close()

    def _emit(self, event: RecognitionEvent) -> None:
        self.event_handler(event)

    def _transition(self, to_state: RecognizerState) -> None:
        if self._state is not to_state:
            logger.debug("%s recognizer %s -> %s", self.provider, self._state.value, to_state.value)
        self._state = to_state


class CloudRecognizer(BaseRecognizer):
    provider = Provider.CLOUD.value

    def __init__(
        self,
        api_key: str = "",
        model: str = DEFAULT_CLOUD_MODEL,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        client_factory: Optional[Callable[[], StreamingClient]] = None,
        event_handler: Optional[EventHandler] = None,
    ) -> None:
        super().__init__(PCM16_MONO_16K, event_handler)
        self._api_key = api_key
        self._model = model
        self.chunk_size = chunk_size
        self._client_factory = client_factory or self._create_client

    def api_key(self) -> str:
        return self._api_key or os.getenv("DASHSCOPE_API_KEY", "")

    def is_authorized(self) -> bool:
        return bool(self.api_key())

    def request_authorization(self, callback: AuthorizationCallback) -> None:
        status = AuthorizationStatus.GRANTED if self.is_authorized() else AuthorizationStatus.DENIED
        threading.Thread(target=callback, args=(status,), daemon=True).start()

    def _create_client(self) -> StreamingClient:
        return DashscopeStreamingClient(
            api_key=self.api_key(),
            model=self._model,
            sample_rate=self.target_format.sample_rate,
        )

    def _open(self, run: RecognitionRun) -> None:
        client = self._client_factory()
        run.backend = client
        run.transport = ChunkedTransport(
            send=client.send,
            end_stream=client.end_stream,
            chunk_size=self.chunk_size,
            on_error=lambda error: self._fail(run, error),
        )
        threading.Thread(
            target=self._connect, args=(run,), name="cloud-connect", daemon=True
        ).start()

    def _connect(self, run: RecognitionRun) -> None:
        client: StreamingClient = run.backend
        try:
            client.connect(
                on_batch=lambda batch: self._post_batch(run, batch),
                on_closed=lambda: self._post_closed(run),
                on_error=lambda error: self._fail(run, error),
            )
        except Exception as exc:
            if isinstance(exc, SessionInitError):
                error = exc
            else:
                error = SessionInitError(str(exc), code=classify_backend_error(str(exc)).code)
            self._fail(run, error)
            return
        if run.finished or run.cancelled:
            client.close()
            return
        if run.transport is not None:
            run.transport.start()
        self._mark_ready(run)

    def _submit(self, run: RecognitionRun, payload: bytes) -> None:
        if run.transport is not None and not run.transport.submit(payload):
            self.dropped_frames += 1

    def _end_input(self, run: RecognitionRun) -> None:
        if run.transport is not None:
            run.transport.finish()

    def _close_backend(self, run: RecognitionRun) -> None:
        if run.transport is not None:
            run.transport.close()
        if run.backend is not None:
            run.backend.close()
