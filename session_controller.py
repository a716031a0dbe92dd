"""State-machine based session orchestration."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import Any, Callable, Optional

from errors import (
    SESSION_CANCELLED,
    AuthorizationError,
    SessionInitError,
    TranscriptionError,
)
from interfaces import Recognizer, Recorder
from models import (
    AudioFrame,
    AuthorizationStatus,
    RecognitionEvent,
    RecognitionKind,
    Session,
    SessionState,
    TranscriptState,
)
from spectrum import SpectralAnalyzer

logger = logging.getLogger(__name__)

StateCallback = Callable[[SessionState, SessionState], None]
ResultCallback = Callable[[RecognitionEvent], None]
ErrorCallback = Callable[[str, str], None]
SpectrumCallback = Callable[[Any], None]
AuthorizationObserver = Callable[[AuthorizationStatus], None]


def format_duration(seconds: float) -> str:
    total = int(max(seconds, 0.0))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


class SessionController:
    def __init__(
        self,
        recorder: Recorder,
        recognizer: Recognizer,
        analyzer: Optional[SpectralAnalyzer] = None,
        on_state_change: Optional[StateCallback] = None,
        on_result: Optional[ResultCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_spectrum: Optional[SpectrumCallback] = None,
        on_authorization: Optional[AuthorizationObserver] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._recorder = recorder
        self._recognizer = recognizer
        self._analyzer = analyzer
        self._on_state_change = on_state_change
        self._on_result = on_result
        self._on_error = on_error
        self._on_spectrum = on_spectrum
        self._on_authorization = on_authorization
        self._clock = clock

        self._lock = threading.RLock()
        self._state = SessionState.IDLE
        self._session: Optional[Session] = None
        self.recording_length = 0.0

        self._recognizer.event_handler = self._handle_recognition_event

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def recognizer(self) -> Recognizer:
        return self._recognizer

    def replace_recognizer(self, recognizer: Recognizer) -> None:
        with self._lock:
            if self._state != SessionState.IDLE:
                raise SessionInitError("cannot swap recognizer during a session")
            self._recognizer.event_handler = lambda event: None
            self._recognizer = recognizer
            self._recognizer.event_handler = self._handle_recognition_event

    def recorded_seconds(self) -> float:
        """Total recorded time, including the session in progress."""
        with self._lock:
            session = self._session
            live = 0.0
            if session is not None and session.started_at is not None:
                live = self._clock() - session.started_at
            return self.recording_length + live

    def formatted_recording_length(self) -> str:
        return format_duration(self.recorded_seconds())

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def request_authorization(self) -> None:
        self._recognizer.request_authorization(self._handle_authorization)

    def _handle_authorization(self, status: AuthorizationStatus) -> None:
        # May run on any thread.
        with self._lock:
            logger.debug("recognizer authorization: %s", status.value)
            if self._on_authorization:
                self._on_authorization(status)
            if status in (AuthorizationStatus.DENIED, AuthorizationStatus.RESTRICTED):
                self._emit_error(AuthorizationError(f"speech recognition {status.value}"))

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def start_session(self) -> Optional[Session]:
        with self._lock:
            if self._state != SessionState.IDLE:
                raise SessionInitError("a recording session is already active")
            if not self._recorder.has_input_device():
                self._emit_error(AuthorizationError("no microphone input is available"))
                return None
            if not self._recognizer.is_authorized():
                self.request_authorization()
                return None

            session = Session(id=str(uuid.uuid4()), recognizer=self._recognizer)
            self._session = session
            if self._analyzer is not None:
                self._analyzer.prepare(self._recorder.blocksize)
            self._transition(SessionState.STARTING)
            try:
                self._recognizer.start(lambda: self._handle_ready(session))
            except TranscriptionError as exc:
                self._fail(exc)
                return None
            return session

    def stop_session(self) -> None:
        """Stop capturing; the session ends when the final result arrives."""
        with self._lock:
            if self._state not in (SessionState.STARTING, SessionState.RECORDING):
                return
            self._transition(SessionState.FINALIZING)
            self._accumulate_length()
            self._safe_stop_recorder()
            self._recognizer.stop()

    def cancel_session(self, reason: str) -> None:
        with self._lock:
            if self._state == SessionState.IDLE:
                return
            self._emit_error(TranscriptionError(reason, code=SESSION_CANCELLED))
            self._accumulate_length()
            self._safe_stop_recorder()
            self._recognizer.cancel()
            self._session = None
            self._transition(SessionState.IDLE)

    def _handle_ready(self, session: Session) -> None:
        with self._lock:
            if self._session is not session or self._state != SessionState.STARTING:
                return
            try:
                self._recorder.start(self._handle_frame)
            except Exception as exc:
                self._fail(SessionInitError(f"recorder start failed: {exc}"))
                return
            session.started_at = self._clock()
            self._transition(SessionState.RECORDING)

    def _handle_frame(self, frame: AudioFrame) -> None:
        # Capture thread: no locks, no I/O.
        if self._analyzer is not None and self._on_spectrum is not None:
            self._on_spectrum(self._analyzer.analyze_frame(frame))
        self._recognizer.feed(frame)

    def _handle_recognition_event(self, event: RecognitionEvent) -> None:
        with self._lock:
            session = self._session
            if session is None:
                return
            kind = event.kind
            if kind in (RecognitionKind.PARTIAL.value, RecognitionKind.FINAL.value):
                if event.committed:
                    session.transcript = TranscriptState(
                        committed_text=event.text,
                        committed_segments=list(event.segments),
                        is_final=event.is_final,
                    )
                if self._on_result:
                    self._on_result(event)
                return
            if kind == RecognitionKind.FINISHED.value:
                if event.error is not None:
                    self._fail(event.error)
                    return
                self._finish_session()

    def _finish_session(self) -> None:
        self._accumulate_length()
        self._safe_stop_recorder()
        self._session = None
        self._transition(SessionState.IDLE)

    def _fail(self, error: Exception) -> None:
        self._transition(SessionState.ERROR)
        self._emit_error(error)
        self._accumulate_length()
        self._safe_stop_recorder()
        self._recognizer.cancel()
        self._session = None
        self._transition(SessionState.IDLE)

    def _accumulate_length(self) -> None:
        session = self._session
        if session is None or session.started_at is None:
            return
        self.recording_length += self._clock() - session.started_at
        session.started_at = None

    def _emit_error(self, error: Exception) -> None:
        code = getattr(error, "code", "") or type(error).__name__
        if self._on_error:
            self._on_error(code, str(error))

    def _safe_stop_recorder(self) -> None:
        try:
            self._recorder.stop()
        except Exception as exc:
            logger.warning("recorder stop failed: %s", exc)

    def _transition(self, to_state: SessionState) -> None:
        from_state = self._state
        if from_state == to_state:
            return
        self._state = to_state
        logger.debug("session %s -> %s", from_state.value, to_state.value)
        if self._on_state_change:
            self._on_state_change(from_state, to_state)
