"""On-device recognizer backed by Vosk."""

from __future__ import annotations

import json
import logging
import threading
from queue import Empty, Full, Queue
from typing import Any, Optional

from errors import DecodingError
from events import EventHandler
from interfaces import AuthorizationCallback
from models import (
    PCM16_MONO_16K,
    AuthorizationStatus,
    Provider,
    ResultBatch,
    TranscriptAlternative,
    TranscriptResult,
    TranscriptToken,
)
from recognizer import BaseRecognizer, RecognitionRun

try:
    import vosk
except Exception:  # pragma: no cover
    vosk = None  # type: ignore

logger = logging.getLogger(__name__)

DEFAULT_LANG = "en-us"


def decode_vosk_result(payload: str, is_partial: bool) -> ResultBatch:
    """Decode a KaldiRecognizer JSON result.

    Final results look like ``{"text": ..., "result": [{"word", "start",
    "end", "conf"}]}``; partial ones like ``{"partial": ...}``. Empty text
    decodes to an empty batch.
    """
    try:
        data = json.loads(payload)
    except (TypeError, ValueError) as exc:
        raise DecodingError(f"invalid vosk result: {exc}") from exc
    if not isinstance(data, dict):
        raise DecodingError(f"unexpected vosk result: {data!r}")

    text = data.get("partial" if is_partial else "text", "")
    if not isinstance(text, str):
        raise DecodingError(f"unexpected vosk text: {text!r}")
    if not text.strip():
        return ResultBatch()

    words = data.get("partial_result" if is_partial else "result") or []
    try:
        tokens = tuple(
            TranscriptToken(
                content=str(word["word"]),
                start_time=word.get("start"),
                end_time=word.get("end"),
                confidence=word.get("conf"),
            )
            for word in words
        )
    except (KeyError, TypeError, AttributeError) as exc:
        raise DecodingError(f"malformed vosk word list: {words!r}") from exc

    result = TranscriptResult(
        is_partial=is_partial,
        alternatives=(TranscriptAlternative(transcript=text, tokens=tokens),),
    )
    return ResultBatch(results=(result,))


class LocalRecognizer(BaseRecognizer):
    provider = Provider.LOCAL.value

    def __init__(
        self,
        model_path: str = "",
        lang: str = DEFAULT_LANG,
        queue_maxsize: int = 100,
        model: Any = None,
        event_handler: Optional[EventHandler] = None,
    ) -> None:
        super().__init__(PCM16_MONO_16K, event_handler)
        self._model_path = model_path
        self._lang = lang
        self._queue_maxsize = queue_maxsize
        self._model = model
        self._model_lock = threading.Lock()

    def is_authorized(self) -> bool:
        return self._model is not None

    def load_model(self) -> AuthorizationStatus:
        with self._model_lock:
            if self._model is not None:
                return AuthorizationStatus.GRANTED
            if vosk is None:
                return AuthorizationStatus.RESTRICTED
            try:
                if self._model_path:
                    self._model = vosk.Model(model_path=self._model_path)
                else:
                    self._model = vosk.Model(lang=self._lang)
            except Exception as exc:
                logger.warning("could not load vosk model: %s", exc)
                return AuthorizationStatus.DENIED
            return AuthorizationStatus.GRANTED

    def request_authorization(self, callback: AuthorizationCallback) -> None:
        def _load() -> None:
            callback(self.load_model())

        threading.Thread(target=_load, name="vosk-model-load", daemon=True).start()

    # ------------------------------------------------------------------
    # Variant hooks
    # ------------------------------------------------------------------

    def _open(self, run: RecognitionRun) -> None:
        decoder = vosk.KaldiRecognizer(self._model, float(self.target_format.sample_rate))
        decoder.SetWords(True)
        run.backend = _DecoderState(decoder, self._queue_maxsize)
        threading.Thread(
            target=self._worker, args=(run,), name="vosk-decoder", daemon=True
        ).start()
        self._mark_ready(run)

    def _submit(self, run: RecognitionRun, payload: bytes) -> None:
        try:
            run.backend.frames.put_nowait(payload)
        except Full:
            self.dropped_frames += 1

    def _begin_stopping(self, run: RecognitionRun) -> None:
        # The worker posts this after the frame queue drains.
        return None

    def _end_input(self, run: RecognitionRun) -> None:
        run.backend.input_done.set()

    def _close_backend(self, run: RecognitionRun) -> None:
        run.backend.cancelled.set()

    def _worker(self, run: RecognitionRun) -> None:
        """Decode queued audio until input ends, then flush the last words."""
        state: _DecoderState = run.backend
        decoder = state.decoder
        try:
            while not state.cancelled.is_set():
                try:
                    payload = state.frames.get(timeout=0.2)
                except Empty:
                    if state.input_done.is_set():
                        break
                    continue
                if decoder.AcceptWaveform(payload):
                    self._post_batch(run, decode_vosk_result(decoder.Result(), is_partial=False))
                    state.last_partial = ""
                    continue
                partial = decoder.PartialResult()
                if partial != state.last_partial:
                    state.last_partial = partial
                    self._post_batch(run, decode_vosk_result(partial, is_partial=True))
            if state.cancelled.is_set():
                return
            run.channel.post(run.merger.begin_stopping)
            self._post_batch(run, decode_vosk_result(decoder.FinalResult(), is_partial=False))
        except Exception as exc:
            self._fail(run, exc)
            return
        self._post_closed(run)


class _DecoderState:
    def __init__(self, decoder: Any, queue_maxsize: int) -> None:
        self.decoder = decoder
        self.frames: Queue[bytes] = Queue(maxsize=queue_maxsize)
        self.input_done = threading.Event()
        self.cancelled = threading.Event()
        self.last_partial = ""
