"""DashScope real-time recognition client, one instance per session.

The client wraps ``dashscope.audio.asr.Recognition``: audio goes out via
``send_audio_frame`` and sentence events come back on the SDK's websocket
thread. Sentence payloads are decoded into ``ResultBatch`` objects here so
that nothing SDK-specific leaks into the merge engine.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Mapping, Optional

from errors import (
    AUTH_FAILED,
    DecodingError,
    SessionInitError,
    TransportError,
    classify_backend_error,
)
from models import ResultBatch, TranscriptAlternative, TranscriptResult, TranscriptToken

try:
    from dashscope.audio.asr import Recognition, RecognitionCallback
except Exception:  # pragma: no cover
    Recognition = None  # type: ignore
    RecognitionCallback = object  # type: ignore

logger = logging.getLogger(__name__)

DEFAULT_CLOUD_MODEL = "paraformer-realtime-v2"


def _seconds(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value) / 1000.0
    except (TypeError, ValueError) as exc:
        raise DecodingError(f"invalid timestamp {value!r}") from exc


def _decode_word(word: Any) -> TranscriptToken:
    if not isinstance(word, dict) or "text" not in word:
        raise DecodingError(f"malformed word entry: {word!r}")
    return TranscriptToken(
        content=str(word["text"]),
        start_time=_seconds(word.get("begin_time")),
        end_time=_seconds(word.get("end_time")),
    )


def _decode_sentence(sentence: Any) -> TranscriptResult:
    if not isinstance(sentence, dict):
        raise DecodingError(f"malformed sentence: {sentence!r}")
    text = sentence.get("text")
    if text is None:
        raise DecodingError("sentence has no text")
    if "sentence_end" in sentence:
        is_final = bool(sentence["sentence_end"])
    else:
        is_final = sentence.get("end_time") is not None
    words = sentence.get("words") or []
    if not isinstance(words, list):
        raise DecodingError(f"malformed words: {words!r}")
    tokens = tuple(_decode_word(word) for word in words)
    return TranscriptResult(
        is_partial=not is_final,
        alternatives=(TranscriptAlternative(transcript=str(text), tokens=tokens),),
    )


def decode_sentence_event(payload: Any) -> ResultBatch:
    """Decode the ``sentence`` part of a recognition event.

    ``None`` means the event carried no results yet and yields an empty
    batch; anything else that is not a sentence dict (or list of them)
    raises ``DecodingError``.
    """
    if payload is None:
        return ResultBatch()
    sentences = payload if isinstance(payload, list) else [payload]
    return ResultBatch(results=tuple(_decode_sentence(s) for s in sentences))


class _RecognitionListener(RecognitionCallback):
    def __init__(self, client: "DashscopeStreamingClient") -> None:
        super().__init__()
        self._client = client

    def on_open(self) -> None:
        logger.debug("recognition stream opened")

    def on_event(self, result: Any) -> None:
        self._client._handle_result(result)

    def on_complete(self) -> None:
        self._client._handle_closed()

    def on_error(self, result: Any) -> None:
        self._client._handle_error(result)

    def on_close(self) -> None:
        self._client._handle_closed()


class DashscopeStreamingClient:
    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_CLOUD_MODEL,
        sample_rate: int = 16000,
        audio_format: str = "pcm",
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._sample_rate = sample_rate
        self._audio_format = audio_format
        self._recognition: Any = None
        self._on_batch: Optional[Callable[[ResultBatch], None]] = None
        self._on_closed: Optional[Callable[[], None]] = None
        self._on_error: Optional[Callable[[Exception], None]] = None
        self._ended = threading.Event()
        self._closed = threading.Event()
        self._notified = threading.Event()

    def connect(
        self,
        on_batch: Callable[[ResultBatch], None],
        on_closed: Callable[[], None],
        on_error: Callable[[Exception], None],
    ) -> None:
        """Open the stream; returns once the service accepted the task."""
        if Recognition is None:
            raise SessionInitError("dashscope is not installed")
        if not self._api_key:
            raise SessionInitError("No API key configured", code=AUTH_FAILED)

        self._on_batch = on_batch
        self._on_closed = on_closed
        self._on_error = on_error
        self._recognition = Recognition(
            model=self._model,
            format=self._audio_format,
            sample_rate=self._sample_rate,
            callback=_RecognitionListener(self),
            api_key=self._api_key,
        )
        try:
            self._recognition.start()
        except Exception as exc:
            raise SessionInitError(str(exc), code=classify_backend_error(str(exc)).code) from exc

    def send(self, chunk: bytes, headers: Mapping[str, str]) -> None:
        if headers.get(":event-type") != "AudioEvent":
            raise TransportError(f"unsupported event type {headers.get(':event-type')!r}")
        if self._recognition is None or self._ended.is_set():
            raise TransportError("stream is not open")
        self._recognition.send_audio_frame(chunk)

    def end_stream(self) -> None:
        """Send the end-of-stream frame; blocks until the service finishes."""
        if self._recognition is None or self._ended.is_set():
            return
        self._ended.set()
        self._recognition.stop()

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        if self._recognition is None or self._ended.is_set():
            return
        self._ended.set()
        # stop() waits for the service; do not hold the caller's thread.
        threading.Thread(target=self._stop_quietly, daemon=True).start()

    def _stop_quietly(self) -> None:
        try:
            self._recognition.stop()
        except Exception as exc:
            logger.debug("ignoring stop failure on closed stream: %s", exc)

    # ------------------------------------------------------------------
    # SDK callbacks (websocket thread)
    # ------------------------------------------------------------------

    def _handle_result(self, result: Any) -> None:
        if self._closed.is_set():
            return
        try:
            batch = decode_sentence_event(result.get_sentence())
        except (DecodingError, AttributeError) as exc:
            error = exc if isinstance(exc, DecodingError) else DecodingError(str(exc))
            logger.warning("undecodable recognition event: %s", error)
            if self._on_error:
                self._on_error(error)
            return
        if self._on_batch:
            self._on_batch(batch)

    def _handle_error(self, result: Any) -> None:
        message = str(getattr(result, "message", "") or result)
        if self._on_error:
            self._on_error(classify_backend_error(message))

    def _handle_closed(self) -> None:
        if self._notified.is_set():
            return
        self._notified.set()
        if self._on_closed:
            self._on_closed()
