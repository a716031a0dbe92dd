"""Tests for the recognizer state machine and the DashScope client."""

from __future__ import annotations

import threading
import time
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from cloud_client import DashscopeStreamingClient, decode_sentence_event
from errors import (
    ASR_PROTOCOL_ERROR,
    AUTH_FAILED,
    DecodingError,
    SessionInitError,
    TransportError,
)
from models import (
    AudioFrame,
    AuthorizationStatus,
    RecognitionEvent,
    RecognitionKind,
    RecognizerState,
    ResultBatch,
    TranscriptAlternative,
    TranscriptResult,
)
from recognizer import CloudRecognizer


# ---------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------

def _final_batch(text: str) -> ResultBatch:
    return ResultBatch(
        results=(TranscriptResult(is_partial=False, alternatives=(TranscriptAlternative(text),)),)
    )


def _frame(n_samples: int = 1600) -> AudioFrame:
    return AudioFrame(samples=np.zeros(n_samples, dtype=np.float32), sample_rate=16000)


class FakeStreamingClient:
    """Answers end-of-stream with one final batch, like the service does."""

    def __init__(self, final_text: str = "hello world", connect_error: Exception | None = None) -> None:
        self.final_text = final_text
        self.connect_error = connect_error
        self.gate = threading.Event()
        self.gate.set()
        self.chunks: list[bytes] = []
        self.ended = False
        self.closed = threading.Event()
        self.on_batch = None
        self.on_closed = None
        self.on_error = None

    def connect(self, on_batch, on_closed, on_error) -> None:  # noqa: ANN001
        self.gate.wait(2.0)
        if self.connect_error is not None:
            raise self.connect_error
        self.on_batch = on_batch
        self.on_closed = on_closed
        self.on_error = on_error

    def send(self, chunk: bytes, headers) -> None:  # noqa: ANN001
        self.chunks.append(chunk)

    def end_stream(self) -> None:
        self.ended = True
        self.on_batch(_final_batch(self.final_text))
        self.on_closed()

    def close(self) -> None:
        self.closed.set()


class EventLog:
    def __init__(self) -> None:
        self.events: list[RecognitionEvent] = []
        self.finished = threading.Event()

    def __call__(self, event: RecognitionEvent) -> None:
        self.events.append(event)
        if event.kind == RecognitionKind.FINISHED.value:
            self.finished.set()

    @property
    def kinds(self) -> list[str]:
        return [e.kind for e in self.events]


def _recognizer(client: FakeStreamingClient, log: EventLog, chunk_size: int = 4096) -> CloudRecognizer:
    return CloudRecognizer(
        api_key="test-key",
        chunk_size=chunk_size,
        client_factory=lambda: client,
        event_handler=log,
    )


# ---------------------------------------------------------------
# CloudRecognizer lifecycle
# ---------------------------------------------------------------

def test_full_session_delivers_ready_final_finished() -> None:
    client = FakeStreamingClient()
    log = EventLog()
    recognizer = _recognizer(client, log, chunk_size=1000)
    ready = threading.Event()

    recognizer.start(ready.set)
    assert ready.wait(2.0)
    assert recognizer.state is RecognizerState.STREAMING

    recognizer.feed(_frame(1600))
    recognizer.stop()

    assert log.finished.wait(3.0)
    assert log.kinds == ["ready", "final", "finished"]
    final = log.events[1]
    assert final.text == "hello world"
    assert final.is_final
    assert final.metadata["type"] == "SPEECH"
    assert [len(c) for c in client.chunks] == [1000, 1000, 1000, 200]
    assert client.ended
    assert client.closed.wait(1.0)
    assert recognizer.state is RecognizerState.CLOSED


def test_feed_before_ready_is_dropped_silently() -> None:
    client = FakeStreamingClient()
    client.gate.clear()
    log = EventLog()
    recognizer = _recognizer(client, log)

    recognizer.start(lambda: None)
    recognizer.feed(_frame())

    assert recognizer.state is RecognizerState.STARTING
    assert client.chunks == []

    recognizer.cancel()
    client.gate.set()
    assert client.closed.wait(2.0)
    assert "finished" not in log.kinds


def test_stop_is_idempotent() -> None:
    client = FakeStreamingClient()
    log = EventLog()
    recognizer = _recognizer(client, log)
    ready = threading.Event()
    recognizer.start(ready.set)
    assert ready.wait(2.0)

    recognizer.stop()
    recognizer.stop()

    assert log.finished.wait(3.0)
    assert log.kinds.count("final") == 1
    recognizer.stop()


def test_stop_before_ready_still_finishes() -> None:
    client = FakeStreamingClient(final_text="")
    client.gate.clear()
    log = EventLog()
    recognizer = _recognizer(client, log)

    recognizer.start(lambda: None)
    recognizer.stop()
    client.gate.set()

    assert log.finished.wait(3.0)
    assert log.kinds[-1] == "finished"
    assert log.events[-1].error is None


def test_start_while_active_is_rejected() -> None:
    client = FakeStreamingClient()
    recognizer = _recognizer(client, EventLog())
    recognizer.start(lambda: None)
    with pytest.raises(SessionInitError):
        recognizer.start(lambda: None)
    recognizer.cancel()


def test_restart_after_finish_uses_fresh_transcript() -> None:
    clients = [FakeStreamingClient("first"), FakeStreamingClient("second")]
    log = EventLog()
    recognizer = CloudRecognizer(api_key="k", client_factory=clients.pop, event_handler=log)

    for _ in range(2):
        log.finished.clear()
        ready = threading.Event()
        recognizer.start(ready.set)
        assert ready.wait(2.0)
        recognizer.stop()
        assert log.finished.wait(3.0)

    finals = [e.text for e in log.events if e.kind == "final"]
    assert finals == ["second", "first"]


def test_connect_failure_finishes_with_auth_error() -> None:
    client = FakeStreamingClient(connect_error=RuntimeError("401 Unauthorized"))
    log = EventLog()
    recognizer = _recognizer(client, log)
    ready = threading.Event()

    recognizer.start(ready.set)

    assert log.finished.wait(2.0)
    assert not ready.is_set()
    event = log.events[-1]
    assert isinstance(event.error, SessionInitError)
    assert event.code == AUTH_FAILED
    assert recognizer.state is RecognizerState.CLOSED


def test_backend_decoding_error_ends_session() -> None:
    client = FakeStreamingClient()
    log = EventLog()
    recognizer = _recognizer(client, log)
    ready = threading.Event()
    recognizer.start(ready.set)
    assert ready.wait(2.0)

    client.on_error(DecodingError("bad payload"))

    assert log.finished.wait(2.0)
    assert log.events[-1].code == ASR_PROTOCOL_ERROR
    assert client.closed.wait(1.0)


def test_cancel_delivers_nothing_further() -> None:
    client = FakeStreamingClient()
    log = EventLog()
    recognizer = _recognizer(client, log)
    ready = threading.Event()
    recognizer.start(ready.set)
    assert ready.wait(2.0)

    recognizer.cancel()
    client.on_batch(_final_batch("late"))

    assert client.closed.wait(2.0)
    time.sleep(0.1)
    assert log.kinds == ["ready"]
    assert recognizer.state is RecognizerState.CLOSED


def test_unauthorized_without_key(monkeypatch) -> None:  # noqa: ANN001
    monkeypatch.delenv("DASHSCOPE_API_KEY", raising=False)
    recognizer = CloudRecognizer(api_key="")
    statuses: list[AuthorizationStatus] = []
    done = threading.Event()

    def callback(status: AuthorizationStatus) -> None:
        statuses.append(status)
        done.set()

    recognizer.request_authorization(callback)
    assert done.wait(1.0)
    assert statuses == [AuthorizationStatus.DENIED]
    with pytest.raises(SessionInitError):
        recognizer.start(lambda: None)


def test_api_key_falls_back_to_environment(monkeypatch) -> None:  # noqa: ANN001
    monkeypatch.setenv("DASHSCOPE_API_KEY", "env-key")
    assert CloudRecognizer().is_authorized()


# ---------------------------------------------------------------
# Sentence decoding
# ---------------------------------------------------------------

def test_decode_none_is_empty_batch() -> None:
    assert decode_sentence_event(None).is_empty


def test_decode_final_sentence_with_words() -> None:
    batch = decode_sentence_event(
        {
            "text": "hello world",
            "begin_time": 0,
            "end_time": 1200,
            "sentence_end": True,
            "words": [
                {"text": "hello", "begin_time": 0, "end_time": 500},
                {"text": "world", "begin_time": 500, "end_time": 1200},
            ],
        }
    )
    assert batch.is_final
    tokens = batch.results[0].best.tokens
    assert [t.content for t in tokens] == ["hello", "world"]
    assert tokens[1].start_time == 0.5 and tokens[1].end_time == 1.2


def test_decode_open_sentence_is_partial() -> None:
    batch = decode_sentence_event({"text": "hel", "begin_time": 0, "end_time": None})
    assert not batch.is_final
    assert batch.text == "hel"


@pytest.mark.parametrize(
    "payload",
    [
        {"begin_time": 0},
        "not a sentence",
        {"text": "x", "words": "nope"},
        {"text": "x", "words": [{"begin_time": 0}]},
        {"text": "x", "words": [{"text": "x", "begin_time": "soon"}]},
    ],
)
def test_decode_malformed_raises(payload) -> None:  # noqa: ANN001
    with pytest.raises(DecodingError):
        decode_sentence_event(payload)


# ---------------------------------------------------------------
# DashscopeStreamingClient
# ---------------------------------------------------------------

@patch("cloud_client.Recognition")
def test_client_connect_and_send(mock_recognition: MagicMock) -> None:
    instance = mock_recognition.return_value
    client = DashscopeStreamingClient(api_key="k", model="paraformer-realtime-v2")
    client.connect(on_batch=lambda b: None, on_closed=lambda: None, on_error=lambda e: None)

    kwargs = mock_recognition.call_args.kwargs
    assert kwargs["model"] == "paraformer-realtime-v2"
    assert kwargs["sample_rate"] == 16000
    assert kwargs["format"] == "pcm"
    instance.start.assert_called_once()

    client.send(b"\x00\x01", {":event-type": "AudioEvent"})
    instance.send_audio_frame.assert_called_once_with(b"\x00\x01")

    with pytest.raises(TransportError):
        client.send(b"\x00", {":event-type": "Other"})

    client.end_stream()
    client.end_stream()
    instance.stop.assert_called_once()
    with pytest.raises(TransportError):
        client.send(b"\x00", {":event-type": "AudioEvent"})


@patch("cloud_client.Recognition")
def test_client_start_failure_is_session_init_error(mock_recognition: MagicMock) -> None:
    mock_recognition.return_value.start.side_effect = RuntimeError("connection refused")
    client = DashscopeStreamingClient(api_key="k")
    with pytest.raises(SessionInitError):
        client.connect(lambda b: None, lambda: None, lambda e: None)


def test_client_requires_api_key() -> None:
    client = DashscopeStreamingClient(api_key="")
    with pytest.raises(SessionInitError) as info:
        client.connect(lambda b: None, lambda: None, lambda e: None)
    assert info.value.code == AUTH_FAILED


@patch("cloud_client.Recognition")
def test_client_forwards_decoded_results_and_closes_once(mock_recognition: MagicMock) -> None:
    batches: list[ResultBatch] = []
    errors: list[Exception] = []
    closed: list[bool] = []
    client = DashscopeStreamingClient(api_key="k")
    client.connect(batches.append, lambda: closed.append(True), errors.append)

    client._handle_result(SimpleNamespace(get_sentence=lambda: {"text": "hi", "sentence_end": True}))
    client._handle_result(SimpleNamespace(get_sentence=lambda: {"oops": 1}))
    client._handle_error(SimpleNamespace(message="request timeout"))
    client._handle_closed()
    client._handle_closed()

    assert batches[0].text == "hi"
    assert isinstance(errors[0], DecodingError)
    assert isinstance(errors[1], TransportError)
    assert closed == [True]
