from __future__ import annotations

import threading
from typing import Mapping

import pytest

from errors import TransportError
from transport import AUDIO_EVENT_HEADERS, ChunkedTransport, split_payload


class FakeSink:
    def __init__(self, fail_on: int | None = None) -> None:
        self.chunks: list[bytes] = []
        self.headers: list[dict] = []
        self.calls: list[str] = []
        self.ended = threading.Event()
        self._fail_on = fail_on

    def send(self, chunk: bytes, headers: Mapping[str, str]) -> None:
        if self._fail_on is not None and len(self.chunks) == self._fail_on:
            raise RuntimeError("connection reset")
        self.chunks.append(chunk)
        self.headers.append(dict(headers))
        self.calls.append("send")

    def end_stream(self) -> None:
        self.calls.append("end")
        self.ended.set()


def test_split_payload_16_bytes_by_4() -> None:
    chunks = list(split_payload(bytes(range(16)), 4))
    assert [len(c) for c in chunks] == [4, 4, 4, 4]
    assert b"".join(chunks) == bytes(range(16))


def test_split_payload_keeps_short_tail() -> None:
    assert [len(c) for c in split_payload(b"x" * 10, 4)] == [4, 4, 2]


def test_split_payload_rejects_bad_chunk_size() -> None:
    with pytest.raises(ValueError):
        list(split_payload(b"abc", 0))


def test_payload_sent_in_chunks_then_end_of_stream() -> None:
    sink = FakeSink()
    transport = ChunkedTransport(sink.send, sink.end_stream, chunk_size=4)
    transport.start()

    assert transport.submit(bytes(range(16)))
    transport.finish()

    assert sink.ended.wait(2.0)
    assert [len(c) for c in sink.chunks] == [4, 4, 4, 4]
    assert sink.calls == ["send"] * 4 + ["end"]
    assert all(h == AUDIO_EVENT_HEADERS for h in sink.headers)
    assert transport.sent_chunks == 4
    transport.close()


def test_payloads_are_not_interleaved() -> None:
    sink = FakeSink()
    transport = ChunkedTransport(sink.send, sink.end_stream, chunk_size=3)
    transport.submit(b"aaaaaaa")
    transport.submit(b"bbbb")
    transport.start()
    transport.finish()

    assert sink.ended.wait(2.0)
    assert b"".join(sink.chunks) == b"aaaaaaabbbb"
    assert sink.chunks == [b"aaa", b"aaa", b"a", b"bbb", b"b"]
    transport.close()


def test_submit_after_finish_is_rejected() -> None:
    sink = FakeSink()
    transport = ChunkedTransport(sink.send, sink.end_stream)
    transport.finish()
    assert transport.submit(b"late") is False


def test_full_queue_drops_payload() -> None:
    sink = FakeSink()
    transport = ChunkedTransport(sink.send, sink.end_stream, queue_maxsize=1)
    assert transport.submit(b"one")
    assert transport.submit(b"two") is False
    assert transport.dropped_payloads == 1


def test_send_failure_reports_transport_error() -> None:
    sink = FakeSink(fail_on=1)
    errors: list[TransportError] = []
    failed = threading.Event()

    def on_error(error: TransportError) -> None:
        errors.append(error)
        failed.set()

    transport = ChunkedTransport(sink.send, sink.end_stream, chunk_size=2, on_error=on_error)
    transport.start()
    transport.submit(b"abcdef")
    transport.finish()

    assert failed.wait(2.0)
    assert isinstance(errors[0], TransportError)
    assert sink.chunks == [b"ab"]
    transport.close()
    assert not sink.ended.is_set()
