from __future__ import annotations

import numpy as np
import pytest

from audio_convert import FormatConverter, pcm16_bytes
from errors import UnsupportedFormat
from models import AudioFormat, AudioFrame


def _pcm(data: bytes) -> np.ndarray:
    return np.frombuffer(data, dtype="<i2")


def test_pcm16_bytes_clips_and_scales() -> None:
    out = _pcm(pcm16_bytes(np.array([0.0, 1.0, -1.0, 2.0])))
    assert out.tolist() == [0, 32767, -32767, 32767]


def test_same_rate_passes_through() -> None:
    converter = FormatConverter()
    frame = AudioFrame(samples=np.array([0.0, 1.0, -1.0], dtype=np.float32), sample_rate=16000)

    assert _pcm(converter.convert(frame)).tolist() == [0, 32767, -32767]


def test_48k_to_16k_tracks_expected_length() -> None:
    converter = FormatConverter()
    total_out = 0
    for _ in range(10):
        frame = AudioFrame(samples=np.zeros(480, dtype=np.float32), sample_rate=48000)
        total_out += len(converter.convert(frame)) // 2

    assert abs(total_out - converter.expected_frames(4800, 48000)) <= 1


def test_44k1_to_16k_drift_stays_bounded() -> None:
    converter = FormatConverter()
    total_in = 0
    total_out = 0
    for _ in range(50):
        frame = AudioFrame(samples=np.zeros(441, dtype=np.float32), sample_rate=44100)
        total_in += 441
        total_out += len(converter.convert(frame)) // 2

    assert abs(total_out - converter.expected_frames(total_in, 44100)) <= 1


def test_resampling_keeps_a_ramp_continuous() -> None:
    converter = FormatConverter(AudioFormat(sample_rate=16000, channels=1, encoding="float32"))
    ramp = np.linspace(0.0, 0.9, 960, endpoint=False)
    out = []
    for chunk in np.split(ramp, 4):
        data = converter.convert(AudioFrame(samples=chunk, sample_rate=32000))
        out.extend(np.frombuffer(data, dtype="<f4").tolist())

    assert np.allclose(np.diff(out), ramp[2] - ramp[0], atol=1e-5)


def test_stereo_is_downmixed() -> None:
    samples = np.ones((4, 2), dtype=np.float32)
    samples[:, 1] = 0.0
    frame = AudioFrame(samples=samples, sample_rate=16000, channels=2)

    out = _pcm(FormatConverter().convert(frame))

    assert out.tolist() == [16384] * 4


def test_empty_frame_gives_no_bytes() -> None:
    frame = AudioFrame(samples=np.zeros(0, dtype=np.float32), sample_rate=48000)
    assert FormatConverter().convert(frame) == b""


@pytest.mark.parametrize(
    "frame",
    [
        AudioFrame(samples=np.zeros(10, dtype=np.float32), sample_rate=0),
        AudioFrame(samples=np.zeros(10, dtype=np.float32), sample_rate=16000, channels=0),
        AudioFrame(samples=np.zeros(10, dtype=np.float32), sample_rate=16000, channels=2),
        AudioFrame(samples=np.array(["a", "b"]), sample_rate=16000),
    ],
)
def test_unconvertible_frames_raise(frame: AudioFrame) -> None:
    with pytest.raises(UnsupportedFormat):
        FormatConverter().convert(frame)


def test_stereo_target_rejects_three_channels() -> None:
    converter = FormatConverter(AudioFormat(sample_rate=16000, channels=2))
    frame = AudioFrame(samples=np.zeros((4, 3), dtype=np.float32), sample_rate=16000, channels=3)
    with pytest.raises(UnsupportedFormat):
        converter.convert(frame)


def test_unknown_target_encoding_rejected() -> None:
    with pytest.raises(UnsupportedFormat):
        FormatConverter(AudioFormat(sample_rate=16000, channels=1, encoding="mp3"))
