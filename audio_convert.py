"""Convert captured frames into the wire format a recognizer expects."""

from __future__ import annotations

import logging
from typing import Optional, Tuple

import numpy as np

from errors import UnsupportedFormat
from models import PCM16_MONO_16K, AudioFormat, AudioFrame

logger = logging.getLogger(__name__)

SUPPORTED_ENCODINGS = ("pcm_s16le", "float32")


def pcm16_bytes(samples: np.ndarray) -> bytes:
    """Float samples in [-1, 1] -> little-endian signed 16-bit PCM."""
    clipped = np.clip(samples, -1.0, 1.0)
    return (clipped * 32767.0).round().astype("<i2").tobytes()


def to_float(samples: np.ndarray) -> np.ndarray:
    if np.issubdtype(samples.dtype, np.floating):
        return samples.astype(np.float64, copy=False)
    if np.issubdtype(samples.dtype, np.integer):
        scale = float(np.iinfo(samples.dtype).max) + 1.0
        return samples.astype(np.float64) / scale
    raise UnsupportedFormat(f"unsupported sample type {samples.dtype}")


class FormatConverter:
    """Streaming sample-rate/channel/encoding converter.

    Resampling is linear interpolation that carries the last input sample
    and the fractional read position between calls, so successive frames
    join without gaps and the output length tracks
    ``total_input * dst_rate / src_rate`` to within one sample.
    """

    def __init__(self, target: AudioFormat = PCM16_MONO_16K) -> None:
        if target.encoding not in SUPPORTED_ENCODINGS:
            raise UnsupportedFormat(f"unsupported target encoding {target.encoding!r}")
        if target.sample_rate <= 0 or target.channels <= 0:
            raise UnsupportedFormat(f"invalid target format {target}")
        self.target = target
        self._source: Optional[Tuple[int, int]] = None
        self._tail: Optional[np.ndarray] = None
        self._position = 0.0

    def reset(self) -> None:
        self._source = None
        self._tail = None
        self._position = 0.0

    def convert(self, frame: AudioFrame) -> bytes:
        samples = self._validate(frame)
        if frame.frame_count == 0:
            return b""

        source = (frame.sample_rate, frame.channels)
        if source != self._source:
            if self._source is not None:
                logger.debug("source format changed %s -> %s, resetting", self._source, source)
            self.reset()
            self._source = source

        data = to_float(samples).reshape(frame.frame_count, frame.channels)
        if self.target.channels == 1 and frame.channels > 1:
            data = data.mean(axis=1, keepdims=True)

        if frame.sample_rate == self.target.sample_rate:
            out = data
        else:
            out = self._resample(data, frame.sample_rate / self.target.sample_rate)

        if self.target.channels == 1:
            out = out[:, 0]
        if self.target.encoding == "float32":
            return out.astype("<f4").tobytes()
        return pcm16_bytes(out)

    def expected_frames(self, input_frames: int, source_rate: int) -> float:
        return input_frames * self.target.sample_rate / source_rate

    def _validate(self, frame: AudioFrame) -> np.ndarray:
        if frame.sample_rate <= 0 or frame.channels <= 0:
            raise UnsupportedFormat(
                f"invalid source format rate={frame.sample_rate} channels={frame.channels}"
            )
        if self.target.channels not in (1, frame.channels):
            raise UnsupportedFormat(
                f"cannot map {frame.channels} channel(s) to {self.target.channels}"
            )
        samples = np.asarray(frame.samples)
        expected_ndim = (1,) if frame.channels == 1 else (2,)
        if samples.ndim == 2 and frame.channels == 1 and samples.shape[1] == 1:
            samples = samples[:, 0]
        if samples.ndim not in expected_ndim or (
            samples.ndim == 2 and samples.shape[1] != frame.channels
        ):
            raise UnsupportedFormat(
                f"samples shaped {samples.shape} do not match {frame.channels} channel(s)"
            )
        return samples

    def _resample(self, data: np.ndarray, step: float) -> np.ndarray:
        if self._tail is not None:
            data = np.vstack([self._tail, data])
        last = len(data) - 1
        start = self._position

        if start > last:
            count = 0
        else:
            count = int(np.floor((last - start) / step)) + 1

        positions = start + step * np.arange(count)
        index = np.arange(len(data))
        out = np.empty((count, data.shape[1]), dtype=np.float64)
        for ch in range(data.shape[1]):
            out[:, ch] = np.interp(positions, index, data[:, ch])

        # The next call prepends data[-1] at index 0.
        self._position = start + step * count - last
        self._tail = data[-1:].copy()
        return out
