"""Windowed FFT spectrum for live audio visualisation.

The analyzer runs on the capture callback thread, so every buffer it
touches is allocated once per window size and reused across calls.
"""

from __future__ import annotations

import logging
import math

import numpy as np

from models import AudioFrame

logger = logging.getLogger(__name__)


def window_size_for(frame_length: int) -> int:
    """Largest power of two not greater than ``frame_length`` (0 if empty)."""
    if frame_length < 1:
        return 0
    return 1 << int(math.floor(math.log2(frame_length)))


def hann_window(size: int) -> np.ndarray:
    """Periodic Hann window, ``0.5 * (1 - cos(2*pi*n/N))``."""
    n = np.arange(size, dtype=np.float64)
    return (0.5 - 0.5 * np.cos(2.0 * np.pi * n / size)).astype(np.float32)


class SpectralAnalyzer:
    def __init__(self) -> None:
        self._size = 0
        self._window = np.zeros(0, dtype=np.float32)
        self._scratch = np.zeros(0, dtype=np.float32)
        self._spectrum = np.zeros(0, dtype=np.complex64)
        self._magnitudes = np.zeros(0, dtype=np.float32)

    @property
    def window_size(self) -> int:
        return self._size

    def prepare(self, frame_length: int) -> None:
        """Allocate scratch space for frames of ``frame_length`` samples."""
        size = window_size_for(frame_length)
        if size == self._size:
            return
        logger.debug("spectrum window resized %d -> %d", self._size, size)
        self._size = size
        self._window = hann_window(size) if size else np.zeros(0, dtype=np.float32)
        self._scratch = np.zeros(size, dtype=np.float32)
        self._spectrum = np.zeros(size // 2 + 1, dtype=np.complex64)
        self._magnitudes = np.zeros(size // 2, dtype=np.float32)

    def analyze(self, samples: np.ndarray) -> np.ndarray:
        """Return the normalised magnitude spectrum of ``samples``.

        The result has ``window_size // 2`` bins and is owned by the
        analyzer: it is overwritten by the next call, so copy it before
        handing it to another thread.
        """
        self.prepare(len(samples))
        bins = self._size // 2
        if bins == 0:
            return self._magnitudes

        np.multiply(samples[: self._size], self._window, out=self._scratch)
        np.fft.rfft(self._scratch, out=self._spectrum)
        np.abs(self._spectrum[:bins], out=self._magnitudes)
        self._magnitudes *= 2.0 / bins
        return self._magnitudes

    def analyze_frame(self, frame: AudioFrame) -> np.ndarray:
        channel = frame.channel(0)
        if channel.dtype != np.float32:
            channel = _to_float32(channel)
        return self.analyze(channel)


def _to_float32(samples: np.ndarray) -> np.ndarray:
    if np.issubdtype(samples.dtype, np.integer):
        scale = float(np.iinfo(samples.dtype).max) + 1.0
        return samples.astype(np.float32) / scale
    return samples.astype(np.float32)
