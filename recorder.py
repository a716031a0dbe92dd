"""Microphone capture tap."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Optional, Union

import numpy as np

from interfaces import FrameHandler
from models import AudioFrame

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

logger = logging.getLogger(__name__)

Device = Union[int, str, None]


class SoundDeviceRecorder:
    """Delivers float32 frames of ``blocksize`` samples from the input device.

    ``on_frame`` runs on the PortAudio callback thread and must return
    quickly; it receives frames at the device's native rate.
    """

    def __init__(
        self,
        sample_rate: Optional[int] = None,
        channels: int = 1,
        blocksize: int = 1024,
        device: Device = None,
    ) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.blocksize = blocksize
        self.device = device
        self._stream: Any = None
        self._running = False
        self._lock = threading.Lock()
        self._on_frame: Optional[FrameHandler] = None
        self.overflows = 0
        self.callback_errors = 0

    def has_input_device(self) -> bool:
        if sd is None:
            return False
        try:
            info = sd.query_devices(self.device, kind="input")
        except Exception as exc:
            logger.warning("no usable input device: %s", exc)
            return False
        return int(info.get("max_input_channels", 0)) > 0

    def start(self, on_frame: FrameHandler) -> None:
        with self._lock:
            if self._running:
                return
            if sd is None:
                raise RuntimeError("sounddevice is not installed")
            if self.sample_rate is None:
                info = sd.query_devices(self.device, kind="input")
                self.sample_rate = int(info["default_samplerate"])
            self._on_frame = on_frame
            self._stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="float32",
                blocksize=self.blocksize,
                device=self.device,
                callback=self._on_audio,
            )
            self._stream.start()
            self._running = True

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
            if self._stream is not None:
                self._stream.stop()
                self._stream.close()
                self._stream = None
            self._on_frame = None

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        on_frame = self._on_frame
        if not self._running or on_frame is None:
            return
        if status:
            self.overflows += 1
        samples = np.array(indata, dtype=np.float32)
        if samples.ndim == 2 and self.channels == 1:
            samples = samples[:, 0]
        frame = AudioFrame(
            samples=samples,
            sample_rate=int(self.sample_rate or 0),
            channels=self.channels,
            bit_depth=32,
            timestamp_ms=int(time.time() * 1000),
        )
        try:
            on_frame(frame)
        except Exception:
            # An exception escaping into PortAudio would abort the stream.
            self.callback_errors += 1
            logger.exception("frame handler failed")
