"""Core data models for live transcription."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Tuple

import numpy as np


class SessionState(str, Enum):
    IDLE = "IDLE"
    STARTING = "STARTING"
    RECORDING = "RECORDING"
    FINALIZING = "FINALIZING"
    ERROR = "ERROR"


class RecognizerState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    STREAMING = "streaming"
    FINISHING = "finishing"
    CLOSED = "closed"


class AuthorizationStatus(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"
    RESTRICTED = "restricted"
    UNDETERMINED = "undetermined"


class RecognitionKind(str, Enum):
    READY = "ready"
    PARTIAL = "partial"
    FINAL = "final"
    FINISHED = "finished"


class Provider(str, Enum):
    LOCAL = "LOCAL"
    CLOUD = "CLOUD"


@dataclass(frozen=True)
class AudioFormat:
    sample_rate: int
    channels: int
    encoding: str = "pcm_s16le"


PCM16_MONO_16K = AudioFormat(sample_rate=16000, channels=1, encoding="pcm_s16le")


@dataclass(frozen=True)
class AudioFrame:
    """One buffer of consecutive samples captured together.

    ``samples`` is shaped ``(frames,)`` for mono or ``(frames, channels)``.
    Float samples are expected in [-1, 1]; integer samples are full scale.
    """

    samples: Any
    sample_rate: int = 16000
    channels: int = 1
    bit_depth: int = 32
    timestamp_ms: int = 0

    @property
    def frame_count(self) -> int:
        return int(len(self.samples))

    def channel(self, index: int = 0) -> Any:
        data = np.asarray(self.samples)
        if data.ndim == 1:
            return data
        return data[:, index]


@dataclass(frozen=True)
class TranscriptToken:
    content: str
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    confidence: Optional[float] = None

    @property
    def has_timing(self) -> bool:
        return self.start_time is not None and self.end_time is not None


@dataclass(frozen=True)
class TranscriptAlternative:
    transcript: str
    tokens: Tuple[TranscriptToken, ...] = ()


@dataclass(frozen=True)
class TranscriptResult:
    is_partial: bool
    alternatives: Tuple[TranscriptAlternative, ...] = ()

    @property
    def best(self) -> Optional[TranscriptAlternative]:
        return self.alternatives[0] if self.alternatives else None


@dataclass(frozen=True)
class ResultBatch:
    """One decoded backend event covering a single utterance window."""

    results: Tuple[TranscriptResult, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.results

    @property
    def is_final(self) -> bool:
        return all(not result.is_partial for result in self.results)

    @property
    def text(self) -> str:
        parts = [r.best.transcript for r in self.results if r.best is not None]
        return " ".join(parts)


@dataclass(frozen=True)
class ResultSegment:
    substring: str
    offset: int
    length: int
    timestamp: float
    duration: float
    confidence: Optional[float] = None

    def shifted(self, delta: int) -> "ResultSegment":
        return ResultSegment(
            substring=self.substring,
            offset=self.offset + delta,
            length=self.length,
            timestamp=self.timestamp,
            duration=self.duration,
            confidence=self.confidence,
        )

    def to_metadata(self) -> dict:
        data: dict = {
            "substring": self.substring,
            "offset": self.offset,
            "length": self.length,
            "timestamp": self.timestamp,
            "duration": self.duration,
        }
        if self.confidence is not None:
            data["confidence"] = self.confidence
        return data


@dataclass
class TranscriptState:
    committed_text: str = ""
    committed_segments: list[ResultSegment] = field(default_factory=list)
    is_final: bool = False


@dataclass(frozen=True)
class TranscriptUpdate:
    text: str
    source_id: str
    segments: Tuple[ResultSegment, ...]
    is_final: bool
    provider: str = Provider.CLOUD.value
    committed: bool = False

    @property
    def metadata(self) -> dict:
        return {
            "type": "SPEECH",
            "provider": self.provider,
            "segments": [segment.to_metadata() for segment in self.segments],
        }


@dataclass
class RecognitionEvent:
    kind: str
    text: str = ""
    source_id: str = ""
    segments: Tuple[ResultSegment, ...] = ()
    metadata: dict = field(default_factory=dict)
    is_final: bool = False
    committed: bool = False
    error: Optional[Exception] = None

    @property
    def code(self) -> str:
        return str(getattr(self.error, "code", "")) if self.error else ""

    @property
    def message(self) -> str:
        return str(self.error) if self.error else ""

    @classmethod
    def from_update(cls, update: TranscriptUpdate) -> "RecognitionEvent":
        kind = RecognitionKind.FINAL if update.is_final else RecognitionKind.PARTIAL
        return cls(
            kind=kind.value,
            text=update.text,
            source_id=update.source_id,
            segments=update.segments,
            metadata=update.metadata,
            is_final=update.is_final,
            committed=update.committed,
        )


@dataclass
class Session:
    id: str
    recognizer: Any
    transcript: TranscriptState = field(default_factory=TranscriptState)
    started_at: Optional[float] = None
