"""Reconcile partial/final recognition batches into one growing transcript."""

from __future__ import annotations

import logging
import uuid
from typing import Callable, List, Optional, Tuple

from models import (
    Provider,
    ResultBatch,
    ResultSegment,
    TranscriptAlternative,
    TranscriptState,
    TranscriptUpdate,
)

logger = logging.getLogger(__name__)


def normalize_text(text: str) -> str:
    return " ".join(text.split())


def join_text(*parts: str) -> str:
    return " ".join(p for p in (normalize_text(part) for part in parts) if p)


def locate_segments(alternative: TranscriptAlternative, text: str, base: int = 0) -> List[ResultSegment]:
    """Find each timed token of ``alternative`` inside ``text``, in order.

    Offsets are character positions in ``text`` plus ``base``. Tokens with
    no timing, and tokens that cannot be found after the previous match,
    produce no segment.
    """
    segments: List[ResultSegment] = []
    cursor = 0
    for token in alternative.tokens:
        content = token.content.strip()
        if not content:
            continue
        location = text.find(content, cursor)
        if location < 0:
            logger.debug("token %r not found in %r", content, text)
            continue
        cursor = location + len(content)
        if not token.has_timing:
            continue
        segments.append(
            ResultSegment(
                substring=content,
                offset=base + location,
                length=len(content),
                timestamp=float(token.start_time),  # type: ignore[arg-type]
                duration=float(token.end_time) - float(token.start_time),  # type: ignore[arg-type]
                confidence=token.confidence,
            )
        )
    return segments


def batch_segments(batch: ResultBatch, base: int = 0) -> Tuple[str, List[ResultSegment]]:
    """Normalised batch text and its segments, offsets relative to ``base``."""
    text_parts: List[str] = []
    segments: List[ResultSegment] = []
    position = 0
    for result in batch.results:
        alternative = result.best
        if alternative is None:
            continue
        utterance = normalize_text(alternative.transcript)
        if not utterance:
            continue
        if text_parts:
            position += 1
        segments.extend(locate_segments(alternative, utterance, base + position))
        text_parts.append(utterance)
        position += len(utterance)
    return " ".join(text_parts), segments


class TranscriptMerger:
    """Single-writer merge state for one recognition session.

    ``committed_text`` only ever grows by the text of final batches; the
    latest partial batch is reported on top of it but never stored.
    """

    def __init__(
        self,
        provider: str = Provider.CLOUD.value,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self.provider = provider
        self._id_factory = id_factory
        self._state = TranscriptState()
        self._stopping = False
        self._closed = False

    @property
    def stopping(self) -> bool:
        return self._stopping

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def committed_text(self) -> str:
        return self._state.committed_text

    def begin_stopping(self) -> None:
        self._stopping = True

    def snapshot(self) -> TranscriptState:
        return TranscriptState(
            committed_text=self._state.committed_text,
            committed_segments=list(self._state.committed_segments),
            is_final=self._state.is_final,
        )

    def apply(self, batch: ResultBatch) -> Optional[TranscriptUpdate]:
        if self._closed:
            logger.debug("batch after close ignored")
            return None
        if batch.is_empty:
            return None

        committed = self._state.committed_text
        batch_text, segments = batch_segments(batch)
        if committed and batch_text:
            segments = [segment.shifted(len(committed) + 1) for segment in segments]
        candidate_text = join_text(committed, batch_text)

        is_final_batch = batch.is_final
        is_final = self._stopping and is_final_batch
        update = TranscriptUpdate(
            text=candidate_text,
            source_id=self._id_factory(),
            segments=tuple(self._state.committed_segments) + tuple(segments),
            is_final=is_final,
            provider=self.provider,
            committed=is_final_batch,
        )

        if is_final_batch:
            self._state.committed_segments.extend(segments)
            self._state.committed_text = candidate_text
            if self._stopping:
                self._close()
        return update

    def finish(self) -> Optional[TranscriptUpdate]:
        """Close the session; the terminal update if none was sent yet."""
        if self._closed:
            return None
        self._close()
        return TranscriptUpdate(
            text=self._state.committed_text,
            source_id=self._id_factory(),
            segments=tuple(self._state.committed_segments),
            is_final=True,
            provider=self.provider,
            committed=True,
        )

    def _close(self) -> None:
        self._closed = True
        self._state.is_final = True
