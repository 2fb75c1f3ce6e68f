"""
Progressive chunking of a live sample stream.

The chunker turns an unbounded stream of 16kHz mono samples into bounded,
indexed chunks that can be transcribed independently while recording is
still in progress.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

import numpy as np

from ..exceptions import AudioError
from .resampler import TARGET_SAMPLE_RATE

logger = logging.getLogger(__name__)


@dataclass
class ChunkerConfig:
    """
    Chunk boundary settings.

    Attributes:
        chunk_duration_secs: New audio per chunk before it is emitted.
        overlap_secs: Audio copied from the previous chunk's tail into the
            head of the next one.
        sample_rate: Rate of the incoming samples.
    """

    chunk_duration_secs: float = 90.0
    overlap_secs: float = 2.0
    sample_rate: int = TARGET_SAMPLE_RATE

    def __post_init__(self) -> None:
        if self.chunk_duration_secs <= 0:
            raise ValueError(f"chunk_duration_secs must be positive, got {self.chunk_duration_secs}")
        if self.overlap_secs < 0 or self.overlap_secs >= self.chunk_duration_secs:
            raise ValueError("overlap_secs must be >= 0 and shorter than the chunk duration")

    @property
    def chunk_samples(self) -> int:
        return int(round(self.chunk_duration_secs * self.sample_rate))

    @property
    def overlap_samples(self) -> int:
        return int(round(self.overlap_secs * self.sample_rate))


@dataclass(frozen=True)
class AudioChunk:
    """
    One indexed segment of the session's audio.

    Attributes:
        samples: Mono float32 samples, including any leading overlap.
        index: Position in the session, starting at 0.
        has_leading_overlap: True for every chunk except the first.
        overlap_samples: How many leading samples repeat the previous chunk.
    """

    samples: np.ndarray = field(repr=False)
    index: int
    has_leading_overlap: bool
    overlap_samples: int = 0
    sample_rate: int = TARGET_SAMPLE_RATE

    @property
    def duration_secs(self) -> float:
        return len(self.samples) / self.sample_rate


class ProgressiveChunker:
    """
    Accumulates samples and emits overlapping chunks.

    Only one thread (the capture thread) may call ``push`` and ``finish``.
    Emitted chunks are handed to ``on_chunk``, which is expected to pass
    them on through a queue; the chunker keeps no reference to them.

    Example:
        >>> chunks = []
        >>> chunker = ProgressiveChunker(ChunkerConfig(chunk_duration_secs=90), chunks.append)
        >>> chunker.push(samples)
        >>> total = chunker.finish()
    """

    def __init__(
        self,
        config: Optional[ChunkerConfig] = None,
        on_chunk: Optional[Callable[[AudioChunk], None]] = None,
    ) -> None:
        self.config = config or ChunkerConfig()
        self.on_chunk = on_chunk
        self._parts: list[np.ndarray] = []
        self._buffered = 0
        self._overlap = np.zeros(0, dtype=np.float32)
        self._next_index = 0
        self._finished = False

    @property
    def chunks_emitted(self) -> int:
        return self._next_index

    @property
    def buffered_secs(self) -> float:
        """Duration of new (non-overlap) audio waiting for the next chunk."""
        return self._buffered / self.config.sample_rate

    @property
    def is_finished(self) -> bool:
        return self._finished

    def push(self, samples: np.ndarray) -> None:
        """
        Append samples and emit every chunk that became full.

        Raises:
            AudioError: If called after ``finish``.
        """
        if self._finished:
            raise AudioError("Cannot push samples after the chunker has finished")

        audio = np.asarray(samples, dtype=np.float32).ravel()
        if len(audio) == 0:
            return

        self._parts.append(audio)
        self._buffered += len(audio)

        threshold = self.config.chunk_samples
        while self._buffered >= threshold:
            pending = np.concatenate(self._parts)
            self._emit(pending[:threshold])
            rest = pending[threshold:]
            self._parts = [rest] if len(rest) else []
            self._buffered = len(rest)

    def finish(self) -> int:
        """
        Flush the under-threshold remainder as a final chunk.

        Returns:
            Total number of chunks emitted in this session.
        """
        if self._finished:
            return self._next_index

        if self._buffered > 0:
            self._emit(np.concatenate(self._parts))
        self._parts = []
        self._buffered = 0
        self._finished = True
        logger.info(f"Chunker finished after {self._next_index} chunk(s)")
        return self._next_index

    def _emit(self, new_audio: np.ndarray) -> None:
        index = self._next_index
        has_overlap = index > 0
        overlap = self._overlap if has_overlap else np.zeros(0, dtype=np.float32)

        samples = np.concatenate([overlap, new_audio]) if len(overlap) else new_audio.copy()
        chunk = AudioChunk(
            samples=samples,
            index=index,
            has_leading_overlap=has_overlap,
            overlap_samples=len(overlap),
            sample_rate=self.config.sample_rate,
        )

        keep = self.config.overlap_samples
        self._overlap = samples[-keep:].copy() if keep else np.zeros(0, dtype=np.float32)
        self._next_index += 1

        logger.debug(
            f"Emitting chunk {index} ({chunk.duration_secs:.1f}s, "
            f"overlap={len(overlap) / self.config.sample_rate:.1f}s)"
        )
        if self.on_chunk is not None:
            self.on_chunk(chunk)
