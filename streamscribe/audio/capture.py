"""
Producer-side processing shared by every audio source.

Raw blocks go in, 16kHz mono speech-gated samples reach the chunker.
"""

from typing import Optional

import numpy as np

from .chunker import ProgressiveChunker
from .resampler import resample_to_16k
from .vad import VadProcessor


class CaptureSink:
    """
    Resample -> VAD -> chunker, for one producer thread.

    Used by the microphone recorder and by the file source so both paths
    produce identical chunks for identical audio.
    """

    def __init__(
        self,
        chunker: ProgressiveChunker,
        vad: Optional[VadProcessor] = None,
        sample_rate: int = 16000,
        channels: int = 1,
    ) -> None:
        self.chunker = chunker
        self.vad = vad or VadProcessor()
        self.sample_rate = sample_rate
        self.channels = channels
        self.samples_in = 0

    def feed(self, block: np.ndarray) -> np.ndarray:
        """
        Process one raw block.

        Returns:
            The 16kHz mono samples (before gating), for level metering.
        """
        if np.size(block) == 0:
            return np.zeros(0, dtype=np.float32)
        mono = resample_to_16k(block, self.sample_rate, self.channels)
        self.samples_in += len(mono)
        gated = self.vad.process(mono)
        if len(gated):
            self.chunker.push(gated)
        return mono

    def close(self) -> int:
        """Flush the VAD tail and the chunker remainder; returns the chunk count."""
        tail = self.vad.flush()
        if len(tail):
            self.chunker.push(tail)
        return self.chunker.finish()
