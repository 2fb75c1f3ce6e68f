"""
Energy-based voice activity detection for streamscribe.

The gate classifies fixed-length frames as speech or silence and drops
silent stretches before they reach the chunker. It is disabled by default,
in which case every sample passes through untouched.
"""

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional

import numpy as np

from .resampler import TARGET_SAMPLE_RATE

logger = logging.getLogger(__name__)


class VadState(Enum):
    """Classification of the most recently processed audio."""

    SILENCE = auto()
    SPEECH = auto()


@dataclass
class VadConfig:
    """
    Voice activity detection settings.

    Attributes:
        enabled: When False the gate is a pass-through reporting SPEECH.
        threshold: Frame score (0.0 - 1.0) a frame must exceed to count as speech.
        frame_ms: Frame length in milliseconds.
        speech_frames: Consecutive speech frames needed for SILENCE -> SPEECH.
        silence_frames: Consecutive silent frames needed for SPEECH -> SILENCE.
    """

    enabled: bool = False
    threshold: float = 0.5
    frame_ms: int = 30
    speech_frames: int = 3
    silence_frames: int = 15

    def __post_init__(self) -> None:
        if not 0.0 <= self.threshold <= 1.0:
            raise ValueError(f"VAD threshold must be within 0.0-1.0, got {self.threshold}")
        if self.frame_ms <= 0 or self.speech_frames <= 0 or self.silence_frames <= 0:
            raise ValueError("VAD frame length and run lengths must be positive")

    @property
    def frame_size(self) -> int:
        return TARGET_SAMPLE_RATE * self.frame_ms // 1000


def frame_score(frame: np.ndarray) -> float:
    """Scale a frame's RMS into 0.0 - 1.0, the same scale used for volume meters."""
    if len(frame) == 0:
        return 0.0
    rms = float(np.sqrt(np.mean(np.square(frame, dtype=np.float32))))
    return min(1.0, rms * 10)


class VadProcessor:
    """
    Speech/silence gate over 16kHz mono samples.

    A SILENCE -> SPEECH transition needs ``speech_frames`` consecutive loud
    frames so short clicks do not open the gate. The frames of that run are
    held back and released once the transition is confirmed, which keeps
    word onsets intact. SPEECH -> SILENCE needs ``silence_frames`` quiet
    frames in a row; those hangover frames are still passed through.

    Example:
        >>> vad = VadProcessor(VadConfig(enabled=True, threshold=0.5))
        >>> speech_only = vad.process(samples)
        >>> tail = vad.flush()
    """

    def __init__(self, config: Optional[VadConfig] = None) -> None:
        self.config = config or VadConfig()
        self._state = VadState.SPEECH if not self.config.enabled else VadState.SILENCE
        self._carry = np.zeros(0, dtype=np.float32)
        self._pending: list[np.ndarray] = []
        self._loud_run = 0
        self._quiet_run = 0

    @property
    def state(self) -> VadState:
        if not self.config.enabled:
            return VadState.SPEECH
        return self._state

    def reset(self) -> None:
        self._state = VadState.SPEECH if not self.config.enabled else VadState.SILENCE
        self._carry = np.zeros(0, dtype=np.float32)
        self._pending = []
        self._loud_run = 0
        self._quiet_run = 0

    def classify_frame(self, frame: np.ndarray) -> VadState:
        """
        Feed one frame through the state machine.

        Returns:
            The state after this frame.
        """
        if not self.config.enabled:
            return VadState.SPEECH

        is_loud = frame_score(frame) > self.config.threshold

        if self._state == VadState.SILENCE:
            self._loud_run = self._loud_run + 1 if is_loud else 0
            if self._loud_run >= self.config.speech_frames:
                self._state = VadState.SPEECH
                self._loud_run = 0
                self._quiet_run = 0
                logger.debug("VAD: silence -> speech")
        else:
            self._quiet_run = 0 if is_loud else self._quiet_run + 1
            if self._quiet_run >= self.config.silence_frames:
                self._state = VadState.SILENCE
                self._quiet_run = 0
                self._loud_run = 0
                logger.debug("VAD: speech -> silence")

        return self._state

    def process(self, samples: np.ndarray) -> np.ndarray:
        """
        Gate a block of samples.

        Partial frames are carried over to the next call, so block sizes
        from the capture device do not need to align with frame size.

        Returns:
            The samples classified as speech, in order. May be empty.
        """
        audio = np.asarray(samples, dtype=np.float32)
        if not self.config.enabled:
            return audio

        if len(self._carry):
            audio = np.concatenate([self._carry, audio])

        frame_size = self.config.frame_size
        full = len(audio) - len(audio) % frame_size
        self._carry = audio[full:].copy()

        kept: list[np.ndarray] = []
        for start in range(0, full, frame_size):
            frame = audio[start:start + frame_size]
            was_speech = self._state == VadState.SPEECH
            state = self.classify_frame(frame)

            if was_speech:
                kept.append(frame)
            elif state == VadState.SPEECH:
                kept.extend(self._pending)
                kept.append(frame)
                self._pending = []
            elif self._loud_run > 0:
                self._pending.append(frame)
            else:
                self._pending = []

        if not kept:
            return np.zeros(0, dtype=np.float32)
        return np.concatenate(kept)

    def flush(self) -> np.ndarray:
        """Return the carried partial frame if the gate is open, then reset."""
        tail = self._carry if self._state == VadState.SPEECH else np.zeros(0, dtype=np.float32)
        self.reset()
        return tail
