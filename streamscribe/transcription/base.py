"""
Backend contract for streamscribe transcription providers.

Every provider, remote or local, implements the same two operations: a
blocking ``transcribe_sync`` and an awaitable ``transcribe_async``. How
chunks fan out to those calls is the dispatcher's business, not the
backend's.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Callable, Optional

import httpx
import numpy as np

from ..audio.encoder import EncodedAudio

logger = logging.getLogger(__name__)

# Per-request timeout for remote providers; long chunks take a while to upload
DEFAULT_TIMEOUT_SECS = 300.0


class TranscriptionStage(IntEnum):
    """Progress stages reported once each, in this order, per request."""

    UPLOADING = 1
    TRANSCRIBING = 2


ProgressSink = Callable[[TranscriptionStage], None]


@dataclass
class TranscriptionRequest:
    """
    Everything a backend needs for one transcription call.

    Attributes:
        audio_data: Encoded audio bytes (may be empty when samples are given).
        filename: Upload filename, extension matching the encoding.
        mime_type: MIME type of audio_data.
        language: Optional language code (e.g. "en"); None lets the provider detect.
        progress: Optional sink receiving UPLOADING then TRANSCRIBING.
        samples: Optional raw 16kHz mono samples; local backends use them
            directly and skip decoding.
    """

    audio_data: bytes = field(repr=False)
    filename: str
    mime_type: str
    language: Optional[str] = None
    progress: Optional[ProgressSink] = field(default=None, repr=False)
    samples: Optional[np.ndarray] = field(default=None, repr=False)
    _last_stage: int = field(default=0, init=False, repr=False)

    @classmethod
    def from_encoded(
        cls,
        encoded: EncodedAudio,
        language: Optional[str] = None,
        progress: Optional[ProgressSink] = None,
    ) -> "TranscriptionRequest":
        return cls(
            audio_data=encoded.data,
            filename=encoded.filename,
            mime_type=encoded.mime_type,
            language=language,
            progress=progress,
        )

    @classmethod
    def from_samples(
        cls,
        samples: np.ndarray,
        language: Optional[str] = None,
        progress: Optional[ProgressSink] = None,
    ) -> "TranscriptionRequest":
        return cls(
            audio_data=b"",
            filename="audio.raw",
            mime_type="audio/L16",
            language=language,
            progress=progress,
            samples=samples,
        )

    def report(self, stage: TranscriptionStage) -> None:
        """
        Report a progress stage.

        Each stage is delivered at most once and never after a later stage;
        reporting TRANSCRIBING first delivers UPLOADING ahead of it.
        """
        if stage <= self._last_stage:
            return

        for pending in TranscriptionStage:
            if self._last_stage < pending <= stage:
                self._last_stage = pending
                if self.progress is None:
                    continue
                try:
                    self.progress(pending)
                except Exception as e:
                    logger.warning(f"Error in progress callback: {e}")


@dataclass(frozen=True)
class TranscriptionResult:
    """Text produced for one request."""

    text: str


class TranscriptionBackend(ABC):
    """
    A transcription capability.

    ``credential`` is an API key for remote providers and a model path for
    local ones.
    """

    name: str = ""
    display_name: str = ""
    is_local: bool = False

    @abstractmethod
    def transcribe_sync(self, credential: str, request: TranscriptionRequest) -> TranscriptionResult:
        """Transcribe, blocking the calling thread."""

    @abstractmethod
    async def transcribe_async(
        self,
        client: Optional[httpx.AsyncClient],
        credential: str,
        request: TranscriptionRequest,
    ) -> TranscriptionResult:
        """
        Transcribe without blocking the event loop.

        Args:
            client: Shared HTTP client for connection pooling; local
                backends ignore it.
            credential: API key or model path.
            request: The request to transcribe.
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
