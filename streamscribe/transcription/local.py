"""
Local in-process transcription with faster-whisper.

The model comes from the shared `ModelCache`, so repeated chunks reuse the
loaded weights. Inference is CPU/GPU bound and runs on a worker thread when
called from the event loop.
"""

import asyncio
import logging
from typing import Any, Optional

import httpx
import numpy as np

from ..audio.encoder import decode_audio
from ..exceptions import InferenceError
from .base import TranscriptionBackend, TranscriptionRequest, TranscriptionResult, TranscriptionStage
from .model_cache import ModelCache

logger = logging.getLogger(__name__)


def load_whisper_model(path: str, device: str = "auto", compute_type: str = "int8") -> Any:
    """
    Load a CTranslate2 Whisper model directory with faster-whisper.

    Imported here rather than at module level: faster-whisper pulls in
    CTranslate2 and is only needed once a local model is actually used.
    """
    from faster_whisper import WhisperModel

    return WhisperModel(path, device=device, compute_type=compute_type)


class LocalWhisperBackend(TranscriptionBackend):
    """
    Offline transcription from a local faster-whisper model.

    The credential passed to the transcribe calls is the model path.
    Requests carrying raw samples are transcribed directly; otherwise the
    encoded payload is decoded to 16kHz mono first.

    Args:
        cache: Model cache shared across the application.
        beam_size: Beam width for decoding.
    """

    name = "local-whisper"
    display_name = "Local Whisper"
    is_local = True

    def __init__(self, cache: ModelCache, beam_size: int = 5) -> None:
        self.cache = cache
        self.beam_size = beam_size

    def transcribe_sync(self, credential: str, request: TranscriptionRequest) -> TranscriptionResult:
        request.report(TranscriptionStage.UPLOADING)

        if request.samples is not None:
            samples = np.asarray(request.samples, dtype=np.float32)
        else:
            samples = decode_audio(request.audio_data)

        state = self.cache.get(credential)
        request.report(TranscriptionStage.TRANSCRIBING)

        try:
            text = self._run(state.model, samples, request.language)
        finally:
            self.cache.maybe_unload()

        logger.info(f"Local transcription complete ({len(samples) / 16000:.1f}s audio, {len(text)} chars)")
        return TranscriptionResult(text=text)

    async def transcribe_async(
        self,
        client: Optional[httpx.AsyncClient],
        credential: str,
        request: TranscriptionRequest,
    ) -> TranscriptionResult:
        return await asyncio.to_thread(self.transcribe_sync, credential, request)

    def _run(self, model: Any, samples: np.ndarray, language: Optional[str]) -> str:
        try:
            segments, info = model.transcribe(
                samples,
                language=language,
                beam_size=self.beam_size,
                vad_filter=False,
            )
            # segments is a lazy generator; decoding happens while iterating
            texts = [segment.text.strip() for segment in segments]
        except Exception as e:
            raise InferenceError(f"Transcription failed: {e}", self.name) from e

        logger.debug(f"Detected language={getattr(info, 'language', language)}, {len(texts)} segment(s)")
        return " ".join(t for t in texts if t).strip()
