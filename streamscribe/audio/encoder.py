"""
Chunk encoding for network transport.

Remote providers receive compressed audio rather than raw samples. Each
call is independent, so chunks can be encoded in any order and on any
thread.
"""

import io
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import numpy as np
import soundfile as sf

from ..exceptions import EncodeError
from .resampler import TARGET_SAMPLE_RATE, resample_to_16k

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EncodedAudio:
    """Compressed audio plus the metadata a provider upload needs."""

    data: bytes = field(repr=False)
    filename: str
    mime_type: str

    def __len__(self) -> int:
        return len(self.data)


class AudioEncoder(ABC):
    """Converts 16kHz mono float samples into a transport byte format."""

    format_name: str = ""
    extension: str = ""
    mime_type: str = ""

    def encode(self, samples: np.ndarray, filename_stem: str = "audio") -> EncodedAudio:
        """
        Encode one chunk of samples.

        Args:
            samples: Mono float32 samples at 16kHz.
            filename_stem: Base name for the upload filename.

        Returns:
            The encoded bytes with filename and MIME type.

        Raises:
            EncodeError: If samples are empty or the codec fails.
        """
        audio = np.asarray(samples, dtype=np.float32).ravel()
        if len(audio) == 0:
            raise EncodeError("Cannot encode empty audio")

        # Codecs clip out-of-range floats badly
        peak = float(np.max(np.abs(audio)))
        if peak > 1.0:
            audio = audio / peak * 0.95

        buffer = io.BytesIO()
        try:
            self._write(buffer, audio)
        except (sf.LibsndfileError, RuntimeError, ValueError, TypeError) as e:
            raise EncodeError(f"{self.format_name} encoding failed: {e}") from e

        data = buffer.getvalue()
        if not data:
            raise EncodeError(f"{self.format_name} encoder produced no data")

        logger.debug(f"Encoded {len(audio)} samples to {len(data)} bytes of {self.format_name}")
        return EncodedAudio(
            data=data,
            filename=f"{filename_stem}.{self.extension}",
            mime_type=self.mime_type,
        )

    @abstractmethod
    def _write(self, buffer: io.BytesIO, audio: np.ndarray) -> None: ...


class Mp3Encoder(AudioEncoder):
    """
    Constant-bitrate MP3 via libsndfile.

    ``compression_level`` picks the bitrate (0.0 highest, 1.0 lowest); the
    bitrate mode is fixed to CONSTANT so every chunk has the same rate.
    """

    format_name = "MP3"
    extension = "mp3"
    mime_type = "audio/mpeg"

    def __init__(self, compression_level: float = 0.5) -> None:
        if not 0.0 <= compression_level <= 1.0:
            raise ValueError(f"compression_level must be within 0.0-1.0, got {compression_level}")
        self.compression_level = compression_level

    def _write(self, buffer: io.BytesIO, audio: np.ndarray) -> None:
        sf.write(
            buffer,
            audio,
            TARGET_SAMPLE_RATE,
            format="MP3",
            subtype="MPEG_LAYER_III",
            compression_level=self.compression_level,
            bitrate_mode="CONSTANT",
        )


class FlacEncoder(AudioEncoder):
    """Lossless FLAC, for providers or setups where MP3 is unavailable."""

    format_name = "FLAC"
    extension = "flac"
    mime_type = "audio/flac"

    def _write(self, buffer: io.BytesIO, audio: np.ndarray) -> None:
        sf.write(buffer, audio, TARGET_SAMPLE_RATE, format="FLAC", subtype="PCM_16")


_ENCODERS = {
    "mp3": Mp3Encoder,
    "flac": FlacEncoder,
}


def create_encoder(fmt: str = "mp3") -> AudioEncoder:
    """
    Create an encoder by format name.

    Raises:
        ValueError: If the format is unknown.
    """
    try:
        return _ENCODERS[fmt.lower()]()
    except KeyError:
        raise ValueError(
            f"Unknown encoder format '{fmt}'. Valid options: {', '.join(_ENCODERS)}"
        ) from None


def decode_audio(data: bytes) -> np.ndarray:
    """
    Decode any soundfile-readable payload into 16kHz mono float32.

    Raises:
        EncodeError: If the payload is empty or cannot be decoded.
    """
    if not data:
        raise EncodeError("Cannot decode empty audio payload")

    try:
        audio, sample_rate = sf.read(io.BytesIO(data), dtype="float32", always_2d=True)
    except (sf.LibsndfileError, RuntimeError) as e:
        raise EncodeError(f"Failed to decode audio payload: {e}") from e

    if len(audio) == 0:
        raise EncodeError("Decoded audio payload contains no samples")

    return resample_to_16k(audio, int(sample_rate), audio.shape[1])
