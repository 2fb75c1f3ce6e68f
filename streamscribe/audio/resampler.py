"""
Sample-rate and channel conversion for streamscribe.

Every sample that enters the chunker passes through here, so everything
downstream can assume mono float32 at 16kHz.
"""

import logging
from math import gcd

import numpy as np
from scipy import signal

from ..exceptions import ResampleError

logger = logging.getLogger(__name__)

TARGET_SAMPLE_RATE = 16000


def downmix_to_mono(samples: np.ndarray, channels: int) -> np.ndarray:
    """
    Average all channels into one.

    Accepts either interleaved 1-D data or a ``(frames, channels)`` array
    as delivered by sounddevice and soundfile.
    """
    if channels <= 0:
        raise ResampleError(f"Invalid channel count: {channels}")

    audio = np.asarray(samples, dtype=np.float32)

    if audio.ndim == 2:
        if audio.shape[1] != channels:
            raise ResampleError(
                f"Sample array has {audio.shape[1]} channels, expected {channels}"
            )
        return audio.mean(axis=1, dtype=np.float32) if channels > 1 else audio[:, 0]

    if channels == 1:
        return audio

    if len(audio) % channels != 0:
        raise ResampleError(
            f"Interleaved length {len(audio)} is not a multiple of {channels} channels"
        )
    return audio.reshape(-1, channels).mean(axis=1, dtype=np.float32)


def resample_to_16k(samples: np.ndarray, sample_rate: int, channels: int = 1) -> np.ndarray:
    """
    Convert captured samples to mono 16kHz float32.

    Channels are averaged before rate conversion. Rate conversion uses
    polyphase filtering, so the output length is
    ``ceil(frames * 16000 / sample_rate)`` and identical input always
    yields identical output.

    Args:
        samples: Raw samples, interleaved 1-D or shaped (frames, channels).
        sample_rate: Native rate of the samples in Hz.
        channels: Number of interleaved channels.

    Returns:
        Mono float32 samples at 16000Hz.

    Raises:
        ResampleError: If the input is empty or the rate/channel count is invalid.
    """
    if sample_rate <= 0:
        raise ResampleError(f"Invalid sample rate: {sample_rate}")

    if samples is None or np.size(samples) == 0:
        raise ResampleError("Cannot resample empty audio")

    mono = downmix_to_mono(samples, channels)

    if sample_rate == TARGET_SAMPLE_RATE:
        return np.ascontiguousarray(mono, dtype=np.float32)

    divisor = gcd(TARGET_SAMPLE_RATE, int(sample_rate))
    up = TARGET_SAMPLE_RATE // divisor
    down = int(sample_rate) // divisor

    resampled = signal.resample_poly(mono, up, down).astype(np.float32)
    logger.debug(f"Resampled {len(mono)} samples from {sample_rate}Hz to {len(resampled)} at 16kHz")
    return resampled
