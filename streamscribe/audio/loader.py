"""
Pre-recorded audio input for streamscribe.

Files are read block by block and pushed through the same capture sink as
the microphone, so a recording on disk is chunked exactly like a live one.
"""

import logging
from pathlib import Path
from typing import Callable, Union

import soundfile as sf

from ..exceptions import AudioError
from .capture import CaptureSink

logger = logging.getLogger(__name__)


def stream_file(
    path: Union[str, Path],
    sink_factory: Callable[[int, int], CaptureSink],
    block_secs: float = 1.0,
) -> int:
    """
    Feed a file through a capture sink in fixed-size blocks.

    Args:
        path: Audio file to read.
        sink_factory: Callable ``(sample_rate, channels) -> CaptureSink``;
            the file's native format is only known once it is opened.
        block_secs: Block size to read at a time.

    Returns:
        Total number of chunks emitted.

    Raises:
        AudioError: If the file is missing or cannot be decoded.
    """
    path = Path(path)
    if not path.exists():
        raise AudioError(f"Audio file not found: {path}")

    try:
        with sf.SoundFile(path) as audio_file:
            sink: CaptureSink = sink_factory(audio_file.samplerate, audio_file.channels)
            blocksize = max(1, int(audio_file.samplerate * block_secs))
            for block in audio_file.blocks(blocksize=blocksize, dtype="float32", always_2d=True):
                sink.feed(block)
    except (sf.LibsndfileError, RuntimeError) as e:
        raise AudioError(f"Failed to read audio file {path}: {e}") from e

    total = sink.close()
    logger.info(f"Streamed {path.name} into {total} chunk(s)")
    return total
