"""
Audio module for streamscribe.

Provides capture, resampling, voice activity gating, progressive chunking
and transport encoding.

AudioRecorder lives in .recorder and is not imported here: sounddevice
needs the PortAudio shared library at import time.
"""

from .capture import CaptureSink
from .chunker import AudioChunk, ChunkerConfig, ProgressiveChunker
from .encoder import AudioEncoder, EncodedAudio, FlacEncoder, Mp3Encoder, create_encoder, decode_audio
from .loader import stream_file
from .resampler import TARGET_SAMPLE_RATE, resample_to_16k
from .vad import VadConfig, VadProcessor, VadState

__all__ = [
    'AudioChunk', 'ChunkerConfig', 'ProgressiveChunker',
    'AudioEncoder', 'EncodedAudio', 'FlacEncoder', 'Mp3Encoder', 'create_encoder', 'decode_audio',
    'stream_file',
    'CaptureSink',
    'TARGET_SAMPLE_RATE', 'resample_to_16k',
    'VadConfig', 'VadProcessor', 'VadState',
]
