"""
Transcription module for streamscribe.

Provides the backend contract, remote (HTTP) and local (faster-whisper)
backends, the retry policy, the shared model cache and the chunk dispatcher.
"""

from .base import TranscriptionBackend, TranscriptionRequest, TranscriptionResult, TranscriptionStage
from .dispatcher import ChunkDispatcher, Reassembler, TranscriptOutcome, trim_overlap
from .local import LocalWhisperBackend, load_whisper_model
from .model_cache import InferenceState, ModelCache
from .providers import TranscriptionProvider, create_backend
from .remote import RemoteBackend, RemoteMultipartBackend, RemoteRawBodyBackend
from .retry import RetryConfig, RetryState, send_with_retry, send_with_retry_async

__all__ = [
    'TranscriptionBackend', 'TranscriptionRequest', 'TranscriptionResult', 'TranscriptionStage',
    'ChunkDispatcher', 'Reassembler', 'TranscriptOutcome', 'trim_overlap',
    'LocalWhisperBackend', 'load_whisper_model',
    'InferenceState', 'ModelCache',
    'TranscriptionProvider', 'create_backend',
    'RemoteBackend', 'RemoteMultipartBackend', 'RemoteRawBodyBackend',
    'RetryConfig', 'RetryState', 'send_with_retry', 'send_with_retry_async',
]
