"""
Custom exceptions for streamscribe.

This module defines the error taxonomy shared by the audio pipeline and the
transcription backends, so callers can tell a bad configuration from a
transient network failure or a malformed provider response.
"""

from typing import Optional


class StreamScribeError(Exception):
    """Base exception for all streamscribe errors."""
    pass


class ConfigurationError(StreamScribeError):
    """Raised when configuration is missing, unreadable or invalid."""
    pass


# Audio Exceptions
class AudioError(StreamScribeError):
    """Base exception for audio-related errors."""
    pass


class ResampleError(AudioError):
    """Raised when samples cannot be converted to 16kHz mono."""
    pass


class EncodeError(AudioError):
    """Raised when a chunk cannot be encoded for transport."""
    pass


class AudioRecordingError(AudioError):
    """Raised when audio capture fails."""
    pass


class NoAudioDeviceError(AudioError):
    """Raised when no audio input device is available."""
    pass


# Transcription Exceptions
class TranscriptionError(StreamScribeError):
    """
    Base exception for transcription-related errors.

    Attributes:
        provider: Name of the backend that produced the error, if known.
    """

    def __init__(self, message: str, provider: Optional[str] = None) -> None:
        super().__init__(message)
        self.provider = provider


class NetworkError(TranscriptionError):
    """Raised when a request could not be delivered (timeout, connect, protocol)."""
    pass


class APIError(TranscriptionError):
    """
    Raised when a provider answers with a non-success HTTP status.

    Attributes:
        status_code: The HTTP status returned by the provider.
        body: The response body, kept verbatim for diagnostics.
    """

    def __init__(self, provider: str, status_code: int, body: str) -> None:
        super().__init__(f"{provider} API error ({status_code}): {body}", provider)
        self.status_code = status_code
        self.body = body


class ResponseFormatError(TranscriptionError):
    """Raised when a success response cannot be parsed or lacks a transcript."""
    pass


class ModelNotFoundError(TranscriptionError):
    """Raised when a local model path does not exist on disk."""
    pass


class ModelLoadError(TranscriptionError):
    """Raised when a local model fails to load."""
    pass


class InferenceError(TranscriptionError):
    """Raised when local inference fails."""
    pass


class SessionError(StreamScribeError):
    """Raised when a transcription session is used out of order."""
    pass
