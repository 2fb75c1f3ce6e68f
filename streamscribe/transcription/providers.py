"""
Provider registry: maps a configured provider name to a backend instance.
"""

import logging
from enum import Enum
from typing import Any, Optional

from ..exceptions import ConfigurationError
from .base import TranscriptionBackend
from .local import LocalWhisperBackend
from .model_cache import ModelCache
from .remote import RemoteMultipartBackend, RemoteRawBodyBackend

logger = logging.getLogger(__name__)


class TranscriptionProvider(str, Enum):
    OPENAI = "openai"
    GROQ = "groq"
    MISTRAL = "mistral"
    DEEPGRAM = "deepgram"
    ELEVENLABS = "elevenlabs"
    LOCAL_WHISPER = "local-whisper"
    # Reserved: recognised in config files, but no backend ships for it
    LOCAL_PARAKEET = "local-parakeet"

    @property
    def is_local(self) -> bool:
        return self in (TranscriptionProvider.LOCAL_WHISPER, TranscriptionProvider.LOCAL_PARAKEET)

    @property
    def env_var(self) -> str:
        """Environment variable holding this provider's credential."""
        if self.is_local:
            return f"{self.name}_MODEL_PATH"
        return f"{self.name}_API_KEY"

    @classmethod
    def parse(cls, value: str) -> "TranscriptionProvider":
        try:
            return cls(value.strip().lower())
        except ValueError:
            valid = ", ".join(p.value for p in cls)
            raise ConfigurationError(f"Unknown provider '{value}'. Valid options: {valid}") from None


def create_backend(
    provider: TranscriptionProvider,
    model_cache: Optional[ModelCache] = None,
    **kwargs: Any,
) -> TranscriptionBackend:
    """
    Build the backend for a provider.

    Args:
        provider: Which provider to use.
        model_cache: Required for local providers.
        **kwargs: Passed to remote backends (timeout, retry_config,
            client_factory, sleep, async_sleep).

    Raises:
        ConfigurationError: If a local provider is requested without a cache,
            or the provider has no backend in this build.
    """
    if provider is TranscriptionProvider.LOCAL_PARAKEET:
        raise ConfigurationError(
            "The local-parakeet provider is not available in streamscribe; "
            "use local-whisper for local transcription"
        )

    if provider is TranscriptionProvider.LOCAL_WHISPER:
        if model_cache is None:
            raise ConfigurationError("Local transcription needs a model cache")
        return LocalWhisperBackend(model_cache)

    if provider is TranscriptionProvider.OPENAI:
        return RemoteMultipartBackend(
            "openai", "OpenAI Whisper",
            "https://api.openai.com/v1/audio/transcriptions", "whisper-1",
            **kwargs,
        )
    if provider is TranscriptionProvider.GROQ:
        return RemoteMultipartBackend(
            "groq", "Groq Whisper",
            "https://api.groq.com/openai/v1/audio/transcriptions", "whisper-large-v3-turbo",
            **kwargs,
        )
    if provider is TranscriptionProvider.MISTRAL:
        return RemoteMultipartBackend(
            "mistral", "Mistral Voxtral",
            "https://api.mistral.ai/v1/audio/transcriptions", "voxtral-mini-latest",
            **kwargs,
        )
    if provider is TranscriptionProvider.ELEVENLABS:
        return RemoteMultipartBackend(
            "elevenlabs", "ElevenLabs Scribe",
            "https://api.elevenlabs.io/v1/speech-to-text", "scribe_v1",
            auth_header="xi-api-key",
            auth_scheme=None,
            model_field="model_id",
            language_field="language_code",
            **kwargs,
        )
    if provider is TranscriptionProvider.DEEPGRAM:
        return RemoteRawBodyBackend(
            "deepgram", "Deepgram Nova",
            "https://api.deepgram.com/v1/listen", "nova-2",
            **kwargs,
        )

    raise ConfigurationError(f"Unsupported provider: {provider}")
