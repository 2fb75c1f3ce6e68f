import numpy as np
import pytest

from streamscribe.transcription.base import TranscriptionBackend, TranscriptionResult


def make_tone(secs: float, sample_rate: int = 16000, freq: float = 440.0, amplitude: float = 0.5) -> np.ndarray:
    t = np.arange(int(round(secs * sample_rate)), dtype=np.float32) / sample_rate
    return (amplitude * np.sin(2 * np.pi * freq * t)).astype(np.float32)


class FakeModel:
    """Stands in for a faster-whisper WhisperModel."""

    class Segment:
        def __init__(self, text: str) -> None:
            self.text = text

    class Info:
        language = "en"

    def __init__(self, texts=None, error=None) -> None:
        self.texts = texts or [" hello", " world "]
        self.error = error
        self.calls = []

    def transcribe(self, samples, language=None, beam_size=5, vad_filter=False):
        self.calls.append({"samples": len(samples), "language": language, "beam_size": beam_size})
        if self.error is not None:
            raise self.error
        return (self.Segment(t) for t in self.texts), self.Info()


class ScriptedBackend(TranscriptionBackend):
    """Backend returning scripted text per call, in call order."""

    name = "scripted"
    display_name = "Scripted"

    def __init__(self, texts, is_local: bool = True) -> None:
        self.texts = list(texts)
        self.is_local = is_local
        self.requests = []

    def transcribe_sync(self, credential, request):
        self.requests.append(request)
        text = self.texts[len(self.requests) - 1]
        if isinstance(text, Exception):
            raise text
        return TranscriptionResult(text=text)

    async def transcribe_async(self, client, credential, request):
        return self.transcribe_sync(credential, request)


@pytest.fixture
def tone():
    return make_tone


@pytest.fixture
def model_dir(tmp_path):
    path = tmp_path / "faster-whisper-tiny"
    path.mkdir()
    return str(path)
