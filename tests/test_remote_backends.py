import asyncio
import json

import httpx
import pytest

from streamscribe.exceptions import APIError, ConfigurationError, EncodeError, ResponseFormatError
from streamscribe.transcription.base import TranscriptionRequest, TranscriptionStage
from streamscribe.transcription.model_cache import ModelCache
from streamscribe.transcription.providers import TranscriptionProvider, create_backend
from streamscribe.transcription.remote import RemoteRawBodyBackend

AUDIO = b"\xff\xfbfake-mp3-bytes"


class Recorder:
    """MockTransport handler replaying scripted responses and keeping the requests."""

    def __init__(self, *responses: httpx.Response) -> None:
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        request.read()
        self.requests.append(request)
        return self.responses[min(len(self.requests), len(self.responses)) - 1]


def _backend(provider: TranscriptionProvider, handler: Recorder):
    return create_backend(
        provider,
        client_factory=lambda: httpx.Client(transport=httpx.MockTransport(handler)),
        sleep=lambda secs: None,
    )


def _request(language="de", progress=None) -> TranscriptionRequest:
    return TranscriptionRequest(
        audio_data=AUDIO,
        filename="chunk_0000.mp3",
        mime_type="audio/mpeg",
        language=language,
        progress=progress,
    )


def test_openai_sends_multipart_with_bearer_token() -> None:
    handler = Recorder(httpx.Response(200, json={"text": "Hallo Welt"}))

    result = _backend(TranscriptionProvider.OPENAI, handler).transcribe_sync("sk-test", _request())

    assert result.text == "Hallo Welt"
    sent = handler.requests[0]
    assert sent.method == "POST"
    assert str(sent.url) == "https://api.openai.com/v1/audio/transcriptions"
    assert sent.headers["Authorization"] == "Bearer sk-test"
    assert sent.headers["Content-Type"].startswith("multipart/form-data")
    assert b'name="model"' in sent.content and b"whisper-1" in sent.content
    assert b'name="language"' in sent.content
    assert b'filename="chunk_0000.mp3"' in sent.content
    assert AUDIO in sent.content


@pytest.mark.parametrize(
    "provider,url,model",
    [
        (TranscriptionProvider.GROQ, "https://api.groq.com/openai/v1/audio/transcriptions", b"whisper-large-v3-turbo"),
        (TranscriptionProvider.MISTRAL, "https://api.mistral.ai/v1/audio/transcriptions", b"voxtral-mini-latest"),
    ],
)
def test_openai_compatible_providers(provider, url, model) -> None:
    handler = Recorder(httpx.Response(200, json={"text": "ok"}))

    _backend(provider, handler).transcribe_sync("key", _request())

    assert str(handler.requests[0].url) == url
    assert model in handler.requests[0].content


def test_language_is_omitted_for_auto_detection() -> None:
    handler = Recorder(httpx.Response(200, json={"text": "ok"}))

    _backend(TranscriptionProvider.OPENAI, handler).transcribe_sync("key", _request(language=None))

    assert b'name="language"' not in handler.requests[0].content


def test_elevenlabs_uses_its_own_field_names() -> None:
    handler = Recorder(httpx.Response(200, json={"text": "hello", "language_code": "en"}))

    result = _backend(TranscriptionProvider.ELEVENLABS, handler).transcribe_sync("xi-key", _request("en"))

    assert result.text == "hello"
    sent = handler.requests[0]
    assert sent.headers["xi-api-key"] == "xi-key"
    assert "Authorization" not in sent.headers
    assert b'name="model_id"' in sent.content and b"scribe_v1" in sent.content
    assert b'name="language_code"' in sent.content


def test_deepgram_sends_raw_body_with_query_options() -> None:
    body = {"results": {"channels": [{"alternatives": [{"transcript": "good morning"}]}]}}
    handler = Recorder(httpx.Response(200, json=body))

    result = _backend(TranscriptionProvider.DEEPGRAM, handler).transcribe_sync("dg-key", _request("en"))

    assert result.text == "good morning"
    sent = handler.requests[0]
    assert sent.url.path == "/v1/listen"
    assert sent.url.params["model"] == "nova-2"
    assert sent.url.params["smart_format"] == "true"
    assert sent.url.params["language"] == "en"
    assert sent.headers["Authorization"] == "Token dg-key"
    assert sent.headers["Content-Type"] == "audio/mpeg"
    assert sent.content == AUDIO


def test_deepgram_without_transcript_is_a_format_error() -> None:
    handler = Recorder(httpx.Response(200, json={"results": {"channels": []}}))

    with pytest.raises(ResponseFormatError):
        _backend(TranscriptionProvider.DEEPGRAM, handler).transcribe_sync("key", _request())


def test_progress_is_reported_once_per_stage_across_retries() -> None:
    handler = Recorder(
        httpx.Response(503, text="busy"),
        httpx.Response(200, json={"text": "ok"}),
    )
    stages = []

    _backend(TranscriptionProvider.OPENAI, handler).transcribe_sync("key", _request(progress=stages.append))

    assert len(handler.requests) == 2
    assert stages == [TranscriptionStage.UPLOADING, TranscriptionStage.TRANSCRIBING]


def test_client_error_is_not_retried() -> None:
    handler = Recorder(httpx.Response(401, text="invalid api key"))

    with pytest.raises(APIError) as exc_info:
        _backend(TranscriptionProvider.OPENAI, handler).transcribe_sync("bad", _request())

    assert exc_info.value.status_code == 401
    assert exc_info.value.body == "invalid api key"
    assert len(handler.requests) == 1


def test_missing_text_field_is_a_format_error() -> None:
    handler = Recorder(httpx.Response(200, json={"transcript": "wrong field"}))

    with pytest.raises(ResponseFormatError):
        _backend(TranscriptionProvider.OPENAI, handler).transcribe_sync("key", _request())


def test_invalid_json_is_a_format_error() -> None:
    handler = Recorder(httpx.Response(200, text="<html>gateway</html>"))

    with pytest.raises(ResponseFormatError):
        _backend(TranscriptionProvider.OPENAI, handler).transcribe_sync("key", _request())


def test_empty_api_key_is_rejected_before_sending() -> None:
    handler = Recorder(httpx.Response(200, json={"text": "ok"}))

    with pytest.raises(ConfigurationError):
        _backend(TranscriptionProvider.OPENAI, handler).transcribe_sync("", _request())

    assert handler.requests == []


def test_empty_payload_is_rejected_before_sending() -> None:
    handler = Recorder(httpx.Response(200, json={"text": "ok"}))
    request = TranscriptionRequest(audio_data=b"", filename="a.mp3", mime_type="audio/mpeg")

    with pytest.raises(EncodeError):
        _backend(TranscriptionProvider.OPENAI, handler).transcribe_sync("key", request)


def test_async_path_uses_the_shared_client() -> None:
    handler = Recorder(
        httpx.Response(429, text="slow down"),
        httpx.Response(200, json={"text": "shared"}),
    )
    sleeps = []

    async def fake_sleep(secs: float) -> None:
        sleeps.append(secs)

    backend = create_backend(TranscriptionProvider.GROQ, async_sleep=fake_sleep)

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await backend.transcribe_async(client, "key", _request())

    result = asyncio.run(run())

    assert result.text == "shared"
    assert sleeps == [2.0]
    assert len(handler.requests) == 2


def test_provider_names_and_env_vars() -> None:
    assert TranscriptionProvider.parse(" OpenAI ") is TranscriptionProvider.OPENAI
    assert TranscriptionProvider.parse("local-whisper").is_local
    assert TranscriptionProvider.DEEPGRAM.env_var == "DEEPGRAM_API_KEY"
    assert TranscriptionProvider.LOCAL_WHISPER.env_var == "LOCAL_WHISPER_MODEL_PATH"


def test_unknown_provider_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        TranscriptionProvider.parse("whisperx")


def test_local_provider_needs_a_model_cache() -> None:
    with pytest.raises(ConfigurationError):
        create_backend(TranscriptionProvider.LOCAL_WHISPER)


def test_raw_body_backend_reports_provider_in_errors() -> None:
    handler = Recorder(httpx.Response(400, text=json.dumps({"err_msg": "bad audio"})))
    backend = RemoteRawBodyBackend(
        "deepgram", "Deepgram", "https://api.deepgram.com/v1/listen", "nova-2",
        client_factory=lambda: httpx.Client(transport=httpx.MockTransport(handler)),
    )

    with pytest.raises(APIError, match="deepgram API error \\(400\\)"):
        backend.transcribe_sync("key", _request())


def test_parakeet_provider_is_reserved() -> None:
    provider = TranscriptionProvider.parse("local-parakeet")

    assert provider.is_local
    assert provider.env_var == "LOCAL_PARAKEET_MODEL_PATH"
    with pytest.raises(ConfigurationError, match="local-whisper"):
        create_backend(provider, model_cache=ModelCache(loader=lambda path: object()))
