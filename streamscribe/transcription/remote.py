"""
Remote transcription backends over HTTP.

Two wire shapes cover the supported providers:
- Multipart form upload (OpenAI, Groq, Mistral, ElevenLabs)
- Raw audio body with options in the query string (Deepgram)

Both share the retry policy in `retry` and report UPLOADING once before
the first attempt and TRANSCRIBING once when the request goes out.
"""

import asyncio
import logging
import time
from abc import abstractmethod
from typing import Any, Awaitable, Callable, Optional

import httpx

from ..exceptions import ConfigurationError, EncodeError, ResponseFormatError
from .base import (
    DEFAULT_TIMEOUT_SECS,
    TranscriptionBackend,
    TranscriptionRequest,
    TranscriptionResult,
    TranscriptionStage,
)
from .retry import RetryConfig, send_with_retry, send_with_retry_async

logger = logging.getLogger(__name__)


class RemoteBackend(TranscriptionBackend):
    """
    Shared request/retry/parse flow for HTTP providers.

    Subclasses describe the request (`_request_kwargs`) and how to pull the
    transcript out of the JSON body (`_extract_text`).

    Args:
        name: Provider identifier used in logs and errors.
        display_name: Human readable provider name.
        api_url: Endpoint receiving the audio.
        model: Provider model identifier.
        timeout: Per-request timeout in seconds.
        retry_config: Backoff parameters.
        client_factory: Builds the client for blocking calls.
        sleep: Blocking sleep used between retries.
        async_sleep: Awaitable sleep used between retries.
    """

    def __init__(
        self,
        name: str,
        display_name: str,
        api_url: str,
        model: str,
        timeout: float = DEFAULT_TIMEOUT_SECS,
        retry_config: Optional[RetryConfig] = None,
        client_factory: Optional[Callable[[], httpx.Client]] = None,
        sleep: Callable[[float], None] = time.sleep,
        async_sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.name = name
        self.display_name = display_name
        self.api_url = api_url
        self.model = model
        self.timeout = timeout
        self.retry_config = retry_config or RetryConfig()
        self._client_factory = client_factory or (lambda: httpx.Client(timeout=self.timeout))
        self._sleep = sleep
        self._async_sleep = async_sleep

    def transcribe_sync(self, credential: str, request: TranscriptionRequest) -> TranscriptionResult:
        self._validate(credential, request)
        request.report(TranscriptionStage.UPLOADING)
        kwargs = self._request_kwargs(credential, request)

        with self._client_factory() as client:
            def send() -> httpx.Response:
                request.report(TranscriptionStage.TRANSCRIBING)
                return client.post(**kwargs)

            response = send_with_retry(send, self.name, self.retry_config, self._sleep)

        return TranscriptionResult(text=self._parse(response))

    async def transcribe_async(
        self,
        client: Optional[httpx.AsyncClient],
        credential: str,
        request: TranscriptionRequest,
    ) -> TranscriptionResult:
        self._validate(credential, request)
        request.report(TranscriptionStage.UPLOADING)
        kwargs = self._request_kwargs(credential, request)

        if client is None:
            async with httpx.AsyncClient(timeout=self.timeout) as own_client:
                response = await self._post_with_retry(own_client, kwargs, request)
        else:
            response = await self._post_with_retry(client, kwargs, request)

        return TranscriptionResult(text=self._parse(response))

    async def _post_with_retry(
        self,
        client: httpx.AsyncClient,
        kwargs: dict[str, Any],
        request: TranscriptionRequest,
    ) -> httpx.Response:
        async def send() -> httpx.Response:
            request.report(TranscriptionStage.TRANSCRIBING)
            return await client.post(**kwargs)

        return await send_with_retry_async(send, self.name, self.retry_config, self._async_sleep)

    def _validate(self, credential: str, request: TranscriptionRequest) -> None:
        if not credential:
            raise ConfigurationError(f"No API key configured for {self.display_name}")
        if not request.audio_data:
            raise EncodeError(f"{self.display_name} requires encoded audio, got an empty payload")

    def _parse(self, response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError as e:
            raise ResponseFormatError(f"Failed to parse {self.name} API response: {e}", self.name) from e
        text = self._extract_text(payload)
        logger.debug(f"{self.name} returned {len(text)} chars")
        return text

    @abstractmethod
    def _request_kwargs(self, credential: str, request: TranscriptionRequest) -> dict[str, Any]:
        """Keyword arguments for ``client.post``; rebuilt content is sent on each attempt."""

    @abstractmethod
    def _extract_text(self, payload: Any) -> str: ...


class RemoteMultipartBackend(RemoteBackend):
    """
    Multipart form upload.

    Posts ``<model_field>=<model>`` and ``file`` (plus ``<language_field>``
    when a language is set). Authentication goes in ``auth_header``,
    prefixed with ``auth_scheme`` when one is given, e.g.
    ``Authorization: Bearer <key>`` or ``xi-api-key: <key>``. The response
    must be a JSON object with a ``text`` field.
    """

    def __init__(
        self,
        name: str,
        display_name: str,
        api_url: str,
        model: str,
        auth_header: str = "Authorization",
        auth_scheme: Optional[str] = "Bearer",
        model_field: str = "model",
        language_field: str = "language",
        **kwargs: Any,
    ) -> None:
        super().__init__(name, display_name, api_url, model, **kwargs)
        self.auth_header = auth_header
        self.auth_scheme = auth_scheme
        self.model_field = model_field
        self.language_field = language_field

    def _request_kwargs(self, credential: str, request: TranscriptionRequest) -> dict[str, Any]:
        auth_value = f"{self.auth_scheme} {credential}" if self.auth_scheme else credential
        data = {self.model_field: self.model}
        if request.language:
            data[self.language_field] = request.language
        return {
            "url": self.api_url,
            "headers": {self.auth_header: auth_value},
            "data": data,
            "files": {"file": (request.filename, request.audio_data, request.mime_type)},
        }

    def _extract_text(self, payload: Any) -> str:
        text = payload.get("text") if isinstance(payload, dict) else None
        if not isinstance(text, str):
            raise ResponseFormatError(
                f"{self.display_name} API returned unexpected response format: no text field",
                self.name,
            )
        return text


class RemoteRawBodyBackend(RemoteBackend):
    """
    Raw audio body with options as query parameters (Deepgram style).

    Sends ``model``, ``smart_format=true`` and an optional ``language`` in
    the query string with ``Authorization: Token <key>``; the transcript is
    read from ``results.channels[0].alternatives[0].transcript``.
    """

    def _request_kwargs(self, credential: str, request: TranscriptionRequest) -> dict[str, Any]:
        params = {"model": self.model, "smart_format": "true"}
        if request.language:
            params["language"] = request.language
        return {
            "url": self.api_url,
            "params": params,
            "headers": {
                "Authorization": f"Token {credential}",
                "Content-Type": request.mime_type,
            },
            "content": request.audio_data,
        }

    def _extract_text(self, payload: Any) -> str:
        try:
            transcript = payload["results"]["channels"][0]["alternatives"][0]["transcript"]
        except (KeyError, IndexError, TypeError) as e:
            raise ResponseFormatError(
                f"{self.display_name} API returned unexpected response format: no transcript found",
                self.name,
            ) from e
        if not isinstance(transcript, str):
            raise ResponseFormatError(
                f"{self.display_name} API returned a non-string transcript",
                self.name,
            )
        return transcript
