"""
Session controller for streamscribe.

This module provides TranscriptionSession, which wires the audio source, the
progressive chunker and the chunk dispatcher together and exposes a small
state machine plus callbacks for whatever front end drives it.

Chunks are produced on a capture thread (microphone or file reader) and
cross into the asyncio event loop through ``loop.call_soon_threadsafe``;
everything downstream of the queue runs on the loop.

Example:
    >>> session = TranscriptionSession(PipelineConfig.from_dict(load_config()))
    >>> session.on_partial_text = lambda i, text: print(f"[{i}] {text}")
    >>> outcome = asyncio.run(session.transcribe_file("meeting.wav"))
    >>> print(outcome.text)
"""

import asyncio
import logging
from enum import Enum, auto
from functools import partial
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Optional, Union

import httpx

from .audio.capture import CaptureSink
from .audio.chunker import AudioChunk, ProgressiveChunker
from .audio.encoder import AudioEncoder, create_encoder
from .audio.loader import stream_file
from .audio.vad import VadProcessor
from .config import PipelineConfig, resolve_credential
from .exceptions import ConfigurationError, SessionError, StreamScribeError
from .transcription.base import TranscriptionBackend, TranscriptionStage
from .transcription.dispatcher import ChunkDispatcher, TranscriptOutcome
from .transcription.local import load_whisper_model
from .transcription.model_cache import ModelCache
from .transcription.providers import create_backend

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """
    Session states.

    - IDLE: Nothing in progress.
    - RECORDING: Audio is being captured; chunks are dispatched as they fill.
    - TRANSCRIBING: Capture has ended; waiting for outstanding chunks.

    State transitions:
        IDLE -> RECORDING (start_recording)
        RECORDING -> TRANSCRIBING (stop)
        IDLE -> TRANSCRIBING (transcribe_file)
        TRANSCRIBING -> IDLE (transcript ready)

        Any state -> IDLE (error or cancellation)
    """

    IDLE = auto()
    RECORDING = auto()
    TRANSCRIBING = auto()


class TranscriptionSession:
    """
    Runs one transcription at a time against a configured backend.

    The session owns the shared pieces that outlive a single recording: the
    backend, the model cache used by local inference, and the encoder.

    Callbacks:
        on_state_changed: Called when the session state changes.
                         Signature: (old_state: SessionState, new_state: SessionState) -> None
        on_partial_text: Called when a chunk's text arrives, possibly out of order.
                        Signature: (index: int, text: str) -> None
        on_progress: Called when a chunk request reaches a new stage.
                    Signature: (index: int, stage: TranscriptionStage) -> None
        on_volume_level: Called with the live input level while recording.
                        Signature: (level: float) -> None  # level is 0.0 to 1.0
        on_transcription_ready: Called with the final outcome.
                               Signature: (outcome: TranscriptOutcome) -> None
        on_error: Called when the session fails. A capture failure also ends
                 the recording, so no stop() is needed afterwards.
                 Signature: (error: Exception) -> None

    Args:
        config: Pipeline settings. Defaults to PipelineConfig().
        backend: Backend to use instead of the configured provider's.
        credential: API key or model path; resolved from the config and
            environment when omitted.
        encoder: Transport encoder for remote backends.
        model_cache: Shared cache for local models.
        client: Shared HTTP client for remote backends.
        recorder_factory: Builds the microphone recorder. Defaults to
            streamscribe.audio.recorder.AudioRecorder.
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        backend: Optional[TranscriptionBackend] = None,
        credential: Optional[str] = None,
        encoder: Optional[AudioEncoder] = None,
        model_cache: Optional[ModelCache] = None,
        client: Optional[httpx.AsyncClient] = None,
        recorder_factory: Optional[Callable[..., Any]] = None,
    ) -> None:
        self.config = config or PipelineConfig()
        self.model_cache = model_cache or ModelCache(
            loader=partial(
                load_whisper_model,
                device=self.config.model_device,
                compute_type=self.config.compute_type,
            ),
            keep_loaded=self.config.keep_loaded,
            idle_unload_secs=self.config.idle_unload_secs,
        )
        self.backend = backend or create_backend(
            self.config.provider,
            model_cache=self.model_cache,
            retry_config=self.config.retry,
        )
        try:
            self.encoder = encoder or create_encoder(self.config.encoder_format)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

        self._credential = credential
        self._client = client
        self._recorder_factory = recorder_factory

        self._state = SessionState.IDLE
        self._state_lock = Lock()
        self._recorder: Optional[Any] = None
        self._dispatch_task: Optional[asyncio.Task] = None
        self._queue: Optional["asyncio.Queue[Optional[AudioChunk]]"] = None
        self._cancel_event: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        # Callbacks for front-end integration
        self.on_state_changed: Optional[Callable[[SessionState, SessionState], None]] = None
        self.on_partial_text: Optional[Callable[[int, str], None]] = None
        self.on_progress: Optional[Callable[[int, TranscriptionStage], None]] = None
        self.on_volume_level: Optional[Callable[[float], None]] = None
        self.on_transcription_ready: Optional[Callable[[TranscriptOutcome], None]] = None
        self.on_error: Optional[Callable[[Exception], None]] = None

        logger.info(f"TranscriptionSession initialized with {self.backend!r}")

    @property
    def state(self) -> SessionState:
        """Get the current session state."""
        return self._state

    @property
    def listen_mode(self) -> bool:
        """Whether the local model is kept loaded between transcriptions."""
        return self.model_cache.keep_loaded

    def set_listen_mode(self, enabled: bool) -> None:
        """
        Keep the local model resident between transcriptions.

        Turning listen mode off releases a loaded model immediately.
        """
        self.model_cache.set_keep_loaded(enabled)
        logger.info(f"Listen mode {'enabled' if enabled else 'disabled'}")

    def _set_state(self, new_state: SessionState) -> None:
        with self._state_lock:
            old_state = self._state
            if old_state == new_state:
                return
            self._state = new_state
            logger.info(f"State transition: {old_state.name} -> {new_state.name}")

        if self.on_state_changed:
            try:
                self.on_state_changed(old_state, new_state)
            except Exception as e:
                logger.error(f"Error in on_state_changed callback: {e}")

    def _handle_error(self, error: Exception) -> None:
        logger.error(f"Session error: {error}")
        self._reset_run()
        self._set_state(SessionState.IDLE)
        self._notify_error(error)

    def _notify_error(self, error: Exception) -> None:
        if self.on_error:
            try:
                self.on_error(error)
            except Exception as e:
                logger.error(f"Error in on_error callback: {e}")

    def _reset_run(self) -> None:
        """Forget the per-run loop, queue and cancel event."""
        self._recorder = None
        self._dispatch_task = None
        self._queue = None
        self._cancel_event = None
        self._loop = None

    def _resolve_credential(self) -> str:
        if self._credential is None:
            self._credential = resolve_credential(self.config)
        return self._credential

    def _create_dispatcher(self) -> ChunkDispatcher:
        dispatcher = ChunkDispatcher(
            self.backend,
            self._resolve_credential(),
            encoder=self.encoder,
            language=self.config.language,
            client=self._client,
            on_partial=self._on_partial_callback,
            on_progress=self._on_progress_callback,
        )
        dispatcher.on_chunk_error = self._on_chunk_error
        return dispatcher

    def _create_chunker(self, loop: asyncio.AbstractEventLoop, chunks: asyncio.Queue) -> ProgressiveChunker:
        def forward(chunk: AudioChunk) -> None:
            logger.debug(f"Chunk {chunk.index} ready ({chunk.duration_secs:.1f}s)")
            loop.call_soon_threadsafe(chunks.put_nowait, chunk)

        return ProgressiveChunker(self.config.chunker, on_chunk=forward)

    async def transcribe_file(
        self,
        path: Union[str, Path],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> TranscriptOutcome:
        """
        Transcribe a pre-recorded audio file.

        The file is read on a worker thread and chunked exactly like live
        audio; chunks are dispatched while later parts are still being read.

        Args:
            path: Audio file readable by soundfile.
            cancel_event: Set to abandon outstanding chunks.

        Returns:
            The final outcome; ``is_partial`` when chunks failed or were
            abandoned.

        Raises:
            SessionError: If the session is busy.
            StreamScribeError: If the file or configuration is unusable.
        """
        if self._state != SessionState.IDLE:
            raise SessionError(f"Cannot transcribe a file while {self._state.name}")

        loop = asyncio.get_running_loop()
        chunks: "asyncio.Queue[Optional[AudioChunk]]" = asyncio.Queue()
        cancel_event = cancel_event or asyncio.Event()

        try:
            dispatcher = self._create_dispatcher()
        except StreamScribeError as e:
            self._handle_error(e)
            raise

        def make_sink(sample_rate: int, channels: int) -> CaptureSink:
            return CaptureSink(
                self._create_chunker(loop, chunks),
                vad=VadProcessor(self.config.vad),
                sample_rate=sample_rate,
                channels=channels,
            )

        self._loop = loop
        self._queue = chunks
        self._cancel_event = cancel_event
        self._set_state(SessionState.TRANSCRIBING)
        dispatch = asyncio.create_task(dispatcher.run(chunks, cancel_event))
        self._dispatch_task = dispatch

        try:
            await asyncio.to_thread(stream_file, path, make_sink)
        except StreamScribeError as e:
            cancel_event.set()
            chunks.put_nowait(None)
            await dispatch
            self._handle_error(e)
            raise

        chunks.put_nowait(None)
        return await self._finish(dispatch)

    async def start_recording(self, cancel_event: Optional[asyncio.Event] = None) -> None:
        """
        Start capturing from the microphone.

        Chunks are dispatched as soon as they fill; call ``stop`` to flush
        the remainder and collect the transcript.

        Args:
            cancel_event: Set to abandon outstanding chunks. ``cancel``
                sets the session's own event when none is given.

        Raises:
            SessionError: If the session is busy.
            StreamScribeError: If the device or configuration is unusable.
        """
        if self._state != SessionState.IDLE:
            raise SessionError(f"Cannot start recording while {self._state.name}")

        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._cancel_event = cancel_event or asyncio.Event()

        try:
            dispatcher = self._create_dispatcher()
            recorder = self._build_recorder(self._create_chunker(self._loop, self._queue))
            recorder.on_volume_change = self._on_volume_callback
            recorder.on_error = self._on_recorder_error
            recorder.start_recording()
        except StreamScribeError as e:
            self._handle_error(e)
            raise

        self._recorder = recorder
        self._dispatch_task = asyncio.create_task(dispatcher.run(self._queue, self._cancel_event))
        self._set_state(SessionState.RECORDING)
        logger.debug("Recording started")

    def _build_recorder(self, chunker: ProgressiveChunker) -> Any:
        factory = self._recorder_factory
        if factory is None:
            from .audio.recorder import AudioRecorder
            factory = AudioRecorder

        return factory(
            chunker,
            vad=VadProcessor(self.config.vad),
            sample_rate=self.config.sample_rate,
            channels=self.config.channels,
            device_index=self.config.device_index,
        )

    async def stop(self) -> TranscriptOutcome:
        """
        Stop capturing and wait for the transcript.

        The chunker's remainder is emitted as the final chunk before the
        end-of-stream marker is queued.

        Raises:
            SessionError: If no recording is active.
        """
        if self._state != SessionState.RECORDING or self._recorder is None:
            raise SessionError("No active recording")

        self._set_state(SessionState.TRANSCRIBING)
        recorder, self._recorder = self._recorder, None

        try:
            total = await asyncio.to_thread(recorder.stop_recording)
        except StreamScribeError as e:
            self._cancel_event.set()
            self._queue.put_nowait(None)
            await self._dispatch_task
            self._handle_error(e)
            raise

        logger.debug(f"Capture stopped after {total} chunk(s)")
        self._queue.put_nowait(None)
        return await self._finish(self._dispatch_task)

    def cancel(self) -> None:
        """
        Abandon outstanding chunks. Safe to call from any thread.

        A recording still has to be stopped with ``stop``, which then
        returns the partial outcome.
        """
        if self._cancel_event is None or self._loop is None:
            return
        logger.info("Cancelling transcription")
        self._loop.call_soon_threadsafe(self._cancel_event.set)

    async def _finish(self, dispatch: asyncio.Task) -> TranscriptOutcome:
        try:
            outcome = await dispatch
        except StreamScribeError as e:
            self._handle_error(e)
            raise
        finally:
            self._reset_run()

        if outcome.is_partial:
            logger.warning(
                f"Partial transcript: {len(outcome.failed)} failed, "
                f"{len(outcome.abandoned)} abandoned of {outcome.total_chunks} chunk(s)"
            )

        if self.on_transcription_ready:
            try:
                self.on_transcription_ready(outcome)
            except Exception as e:
                logger.error(f"Error in on_transcription_ready callback: {e}")

        self._set_state(SessionState.IDLE)
        logger.info(f"Transcription ready: {outcome.text[:50]}...")
        return outcome

    def close(self) -> None:
        """Release the cached local model."""
        self.model_cache.close()

    def _on_partial_callback(self, index: int, text: str) -> None:
        if self.on_partial_text:
            self.on_partial_text(index, text)

    def _on_progress_callback(self, index: int, stage: TranscriptionStage) -> None:
        if self.on_progress:
            self.on_progress(index, stage)

    def _on_chunk_error(self, index: int, error: Exception) -> None:
        logger.warning(f"Chunk {index} will be missing from the transcript: {error}")

    def _on_volume_callback(self, level: float) -> None:
        if self.on_volume_level:
            try:
                self.on_volume_level(level)
            except Exception as e:
                logger.warning(f"Error in on_volume_level callback: {e}")

    def _on_recorder_error(self, error: Exception) -> None:
        # Capture thread: the recorder has stopped accepting audio
        logger.error(f"Capture error: {error}")
        loop = self._loop
        if loop is None or loop.is_closed():
            self._notify_error(error)
            return
        asyncio.run_coroutine_threadsafe(self._abort_recording(error), loop)

    async def _abort_recording(self, error: Exception) -> None:
        """
        End a recording whose capture failed.

        Outstanding chunks are abandoned, the recorder is released and the
        session returns to IDLE with ``on_error`` called. No outcome is
        delivered.
        """
        if self._state != SessionState.RECORDING or self._recorder is None:
            # stop() is already collecting the transcript
            self._notify_error(error)
            return

        self._set_state(SessionState.TRANSCRIBING)
        recorder, self._recorder = self._recorder, None
        self._cancel_event.set()

        try:
            await asyncio.to_thread(recorder.stop_recording)
        except StreamScribeError as e:
            logger.warning(f"Error releasing recorder after capture failure: {e}")

        self._queue.put_nowait(None)
        try:
            await self._dispatch_task
        except StreamScribeError as e:
            logger.warning(f"Dispatch failed while aborting recording: {e}")

        self._handle_error(error)
