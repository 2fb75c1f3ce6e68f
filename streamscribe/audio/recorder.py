"""
Live microphone capture for streamscribe.

PortAudio delivers raw blocks on its own callback thread; a dedicated
capture thread drains them, converts them to 16kHz mono, applies the VAD
gate and feeds the progressive chunker. That capture thread is the only
code that ever mutates the chunker.
"""

import logging
import queue
import threading
import time
from typing import Callable, Optional

import numpy as np
import sounddevice as sd

from ..exceptions import AudioRecordingError, NoAudioDeviceError
from .capture import CaptureSink
from .chunker import ProgressiveChunker
from .vad import VadProcessor

logger = logging.getLogger(__name__)


class AudioRecorder:
    """
    Streaming microphone recorder.

    Unlike a buffer-then-save recorder, samples flow into the chunker while
    recording, so chunks are emitted (and can be transcribed) long before
    the user stops.

    Callbacks:
        on_volume_change: Called from the capture thread with a 0.0 - 1.0 level.
            Signature: (level: float) -> None
        on_error: Called from the capture thread if processing fails. Capture
            has already stopped; call stop_recording to release the stream.
            Signature: (error: Exception) -> None
    """

    BLOCK_DURATION_SECS = 0.1

    def __init__(
        self,
        chunker: ProgressiveChunker,
        vad: Optional[VadProcessor] = None,
        sample_rate: Optional[int] = None,
        channels: int = 1,
        device_index: Optional[int] = None,
    ) -> None:
        self._requested_sample_rate = sample_rate
        self.channels = channels
        self.device_index = device_index
        self.sample_rate = 44100  # Will be updated when recording starts

        self._chunker = chunker
        self._vad = vad
        self._sink: Optional[CaptureSink] = None
        self._blocks: "queue.Queue[np.ndarray]" = queue.Queue()
        self._stream: Optional[sd.InputStream] = None
        self._capture_thread: Optional[threading.Thread] = None
        self._stop_capture = threading.Event()
        self._recording = False
        self._start_time: Optional[float] = None
        self._chunk_count = 0

        self.on_volume_change: Optional[Callable[[float], None]] = None
        self.on_error: Optional[Callable[[Exception], None]] = None

    @property
    def is_recording(self) -> bool:
        return self._recording

    @property
    def elapsed_secs(self) -> float:
        if self._start_time is None:
            return 0.0
        return time.time() - self._start_time

    def start_recording(self) -> None:
        """
        Open the input stream and start the capture thread.

        Raises:
            NoAudioDeviceError: If no input device is available.
            AudioRecordingError: If recording is already active or the stream fails.
        """
        if self._recording:
            raise AudioRecordingError("Recording already active")

        self._check_input_device()

        try:
            self.sample_rate = self._get_compatible_sample_rate()
            self._sink = CaptureSink(self._chunker, self._vad, self.sample_rate, self.channels)
            self._blocks = queue.Queue()
            self._stop_capture.clear()

            self._stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                device=self.device_index,
                dtype="float32",
                blocksize=int(self.sample_rate * self.BLOCK_DURATION_SECS),
                callback=self._on_audio_block,
            )

            self._capture_thread = threading.Thread(
                target=self._capture_loop,
                daemon=True,
                name="AudioCapture",
            )
            self._recording = True
            self._start_time = time.time()
            self._capture_thread.start()
            self._stream.start()

            logger.info(f"Started recording (device={self.device_index}, rate={self.sample_rate}Hz)")

        except sd.PortAudioError as e:
            self._abort()
            raise AudioRecordingError(f"Recording failed: {e}") from e

    def _check_input_device(self) -> None:
        try:
            sd.query_devices(self.device_index, "input")
        except (sd.PortAudioError, ValueError) as e:
            raise NoAudioDeviceError(f"No audio input device available: {e}") from e

    def _get_compatible_sample_rate(self) -> int:
        """Get a compatible sample rate for the device."""
        try:
            device_info = sd.query_devices(self.device_index, "input")
            default_rate = int(device_info["default_samplerate"])

            if self._requested_sample_rate is None:
                return default_rate

            try:
                sd.check_input_settings(device=self.device_index, samplerate=self._requested_sample_rate)
                return self._requested_sample_rate
            except sd.PortAudioError:
                logger.warning(f"Sample rate {self._requested_sample_rate}Hz not supported, using {default_rate}Hz")
                return default_rate
        except sd.PortAudioError as e:
            logger.warning(f"Could not query device: {e}")
            return 44100

    def _on_audio_block(self, indata: np.ndarray, frames: int, time_info, status) -> None:
        # PortAudio thread: copy and hand off, nothing else
        if not self._recording:
            raise sd.CallbackStop
        if status:
            logger.debug(f"Input stream status: {status}")
        self._blocks.put(indata.copy())

    def _capture_loop(self) -> None:
        """Drain captured blocks into the sink until stopped and drained."""
        sink = self._sink
        while not (self._stop_capture.is_set() and self._blocks.empty()):
            try:
                block = self._blocks.get(timeout=0.05)
            except queue.Empty:
                continue

            try:
                mono = sink.feed(block)
            except Exception as e:
                self._fail_capture(sink, e)
                return

            if self.on_volume_change and len(mono):
                rms = float(np.sqrt(np.mean(mono ** 2)))
                try:
                    self.on_volume_change(min(1.0, rms * 10))
                except Exception as e:
                    logger.warning(f"Error in volume change callback: {e}")

        self._chunk_count = sink.close()

    def _fail_capture(self, sink: CaptureSink, error: Exception) -> None:
        """
        Stop accepting audio after a processing failure.

        The stream callback stops the stream on its next block, pending
        blocks are dropped and whatever the chunker already holds is
        flushed as the final chunk.
        """
        logger.error(f"Capture processing failed: {error}")
        self._recording = False
        self._stop_capture.set()

        dropped = 0
        while True:
            try:
                self._blocks.get_nowait()
            except queue.Empty:
                break
            dropped += 1
        if dropped:
            logger.debug(f"Dropped {dropped} pending block(s)")

        try:
            self._chunk_count = sink.close()
        except Exception as close_error:
            logger.warning(f"Could not flush chunker after capture failure: {close_error}")

        if self.on_error:
            try:
                self.on_error(error)
            except Exception as callback_error:
                logger.warning(f"Error in on_error callback: {callback_error}")

    def stop_recording(self) -> int:
        """
        Stop capture and flush the chunker.

        Any under-threshold remainder is emitted as a final chunk before
        this method returns.

        Returns:
            Total number of chunks emitted for the recording.
        """
        if not self._recording and self._capture_thread is None:
            raise AudioRecordingError("No active recording")

        duration = self.elapsed_secs
        self._recording = False

        if self._stream is not None:
            try:
                self._stream.stop()
                self._stream.close()
            except sd.PortAudioError as e:
                logger.warning(f"Error closing input stream: {e}")
            self._stream = None

        self._stop_capture.set()
        if self._capture_thread is not None:
            self._capture_thread.join()
            self._capture_thread = None

        if self._sink is not None:
            logger.info(
                f"Captured {duration:.2f}s ({self._sink.samples_in / 16000:.2f}s at 16kHz), "
                f"{self._chunk_count} chunk(s)"
            )
        self._sink = None
        return self._chunk_count

    def _abort(self) -> None:
        self._recording = False
        self._stop_capture.set()
        if self._stream is not None:
            try:
                self._stream.close()
            except sd.PortAudioError as e:
                logger.debug(f"Error closing input stream after failure: {e}")
            self._stream = None
        if self._capture_thread is not None and self._capture_thread.is_alive():
            self._capture_thread.join(timeout=1.0)
        self._capture_thread = None

    def set_device(self, device_index: Optional[int]) -> None:
        if self._recording:
            raise AudioRecordingError("Cannot change device while recording")
        self.device_index = device_index
