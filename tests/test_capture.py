import numpy as np
import pytest
import soundfile as sf

from streamscribe.audio.capture import CaptureSink
from streamscribe.audio.chunker import ChunkerConfig, ProgressiveChunker
from streamscribe.audio.loader import stream_file
from streamscribe.audio.vad import VadConfig, VadProcessor
from streamscribe.exceptions import AudioError, AudioRecordingError

from .conftest import make_tone


def _sink(chunks, sample_rate=16000, channels=1, vad=None):
    chunker = ProgressiveChunker(ChunkerConfig(1.0, 0.25), on_chunk=chunks.append)
    return CaptureSink(chunker, vad=vad, sample_rate=sample_rate, channels=channels)


def test_sink_resamples_and_chunks_native_audio() -> None:
    chunks = []
    sink = _sink(chunks, sample_rate=48000, channels=2)
    block = np.zeros((4800, 2), dtype=np.float32)

    for _ in range(25):
        sink.feed(block)
    total = sink.close()

    assert sink.samples_in == 40000
    assert total == 3
    assert [len(c.samples) for c in chunks] == [16000, 20000, 12000]


def test_sink_drops_silence_when_vad_is_enabled() -> None:
    chunks = []
    sink = _sink(chunks, vad=VadProcessor(VadConfig(enabled=True)))

    sink.feed(np.zeros(16000, dtype=np.float32))
    sink.feed(make_tone(0.48))

    assert sink.close() == 1
    # 160 leading zeros share the first loud frame; the 160-sample tail is flushed
    assert len(chunks[0].samples) == 7840


def test_sink_ignores_empty_blocks() -> None:
    chunks = []
    sink = _sink(chunks)

    assert len(sink.feed(np.zeros((0, 1), dtype=np.float32))) == 0
    assert sink.close() == 0


def test_stream_file_chunks_a_wav_file(tmp_path) -> None:
    path = tmp_path / "speech.wav"
    sf.write(str(path), make_tone(2.5, sample_rate=44100), 44100)
    chunks = []

    total = stream_file(path, lambda rate, channels: _sink(chunks, rate, channels), block_secs=0.3)

    assert total == 3
    assert sum(len(c.samples) - c.overlap_samples for c in chunks) == 40000


def test_stream_file_missing_file(tmp_path) -> None:
    with pytest.raises(AudioError):
        stream_file(tmp_path / "missing.wav", lambda rate, channels: _sink([]))


def test_stream_file_unreadable_file(tmp_path) -> None:
    path = tmp_path / "broken.wav"
    path.write_bytes(b"RIFF not really")

    with pytest.raises(AudioError):
        stream_file(path, lambda rate, channels: _sink([]))


def test_recorder_refuses_to_stop_when_idle() -> None:
    recorder_module = pytest.importorskip("streamscribe.audio.recorder", exc_type=OSError)
    recorder = recorder_module.AudioRecorder(ProgressiveChunker())

    with pytest.raises(AudioRecordingError):
        recorder.stop_recording()


class _FailingSink(CaptureSink):
    """Processes the first block, then fails on every later one."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.fed = 0

    def feed(self, block: np.ndarray) -> np.ndarray:
        self.fed += 1
        if self.fed > 1:
            raise AudioError("resampler exploded")
        return super().feed(block)


def test_recorder_stops_capture_when_processing_fails() -> None:
    recorder_module = pytest.importorskip("streamscribe.audio.recorder", exc_type=OSError)
    chunks = []
    chunker = ProgressiveChunker(ChunkerConfig(chunk_duration_secs=1.0, overlap_secs=0.2), on_chunk=chunks.append)
    recorder = recorder_module.AudioRecorder(chunker)
    errors = []
    recorder.on_error = errors.append

    recorder._sink = _FailingSink(chunker)
    recorder._recording = True
    for _ in range(3):
        recorder._blocks.put(make_tone(0.5).reshape(-1, 1))

    recorder._capture_loop()

    assert len(errors) == 1
    assert isinstance(errors[0], AudioError)
    assert not recorder.is_recording
    assert recorder._blocks.empty()
    # The half second captured before the failure is flushed as the last chunk
    assert len(chunks) == 1
    assert chunks[0].index == 0
    assert chunks[0].duration_secs == pytest.approx(0.5)
    assert recorder._chunk_count == 1

    with pytest.raises(recorder_module.sd.CallbackStop):
        recorder._on_audio_block(make_tone(0.1).reshape(-1, 1), 1600, None, None)
    assert recorder._blocks.empty()
