import math

import numpy as np
import pytest

from streamscribe.audio.chunker import ChunkerConfig, ProgressiveChunker
from streamscribe.exceptions import AudioError

RATE = 16000


def _run(total_secs: float, chunk_secs: float, overlap_secs: float = 2.0, block_secs: float = 1.0):
    chunks = []
    chunker = ProgressiveChunker(ChunkerConfig(chunk_secs, overlap_secs), on_chunk=chunks.append)
    audio = np.arange(int(total_secs * RATE), dtype=np.float32)
    block = int(block_secs * RATE)
    for start in range(0, len(audio), block):
        chunker.push(audio[start:start + block])
    total = chunker.finish()
    return chunks, total, audio


def test_180_seconds_at_90_second_chunks_gives_two_chunks() -> None:
    chunks, total, _ = _run(180, 90)

    assert total == 2
    assert [c.index for c in chunks] == [0, 1]
    assert len(chunks[0].samples) == 90 * RATE
    assert len(chunks[1].samples) == 92 * RATE


@pytest.mark.parametrize("duration,chunk", [(10, 3), (95, 90), (30, 10), (7.5, 2)])
def test_chunk_count_is_ceiling_of_duration_over_chunk_length(duration, chunk) -> None:
    chunks, total, _ = _run(duration, chunk, overlap_secs=0.5, block_secs=0.25)

    assert total == math.ceil(duration / chunk)
    assert len(chunks) == total


def test_only_first_chunk_lacks_leading_overlap() -> None:
    chunks, _, _ = _run(10, 3, overlap_secs=0.5)

    assert chunks[0].has_leading_overlap is False
    assert chunks[0].overlap_samples == 0
    assert all(c.has_leading_overlap for c in chunks[1:])
    assert all(c.overlap_samples == RATE // 2 for c in chunks[1:])


def test_overlap_repeats_the_previous_chunk_tail() -> None:
    chunks, _, _ = _run(10, 3, overlap_secs=0.5)

    for previous, current in zip(chunks, chunks[1:]):
        head = current.samples[:current.overlap_samples]
        np.testing.assert_array_equal(head, previous.samples[-current.overlap_samples:])


def test_new_audio_is_covered_exactly_once() -> None:
    chunks, _, audio = _run(10, 3, overlap_secs=0.5)

    rebuilt = np.concatenate([c.samples[c.overlap_samples:] for c in chunks])

    np.testing.assert_array_equal(rebuilt, audio)


def test_remainder_is_flushed_on_finish() -> None:
    chunks, total, _ = _run(95, 90)

    assert total == 2
    assert chunks[-1].duration_secs == pytest.approx(7.0)


def test_finish_without_audio_emits_nothing() -> None:
    chunks = []
    chunker = ProgressiveChunker(on_chunk=chunks.append)

    assert chunker.finish() == 0
    assert chunks == []


def test_push_after_finish_is_rejected() -> None:
    chunker = ProgressiveChunker()
    chunker.finish()

    with pytest.raises(AudioError):
        chunker.push(np.zeros(10, dtype=np.float32))


def test_finish_is_idempotent() -> None:
    chunks = []
    chunker = ProgressiveChunker(ChunkerConfig(3, 1), on_chunk=chunks.append)
    chunker.push(np.zeros(5 * RATE, dtype=np.float32))

    assert chunker.finish() == 2
    assert chunker.finish() == 2
    assert len(chunks) == 2
    assert chunker.is_finished


def test_buffered_secs_counts_new_audio_only() -> None:
    chunker = ProgressiveChunker(ChunkerConfig(3, 1))
    chunker.push(np.zeros(4 * RATE, dtype=np.float32))

    assert chunker.chunks_emitted == 1
    assert chunker.buffered_secs == pytest.approx(1.0)


@pytest.mark.parametrize("duration,overlap", [(0, 0), (5, 5), (5, -1)])
def test_invalid_config_is_rejected(duration, overlap) -> None:
    with pytest.raises(ValueError):
        ChunkerConfig(duration, overlap)
