"""
Chunk dispatch and ordered reassembly.

Remote backends receive chunks concurrently and may finish in any order;
local backends receive them one at a time. Either way, results land in a
`Reassembler` slot keyed by chunk index, and the final transcript is built
in index order only once every index up to the end-of-stream count is
accounted for.

Overlap trimming is word based. For chunk i > 0 whose predecessor
succeeded, the last OVERLAP_WINDOW_WORDS words of the text assembled so far
are compared with the first OVERLAP_WINDOW_WORDS words of chunk i, after
lower-casing and stripping punctuation. The longest k for which the tail's
last k words equal the head's first k words is dropped from chunk i. When
nothing matches, nothing is dropped, so a boundary can still repeat or lose
a word when the two transcriptions disagree.
"""

import asyncio
import logging
import re
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import AsyncIterator, Callable, Optional

import httpx

from ..audio.chunker import AudioChunk
from ..audio.encoder import AudioEncoder, Mp3Encoder
from ..exceptions import SessionError
from .base import DEFAULT_TIMEOUT_SECS, TranscriptionBackend, TranscriptionRequest, TranscriptionStage

logger = logging.getLogger(__name__)

OVERLAP_WINDOW_WORDS = 12

_NON_WORD_RE = re.compile(r"[^\w']+")


def _normalize_word(word: str) -> str:
    return _NON_WORD_RE.sub("", word.lower())


def trim_overlap(previous_text: str, text: str, window_words: int = OVERLAP_WINDOW_WORDS) -> str:
    """
    Drop the leading words of ``text`` that repeat the end of ``previous_text``.

    Example:
        >>> trim_overlap("we went to the park", "the park was closed")
        'was closed'
    """
    new_words = text.split()
    if not new_words:
        return ""

    tail = [_normalize_word(w) for w in previous_text.split()[-window_words:]]
    head = [_normalize_word(w) for w in new_words[:window_words]]

    for k in range(min(len(tail), len(head)), 0, -1):
        if tail[-k:] == head[:k]:
            return " ".join(new_words[k:])
    return " ".join(new_words)


class SlotStatus(Enum):
    DONE = auto()
    FAILED = auto()
    ABANDONED = auto()


@dataclass
class _Slot:
    status: SlotStatus
    text: str = ""
    error: Optional[Exception] = None


@dataclass
class TranscriptOutcome:
    """
    Final result of a session.

    Attributes:
        text: Ordered, overlap-trimmed transcript of the successful chunks.
        total_chunks: Number of chunks the session produced.
        chunk_texts: Raw text per successful chunk index.
        failed: Error per failed chunk index.
        abandoned: Indices dropped because the session was cancelled.
    """

    text: str
    total_chunks: int
    chunk_texts: dict[int, str] = field(default_factory=dict)
    failed: dict[int, Exception] = field(default_factory=dict)
    abandoned: list[int] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return bool(self.failed or self.abandoned)

    @property
    def completed(self) -> list[int]:
        return sorted(self.chunk_texts)


class Reassembler:
    """
    Index-keyed result slots for one session.

    Slots are filled in whatever order chunks resolve. ``close`` records
    the chunk count once the stream has ended; ``finalize`` may only be
    called when every slot below that count is filled.
    """

    def __init__(self, trim: bool = True) -> None:
        self.trim = trim
        self._slots: list[Optional[_Slot]] = []
        self._total: Optional[int] = None

    @property
    def total(self) -> Optional[int]:
        return self._total

    def add_result(self, index: int, text: str) -> None:
        self._fill(index, _Slot(SlotStatus.DONE, text=text))

    def add_failure(self, index: int, error: Exception) -> None:
        self._fill(index, _Slot(SlotStatus.FAILED, error=error))

    def mark_abandoned(self, index: int) -> None:
        self._fill(index, _Slot(SlotStatus.ABANDONED))

    def close(self, total: int) -> None:
        """
        Record the end-of-stream chunk count.

        Raises:
            SessionError: If a result was recorded for an index >= total.
        """
        if len(self._slots) > total:
            raise SessionError(f"Results recorded beyond end of stream ({len(self._slots)} > {total})")
        self._slots.extend([None] * (total - len(self._slots)))
        self._total = total

    @property
    def missing_indices(self) -> list[int]:
        return [i for i, slot in enumerate(self._slots) if slot is None]

    @property
    def is_complete(self) -> bool:
        return self._total is not None and not self.missing_indices

    def finalize(self) -> TranscriptOutcome:
        """
        Build the ordered transcript.

        Raises:
            SessionError: If the stream has not ended or slots are still empty.
        """
        if self._total is None:
            raise SessionError("Cannot finalize before end of stream")
        if not self.is_complete:
            raise SessionError(f"Chunks still pending: {self.missing_indices}")

        outcome = TranscriptOutcome(text="", total_chunks=self._total)
        assembled = ""
        previous_done = False

        for index, slot in enumerate(self._slots):
            if slot.status is SlotStatus.FAILED:
                outcome.failed[index] = slot.error
            elif slot.status is SlotStatus.ABANDONED:
                outcome.abandoned.append(index)
            else:
                outcome.chunk_texts[index] = slot.text
                piece = slot.text.strip()
                if self.trim and previous_done and assembled:
                    piece = trim_overlap(assembled, piece)
                if piece:
                    assembled = f"{assembled} {piece}" if assembled else piece
            previous_done = slot.status is SlotStatus.DONE

        outcome.text = assembled
        return outcome

    def _fill(self, index: int, slot: _Slot) -> None:
        if index < 0:
            raise ValueError(f"Invalid chunk index: {index}")
        if self._total is not None and index >= self._total:
            raise SessionError(f"Chunk {index} is beyond end of stream ({self._total})")
        if index >= len(self._slots):
            self._slots.extend([None] * (index + 1 - len(self._slots)))
        if self._slots[index] is not None:
            raise SessionError(f"Chunk {index} already resolved")
        self._slots[index] = slot


class ChunkDispatcher:
    """
    Routes chunks from a queue to a backend and reassembles the results.

    Chunks arrive on an ``asyncio.Queue``; ``None`` marks end of stream.
    Remote backends get one task per chunk sharing a single
    ``httpx.AsyncClient``; local backends process chunks strictly in
    sequence so only one inference runs at a time.

    Callbacks:
        on_partial: A chunk's text is available; may arrive out of order.
            Signature: (index: int, text: str) -> None
        on_progress: A chunk request reached a new stage.
            Signature: (index: int, stage: TranscriptionStage) -> None
        on_chunk_error: A chunk failed; the session continues.
            Signature: (index: int, error: Exception) -> None
    """

    def __init__(
        self,
        backend: TranscriptionBackend,
        credential: str,
        encoder: Optional[AudioEncoder] = None,
        language: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        trim_overlap: bool = True,
        on_partial: Optional[Callable[[int, str], None]] = None,
        on_progress: Optional[Callable[[int, TranscriptionStage], None]] = None,
    ) -> None:
        self.backend = backend
        self.credential = credential
        self.encoder = encoder or Mp3Encoder()
        self.language = language
        self.trim_overlap = trim_overlap
        self._client = client

        self.on_partial = on_partial
        self.on_progress = on_progress
        self.on_chunk_error: Optional[Callable[[int, Exception], None]] = None

    async def run(
        self,
        chunks: "asyncio.Queue[Optional[AudioChunk]]",
        cancel_event: Optional[asyncio.Event] = None,
    ) -> TranscriptOutcome:
        """
        Consume chunks until end of stream and return the final outcome.

        If ``cancel_event`` is set, in-flight chunks are abandoned and any
        chunk still arriving is marked abandoned without being sent.
        """
        cancel_event = cancel_event or asyncio.Event()
        reassembler = Reassembler(trim=self.trim_overlap)
        tasks: list[asyncio.Task] = []
        total = 0

        async with self._client_scope() as client:
            while True:
                chunk = await chunks.get()
                if chunk is None:
                    break
                if chunk.index != total:
                    raise SessionError(f"Expected chunk {total}, got {chunk.index}")
                total += 1

                if cancel_event.is_set():
                    reassembler.mark_abandoned(chunk.index)
                    continue

                work = self._dispatch(client, chunk, reassembler, cancel_event)
                if self.backend.is_local:
                    await work
                else:
                    tasks.append(asyncio.create_task(work, name=f"chunk-{chunk.index}"))

            if tasks:
                await asyncio.gather(*tasks)

        reassembler.close(total)
        outcome = reassembler.finalize()
        logger.info(
            f"Dispatch finished: {len(outcome.completed)}/{total} chunk(s) transcribed, "
            f"{len(outcome.failed)} failed, {len(outcome.abandoned)} abandoned"
        )
        return outcome

    @asynccontextmanager
    async def _client_scope(self) -> AsyncIterator[Optional[httpx.AsyncClient]]:
        if self._client is not None or self.backend.is_local:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=DEFAULT_TIMEOUT_SECS) as client:
            yield client

    async def _dispatch(
        self,
        client: Optional[httpx.AsyncClient],
        chunk: AudioChunk,
        reassembler: Reassembler,
        cancel_event: asyncio.Event,
    ) -> None:
        work = asyncio.ensure_future(self._transcribe_chunk(client, chunk))
        cancelled = asyncio.ensure_future(cancel_event.wait())
        await asyncio.wait({work, cancelled}, return_when=asyncio.FIRST_COMPLETED)

        if not work.done():
            work.cancel()
            with suppress(asyncio.CancelledError):
                await work
            logger.info(f"Chunk {chunk.index} abandoned")
            reassembler.mark_abandoned(chunk.index)
            return

        cancelled.cancel()
        error = work.exception() if not work.cancelled() else asyncio.CancelledError()
        if error is None:
            text = work.result()
            reassembler.add_result(chunk.index, text)
            self._notify(self.on_partial, chunk.index, text)
            return

        logger.error(f"Chunk {chunk.index} failed: {error}")
        reassembler.add_failure(chunk.index, error)
        self._notify(self.on_chunk_error, chunk.index, error)

    async def _transcribe_chunk(self, client: Optional[httpx.AsyncClient], chunk: AudioChunk) -> str:
        def progress(stage: TranscriptionStage) -> None:
            self._notify(self.on_progress, chunk.index, stage)

        if self.backend.is_local:
            request = TranscriptionRequest.from_samples(chunk.samples, self.language, progress)
        else:
            encoded = await asyncio.to_thread(self.encoder.encode, chunk.samples, f"chunk_{chunk.index:04d}")
            request = TranscriptionRequest.from_encoded(encoded, self.language, progress)

        logger.debug(f"Dispatching chunk {chunk.index} to {self.backend.name}")
        result = await self.backend.transcribe_async(client, self.credential, request)
        return result.text

    def _notify(self, callback: Optional[Callable], index: int, value) -> None:
        if callback is None:
            return
        try:
            callback(index, value)
        except Exception as e:
            logger.warning(f"Error in dispatcher callback for chunk {index}: {e}")
