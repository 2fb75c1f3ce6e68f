"""
Single-slot cache for an expensive local model.

Loading a Whisper model takes from hundreds of milliseconds to several
seconds, so a loaded model is reused across calls as long as the same path
is requested. The cache is an explicit object owned by the application
context and handed to the local backends.

By default the model is released right after each transcription. Long
running "listen" sessions call ``set_keep_loaded(True)`` to keep it warm;
a kept model is still released after ``idle_unload_secs`` without use.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

from ..exceptions import ConfigurationError, ModelLoadError, ModelNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_IDLE_UNLOAD_SECS = 600.0


class ReadWriteLock:
    """Many concurrent readers or one writer; waiting writers block new readers."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass(frozen=True)
class CachedModel:
    model: Any
    path: str


@dataclass(frozen=True)
class InferenceState:
    """
    Per-call handle on a loaded model.

    It keeps its own reference to the model, so the cache may drop the
    model while this state is still transcribing.
    """

    model: Any
    path: str


class ModelCache:
    """
    Load-or-reuse cache with a single slot.

    Args:
        loader: Loads a model from a path; called under the write lock, so
            concurrent callers never load the same path twice.
        keep_loaded: Keep the model after a transcription completes.
        idle_unload_secs: When keeping the model, release it after this many
            idle seconds. 0 disables the idle timer.

    Example:
        >>> cache = ModelCache(loader=load_whisper_model)
        >>> state = cache.get("/models/faster-whisper-small")
        >>> ...  # transcribe with state.model
        >>> cache.maybe_unload()
    """

    def __init__(
        self,
        loader: Callable[[str], Any],
        keep_loaded: bool = False,
        idle_unload_secs: float = DEFAULT_IDLE_UNLOAD_SECS,
    ) -> None:
        self._loader = loader
        self._keep_loaded = keep_loaded
        self.idle_unload_secs = idle_unload_secs
        self._lock = ReadWriteLock()
        self._cached: Optional[CachedModel] = None
        self._load_count = 0
        self._timer_lock = threading.Lock()
        self._idle_timer: Optional[threading.Timer] = None

    @property
    def keep_loaded(self) -> bool:
        return self._keep_loaded

    @property
    def load_count(self) -> int:
        """Number of disk loads performed so far."""
        return self._load_count

    @property
    def is_loaded(self) -> bool:
        with self._lock.read_locked():
            return self._cached is not None

    @property
    def loaded_path(self) -> Optional[str]:
        with self._lock.read_locked():
            return self._cached.path if self._cached else None

    def get(self, path: str) -> InferenceState:
        """
        Return an inference state for the model at ``path``.

        Reuses the cached model when the path matches exactly; otherwise
        loads it and replaces whatever was cached.

        Raises:
            ConfigurationError: If the path is empty.
            ModelNotFoundError: If the path does not exist.
            ModelLoadError: If the loader fails.
        """
        self._cancel_idle_timer()

        with self._lock.read_locked():
            cached = self._cached
            if cached is not None and cached.path == path:
                return InferenceState(model=cached.model, path=cached.path)

        with self._lock.write_locked():
            # Another thread may have loaded it while we waited
            cached = self._cached
            if cached is not None and cached.path == path:
                return InferenceState(model=cached.model, path=cached.path)

            if not path:
                raise ConfigurationError(
                    "Local model path not configured. Set LOCAL_WHISPER_MODEL_PATH "
                    "or local.model_path in the config file"
                )
            if not Path(path).exists():
                raise ModelNotFoundError(f"Model not found at: {path}")

            if cached is not None:
                logger.info(f"Replacing cached model {cached.path}")

            logger.info(f"Loading model from: {path}")
            try:
                model = self._loader(path)
            except Exception as e:
                raise ModelLoadError(f"Failed to load model from {path}: {e}") from e

            self._load_count += 1
            self._cached = CachedModel(model=model, path=path)
            logger.info("Model loaded successfully")
            return InferenceState(model=model, path=path)

    def unload(self) -> None:
        """Drop the cached model, if any."""
        self._cancel_idle_timer()
        with self._lock.write_locked():
            if self._cached is not None:
                logger.info(f"Unloading model {self._cached.path}")
                self._cached = None

    def set_keep_loaded(self, keep: bool) -> None:
        """
        Toggle the keep-loaded policy.

        Turning it off releases a cached model right away.
        """
        self._keep_loaded = keep
        logger.debug(f"Model cache keep_loaded set to: {keep}")
        if not keep:
            self.unload()

    def maybe_unload(self) -> None:
        """Called after each transcription: unload, or arm the idle timer."""
        if not self._keep_loaded:
            self.unload()
            return
        self._arm_idle_timer()

    def close(self) -> None:
        self.unload()

    def _arm_idle_timer(self) -> None:
        if self.idle_unload_secs <= 0:
            return
        with self._timer_lock:
            if self._idle_timer is not None:
                self._idle_timer.cancel()
            self._idle_timer = threading.Timer(self.idle_unload_secs, self._on_idle)
            self._idle_timer.daemon = True
            self._idle_timer.start()

    def _cancel_idle_timer(self) -> None:
        with self._timer_lock:
            if self._idle_timer is not None:
                self._idle_timer.cancel()
                self._idle_timer = None

    def _on_idle(self) -> None:
        logger.info(f"Model idle for {self.idle_unload_secs:.0f}s, unloading")
        with self._timer_lock:
            self._idle_timer = None
        with self._lock.write_locked():
            self._cached = None
