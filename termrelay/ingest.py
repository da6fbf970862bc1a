"""Output ingestor - buffers raw chunks from the child process until the ticker drains them."""

import threading
import time
from typing import Callable, List

from .logs import log_message


class OutputIngestor:
    """Single-consumer buffer of raw terminal output.

    The PTY reader thread calls on_data() for every chunk; the session ticker is the only caller of drain().
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._chunks: List[str] = []
        self._lock = threading.Lock()
        self._last_activity = clock()
        self.total_chars = 0

    def on_data(self, chunk: str) -> None:
        """Append a raw chunk and mark the process as active"""
        with self._lock:
            self._chunks.append(chunk)
            self._last_activity = self._clock()
            self.total_chars += len(chunk)

    def drain(self) -> str:
        """Remove and return everything buffered so far as one string"""
        with self._lock:
            chunks, self._chunks = self._chunks, []
        if chunks:
            log_message("BUFFER", f"Drained {len(chunks)} chunks")
        return ''.join(chunks)

    def has_pending(self) -> bool:
        with self._lock:
            return bool(self._chunks)

    def reset(self) -> None:
        """Discard buffered output (restart or new turn)"""
        with self._lock:
            self._chunks = []

    def touch(self) -> None:
        with self._lock:
            self._last_activity = self._clock()

    @property
    def last_activity(self) -> float:
        with self._lock:
            return self._last_activity

    def idle_for(self) -> float:
        """Seconds since the process last produced output"""
        return self._clock() - self.last_activity
