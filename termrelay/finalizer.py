"""Idle finalizer - delivers the finished answer once per turn after the process goes quiet."""

from typing import List, Optional, TYPE_CHECKING

from .errors import ErrorKind
from .filters import DEFAULT_CHUNK_LIMIT, split_to_chunks
from .logs import log_message

if TYPE_CHECKING:
    from .comms import PresentationSink

IDLE_FINALIZE_SECONDS = 1.5
MAX_FINAL_CHUNKS = 5


def chunk_final_answer(text: str, limit: int = DEFAULT_CHUNK_LIMIT, max_chunks: int = MAX_FINAL_CHUNKS) -> List[str]:
    """Split text into at most max_chunks pieces of limit characters; the rest is dropped"""
    return split_to_chunks(text, limit)[:max_chunks]


class IdleFinalizer:
    """Tracks the per-turn final-sent flag and performs the single finalize attempt"""

    def __init__(self, idle_seconds: float = IDLE_FINALIZE_SECONDS,
                 chunk_limit: int = DEFAULT_CHUNK_LIMIT, max_chunks: int = MAX_FINAL_CHUNKS):
        self.idle_seconds = idle_seconds
        self.chunk_limit = chunk_limit
        self.max_chunks = max_chunks
        # No turn has started yet, so there is nothing to finalize
        self.final_sent = True

    def begin_turn(self) -> None:
        self.final_sent = False

    def is_due(self, idle_for: float) -> bool:
        return not self.final_sent and idle_for >= self.idle_seconds

    def maybe_finalize(self, transcript: str, idle_for: float, sink: Optional['PresentationSink']) -> int:
        """Send the transcript as the final answer if the turn is idle. Returns the number of chunks delivered."""
        if not self.is_due(idle_for):
            return 0

        full = transcript.strip()
        if not full or sink is None:
            self.final_sent = True
            return 0

        delivered = 0
        chunks = chunk_final_answer(full, self.chunk_limit, self.max_chunks)
        for chunk in chunks:
            try:
                result = sink.send(chunk)
            except Exception as e:
                log_message("ERROR", f"Final delivery raised {type(e).__name__}: {e}")
                break
            if not result.ok:
                log_message("WARNING", f"Final delivery failed ({(result.kind or ErrorKind.SINK_DELIVERY).value}): {result.detail}")
                break
            delivered += 1

        self.final_sent = True
        log_message("INFO", f"Finalized turn: {delivered}/{len(chunks)} chunks delivered from {len(full)} chars")
        return delivered
