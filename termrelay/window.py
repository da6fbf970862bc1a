#!/usr/bin/env python3

# termrelay - Chat relay for long-lived interactive terminal programs
# Copyright (C) 2025 Robert Macrae
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""Rolling window engine - bounded transcript, display window and the periodic stream ticker."""

import threading
import time
from typing import Callable, Optional

from .filters import DEFAULT_CHUNK_LIMIT
from .logs import log_message

TRANSCRIPT_MAX_CHARS = 12000
TICK_INTERVAL = 1.0  # seconds
STREAM_MAX_LIFETIME = 14 * 60  # seconds


class RollingTranscript:
    """Most-recent-wins transcript plus the last window pushed to the sink"""

    def __init__(self, max_chars: int = TRANSCRIPT_MAX_CHARS, window_chars: int = DEFAULT_CHUNK_LIMIT):
        self.max_chars = max_chars
        self.window_chars = window_chars
        self.text = ""
        self.snapshot: Optional[str] = None

    def append(self, chunk: str) -> str:
        """Append a cleaned chunk on a new line, keeping only the trailing max_chars"""
        self.text = f"{self.text}\n{chunk}" if self.text else chunk
        if len(self.text) > self.max_chars:
            self.text = self.text[-self.max_chars:]
        return self.text

    def window(self) -> str:
        """Trailing slice of the transcript that fits in one message"""
        return self.text[-self.window_chars:] if len(self.text) > self.window_chars else self.text

    def merge(self, chunk: str) -> Optional[str]:
        """Append chunk and return the new window, or None when the window did not change"""
        self.append(chunk)
        window = self.window()
        if window == self.snapshot:
            return None
        self.snapshot = window
        return window

    def reset(self) -> None:
        self.text = ""
        self.snapshot = None

    def __len__(self):
        return len(self.text)


class StreamTicker:
    """Calls a tick function every interval seconds on a daemon thread.

    The ticker cancels itself once max_lifetime has elapsed (None runs until cancelled).
    A cancelled ticker never fires again, but a tick body already running when cancel()
    is called is left to finish.
    """

    def __init__(self, tick: Callable[[], None], interval: float = TICK_INTERVAL,
                 max_lifetime: Optional[float] = STREAM_MAX_LIFETIME, name: str = "termrelay-ticker",
                 clock: Callable[[], float] = time.monotonic):
        self._tick = tick
        self.interval = interval
        self.max_lifetime = max_lifetime
        self._clock = clock
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._started_at: Optional[float] = None

    def start(self) -> 'StreamTicker':
        self._started_at = self._clock()
        self._thread.start()
        return self

    def cancel(self) -> None:
        self._stop_event.set()

    @property
    def cancelled(self) -> bool:
        return self._stop_event.is_set()

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def _expired(self) -> bool:
        if self.max_lifetime is None or self._started_at is None:
            return False
        return self._clock() - self._started_at >= self.max_lifetime

    def _run(self):
        while not self._stop_event.wait(self.interval):
            if self._expired():
                log_message("INFO", f"Stream ticker {self._thread.name} reached its {self.max_lifetime:.0f}s lifetime")
                self._stop_event.set()
                break
            try:
                self._tick()
            except Exception as e:
                log_message("ERROR", f"Stream tick failed: {type(e).__name__}: {e}")
