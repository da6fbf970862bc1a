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

"""One conversation's interactive program and the pipeline that relays its screen.

    PTY reader -> OutputIngestor -> (tick) filter_frame -> RollingTranscript -> sink.edit
                                                              \\-> IdleFinalizer -> sink.send
"""

import os
import shutil
import threading
import time
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, TYPE_CHECKING

from .config import DEFAULT_BINARY, RelayConfig, SessionConfig
from .errors import ErrorKind, OpResult, ProcessUnavailableError
from .filters import filter_frame
from .finalizer import IdleFinalizer
from .ingest import OutputIngestor
from .logs import log_message
from .pty_process import PtyProcess
from .window import RollingTranscript, StreamTicker

if TYPE_CHECKING:
    from .comms import PresentationSink
    from .storage import ConfigStore

# Keys typed into the program
ENTER = '\r'
CTRL_P = '\x10'  # Prompt enhancer

ProcessFactory = Callable[..., Any]


class SessionState(Enum):
    ABSENT = "absent"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


def resolve_binary(configured: Optional[str] = None, fallback: Optional[str] = None) -> str:
    """Program to run: session config, relay config, local node_modules, then PATH"""
    for candidate in (configured, fallback):
        if candidate and Path(candidate).exists():
            return candidate
    local_bin = Path.cwd() / 'node_modules' / '.bin' / DEFAULT_BINARY
    if local_bin.exists():
        return str(local_bin)
    return shutil.which(DEFAULT_BINARY) or DEFAULT_BINARY


class RelaySession:
    """The interactive program for one conversation plus its relay pipeline"""

    def __init__(self, session_id: str, config: SessionConfig, store: Optional['ConfigStore'] = None,
                 relay_config: Optional[RelayConfig] = None, process_factory: ProcessFactory = PtyProcess,
                 clock: Callable[[], float] = time.time):
        self.session_id = session_id
        self.config = config
        self.store = store
        self.relay_config = relay_config or RelayConfig()
        self._process_factory = process_factory
        self._clock = clock

        rc = self.relay_config
        self.process = None
        self.state = SessionState.ABSENT
        self.ingestor = OutputIngestor(clock=clock)
        self.transcript = RollingTranscript(rc.transcript_max_chars, rc.chunk_limit)
        self.finalizer = IdleFinalizer(rc.idle_finalize_seconds, rc.chunk_limit, rc.max_final_chunks)
        self.enhance_next = False

        self.sink: Optional['PresentationSink'] = None
        self.ticker: Optional[StreamTicker] = None
        self._last_chunk: Optional[str] = None
        self.edits_sent = 0

        self._lock = threading.RLock()
        self._tick_lock = threading.Lock()
        self._stopping = False
        self._submit_timer: Optional[threading.Timer] = None
        self._exit_listeners: List[Callable[['RelaySession', Optional[int]], None]] = []

    def on_unexpected_exit(self, listener: Callable[['RelaySession', Optional[int]], None]) -> None:
        """Register a listener told when the program exits without stop() being called"""
        self._exit_listeners.append(listener)

    # Process lifecycle

    def build_environment(self) -> Mapping[str, str]:
        if self.store is not None:
            return self.store.build_environment(self.session_id)
        return dict(os.environ)

    def build_argv(self) -> List[str]:
        return [resolve_binary(self.config.binary, self.relay_config.binary)] + self.config.build_args()

    def start(self) -> None:
        """Spawn the program if it is not already running"""
        with self._lock:
            if self.process is not None and self.process.is_alive():
                return
            self.state = SessionState.STARTING
            size = self.config.size
            process = self._process_factory(
                self.build_argv(),
                cwd=self.config.root_path or os.getcwd(),
                env=self.build_environment(),
                cols=size['cols'],
                rows=size['rows'],
            )
            process.on_data(self.ingestor.on_data)
            process.on_exit(lambda code, p=process: self._handle_exit(p, code))
            try:
                process.spawn()
            except ProcessUnavailableError:
                self.state = SessionState.ABSENT
                raise
            self.process = process
            self._stopping = False
            self.ingestor.touch()
            self.state = SessionState.RUNNING
            log_message("INFO", f"[{self.session_id}] Session running (pid {process.pid})")

    def _handle_exit(self, process, code: Optional[int]):
        with self._lock:
            if process is not self.process:
                return
            self.process = None
            expected = self._stopping
            if not expected:
                self.state = SessionState.ABSENT
        if expected:
            return
        log_message("WARNING", f"[{self.session_id}] Program exited unexpectedly with {code}")
        self.cancel_streaming()
        for listener in list(self._exit_listeners):
            try:
                listener(self, code)
            except Exception as e:
                log_message("ERROR", f"Exit listener failed: {type(e).__name__}: {e}")

    def stop(self) -> None:
        """Interrupt the program, give it the grace window, then force-kill"""
        with self._lock:
            process = self.process
            self._cancel_submit_timer()
            if process is None:
                self.state = SessionState.ABSENT
                return
            self._stopping = True
            self.state = SessionState.STOPPING

        result = process.interrupt()
        if not result.ok:
            log_message("WARNING", f"[{self.session_id}] Interrupt failed: {result.detail}")
        if not process.wait(self.relay_config.stop_grace_seconds):
            result = process.kill()
            if not result.ok:
                log_message("WARNING", f"[{self.session_id}] Kill failed ({result.kind.value}): {result.detail}")
            else:
                process.wait(self.relay_config.stop_grace_seconds)

        with self._lock:
            if self.process is process:
                self.process = None
            self.state = SessionState.ABSENT
        log_message("INFO", f"[{self.session_id}] Session stopped")

    def restart(self) -> None:
        """Persist configuration, stop and start again; in-flight output is discarded"""
        self.persist()
        self.stop()
        self._reset_pipeline(drop_output=True)
        self.start()

    def persist(self) -> None:
        if self.store is not None:
            self.store.persist(self.session_id, self.config)

    def is_running(self) -> bool:
        return self.process is not None and self.process.is_alive()

    def _require_process(self):
        self.start()
        if self.process is None:
            raise ProcessUnavailableError(f"Session {self.session_id} has no running program")
        return self.process

    # Turns

    def send(self, text: str) -> OpResult:
        """Type text into the program as a new turn and submit it shortly after"""
        with self._lock:
            process = self._require_process()
            self._begin_turn()
            result = process.write(text)
            if not result.ok:
                log_message("ERROR", f"[{self.session_id}] Write failed: {result.detail}")
                return result
            if self.config.enhancer_default or self.enhance_next:
                process.write(CTRL_P)
            self.enhance_next = False
            self._schedule_submit(process)
        log_message("INFO", f"[{self.session_id}] Sent {len(text)} chars")
        return result

    def _clear_pipeline(self, drop_output: bool = False):
        if drop_output:
            self.ingestor.reset()
        self.transcript.reset()
        self._last_chunk = None

    def _reset_pipeline(self, drop_output: bool = False):
        with self._tick_lock:
            self._clear_pipeline(drop_output)

    def _begin_turn(self):
        # A tick must never see the new turn armed with the old activity time
        with self._tick_lock:
            self._clear_pipeline()
            # Typing counts as activity so the turn is not finalized before the program answers
            self.ingestor.touch()
            self.finalizer.begin_turn()

    def _schedule_submit(self, process):
        self._cancel_submit_timer()
        self._submit_timer = threading.Timer(self.relay_config.submit_delay_seconds, process.write, args=(ENTER,))
        self._submit_timer.daemon = True
        self._submit_timer.start()

    def _cancel_submit_timer(self):
        if self._submit_timer is not None:
            self._submit_timer.cancel()
            self._submit_timer = None

    def submit(self) -> OpResult:
        """Press Enter in the program"""
        return self._require_process().write(ENTER)

    def trigger_enhance_now(self) -> None:
        """Run the prompt enhancer on the next send"""
        self.enhance_next = True

    # Configuration changes

    def set_workspace_root(self, path: str) -> None:
        self.config.root_path = path
        self.restart()

    def set_rules(self, path: str) -> None:
        self.config.rules = path
        self.restart()

    def clear_rules(self) -> None:
        self.config.rules = None
        self.restart()

    def set_model(self, name: str) -> None:
        self.config.model = name
        self.restart()

    def set_idle_timeout(self, seconds: int) -> None:
        """Persisted only; the coarse idle timer is armed when a session is created"""
        self.config.idle_timeout_secs = seconds
        self.persist()

    def resize(self, cols: int, rows: int) -> OpResult:
        self.config.cols = cols
        self.config.rows = rows
        result = OpResult.failure(ErrorKind.PROCESS_UNAVAILABLE, "process is not running")
        if self.process is not None:
            result = self.process.resize(cols, rows)
        self.persist()
        return result

    def info(self) -> Dict[str, Any]:
        return {
            'pid': self.process.pid if self.process else None,
            'state': self.state.value,
            'rootPath': self.config.root_path,
            'model': self.config.model,
            'rules': self.config.rules,
            'enhancerDefault': self.config.enhancer_default,
            'idleTimeoutSecs': self.config.idle_timeout_secs,
            'size': self.config.size,
            'lastActivity': self.ingestor.last_activity,
        }

    # Streaming

    def attach_streaming(self, sink: 'PresentationSink') -> StreamTicker:
        """Stream this session's output into sink, replacing any previous stream"""
        with self._lock:
            if self.ticker is not None:
                self.ticker.cancel()
            self.sink = sink
            self.ticker = StreamTicker(
                self.tick,
                interval=self.relay_config.tick_interval,
                max_lifetime=self.relay_config.stream_max_lifetime,
                name=f"termrelay-stream-{self.session_id}",
            ).start()
            log_message("INFO", f"[{self.session_id}] Streaming attached")
            return self.ticker

    def cancel_streaming(self) -> None:
        with self._lock:
            if self.ticker is not None:
                self.ticker.cancel()
                self.ticker = None

    def tick(self) -> bool:
        """One pass of the relay pipeline. Returns False when another tick body was already running."""
        if not self._tick_lock.acquire(blocking=False):
            log_message("DEBUG", f"[{self.session_id}] Tick dropped, previous tick still running")
            return False
        try:
            sink = self.sink
            if self.ingestor.has_pending():
                self._push_window(sink)
            # Quiet ticks only close a turn that has produced something
            if self.transcript.text.strip():
                self.finalizer.maybe_finalize(self.transcript.text, self.ingestor.idle_for(), sink)
            return True
        finally:
            self._tick_lock.release()

    def _push_window(self, sink: Optional['PresentationSink']) -> None:
        cleaned = filter_frame(self.ingestor.drain())
        if not cleaned.strip():
            return
        # A redraw of the frame we just merged carries nothing new
        if cleaned == self._last_chunk:
            return
        self._last_chunk = cleaned

        window = self.transcript.merge(cleaned)
        if window is None or sink is None:
            return
        try:
            result = sink.edit(window)
        except Exception as e:
            log_message("ERROR", f"[{self.session_id}] Sink edit raised {type(e).__name__}: {e}")
            return
        if result.ok:
            self.edits_sent += 1
        else:
            log_message("WARNING", f"[{self.session_id}] Sink edit failed: {result.detail}")
