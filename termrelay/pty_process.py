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

"""PTY-backed process handle - spawns the interactive program and streams its output to callbacks."""

import codecs
import errno
import fcntl
import os
import pty
import select
import signal
import struct
import subprocess
import termios
import threading
from typing import Callable, List, Mapping, Optional

from .errors import ErrorKind, OpResult, ProcessUnavailableError
from .logs import log_message

PTY_READ_SIZE = 16384
READ_POLL_INTERVAL = 0.1
CTRL_C = '\x03'

DataCallback = Callable[[str], None]
ExitCallback = Callable[[Optional[int]], None]


def _become_session_leader():
    """Child-side setup: new session with the PTY slave as controlling terminal, so Ctrl+C reaches it"""
    os.setsid()
    try:
        fcntl.ioctl(0, termios.TIOCSCTTY, 0)
    except OSError:
        pass


def pack_winsize(cols: int, rows: int) -> bytes:
    return struct.pack('HHHH', rows, cols, 0, 0)


class PtyProcess:
    """An interactive program running on a pseudo-terminal.

    Output is decoded as UTF-8 on a reader thread and handed to every on_data callback;
    on_exit callbacks fire once with the exit code after the PTY closes.
    """

    def __init__(self, argv: List[str], cwd: Optional[str] = None, env: Optional[Mapping[str, str]] = None,
                 cols: int = 120, rows: int = 30):
        self.argv = list(argv)
        self.cwd = cwd
        self.env = dict(env) if env is not None else None
        self.cols = cols
        self.rows = rows
        self.proc: Optional[subprocess.Popen] = None
        self.master_fd: Optional[int] = None
        self._data_callbacks: List[DataCallback] = []
        self._exit_callbacks: List[ExitCallback] = []
        self._reader: Optional[threading.Thread] = None
        self._write_lock = threading.Lock()
        self._closed = threading.Event()

    def on_data(self, callback: DataCallback) -> None:
        self._data_callbacks.append(callback)

    def on_exit(self, callback: ExitCallback) -> None:
        self._exit_callbacks.append(callback)

    @property
    def pid(self) -> Optional[int]:
        return self.proc.pid if self.proc else None

    @property
    def returncode(self) -> Optional[int]:
        return self.proc.returncode if self.proc else None

    def spawn(self) -> 'PtyProcess':
        """Open the PTY, start the program and the reader thread"""
        master_fd, slave_fd = pty.openpty()
        try:
            fcntl.ioctl(master_fd, termios.TIOCSWINSZ, pack_winsize(self.cols, self.rows))

            env = dict(self.env if self.env is not None else os.environ)
            env['LINES'] = str(self.rows)
            env['COLUMNS'] = str(self.cols)

            try:
                self.proc = subprocess.Popen(
                    self.argv,
                    stdin=slave_fd,
                    stdout=slave_fd,
                    stderr=slave_fd,
                    cwd=self.cwd,
                    env=env,
                    close_fds=True,
                    preexec_fn=_become_session_leader,
                )
            except FileNotFoundError as e:
                log_message("ERROR", f"Command not found: {self.argv[0]}")
                log_message("ERROR", f"Make sure '{self.argv[0]}' is installed and in your PATH")
                raise ProcessUnavailableError(f"Command '{self.argv[0]}' not found. Please install it first.") from e
            except (OSError, subprocess.SubprocessError) as e:
                log_message("ERROR", f"Failed to spawn {' '.join(self.argv)}: {e}")
                raise ProcessUnavailableError(f"Failed to start '{self.argv[0]}': {e}") from e
        except Exception:
            os.close(master_fd)
            raise
        finally:
            os.close(slave_fd)

        self.master_fd = master_fd
        log_message("INFO", f"Spawned pid {self.proc.pid} on PTY {self.cols}x{self.rows}: {' '.join(self.argv)}")

        self._reader = threading.Thread(target=self._read_loop, name=f"termrelay-pty-{self.proc.pid}", daemon=True)
        self._reader.start()
        return self

    def _read_loop(self):
        decoder = codecs.getincrementaldecoder('utf-8')(errors='replace')
        fd = self.master_fd
        try:
            while True:
                try:
                    ready, _, _ = select.select([fd], [], [], READ_POLL_INTERVAL)
                except (OSError, ValueError):
                    break
                if not ready:
                    if self.proc.poll() is not None and not self._has_pending_output(fd):
                        break
                    continue
                try:
                    data = os.read(fd, PTY_READ_SIZE)
                except OSError as e:
                    # EIO is how Linux reports a PTY whose slave side has gone away
                    if e.errno != errno.EIO:
                        log_message("ERROR", f"PTY read failed: {e}")
                    break
                if not data:
                    break
                text = decoder.decode(data)
                if text:
                    self._emit_data(text)
            tail = decoder.decode(b'', final=True)
            if tail:
                self._emit_data(tail)
        finally:
            self._finish()

    @staticmethod
    def _has_pending_output(fd: int) -> bool:
        try:
            ready, _, _ = select.select([fd], [], [], 0)
            return bool(ready)
        except (OSError, ValueError):
            return False

    def _emit_data(self, text: str):
        for callback in list(self._data_callbacks):
            try:
                callback(text)
            except Exception as e:
                log_message("ERROR", f"Data callback failed: {type(e).__name__}: {e}")

    def _finish(self):
        try:
            returncode = self.proc.wait(timeout=5.0)
        except subprocess.TimeoutExpired:
            returncode = None
        if self.master_fd is not None:
            try:
                os.close(self.master_fd)
            except OSError as e:
                log_message("WARNING", f"Failed to close master_fd: {e}")
            self.master_fd = None
        self._closed.set()
        log_message("INFO", f"Process {self.pid} exited with {returncode}")
        for callback in list(self._exit_callbacks):
            try:
                callback(returncode)
            except Exception as e:
                log_message("ERROR", f"Exit callback failed: {type(e).__name__}: {e}")

    def is_alive(self) -> bool:
        return self.proc is not None and self.proc.poll() is None

    def write(self, text: str) -> OpResult:
        """Write text to the program as if typed"""
        if self.master_fd is None or not self.is_alive():
            return OpResult.failure(ErrorKind.PROCESS_UNAVAILABLE, "process is not running")
        data = text.encode('utf-8')
        try:
            with self._write_lock:
                while data:
                    written = os.write(self.master_fd, data)
                    data = data[written:]
        except OSError as e:
            log_message("ERROR", f"PTY write failed: {e}")
            return OpResult.failure(ErrorKind.PROCESS_UNAVAILABLE, str(e))
        return OpResult.success()

    def resize(self, cols: int, rows: int) -> OpResult:
        self.cols, self.rows = cols, rows
        if self.master_fd is None:
            return OpResult.failure(ErrorKind.PROCESS_UNAVAILABLE, "process is not running")
        try:
            fcntl.ioctl(self.master_fd, termios.TIOCSWINSZ, pack_winsize(cols, rows))
        except OSError as e:
            log_message("ERROR", f"Failed to update PTY size: {e}")
            return OpResult.failure(ErrorKind.PROCESS_UNAVAILABLE, str(e))
        log_message("INFO", f"Set PTY size to {cols}x{rows}")
        return OpResult.success()

    def interrupt(self) -> OpResult:
        """Send Ctrl+C through the terminal"""
        result = self.write(CTRL_C)
        if not result.ok:
            return OpResult.failure(ErrorKind.SHUTDOWN_SIGNAL, result.detail)
        return result

    def kill(self, sig: int = signal.SIGKILL) -> OpResult:
        """Signal the program's process group"""
        if not self.is_alive():
            return OpResult.success("already exited")
        try:
            os.killpg(os.getpgid(self.proc.pid), sig)
        except ProcessLookupError:
            return OpResult.success("already exited")
        except OSError as e:
            log_message("WARNING", f"killpg failed for {self.proc.pid}: {e}; signalling the process directly")
            try:
                self.proc.send_signal(sig)
            except OSError as e2:
                return OpResult.failure(ErrorKind.SHUTDOWN_SIGNAL, str(e2))
        log_message("INFO", f"Sent signal {sig} to pid {self.proc.pid}")
        return OpResult.success()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait for the program to exit; True if it did"""
        if self.proc is None:
            return True
        try:
            self.proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return False
        return True
