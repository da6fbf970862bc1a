"""Shared fixtures: a scripted process handle, a recording sink and a controllable clock."""

import time

import pytest

from termrelay.config import RelayConfig, SessionConfig
from termrelay.errors import ErrorKind, OpResult, ProcessUnavailableError
from termrelay.logs import reset_logging
from termrelay.storage import ConfigStore


class FakeProcess:
    """Stands in for PtyProcess: records keystrokes, emits output and exits on command"""

    _next_pid = 1000

    def __init__(self, argv, cwd=None, env=None, cols=120, rows=30, fail_spawn=False, exit_on_interrupt=True):
        self.argv = list(argv)
        self.cwd = cwd
        self.env = dict(env) if env is not None else {}
        self.cols = cols
        self.rows = rows
        self.fail_spawn = fail_spawn
        self.exit_on_interrupt = exit_on_interrupt
        self.writes = []
        self.interrupted = False
        self.killed = False
        self.alive = False
        self.returncode = None
        self._data_callbacks = []
        self._exit_callbacks = []
        FakeProcess._next_pid += 1
        self.pid = FakeProcess._next_pid

    def on_data(self, callback):
        self._data_callbacks.append(callback)

    def on_exit(self, callback):
        self._exit_callbacks.append(callback)

    def spawn(self):
        if self.fail_spawn:
            raise ProcessUnavailableError(f"Command '{self.argv[0]}' not found. Please install it first.")
        self.alive = True
        return self

    def is_alive(self):
        return self.alive

    def emit(self, text):
        for callback in list(self._data_callbacks):
            callback(text)

    def exit(self, code=0):
        if not self.alive:
            return
        self.alive = False
        self.returncode = code
        for callback in list(self._exit_callbacks):
            callback(code)

    def write(self, text):
        if not self.alive:
            return OpResult.failure(ErrorKind.PROCESS_UNAVAILABLE, "process is not running")
        self.writes.append(text)
        return OpResult.success()

    def resize(self, cols, rows):
        self.cols, self.rows = cols, rows
        return OpResult.success()

    def interrupt(self):
        self.interrupted = True
        if not self.alive:
            return OpResult.failure(ErrorKind.SHUTDOWN_SIGNAL, "process is not running")
        if self.exit_on_interrupt:
            self.exit(130)
        return OpResult.success()

    def kill(self, sig=9):
        self.killed = True
        self.exit(-sig)
        return OpResult.success()

    def wait(self, timeout=None):
        return not self.alive


class FakeProcessFactory:
    """Callable process factory that remembers every process it built"""

    def __init__(self):
        self.instances = []
        self.fail_spawn = False
        self.exit_on_interrupt = True

    def __call__(self, argv, cwd=None, env=None, cols=120, rows=30):
        process = FakeProcess(argv, cwd=cwd, env=env, cols=cols, rows=rows,
                              fail_spawn=self.fail_spawn, exit_on_interrupt=self.exit_on_interrupt)
        self.instances.append(process)
        return process

    @property
    def last(self):
        return self.instances[-1]


class RecordingSink:
    """Presentation sink that keeps every edit and send"""

    def __init__(self, fail_sends_after=None, raise_on_edit=False):
        self.edits = []
        self.sends = []
        self.fail_sends_after = fail_sends_after
        self.raise_on_edit = raise_on_edit

    def edit(self, content):
        if self.raise_on_edit:
            raise RuntimeError("edit exploded")
        self.edits.append(content)
        return OpResult.success()

    def send(self, content):
        if self.fail_sends_after is not None and len(self.sends) >= self.fail_sends_after:
            return OpResult.failure(ErrorKind.SINK_DELIVERY, "rejected")
        self.sends.append(content)
        return OpResult.success()


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def wait_for(predicate, timeout=2.0, interval=0.01):
    """Poll predicate until it is true or timeout expires; returns its last value"""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    reset_logging()


@pytest.fixture
def process_factory():
    return FakeProcessFactory()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path):
    return ConfigStore(str(tmp_path / "data"))


@pytest.fixture
def relay_config(tmp_path):
    """Fast timings; the ticker interval is long so tests drive tick() themselves"""
    return RelayConfig(
        data_dir=str(tmp_path / "data"),
        binary="/bin/true",
        tick_interval=3600.0,
        stop_grace_seconds=0.01,
        submit_delay_seconds=0.01,
        session_defaults=SessionConfig(idle_timeout_secs=None),
    )
