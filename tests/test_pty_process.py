#!/usr/bin/env python3
"""
Tests for PtyProcess against real short-lived programs.
"""

import shutil
import sys

import pytest

from termrelay.errors import ErrorKind, ProcessUnavailableError
from termrelay.pty_process import PtyProcess, pack_winsize

from conftest import wait_for

pytestmark = pytest.mark.skipif(sys.platform == 'win32', reason="requires a POSIX pseudo-terminal")


def collect(process):
    output = []
    exits = []
    process.on_data(output.append)
    process.on_exit(exits.append)
    return output, exits


class TestPtyProcess:

    def test_pack_winsize(self):
        assert len(pack_winsize(120, 30)) == 8

    def test_output_and_exit_code(self):
        process = PtyProcess(['/bin/sh', '-c', 'echo hello from pty; exit 3'])
        output, exits = collect(process)
        process.spawn()
        assert wait_for(lambda: exits, timeout=5.0)
        assert "hello from pty" in "".join(output)
        assert exits == [3]
        assert not process.is_alive()

    def test_terminal_size_is_applied(self):
        process = PtyProcess(['/bin/sh', '-c', 'echo "$COLUMNS x $LINES"'], cols=77, rows=22)
        output, exits = collect(process)
        process.spawn()
        assert wait_for(lambda: exits, timeout=5.0)
        assert "77 x 22" in "".join(output)

    def test_environment_is_passed(self):
        process = PtyProcess(['/bin/sh', '-c', 'echo "value=$RELAY_MARK"'], env={'RELAY_MARK': 'set', 'PATH': '/bin:/usr/bin'})
        output, exits = collect(process)
        process.spawn()
        assert wait_for(lambda: exits, timeout=5.0)
        assert "value=set" in "".join(output)

    @pytest.mark.skipif(shutil.which('cat') is None, reason="cat not available")
    def test_write_echo_and_interrupt(self):
        process = PtyProcess([shutil.which('cat')])
        output, exits = collect(process)
        process.spawn()

        assert process.write("ping\n").ok
        assert wait_for(lambda: "ping" in "".join(output), timeout=5.0)

        assert process.interrupt().ok
        assert process.wait(5.0)
        assert wait_for(lambda: exits, timeout=5.0)

    def test_kill_process_group(self):
        process = PtyProcess(['/bin/sh', '-c', 'trap "" INT; sleep 30'])
        _, exits = collect(process)
        process.spawn()
        assert process.kill().ok
        assert process.wait(5.0)
        assert wait_for(lambda: exits, timeout=5.0)

    def test_missing_binary(self):
        with pytest.raises(ProcessUnavailableError):
            PtyProcess(['/nonexistent/termrelay-missing-binary']).spawn()

    def test_write_after_exit_fails(self):
        process = PtyProcess(['/bin/sh', '-c', 'exit 0'])
        _, exits = collect(process)
        process.spawn()
        assert wait_for(lambda: exits, timeout=5.0)
        result = process.write("late")
        assert not result.ok
        assert result.kind == ErrorKind.PROCESS_UNAVAILABLE
