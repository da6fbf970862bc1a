#!/usr/bin/env python3
"""
Tests for the logging setup.
"""

from termrelay import logs


class TestLogging:

    def test_disabled_without_file(self, capsys):
        logs.setup_logging(None)
        assert not logs.is_logging_enabled()
        logs.log_message("INFO", "quiet")
        assert capsys.readouterr().out == ""

    def test_errors_always_reach_console(self, capsys):
        logs.log_message("ERROR", "visible problem")
        assert "visible problem" in capsys.readouterr().out

    def test_file_logging_with_caller_location(self, tmp_path):
        log_file = tmp_path / "logs" / "relay.log"
        logs.setup_logging(str(log_file), mode='w', verbosity=1)
        assert logs.is_logging_enabled()
        assert logs.get_log_file() == log_file

        logs.log_message("INFO", "session started")
        logs.log_message("FILTER", "frame filtered")
        logs.log_message("BUFFER", "drained")

        text = log_file.read_text(encoding='utf-8')
        assert "[test_logs.py:" in text
        assert "session started" in text
        assert "[FILTER]" in text
        assert "[BUFFER]" in text

    def test_reset_allows_reconfiguration(self, tmp_path):
        logs.setup_logging(str(tmp_path / "a.log"))
        logs.reset_logging()
        assert not logs.is_logging_enabled()
        logs.setup_logging(str(tmp_path / "b.log"))
        assert logs.get_log_file() == tmp_path / "b.log"
