"""Tests for the shared helpers: command runner, sizes, run log."""

from __future__ import annotations

import io
import logging
import re
import sys

import pytest

from sysutils import LogEntry, RunLog, bytes_to_human, run_command, safe_get


# ── run_command ──────────────────────────────────────────────────────────────


class TestRunCommand:
    def test_success(self) -> None:
        rc, out, err = run_command([sys.executable, "-c", "print('hello')"])
        assert rc == 0
        assert out == "hello"
        assert err == ""

    def test_nonzero_exit_is_returned(self) -> None:
        rc, out, err = run_command([sys.executable, "-c", "import sys; sys.stderr.write('bad'); sys.exit(3)"])
        assert rc == 3
        assert err == "bad"

    def test_timeout(self) -> None:
        rc, _, err = run_command([sys.executable, "-c", "import time; time.sleep(5)"], timeout=1)
        assert rc == 124
        assert "timed out" in err

    def test_missing_command(self) -> None:
        rc, _, err = run_command(["definitely-not-a-real-command-xyz"])
        assert rc == 127
        assert "not found" in err


# ── helpers ──────────────────────────────────────────────────────────────────


class TestHelpers:
    @pytest.mark.parametrize("value,expected", [
        (0, "0.00 B"),
        (1023, "1023.00 B"),
        (1024, "1.00 KB"),
        (5 * 1024 ** 3, "5.00 GB"),
    ])
    def test_bytes_to_human(self, value, expected) -> None:
        assert bytes_to_human(value) == expected

    def test_bytes_to_human_negative(self) -> None:
        with pytest.raises(ValueError):
            bytes_to_human(-1)

    def test_safe_get_returns_default(self) -> None:
        assert safe_get(lambda: 1 / 0, "fallback") == "fallback"
        assert safe_get(lambda: 42) == 42


# ── RunLog ───────────────────────────────────────────────────────────────────


class TestRunLog:
    def test_entry_format(self) -> None:
        from datetime import datetime

        entry = LogEntry(datetime(2024, 3, 1, 9, 5, 7), "hello")
        assert entry.format() == "2024-03-01 09:05:07 - hello"

    def test_log_writes_file_and_echoes(self, tmp_path) -> None:
        stream = io.StringIO()
        log = RunLog(str(tmp_path / "sub" / "run.log"), stream=stream)
        log.clear()
        log.log("first")
        log.log("second")

        content = (tmp_path / "sub" / "run.log").read_text(encoding="utf-8")
        lines = content.splitlines()
        assert len(lines) == 2
        assert re.match(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2} - first$", lines[0])
        assert lines[1].endswith(" - second")
        assert stream.getvalue() == content

    def test_clear_truncates(self, tmp_path) -> None:
        path = tmp_path / "run.log"
        path.write_text("stale line\n", encoding="utf-8")
        log = RunLog(str(path), echo=False)
        log.clear()
        assert path.read_text(encoding="utf-8") == ""
        assert log.entries == []

    def test_unwritable_destination_is_not_fatal(self, tmp_path, caplog) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("", encoding="utf-8")
        log = RunLog(str(blocker / "run.log"), stream=io.StringIO())

        with caplog.at_level(logging.ERROR, logger="sysutils"):
            log.clear()
            log.log("still recorded")
            log.log("and again")

        assert sum("Cannot write log file" in r.message for r in caplog.records) == 1
        assert log.read().endswith(" - and again\n")
        assert len(log.entries) == 2
