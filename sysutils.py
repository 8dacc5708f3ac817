#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Shared helpers for the sys-health-tools scripts
===============================================
Command execution, human-readable sizes and the timestamped run log used by
both the health check and the interactive backup tool.

License: MIT
Python: 3.8+
"""

from __future__ import annotations
import logging
import os
import subprocess
import sys
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, List, Optional, TextIO, Tuple

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_TIMEOUT = 30

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure diagnostic logging on stderr."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="[%(levelname)s] %(message)s",
        stream=sys.stderr,
    )

# =============================================================================
# UTILITIES
# =============================================================================

def run_command(cmd: List[str], timeout: int = DEFAULT_TIMEOUT) -> Tuple[int, str, str]:
    """Execute a command safely and return (returncode, stdout, stderr)."""
    logger.debug(f"Running: {' '.join(cmd)}")
    try:
        proc = subprocess.run(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            timeout=timeout,
            text=True,
            check=True  # Raise on non-zero exit
        )
        return proc.returncode, proc.stdout.strip(), proc.stderr.strip()
    except subprocess.CalledProcessError as e:
        return e.returncode, (e.stdout or "").strip(), (e.stderr or "").strip()
    except subprocess.TimeoutExpired:
        logger.warning(f"Command timed out after {timeout}s: {cmd[0]}")
        return 124, "", f"Command timed out after {timeout}s"
    except FileNotFoundError:
        return 127, "", f"Command not found: {cmd[0]}"
    except OSError as e:
        return 1, "", str(e)


def bytes_to_human(bytes_val: float) -> str:
    """Convert bytes to human-readable format."""
    if bytes_val < 0:
        raise ValueError("Bytes value cannot be negative.")
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_val < 1024.0:
            return f"{bytes_val:.2f} {unit}"
        bytes_val /= 1024.0
    return f"{bytes_val:.2f} PB"


def safe_get(func: Callable[[], Any], default: Any = None) -> Any:
    """Safely execute a function and return default on error."""
    try:
        return func()
    except Exception as e:
        logger.debug(f"Safe_get error: {e}")
        return default

# =============================================================================
# RUN LOG
# =============================================================================

@dataclass(frozen=True)
class LogEntry:
    """One timestamped line of the run log."""

    timestamp: datetime
    message: str

    def format(self) -> str:
        return f"{self.timestamp.strftime(TIMESTAMP_FORMAT)} - {self.message}"


@dataclass
class RunLog:
    """Timestamped log echoed to the console and appended to a file.

    Writes are best effort: a destination that cannot be written is reported
    on stderr through the diagnostic logger and the caller carries on with
    console-only output.
    """

    path: str
    echo: bool = True
    stream: Optional[TextIO] = None
    entries: List[LogEntry] = field(default_factory=list)
    _write_failed: bool = field(default=False, repr=False)

    def _out(self) -> TextIO:
        return self.stream if self.stream is not None else sys.stdout

    def _ensure_parent(self) -> None:
        parent = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(parent, exist_ok=True)

    def clear(self) -> None:
        """Truncate the log destination before a run."""
        self.entries.clear()
        self._write_failed = False
        try:
            self._ensure_parent()
            with open(self.path, "w", encoding="utf-8"):
                pass
        except OSError as e:
            self._report_failure(e)

    def log(self, message: str) -> LogEntry:
        entry = LogEntry(datetime.now(), message)
        self.entries.append(entry)
        line = entry.format()
        if self.echo:
            print(line, file=self._out(), flush=True)
        try:
            self._ensure_parent()
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as e:
            self._report_failure(e)
        return entry

    def read(self) -> str:
        """Return the log contents, falling back to the in-memory entries."""
        if not self._write_failed:
            try:
                with open(self.path, "r", encoding="utf-8") as f:
                    return f.read()
            except OSError as e:
                logger.warning(f"Cannot read log file {self.path}: {e}")
        return "".join(entry.format() + "\n" for entry in self.entries)

    def _report_failure(self, error: OSError) -> None:
        # Only the first failure is reported; later writes still retry.
        if not self._write_failed:
            logger.error(f"Cannot write log file {self.path}: {error}")
        self._write_failed = True
