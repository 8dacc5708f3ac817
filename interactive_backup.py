#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Interactive Backup
==================
Archives user-chosen directories into a timestamped tar.gz bundle.

License: MIT
Python: 3.8+

Features:
- Prompts for directories one by one, with path tab-completion
- Expands ~ and environment variables in every path
- Creates the destination directory when missing
- Shows a spinner while the archive is written
- Logs every action to a timestamped log file
"""

from __future__ import annotations
import argparse
import glob
import logging
import os
import sys
import tarfile
import threading
import time
from datetime import datetime
from typing import Any, Callable, List, Optional, TextIO

from sysutils import RunLog, bytes_to_human, setup_logging

try:
    import readline
except ImportError:  # Windows
    readline = None

# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_LOG_PATH = "/var/log/interactive_backup.log"
ARCHIVE_PREFIX = "backup_"
SPINNER_FRAMES = "|/-\\"
SPINNER_DELAY = 0.1

BANNER = "\n".join([
    "=" * 65,
    "=" * 65,
    "      WELCOME TO THE INTERACTIVE BACKUP SCRIPT",
    "=" * 65,
    "=" * 65,
])

logger = logging.getLogger(__name__)


class BackupError(Exception):
    """Raised when the destination or archive cannot be created."""

# =============================================================================
# UTILITIES
# =============================================================================

def expand_path(path: str) -> str:
    """Expand ~ and $VARS in a user-supplied path."""
    return os.path.expandvars(os.path.expanduser(path.strip()))


def archive_name(now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return f"{ARCHIVE_PREFIX}{now.strftime('%Y-%m-%d_%H%M%S')}.tar.gz"


def _complete_path(text: str, state: int) -> Optional[str]:
    matches = sorted(glob.glob(expand_path(text) + "*"))
    matches = [m + os.sep if os.path.isdir(m) else m for m in matches]
    return matches[state] if state < len(matches) else None


def enable_path_completion() -> None:
    if readline is None:
        return
    readline.set_completer_delims(" \t\n;")
    readline.set_completer(_complete_path)
    readline.parse_and_bind("tab: complete")


def run_with_spinner(func: Callable[..., Any], *args: Any,
                     stream: Optional[TextIO] = None, delay: float = SPINNER_DELAY) -> Any:
    """Run func in a worker thread while a spinner animates on the console.

    Exceptions raised by func are re-raised in the caller's thread.
    """
    out = stream if stream is not None else sys.stdout
    outcome = {}

    def worker():
        try:
            outcome["result"] = func(*args)
        except BaseException as e:
            outcome["error"] = e

    thread = threading.Thread(target=worker, name="backup-worker", daemon=True)
    thread.start()
    i = 0
    while thread.is_alive():
        out.write(f" [{SPINNER_FRAMES[i % len(SPINNER_FRAMES)]}]  ")
        out.flush()
        time.sleep(delay)
        out.write("\b" * 6)
        i += 1
    thread.join()
    out.write("      " + "\b" * 6)
    out.flush()

    if "error" in outcome:
        raise outcome["error"]
    return outcome.get("result")

# =============================================================================
# PROMPTS
# =============================================================================

def prompt_directories(input_func: Callable[[str], str] = input,
                       stream: Optional[TextIO] = None) -> List[str]:
    """Ask for directories until a blank line; invalid entries are re-prompted."""
    out = stream if stream is not None else sys.stdout
    print("Please enter directories to include in the backup, one by one.", file=out)
    print("Use TAB to auto-complete directory names.", file=out)
    print("Leave the input blank (press [Enter]) when finished.", file=out)

    directories = []
    while True:
        raw = input_func("Directory path (press [Enter] if done): ")
        if not raw.strip():
            break
        path = expand_path(raw)
        if not os.path.isdir(path):
            print(f"ERROR: '{path}' is not a valid directory. Please try again.", file=out)
            continue
        if path in directories:
            print(f"Already added: {path}", file=out)
            continue
        directories.append(path)
        print(f"Added: {path}", file=out)
    return directories


def prompt_destination(input_func: Callable[[str], str] = input,
                       stream: Optional[TextIO] = None) -> str:
    out = stream if stream is not None else sys.stdout
    print("", file=out)
    print("Now, please specify the directory where you'd like to place the backup.", file=out)
    return expand_path(input_func("Backup destination (e.g., /home/user/backups): "))

# =============================================================================
# BACKUP
# =============================================================================

def ensure_destination(destination: str, run_log: RunLog) -> None:
    """Create the destination directory if it does not exist."""
    if os.path.isdir(destination):
        return
    try:
        os.makedirs(destination, exist_ok=True)
    except OSError as e:
        run_log.log(f"ERROR: Failed to create backup destination: {destination}")
        raise BackupError(str(e)) from e
    run_log.log(f"Created backup destination directory: {destination}")


def write_archive(archive_path: str, directories: List[str]) -> str:
    """Write a gzip-compressed tar of the given directories."""
    try:
        with tarfile.open(archive_path, "w:gz") as tar:
            for directory in directories:
                tar.add(directory, arcname=os.path.abspath(directory).lstrip(os.sep))
    except (OSError, tarfile.TarError) as e:
        if os.path.exists(archive_path):
            os.remove(archive_path)
        raise BackupError(str(e)) from e
    return archive_path


def create_backup_archive(directories: List[str], destination: str, run_log: RunLog,
                          now: Optional[datetime] = None,
                          stream: Optional[TextIO] = None) -> str:
    """Archive directories into destination, logging progress and final size."""
    archive_path = os.path.join(destination, archive_name(now))
    run_log.log(f"Starting backup of directories: {' '.join(directories)}")
    run_log.log(f"Creating archive at: {archive_path}")

    try:
        run_with_spinner(write_archive, archive_path, directories, stream=stream)
    except BackupError as e:
        logger.error(f"tar failed: {e}")
        run_log.log("ERROR: Failed to create backup archive.")
        raise

    run_log.log("Backup archive successfully created.")
    run_log.log(f"Backup archive size: {bytes_to_human(os.path.getsize(archive_path))}")
    return archive_path

# =============================================================================
# MAIN CLI
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="interactive-backup",
        description="Archive directories into a timestamped tar.gz bundle.",
    )
    parser.add_argument("directories", nargs="*", help="Directories to back up (prompted when omitted)")
    parser.add_argument("--dest", help="Backup destination directory (prompted when omitted)")
    parser.add_argument("--log-file", default=DEFAULT_LOG_PATH)
    parser.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")
    parser.add_argument("--verbose", "-v", action="store_true")
    return parser


def main(argv: Optional[List[str]] = None, input_func: Callable[[str], str] = input) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    run_log = RunLog(args.log_file)

    print(BANNER)
    if args.directories:
        directories = []
        for raw in args.directories:
            path = expand_path(raw)
            if not os.path.isdir(path):
                print(f"ERROR: '{path}' is not a valid directory.")
                return 1
            directories.append(path)
    else:
        enable_path_completion()
        directories = prompt_directories(input_func)

    if not directories:
        print("No directories were provided. Exiting...")
        return 1

    destination = expand_path(args.dest) if args.dest else prompt_destination(input_func)
    if not destination:
        print("No backup destination entered. Exiting...")
        return 1

    try:
        ensure_destination(destination, run_log)
    except BackupError:
        return 1

    print("")
    print("You have specified the following directories for backup:")
    for directory in directories:
        print(f"  * {directory}")
    print("")
    print(f"Backup archive will be created in: {destination}")
    if not args.yes:
        input_func("Press [Enter] to start the backup or Ctrl+C to cancel...")

    try:
        create_backup_archive(directories, destination, run_log)
    except BackupError:
        return 1

    print("")
    run_log.log("Backup script completed successfully.")
    print(f"Backup process finished. Check {args.log_file} for details.")
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except (KeyboardInterrupt, EOFError):
        print("\n\n[!] Interrupted by user. Exiting...")
        sys.exit(130)
    except Exception as e:
        logger.critical(f"[FATAL ERROR] {e}")
        import traceback
        traceback.print_exc(file=sys.stderr)
        sys.exit(1)
