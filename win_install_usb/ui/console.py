"""Operator-facing output on the error stream."""

from __future__ import annotations

import sys
from collections import deque
from pathlib import Path
from typing import Optional, TextIO


def print_error(message: str, stream: Optional[TextIO] = None) -> None:
    """Print each line of ``message`` prefixed with ``Error:``."""
    stream = stream or sys.stderr
    for line in str(message).splitlines() or [""]:
        stream.write(f"Error: {line}\n")
    stream.flush()


def read_log_tail(log_path: Path, lines: int) -> list[str]:
    """Return the last ``lines`` lines of a log, tolerating binary chatter."""
    try:
        with open(log_path, "r", encoding="utf-8", errors="replace", newline="") as handle:
            text = handle.read()
    except OSError:
        return []
    # Progress tools overwrite lines with carriage returns.
    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    return list(deque(normalized.splitlines(), maxlen=lines))


def print_log_tail(log_path: Path, lines: int, stream: Optional[TextIO] = None) -> None:
    stream = stream or sys.stderr
    for line in read_log_tail(log_path, lines):
        stream.write(f"{line}\n")
    stream.flush()
