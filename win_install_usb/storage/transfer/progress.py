"""Progress parsing for rsync and wimlib-imagex output.

Both tools redraw their progress in place with carriage returns, so a raw
output chunk can carry several updates and no newline at all. Chunks are
first cut into lines on ``\\r`` as well as ``\\n`` by ``LineNormalizer``;
each line is then handed to a parser that returns a status message when the
line carries enough information to show.
"""

from __future__ import annotations

import codecs
import re
from typing import List, Optional

from win_install_usb.domain.models import ProgressSample

XFR_PATTERN = re.compile(r"xfr#(\d+)")
TO_CHECK_PATTERN = re.compile(r"to-check=\d+/(\d+)")
PERCENT_PATTERN = re.compile(r"(\d+)%")
THROUGHPUT_PATTERN = re.compile(r"([0-9.]+[kKMGT]B/s)")
SPLIT_PERCENT_PATTERN = re.compile(r"(\d{1,3})%")

LINE_BREAK_PATTERN = re.compile(r"\r\n|\r|\n")


class LineNormalizer:
    """Split a byte stream into text lines on CR, LF or CRLF.

    Empty lines are dropped, which also absorbs a CRLF pair split across two
    reads.
    """

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._pending = ""

    def feed(self, chunk: bytes) -> List[str]:
        """Add a chunk and return every line it completes."""
        self._pending += self._decoder.decode(chunk)
        parts = LINE_BREAK_PATTERN.split(self._pending)
        self._pending = parts.pop()
        return [line for line in parts if line]

    def flush(self) -> List[str]:
        """Return whatever is left after the stream closed."""
        remaining = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        return [line for line in LINE_BREAK_PATTERN.split(remaining) if line]


class RsyncProgressParser:
    """Track ``rsync --info=progress2`` fields across lines.

    Example line::

        1,234,567  42%   12.34MB/s    0:00:10 (xfr#12, to-check=88/150)
    """

    def __init__(self, label: str):
        self.label = label
        self.sample = ProgressSample()

    def parse_line(self, line: str) -> Optional[str]:
        xfr = XFR_PATTERN.search(line)
        to_check = TO_CHECK_PATTERN.search(line)
        percent = PERCENT_PATTERN.search(line)
        throughput = THROUGHPUT_PATTERN.search(line)

        if xfr:
            self.sample.files_done = xfr.group(1)
        if to_check:
            self.sample.files_total = to_check.group(1)
        if percent:
            self.sample.percent = f"{percent.group(1)}%"
        if throughput:
            self.sample.throughput = throughput.group(1)

        if xfr and to_check:
            return self.format_status()
        return None

    def format_status(self) -> str:
        sample = self.sample
        return (
            f"{self.label} - file {sample.files_done}/{sample.files_total} - "
            f"{sample.throughput} - {sample.percent}"
        )


class SplitProgressParser:
    """Track the percentage printed by ``wimlib-imagex split``."""

    def __init__(self, label: str):
        self.label = label
        self.percent: Optional[int] = None

    def parse_line(self, line: str) -> Optional[str]:
        match = SPLIT_PERCENT_PATTERN.search(line)
        if not match:
            return None
        self.percent = int(match.group(1))
        return f"{self.label} - {self.percent}%"
