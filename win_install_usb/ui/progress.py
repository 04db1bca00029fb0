"""Single-line step progress for terminal output.

Each long-running stage owns one status line labelled ``[i/N]``. On an
interactive terminal a background ticker redraws the line with a spinner and
the latest status message; on a pipe or log file the line is printed once
when the stage starts and once when it finishes.

The status message is the only state shared between threads: the primary
thread replaces it while parsing subprocess output, and the ticker reads it
for each frame. Whole-value replacement under a lock is enough; a skipped
intermediate frame is fine.
"""

from __future__ import annotations

import sys
import threading
from dataclasses import dataclass, field
from typing import Optional, TextIO

from win_install_usb.domain.models import TOTAL_STEPS

SPINNER_FRAMES = ("|", "/", "-", "\\")
CLEAR_LINE = "\r\033[2K"


@dataclass
class LiveStatus:
    """Latest status message for the active step."""

    step_index: int = 0
    active: bool = False
    _message: str = ""
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def message(self) -> str:
        with self._lock:
            return self._message

    def set_message(self, message: str) -> None:
        with self._lock:
            self._message = message


def format_step_label(step: int, total_steps: int = TOTAL_STEPS) -> str:
    """Format ``[step/total]``, padding single digits when total has two.

    Example::

         [9/12]
        [10/12]
    """
    label = f"[{step}/{total_steps}]"
    if total_steps >= 10 and step < 10:
        return f" {label}"
    return label


class ProgressReporter:
    """Numbered step status line with start/update/stop transitions."""

    def __init__(
        self,
        total_steps: int = TOTAL_STEPS,
        *,
        stream: Optional[TextIO] = None,
        interactive: Optional[bool] = None,
        interval: float = 0.12,
    ):
        self.total_steps = total_steps
        self.stream = stream or sys.stdout
        if interactive is None:
            isatty = getattr(self.stream, "isatty", None)
            interactive = bool(isatty and isatty())
        self.interactive = interactive
        self.interval = interval
        self.status = LiveStatus()
        self._ticker: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._write_lock = threading.Lock()

    def label(self, step: int) -> str:
        return format_step_label(step, self.total_steps)

    def start(self, step: int, message: str) -> None:
        """Begin a step, replacing any ticker left from a previous one."""
        self._stop_ticker()
        self.status.step_index = step
        self.status.set_message(message)
        self.status.active = True

        if not self.interactive:
            self.println(f"{self.label(step)} {message}")
            return

        self._stop_event = threading.Event()
        self._ticker = threading.Thread(
            target=self._run_ticker,
            args=(step, self._stop_event),
            name=f"progress-step-{step}",
            daemon=True,
        )
        self._ticker.start()

    def update(self, message: str) -> None:
        """Replace the displayed message; safe to call from any thread."""
        self.status.set_message(message)

    def stop_ok(self, step: int, message: str) -> None:
        self._finish(step, message, "done")

    def stop_fail(self, step: int, message: str) -> None:
        self._finish(step, message, "FAILED")

    def stop(self) -> None:
        """Tear down any active ticker without printing a result line."""
        was_active = self._ticker is not None
        self._stop_ticker()
        self.status.active = False
        if was_active:
            self._clear_line()

    def println(self, text: str = "") -> None:
        with self._write_lock:
            self.stream.write(f"{text}\n")
            self.stream.flush()

    def _finish(self, step: int, message: str, result: str) -> None:
        self._stop_ticker()
        self.status.active = False
        self._clear_line()
        self.println(f"{self.label(step)} {message} - {result}")

    def _stop_ticker(self) -> None:
        ticker = self._ticker
        if ticker is None:
            return
        self._stop_event.set()
        if ticker is not threading.current_thread():
            ticker.join()
        self._ticker = None

    def _clear_line(self) -> None:
        if not self.interactive:
            return
        with self._write_lock:
            self.stream.write(CLEAR_LINE)
            self.stream.flush()

    def _run_ticker(self, step: int, stop_event: threading.Event) -> None:
        frame_index = 0
        label = self.label(step)
        while not stop_event.is_set():
            frame = SPINNER_FRAMES[frame_index % len(SPINNER_FRAMES)]
            with self._write_lock:
                self.stream.write(f"{CLEAR_LINE}{label} {frame} {self.status.message}")
                self.stream.flush()
            frame_index += 1
            stop_event.wait(self.interval)
