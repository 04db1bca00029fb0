"""Cleanup that runs exactly once on every exit path.

The guard is invoked from ``main()``'s ``finally`` block and registered with
``atexit`` as a backstop. SIGTERM is turned into ``SystemExit(143)`` so the
same ``finally`` path runs; Ctrl-C arrives as ``KeyboardInterrupt``.
"""

from __future__ import annotations

import atexit
import shutil
import signal
import threading
from typing import Optional

from loguru import logger

from win_install_usb.logging import LoggerFactory
from win_install_usb.storage import mount
from win_install_usb.ui.progress import ProgressReporter

from .context import RunContext

log = LoggerFactory.for_system()

SIGTERM_EXIT_CODE = 143


class CleanupGuard:
    def __init__(self, context: RunContext, reporter: Optional[ProgressReporter] = None):
        self.context = context
        self.reporter = reporter
        self._lock = threading.Lock()
        self._done = False

    @property
    def done(self) -> bool:
        return self._done

    def register(self) -> None:
        atexit.register(self.run)
        signal.signal(signal.SIGTERM, _raise_sigterm_exit)

    def run(self) -> None:
        with self._lock:
            if self._done:
                return
            self._done = True

        if self.reporter is not None:
            self.reporter.stop()

        iso_mount = self.context.iso_mount
        if iso_mount is not None and iso_mount.is_dir():
            mount.detach_image(iso_mount)
        self.context.iso_mount = None

        if self.context.run_log_sink_id is not None:
            logger.remove(self.context.run_log_sink_id)
            self.context.run_log_sink_id = None

        if self.context.retained:
            log.info(f"Keeping run logs in {self.context.log_dir}")
            return
        shutil.rmtree(self.context.log_dir, ignore_errors=True)


def _raise_sigterm_exit(signum, frame):
    raise SystemExit(SIGTERM_EXIT_CODE)
