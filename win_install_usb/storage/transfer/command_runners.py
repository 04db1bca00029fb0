"""Command execution with per-stage logs and live progress."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Optional, Protocol, Sequence

from win_install_usb.domain.models import StageDescriptor
from win_install_usb.logging import LoggerFactory, ThrottledLogger
from win_install_usb.storage.exceptions import StageFailedError
from win_install_usb.ui.console import print_error, print_log_tail

from .progress import LineNormalizer

if TYPE_CHECKING:
    from win_install_usb.ui.progress import ProgressReporter


log = LoggerFactory.for_transfer()

# Exit code reported when the command itself cannot be started.
COMMAND_NOT_FOUND_EXIT_CODE = 127
# A tool killed by signal N exits 128 + N, as a shell reports it.
SIGNAL_EXIT_BASE = 128
READ_CHUNK_SIZE = 8192


def exit_status(returncode: int) -> int:
    """Map subprocess's negative signal codes to shell-style exit codes."""
    if returncode < 0:
        return SIGNAL_EXIT_BASE - returncode
    return returncode


class ProgressParser(Protocol):
    def parse_line(self, line: str) -> Optional[str]:
        ...


class CommandRunner:
    """Run stage commands with combined stdout/stderr captured to a log file.

    A failing fatal command stops the reporter in the failed state, flags the
    run's logs for retention, prints the tail of the log to stderr and raises
    ``StageFailedError`` carrying the command's exit code.
    """

    def __init__(
        self,
        reporter: ProgressReporter,
        *,
        on_failure: Optional[Callable[[], None]] = None,
        tail_lines: int = 40,
    ):
        self.reporter = reporter
        self.on_failure = on_failure
        self.tail_lines = tail_lines
        self.progress_log = ThrottledLogger(log, interval_seconds=5.0)

    def run_quiet(
        self,
        step: int,
        message: str,
        log_path: Path,
        command: Sequence[str],
    ) -> int:
        self.reporter.start(step, message)
        returncode = self._run_to_log(log_path, command)
        if returncode != 0:
            self._fail(
                step,
                message,
                log_path,
                returncode,
                f"Command failed (exit {returncode}). Last {self.tail_lines} log lines:",
                self.tail_lines,
            )
        self.reporter.stop_ok(step, message)
        return 0

    def run_quiet_allow_fail(
        self,
        step: int,
        message: str,
        log_path: Path,
        command: Sequence[str],
    ) -> int:
        """Best-effort variant: failures are logged but always shown as done."""
        self.reporter.start(step, message)
        returncode = self._run_to_log(log_path, command)
        if returncode != 0:
            log.warning(
                f"Best-effort step {step} ({message}) exited {returncode}; continuing"
            )
        self.reporter.stop_ok(step, message)
        return 0

    def run_stage(
        self,
        stage: StageDescriptor,
        log_path: Path,
        command: Sequence[str],
        *,
        message: Optional[str] = None,
    ) -> int:
        """Run a stage command using the stage's own failure policy."""
        runner = self.run_quiet_allow_fail if stage.allow_failure else self.run_quiet
        return runner(stage.index, message or stage.label, log_path, command)

    def run_streaming(
        self,
        step: int,
        message: str,
        log_path: Path,
        command: Sequence[str],
        parser: ProgressParser,
        *,
        tool_name: Optional[str] = None,
        tail_lines: Optional[int] = None,
    ) -> int:
        """Run a command, tee its raw output to ``log_path`` and parse progress.

        The subprocess's exit code decides the outcome; parsing never does.
        """
        tool_name = tool_name or Path(command[0]).name
        tail_lines = tail_lines or self.tail_lines
        self.reporter.start(step, message)
        log.debug(f"Running command: {' '.join(command)}")

        normalizer = LineNormalizer()
        with open(log_path, "wb") as log_file:
            try:
                process = subprocess.Popen(
                    list(command),
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                )
            except OSError as error:
                log_file.write(f"{error}\n".encode("utf-8", errors="replace"))
                returncode = COMMAND_NOT_FOUND_EXIT_CODE
            else:
                for chunk in iter(lambda: process.stdout.read1(READ_CHUNK_SIZE), b""):
                    log_file.write(chunk)
                    log_file.flush()
                    self._dispatch(parser, normalizer.feed(chunk))
                self._dispatch(parser, normalizer.flush())
                process.stdout.close()
                returncode = exit_status(process.wait())

        log.debug(f"Command completed with return code {returncode}")
        if returncode != 0:
            self._fail(
                step,
                message,
                log_path,
                returncode,
                f"{tool_name} failed (exit {returncode}). Last {tail_lines} log lines:",
                tail_lines,
            )
        self.reporter.stop_ok(step, message)
        return 0

    def _dispatch(self, parser: ProgressParser, lines) -> None:
        for line in lines:
            status = parser.parse_line(line)
            if status:
                self.reporter.update(status)
                self.progress_log.debug("progress", status)

    def _run_to_log(
        self,
        log_path: Path,
        command: Sequence[str],
    ) -> int:
        log.debug(f"Running command: {' '.join(command)}")
        with open(log_path, "wb") as log_file:
            try:
                result = subprocess.run(
                    list(command),
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                )
            except OSError as error:
                log_file.write(f"{error}\n".encode("utf-8", errors="replace"))
                log.debug(f"Command could not start: {error}")
                return COMMAND_NOT_FOUND_EXIT_CODE
        returncode = exit_status(result.returncode)
        log.debug(f"Command completed with return code {returncode}")
        return returncode

    def _fail(
        self,
        step: int,
        message: str,
        log_path: Path,
        returncode: int,
        summary: str,
        tail_lines: int,
    ) -> None:
        self.reporter.stop_fail(step, message)
        if self.on_failure:
            self.on_failure()
        log.error(f"Step {step} ({message}) failed with exit code {returncode}")
        print_error(summary)
        print_log_tail(log_path, tail_lines)
        raise StageFailedError(step, message, returncode, log_path)
