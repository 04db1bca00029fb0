from __future__ import annotations

import os
import sys
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from loguru import Logger

from loguru import logger

DEFAULT_LOG_DIR = Path(
    os.environ.get(
        "WIN_INSTALL_USB_LOG_DIR",
        Path.home() / ".local" / "state" / "win-install-usb" / "logs",
    )
)

RUN_LOG_FILENAME = "pipeline.log"


def setup_logging(
    *,
    debug: bool = False,
    log_dir: Path | None = None,
) -> Logger:
    """
    Setup logging sinks for a provisioning run.

    The terminal belongs to the progress reporter during a normal run, so the
    console sink is only attached when debugging.

    Log Files:
    - operations.log: INFO+ events (7 day retention)

    Args:
        debug: Attach a DEBUG console sink on stderr
        log_dir: Custom log directory (defaults to ~/.local/state/win-install-usb/logs)
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "APP"})

    # SINK 1: Console (stderr) - debugging only
    if debug:
        logger.add(
            sys.stderr,
            level="DEBUG",
            backtrace=False,
            diagnose=False,
            colorize=True,
            format=(
                "<green>{time:HH:mm:ss}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{extra[source]: <12}</cyan> | "
                "{message}"
            ),
        )

    # SINK 2: Operations Log - Important events only (INFO+)
    log_dir = log_dir or DEFAULT_LOG_DIR
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError:
        return logger
    logger.add(
        log_dir / "operations.log",
        level="INFO",
        rotation="5 MB",
        retention="7 days",
        compression="zip",
        backtrace=False,
        diagnose=False,
        format=(
            "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{extra[source]: <12} | "
            "{extra[job_id]: <15} | "
            "{message}"
        ),
    )
    return logger


def add_run_log_sink(run_log_dir: Path) -> int:
    """
    Attach a DEBUG sink writing into the transient run log directory.

    The sink must be removed with ``logger.remove(sink_id)`` before the
    directory is deleted.
    """
    return logger.add(
        run_log_dir / RUN_LOG_FILENAME,
        level="DEBUG",
        backtrace=True,
        diagnose=False,
        format=(
            "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{extra[source]: <12} | "
            "{extra[tags]} | "
            "{message}"
        ),
    )


@contextmanager
def operation_context(operation: str, **details):
    """
    Context manager for tracking long-running operations with automatic timing.

    Automatically logs operation start, completion, and failure with duration tracking.

    Args:
        operation: Operation name (e.g., "install")
        **details: Operation-specific details to log

    Yields:
        Logger bound with job_id and operation context

    Example:
        with operation_context("install", device="/dev/disk4") as log:
            log.debug("Erasing target")
    """
    job_id = f"{operation}-{uuid.uuid4().hex[:8]}"

    with logger.contextualize(job_id=job_id, operation=operation, **details):
        start_time = time.time()
        log = logger.bind(source=operation, job_id=job_id, tags=[operation])

        log.info(f"{operation.capitalize()} started", **details)

        try:
            yield log
            duration = time.time() - start_time
            log.success(
                f"{operation.capitalize()} completed", duration_seconds=round(duration, 2)
            )
        except BaseException as e:
            duration = time.time() - start_time
            log.error(
                f"{operation.capitalize()} failed",
                error=str(e),
                error_type=type(e).__name__,
                duration_seconds=round(duration, 2),
            )
            raise


class LoggerFactory:
    """
    Factory for creating domain-specific loggers with automatic context.

    Each factory method returns a logger pre-configured with appropriate
    source and tags for the domain.
    """

    @staticmethod
    def for_pipeline(job_id: str | None = None) -> Logger:
        """Logger for the stage orchestrator."""
        if job_id is None:
            job_id = f"install-{uuid.uuid4().hex[:8]}"
        return logger.bind(job_id=job_id, source="pipeline", tags=["pipeline"])

    @staticmethod
    def for_device() -> Logger:
        """Logger for target device resolution and safety checks."""
        return logger.bind(source="device", tags=["device", "storage"])

    @staticmethod
    def for_image() -> Logger:
        """Logger for source image attach/detach and layout detection."""
        return logger.bind(source="image", tags=["image", "storage"])

    @staticmethod
    def for_transfer() -> Logger:
        """Logger for copy/split subprocesses and their progress output."""
        return logger.bind(source="transfer", tags=["transfer", "progress"])

    @staticmethod
    def for_dependencies() -> Logger:
        """Logger for package manager and tool provisioning."""
        return logger.bind(source="deps", tags=["dependencies"])

    @staticmethod
    def for_system() -> Logger:
        """Logger for system operations (startup, shutdown, cleanup)."""
        return logger.bind(source="system", tags=["system"])


class ThrottledLogger:
    """
    Logger wrapper that throttles high-frequency log events.

    Useful for progress updates that should only be emitted at intervals.
    """

    def __init__(self, log: Logger, interval_seconds: float = 5.0):
        self.log = log
        self.interval = interval_seconds
        self.last_log_time: dict[str, float] = {}

    def debug(self, key: str, message: str, **kwargs) -> None:
        """Log at DEBUG level, throttled by key."""
        self._throttled_log("DEBUG", key, message, **kwargs)

    def _throttled_log(self, level: str, key: str, message: str, **kwargs) -> None:
        now = time.time()
        last_time = self.last_log_time.get(key, 0)

        if now - last_time >= self.interval:
            log_method = getattr(self.log, level.lower())
            log_method(message, **kwargs)
            self.last_log_time[key] = now
