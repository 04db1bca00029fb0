from __future__ import annotations

import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from win_install_usb.domain.models import RunLog

RUN_LOG_DIR_PREFIX = "win11usb."


@dataclass
class RunContext:
    """State shared by the pipeline and the cleanup guard for one run."""

    log_dir: Path
    logs: List[RunLog] = field(default_factory=list)
    retained: bool = False
    iso_mount: Optional[Path] = None
    run_log_sink_id: Optional[int] = None

    @classmethod
    def create(cls, parent: Optional[Path] = None) -> RunContext:
        log_dir = Path(tempfile.mkdtemp(prefix=RUN_LOG_DIR_PREFIX, dir=parent))
        return cls(log_dir=log_dir)

    def log_path(self, name: str) -> Path:
        path = self.log_dir / name
        self.logs.append(RunLog(path, retained=self.retained))
        return path

    def retain_logs(self) -> None:
        """Keep the log directory after exit; set once any stage fails."""
        self.retained = True
        for run_log in self.logs:
            run_log.retained = True
