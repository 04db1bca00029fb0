"""Package manager and tool provisioning on macOS.

The pipeline needs three external tools besides diskutil/hdiutil:

    brew           installs the other two when they are missing
    wimlib-imagex  splits install.wim into FAT32-sized chunks
    rsync 3.x      copies with ``--info=progress2``; the rsync 2.6.9 that ships
                   with macOS does not know that flag

Homebrew refuses to run as root, so every brew invocation is routed through
``run_as_user`` which drops back to ``$SUDO_USER`` when the tool itself was
started with sudo.
"""

from __future__ import annotations

import os
import shutil
import subprocess
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

from win_install_usb.logging import LoggerFactory
from win_install_usb.storage.exceptions import DependencyError, MissingCommandError
from win_install_usb.storage.transfer.tools import RSYNC_PROGRESS_FLAG

log = LoggerFactory.for_dependencies()

HOMEBREW_INSTALL_URL = "https://raw.githubusercontent.com/Homebrew/install/HEAD/install.sh"
HOMEBREW_INSTALL_SCRIPT = f"""set -euo pipefail
command -v curl >/dev/null 2>&1 || {{ echo "curl is required to install Homebrew"; exit 1; }}
/bin/bash -c "$(curl -fsSL {HOMEBREW_INSTALL_URL})"
"""
HOMEBREW_BIN_DIRS = ("/opt/homebrew/bin", "/usr/local/bin")

# Reduce noise as much as Homebrew allows; output still goes to the stage log.
BREW_QUIET_ENV: Dict[str, str] = {
    "HOMEBREW_NO_AUTO_UPDATE": "1",
    "HOMEBREW_NO_INSTALL_CLEANUP": "1",
    "HOMEBREW_NO_ENV_HINTS": "1",
}


def parse_rsync_major_version(version_line: str) -> Optional[int]:
    """Extract the major version from ``rsync --version``'s first line.

    Examples:
        "rsync  version 2.6.9  protocol version 29" -> 2
        "rsync  version v3.2.7  protocol version 31" -> 3
    """
    words = version_line.split()
    for index, word in enumerate(words[:-1]):
        if word == "version":
            major = words[index + 1].lstrip("v").split(".")[0]
            if major.isdigit():
                return int(major)
            return None
    return None


class Toolchain:
    """Locate, check and install the external tools the pipeline runs."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self.environ = environ if environ is not None else os.environ

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def which(self, command: str) -> Optional[str]:
        return shutil.which(command, path=self.environ.get("PATH"))

    def require(self, command: str, hint: str = "") -> str:
        """Return the path of ``command``.

        Raises:
            MissingCommandError: If it is not on PATH
        """
        path = self.which(command)
        if not path:
            raise MissingCommandError(command, hint)
        return path

    # ------------------------------------------------------------------
    # Privilege handling
    # ------------------------------------------------------------------

    @property
    def sudo_user(self) -> Optional[str]:
        return self.environ.get("SUDO_USER") or None

    def is_root(self) -> bool:
        return os.geteuid() == 0

    def run_as_user(self, command: Sequence[str]) -> List[str]:
        """Prefix ``command`` so it runs as the invoking user under sudo."""
        if self.is_root() and self.sudo_user:
            return ["sudo", "-u", self.sudo_user, "-H", *command]
        return list(command)

    def _run_as_user(self, command: Sequence[str]) -> subprocess.CompletedProcess:
        full_command = self.run_as_user(command)
        log.debug(f"Running command: {' '.join(full_command)}")
        return subprocess.run(full_command, text=True, capture_output=True)

    # ------------------------------------------------------------------
    # Homebrew
    # ------------------------------------------------------------------

    def has_homebrew(self) -> bool:
        return self.which("brew") is not None

    def homebrew_install_command(self) -> List[str]:
        """Command running the official Homebrew installer as the invoking user.

        Raises:
            DependencyError: When running as root without SUDO_USER
        """
        if self.is_root() and not self.sudo_user:
            raise DependencyError(
                "Running as root without SUDO_USER; can't auto-install Homebrew "
                "safely. Re-run without sudo, or install Homebrew manually."
            )
        return self.run_as_user(["/bin/bash", "-c", HOMEBREW_INSTALL_SCRIPT])

    def locate_homebrew(self) -> str:
        """Find brew after a fresh install, adding its bin dir to PATH.

        Raises:
            DependencyError: If brew is still not found
        """
        brew = self.which("brew")
        if brew:
            return brew
        for bin_dir in HOMEBREW_BIN_DIRS:
            candidate = Path(bin_dir) / "brew"
            if os.access(candidate, os.X_OK):
                self._prepend_path(bin_dir)
                log.info(f"Added {bin_dir} to PATH for Homebrew")
                return str(candidate)
        raise DependencyError(
            "Homebrew installation completed but 'brew' is still not on PATH. "
            "Open a new terminal or add brew to PATH, then re-run."
        )

    def _prepend_path(self, bin_dir: str) -> None:
        current = self.environ.get("PATH", "")
        new_path = f"{bin_dir}{os.pathsep}{current}" if current else bin_dir
        if self.environ is os.environ:
            os.environ["PATH"] = new_path
        else:
            self.environ = dict(self.environ, PATH=new_path)

    def has_formula(self, formula: str) -> bool:
        try:
            result = self._run_as_user(["brew", "list", "--formula", formula])
        except OSError:
            return False
        return result.returncode == 0

    def install_formula_command(self, formula: str) -> List[str]:
        """``brew install`` with the quiet variables passed through sudo via env."""
        quiet_env = [f"{key}={value}" for key, value in BREW_QUIET_ENV.items()]
        return self.run_as_user(["env", *quiet_env, "brew", "install", formula])

    def formula_prefix(self, formula: str) -> Optional[Path]:
        try:
            result = self._run_as_user(["brew", "--prefix", formula])
        except OSError:
            return None
        prefix = (result.stdout or "").strip()
        if result.returncode != 0 or not prefix:
            return None
        return Path(prefix)

    # ------------------------------------------------------------------
    # rsync
    # ------------------------------------------------------------------

    def system_rsync(self) -> Optional[str]:
        return self.which("rsync")

    def rsync_supports_progress2(self, rsync_bin: Optional[str]) -> bool:
        """Probe ``--info=progress2``.

        Newer rsync accepts the option even when combined with --version;
        Apple's rsync 2.x errors with "unrecognized option".
        """
        if not rsync_bin or not os.access(rsync_bin, os.X_OK):
            return False
        try:
            result = subprocess.run(
                [rsync_bin, RSYNC_PROGRESS_FLAG, "--version"],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError:
            return False
        return result.returncode == 0

    def rsync_version_line(self, rsync_bin: str) -> str:
        try:
            result = subprocess.run([rsync_bin, "--version"], text=True, capture_output=True)
        except OSError:
            return ""
        lines = (result.stdout or "").splitlines()
        return lines[0].strip() if lines else ""

    def brew_rsync_path(self) -> Optional[str]:
        """Path of the Homebrew rsync binary, if its formula is installed."""
        prefix = self.formula_prefix("rsync")
        if prefix is None:
            return None
        return str(prefix / "bin" / "rsync")
