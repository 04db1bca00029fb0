"""Command lines for the file-copy and imaging tools."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Sequence

RSYNC_PROGRESS_FLAG = "--info=progress2"
WIMLIB_COMMAND = "wimlib-imagex"


def rsync_copy_command(
    rsync_bin: str,
    source: Path,
    destination: Path,
    *,
    excludes: Optional[Sequence[str]] = None,
    contents_only: bool = True,
) -> List[str]:
    """Build an archive + hardlink preserving rsync with machine-readable progress.

    With ``contents_only`` the source gets a trailing slash so its contents,
    not the directory itself, land in ``destination``.
    """
    command = [rsync_bin, "-aH", RSYNC_PROGRESS_FLAG]
    for pattern in excludes or ():
        command.append(f"--exclude={pattern}")
    source_arg = f"{source}/" if contents_only else str(source)
    command.extend([source_arg, f"{destination}/"])
    return command


def wimlib_split_command(
    source_wim: Path,
    destination_swm: Path,
    chunk_size_mb: int,
    wimlib_bin: str = WIMLIB_COMMAND,
) -> List[str]:
    """Build ``wimlib-imagex split`` writing ``install.swm``, ``install2.swm``, ..."""
    return [wimlib_bin, "split", str(source_wim), str(destination_swm), str(chunk_size_mb)]
