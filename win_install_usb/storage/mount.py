"""Source image attach/detach with hdiutil and target mount polling.

Functions:
    - attach_image_command(): hdiutil attach, read-only and hidden from Finder
    - parse_attach_mount_point(): Find the /Volumes/... mount in attach output
    - detach_image_command(): hdiutil detach
    - parse_attach_device(): Find the /dev/diskN node in attach output
    - detach_image(): Best-effort detach of a mount point or device node
    - volume_mount_path(): Where macOS mounts a volume by name
    - wait_for_mount(): Bounded polling for a mount directory
"""

from __future__ import annotations

import re
import subprocess
import time
from pathlib import Path
from typing import Callable, List, Optional, Pattern

from win_install_usb.logging import LoggerFactory

log = LoggerFactory.for_image()

VOLUMES_ROOT = Path("/Volumes")
ATTACH_DEVICE_PATTERN = re.compile(r"^(/dev/disk\d+)\s", re.MULTILINE)


def attach_mount_pattern(volumes_root: Path = VOLUMES_ROOT) -> Pattern[str]:
    """Match the mount column of an ``hdiutil attach`` line under ``volumes_root``."""
    root = re.escape(str(volumes_root).lstrip("/"))
    return re.compile(rf".*\s(/*{root}/.*)$")


def attach_image_command(image_path: Path) -> List[str]:
    return ["hdiutil", "attach", "-nobrowse", "-readonly", str(image_path)]


def detach_image_command(mount_point: Path) -> List[str]:
    return ["hdiutil", "detach", str(mount_point)]


def parse_attach_mount_point(
    output: str, volumes_root: Path = VOLUMES_ROOT
) -> Optional[Path]:
    """Return the first ``/Volumes/...`` mount point in ``hdiutil attach`` output.

    Example output::

        /dev/disk5          \tGUID_partition_scheme
        /dev/disk5s1        \tMicrosoft Basic Data  \t/Volumes/CCCOMA_X64FRE_EN-US_DV9
    """
    pattern = attach_mount_pattern(volumes_root)
    for line in output.splitlines():
        match = pattern.match(line.rstrip())
        if match:
            return Path(match.group(1).strip())
    return None


def parse_attach_device(output: str) -> Optional[Path]:
    """Return the whole-disk node ``hdiutil attach`` created, if any."""
    match = ATTACH_DEVICE_PATTERN.search(output)
    return Path(match.group(1)) if match else None


def detach_image(mount_point: Path) -> bool:
    """Detach an image without raising; used on cleanup paths."""
    try:
        result = subprocess.run(
            detach_image_command(mount_point),
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
    except OSError as error:
        log.warning(f"Could not detach {mount_point}: {error}")
        return False
    if result.returncode != 0:
        log.warning(f"hdiutil detach {mount_point} exited {result.returncode}")
        return False
    log.debug(f"Detached {mount_point}")
    return True


def volume_mount_path(volume_name: str, volumes_root: Path = VOLUMES_ROOT) -> Path:
    return volumes_root / volume_name


def wait_for_mount(
    mount_path: Path,
    *,
    attempts: int = 80,
    interval: float = 0.15,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Poll until ``mount_path`` is a directory.

    Returns:
        True once the directory exists, False after ``attempts`` checks
    """
    for attempt in range(attempts):
        if mount_path.is_dir():
            log.debug(f"{mount_path} appeared after {attempt} polls")
            return True
        sleep(interval)
    return mount_path.is_dir()
