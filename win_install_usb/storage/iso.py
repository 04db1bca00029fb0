"""Windows installer image layout detection.

Windows ISOs carry the installable editions as either ``sources/install.wim``
(often over 4 GiB, so it is split into ``.swm`` chunks for FAT32) or a
compressed ``sources/install.esd`` that fits and is copied as is.
"""

from __future__ import annotations

from pathlib import Path

from win_install_usb.domain.models import ImageKind, InstallImage
from win_install_usb.logging import LoggerFactory

from .exceptions import InvalidInstallerImageError

log = LoggerFactory.for_image()

SOURCES_DIR = "sources"
INSTALL_WIM = f"{SOURCES_DIR}/install.wim"
INSTALL_ESD = f"{SOURCES_DIR}/install.esd"
SPLIT_IMAGE_NAME = "install.swm"


def find_install_image(mount_point: Path) -> InstallImage:
    """Pick the install image on a mounted ISO, preferring the WIM.

    Raises:
        InvalidInstallerImageError: If neither image file is present
    """
    wim = mount_point / INSTALL_WIM
    if wim.is_file():
        image = InstallImage(ImageKind.WIM, wim, _file_size(wim))
    else:
        esd = mount_point / INSTALL_ESD
        if not esd.is_file():
            raise InvalidInstallerImageError(mount_point)
        image = InstallImage(ImageKind.ESD, esd, _file_size(esd))
    log.info(
        f"Found {image.kind.value} install image: {image.path} "
        f"({image.size_bytes if image.size_bytes is not None else '?'} bytes)"
    )
    return image


def split_destination(target_mount: Path) -> Path:
    """Base path for split chunks (install.swm, install2.swm, ...)."""
    return target_mount / SOURCES_DIR / SPLIT_IMAGE_NAME


def _file_size(path: Path):
    try:
        return path.stat().st_size
    except OSError:
        return None
