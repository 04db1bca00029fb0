"""Target device resolution using diskutil.

This module maps whatever the operator passed as the USB path to the whole
disk that will be erased, and exposes the diskutil command lines the pipeline
runs against that disk.

Accepted Inputs:
    - A whole-disk node: /dev/disk4
    - A slice node: /dev/disk4s1 (resolved to /dev/disk4)
    - A bare identifier: disk4 (treated as /dev/disk4)
    - A mounted volume path: /Volumes/MyUSB (resolved through diskutil)

Resolution reads three fields from ``diskutil info``:
    - Part of Whole: the whole-disk identifier backing a slice or volume
    - Internal / Device Location: whether the disk is internal storage
    - Media Name: the product name shown in the confirmation prompt

Operations:
    - resolve_usb_device(): Resolve operator input to a ResolvedDevice
    - get_disk_info(): Parsed ``diskutil info`` output
    - unmount_disk_command(), erase_disk_command(), eject_disk_command()
"""

from __future__ import annotations

import os
import re
import subprocess
from typing import Dict, List

from win_install_usb.domain.models import PartitionScheme, ResolvedDevice
from win_install_usb.logging import LoggerFactory
from win_install_usb.storage.exceptions import DeviceNotFoundError, DeviceUnresolvableError

log = LoggerFactory.for_device()

DEV_DISK_PREFIX = "/dev/disk"
BARE_DISK_PATTERN = re.compile(r"^disk\d+(s\d+)?$")
SLICE_NODE_PATTERN = re.compile(r"^/dev/disk\d+s\d+$")
FAT_FILESYSTEM = "MS-DOS"


def run_command(command, check=False):
    log.debug(f"Running command: {' '.join(command)}")
    result = subprocess.run(command, check=check, text=True, capture_output=True)
    if result.returncode != 0 and result.stderr:
        log.debug(f"stderr: {result.stderr.strip()}")
    return result


def parse_disk_info(output: str) -> Dict[str, str]:
    """Parse ``diskutil info`` ``Key:   Value`` lines into a dict.

    Only the first occurrence of a key is kept.
    """
    info: Dict[str, str] = {}
    for line in output.splitlines():
        key, sep, value = line.partition(":")
        if not sep:
            continue
        key = key.strip()
        if key and key not in info:
            info[key] = value.strip()
    return info


def get_disk_info(path: str) -> Dict[str, str]:
    """Return parsed ``diskutil info`` for a node or mount path, {} on failure."""
    try:
        result = run_command(["diskutil", "info", path])
    except OSError as error:
        log.debug(f"diskutil info failed for {path}: {error}")
        return {}
    if result.returncode != 0:
        return {}
    return parse_disk_info(result.stdout or "")


def is_internal_disk(info: Dict[str, str]) -> bool:
    if info.get("Internal", "").lower() == "yes":
        return True
    return info.get("Device Location", "").lower() == "internal"


def resolve_device_node(device: str) -> str:
    """Convert a bare diskutil identifier to a device node path."""
    return device if device.startswith("/dev/") else f"/dev/{device}"


def resolve_usb_device(usb_input: str) -> ResolvedDevice:
    """Resolve the operator's USB path to its whole-disk device.

    A disk whose ``diskutil info`` cannot be read is refused, since its
    internal/external status is unknown.

    Raises:
        DeviceNotFoundError: If the input path or resolved node does not exist
        DeviceUnresolvableError: If no whole-disk identifier can be determined
    """
    usb_input = usb_input.strip()
    if BARE_DISK_PATTERN.match(usb_input):
        usb_input = resolve_device_node(usb_input)

    if not os.path.exists(usb_input):
        raise DeviceNotFoundError(usb_input)

    whole = get_disk_info(usb_input).get("Part of Whole", "")
    if whole:
        device_node = f"/dev/{whole}"
    elif usb_input.startswith(DEV_DISK_PREFIX) and not SLICE_NODE_PATTERN.match(usb_input):
        device_node = usb_input
    else:
        raise DeviceUnresolvableError(usb_input)

    if not os.path.exists(device_node):
        raise DeviceNotFoundError(device_node)

    info = get_disk_info(device_node)
    if not info:
        log.warning(f"No diskutil info for {device_node}; refusing to continue")
        raise DeviceUnresolvableError(device_node)
    resolved = ResolvedDevice(
        device_node=device_node,
        is_internal=is_internal_disk(info),
        media_name=info.get("Media Name", ""),
    )
    log.info(
        f"Resolved {usb_input} to {resolved.device_node} "
        f"(internal={resolved.is_internal}, media={resolved.media_name or 'unknown'})"
    )
    return resolved


def unmount_disk_command(device_node: str) -> List[str]:
    return ["diskutil", "unmountDisk", device_node]


def erase_disk_command(
    device_node: str, volume_name: str, scheme: PartitionScheme
) -> List[str]:
    """Erase the whole disk as a single FAT32 (MS-DOS) volume."""
    return ["diskutil", "eraseDisk", FAT_FILESYSTEM, volume_name, scheme.value, device_node]


def eject_disk_command(device_node: str) -> List[str]:
    return ["diskutil", "eject", device_node]
