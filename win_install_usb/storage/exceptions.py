"""Custom exceptions for installer provisioning.

Every exception carries the process exit code the CLI should terminate with.
Stage failures report the failing subprocess's own exit code; everything else
exits with 1.

Exception Hierarchy:
    InstallerError (base)
        ├── ConfigurationError
        ├── UnsupportedPlatformError
        ├── DeviceError
        │   ├── DeviceNotFoundError
        │   ├── DeviceUnresolvableError
        │   ├── InternalDiskRefusedError
        │   └── ConfirmationMismatchError
        ├── DependencyError
        │   └── MissingCommandError
        ├── StageFailedError
        ├── MountError
        │   ├── MountTimeoutError
        │   └── ImageMountError
        └── InvalidInstallerImageError

Usage:
    from win_install_usb.storage.exceptions import InternalDiskRefusedError

    if device.is_internal:
        raise InternalDiskRefusedError(device.device_node, device.media_name)
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class InstallerError(Exception):
    """Base exception for all provisioning failures."""

    exit_code = 1


class ConfigurationError(InstallerError):
    """Parsed options are invalid; raised before anything is touched."""


class UnsupportedPlatformError(InstallerError):
    """The host operating system is not supported."""

    def __init__(self, system: str):
        self.system = system
        super().__init__(
            f"This tool is intended to run on macOS (Darwin), not {system or 'unknown'}."
        )


class DeviceError(InstallerError):
    """Base exception for target device errors."""


class DeviceNotFoundError(DeviceError):
    """The USB path or device node does not exist."""

    def __init__(self, device_name: str):
        self.device_name = device_name
        super().__init__(f"USB path not found: {device_name}")


class DeviceUnresolvableError(DeviceError):
    """No whole-disk identifier backs the given path."""

    def __init__(self, device_name: str):
        self.device_name = device_name
        super().__init__(
            f"Could not resolve a disk device from: {device_name}\n"
            "Pass a device like /dev/disk2 (recommended) or a mounted volume "
            "like /Volumes/WIN11."
        )


class InternalDiskRefusedError(DeviceError):
    """The resolved device is internal storage and will never be erased."""

    def __init__(self, device_node: str, media_name: str = ""):
        self.device_node = device_node
        self.media_name = media_name
        super().__init__(
            f"Refusing to erase an internal disk ({device_node}).\n"
            f"Resolved media name: {media_name or 'unknown'}"
        )


class ConfirmationMismatchError(DeviceError):
    """The operator did not re-type the device identifier exactly."""

    def __init__(self, device_node: str, typed: str):
        self.device_node = device_node
        self.typed = typed
        super().__init__("Confirmation did not match. Aborting.")


class DependencyError(InstallerError):
    """A required tool could not be provisioned."""


class MissingCommandError(DependencyError):
    """A required command is not on PATH."""

    def __init__(self, command: str, hint: str = ""):
        self.command = command
        self.hint = hint
        msg = f"Missing required command: {command}"
        if hint:
            msg += f"\n{hint}"
        super().__init__(msg)


class StageFailedError(InstallerError):
    """An external command behind a fatal stage exited non-zero.

    The failure has already been shown to the operator (status line and log
    tail) by the time this is raised.
    """

    def __init__(
        self,
        step: int,
        message: str,
        exit_code: int,
        log_path: Optional[Path] = None,
    ):
        self.step = step
        self.message = message
        self.exit_code = exit_code
        self.log_path = log_path
        super().__init__(f"Step {step} ({message}) failed with exit code {exit_code}")


class MountError(InstallerError):
    """Base exception for volume and image mount errors."""


class MountTimeoutError(MountError):
    """The freshly formatted volume never appeared."""

    def __init__(self, mount_path: Path, timeout_seconds: float):
        self.mount_path = mount_path
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"USB volume did not mount at {mount_path} within "
            f"{timeout_seconds:.0f}s. Check Disk Utility / diskutil output."
        )


class ImageMountError(MountError):
    """The source image was attached but no mount point could be found."""

    def __init__(self, image_path: Path, output: str = ""):
        self.image_path = image_path
        self.output = output
        msg = f"Failed to find ISO mount point for {image_path}."
        if output.strip():
            msg += f"\nhdiutil output:\n{output.rstrip()}"
        super().__init__(msg)


class InvalidInstallerImageError(InstallerError):
    """Neither a split-capable nor a single-file install image is present."""

    def __init__(self, mount_point: Path):
        self.mount_point = mount_point
        super().__init__(
            "Neither sources/install.wim nor sources/install.esd found in ISO. "
            "Is this a valid Windows ISO?"
        )
