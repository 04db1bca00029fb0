"""Safety checks that must pass before the target disk is erased.

The internal-disk refusal and the confirmation prompt are separate gates:
``--force`` skips the prompt but never the refusal.

Example:
    from win_install_usb.storage.validation import validate_erase_target

    device = resolve_usb_device(config.usb_input)
    validate_erase_target(device, config)
"""

from __future__ import annotations

import sys
from typing import Callable, Optional, TextIO

from win_install_usb.domain.models import PipelineConfig, ResolvedDevice
from win_install_usb.logging import LoggerFactory

from .exceptions import ConfirmationMismatchError, InternalDiskRefusedError

log = LoggerFactory.for_device()


def validate_not_internal(device: ResolvedDevice) -> None:
    """Refuse internal storage.

    Raises:
        InternalDiskRefusedError: If the device reports as internal
    """
    if device.is_internal:
        log.warning(f"Refused internal disk {device.device_node} ({device.media_name})")
        raise InternalDiskRefusedError(device.device_node, device.media_name)


def confirm_erase(
    device: ResolvedDevice,
    config: PipelineConfig,
    *,
    input_func: Optional[Callable[[str], str]] = None,
    stream: Optional[TextIO] = None,
) -> None:
    """Ask the operator to re-type the device node before erasing.

    Raises:
        ConfirmationMismatchError: If the typed text differs in any way
    """
    input_func = input_func or input
    stream = stream or sys.stdout
    stream.write("\n")
    stream.write(f"About to ERASE: {device.format_label()}\n")
    stream.write(
        f"This will format it as '{config.volume_name}' using scheme "
        f"{config.scheme.value} (MS-DOS/FAT).\n"
    )
    stream.flush()
    try:
        typed = input_func(f"Type the disk identifier ({device.device_node}) to confirm: ")
    except EOFError:
        typed = ""
    if typed != device.device_node:
        log.info(f"Confirmation mismatch for {device.device_node}: {typed!r}")
        raise ConfirmationMismatchError(device.device_node, typed)
    log.info(f"Operator confirmed erase of {device.device_node}")


def validate_erase_target(
    device: ResolvedDevice,
    config: PipelineConfig,
    *,
    input_func: Optional[Callable[[str], str]] = None,
    stream: Optional[TextIO] = None,
) -> None:
    """Run the internal-disk refusal, then the confirmation gate unless forced."""
    validate_not_internal(device)
    if not config.force:
        confirm_erase(device, config, input_func=input_func, stream=stream)
