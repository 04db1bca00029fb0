"""Domain model for installer USB provisioning.

Typed objects passed between the CLI, the safety guard and the pipeline
stages instead of loose strings and dicts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple, Union

from win_install_usb.storage.exceptions import ConfigurationError

# FAT32 caps a single file at 4 GiB; chunks must stay below this many MB.
FAT32_SPLIT_CEILING_MB = 4000


# ==============================================================================
# Configuration Domain
# ==============================================================================


class PartitionScheme(Enum):
    """Partition map written to the target (GUID for UEFI, MBR for legacy)."""

    GPT = "GPT"
    MBR = "MBR"

    @classmethod
    def from_string(cls, value: str) -> PartitionScheme:
        """Parse a scheme name case-insensitively.

        Raises:
            ConfigurationError: If the name is not gpt or mbr
        """
        normalized = ("" if value is None else str(value)).strip().upper()
        for scheme in cls:
            if scheme.value == normalized:
                return scheme
        raise ConfigurationError(f"--scheme must be 'gpt' or 'mbr' (got: {value})")


@dataclass(frozen=True)
class PipelineConfig:
    """Validated options for one provisioning run."""

    scheme: PartitionScheme
    volume_name: str
    split_chunk_size_mb: int
    force: bool
    usb_input: str
    iso_path: Path

    def __post_init__(self) -> None:
        if self.split_chunk_size_mb >= FAT32_SPLIT_CEILING_MB:
            raise ConfigurationError(
                f"--split-size-mb must be < {FAT32_SPLIT_CEILING_MB} for FAT32 "
                f"compatibility (got: {self.split_chunk_size_mb})"
            )

    @classmethod
    def from_values(
        cls,
        *,
        scheme: str,
        volume_name: str,
        split_size_mb: Union[str, int],
        force: bool,
        usb_input: str,
        iso_path: Union[str, Path],
    ) -> PipelineConfig:
        """Validate raw option values and build a config.

        Checks run in the order the operator is most likely to care about:
        missing ISO first, then scheme, then split size.

        Raises:
            ConfigurationError: On the first invalid value
        """
        if not usb_input or not iso_path:
            raise ConfigurationError("Both USB_PATH and ISO_PATH are required.")

        iso = Path(iso_path).expanduser()
        if not iso.is_file():
            raise ConfigurationError(f"ISO not found: {iso_path}")

        parsed_scheme = PartitionScheme.from_string(scheme)

        volume_name = "" if volume_name is None else str(volume_name)
        if not volume_name.strip():
            raise ConfigurationError("--name must not be empty")

        if isinstance(split_size_mb, bool):
            raise ConfigurationError(
                f"--split-size-mb must be an integer (got: {split_size_mb})"
            )
        if isinstance(split_size_mb, int):
            chunk_mb = split_size_mb
        else:
            text = str(split_size_mb).strip()
            if not text.isdigit():
                raise ConfigurationError(
                    f"--split-size-mb must be an integer (got: {split_size_mb})"
                )
            chunk_mb = int(text)
        if chunk_mb <= 0:
            raise ConfigurationError(
                f"--split-size-mb must be a positive integer (got: {split_size_mb})"
            )

        return cls(
            scheme=parsed_scheme,
            volume_name=volume_name,
            split_chunk_size_mb=chunk_mb,
            force=bool(force),
            usb_input=usb_input,
            iso_path=iso,
        )


# ==============================================================================
# Device Domain
# ==============================================================================


@dataclass(frozen=True)
class ResolvedDevice:
    """Whole-disk target derived from the operator's USB path."""

    device_node: str  # e.g., "/dev/disk4"
    is_internal: bool
    media_name: str = ""

    def format_label(self) -> str:
        return f"{self.device_node} ({self.media_name or 'unknown'})"


# ==============================================================================
# Stage Domain
# ==============================================================================


@dataclass(frozen=True)
class StageDescriptor:
    """One fixed pipeline stage.

    ``allow_failure`` marks best-effort stages: a failing command is logged
    but the stage is still shown as done and the pipeline continues.
    """

    index: int
    label: str
    allow_failure: bool = False


STAGES: Tuple[StageDescriptor, ...] = (
    StageDescriptor(1, "Validating inputs"),
    StageDescriptor(2, "Checking Homebrew"),
    StageDescriptor(3, "Checking wimlib"),
    StageDescriptor(4, "Checking rsync (needs 3.x)"),
    StageDescriptor(5, "Unmounting USB (if mounted)", allow_failure=True),
    StageDescriptor(6, "Erasing and formatting USB"),
    StageDescriptor(7, "Waiting for USB to mount"),
    StageDescriptor(8, "Mounting ISO (read-only)"),
    StageDescriptor(9, "Copying ISO files"),
    StageDescriptor(10, "Writing install image"),
    StageDescriptor(11, "Detaching ISO"),
    StageDescriptor(12, "Ejecting USB"),
)

TOTAL_STEPS = len(STAGES)


def get_stage(index: int) -> StageDescriptor:
    """Look up a stage by its 1-based index."""
    return STAGES[index - 1]


@dataclass
class RunLog:
    """Log file for one subprocess invocation inside the run log directory."""

    path: Path
    retained: bool = False


# ==============================================================================
# Progress Domain
# ==============================================================================


@dataclass
class ProgressSample:
    """Latest copy progress fields parsed from rsync output.

    Fields keep their previous value until a line supplies a new one, so the
    display never drops back to the placeholder mid-run.
    """

    files_done: str = "?"
    files_total: str = "?"
    percent: str = "?"
    throughput: str = "?"


# ==============================================================================
# Installer Image Domain
# ==============================================================================


class ImageKind(Enum):
    """Layout of the large install image on the source ISO."""

    WIM = "wim"  # split into .swm chunks
    ESD = "esd"  # copied as a single file


@dataclass(frozen=True)
class InstallImage:
    kind: ImageKind
    path: Path
    size_bytes: Optional[int] = field(default=None, compare=False)

    @property
    def name(self) -> str:
        return self.path.name
