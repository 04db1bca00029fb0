"""Installer provisioning pipeline.

Twelve fixed stages run strictly in order; see ``domain.models.STAGES``.
Each stage either completes or raises, and nothing is retried. Subprocess
failures are reported by the command runner (status line, log tail) before
``StageFailedError`` propagates; every other failure is an ``InstallerError``
for ``main()`` to report.

Stages:
    1. Validating inputs
    2-4. Homebrew, wimlib and an rsync that understands --info=progress2
    5. Best-effort unmount of the target disk
    6. Erase as a single FAT32 volume
    7. Wait for the new volume to mount
    8. Attach the ISO read-only
    9. Copy everything except sources/install.wim
    10. Split install.wim into .swm chunks, or copy install.esd
    11. Detach the ISO
    12. Eject the target
"""

from __future__ import annotations

import os
import time
from pathlib import Path
from typing import Callable, Optional

from win_install_usb.domain.models import (
    ImageKind,
    PipelineConfig,
    ResolvedDevice,
    get_stage,
)
from win_install_usb.logging import LoggerFactory, operation_context
from win_install_usb.services.dependencies import Toolchain, parse_rsync_major_version
from win_install_usb.storage import devices, iso, mount
from win_install_usb.storage.exceptions import (
    ConfigurationError,
    DependencyError,
    ImageMountError,
    MountTimeoutError,
)
from win_install_usb.storage.transfer import (
    CommandRunner,
    RsyncProgressParser,
    SplitProgressParser,
    WIMLIB_COMMAND,
    rsync_copy_command,
    wimlib_split_command,
)
from win_install_usb.ui.progress import ProgressReporter

from .context import RunContext

log = LoggerFactory.for_pipeline()

WIMLIB_HINT = "Install it with: brew install wimlib"


class InstallerPipeline:
    def __init__(
        self,
        config: PipelineConfig,
        device: ResolvedDevice,
        context: RunContext,
        reporter: ProgressReporter,
        runner: CommandRunner,
        toolchain: Toolchain,
        *,
        volumes_root: Path = mount.VOLUMES_ROOT,
        mount_wait_attempts: int = 80,
        mount_wait_interval: float = 0.15,
        sleep: Callable[[float], None] = time.sleep,
        split_tail_lines: int = 60,
    ):
        self.config = config
        self.device = device
        self.context = context
        self.reporter = reporter
        self.runner = runner
        self.toolchain = toolchain
        self.volumes_root = volumes_root
        self.mount_wait_attempts = mount_wait_attempts
        self.mount_wait_interval = mount_wait_interval
        self.sleep = sleep
        self.split_tail_lines = split_tail_lines

        self.usb_mount = mount.volume_mount_path(config.volume_name, volumes_root)
        self.rsync_bin: Optional[str] = None
        self.wimlib_bin = WIMLIB_COMMAND

    def run(self) -> None:
        """Run every stage in order.

        Raises:
            InstallerError: From the first stage that fails; logs are retained
        """
        with operation_context(
            "install",
            device=self.device.device_node,
            iso=str(self.config.iso_path),
            scheme=self.config.scheme.value,
        ):
            try:
                self.validate_inputs()
                self.ensure_homebrew()
                self.ensure_wimlib()
                self.ensure_rsync()
                self.unmount_target()
                self.erase_target()
                self.wait_for_target_mount()
                self.attach_iso()
                self.copy_iso_files()
                self.write_install_image()
                self.detach_iso()
                self.eject_target()
            except Exception:
                self.context.retain_logs()
                raise

    # ------------------------------------------------------------------
    # Stage 1: inputs
    # ------------------------------------------------------------------

    def validate_inputs(self) -> None:
        stage = get_stage(1)
        if not self.config.iso_path.is_file():
            self.reporter.stop_fail(stage.index, stage.label)
            raise ConfigurationError(f"ISO not found: {self.config.iso_path}")
        self.reporter.stop_ok(stage.index, stage.label)

    # ------------------------------------------------------------------
    # Stages 2-4: dependencies
    # ------------------------------------------------------------------

    def ensure_homebrew(self) -> None:
        stage = get_stage(2)
        self.reporter.start(stage.index, stage.label)
        present = self.toolchain.has_homebrew()
        self.reporter.stop_ok(stage.index, stage.label)
        if present:
            return
        log.info("Homebrew not found; installing")
        self.runner.run_quiet(
            stage.index,
            "Installing Homebrew",
            self.context.log_path("homebrew-install.log"),
            self.toolchain.homebrew_install_command(),
        )
        self.toolchain.locate_homebrew()

    def ensure_wimlib(self) -> None:
        stage = get_stage(3)
        self.reporter.start(stage.index, stage.label)
        installed = self.toolchain.has_formula("wimlib")
        self.reporter.stop_ok(stage.index, stage.label)
        if not installed:
            self.runner.run_quiet(
                stage.index,
                "Installing wimlib via Homebrew",
                self.context.log_path("brew-wimlib.log"),
                self.toolchain.install_formula_command("wimlib"),
            )
        self.wimlib_bin = self.toolchain.require(WIMLIB_COMMAND, WIMLIB_HINT)

    def ensure_rsync(self) -> None:
        """Bind ``rsync_bin`` to an rsync that supports --info=progress2.

        Apple's bundled rsync 2.6.9 does not, so Homebrew's rsync is installed
        and used instead.
        """
        stage = get_stage(4)
        self.reporter.start(stage.index, stage.label)
        system_rsync = self.toolchain.system_rsync()
        usable = self.toolchain.rsync_supports_progress2(system_rsync)
        self.reporter.stop_ok(stage.index, stage.label)
        if usable:
            self.rsync_bin = system_rsync
            log.info(f"Using system rsync at {system_rsync}")
            return

        if not self.toolchain.has_formula("rsync"):
            self.runner.run_quiet(
                stage.index,
                "Installing/using rsync (progress2-capable)",
                self.context.log_path("brew-rsync.log"),
                self.toolchain.install_formula_command("rsync"),
            )

        brew_rsync = self.toolchain.brew_rsync_path()
        if not brew_rsync or not os.access(brew_rsync, os.X_OK):
            raise DependencyError(
                f"Homebrew rsync not found at expected path: {brew_rsync or 'unknown'}"
            )
        if not self.toolchain.rsync_supports_progress2(brew_rsync):
            version = self.toolchain.rsync_version_line(brew_rsync)
            major = parse_rsync_major_version(version)
            detail = f" (major version {major})" if major is not None else ""
            raise DependencyError(
                "Installed rsync does not support --info=progress2 (unexpected). "
                f"rsync='{brew_rsync}' version='{version or 'unknown'}'{detail}"
            )
        self.rsync_bin = brew_rsync
        log.info(f"Using Homebrew rsync at {brew_rsync}")

    # ------------------------------------------------------------------
    # Stages 5-7: target disk
    # ------------------------------------------------------------------

    def unmount_target(self) -> None:
        self.runner.run_stage(
            get_stage(5),
            self.context.log_path("unmount.log"),
            devices.unmount_disk_command(self.device.device_node),
        )

    def erase_target(self) -> None:
        self.runner.run_stage(
            get_stage(6),
            self.context.log_path("erase.log"),
            devices.erase_disk_command(
                self.device.device_node, self.config.volume_name, self.config.scheme
            ),
        )

    def wait_for_target_mount(self) -> None:
        stage = get_stage(7)
        message = f"Waiting for USB to mount at {self.usb_mount}"
        self.reporter.start(stage.index, message)
        mounted = mount.wait_for_mount(
            self.usb_mount,
            attempts=self.mount_wait_attempts,
            interval=self.mount_wait_interval,
            sleep=self.sleep,
        )
        if not mounted:
            self.reporter.stop_fail(stage.index, message)
            raise MountTimeoutError(
                self.usb_mount, self.mount_wait_attempts * self.mount_wait_interval
            )
        self.reporter.stop_ok(stage.index, message)

    # ------------------------------------------------------------------
    # Stages 8-10: source image and copy
    # ------------------------------------------------------------------

    def attach_iso(self) -> None:
        stage = get_stage(8)
        log_path = self.context.log_path("attach.log")
        self.runner.run_stage(stage, log_path, mount.attach_image_command(self.config.iso_path))

        output = log_path.read_text(encoding="utf-8", errors="replace")
        mount_point = mount.parse_attach_mount_point(output, self.volumes_root)
        if mount_point is None or not mount_point.is_dir():
            attached = mount.parse_attach_device(output)
            if attached is not None:
                log.warning(f"No usable mount point; detaching {attached}")
                mount.detach_image(attached)
            raise ImageMountError(self.config.iso_path, output)
        self.context.iso_mount = mount_point
        log.info(f"ISO attached at {mount_point}")

        (self.usb_mount / iso.SOURCES_DIR).mkdir(parents=True, exist_ok=True)

    def copy_iso_files(self) -> None:
        stage = get_stage(9)
        command = rsync_copy_command(
            self.rsync_bin,
            self.context.iso_mount,
            self.usb_mount,
            excludes=[iso.INSTALL_WIM],
        )
        self.runner.run_streaming(
            stage.index,
            stage.label,
            self.context.log_path("rsync-copy.log"),
            command,
            RsyncProgressParser(stage.label),
            tool_name="rsync",
        )

    def write_install_image(self) -> None:
        """Split install.wim onto the target, or copy install.esd as is.

        Raises:
            InvalidInstallerImageError: If the ISO carries neither image
        """
        stage = get_stage(10)
        image = iso.find_install_image(self.context.iso_mount)

        if image.kind is ImageKind.WIM:
            message = f"Splitting {image.name}"
            command = wimlib_split_command(
                image.path,
                iso.split_destination(self.usb_mount),
                self.config.split_chunk_size_mb,
                self.wimlib_bin,
            )
            self.runner.run_streaming(
                stage.index,
                message,
                self.context.log_path("wimlib-split.log"),
                command,
                SplitProgressParser(message),
                tool_name="wimlib-imagex split",
                tail_lines=self.split_tail_lines,
            )
            return

        message = f"Copying {image.name}"
        command = rsync_copy_command(
            self.rsync_bin,
            image.path,
            self.usb_mount / iso.SOURCES_DIR,
            contents_only=False,
        )
        self.runner.run_streaming(
            stage.index,
            message,
            self.context.log_path("rsync-esd.log"),
            command,
            RsyncProgressParser(message),
            tool_name="rsync",
        )

    # ------------------------------------------------------------------
    # Stages 11-12: release
    # ------------------------------------------------------------------

    def detach_iso(self) -> None:
        self.runner.run_stage(
            get_stage(11),
            self.context.log_path("detach.log"),
            mount.detach_image_command(self.context.iso_mount),
        )
        self.context.iso_mount = None

    def eject_target(self) -> None:
        self.runner.run_stage(
            get_stage(12),
            self.context.log_path("eject.log"),
            devices.eject_disk_command(self.device.device_node),
        )
