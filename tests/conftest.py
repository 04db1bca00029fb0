"""
Pytest configuration and shared fixtures for win-install-usb tests.

This module provides common fixtures and utilities used across all test modules.
No fixture touches a real disk: subprocess calls are mocked or routed through
FakeCommandRunner.
"""

import io
import os
import shutil
from pathlib import Path
from typing import Callable, Dict, List, Optional
from unittest.mock import Mock

import pytest
from loguru import logger

from win_install_usb.app.context import RunContext
from win_install_usb.config import settings
from win_install_usb.domain.models import PipelineConfig, ResolvedDevice
from win_install_usb.services.dependencies import Toolchain
from win_install_usb.storage.exceptions import StageFailedError
from win_install_usb.ui.progress import ProgressReporter


# ==============================================================================
# diskutil Output Fixtures
# ==============================================================================


@pytest.fixture
def diskutil_usb_info() -> str:
    """``diskutil info /dev/disk4`` for an external USB stick."""
    return """\
   Device Identifier:         disk4
   Device Node:               /dev/disk4
   Whole:                     Yes
   Part of Whole:             disk4

   Device / Media Name:       SanDisk Ultra

   Media Name:                SanDisk Ultra
   Protocol:                  USB
   Internal:                  No
   Removable Media:           Removable
   Device Location:           External
"""


@pytest.fixture
def diskutil_slice_info() -> str:
    """``diskutil info /Volumes/MYUSB`` for a slice of the USB stick."""
    return """\
   Device Identifier:         disk4s1
   Device Node:               /dev/disk4s1
   Whole:                     No
   Part of Whole:             disk4

   Volume Name:               MYUSB
   Mounted:                   Yes
   Mount Point:               /Volumes/MYUSB
"""


@pytest.fixture
def diskutil_internal_info() -> str:
    """``diskutil info /dev/disk0`` for the internal SSD."""
    return """\
   Device Identifier:         disk0
   Device Node:               /dev/disk0
   Whole:                     Yes
   Part of Whole:             disk0

   Media Name:                APPLE SSD AP0512Q
   Protocol:                  Apple Fabric
   Internal:                  Yes
   Device Location:           Internal
"""


# ==============================================================================
# Subprocess Mock Fixtures
# ==============================================================================


@pytest.fixture
def mock_subprocess_run(mocker):
    """
    Fixture providing a mock for subprocess.run.

    Returns:
        Mock object for subprocess.run
    """
    return mocker.patch("subprocess.run")


class FakeCommandRunner:
    """Stand-in for CommandRunner that records commands instead of running them.

    ``outputs`` maps a step index to the text written into that step's log.
    ``fail_steps`` maps a step index to the exit code its command returns.
    ``effects`` maps a program name (``command[0]`` basename or diskutil verb)
    to a callable receiving the command, used to fake filesystem side effects.
    """

    def __init__(self, reporter: ProgressReporter):
        self.reporter = reporter
        self.calls: List[List[str]] = []
        self.steps: List[int] = []
        self.outputs: Dict[int, str] = {}
        self.fail_steps: Dict[int, int] = {}
        self.effects: Dict[str, Callable[[List[str]], None]] = {}

    def run_quiet(self, step, message, log_path, command):
        return self._run(step, message, log_path, command, allow_fail=False)

    def run_quiet_allow_fail(self, step, message, log_path, command):
        return self._run(step, message, log_path, command, allow_fail=True)

    def run_stage(self, stage, log_path, command, *, message=None):
        return self._run(
            stage.index, message or stage.label, log_path, command, allow_fail=stage.allow_failure
        )

    def run_streaming(
        self, step, message, log_path, command, parser, *, tool_name=None, tail_lines=None
    ):
        return self._run(step, message, log_path, command, allow_fail=False)

    def commands_for(self, program: str) -> List[List[str]]:
        return [
            command
            for command in self.calls
            if program in (os.path.basename(command[0]), command[1])
        ]

    def _run(self, step, message, log_path, command, *, allow_fail):
        command = list(command)
        self.reporter.start(step, message)
        self.calls.append(command)
        self.steps.append(step)
        Path(log_path).write_text(self.outputs.get(step, ""))
        returncode = self.fail_steps.get(step, 0)
        if returncode and not allow_fail:
            self.reporter.stop_fail(step, message)
            raise StageFailedError(step, message, returncode, log_path)
        if not returncode:
            effect = self._effect_for(command)
            if effect is not None:
                effect(command)
        self.reporter.stop_ok(step, message)
        return 0

    def _effect_for(self, command) -> Optional[Callable[[List[str]], None]]:
        if command[0] == "diskutil":
            return self.effects.get(command[1])
        return self.effects.get(os.path.basename(command[0]))


# ==============================================================================
# Pipeline Fixtures
# ==============================================================================


@pytest.fixture
def report_stream() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def reporter(report_stream) -> ProgressReporter:
    """Non-interactive reporter writing into ``report_stream``."""
    return ProgressReporter(stream=report_stream, interactive=False)


@pytest.fixture
def fake_runner(reporter) -> FakeCommandRunner:
    return FakeCommandRunner(reporter)


@pytest.fixture
def run_context(tmp_path) -> RunContext:
    """Run context whose log directory lives under tmp_path."""
    parent = tmp_path / "tmp"
    parent.mkdir()
    return RunContext.create(parent=parent)


@pytest.fixture
def mock_toolchain(tmp_path) -> Mock:
    """
    Toolchain with Homebrew, wimlib and a progress2-capable rsync present.
    """
    toolchain = Mock(spec=Toolchain)
    toolchain.has_homebrew.return_value = True
    toolchain.has_formula.return_value = True
    toolchain.require.side_effect = lambda command, hint="": f"/opt/homebrew/bin/{command}"
    toolchain.system_rsync.return_value = "/opt/homebrew/bin/rsync"
    toolchain.rsync_supports_progress2.return_value = True
    toolchain.install_formula_command.side_effect = lambda formula: ["brew", "install", formula]
    toolchain.homebrew_install_command.return_value = ["/bin/bash", "-c", "install-brew"]
    return toolchain


@pytest.fixture
def volumes_root(tmp_path) -> Path:
    root = tmp_path / "Volumes"
    root.mkdir()
    return root


@pytest.fixture
def iso_file(tmp_path) -> Path:
    iso = tmp_path / "Win11_24H2_English_x64.iso"
    iso.write_bytes(b"\0" * 16)
    return iso


@pytest.fixture
def iso_mount(volumes_root) -> Path:
    """Mounted ISO tree with boot files and a sources directory."""
    mount_point = volumes_root / "CCCOMA_X64FRE_EN-US_DV9"
    (mount_point / "sources").mkdir(parents=True)
    (mount_point / "boot").mkdir()
    (mount_point / "setup.exe").write_bytes(b"MZ")
    (mount_point / "sources" / "boot.wim").write_bytes(b"boot")
    return mount_point


@pytest.fixture
def attach_output(iso_mount) -> str:
    return (
        "/dev/disk5          \tGUID_partition_scheme          \t\n"
        f"/dev/disk5s1        \tMicrosoft Basic Data           \t{iso_mount}\n"
    )


@pytest.fixture
def usb_device() -> ResolvedDevice:
    return ResolvedDevice(device_node="/dev/disk4", is_internal=False, media_name="SanDisk Ultra")


@pytest.fixture
def make_config(iso_file) -> Callable[..., PipelineConfig]:
    def factory(**overrides) -> PipelineConfig:
        values = {
            "scheme": "gpt",
            "volume_name": "WIN11",
            "split_size_mb": 3500,
            "force": True,
            "usb_input": "/dev/disk4",
            "iso_path": iso_file,
        }
        values.update(overrides)
        return PipelineConfig.from_values(**values)

    return factory


@pytest.fixture
def target_effects(fake_runner, volumes_root, iso_mount, attach_output):
    """Wire the fake runner so commands leave the files real tools would."""

    def erase(command):
        (volumes_root / command[3]).mkdir(exist_ok=True)

    def copy(command):
        source = Path(command[-2].rstrip("/"))
        destination = Path(command[-1])
        if source.is_dir():
            shutil.copytree(
                source,
                destination,
                ignore=shutil.ignore_patterns("install.wim"),
                dirs_exist_ok=True,
            )
        else:
            shutil.copy2(source, destination / source.name)

    def split(command):
        destination = Path(command[3])
        destination.write_bytes(b"swm1")
        destination.with_name("install2.swm").write_bytes(b"swm2")

    fake_runner.outputs[8] = attach_output
    fake_runner.effects.update(
        {"eraseDisk": erase, "rsync": copy, "wimlib-imagex": split}
    )
    return fake_runner


@pytest.fixture(autouse=True)
def reset_settings():
    """Start every test from the default settings."""
    settings.settings_store.values = dict(settings.DEFAULT_SETTINGS)
    yield
    settings.settings_store.values = dict(settings.DEFAULT_SETTINGS)


@pytest.fixture
def loguru_records():
    """Capture loguru records emitted during the test."""
    records: List[dict] = []
    sink_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    yield records
    logger.remove(sink_id)


@pytest.fixture(autouse=True)
def loguru_default_extra():
    """Provide the logger extras that ``setup_logging`` configures in production."""
    logger.configure(extra={"job_id": "-", "tags": [], "source": "APP"})
    yield
    logger.configure(extra={})
