"""Tests for the command-line entry point."""

import pytest

from win_install_usb import main as main_module
from win_install_usb.config import settings
from win_install_usb.domain.models import PartitionScheme, ResolvedDevice
from win_install_usb.storage.exceptions import StageFailedError


@pytest.fixture
def cli_env(mocker, run_context, mock_toolchain, usb_device):
    """Patch everything main() touches outside the process."""
    mocker.patch.object(main_module.settings, "load_settings")
    mocker.patch.object(main_module, "setup_logging")
    mocker.patch.object(main_module, "is_macos", return_value=True)
    mocker.patch.object(main_module, "Toolchain", return_value=mock_toolchain)
    resolve = mocker.patch.object(main_module, "resolve_usb_device", return_value=usb_device)
    mocker.patch.object(main_module.RunContext, "create", return_value=run_context)
    mocker.patch.object(main_module.CleanupGuard, "register")
    pipeline_cls = mocker.patch.object(main_module, "InstallerPipeline")
    prompt = mocker.patch("builtins.input", return_value="/dev/disk4")
    return {
        "resolve": resolve,
        "pipeline_cls": pipeline_cls,
        "pipeline": pipeline_cls.return_value,
        "prompt": prompt,
        "context": run_context,
    }


class TestArguments:
    def test_help_exits_zero(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            main_module.main(["--help"])
        assert excinfo.value.code == 0
        out = capsys.readouterr().out
        assert "--split-size-mb" in out
        assert "Examples:" in out

    def test_unknown_option_exits_one(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            main_module.main(["--bogus", "/dev/disk4", "win.iso"])
        assert excinfo.value.code == 1
        err = capsys.readouterr().err
        assert err.startswith("usage: win-install-usb")
        assert "Error: unrecognized arguments: --bogus" in err

    def test_missing_positional_exits_one(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            main_module.main(["/dev/disk4"])
        assert excinfo.value.code == 1

    def test_extra_positional_exits_one(self):
        with pytest.raises(SystemExit) as excinfo:
            main_module.main(["/dev/disk4", "a.iso", "b.iso"])
        assert excinfo.value.code == 1


class TestValidation:
    def test_split_size_ceiling(self, cli_env, iso_file, capsys):
        """Split sizes of 4000 and above fail before any device is touched."""
        code = main_module.main(["--split-size-mb", "4000", "/dev/disk4", str(iso_file)])

        assert code == 1
        assert "Error: --split-size-mb must be < 4000 for FAT32 compatibility (got: 4000)" in (
            capsys.readouterr().err
        )
        cli_env["resolve"].assert_not_called()

    def test_missing_iso(self, cli_env, tmp_path, capsys):
        code = main_module.main(["/dev/disk4", str(tmp_path / "missing.iso")])
        assert code == 1
        assert "Error: ISO not found:" in capsys.readouterr().err

    def test_bad_scheme(self, cli_env, iso_file, capsys):
        code = main_module.main(["--scheme", "apm", "/dev/disk4", str(iso_file)])
        assert code == 1
        assert "--scheme must be 'gpt' or 'mbr' (got: apm)" in capsys.readouterr().err

    def test_non_string_scheme_in_settings(self, cli_env, iso_file, capsys):
        settings.settings_store.values["scheme"] = 5

        assert main_module.main(["/dev/disk4", str(iso_file)]) == 1
        assert "Error: --scheme must be 'gpt' or 'mbr' (got: 5)" in capsys.readouterr().err

    def test_not_macos(self, cli_env, mocker, iso_file, capsys):
        mocker.patch.object(main_module, "is_macos", return_value=False)
        code = main_module.main(["/dev/disk4", str(iso_file)])
        assert code == 1
        assert "macOS" in capsys.readouterr().err
        cli_env["resolve"].assert_not_called()


class TestSafety:
    def test_internal_disk_exits_before_prompt(self, cli_env, mock_subprocess_run, iso_file, capsys):
        """An internal target is refused right after resolution."""
        cli_env["resolve"].return_value = ResolvedDevice(
            "/dev/disk0", is_internal=True, media_name="APPLE SSD AP0512Q"
        )

        code = main_module.main(["/dev/disk0", str(iso_file)])

        assert code == 1
        assert "Error: Refusing to erase an internal disk (/dev/disk0)." in capsys.readouterr().err
        cli_env["prompt"].assert_not_called()
        cli_env["pipeline_cls"].assert_not_called()
        mock_subprocess_run.assert_not_called()

    def test_internal_disk_refused_even_with_force(self, cli_env, iso_file):
        cli_env["resolve"].return_value = ResolvedDevice("/dev/disk0", is_internal=True)
        assert main_module.main(["--force", "/dev/disk0", str(iso_file)]) == 1
        cli_env["pipeline_cls"].assert_not_called()

    def test_confirmation_mismatch(self, cli_env, iso_file, capsys):
        cli_env["prompt"].return_value = "disk4"

        code = main_module.main(["/dev/disk4", str(iso_file)])

        assert code == 1
        assert "Error: Confirmation did not match. Aborting." in capsys.readouterr().err
        cli_env["pipeline_cls"].assert_not_called()

    def test_confirmation_match_runs_pipeline(self, cli_env, iso_file):
        assert main_module.main(["/dev/disk4", str(iso_file)]) == 0
        cli_env["prompt"].assert_called_once()
        cli_env["pipeline"].run.assert_called_once()


class TestRun:
    def test_success(self, cli_env, iso_file, capsys):
        code = main_module.main(
            ["--scheme", "mbr", "--name", "WINTEST", "--split-size-mb", "3000", "--force",
             "/dev/disk4", str(iso_file)]
        )

        assert code == 0
        assert "Done. Your Windows installer USB is ready." in capsys.readouterr().out
        config = cli_env["pipeline_cls"].call_args[0][0]
        assert config.scheme is PartitionScheme.MBR
        assert config.volume_name == "WINTEST"
        assert config.split_chunk_size_mb == 3000
        assert not cli_env["context"].log_dir.exists()

    def test_stage_failure_returns_command_exit_code(self, cli_env, iso_file, capsys):
        context = cli_env["context"]

        def fail():
            context.retain_logs()
            raise StageFailedError(9, "Copying ISO files", 23)

        cli_env["pipeline"].run.side_effect = fail

        code = main_module.main(["--force", "/dev/disk4", str(iso_file)])

        assert code == 23
        err = capsys.readouterr().err
        assert f"Error: Logs kept in: {context.log_dir}" in err
        assert context.log_dir.is_dir()

    def test_unexpected_error_exits_one_with_log_pointer(self, cli_env, iso_file, capsys):
        """An OS error mid-run is reported like any other failure."""
        context = cli_env["context"]

        def fail():
            context.retain_logs()
            raise PermissionError("[Errno 13] Permission denied: '/Volumes/WIN11/sources'")

        cli_env["pipeline"].run.side_effect = fail

        code = main_module.main(["--force", "/dev/disk4", str(iso_file)])

        assert code == 1
        err = capsys.readouterr().err
        assert "Error: [Errno 13] Permission denied: '/Volumes/WIN11/sources'" in err
        assert f"Error: Logs kept in: {context.log_dir}" in err
        assert context.log_dir.is_dir()

    def test_run_context_failure_exits_one(self, cli_env, iso_file, capsys):
        main_module.RunContext.create.side_effect = OSError("No space left on device")

        assert main_module.main(["--force", "/dev/disk4", str(iso_file)]) == 1
        assert "Error: No space left on device" in capsys.readouterr().err
        cli_env["pipeline_cls"].assert_not_called()

    def test_interrupt_exits_130_and_cleans_up(self, cli_env, iso_file):
        cli_env["pipeline"].run.side_effect = KeyboardInterrupt

        assert main_module.main(["--force", "/dev/disk4", str(iso_file)]) == 130
        assert not cli_env["context"].log_dir.exists()

    def test_defaults_come_from_settings(self, cli_env, iso_file):
        settings.settings_store.values.update({"scheme": "mbr", "volume_name": "WIN10"})

        main_module.main(["--force", "/dev/disk4", str(iso_file)])

        config = cli_env["pipeline_cls"].call_args[0][0]
        assert config.scheme is PartitionScheme.MBR
        assert config.volume_name == "WIN10"

    def test_settings_feed_pipeline_options(self, cli_env, iso_file):
        settings.settings_store.values.update({"mount_wait_attempts": 10, "split_log_tail_lines": 99})

        main_module.main(["--force", "/dev/disk4", str(iso_file)])

        options = cli_env["pipeline_cls"].call_args[1]
        assert options["mount_wait_attempts"] == 10
        assert options["split_tail_lines"] == 99
