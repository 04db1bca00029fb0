import argparse
import platform
import sys

from win_install_usb.app.cleanup import CleanupGuard
from win_install_usb.app.context import RunContext
from win_install_usb.app.pipeline import InstallerPipeline
from win_install_usb.config import settings
from win_install_usb.domain.models import FAT32_SPLIT_CEILING_MB, PipelineConfig
from win_install_usb.logging import LoggerFactory, add_run_log_sink, setup_logging
from win_install_usb.services.dependencies import Toolchain
from win_install_usb.storage.devices import resolve_usb_device
from win_install_usb.storage.exceptions import (
    InstallerError,
    StageFailedError,
    UnsupportedPlatformError,
)
from win_install_usb.storage.transfer import CommandRunner
from win_install_usb.storage.validation import validate_erase_target
from win_install_usb.ui.console import print_error
from win_install_usb.ui.progress import ProgressReporter

INTERRUPTED_EXIT_CODE = 130

EPILOG = """\
Inputs:
  USB_PATH  Either a device like /dev/disk2 or a mounted volume path like /Volumes/MyUSB
  ISO_PATH  Path to the Windows ISO file

Examples:
  win-install-usb /dev/disk2 ~/Downloads/Win11.iso
  win-install-usb --scheme mbr /Volumes/USBSTICK ~/Downloads/Win11.iso
"""


class ArgumentParser(argparse.ArgumentParser):
    """argparse with the tool's error format and exit code 1."""

    def error(self, message):
        self.print_usage(sys.stderr)
        print_error(message)
        sys.exit(1)


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="win-install-usb",
        description="Create a bootable Windows installer USB from an ISO on macOS.",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--scheme",
        default=settings.get_setting("scheme", settings.DEFAULT_SCHEME),
        help="Partition scheme for the USB (gpt for UEFI, mbr for legacy). Default: %(default)s",
    )
    parser.add_argument(
        "--name",
        default=settings.get_setting("volume_name", settings.DEFAULT_VOLUME_NAME),
        help="Volume name to format the USB as. Default: %(default)s",
    )
    parser.add_argument(
        "--split-size-mb",
        default=str(settings.get_setting("split_size_mb", settings.DEFAULT_SPLIT_SIZE_MB)),
        help=(
            "Chunk size (MB) for install.wim splitting. "
            f"Must be < {FAT32_SPLIT_CEILING_MB} for FAT32. Default: %(default)s"
        ),
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Do not prompt for confirmation before erasing the USB",
    )
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("usb_path", metavar="USB_PATH")
    parser.add_argument("iso_path", metavar="ISO_PATH")
    return parser


def is_macos() -> bool:
    return platform.system() == "Darwin"


def main(argv=None) -> int:
    settings.load_settings()
    args = build_parser().parse_args(argv)
    setup_logging(debug=args.debug)
    log = LoggerFactory.for_system()

    context = None
    guard = None
    try:
        config = PipelineConfig.from_values(
            scheme=args.scheme,
            volume_name=args.name,
            split_size_mb=args.split_size_mb,
            force=args.force,
            usb_input=args.usb_path,
            iso_path=args.iso_path,
        )
        if not is_macos():
            raise UnsupportedPlatformError(platform.system())

        toolchain = Toolchain()
        toolchain.require("diskutil")
        toolchain.require("hdiutil")

        device = resolve_usb_device(config.usb_input)
        validate_erase_target(device, config)

        context = RunContext.create()
        context.run_log_sink_id = add_run_log_sink(context.log_dir)
        reporter = ProgressReporter(
            interval=settings.get_float("spinner_interval", settings.DEFAULT_SPINNER_INTERVAL),
        )
        guard = CleanupGuard(context, reporter)
        guard.register()
        log.info(f"Run logs in {context.log_dir}")

        runner = CommandRunner(
            reporter,
            on_failure=context.retain_logs,
            tail_lines=settings.get_int("log_tail_lines", settings.DEFAULT_LOG_TAIL_LINES),
        )
        pipeline = InstallerPipeline(
            config,
            device,
            context,
            reporter,
            runner,
            toolchain,
            mount_wait_attempts=settings.get_int(
                "mount_wait_attempts", settings.DEFAULT_MOUNT_WAIT_ATTEMPTS
            ),
            mount_wait_interval=settings.get_float(
                "mount_wait_interval", settings.DEFAULT_MOUNT_WAIT_INTERVAL
            ),
            split_tail_lines=settings.get_int(
                "split_log_tail_lines", settings.DEFAULT_SPLIT_LOG_TAIL_LINES
            ),
        )
        pipeline.run()
    except KeyboardInterrupt:
        if guard is not None:
            guard.run()
        print(file=sys.stderr)
        print_error("Interrupted.")
        return INTERRUPTED_EXIT_CODE
    except InstallerError as error:
        log.error(f"{type(error).__name__}: {error}")
        if not isinstance(error, StageFailedError):
            print_error(str(error))
        if context is not None and context.retained:
            print_error(f"Logs kept in: {context.log_dir}")
        return error.exit_code
    except Exception as error:
        log.exception(f"Unexpected error: {error}")
        print_error(str(error) or type(error).__name__)
        if context is not None and context.retained:
            print_error(f"Logs kept in: {context.log_dir}")
        return 1
    finally:
        if guard is not None:
            guard.run()

    print()
    print("Done. Your Windows installer USB is ready.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
