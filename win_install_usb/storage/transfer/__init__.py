"""Copy and split operations with streamed progress.

Command Execution:
    - CommandRunner.run_quiet(): Run a fatal stage command into its log
    - CommandRunner.run_quiet_allow_fail(): Run a best-effort stage command
    - CommandRunner.run_stage(): Dispatch on the stage's failure policy
    - CommandRunner.run_streaming(): Run with live progress parsing

Progress Parsing:
    - LineNormalizer: Cut carriage-return redraws into lines
    - RsyncProgressParser: rsync --info=progress2 fields
    - SplitProgressParser: wimlib-imagex split percentage

Command Builders:
    - rsync_copy_command()
    - wimlib_split_command()
"""

from .command_runners import CommandRunner
from .progress import LineNormalizer, RsyncProgressParser, SplitProgressParser
from .tools import RSYNC_PROGRESS_FLAG, WIMLIB_COMMAND, rsync_copy_command, wimlib_split_command

__all__ = [
    "CommandRunner",
    "LineNormalizer",
    "RsyncProgressParser",
    "SplitProgressParser",
    "RSYNC_PROGRESS_FLAG",
    "WIMLIB_COMMAND",
    "rsync_copy_command",
    "wimlib_split_command",
]
