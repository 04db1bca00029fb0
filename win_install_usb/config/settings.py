"""Settings storage for persistent defaults."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


SETTINGS_PATH = Path(
    os.environ.get(
        "WIN_INSTALL_USB_SETTINGS_PATH",
        Path.home() / ".config" / "win-install-usb" / "settings.json",
    )
)

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_SCHEME = "gpt"
DEFAULT_VOLUME_NAME = "WIN11"
DEFAULT_SPLIT_SIZE_MB = 3500
DEFAULT_MOUNT_WAIT_ATTEMPTS = 80
DEFAULT_MOUNT_WAIT_INTERVAL = 0.15
DEFAULT_SPINNER_INTERVAL = 0.12
DEFAULT_LOG_TAIL_LINES = 40
DEFAULT_SPLIT_LOG_TAIL_LINES = 60

DEFAULT_SETTINGS: dict[str, Any] = {
    "scheme": DEFAULT_SCHEME,
    "volume_name": DEFAULT_VOLUME_NAME,
    "split_size_mb": DEFAULT_SPLIT_SIZE_MB,
    "mount_wait_attempts": DEFAULT_MOUNT_WAIT_ATTEMPTS,
    "mount_wait_interval": DEFAULT_MOUNT_WAIT_INTERVAL,
    "spinner_interval": DEFAULT_SPINNER_INTERVAL,
    "log_tail_lines": DEFAULT_LOG_TAIL_LINES,
    "split_log_tail_lines": DEFAULT_SPLIT_LOG_TAIL_LINES,
}


@dataclass
class SettingsStore:
    values: dict[str, Any] = field(default_factory=lambda: dict(DEFAULT_SETTINGS))


settings_store = SettingsStore()


def load_settings(path: Path | None = None) -> None:
    settings_store.values = dict(DEFAULT_SETTINGS)
    path = path or SETTINGS_PATH
    if not path.exists():
        return
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return
    if isinstance(data, dict):
        settings_store.values.update(data)


def get_setting(key: str, default: Any | None = None) -> Any:
    return settings_store.values.get(key, default)


def get_int(key: str, default: int = 0) -> int:
    try:
        return int(get_setting(key, default))
    except (TypeError, ValueError):
        return default


def get_float(key: str, default: float = 0.0) -> float:
    try:
        return float(get_setting(key, default))
    except (TypeError, ValueError):
        return default
