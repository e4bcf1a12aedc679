"""Settings storage for application configuration."""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


SETTINGS_PATH = Path(
    os.environ.get(
        "IMAGE_OPS_SETTINGS_PATH",
        Path.home() / ".config" / "image-ops" / "settings.json",
    )
)

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_CHUNK_SIZE = 1024 * 1024
DEFAULT_MAX_CONCURRENT_TASKS = 4
DEFAULT_PROGRESS_LOG_INTERVAL = 5.0

DEFAULT_SETTINGS: dict[str, Any] = {
    "copy_chunk_size": DEFAULT_CHUNK_SIZE,
    "verify_chunk_size": DEFAULT_CHUNK_SIZE,
    "max_concurrent_tasks": DEFAULT_MAX_CONCURRENT_TASKS,
    "progress_log_interval_seconds": DEFAULT_PROGRESS_LOG_INTERVAL,
    "work_dir": None,
}


@dataclass
class SettingsStore:
    values: dict[str, Any] = field(default_factory=dict)


settings_store = SettingsStore()


def load_settings() -> None:
    settings_store.values = dict(DEFAULT_SETTINGS)
    if not SETTINGS_PATH.exists():
        return
    try:
        data = json.loads(SETTINGS_PATH.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return
    if isinstance(data, dict):
        settings_store.values.update(data)


def get_setting(key: str, default: Any | None = None) -> Any:
    return settings_store.values.get(key, default)


def get_int(key: str, default: int, minimum: int = 1) -> int:
    """Read a positive integer setting, falling back on bad values."""
    try:
        value = int(get_setting(key, default))
    except (TypeError, ValueError):
        return default
    if value < minimum:
        return default
    return value


def get_float(key: str, default: float) -> float:
    try:
        value = float(get_setting(key, default))
    except (TypeError, ValueError):
        return default
    if value < 0:
        return default
    return value


def get_work_dir() -> Path:
    """Directory that receives unpacked image archives."""
    configured = get_setting("work_dir")
    if configured:
        return Path(configured).expanduser()
    return Path(tempfile.gettempdir()) / "image-ops"


load_settings()
