"""Centralized application configuration."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional
import os
import sys


def get_default_data_dir(
    app_name: str,
    *,
    platform: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
) -> Path:
    """Return an OS-specific user data directory for ``app_name``.

    ``AGRITRACKER_DATA_DIR`` takes precedence over the platform defaults.
    """

    platform_id = (platform or sys.platform).lower()
    environ = dict(os.environ if env is None else env)
    override = environ.get("AGRITRACKER_DATA_DIR")
    if override:
        return Path(override).expanduser()

    home_dir = Path(home or Path.home())
    sanitized = app_name.strip() or "app"
    sanitized = sanitized.replace("/", "-").replace("\\", "-")

    if platform_id.startswith("win"):
        base = Path(environ.get("APPDATA") or home_dir / "AppData" / "Roaming")
    elif platform_id == "darwin":
        base = Path(home_dir / "Library" / "Application Support")
    else:
        base = Path(environ.get("XDG_DATA_HOME") or home_dir / ".local" / "share")

    return base.expanduser() / sanitized


APP_NAME = "AgriTracker"


DATA_DIR = get_default_data_dir(APP_NAME)
STORAGE_DIR = DATA_DIR / "storage"
BACKUP_DIR = DATA_DIR / "backups"
LOG_DIR = DATA_DIR / "logs"

for _dir in (DATA_DIR, STORAGE_DIR, BACKUP_DIR, LOG_DIR):
    _dir.mkdir(parents=True, exist_ok=True)


DB_PATH = STORAGE_DIR / "sync_queue.db"
SYNC_LOG_PATH = LOG_DIR / "sync.log"


@dataclass(frozen=True)
class SyncSettings:
    max_retries: int = 3
    retry_delay_sec: float = 30.0
    queue_key: str = "offline_sync_queue"
    connectivity_probe_interval_sec: float = 30.0
    probe_timeout_sec: float = 5.0


SYNC = SyncSettings()


@dataclass(frozen=True)
class SupabaseSettings:
    url: str = field(default_factory=lambda: os.environ.get("SUPABASE_URL", "").strip())
    anon_key: str = field(default_factory=lambda: os.environ.get("SUPABASE_ANON_KEY", "").strip())
    request_timeout_sec: float = 10.0
    client_info: str = "agritracker-sync/1.0"

    @property
    def is_configured(self) -> bool:
        return bool(self.url and self.anon_key)


SUPABASE = SupabaseSettings()


@dataclass(frozen=True)
class BackupSettings:
    enabled: bool = True
    directory: Path = BACKUP_DIR
    keep_days: int = 7


BACKUP = BackupSettings()


@dataclass(frozen=True)
class UISettings:
    app_title: str = "AgriTracker Sync"
    theme_mode: str = "system"
    color_scheme_seed: str = "#2E7D32"
    window_min_width: int = 720
    window_min_height: int = 480
    status_refresh_sec: int = 5


UI = UISettings()


__all__ = [
    "APP_NAME",
    "DATA_DIR",
    "STORAGE_DIR",
    "BACKUP_DIR",
    "LOG_DIR",
    "DB_PATH",
    "SYNC_LOG_PATH",
    "SYNC",
    "SUPABASE",
    "BACKUP",
    "UI",
    "SyncSettings",
    "SupabaseSettings",
    "get_default_data_dir",
]
