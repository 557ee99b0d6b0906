"""Dated copies of the queue database, rotated by age."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from pathlib import Path
from shutil import copy2


logger = logging.getLogger("agritracker.sync.backup")


def _parse_backup_date(path: Path, prefix: str) -> datetime | None:
    stem = path.stem
    if not stem.startswith(prefix):
        return None
    try:
        return datetime.strptime(stem[len(prefix) :], "%Y-%m-%d")
    except ValueError:
        return None


def _rotate(backups: Path, db_file: Path, prefix: str, keep_days: int) -> int:
    cutoff = datetime.now().date() - timedelta(days=keep_days - 1)
    removed = 0
    for file in backups.glob(f"{db_file.stem}_*{db_file.suffix}"):
        backup_date = _parse_backup_date(file, prefix)
        if backup_date is None or backup_date.date() >= cutoff:
            continue
        try:
            file.unlink()
            removed += 1
        except OSError as exc:
            logger.warning("Could not remove old backup %s: %s", file, exc)
    return removed


def ensure_daily_backup(
    db_path: str | Path,
    backup_dir: str | Path,
    *,
    keep_days: int = 7,
) -> Path | None:
    """Copy the queue database once per day and drop copies older than ``keep_days``.

    Returns the path of the copy made today, or ``None`` if nothing was copied
    (no database yet, or today's copy already exists).
    """

    db_file = Path(db_path)
    if not db_file.exists():
        return None

    backups = Path(backup_dir)
    backups.mkdir(parents=True, exist_ok=True)

    prefix = f"{db_file.stem}_"
    destination = backups / f"{prefix}{datetime.now().date().isoformat()}{db_file.suffix}"

    created_path: Path | None = None
    if not destination.exists():
        copy2(db_file, destination)
        created_path = destination
        logger.info("Queue database backed up to %s", destination)

    if keep_days > 0:
        _rotate(backups, db_file, prefix, keep_days)

    return created_path


__all__ = ["ensure_daily_backup"]
