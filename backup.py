from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Optional

from sqlalchemy.engine import make_url

from config import Settings, get_settings

logger = logging.getLogger(__name__)


def sqlite_path(database_url: str) -> Optional[Path]:
    url = make_url(database_url)
    if not url.drivername.startswith("sqlite"):
        return None
    if not url.database or url.database == ":memory:":
        return None
    return Path(url.database).resolve()


def _copy_database(source: Path, target: Path) -> None:
    src = sqlite3.connect(str(source))
    dst = sqlite3.connect(str(target))
    try:
        src.backup(dst)
    finally:
        dst.close()
        src.close()


class BackupService:
    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()

    def list_backups(self) -> list[Path]:
        backup_dir = self.settings.backup_dir
        if not backup_dir.exists():
            return []
        return sorted(backup_dir.glob("finance_*.db"))

    def run(self, now: Optional[datetime] = None) -> Optional[Path]:
        db_path = sqlite_path(self.settings.database_url)
        if db_path is None:
            logger.info("backup_skipped: database is not a sqlite file")
            return None
        if not db_path.exists():
            raise FileNotFoundError(f"Database file not found: {db_path}")

        self.settings.backup_dir.mkdir(parents=True, exist_ok=True)
        stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
        target = self.settings.backup_dir / f"finance_{stamp}.db"
        _copy_database(db_path, target)
        logger.info(f"backup_completed: path={target}")
        self.prune()
        return target

    def prune(self) -> list[Path]:
        keep = max(self.settings.backup_keep, 1)
        backups = self.list_backups()
        stale = backups[:-keep] if len(backups) > keep else []
        for path in stale:
            path.unlink()
            logger.info(f"backup_pruned: path={path}")
        return stale

    def restore(self, backup: Path) -> None:
        db_path = sqlite_path(self.settings.database_url)
        if db_path is None:
            raise ValueError("Restore is only supported for sqlite databases")
        if not backup.exists():
            raise FileNotFoundError(f"Backup not found: {backup}")
        _copy_database(backup, db_path)
        logger.info(f"backup_restored: source={backup}")
