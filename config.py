import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        data_dir: Path,
        database_url: str,
        timezone: str,
        secret_key: str,
        token_max_age_secs: int,
        page_size: int,
        max_page_size: int,
        backup_dir: Path,
        backup_enabled: bool,
        backup_hour: int,
        backup_keep: int,
    ) -> None:
        self.data_dir = data_dir
        self.database_url = database_url
        self.timezone = timezone
        self.secret_key = secret_key
        self.token_max_age_secs = token_max_age_secs
        self.page_size = page_size
        self.max_page_size = max_page_size
        self.backup_dir = backup_dir
        self.backup_enabled = backup_enabled
        self.backup_hour = backup_hour
        self.backup_keep = backup_keep


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCE_TIMEZONE", "Europe/Istanbul")
    secret_key = os.getenv(
        "FINANCE_SECRET_KEY",
        "3f9d0c1be27a4c8e9b51f7d2a6e04c8b1d5f3a9e7c2b6d40e8f1a3c5b7d9e2f4",
    )
    token_max_age_secs = int(os.getenv("FINANCE_TOKEN_MAX_AGE_SECS", "86400"))
    page_size = int(os.getenv("FINANCE_PAGE_SIZE", "10"))
    max_page_size = int(os.getenv("FINANCE_MAX_PAGE_SIZE", "100"))
    backup_dir = Path(
        os.getenv("FINANCE_BACKUP_DIR", str(data_dir / "backups"))
    ).resolve()
    backup_enabled = _env_flag("FINANCE_BACKUP_ENABLED", "false")
    backup_hour = int(os.getenv("FINANCE_BACKUP_HOUR", "3"))
    backup_keep = int(os.getenv("FINANCE_BACKUP_KEEP", "7"))
    return Settings(
        data_dir=data_dir,
        database_url=database_url,
        timezone=timezone,
        secret_key=secret_key,
        token_max_age_secs=token_max_age_secs,
        page_size=page_size,
        max_page_size=max_page_size,
        backup_dir=backup_dir,
        backup_enabled=backup_enabled,
        backup_hour=backup_hour,
        backup_keep=backup_keep,
    )
