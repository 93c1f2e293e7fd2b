from datetime import datetime

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from backup import BackupService, sqlite_path
from config import Settings
from database import Base
from models import User


def make_settings(tmp_path, database_url=None, keep=7) -> Settings:
    return Settings(
        data_dir=tmp_path,
        database_url=database_url or f"sqlite:///{tmp_path / 'finance.db'}",
        timezone="UTC",
        secret_key="test",
        token_max_age_secs=60,
        page_size=10,
        max_page_size=100,
        backup_dir=tmp_path / "backups",
        backup_enabled=True,
        backup_hour=3,
        backup_keep=keep,
    )


def seed_database(url: str, name: str = "Ayse") -> None:
    engine = create_engine(url)
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        session.add(User(name=name, email=f"{name.lower()}@example.com", password_hash="x"))
        session.commit()
    engine.dispose()


def user_names(url: str) -> list[str]:
    engine = create_engine(url)
    with Session(engine) as session:
        names = session.scalars(select(User.name).order_by(User.id)).all()
    engine.dispose()
    return list(names)


def test_sqlite_path_detection(tmp_path) -> None:
    assert sqlite_path(f"sqlite:///{tmp_path / 'a.db'}") == (tmp_path / "a.db").resolve()
    assert sqlite_path("sqlite:///:memory:") is None
    assert sqlite_path("postgresql://user@localhost/finance") is None


def test_run_copies_database(tmp_path) -> None:
    settings = make_settings(tmp_path)
    seed_database(settings.database_url)

    target = BackupService(settings).run(now=datetime(2025, 8, 13, 3, 0))

    assert target == settings.backup_dir / "finance_20250813_030000.db"
    assert user_names(f"sqlite:///{target}") == ["Ayse"]


def test_run_prunes_old_backups(tmp_path) -> None:
    settings = make_settings(tmp_path, keep=2)
    seed_database(settings.database_url)
    service = BackupService(settings)

    for day in (10, 11, 12):
        service.run(now=datetime(2025, 8, day, 3, 0))

    assert [p.name for p in service.list_backups()] == [
        "finance_20250811_030000.db",
        "finance_20250812_030000.db",
    ]


def test_run_skips_non_file_databases(tmp_path) -> None:
    settings = make_settings(tmp_path, database_url="sqlite:///:memory:")

    assert BackupService(settings).run() is None
    assert not settings.backup_dir.exists()


def test_run_requires_existing_database(tmp_path) -> None:
    settings = make_settings(tmp_path)

    with pytest.raises(FileNotFoundError):
        BackupService(settings).run()


def test_restore_replaces_database(tmp_path) -> None:
    settings = make_settings(tmp_path)
    seed_database(settings.database_url, "Ayse")
    service = BackupService(settings)
    snapshot = service.run(now=datetime(2025, 8, 13, 3, 0))
    seed_database(settings.database_url, "Mehmet")
    assert user_names(settings.database_url) == ["Ayse", "Mehmet"]

    service.restore(snapshot)

    assert user_names(settings.database_url) == ["Ayse"]
