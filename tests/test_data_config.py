from __future__ import annotations

import pytest

from wiki.data.config import build_postgres_dsn, load_database_config
from wiki.data.migrate import MIGRATIONS_DIR, MigrationDrift, load_migrations, maybe_auto_migrate, pending_migrations
from wiki.data.store import open_wiki_data


def _clear_postgres_env(monkeypatch) -> None:
    for name in ("POSTGRES_DSN", "POSTGRES_HOST", "POSTGRES_DB", "POSTGRES_USER", "POSTGRES_PASSWORD", "POSTGRES_PORT"):
        monkeypatch.delenv(name, raising=False)


def test_dsn_requires_all_parts(monkeypatch) -> None:
    _clear_postgres_env(monkeypatch)
    monkeypatch.setenv("POSTGRES_HOST", "db")
    monkeypatch.setenv("POSTGRES_DB", "wiki")
    assert build_postgres_dsn(load_database_config()) is None
    assert open_wiki_data() is None


def test_dsn_from_parts(monkeypatch) -> None:
    _clear_postgres_env(monkeypatch)
    monkeypatch.setenv("POSTGRES_HOST", "db")
    monkeypatch.setenv("POSTGRES_PORT", "not-a-port")
    monkeypatch.setenv("POSTGRES_DB", "wiki")
    monkeypatch.setenv("POSTGRES_USER", "wiki")
    monkeypatch.setenv("POSTGRES_PASSWORD", "p@ss word")

    cfg = load_database_config()
    dsn = build_postgres_dsn(cfg)

    assert cfg.postgres_port == 5432
    assert "host=db" in dsn
    assert "dbname=wiki" in dsn


def test_explicit_dsn_wins(monkeypatch) -> None:
    _clear_postgres_env(monkeypatch)
    monkeypatch.setenv("POSTGRES_DSN", "postgresql://wiki@db/wiki")
    monkeypatch.setenv("POSTGRES_HOST", "other")
    assert build_postgres_dsn(load_database_config()) == "postgresql://wiki@db/wiki"


def test_shipped_migrations_load_in_order() -> None:
    migs = load_migrations(MIGRATIONS_DIR)
    assert [m.version for m in migs] == ["0001_wiki"]
    assert "CREATE TABLE" in migs[0].sql
    assert len(migs[0].checksum) == 64


def test_load_migrations_sorts_and_ignores_other_files(tmp_path) -> None:
    (tmp_path / "0002_tags.sql").write_text("SELECT 2;", encoding="utf-8")
    (tmp_path / "0001_init.sql").write_text("SELECT 1;", encoding="utf-8")
    (tmp_path / "README.md").write_text("notes", encoding="utf-8")

    assert [m.version for m in load_migrations(tmp_path)] == ["0001_init", "0002_tags"]


def test_auto_migrate_disabled_by_default(monkeypatch) -> None:
    monkeypatch.delenv("DB_AUTO_MIGRATE", raising=False)
    assert maybe_auto_migrate() == (False, "DB_AUTO_MIGRATE is disabled")


def test_pending_migrations_skips_applied_and_detects_drift(tmp_path) -> None:
    (tmp_path / "0001_init.sql").write_text("SELECT 1;", encoding="utf-8")
    (tmp_path / "0002_tags.sql").write_text("SELECT 2;", encoding="utf-8")
    first, second = load_migrations(tmp_path)

    assert pending_migrations({first.version: first.checksum}, [first, second]) == [second]
    with pytest.raises(MigrationDrift):
        pending_migrations({first.version: "0" * 64}, [first, second])
