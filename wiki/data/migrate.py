"""
Schema migrations for the wiki database.

Each `migrations/NNNN_name.sql` file runs once, in file-name order, inside its
own transaction. Applied versions are recorded in `wiki_schema_versions` with
the file's SHA-256 so an edited migration is reported instead of silently
skipped. A Postgres advisory lock serializes concurrent migrators (e.g. two
app replicas starting with DB_AUTO_MIGRATE=1).
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from wiki.data.config import DatabaseConfig, build_postgres_dsn, load_database_config

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"

VERSIONS_TABLE = "wiki_schema_versions"

# Any bigint works as long as every migrator uses the same one.
MIGRATION_LOCK_KEY = 604231887215


class MigrationDrift(RuntimeError):
    """An already-applied migration file no longer matches what the database recorded."""


@dataclass(frozen=True)
class Migration:
    version: str
    path: Path
    checksum: str
    sql: str


def load_migrations(directory: Path = MIGRATIONS_DIR) -> List[Migration]:
    """Read `*.sql` files from `directory`, sorted by file name."""
    if not directory.exists():
        return []
    files = sorted(p for p in directory.iterdir() if p.is_file() and p.suffix == ".sql")
    migrations: List[Migration] = []
    for p in files:
        raw = p.read_bytes()
        migrations.append(
            Migration(version=p.stem, path=p, checksum=hashlib.sha256(raw).hexdigest(), sql=raw.decode("utf-8"))
        )
    return migrations


def pending_migrations(applied: Dict[str, str], migrations: Iterable[Migration]) -> List[Migration]:
    """
    Migrations not yet recorded in `applied` (version -> checksum).

    Raises:
        MigrationDrift: If an applied version's checksum differs from its file
    """
    pending: List[Migration] = []
    for m in migrations:
        recorded = applied.get(m.version)
        if recorded is None:
            pending.append(m)
        elif recorded != m.checksum:
            raise MigrationDrift(f"{m.version}: database has {recorded[:12]}, file is {m.checksum[:12]}")
    return pending


def _connect(dsn: str):
    import psycopg

    # Autocommit: each migration opens its own `transaction()` block.
    return psycopg.connect(dsn, autocommit=True)


def _applied_versions(conn) -> Dict[str, str]:
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {VERSIONS_TABLE} (
          version text PRIMARY KEY,
          checksum text NOT NULL,
          applied_at timestamptz NOT NULL DEFAULT now()
        )
        """
    )
    rows = conn.execute(f"SELECT version, checksum FROM {VERSIONS_TABLE}").fetchall()
    return {str(version): str(checksum) for version, checksum in rows}


def apply_migrations(*, dsn: str, migrations: Optional[Iterable[Migration]] = None) -> Tuple[int, List[str]]:
    """
    Bring the schema up to date.

    Returns: (applied_count, applied_versions)
    """
    available = list(migrations) if migrations is not None else load_migrations()
    done: List[str] = []

    with _connect(dsn) as conn:
        conn.execute("SELECT pg_advisory_lock(%s)", (MIGRATION_LOCK_KEY,))
        try:
            for m in pending_migrations(_applied_versions(conn), available):
                with conn.transaction():
                    conn.execute(m.sql)
                    conn.execute(
                        f"INSERT INTO {VERSIONS_TABLE} (version, checksum) VALUES (%s, %s)",
                        (m.version, m.checksum),
                    )
                logger.info("Applied migration %s", m.version)
                done.append(m.version)
        finally:
            conn.execute("SELECT pg_advisory_unlock(%s)", (MIGRATION_LOCK_KEY,))

    return len(done), done


def maybe_auto_migrate(cfg: Optional[DatabaseConfig] = None) -> Tuple[bool, str]:
    """
    Startup hook helper: migrate only when DB_AUTO_MIGRATE=1 and Postgres is configured.

    Never raises. Returns: (did_attempt, message)
    """
    cfg = cfg or load_database_config()
    if not cfg.db_auto_migrate:
        return False, "DB_AUTO_MIGRATE is disabled"
    dsn = build_postgres_dsn(cfg)
    if not dsn:
        return False, "Postgres DSN not configured"
    try:
        n, versions = apply_migrations(dsn=dsn)
    except Exception as e:
        return True, f"Migration failed: {e}"
    if not n:
        return True, "Schema is up to date"
    return True, f"Applied {n} migration(s): {', '.join(versions)}"
