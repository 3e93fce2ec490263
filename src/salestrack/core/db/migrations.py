from __future__ import annotations

import hashlib
import sqlite3
from pathlib import Path

MIGRATIONS_DIR = Path(__file__).parent / "migrations"


def connect_db(db_path: Path) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    connection = sqlite3.connect(str(db_path))
    connection.row_factory = sqlite3.Row
    connection.execute("PRAGMA foreign_keys = ON")
    # cron и ручной запуск могут пересекаться
    connection.execute("PRAGMA busy_timeout = 5000")
    return connection


def migration_checksum(path: Path) -> str:
    return hashlib.sha256(path.read_bytes()).hexdigest()


def _applied(connection: sqlite3.Connection) -> dict[str, str | None]:
    connection.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            filename TEXT PRIMARY KEY,
            checksum TEXT,
            applied_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    connection.commit()
    return {
        row["filename"]: row["checksum"]
        for row in connection.execute("SELECT filename, checksum FROM schema_migrations")
    }


def pending_migrations(connection: sqlite3.Connection, migrations_dir: Path) -> list[Path]:
    applied = _applied(connection)
    return [path for path in sorted(migrations_dir.glob("*.sql")) if path.name not in applied]


def changed_migrations(connection: sqlite3.Connection, migrations_dir: Path) -> list[str]:
    """Файлы, отредактированные после применения: база с ними уже расходится."""
    applied = _applied(connection)
    changed: list[str] = []
    for path in sorted(migrations_dir.glob("*.sql")):
        recorded = applied.get(path.name)
        if recorded is not None and recorded != migration_checksum(path):
            changed.append(path.name)
    return changed


def apply_migrations(connection: sqlite3.Connection, migrations_dir: Path) -> list[str]:
    executed: list[str] = []

    for migration_file in pending_migrations(connection, migrations_dir):
        with connection:
            connection.executescript(migration_file.read_text(encoding="utf-8"))
            connection.execute(
                "INSERT INTO schema_migrations (filename, checksum) VALUES (?, ?)",
                (migration_file.name, migration_checksum(migration_file)),
            )
        executed.append(migration_file.name)

    return executed
