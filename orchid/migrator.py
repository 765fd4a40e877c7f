"""Ordered, idempotent schema migrations tracked in ``schema_migrations``.

Migration scripts are plain ``.sql`` files applied in lexicographic filename
order, so their names carry a zero-padded sequence prefix
(``001_create_users.sql``, ``002_...``). Each filename is recorded once it has
been applied and is skipped on every later run.
"""
from __future__ import annotations

import logging
import sqlite3
from contextlib import closing
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import List, Optional, Union

from .database import Database, current_timestamp, parse_datetime, serialize_datetime
from .errors import MigrationError
from .models import MigrationRecord

logger = logging.getLogger("orchid.migrator")

MIGRATION_SUFFIX = ".sql"

_BOOKKEEPING_TABLE = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    filename TEXT NOT NULL UNIQUE,
    executed_at TEXT NOT NULL
)
"""

MigrationSource = Union[Path, Traversable]


@dataclass(frozen=True)
class MigrationScript:
    filename: str
    sql: str


def default_migration_source() -> Traversable:
    """Return the migration scripts bundled with the package."""

    return resources.files("orchid") / "migrations"


def resolve_migration_source(path_value: Optional[str]) -> MigrationSource:
    if path_value:
        return Path(path_value).expanduser().resolve(strict=False)
    return default_migration_source()


def discover_migrations(source: MigrationSource, *, suffix: str = MIGRATION_SUFFIX) -> List[MigrationScript]:
    """List, order and read every migration script in ``source``.

    Any failure to list or read the scripts raises :class:`MigrationError`.
    """

    try:
        entries = [entry for entry in source.iterdir() if entry.is_file() and entry.name.endswith(suffix)]
    except OSError as exc:
        raise MigrationError(f"Unable to list migration scripts in {source}: {exc}") from exc

    scripts: List[MigrationScript] = []
    for entry in sorted(entries, key=lambda item: item.name):
        try:
            content = entry.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise MigrationError(
                f"Unable to read migration script {entry.name}: {exc}",
                filename=entry.name,
            ) from exc
        scripts.append(MigrationScript(filename=entry.name, sql=content))
    return scripts


def _as_transaction(sql: str) -> str:
    body = sql.strip()
    if body and not body.endswith(";"):
        body += ";"
    return f"BEGIN;\n{body}\nCOMMIT;"


class MigrationRunner:
    """Apply pending migration scripts against a :class:`Database`."""

    def __init__(self, database: Database, source: Optional[MigrationSource] = None) -> None:
        self._database = database
        self._source = source if source is not None else default_migration_source()

    @property
    def source(self) -> MigrationSource:
        return self._source

    def run(self) -> List[str]:
        """Apply every pending script in order and return the applied filenames."""

        scripts = discover_migrations(self._source)

        applied: List[str] = []
        with closing(self._database.open(autocommit=True)) as conn:
            try:
                conn.execute(_BOOKKEEPING_TABLE)
            except sqlite3.Error as exc:
                raise MigrationError(f"Unable to create the schema_migrations table: {exc}") from exc

            for script in scripts:
                if self._apply_if_needed(conn, script):
                    applied.append(script.filename)

        logger.info("All migrations completed successfully (%d applied)", len(applied))
        return applied

    def applied(self) -> List[MigrationRecord]:
        """Return the bookkeeping records in filename order."""

        with closing(self._database.open()) as conn:
            conn.execute(_BOOKKEEPING_TABLE)
            rows = conn.execute(
                "SELECT filename, executed_at FROM schema_migrations ORDER BY filename"
            ).fetchall()
        return [
            MigrationRecord(filename=str(row["filename"]), executed_at=parse_datetime(str(row["executed_at"])))
            for row in rows
        ]

    def _apply_if_needed(self, conn: sqlite3.Connection, script: MigrationScript) -> bool:
        try:
            row = conn.execute(
                "SELECT COUNT(*) FROM schema_migrations WHERE filename = ?",
                (script.filename,),
            ).fetchone()
        except sqlite3.Error as exc:
            raise MigrationError(
                f"Unable to check migration {script.filename}: {exc}", filename=script.filename
            ) from exc

        if row[0] > 0:
            logger.debug("Migration %s already executed, skipping", script.filename)
            return False

        logger.info("Running migration: %s", script.filename)
        try:
            conn.executescript(_as_transaction(script.sql))
        except sqlite3.Error as exc:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise MigrationError(
                f"Migration {script.filename} failed: {exc}", filename=script.filename
            ) from exc

        try:
            conn.execute(
                "INSERT INTO schema_migrations (filename, executed_at) VALUES (?, ?)",
                (script.filename, serialize_datetime(current_timestamp())),
            )
        except sqlite3.Error as exc:
            raise MigrationError(
                f"Unable to record migration {script.filename}: {exc}", filename=script.filename
            ) from exc

        logger.info("Migration %s completed successfully", script.filename)
        return True


def run_migrations(database: Database, source: Optional[MigrationSource] = None) -> List[str]:
    """Convenience wrapper used during process bootstrap."""

    return MigrationRunner(database, source).run()


__all__ = [
    "MIGRATION_SUFFIX",
    "MigrationRunner",
    "MigrationScript",
    "default_migration_source",
    "discover_migrations",
    "resolve_migration_source",
    "run_migrations",
]
