"""SQLite connection handling with bounded per-call execution time."""
from __future__ import annotations

import logging
import sqlite3
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from .errors import QueryTimeoutError

logger = logging.getLogger("orchid.database")

DEFAULT_QUERY_TIMEOUT = 5.0
DEFAULT_BUSY_TIMEOUT = 5.0

# SQLite stores INTEGER values as signed 64-bit numbers.
MAX_INTEGER = 2**63 - 1
MIN_INTEGER = -(2**63)

# Number of SQLite virtual machine instructions between deadline checks.
_PROGRESS_INTERVAL = 1_000


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the application database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "orchid.sqlite3").resolve(strict=False)


def current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def serialize_datetime(value: datetime) -> str:
    return value.isoformat()


def parse_datetime(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Database:
    """Connection factory for the SQLite store.

    Every call opens its own connection, so the object can be shared freely
    between request threads.
    """

    def __init__(
        self,
        path: Path,
        *,
        query_timeout: float = DEFAULT_QUERY_TIMEOUT,
        busy_timeout: float = DEFAULT_BUSY_TIMEOUT,
    ) -> None:
        if query_timeout <= 0:
            raise ValueError("query_timeout must be positive")
        _ensure_directory(path)
        self._path = path
        self._query_timeout = query_timeout
        self._busy_timeout = busy_timeout

    @property
    def path(self) -> Path:
        return self._path

    @property
    def query_timeout(self) -> float:
        return self._query_timeout

    def open(self, *, autocommit: bool = False, busy_timeout: Optional[float] = None) -> sqlite3.Connection:
        """Open a raw connection; the caller is responsible for closing it."""

        timeout = self._busy_timeout if busy_timeout is None else busy_timeout
        conn = sqlite3.connect(self._path, timeout=max(timeout, 0.0), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        if autocommit:
            conn.isolation_level = None
        return conn

    def check(self) -> None:
        """Verify the store is reachable by running a trivial statement."""

        with self.session(operation="ping database") as conn:
            conn.execute("SELECT 1").fetchone()

    @contextmanager
    def session(
        self,
        *,
        operation: str = "execute query",
        deadline: Optional[float] = None,
    ) -> Iterator[sqlite3.Connection]:
        """Yield a connection whose statements are cancelled past their time bound.

        The bound is the per-query timeout or ``deadline`` (a ``time.monotonic``
        value), whichever comes first. The block runs as one transaction that
        is committed on success and rolled back on error.
        """

        started = time.monotonic()
        expires_at = started + self._query_timeout
        if deadline is not None:
            expires_at = min(expires_at, deadline)
        budget = expires_at - started
        if budget <= 0:
            raise QueryTimeoutError(operation, max(budget, 0.0))

        conn = self.open(busy_timeout=min(self._busy_timeout, budget))

        def _expired() -> int:
            return 1 if time.monotonic() >= expires_at else 0

        conn.set_progress_handler(_expired, _PROGRESS_INTERVAL)
        try:
            with conn:
                yield conn
        except sqlite3.OperationalError as exc:
            if time.monotonic() >= expires_at:
                logger.warning("Store call '%s' cancelled after %.2fs", operation, budget)
                raise QueryTimeoutError(operation, budget) from exc
            raise
        finally:
            conn.close()


__all__ = [
    "DEFAULT_BUSY_TIMEOUT",
    "DEFAULT_QUERY_TIMEOUT",
    "MAX_INTEGER",
    "MIN_INTEGER",
    "Database",
    "current_timestamp",
    "parse_datetime",
    "resolve_database_path",
    "serialize_datetime",
]
