"""Parameterized data access for the ``users`` table."""
from __future__ import annotations

import sqlite3
from typing import List, Optional

from .database import (
    MAX_INTEGER,
    MIN_INTEGER,
    Database,
    current_timestamp,
    parse_datetime,
    serialize_datetime,
)
from .errors import DuplicateEmailError, RecordNotFoundError, StoreError
from .models import User

_USER_COLUMNS = "id, name, email, password_hash, created_at, updated_at"


def _is_email_conflict(exc: sqlite3.IntegrityError) -> bool:
    return "users.email" in str(exc)


def _storable(value: int) -> bool:
    return MIN_INTEGER <= value <= MAX_INTEGER


class UserRepository:
    """CRUD operations over user rows.

    Every method accepts an optional ``deadline`` (a ``time.monotonic`` value)
    that further bounds the per-query timeout of the underlying
    :class:`Database`.
    """

    def __init__(self, database: Database) -> None:
        self._database = database

    def create(
        self,
        name: str,
        email: str,
        password_hash: str,
        *,
        deadline: Optional[float] = None,
    ) -> User:
        operation = "create user"
        now = serialize_datetime(current_timestamp())
        try:
            with self._database.session(operation=operation, deadline=deadline) as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO users (name, email, password_hash, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (name, email, password_hash, now, now),
                )
                row = conn.execute(
                    f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?",
                    (cursor.lastrowid,),
                ).fetchone()
        except sqlite3.IntegrityError as exc:
            if _is_email_conflict(exc):
                raise DuplicateEmailError(email) from exc
            raise StoreError(operation, str(exc)) from exc
        except sqlite3.Error as exc:
            raise StoreError(operation, str(exc)) from exc

        if row is None:  # pragma: no cover - the row was inserted in the same transaction
            raise StoreError(operation, "inserted row could not be loaded")
        return self._row_to_user(row)

    def get_by_id(self, user_id: int, *, deadline: Optional[float] = None) -> User:
        operation = "get user by id"
        if not _storable(user_id):
            raise RecordNotFoundError(operation, f"user with id {user_id} not found")
        row = self._fetch_one(
            operation,
            f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?",
            (user_id,),
            deadline=deadline,
        )
        if row is None:
            raise RecordNotFoundError(operation, f"user with id {user_id} not found")
        return self._row_to_user(row)

    def get_by_email(self, email: str, *, deadline: Optional[float] = None) -> User:
        operation = "get user by email"
        row = self._fetch_one(
            operation,
            f"SELECT {_USER_COLUMNS} FROM users WHERE email = ?",
            (email,),
            deadline=deadline,
        )
        if row is None:
            raise RecordNotFoundError(operation, f"user with email {email} not found")
        return self._row_to_user(row)

    def list(self, limit: int, offset: int, *, deadline: Optional[float] = None) -> List[User]:
        operation = "get users"
        if offset > MAX_INTEGER:
            return []
        limit = min(limit, MAX_INTEGER)
        try:
            with self._database.session(operation=operation, deadline=deadline) as conn:
                rows = conn.execute(
                    f"SELECT {_USER_COLUMNS} FROM users ORDER BY id LIMIT ? OFFSET ?",
                    (limit, offset),
                ).fetchall()
        except sqlite3.Error as exc:
            raise StoreError(operation, str(exc)) from exc
        return [self._row_to_user(row) for row in rows]

    def count(self, *, deadline: Optional[float] = None) -> int:
        row = self._fetch_one("count users", "SELECT COUNT(*) AS total FROM users", (), deadline=deadline)
        return int(row["total"]) if row is not None else 0

    def update(
        self,
        user_id: int,
        name: str,
        email: str,
        password_hash: str,
        *,
        deadline: Optional[float] = None,
    ) -> User:
        operation = "update user"
        if not _storable(user_id):
            raise RecordNotFoundError(operation, f"user with id {user_id} not found")
        now = serialize_datetime(current_timestamp())
        try:
            with self._database.session(operation=operation, deadline=deadline) as conn:
                cursor = conn.execute(
                    """
                    UPDATE users
                       SET name = ?, email = ?, password_hash = ?, updated_at = ?
                     WHERE id = ?
                    """,
                    (name, email, password_hash, now, user_id),
                )
                if cursor.rowcount == 0:
                    raise RecordNotFoundError(operation, f"user with id {user_id} not found")
                row = conn.execute(
                    f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?",
                    (user_id,),
                ).fetchone()
        except sqlite3.IntegrityError as exc:
            if _is_email_conflict(exc):
                raise DuplicateEmailError(email) from exc
            raise StoreError(operation, str(exc)) from exc
        except sqlite3.Error as exc:
            raise StoreError(operation, str(exc)) from exc
        return self._row_to_user(row)

    def delete(self, user_id: int, *, deadline: Optional[float] = None) -> None:
        operation = "delete user"
        if not _storable(user_id):
            raise RecordNotFoundError(operation, f"user with id {user_id} not found")
        try:
            with self._database.session(operation=operation, deadline=deadline) as conn:
                deleted = conn.execute("DELETE FROM users WHERE id = ?", (user_id,)).rowcount
        except sqlite3.Error as exc:
            raise StoreError(operation, str(exc)) from exc
        if deleted == 0:
            raise RecordNotFoundError(operation, f"user with id {user_id} not found")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _fetch_one(
        self,
        operation: str,
        query: str,
        params: tuple,
        *,
        deadline: Optional[float],
    ) -> Optional[sqlite3.Row]:
        try:
            with self._database.session(operation=operation, deadline=deadline) as conn:
                return conn.execute(query, params).fetchone()
        except sqlite3.Error as exc:
            raise StoreError(operation, str(exc)) from exc

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=int(row["id"]),
            name=str(row["name"]),
            email=str(row["email"]),
            password_hash=str(row["password_hash"]),
            created_at=parse_datetime(str(row["created_at"])),
            updated_at=parse_datetime(str(row["updated_at"])),
        )


__all__ = ["UserRepository"]
