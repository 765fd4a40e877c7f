from __future__ import annotations

import time
from pathlib import Path

import pytest

from orchid.database import Database
from orchid.errors import DuplicateEmailError, QueryTimeoutError, RecordNotFoundError
from orchid.migrator import run_migrations
from orchid.repository import UserRepository


@pytest.fixture()
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "orchid.sqlite3")
    run_migrations(db)
    return db


@pytest.fixture()
def repository(database: Database) -> UserRepository:
    return UserRepository(database)


def test_create_assigns_id_and_timestamps(repository: UserRepository) -> None:
    user = repository.create("Alice", "alice@example.com", "hash-a")

    assert user.id > 0
    assert user.name == "Alice"
    assert user.email == "alice@example.com"
    assert user.password_hash == "hash-a"
    assert user.created_at.tzinfo is not None
    assert user.updated_at == user.created_at

    assert repository.get_by_id(user.id) == user
    assert repository.get_by_email("alice@example.com") == user


def test_lookups_report_missing_rows_distinctly(repository: UserRepository) -> None:
    with pytest.raises(RecordNotFoundError):
        repository.get_by_id(42)
    with pytest.raises(RecordNotFoundError):
        repository.get_by_email("nobody@example.com")


def test_unique_email_is_enforced_by_the_store(repository: UserRepository) -> None:
    repository.create("Alice", "alice@example.com", "hash-a")

    with pytest.raises(DuplicateEmailError):
        repository.create("Impostor", "alice@example.com", "hash-b")

    assert repository.count() == 1


def test_list_uses_limit_and_offset(repository: UserRepository) -> None:
    created = [repository.create(f"User {index}", f"user{index}@example.com", "hash") for index in range(7)]

    first = repository.list(3, 0)
    second = repository.list(3, 3)
    last = repository.list(3, 6)

    assert [user.id for user in first] == [user.id for user in created[:3]]
    assert [user.id for user in second] == [user.id for user in created[3:6]]
    assert [user.id for user in last] == [created[6].id]
    assert repository.list(3, 9) == []
    assert repository.count() == 7


def test_update_writes_explicit_values(repository: UserRepository) -> None:
    user = repository.create("Alice", "alice@example.com", "hash-a")

    updated = repository.update(user.id, "Alicia", "alicia@example.com", "hash-a")

    assert updated.id == user.id
    assert updated.name == "Alicia"
    assert updated.email == "alicia@example.com"
    assert updated.password_hash == "hash-a"
    assert updated.created_at == user.created_at
    assert updated.updated_at >= user.updated_at


def test_update_reports_missing_and_conflicting_rows(repository: UserRepository) -> None:
    alice = repository.create("Alice", "alice@example.com", "hash-a")
    repository.create("Bob", "bob@example.com", "hash-b")

    with pytest.raises(RecordNotFoundError):
        repository.update(999, "Ghost", "ghost@example.com", "hash")
    with pytest.raises(DuplicateEmailError):
        repository.update(alice.id, "Alice", "bob@example.com", "hash-a")

    assert repository.get_by_id(alice.id).email == "alice@example.com"


def test_delete_removes_row(repository: UserRepository) -> None:
    user = repository.create("Alice", "alice@example.com", "hash-a")

    repository.delete(user.id)

    with pytest.raises(RecordNotFoundError):
        repository.get_by_id(user.id)
    with pytest.raises(RecordNotFoundError):
        repository.delete(user.id)


def test_expired_deadline_fails_with_timeout(repository: UserRepository) -> None:
    with pytest.raises(QueryTimeoutError):
        repository.get_by_id(1, deadline=time.monotonic() - 1)


def test_slow_query_is_cancelled(tmp_path: Path) -> None:
    database = Database(tmp_path / "slow.sqlite3", query_timeout=0.05)
    endless = (
        "WITH RECURSIVE counter(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM counter) "
        "SELECT COUNT(*) FROM (SELECT x FROM counter LIMIT 1000000000)"
    )

    started = time.monotonic()
    with pytest.raises(QueryTimeoutError) as excinfo:
        with database.session(operation="count forever") as conn:
            conn.execute(endless).fetchone()

    assert time.monotonic() - started < 5
    assert excinfo.value.operation == "count forever"
    assert not isinstance(excinfo.value, RecordNotFoundError)


def test_expired_deadline_reports_the_exhausted_budget(repository: UserRepository) -> None:
    with pytest.raises(QueryTimeoutError) as excinfo:
        repository.get_by_id(1, deadline=time.monotonic() - 1)

    assert excinfo.value.timeout == 0.0


def test_ids_outside_the_integer_range_are_missing(repository: UserRepository) -> None:
    huge = 99999999999999999999

    with pytest.raises(RecordNotFoundError):
        repository.get_by_id(huge)
    with pytest.raises(RecordNotFoundError):
        repository.update(huge, "Ghost", "ghost@example.com", "hash")
    with pytest.raises(RecordNotFoundError):
        repository.delete(huge)


def test_list_beyond_the_integer_range_is_empty(repository: UserRepository) -> None:
    repository.create("Alice", "alice@example.com", "hash-a")

    assert repository.list(10, 2**64) == []
    assert [user.email for user in repository.list(2**64, 0)] == ["alice@example.com"]
