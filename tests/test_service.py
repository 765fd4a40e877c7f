"""Tests for the user service rules on top of a real SQLite store."""

from __future__ import annotations

from pathlib import Path
from unittest import mock

import pytest

from orchid.database import Database
from orchid.errors import (
    DuplicateEmailError,
    InvalidInputError,
    QueryTimeoutError,
    RecordNotFoundError,
    UserNotFoundError,
)
from orchid.migrator import run_migrations
from orchid.repository import UserRepository
from orchid.security import verify_password
from orchid.service import UserService, normalize_pagination


@pytest.fixture()
def repository(tmp_path: Path) -> UserRepository:
    database = Database(tmp_path / "orchid.sqlite3")
    run_migrations(database)
    return UserRepository(database)


@pytest.fixture()
def service(repository: UserRepository) -> UserService:
    return UserService(repository)


def test_create_user_hashes_password(service: UserService) -> None:
    user = service.create_user("  Alice  ", "Alice@Example.com ", "s3cret!")

    assert user.id > 0
    assert user.name == "Alice"
    assert user.email == "alice@example.com"
    assert user.password_hash != "s3cret!"
    assert verify_password("s3cret!", user.password_hash)

    fetched = service.get_user(user.id)
    assert (fetched.name, fetched.email) == (user.name, user.email)


def test_create_user_rejects_duplicate_email(service: UserService, repository: UserRepository) -> None:
    service.create_user("Alice", "alice@example.com", "s3cret!")

    with pytest.raises(DuplicateEmailError):
        service.create_user("Other Alice", "ALICE@example.com", "different")

    assert repository.count() == 1


def test_create_user_skips_hashing_when_email_taken(repository: UserRepository) -> None:
    hasher = mock.Mock(return_value="hashed")
    service = UserService(repository, password_hasher=hasher)
    service.create_user("Alice", "alice@example.com", "s3cret!")
    hasher.reset_mock()

    with pytest.raises(DuplicateEmailError):
        service.create_user("Alice", "alice@example.com", "s3cret!")

    hasher.assert_not_called()


def test_store_constraint_backs_up_the_precheck() -> None:
    repository = mock.create_autospec(UserRepository, instance=True)
    repository.get_by_email.side_effect = RecordNotFoundError("get user by email")
    repository.create.side_effect = DuplicateEmailError("alice@example.com")
    service = UserService(repository, password_hasher=lambda password: "hashed")

    with pytest.raises(DuplicateEmailError):
        service.create_user("Alice", "alice@example.com", "s3cret!")


def test_create_user_requires_name_and_password(service: UserService) -> None:
    with pytest.raises(InvalidInputError):
        service.create_user("   ", "alice@example.com", "s3cret!")
    with pytest.raises(InvalidInputError):
        service.create_user("Alice", "alice@example.com", "")


def test_get_user_translates_missing_row(service: UserService) -> None:
    with pytest.raises(UserNotFoundError) as excinfo:
        service.get_user(7)
    assert excinfo.value.user_id == 7


@pytest.mark.parametrize(
    ("page", "limit", "expected"),
    [
        (None, None, (1, 10)),
        (0, 0, (1, 10)),
        (-3, -1, (1, 10)),
        (2, 5, (2, 5)),
    ],
)
def test_normalize_pagination(page, limit, expected) -> None:
    assert normalize_pagination(page, limit) == expected


def test_list_users_pages_through_all_rows(service: UserService) -> None:
    for index in range(25):
        service.create_user(f"User {index}", f"user{index}@example.com", "s3cret!")

    pages = [service.list_users(page, 10) for page in (1, 2, 3)]

    assert [len(page.users) for page in pages] == [10, 10, 5]
    assert all(page.total == 25 for page in pages)
    assert pages[0].total_pages == 3
    ids = [user.id for page in pages for user in page.users]
    assert len(ids) == len(set(ids)) == 25

    beyond = service.list_users(4, 10)
    assert beyond.users == []
    assert beyond.total == 25


def test_list_users_applies_defaults(service: UserService) -> None:
    result = service.list_users(0, -5)
    assert (result.page, result.limit, result.total, result.total_pages) == (1, 10, 0, 0)


def test_update_name_only_keeps_email(service: UserService) -> None:
    user = service.create_user("Alice", "alice@example.com", "s3cret!")

    updated = service.update_user(user.id, name="Alicia")

    assert updated.name == "Alicia"
    assert updated.email == "alice@example.com"
    assert updated.password_hash == user.password_hash


def test_update_email_only_keeps_name(service: UserService) -> None:
    user = service.create_user("Alice", "alice@example.com", "s3cret!")

    updated = service.update_user(user.id, email="Alicia@Example.com")

    assert updated.name == "Alice"
    assert updated.email == "alicia@example.com"
    assert updated.password_hash == user.password_hash


def test_update_to_own_email_is_allowed(service: UserService) -> None:
    user = service.create_user("Alice", "alice@example.com", "s3cret!")

    updated = service.update_user(user.id, name="Alice B", email="alice@example.com")

    assert updated.email == "alice@example.com"
    assert updated.name == "Alice B"


def test_update_rejects_email_of_another_user(service: UserService) -> None:
    alice = service.create_user("Alice", "alice@example.com", "s3cret!")
    service.create_user("Bob", "bob@example.com", "s3cret!")

    with pytest.raises(DuplicateEmailError):
        service.update_user(alice.id, email="bob@example.com")

    assert service.get_user(alice.id).email == "alice@example.com"


def test_update_missing_user(service: UserService) -> None:
    with pytest.raises(UserNotFoundError):
        service.update_user(404, name="Nobody")


def test_update_rejects_blank_name(service: UserService) -> None:
    user = service.create_user("Alice", "alice@example.com", "s3cret!")
    with pytest.raises(InvalidInputError):
        service.update_user(user.id, name="   ")


def test_delete_then_get_reports_not_found(service: UserService) -> None:
    user = service.create_user("Alice", "alice@example.com", "s3cret!")

    service.delete_user(user.id)

    with pytest.raises(UserNotFoundError):
        service.get_user(user.id)
    with pytest.raises(UserNotFoundError):
        service.delete_user(user.id)


def test_every_store_call_shares_one_deadline() -> None:
    repository = mock.create_autospec(UserRepository, instance=True)
    repository.list.return_value = []
    repository.count.return_value = 0
    service = UserService(repository, timeout=12.0)

    with mock.patch("orchid.service.time.monotonic", return_value=100.0):
        service.list_users(1, 10)

    repository.list.assert_called_once_with(10, 0, deadline=112.0)
    repository.count.assert_called_once_with(deadline=112.0)


def test_timeouts_propagate_unchanged() -> None:
    repository = mock.create_autospec(UserRepository, instance=True)
    repository.get_by_id.side_effect = QueryTimeoutError("get user by id", 5.0)
    service = UserService(repository)

    with pytest.raises(QueryTimeoutError):
        service.get_user(1)
