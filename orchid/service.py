"""User service: email uniqueness, password hashing and pagination policy."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from .errors import DuplicateEmailError, InvalidInputError, RecordNotFoundError, UserNotFoundError
from .models import User, UserPage
from .repository import UserRepository
from .security import hash_password

logger = logging.getLogger("orchid.service")

DEFAULT_SERVICE_TIMEOUT = 30.0
DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 10


def normalize_email(email: str) -> str:
    return email.strip().lower()


def normalize_pagination(page: Optional[int], limit: Optional[int]) -> tuple[int, int]:
    """Clamp ``page`` to at least 1 and fall back to the default page size."""

    if page is None or page < 1:
        page = DEFAULT_PAGE
    if limit is None or limit < 1:
        limit = DEFAULT_PAGE_SIZE
    return page, limit


class UserService:
    """Business rules that span more than one user row.

    Each public method runs under an overall deadline of ``timeout`` seconds
    that is handed to every repository call it makes.
    """

    def __init__(
        self,
        repository: UserRepository,
        *,
        timeout: float = DEFAULT_SERVICE_TIMEOUT,
        password_hasher: Callable[[str], str] = hash_password,
    ) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self._repository = repository
        self._timeout = timeout
        self._hash_password = password_hasher

    def _deadline(self) -> float:
        return time.monotonic() + self._timeout

    def create_user(self, name: str, email: str, password: str) -> User:
        deadline = self._deadline()
        name = name.strip()
        email = normalize_email(email)
        if not name:
            raise InvalidInputError("name must not be empty")
        if not password:
            raise InvalidInputError("password must not be empty")

        try:
            self._repository.get_by_email(email, deadline=deadline)
        except RecordNotFoundError:
            pass
        else:
            raise DuplicateEmailError(email)

        password_hash = self._hash_password(password)
        user = self._repository.create(name, email, password_hash, deadline=deadline)
        logger.info("Created user %s", user.id)
        return user

    def get_user(self, user_id: int) -> User:
        try:
            return self._repository.get_by_id(user_id, deadline=self._deadline())
        except RecordNotFoundError as exc:
            raise UserNotFoundError(user_id) from exc

    def list_users(self, page: Optional[int] = None, limit: Optional[int] = None) -> UserPage:
        deadline = self._deadline()
        page, limit = normalize_pagination(page, limit)
        offset = (page - 1) * limit

        users = self._repository.list(limit, offset, deadline=deadline)
        total = self._repository.count(deadline=deadline)
        return UserPage(users=users, total=total, page=page, limit=limit)

    def update_user(
        self,
        user_id: int,
        *,
        name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> User:
        """Apply a partial update; omitted fields keep their stored values."""

        deadline = self._deadline()
        try:
            current = self._repository.get_by_id(user_id, deadline=deadline)
        except RecordNotFoundError as exc:
            raise UserNotFoundError(user_id) from exc

        new_name = current.name
        if name is not None:
            new_name = name.strip()
            if not new_name:
                raise InvalidInputError("name must not be empty")

        new_email = current.email
        if email is not None:
            candidate = normalize_email(email)
            if candidate != current.email:
                try:
                    existing = self._repository.get_by_email(candidate, deadline=deadline)
                except RecordNotFoundError:
                    pass
                else:
                    if existing.id != user_id:
                        raise DuplicateEmailError(candidate)
                new_email = candidate

        try:
            updated = self._repository.update(
                user_id,
                new_name,
                new_email,
                current.password_hash,
                deadline=deadline,
            )
        except RecordNotFoundError as exc:
            raise UserNotFoundError(user_id) from exc

        logger.info("Updated user %s", user_id)
        return updated

    def delete_user(self, user_id: int) -> None:
        try:
            self._repository.delete(user_id, deadline=self._deadline())
        except RecordNotFoundError as exc:
            raise UserNotFoundError(user_id) from exc
        logger.info("Deleted user %s", user_id)


__all__ = [
    "DEFAULT_PAGE",
    "DEFAULT_PAGE_SIZE",
    "DEFAULT_SERVICE_TIMEOUT",
    "UserService",
    "normalize_email",
    "normalize_pagination",
]
