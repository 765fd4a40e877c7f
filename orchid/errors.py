"""Exception hierarchy shared by the data-access, service and HTTP layers."""
from __future__ import annotations

from typing import Optional


class OrchidError(RuntimeError):
    """Base class for every error raised by the user service."""


class InvalidInputError(OrchidError):
    """Raised when a request is well-formed but carries an unusable value."""


class NotFoundError(OrchidError):
    """Raised when the requested resource does not exist."""


class UserNotFoundError(NotFoundError):
    def __init__(self, user_id: int) -> None:
        super().__init__(f"user with id {user_id} not found")
        self.user_id = user_id


class DuplicateEmailError(OrchidError):
    def __init__(self, email: str) -> None:
        super().__init__("email already exists")
        self.email = email


class StoreError(OrchidError):
    """Infrastructure failure reported by the relational store."""

    def __init__(self, operation: str, message: str) -> None:
        super().__init__(f"failed to {operation}: {message}")
        self.operation = operation


class RecordNotFoundError(StoreError):
    """The store answered a lookup with an empty result."""

    def __init__(self, operation: str, detail: Optional[str] = None) -> None:
        super().__init__(operation, detail or "no rows in result set")


class QueryTimeoutError(StoreError):
    """A store call exceeded its time bound and was interrupted."""

    def __init__(self, operation: str, timeout: float) -> None:
        super().__init__(operation, f"query exceeded its {timeout:g}s time limit")
        self.timeout = timeout


class MigrationError(OrchidError):
    """Raised when schema migrations cannot be discovered or applied."""

    def __init__(self, message: str, *, filename: Optional[str] = None) -> None:
        super().__init__(message)
        self.filename = filename


class ConfigError(OrchidError):
    """Raised when the service configuration cannot be loaded."""


__all__ = [
    "ConfigError",
    "DuplicateEmailError",
    "InvalidInputError",
    "MigrationError",
    "NotFoundError",
    "OrchidError",
    "QueryTimeoutError",
    "RecordNotFoundError",
    "StoreError",
    "UserNotFoundError",
]
