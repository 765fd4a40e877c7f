"""Domain models for the user service."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import List


@dataclass(frozen=True)
class User:
    """Represents a user row stored in the ``users`` table."""

    id: int
    name: str
    email: str
    password_hash: str = field(repr=False)
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class MigrationRecord:
    """A row of the ``schema_migrations`` bookkeeping table."""

    filename: str
    executed_at: datetime


@dataclass(frozen=True)
class UserPage:
    """One page of users together with the total row count."""

    users: List[User]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        if self.limit <= 0:
            return 0
        return math.ceil(self.total / self.limit)


__all__ = ["MigrationRecord", "User", "UserPage"]
