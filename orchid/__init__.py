"""Orchid: a small CRUD service for user accounts."""

from __future__ import annotations

from typing import Any

from .database import Database, resolve_database_path
from .migrator import MigrationRunner, run_migrations


def create_application(*args: Any, **kwargs: Any):
    """Factory function that returns the fully wired ASGI application."""

    from .application import create_application as _create_application

    return _create_application(*args, **kwargs)


__all__ = [
    "Database",
    "MigrationRunner",
    "create_application",
    "resolve_database_path",
    "run_migrations",
]
