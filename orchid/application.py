"""Application factory: open the store, migrate it and wire the layers."""
from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import List, Optional

from fastapi import FastAPI

from .api import create_app as create_api_app
from .config import AppConfig, load_config
from .database import Database
from .errors import StoreError
from .migrator import MigrationRunner, MigrationSource, resolve_migration_source
from .repository import UserRepository
from .service import UserService

logger = logging.getLogger("orchid.application")


@dataclass(frozen=True)
class Components:
    """The wired layers of a running service."""

    config: AppConfig
    database: Database
    repository: UserRepository
    service: UserService
    applied_migrations: List[str]


def open_database(config: AppConfig) -> Database:
    """Open the configured store and verify that it answers."""

    try:
        database = Database(
            config.database.path,
            query_timeout=config.database.query_timeout,
            busy_timeout=config.database.busy_timeout,
        )
        database.check()
    except (OSError, sqlite3.Error) as exc:
        raise StoreError("connect to database", str(exc)) from exc
    logger.info("Connected to database at %s", database.path)
    return database


def migration_source(config: AppConfig) -> MigrationSource:
    migrations_path = config.database.migrations_path
    return resolve_migration_source(str(migrations_path) if migrations_path else None)


def build_components(
    config: Optional[AppConfig] = None,
    *,
    database: Optional[Database] = None,
    migrations: Optional[MigrationSource] = None,
) -> Components:
    """Load configuration, open the store, apply migrations and wire the layers.

    Any failure here is fatal to startup and propagates unchanged.
    """

    if config is None:
        config = load_config()
    if database is None:
        database = open_database(config)

    runner = MigrationRunner(database, migrations if migrations is not None else migration_source(config))
    applied = runner.run()

    repository = UserRepository(database)
    service = UserService(repository, timeout=config.server.request_timeout)
    return Components(
        config=config,
        database=database,
        repository=repository,
        service=service,
        applied_migrations=applied,
    )


def create_application(
    config: Optional[AppConfig] = None,
    *,
    database: Optional[Database] = None,
    migrations: Optional[MigrationSource] = None,
) -> FastAPI:
    """Create the ASGI application for the user service."""

    components = build_components(config, database=database, migrations=migrations)
    app = create_api_app(
        service=components.service,
        cors_origins=components.config.server.cors_origins,
    )
    app.state.config = components.config
    app.state.database = components.database
    return app


__all__ = ["Components", "build_components", "create_application", "migration_source", "open_database"]
