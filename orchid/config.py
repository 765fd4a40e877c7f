"""Layered configuration: defaults, a YAML file, then environment overrides."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from .database import DEFAULT_BUSY_TIMEOUT, DEFAULT_QUERY_TIMEOUT, resolve_database_path
from .errors import ConfigError
from .service import DEFAULT_SERVICE_TIMEOUT

logger = logging.getLogger("orchid.config")

ENV_PREFIX = "ORCHID"
SERVER_MODES = ("debug", "release", "test")

_ENV_REFERENCE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::([^}]*))?\}")


def interpolate_env(value: str, environ: Optional[Mapping[str, str]] = None) -> str:
    """Replace every ``${VAR}`` or ``${VAR:default}`` reference in ``value``.

    Unset and empty variables both resolve to the default (or ``""``).
    """

    env = os.environ if environ is None else environ

    def _substitute(match: "re.Match[str]") -> str:
        resolved = env.get(match.group(1))
        if resolved:
            return resolved
        return match.group(2) or ""

    return _ENV_REFERENCE.sub(_substitute, value)


def _interpolate_tree(value: Any, environ: Mapping[str, str]) -> Any:
    if isinstance(value, str):
        return interpolate_env(value, environ)
    if isinstance(value, dict):
        return {key: _interpolate_tree(item, environ) for key, item in value.items()}
    if isinstance(value, list):
        return [_interpolate_tree(item, environ) for item in value]
    return value


def _coerce(section: str, key: str, value: Any, kind: type) -> Any:
    try:
        return kind(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value for {section}.{key}: {value!r}") from exc


def _origins(value: Any) -> Tuple[str, ...]:
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = [str(item) for item in value]
    else:
        raise ConfigError(f"Invalid value for server.cors_origins: {value!r}")
    return tuple(item.strip() for item in items if item.strip())


@dataclass(frozen=True)
class ServerConfig:
    """HTTP listener settings."""

    host: str = "0.0.0.0"
    port: int = 8080
    mode: str = "debug"
    request_timeout: float = DEFAULT_SERVICE_TIMEOUT
    cors_origins: Tuple[str, ...] = ("*",)

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "ServerConfig":
        defaults = ServerConfig()
        mode = str(data.get("mode", defaults.mode)).strip().lower()
        if mode not in SERVER_MODES:
            raise ConfigError(f"server.mode must be one of {', '.join(SERVER_MODES)}; got {mode!r}")

        port = _coerce("server", "port", data.get("port", defaults.port), int)
        if not 0 < port < 65536:
            raise ConfigError(f"server.port must be between 1 and 65535; got {port}")

        request_timeout = _coerce(
            "server", "request_timeout", data.get("request_timeout", defaults.request_timeout), float
        )
        if request_timeout <= 0:
            raise ConfigError("server.request_timeout must be positive")

        return ServerConfig(
            host=str(data.get("host", defaults.host)),
            port=port,
            mode=mode,
            request_timeout=request_timeout,
            cors_origins=_origins(data.get("cors_origins", defaults.cors_origins)),
        )


@dataclass(frozen=True)
class DatabaseConfig:
    """SQLite store settings; ``migrations_path`` of ``None`` uses the bundled scripts."""

    path: Path = field(default_factory=lambda: resolve_database_path(None))
    query_timeout: float = DEFAULT_QUERY_TIMEOUT
    busy_timeout: float = DEFAULT_BUSY_TIMEOUT
    migrations_path: Optional[Path] = None

    @staticmethod
    def from_dict(data: Mapping[str, Any], base_path: Path | None = None) -> "DatabaseConfig":
        raw_path = data.get("path")
        if raw_path:
            candidate = Path(str(raw_path)).expanduser()
            if not candidate.is_absolute() and base_path is not None:
                candidate = base_path / candidate
            path = candidate.resolve(strict=False)
        else:
            path = resolve_database_path(None)

        raw_migrations = data.get("migrations_path")
        migrations_path: Optional[Path] = None
        if raw_migrations:
            candidate = Path(str(raw_migrations)).expanduser()
            if not candidate.is_absolute() and base_path is not None:
                candidate = base_path / candidate
            migrations_path = candidate.resolve(strict=False)

        query_timeout = _coerce(
            "database", "query_timeout", data.get("query_timeout", DEFAULT_QUERY_TIMEOUT), float
        )
        if query_timeout <= 0:
            raise ConfigError("database.query_timeout must be positive")
        busy_timeout = _coerce("database", "busy_timeout", data.get("busy_timeout", DEFAULT_BUSY_TIMEOUT), float)

        return DatabaseConfig(
            path=path,
            query_timeout=query_timeout,
            busy_timeout=busy_timeout,
            migrations_path=migrations_path,
        )


@dataclass(frozen=True)
class AppConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)


_ENV_KEYS = {
    "server": ("host", "port", "mode", "request_timeout", "cors_origins"),
    "database": ("path", "query_timeout", "busy_timeout", "migrations_path"),
}


def _apply_env_overrides(raw: Dict[str, Any], environ: Mapping[str, str]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {section: dict(raw.get(section) or {}) for section in _ENV_KEYS}
    for section, keys in _ENV_KEYS.items():
        for key in keys:
            env_name = f"{ENV_PREFIX}_{section}_{key}".upper()
            value = environ.get(env_name)
            if value:
                merged[section][key] = value
    migrations_path = environ.get("MIGRATIONS_PATH")
    if migrations_path:
        merged["database"]["migrations_path"] = migrations_path
    return merged


def _read_yaml(config_path: Path) -> Dict[str, Any]:
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
    except FileNotFoundError:
        logger.info("Config file %s not found, using defaults and environment variables", config_path)
        return {}
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as exc:
        raise ConfigError(f"Unable to read configuration file {config_path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(f"Configuration file {config_path} must contain a mapping at the top level")
    for section in _ENV_KEYS:
        if raw.get(section) is not None and not isinstance(raw[section], dict):
            raise ConfigError(f"Configuration section '{section}' must be a mapping")
    return raw


def load_config(
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> AppConfig:
    """Load the service configuration.

    Values are layered as defaults, then the YAML file, then
    ``ORCHID_<SECTION>_<KEY>`` environment variables. ``${VAR:default}``
    references inside string values are expanded last.
    """

    env = os.environ if environ is None else environ
    if config_path is None:
        config_path = resolve_config_path(env.get(f"{ENV_PREFIX}_CONFIG_PATH"))

    raw = _read_yaml(config_path)
    merged = _interpolate_tree(_apply_env_overrides(raw, env), env)

    return AppConfig(
        server=ServerConfig.from_dict(merged["server"]),
        database=DatabaseConfig.from_dict(merged["database"], base_path=config_path.parent),
    )


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the configuration file."""
    if env_value:
        candidate = Path(env_value).expanduser().resolve(strict=False)
    else:
        candidate = (Path(__file__).resolve().parent.parent / "config" / "config.yaml").resolve(strict=False)
    return candidate


__all__ = [
    "AppConfig",
    "DatabaseConfig",
    "ServerConfig",
    "interpolate_env",
    "load_config",
    "resolve_config_path",
]
