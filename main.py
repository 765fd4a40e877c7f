"""Command-line interface for the Orchid user service."""

from __future__ import annotations
import argparse
import logging
import sys
from pathlib import Path
from typing import Sequence

from orchid.application import create_application, migration_source, open_database
from orchid.config import AppConfig, load_config
from orchid.errors import OrchidError
from orchid.migrator import MigrationRunner

logger = logging.getLogger("orchid.main")

_KNOWN_COMMANDS = {"serve", "migrate"}


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Orchid user service")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to the YAML configuration file (default: ORCHID_CONFIG_PATH or config/config.yaml)",
    )
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    serve_parser = subparsers.add_parser("serve", help="Apply migrations and start the HTTP API")
    serve_parser.add_argument("--host", default=None, help="Bind address (overrides server.host)")
    serve_parser.add_argument("--port", type=int, default=None, help="Listen port (overrides server.port)")

    subparsers.add_parser("migrate", help="Apply pending schema migrations and exit")

    args_list = list(argv) if argv is not None else sys.argv[1:]

    if not args_list:
        args_list = ["serve"]
    else:
        command_index = 0
        if args_list[0] == "--config" and len(args_list) > 1:
            command_index = 2
        elif args_list[0].startswith("--config="):
            command_index = 1
        remaining = args_list[command_index:]
        first = remaining[0] if remaining else None
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in _KNOWN_COMMANDS:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = [*args_list[:command_index], "serve", *remaining]

    return parser.parse_args(args_list)


def _log_level(config: AppConfig) -> int:
    return logging.DEBUG if config.server.mode == "debug" else logging.INFO


def _load(args: argparse.Namespace) -> AppConfig:
    config_path = Path(args.config).expanduser() if args.config else None
    return load_config(config_path)


def _serve(config: AppConfig, *, host: str | None, port: int | None) -> None:
    import uvicorn

    app = create_application(config)

    bind_host = host or config.server.host
    bind_port = port or config.server.port
    logger.info("Server starting on %s:%s", bind_host, bind_port)
    logger.info("Health check available at http://localhost:%s/health", bind_port)
    logger.info("API endpoints available at http://localhost:%s/api", bind_port)
    logger.info("API documentation available at http://localhost:%s/swagger", bind_port)
    uvicorn.run(
        app,
        host=bind_host,
        port=bind_port,
        log_level="debug" if config.server.mode == "debug" else "info",
    )


def _migrate(config: AppConfig) -> None:
    database = open_database(config)
    runner = MigrationRunner(database, migration_source(config))
    applied = runner.run()
    if applied:
        print(f"Applied {len(applied)} migration(s): {', '.join(applied)}")
    else:
        print("Schema is up to date; no migrations applied.")

    records = runner.applied()
    print(f"{'Filename':<40}  Executed at")
    print("-" * 72)
    for record in records:
        executed = record.executed_at.strftime("%Y-%m-%d %H:%M:%S %Z")
        print(f"{record.filename:<40}  {executed}")


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for CLI usage."""

    args = _parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")
    try:
        config = _load(args)
    except OrchidError as exc:
        logger.critical("Failed to load config: %s", exc)
        raise SystemExit(1) from exc
    logging.getLogger().setLevel(_log_level(config))

    try:
        if args.command == "serve":
            _serve(config, host=args.host, port=args.port)
        elif args.command == "migrate":
            _migrate(config)
    except OrchidError as exc:
        logger.critical("Startup failed: %s", exc)
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
