from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from api import ApiClientError, WishlistApiClient
from backup import STRATEGIES, export_to_file, import_from_file, merge_imported
from config import Config, configure_logging
from wishlist import get_store

logger = logging.getLogger(__name__)


def _client(config: Config) -> WishlistApiClient:
    return WishlistApiClient(
        config.api_url,
        timeout=config.request_timeout,
        retry_attempts=config.retry_attempts,
        retry_delay=config.retry_delay,
        cache_ttl=0,
    )


def cmd_serve(config: Config, host: Optional[str], port: Optional[int], reload: bool) -> int:
    import uvicorn

    uvicorn.run(
        "server:app",
        host=host or config.host,
        port=port or config.port,
        reload=reload,
        log_level=config.log_level.lower(),
    )
    return 0


def cmd_init_db(config: Config, db_path: Optional[str]) -> int:
    path = Path(db_path).expanduser() if db_path else config.db_path
    store = get_store(path)
    try:
        store.ping()
    finally:
        store.close()
    print(f"Database ready at {path}")
    return 0


def cmd_export(config: Config, path: Optional[str]) -> int:
    with _client(config) as client:
        try:
            target = export_to_file(client, Path(path) if path else None)
        except ApiClientError as exc:
            logger.error("Export failed: %s", exc.message)
            print(f"Export failed: {exc.message}", file=sys.stderr)
            return 1
    print(f"Exported wishlist to {target}")
    return 0


def cmd_import(config: Config, path: str, strategy: str) -> int:
    parsed = import_from_file(Path(path))
    for warning in parsed.warnings:
        print(f"warning: {warning}", file=sys.stderr)
    if not parsed.success or parsed.data is None:
        print(f"Import failed: {parsed.error}", file=sys.stderr)
        return 1

    with _client(config) as client:
        result = merge_imported(client, parsed.data, strategy)
    for warning in result.warnings:
        print(f"warning: {warning}", file=sys.stderr)
    if not result.success:
        print(f"Import failed: {result.error}", file=sys.stderr)
        return 1
    count = len(result.data["books"]) if result.data else 0
    print(f"Import complete ({strategy}); wishlist now holds {count} books")
    return 0


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Audiobook wishlist manager")
    parser.add_argument("--log-level", default=None, help="Override WISHLIST_LOG_LEVEL.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the REST API server.")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    serve.add_argument("--reload", action="store_true")

    init_db = subparsers.add_parser("init-db", help="Create or migrate the SQLite database.")
    init_db.add_argument("--db-path", default=None)

    export = subparsers.add_parser("export", help="Write the wishlist to a JSON backup.")
    export.add_argument("path", nargs="?", default=None)

    import_ = subparsers.add_parser("import", help="Load books from a JSON backup.")
    import_.add_argument("path")
    import_.add_argument("--strategy", choices=STRATEGIES, default="replace")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_arg_parser().parse_args(argv)
    config = Config.from_env()
    configure_logging(args.log_level or config.log_level)

    if args.command == "serve":
        return cmd_serve(config, args.host, args.port, args.reload)
    if args.command == "init-db":
        return cmd_init_db(config, args.db_path)
    if args.command == "export":
        return cmd_export(config, args.path)
    return cmd_import(config, args.path, args.strategy)


if __name__ == "__main__":
    sys.exit(main())
