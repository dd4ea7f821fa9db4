"""Create the ban tables in the configured PostgreSQL database."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

from banhammer.backend.config import configure_logging, load_settings
from banhammer.backend.store import PostgresBanStore

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).with_name("db_schema.sql")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Apply the banhammer database schema")
    parser.add_argument("--print", dest="print_only", action="store_true", help="print the schema and exit")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    schema_sql = SCHEMA_PATH.read_text(encoding="utf-8")
    if args.print_only:
        print(schema_sql)
        return 0

    settings = load_settings()
    configure_logging(settings.log_level)
    if not settings.database_url:
        raise RuntimeError("BANHAMMER_DATABASE_URL is required for migration")

    PostgresBanStore(database_url=settings.database_url).apply_schema(schema_sql)
    logger.info("Applied schema from %s", SCHEMA_PATH.name)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
