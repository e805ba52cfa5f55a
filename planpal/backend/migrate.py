"""Apply SQL schema for local PostgreSQL setup."""

from __future__ import annotations

import logging
from pathlib import Path

from planpal.backend.config import load_settings
from planpal.backend.logging_config import setup_logging

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).with_name("db_schema.sql")


def main() -> None:
    settings = load_settings()
    setup_logging(level=settings.log_level, log_file=settings.log_file)
    if not settings.database_url:
        raise RuntimeError("PLANPAL_DATABASE_URL is required for migration")

    import psycopg

    schema_sql = SCHEMA_PATH.read_text(encoding="utf-8")

    with psycopg.connect(settings.database_url) as conn:
        with conn.cursor() as cur:
            cur.execute(schema_sql)
        conn.commit()
    logger.info("Applied schema from %s", SCHEMA_PATH.name)


if __name__ == "__main__":
    main()
