"""Apply schema.sql: base tables, indexes and the fast-path materialized view."""

from __future__ import annotations

import logging
import pathlib
import sys
from typing import Iterable

from dotenv import load_dotenv
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from app.db.session import create_engine_from_env

logger = logging.getLogger(__name__)

SCHEMA_PATH = pathlib.Path(__file__).with_name("schema.sql")


def run_migrations(engine: Engine, path: pathlib.Path = SCHEMA_PATH) -> int:
    """Execute every statement in one transaction; return how many ran."""
    statements = list(load_statements(path.read_text()))
    with engine.begin() as conn:
        for stmt in statements:
            conn.execute(text(stmt))
    logger.info("Applied %d schema statements from %s", len(statements), path.name)
    return len(statements)


def load_statements(sql: str) -> Iterable[str]:
    """Split on lines ending with ``;``; statements may span many lines."""
    buffer: list[str] = []
    for line in sql.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("--"):
            continue
        buffer.append(line)
        if stripped.endswith(";"):
            yield "\n".join(buffer)
            buffer.clear()
    if buffer:
        yield "\n".join(buffer)


def main() -> None:
    load_dotenv()
    logging.basicConfig(level=logging.INFO)
    try:
        run_migrations(create_engine_from_env())
    except SQLAlchemyError as exc:
        logger.error("Migration failed: %s", exc)
        sys.exit(2)


if __name__ == "__main__":
    main()
