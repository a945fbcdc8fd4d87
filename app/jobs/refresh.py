"""Materialized view refresh job."""

from __future__ import annotations

import logging
import time

from dotenv import load_dotenv
from sqlalchemy import text
from sqlalchemy.engine import Engine

from app.db.session import create_engine_from_env
from app.logic.columns import validate_view_columns, view_name

logger = logging.getLogger(__name__)


def refresh_shop_view(engine: Engine) -> None:
    """Rebuild the fast-path view without blocking readers, then recheck its columns."""
    name = view_name()
    started = time.perf_counter()
    with engine.connect().execution_options(isolation_level="AUTOCOMMIT") as conn:
        conn.execute(text(f"REFRESH MATERIALIZED VIEW CONCURRENTLY {name}"))
    logger.info("Refreshed %s in %.1fs", name, time.perf_counter() - started)
    validate_view_columns(engine)


def run_refresh() -> None:
    load_dotenv()
    refresh_shop_view(create_engine_from_env())


if __name__ == "__main__":
    run_refresh()
