"""Database engine helpers."""

from __future__ import annotations

import os
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine


DEFAULT_DATABASE_URL = "postgresql://user:pass@db:5432/shops"
STATEMENT_TIMEOUT_MS = int(os.environ.get("STATEMENT_TIMEOUT_MS", 15000))


def create_engine_from_env() -> Engine:
    """Create an engine using the DATABASE_URL environment variable.

    Postgres connections get a server-side statement timeout; the listing
    queries do not enforce one themselves.
    """
    url = os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)
    connect_args: dict[str, Any] = {}
    if url.startswith("postgresql") and STATEMENT_TIMEOUT_MS > 0:
        connect_args["options"] = f"-c statement_timeout={STATEMENT_TIMEOUT_MS}"
    return create_engine(url, pool_pre_ping=True, future=True, connect_args=connect_args)
