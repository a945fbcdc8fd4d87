"""Execution of built listing queries against the shop database."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from app.logic.query import BuiltQuery

logger = logging.getLogger(__name__)


class StoreUnavailableError(RuntimeError):
    pass


class ShopStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def ping(self) -> None:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            raise StoreUnavailableError("Shop database is unreachable") from exc

    def fetch_ids(self, query: BuiltQuery) -> list[int]:
        with self.engine.connect() as conn:
            return [int(row[0]) for row in conn.execute(query.statement, query.params)]

    def fetch_rows(self, query: BuiltQuery) -> list[dict[str, Any]]:
        with self.engine.connect() as conn:
            return [dict(row) for row in conn.execute(query.statement, query.params).mappings()]

    def count(self, query: BuiltQuery) -> int:
        with self.engine.connect() as conn:
            return int(conn.execute(query.statement, query.params).scalar() or 0)

    def toggle_tracking(self, viewer_id: int, shop_id: int) -> bool:
        """Flip the viewer's tracking row for a shop; return the new state."""
        params = {"user_id": viewer_id, "shop_id": shop_id}
        with self.engine.begin() as conn:
            existing = conn.execute(
                text("SELECT id FROM user_shops WHERE user_id = :user_id AND shop_id = :shop_id"),
                params,
            ).scalar()
            if existing is not None:
                conn.execute(text("DELETE FROM user_shops WHERE id = :id"), {"id": existing})
                logger.info("Viewer %s stopped tracking shop %s", viewer_id, shop_id)
                return False
            conn.execute(
                text(
                    """
                    INSERT INTO user_shops (user_id, shop_id, created_at)
                    VALUES (:user_id, :shop_id, CURRENT_TIMESTAMP)
                    """
                ),
                params,
            )
        logger.info("Viewer %s started tracking shop %s", viewer_id, shop_id)
        return True
