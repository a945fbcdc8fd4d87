"""Logical to physical column mapping for both query paths."""

from __future__ import annotations

import os
import re

from sqlalchemy import inspect
from sqlalchemy.engine import Engine

from app.logic.paths import QueryPath

SHOP_VIEW_NAME = os.environ.get("SHOP_VIEW_NAME", "shops_materialized")

SLOW_ALIASES = {"shop": "s", "traffic": "t"}
VIEW_ALIAS = "m"

# Columns whose name differs on the view. Keep in lock-step with schema.sql.
VIEW_COLUMN_MAP: dict[tuple[str, str], str] = {
    ("shop", "id"): "shop_id",
    ("shop", "url"): "shop_url",
    ("shop", "active_ads"): "active_ads_count",
    ("shop", "created_at"): "whois_at",
    ("traffic", "countries"): "traffic_countries",
}

# Columns read from the view under their base-table name.
VIEW_PASSTHROUGH_COLUMNS = frozenset(
    {
        "merchant_name",
        "screenshot",
        "country",
        "currency",
        "locale",
        "products_count",
        "last_month_visits",
        "last_last_month_visits",
        "estimated_monthly",
        "estimated_order",
        "growth_rate",
        "avg_price",
        "visits",
        "dates",
    }
)

VIEW_BEST_PRODUCT_COLUMNS = (
    "best_product_id",
    "best_product_title",
    "best_product_handle",
    "best_product_price",
    "best_product_image",
)

VIEW_BEST_AD_FIELDS = ("id", "type", "video_link", "video_preview_link", "image_link")
VIEW_BEST_AD_SLOTS = 2
VIEW_BEST_AD_COLUMNS = tuple(
    f"best_ad_{slot}_{name}" for slot in range(1, VIEW_BEST_AD_SLOTS + 1) for name in VIEW_BEST_AD_FIELDS
)

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class ViewSchemaError(RuntimeError):
    pass


def required_view_columns() -> set[str]:
    return (
        set(VIEW_COLUMN_MAP.values())
        | VIEW_PASSTHROUGH_COLUMNS
        | set(VIEW_BEST_PRODUCT_COLUMNS)
        | set(VIEW_BEST_AD_COLUMNS)
    )


def view_name() -> str:
    if not _IDENTIFIER_RE.match(SHOP_VIEW_NAME):
        raise ViewSchemaError(f"Invalid view name: {SHOP_VIEW_NAME!r}")
    return SHOP_VIEW_NAME


def validate_view_columns(engine: Engine) -> None:
    """Fail when the view is missing any column the fast path reads."""
    name = view_name()
    inspector = inspect(engine)
    actual = {column["name"] for column in inspector.get_columns(name)}
    missing = required_view_columns() - actual
    if missing:
        raise ViewSchemaError(f"{name} is missing columns: {', '.join(sorted(missing))}")


class _Table:
    __slots__ = ("_table", "_resolver")

    def __init__(self, table: str, resolver: "ColumnResolver") -> None:
        self._table = table
        self._resolver = resolver

    def __getattr__(self, name: str) -> str:
        return self._resolver.column(self._table, name)


class ColumnResolver:
    """Render logical ``{shop.x}`` / ``{traffic.x}`` references for a path."""

    def __init__(self, path: QueryPath) -> None:
        self.path = path

    def column(self, table: str, name: str) -> str:
        if self.path is QueryPath.SLOW:
            return f"{SLOW_ALIASES[table]}.{name}"
        return f"{VIEW_ALIAS}.{VIEW_COLUMN_MAP.get((table, name), name)}"

    def render(self, template: str) -> str:
        return template.format(shop=_Table("shop", self), traffic=_Table("traffic", self))
