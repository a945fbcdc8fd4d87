"""Ranking expressions for the shop listing."""

from __future__ import annotations

import math
import zlib
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

from app.logic.columns import ColumnResolver
from app.utils.dates import hour_bucket

DEFAULT_SORT = "recommended"

SORT_ALIASES = {
    "most_traffic": "traffic",
    "highest_revenue": "revenue",
    "most_active_ads": "activeAds",
    "most_recent": "newest",
    "traffic_growth": "trafficGrowth",
}

# (low, high, bonus) on products_count, first match wins.
SWEET_SPOT_BANDS = (
    (10, 30, 0.12),
    (5, 9, 0.06),
    (31, 50, 0.04),
)

FRESHNESS_CAP = 0.06
FRESHNESS_HALF_LIFE_DAYS = 90.0
ROTATION_WEIGHT = 0.05

WEIGHTS = {
    "top_score": {
        "growth": 0.25,
        "ads": 0.22,
        "orders": 0.18,
        "visits": 0.12,
    },
    "recommended": {
        "growth": 0.3,
        "ads": 10000,
        "orders": 0.1,
        "tiebreak": 5,
    },
}


def _ln1p(column: str) -> str:
    return f"LN(1 + GREATEST(COALESCE({column}, 0), 0))"


def _sweet_spot_case() -> str:
    branches = " ".join(
        f"WHEN COALESCE({{shop.products_count}}, 0) BETWEEN {low} AND {high} THEN {bonus}"
        for low, high, bonus in SWEET_SPOT_BANDS
    )
    return f"CASE {branches} ELSE 0 END"


def _freshness() -> str:
    age_days = "GREATEST(EXTRACT(EPOCH FROM (CAST(:rank_now AS timestamp) - {shop.created_at})) / 86400.0, 0)"
    decay = f"EXP(-LEAST(LN(2) * ({age_days}) / {FRESHNESS_HALF_LIFE_DAYS}, 50))"
    return f"COALESCE(LEAST({FRESHNESS_CAP}, {FRESHNESS_CAP} * {decay}), 0)"


def _rotation() -> str:
    return (
        "(MOD(ABS(CAST(HASHTEXT(COALESCE({shop.url}, '') || :rank_seed) AS bigint)), 1000) / 1000.0)"
        f" * {ROTATION_WEIGHT}"
    )


def _top_score() -> str:
    w = WEIGHTS["top_score"]
    return (
        f"({w['growth']} * COALESCE({{traffic.growth_rate}}, 0)"
        f" + {w['ads']} * {_ln1p('{shop.active_ads}')}"
        f" + {w['orders']} * {_ln1p('{traffic.estimated_order}')}"
        f" + {w['visits']} * {_ln1p('{traffic.last_month_visits}')}"
        f" + {_sweet_spot_case()}"
        f" + {_freshness()}"
        f" + {_rotation()})"
    )


def _recommended() -> str:
    w = WEIGHTS["recommended"]
    return (
        f"(COALESCE({{traffic.growth_rate}}, 0) * {w['growth']}"
        f" + COALESCE({{shop.active_ads}}, 0) * {w['ads']}"
        f" + COALESCE({{traffic.estimated_order}}, 0) * {w['orders']}"
        f" + MOD({{shop.id}}, 1000) * {w['tiebreak']})"
    )


@dataclass(frozen=True, slots=True)
class RankExpression:
    sql: str
    uses_traffic: bool


RANK_EXPRESSIONS: dict[str, RankExpression] = {
    "traffic": RankExpression("COALESCE({traffic.last_month_visits}, 0)", True),
    "revenue": RankExpression("COALESCE({traffic.estimated_monthly}, 0)", True),
    "activeAds": RankExpression("COALESCE({shop.active_ads}, 0)", False),
    "newest": RankExpression("{shop.created_at}", False),
    "trafficGrowth": RankExpression("COALESCE({traffic.growth_rate}, 0)", True),
    "productsCount": RankExpression("COALESCE({shop.products_count}, 0)", False),
    "top_score": RankExpression(_top_score(), True),
    "recommended": RankExpression(_recommended(), True),
}


@dataclass(frozen=True, slots=True)
class SortSpec:
    key: str = DEFAULT_SORT
    descending: bool = True

    @classmethod
    def from_params(cls, params: Mapping[str, str]) -> "SortSpec":
        raw = (params.get("sortBy") or DEFAULT_SORT).strip()
        key = SORT_ALIASES.get(raw, raw)
        if key not in RANK_EXPRESSIONS:
            key = DEFAULT_SORT
        order = (params.get("sortOrder") or "desc").strip().lower()
        return cls(key=key, descending=order != "asc")

    @property
    def expression(self) -> RankExpression:
        return RANK_EXPRESSIONS[self.key]

    @property
    def uses_traffic(self) -> bool:
        return self.expression.uses_traffic


def order_by_clause(sort: SortSpec, columns: ColumnResolver) -> str:
    direction = "DESC" if sort.descending else "ASC"
    expression = columns.render(sort.expression.sql)
    tiebreak = columns.render("{shop.id}")
    return f"ORDER BY {expression} {direction} NULLS LAST, {tiebreak} ASC"


def rotation_seed(moment: datetime | None = None) -> str:
    """``YYYYMMDDHH`` of the UTC hour; the rotation term changes only when this does."""
    return hour_bucket(moment).format("YYYYMMDDHH")


def ranking_params(sort: SortSpec, moment: datetime | None = None) -> dict[str, Any]:
    if sort.key != "top_score":
        return {}
    bucket = hour_bucket(moment)
    return {"rank_seed": rotation_seed(bucket), "rank_now": bucket.naive()}


def sweet_spot_bonus(products_count: int | None) -> float:
    count = products_count or 0
    for low, high, bonus in SWEET_SPOT_BANDS:
        if low <= count <= high:
            return bonus
    return 0.0


def freshness_bonus(created_at: datetime | None, now: datetime) -> float:
    """Capped exponential decay on shop age; future dates count as brand new."""
    if created_at is None:
        return 0.0
    age_days = max((now - created_at).total_seconds() / 86400.0, 0.0)
    decay = math.exp(-min(math.log(2) * age_days / FRESHNESS_HALF_LIFE_DAYS, 50))
    return min(FRESHNESS_CAP, FRESHNESS_CAP * decay)


def rotation_term(url: str | None, seed: str) -> float:
    """Per-hour jitter in ``[0, ROTATION_WEIGHT)``.

    Postgres buckets ``HASHTEXT``; this uses CRC32 over the same input, so the
    bounds and hourly stability match but individual values do not.
    """
    digest = zlib.crc32(f"{url or ''}{seed}".encode("utf-8"))
    return (digest % 1000) / 1000.0 * ROTATION_WEIGHT
