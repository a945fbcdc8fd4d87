"""Two-phase SQL for the shop listing.

Phase one filters, sorts and paginates over searchable columns only and
returns the page's shop ids. Phase two joins those ids, and nothing else,
against the per-shop lookups (best product, best ads, ads history, latest
traffic, tracking flag).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Sequence

from sqlalchemy import bindparam, text
from sqlalchemy.sql.elements import TextClause

from app.logic.columns import (
    VIEW_BEST_AD_COLUMNS,
    VIEW_BEST_PRODUCT_COLUMNS,
    ColumnResolver,
    view_name,
)
from app.logic.filters import CompiledFilters, Predicate
from app.logic.paths import QueryPath
from app.logic.ranking import SortSpec, order_by_clause, ranking_params
from app.utils.dates import utc_now

ADS_HISTORY_DAYS = 90
BEST_ADS_LIMIT = 2

LATEST_TRAFFIC_CTE = """
    latest_traffic AS (
        SELECT DISTINCT ON (shop_id)
            shop_id, last_month_visits, estimated_monthly, estimated_order,
            growth_rate, avg_price, social
        FROM traffic
        ORDER BY shop_id, created_at DESC
    )
"""

SUMMARY_COLUMNS = """
    {shop.id} AS id,
    {shop.url} AS url,
    {shop.merchant_name} AS merchant_name,
    {shop.screenshot} AS screenshot,
    {shop.country} AS country,
    {shop.currency} AS currency,
    {shop.products_count} AS products_count,
    {shop.active_ads} AS active_ads,
    {shop.created_at} AS whois_at,
    {traffic.last_month_visits} AS last_month_visits,
    {traffic.last_last_month_visits} AS last_last_month_visits,
    {traffic.estimated_monthly} AS estimated_monthly,
    {traffic.estimated_order} AS estimated_order,
    {traffic.growth_rate} AS growth_rate,
    {traffic.visits} AS visits,
    {traffic.dates} AS dates,
    {traffic.countries} AS traffic_countries
"""

LATEST_TRAFFIC_LATERAL = """
    LEFT JOIN LATERAL (
        SELECT last_month_visits, last_last_month_visits, estimated_monthly,
               estimated_order, growth_rate, visits, dates, countries
        FROM traffic
        WHERE shop_id = s.id
        ORDER BY created_at DESC
        LIMIT 1
    ) t ON true
"""

BEST_PRODUCT_LATERAL = """
    LEFT JOIN LATERAL (
        SELECT jsonb_build_object(
            'id', p.id,
            'title', p.title,
            'handle', p.handle,
            'price', pv.min_price,
            'image', pi.src
        ) AS best_product
        FROM products p
        LEFT JOIN LATERAL (
            SELECT MIN(price) AS min_price FROM product_variants WHERE product_id = p.id
        ) pv ON true
        LEFT JOIN LATERAL (
            SELECT src FROM product_images WHERE product_id = p.id ORDER BY position LIMIT 1
        ) pi ON true
        WHERE p.shop_id = s.id
          AND p.handle IS NOT NULL
          AND p.title NOT ILIKE '%Protection%'
          AND p.title NOT ILIKE '%Shipping%'
        ORDER BY p.sort, p.id
        LIMIT 1
    ) bp ON true
"""

BEST_ADS_LATERAL = """
    LEFT JOIN LATERAL (
        SELECT jsonb_agg(
            jsonb_build_object(
                'id', a.id,
                'type', a.type,
                'video_link', a.video_link,
                'video_preview_link', a.video_preview_link,
                'image_link', a.image_link
            )
        ) AS best_ads
        FROM (
            SELECT id, type, video_link, video_preview_link, image_link
            FROM ads
            WHERE shop_id = s.id
              AND is_active = TRUE
              AND video_link IS NOT NULL
            ORDER BY start_date DESC
            LIMIT :best_ads_limit
        ) a
    ) ba ON true
"""

ADS_HISTORY_LATERAL = """
    LEFT JOIN LATERAL (
        SELECT jsonb_agg(
            jsonb_build_object('active_ads_count', h.active_ads_count, 'date', h.created_at)
            ORDER BY h.created_at
        ) AS ads_history
        FROM shops_ads_active_history h
        WHERE h.shop_id = {shop.id}
          AND h.created_at >= :history_since
    ) ah ON true
"""

TRACKING_JOIN = """
    LEFT JOIN user_shops us ON us.shop_id = {shop.id} AND us.user_id = :viewer_id
"""


@dataclass(slots=True)
class BuiltQuery:
    statement: TextClause
    params: dict[str, Any] = field(default_factory=dict)

    @property
    def sql(self) -> str:
        return self.statement.text


def _where(predicates: Sequence[Predicate], columns: ColumnResolver) -> str:
    if not predicates:
        return ""
    return "WHERE " + "\n      AND ".join(columns.render(p.sql) for p in predicates)


class QueryBuilder:
    """Assemble the candidate, enrichment and count statements for one path."""

    def __init__(self, path: QueryPath) -> None:
        self.path = path
        self.columns = ColumnResolver(path)

    def _predicates(self, filters: CompiledFilters) -> list[Predicate]:
        if self.path is QueryPath.FAST:
            return [p for p in filters.predicates if not p.view_clean]
        return list(filters.predicates)

    def _source(self, filters: CompiledFilters, *, needs_traffic: bool) -> tuple[str, str]:
        """Return ``(with_clause, from_clause)`` for candidate and count queries."""
        if self.path is QueryPath.FAST:
            return "", f"FROM {view_name()} m"
        if needs_traffic or filters.traffic_predicates:
            return (
                f"WITH {LATEST_TRAFFIC_CTE.strip()}",
                "FROM shops s\nLEFT JOIN latest_traffic t ON t.shop_id = s.id",
            )
        return "", "FROM shops s"

    def candidate_query(
        self,
        filters: CompiledFilters,
        sort: SortSpec,
        *,
        limit: int,
        offset: int,
        now: datetime | None = None,
    ) -> BuiltQuery:
        with_clause, from_clause = self._source(filters, needs_traffic=sort.uses_traffic)
        sql = "\n".join(
            part
            for part in (
                with_clause,
                f"SELECT {self.columns.render('{shop.id}')} AS id",
                from_clause,
                _where(self._predicates(filters), self.columns),
                order_by_clause(sort, self.columns),
                "LIMIT :limit OFFSET :offset",
            )
            if part
        )
        params = {**filters.params, **ranking_params(sort, now), "limit": limit, "offset": offset}
        return BuiltQuery(text(sql), params)

    def count_query(self, filters: CompiledFilters) -> BuiltQuery:
        with_clause, from_clause = self._source(filters, needs_traffic=False)
        sql = "\n".join(
            part
            for part in (
                with_clause,
                "SELECT COUNT(*) AS total",
                from_clause,
                _where(self._predicates(filters), self.columns),
            )
            if part
        )
        return BuiltQuery(text(sql), dict(filters.params))

    def enrichment_query(
        self,
        shop_ids: Sequence[int],
        *,
        viewer_id: int,
        now: datetime | None = None,
    ) -> BuiltQuery:
        moment = now or utc_now()
        history_since = moment - timedelta(days=ADS_HISTORY_DAYS)
        params: dict[str, Any] = {
            "ids": list(shop_ids),
            "viewer_id": viewer_id,
            "history_since": history_since,
        }
        if self.path is QueryPath.FAST:
            flattened = ",\n    ".join(f"m.{name}" for name in VIEW_BEST_PRODUCT_COLUMNS + VIEW_BEST_AD_COLUMNS)
            select = f"SELECT {SUMMARY_COLUMNS.strip()},\n    {flattened}"
            joins = [f"FROM {view_name()} m", ADS_HISTORY_LATERAL, TRACKING_JOIN]
        else:
            select = f"SELECT {SUMMARY_COLUMNS.strip()},\n    bp.best_product,\n    ba.best_ads"
            joins = [
                "FROM shops s",
                LATEST_TRAFFIC_LATERAL,
                BEST_PRODUCT_LATERAL,
                BEST_ADS_LATERAL,
                ADS_HISTORY_LATERAL,
                TRACKING_JOIN,
            ]
            params["best_ads_limit"] = BEST_ADS_LIMIT
        sql = "\n".join(
            [
                select + ",\n    ah.ads_history,\n    (us.shop_id IS NOT NULL) AS is_tracked",
                *(join.strip() for join in joins),
                "WHERE {shop.id} IN :ids",
            ]
        )
        statement = text(self.columns.render(sql)).bindparams(bindparam("ids", expanding=True))
        return BuiltQuery(statement, params)
