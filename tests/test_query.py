import re
from datetime import datetime, timedelta

from app.logic.filters import FilterSpec, NumericRange, compile_filters
from app.logic.paths import QueryPath
from app.logic.query import ADS_HISTORY_DAYS, QueryBuilder
from app.logic.ranking import SortSpec

NOW = datetime(2024, 5, 1, 13, 20)


def _aliases(sql):
    return set(re.findall(r"\b([a-z]{1,2})\.[a-z_]+", sql))


def test_fast_candidate_query_reads_only_the_view():
    filters = compile_filters(FilterSpec(countries=("US",), revenue=NumericRange(1000, None)))
    query = QueryBuilder(QueryPath.FAST).candidate_query(filters, SortSpec(), limit=20, offset=40, now=NOW)
    assert "FROM shops_materialized m" in query.sql
    assert _aliases(query.sql) == {"m"}
    assert "latest_traffic" not in query.sql
    assert "deleted_at" not in query.sql
    assert "m.estimated_monthly" in query.sql
    assert query.sql.rstrip().endswith("LIMIT :limit OFFSET :offset")
    assert query.params["limit"] == 20
    assert query.params["offset"] == 40


def test_fast_path_uses_renamed_view_columns():
    filters = compile_filters(FilterSpec(active_ads=NumericRange(3, None)))
    query = QueryBuilder(QueryPath.FAST).candidate_query(filters, SortSpec("newest"), limit=10, offset=0, now=NOW)
    assert "m.active_ads_count >= :p1" in query.sql
    assert "ORDER BY m.whois_at DESC NULLS LAST, m.shop_id ASC" in query.sql
    assert "SELECT m.shop_id AS id" in query.sql


def test_slow_path_joins_traffic_only_when_needed():
    builder = QueryBuilder(QueryPath.SLOW)
    shop_only = compile_filters(FilterSpec(search="hex"))
    query = builder.candidate_query(shop_only, SortSpec("newest"), limit=10, offset=0, now=NOW)
    assert "latest_traffic" not in query.sql
    assert "s.deleted_at IS NULL" in query.sql

    sorted_by_traffic = builder.candidate_query(shop_only, SortSpec("traffic"), limit=10, offset=0, now=NOW)
    assert sorted_by_traffic.sql.startswith("WITH")
    assert "LEFT JOIN latest_traffic t ON t.shop_id = s.id" in sorted_by_traffic.sql

    traffic_filter = compile_filters(FilterSpec(search="hex", traffic=NumericRange(500, None)))
    counted = builder.count_query(traffic_filter)
    assert "latest_traffic" in counted.sql


def test_count_query_has_no_paging_or_order():
    filters = compile_filters(FilterSpec(currencies=("EUR",)))
    query = QueryBuilder(QueryPath.FAST).count_query(filters)
    assert "SELECT COUNT(*) AS total" in query.sql
    assert "LIMIT" not in query.sql
    assert "ORDER BY" not in query.sql
    assert query.params == {"p1": "EUR"}


def test_candidate_params_merge_filters_and_ranking():
    filters = compile_filters(FilterSpec(), sort_key="top_score")
    query = QueryBuilder(QueryPath.FAST).candidate_query(
        filters, SortSpec("top_score"), limit=20, offset=0, now=NOW
    )
    assert query.params["p1"] == 5
    assert query.params["rank_seed"] == "2024050113"
    assert ":rank_seed" in query.sql


def test_fast_enrichment_reads_flattened_columns():
    query = QueryBuilder(QueryPath.FAST).enrichment_query([3, 1, 2], viewer_id=7, now=NOW)
    assert "m.best_product_title" in query.sql
    assert "m.best_ad_2_video_link" in query.sql
    assert "WHERE m.shop_id IN" in query.sql
    assert "us.user_id = :viewer_id" in query.sql
    assert "{" not in query.sql
    assert query.params["ids"] == [3, 1, 2]
    assert query.params["viewer_id"] == 7
    assert query.params["history_since"] == NOW - timedelta(days=ADS_HISTORY_DAYS)
    assert "best_ads_limit" not in query.params


def test_slow_enrichment_builds_lookups():
    query = QueryBuilder(QueryPath.SLOW).enrichment_query([5], viewer_id=7, now=NOW)
    assert "bp.best_product" in query.sql
    assert "ba.best_ads" in query.sql
    assert "NOT ILIKE '%Protection%'" in query.sql
    assert "WHERE s.id IN" in query.sql
    assert query.params["best_ads_limit"] == 2
