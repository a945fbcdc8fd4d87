from datetime import datetime, timedelta

import pytest

from app.logic.columns import ColumnResolver
from app.logic.paths import QueryPath
from app.logic.ranking import (
    DEFAULT_SORT,
    RANK_EXPRESSIONS,
    SortSpec,
    ROTATION_WEIGHT,
    freshness_bonus,
    order_by_clause,
    ranking_params,
    rotation_seed,
    rotation_term,
    sweet_spot_bonus,
)


def test_default_sort_is_recommended_descending():
    sort = SortSpec.from_params({})
    assert sort.key == DEFAULT_SORT == "recommended"
    assert sort.descending


def test_aliases_map_to_canonical_keys():
    assert SortSpec.from_params({"sortBy": "most_traffic"}).key == "traffic"
    assert SortSpec.from_params({"sortBy": "highest_revenue"}).key == "revenue"
    assert SortSpec.from_params({"sortBy": "most_recent"}).key == "newest"


def test_unknown_sort_falls_back():
    assert SortSpec.from_params({"sortBy": "price; DROP TABLE shops"}).key == "recommended"


def test_sort_order_asc():
    sort = SortSpec.from_params({"sortBy": "newest", "sortOrder": "ASC"})
    assert not sort.descending


def test_order_by_nulls_last_with_id_tiebreak():
    clause = order_by_clause(SortSpec("newest"), ColumnResolver(QueryPath.SLOW))
    assert clause == "ORDER BY s.created_at DESC NULLS LAST, s.id ASC"
    clause = order_by_clause(SortSpec("newest", descending=False), ColumnResolver(QueryPath.FAST))
    assert clause == "ORDER BY m.whois_at ASC NULLS LAST, m.shop_id ASC"


def test_traffic_usage_flags():
    assert RANK_EXPRESSIONS["traffic"].uses_traffic
    assert RANK_EXPRESSIONS["recommended"].uses_traffic
    assert not RANK_EXPRESSIONS["activeAds"].uses_traffic
    assert not RANK_EXPRESSIONS["newest"].uses_traffic


def test_recommended_formula_terms():
    sql = ColumnResolver(QueryPath.SLOW).render(RANK_EXPRESSIONS["recommended"].sql)
    assert "COALESCE(t.growth_rate, 0) * 0.3" in sql
    assert "COALESCE(s.active_ads, 0) * 10000" in sql
    assert "COALESCE(t.estimated_order, 0) * 0.1" in sql
    assert "MOD(s.id, 1000) * 5" in sql


def test_top_score_formula_terms():
    sql = ColumnResolver(QueryPath.FAST).render(RANK_EXPRESSIONS["top_score"].sql)
    assert "0.22 * LN(1 + GREATEST(COALESCE(m.active_ads_count, 0), 0))" in sql
    assert "BETWEEN 10 AND 30 THEN 0.12" in sql
    assert "HASHTEXT(COALESCE(m.shop_url, '') || :rank_seed)" in sql
    assert ":rank_now" in sql


def test_rotation_seed_is_stable_within_the_hour():
    assert rotation_seed(datetime(2024, 5, 1, 13, 5)) == "2024050113"
    assert rotation_seed(datetime(2024, 5, 1, 13, 59)) == "2024050113"
    assert rotation_seed(datetime(2024, 5, 1, 14, 0)) == "2024050114"


def test_ranking_params_only_for_top_score():
    assert ranking_params(SortSpec("recommended"), datetime(2024, 5, 1, 13, 5)) == {}
    params = ranking_params(SortSpec("top_score"), datetime(2024, 5, 1, 13, 5))
    assert params["rank_seed"] == "2024050113"
    assert params["rank_now"] == datetime(2024, 5, 1, 13, 0)


@pytest.mark.parametrize(
    "count, bonus",
    [(None, 0.0), (4, 0.0), (5, 0.06), (9, 0.06), (10, 0.12), (30, 0.12), (31, 0.04), (50, 0.04), (51, 0.0)],
)
def test_sweet_spot_band_edges(count, bonus):
    assert sweet_spot_bonus(count) == bonus


def test_freshness_is_capped_and_halves_every_90_days():
    now = datetime(2024, 5, 1, 13)
    assert freshness_bonus(now, now) == pytest.approx(0.06)
    assert freshness_bonus(now - timedelta(days=90), now) == pytest.approx(0.03)
    assert freshness_bonus(now - timedelta(days=180), now) == pytest.approx(0.015)
    assert freshness_bonus(now + timedelta(days=365 * 1000), now) == pytest.approx(0.06)
    assert freshness_bonus(datetime(1900, 1, 1), now) >= 0.0
    assert freshness_bonus(None, now) == 0.0


def test_freshness_sql_clamps_future_ages():
    sql = ColumnResolver(QueryPath.SLOW).render(RANK_EXPRESSIONS["top_score"].sql)
    assert "GREATEST(EXTRACT(EPOCH FROM (CAST(:rank_now AS timestamp) - s.created_at)) / 86400.0, 0)" in sql


def test_rotation_term_stays_in_bounds():
    values = []
    for shop in range(200):
        for hour in range(24):
            seed = rotation_seed(datetime(2024, 5, 1, hour, 30))
            values.append(rotation_term(f"www.shop{shop}.com", seed))
    assert all(0.0 <= value < ROTATION_WEIGHT for value in values)
    assert len(set(values)) > 100


def test_rotation_term_is_stable_within_the_hour():
    early = rotation_seed(datetime(2024, 5, 1, 13, 1))
    late = rotation_seed(datetime(2024, 5, 1, 13, 58))
    assert rotation_term("www.hexco.com", early) == rotation_term("www.hexco.com", late)
    assert rotation_term(None, early) == rotation_term("", early)
