"""Shop discovery: compile, plan, execute and normalize one listing request."""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Protocol, Sequence

from app.logic.count_cache import COUNT_CACHE, CountCache
from app.logic.filters import FilterSpec, compile_filters, parse_number
from app.logic.normalize import normalize_rows
from app.logic.paths import select_path
from app.logic.query import BuiltQuery, QueryBuilder
from app.logic.ranking import SortSpec
from app.utils.dates import utc_now

logger = logging.getLogger(__name__)

DEFAULT_PER_PAGE = int(os.environ.get("DEFAULT_PER_PAGE", 20))
MAX_PER_PAGE = int(os.environ.get("MAX_PER_PAGE", 100))


class ShopSource(Protocol):
    def fetch_ids(self, query: BuiltQuery) -> list[int]: ...

    def fetch_rows(self, query: BuiltQuery) -> list[dict[str, Any]]: ...

    def count(self, query: BuiltQuery) -> int: ...


@dataclass(frozen=True, slots=True)
class PageRequest:
    page: int = 1
    per_page: int = DEFAULT_PER_PAGE

    @classmethod
    def from_params(cls, params: Mapping[str, str]) -> "PageRequest":
        page = parse_number(params.get("page"), int) or 1
        per_page = parse_number(params.get("perPage"), int) or DEFAULT_PER_PAGE
        return cls(page=max(1, int(page)), per_page=min(max(1, int(per_page)), MAX_PER_PAGE))

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page


@dataclass(slots=True)
class ShopPage:
    shops: list[dict[str, Any]]
    page: int
    per_page: int
    total: int

    @property
    def total_pages(self) -> int:
        return -(-self.total // self.per_page)

    @property
    def has_more(self) -> bool:
        return self.page * self.per_page < self.total

    def pagination(self) -> dict[str, Any]:
        return {
            "page": self.page,
            "perPage": self.per_page,
            "total": self.total,
            "totalPages": self.total_pages,
            "hasMore": self.has_more,
        }


def _in_candidate_order(rows: Sequence[Mapping[str, Any]], ids: Sequence[int]) -> list[Mapping[str, Any]]:
    rank = {shop_id: index for index, shop_id in enumerate(ids)}
    return sorted(rows, key=lambda row: rank.get(int(row["id"]), len(rank)))


def search_shops(
    store: ShopSource,
    params: Mapping[str, str],
    viewer_id: int,
    *,
    cache: CountCache = COUNT_CACHE,
    now: datetime | None = None,
) -> ShopPage:
    started = time.perf_counter()
    moment = now or utc_now()
    spec = FilterSpec.from_params(params)
    sort = SortSpec.from_params(params)
    paging = PageRequest.from_params(params)
    filters = compile_filters(spec, sort_key=sort.key)
    path = select_path(spec)
    builder = QueryBuilder(path)

    candidates = builder.candidate_query(
        filters, sort, limit=paging.per_page, offset=paging.offset, now=moment
    )
    shop_ids = store.fetch_ids(candidates)
    rows: list[Mapping[str, Any]] = []
    if shop_ids:
        rows = _in_candidate_order(
            store.fetch_rows(builder.enrichment_query(shop_ids, viewer_id=viewer_id, now=moment)),
            shop_ids,
        )

    total = cache.get_or_compute(
        cache.make_key(filters),
        lambda: store.count(builder.count_query(filters)),
    )
    shops = [summary.as_payload() for summary in normalize_rows(rows, paging.page, paging.per_page)]
    logger.info(
        "Listed %d shops (path=%s sort=%s page=%d total=%d) in %.1fms",
        len(shops),
        path.value,
        sort.key,
        paging.page,
        total,
        (time.perf_counter() - started) * 1000,
    )
    return ShopPage(shops=shops, page=paging.page, per_page=paging.per_page, total=total)
