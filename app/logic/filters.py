"""Compile shop listing filters into parameterized SQL predicates."""

from __future__ import annotations

import itertools
import logging
import math
import pathlib
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Sequence

import yaml

from app.utils.dates import parse_us_date

logger = logging.getLogger(__name__)

REFERENCE_PATH = pathlib.Path(__file__).with_name("reference.yml")

SHOP_SCOPE = "shop"
TRAFFIC_SCOPE = "traffic"

TOP_SCORE_MIN_ACTIVE_ADS = 5

LIKE_ESCAPE = "\\"


def _load_reference() -> dict[str, dict[str, list[str]]]:
    data = yaml.safe_load(REFERENCE_PATH.read_text())
    return {
        section: {name: [str(code) for code in codes] for name, codes in entries.items()}
        for section, entries in data.items()
    }


_REFERENCE = _load_reference()
LANGUAGE_LOCALES: dict[str, list[str]] = _REFERENCE["languages"]
SOCIAL_NETWORK_KEYS: dict[str, list[str]] = _REFERENCE["social_networks"]


@dataclass(frozen=True, slots=True)
class NumericRange:
    minimum: float | None = None
    maximum: float | None = None

    def __bool__(self) -> bool:
        return self.minimum is not None or self.maximum is not None


@dataclass(frozen=True, slots=True)
class FilterSpec:
    """Filters requested for one listing call."""

    search: str = ""
    products: NumericRange = NumericRange()
    catalog_size: NumericRange = NumericRange()
    active_ads: NumericRange = NumericRange()
    revenue: NumericRange = NumericRange()
    traffic: NumericRange = NumericRange()
    traffic_growth: NumericRange = NumericRange()
    orders: NumericRange = NumericRange()
    price: NumericRange = NumericRange()
    currencies: tuple[str, ...] = ()
    countries: tuple[str, ...] = ()
    categories: tuple[str, ...] = ()
    origins: tuple[str, ...] = ()
    pixels: tuple[str, ...] = ()
    languages: tuple[str, ...] = ()
    domains: tuple[str, ...] = ()
    themes: tuple[str, ...] = ()
    applications: tuple[str, ...] = ()
    social_networks: tuple[str, ...] = ()
    shop_creation_date: str = ""

    @classmethod
    def from_params(cls, params: Mapping[str, str]) -> "FilterSpec":
        return cls(
            search=(params.get("search") or "").strip(),
            products=_range(params, "Products", int),
            catalog_size=_range(params, "CatalogSize", int),
            active_ads=_range(params, "ActiveAds", int),
            revenue=_range(params, "Revenue", int),
            traffic=_range(params, "Traffic", int),
            traffic_growth=_range(params, "TrafficGrowth", int),
            orders=_range(params, "Orders", int),
            price=_range(params, "Price", float),
            currencies=split_list(params.get("currency")),
            countries=split_list(params.get("country")),
            categories=split_list(params.get("category")),
            origins=split_list(params.get("origins")),
            pixels=split_list(params.get("pixels")),
            languages=split_list(params.get("languages")),
            domains=split_list(params.get("domains")),
            themes=split_list(params.get("themes")),
            applications=split_list(params.get("applications") or params.get("apps")),
            social_networks=split_list(params.get("socialNetworks")),
            shop_creation_date=(params.get("shopCreationDate") or "").strip(),
        )


@dataclass(frozen=True, slots=True)
class Predicate:
    """One WHERE fragment with its bound values.

    ``sql`` references columns logically (``{shop.active_ads}``) so the same
    predicate renders against the live tables or the materialized view.
    """

    sql: str
    params: dict[str, Any] = field(default_factory=dict)
    scope: str = SHOP_SCOPE
    view_clean: bool = False


@dataclass(frozen=True, slots=True)
class CompiledFilters:
    shop_predicates: tuple[Predicate, ...]
    traffic_predicates: tuple[Predicate, ...]

    @property
    def predicates(self) -> tuple[Predicate, ...]:
        return self.shop_predicates + self.traffic_predicates

    @property
    def params(self) -> dict[str, Any]:
        merged: dict[str, Any] = {}
        for predicate in self.predicates:
            merged.update(predicate.params)
        return merged


def split_list(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def parse_number(raw: str | None, kind: Callable[[Any], Any] = int) -> float | int | None:
    """Parse a query parameter, treating anything unusable as absent."""
    if raw is None or not str(raw).strip():
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value):
        return None
    return int(value) if kind is int else value


def _range(params: Mapping[str, str], suffix: str, kind: Callable[[Any], Any]) -> NumericRange:
    return NumericRange(
        minimum=parse_number(params.get(f"min{suffix}"), kind),
        maximum=parse_number(params.get(f"max{suffix}"), kind),
    )


def escape_like(value: str) -> str:
    """Make ``%`` and ``_`` in caller text match literally inside an ILIKE pattern."""
    return (
        value.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


def _ilike(column: str, name: str) -> str:
    return f"{column} ILIKE :{name} ESCAPE '{LIKE_ESCAPE}'"


def expand_languages(languages: Iterable[str]) -> list[str]:
    codes: list[str] = []
    for language in languages:
        codes.extend(LANGUAGE_LOCALES.get(language) or [language.lower()[:2]])
    return codes


def social_network_keys(networks: Iterable[str]) -> list[list[str]]:
    return [SOCIAL_NETWORK_KEYS.get(network) or [network] for network in networks]


def parse_date_range(raw: str) -> tuple[Any, Any]:
    """Split ``MM/DD/YYYY - MM/DD/YYYY``; unparsable bounds come back as None.

    The end bound is exclusive and points at the day after the requested end
    date so the whole end day is included.
    """
    parts = raw.split("-")
    if len(parts) != 2:
        return None, None
    start = parse_us_date(parts[0])
    end = parse_us_date(parts[1])
    return start, end.add(days=1) if end is not None else None


class FilterCompiler:
    """Translate a :class:`FilterSpec` into shop-level and traffic-level predicates.

    Bind names are allocated contiguously (``p1``, ``p2``, ...) in the order
    the filters are visited below, so identical specs always compile to
    identical SQL and parameters.
    """

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self._shop: list[Predicate] = []
        self._traffic: list[Predicate] = []

    def compile(self, spec: FilterSpec, *, sort_key: str | None = None) -> CompiledFilters:
        self._base()
        if spec.search:
            name = self._name()
            self._add(
                f"({_ilike('{shop.url}', name)} OR {_ilike('{shop.merchant_name}', name)})",
                {name: f"%{escape_like(spec.search)}%"},
            )
        self._between("{shop.products_count}", spec.products)
        self._between("{shop.products_count}", spec.catalog_size)
        self._between("{shop.active_ads}", spec.active_ads)
        self._any_of("{shop.currency}", spec.currencies)
        self._any_of("{shop.country}", spec.countries)
        self._any_of("{shop.country}", spec.origins)
        self._ilike_any("{shop.pixels}", [f"%{escape_like(pixel)}%" for pixel in spec.pixels])
        self._ilike_any("{shop.locale}", [f"{escape_like(code)}%" for code in expand_languages(spec.languages)])
        self._ilike_any("{shop.url}", [f"%{escape_like(domain)}" for domain in spec.domains])
        self._ilike_any("{shop.theme}", [f"%{escape_like(theme)}%" for theme in spec.themes])
        self._ilike_any("{shop.apps}", [f"%{escape_like(app)}%" for app in spec.applications])
        if spec.shop_creation_date:
            self._created_between(spec.shop_creation_date)
        if sort_key == "top_score":
            name = self._name()
            self._add(
                f"COALESCE({{shop.active_ads}}, 0) >= :{name}",
                {name: TOP_SCORE_MIN_ACTIVE_ADS},
            )

        self._between("COALESCE({traffic.estimated_monthly}, 0)", spec.revenue, scope=TRAFFIC_SCOPE)
        self._between("COALESCE({traffic.last_month_visits}, 0)", spec.traffic, scope=TRAFFIC_SCOPE)
        self._between("COALESCE({traffic.growth_rate}, 0)", spec.traffic_growth, scope=TRAFFIC_SCOPE)
        self._between("COALESCE({traffic.estimated_order}, 0)", spec.orders, scope=TRAFFIC_SCOPE)
        self._between("COALESCE({traffic.avg_price}, 0)", spec.price, scope=TRAFFIC_SCOPE)
        if spec.social_networks:
            self._social(spec.social_networks)

        return CompiledFilters(tuple(self._shop), tuple(self._traffic))

    def _name(self) -> str:
        return f"p{next(self._counter)}"

    def _add(self, sql: str, params: dict[str, Any] | None = None, *, scope: str = SHOP_SCOPE, view_clean: bool = False) -> None:
        predicate = Predicate(sql=sql, params=params or {}, scope=scope, view_clean=view_clean)
        (self._traffic if scope == TRAFFIC_SCOPE else self._shop).append(predicate)

    def _base(self) -> None:
        self._add("{shop.deleted_at} IS NULL", view_clean=True)
        self._add("{shop.disabled} = FALSE", view_clean=True)
        self._add("{shop.products_count} > 0")

    def _between(self, column: str, bounds: NumericRange, *, scope: str = SHOP_SCOPE) -> None:
        if bounds.minimum is not None:
            name = self._name()
            self._add(f"{column} >= :{name}", {name: bounds.minimum}, scope=scope)
        if bounds.maximum is not None:
            name = self._name()
            self._add(f"{column} <= :{name}", {name: bounds.maximum}, scope=scope)

    def _any_of(self, column: str, values: Sequence[str]) -> None:
        if not values:
            return
        names = [self._name() for _ in values]
        placeholders = ", ".join(f":{name}" for name in names)
        self._add(f"{column} IN ({placeholders})", dict(zip(names, values)))

    def _ilike_any(self, column: str, patterns: Sequence[str]) -> None:
        if not patterns:
            return
        names = [self._name() for _ in patterns]
        clauses = " OR ".join(_ilike(column, name) for name in names)
        self._add(f"({clauses})", dict(zip(names, patterns)))

    def _created_between(self, raw: str) -> None:
        start, end = parse_date_range(raw)
        if start is None and end is None:
            logger.debug("Ignoring unparsable shop creation range %r", raw)
        if start is not None:
            name = self._name()
            self._add(f"{{shop.created_at}} >= :{name}", {name: start})
        if end is not None:
            name = self._name()
            self._add(f"{{shop.created_at}} < :{name}", {name: end})

    def _social(self, networks: Sequence[str]) -> None:
        clauses: list[str] = []
        params: dict[str, Any] = {}
        for keys in social_network_keys(networks):
            names = [self._name() for _ in keys]
            params.update(zip(names, keys))
            key_clauses = " OR ".join(
                f"jsonb_exists(CAST({{traffic.social}} AS jsonb) -> 'data', :{name})" for name in names
            )
            clauses.append(f"({key_clauses})")
        self._add(f"({' OR '.join(clauses)})", params, scope=TRAFFIC_SCOPE)


def compile_filters(spec: FilterSpec, *, sort_key: str | None = None) -> CompiledFilters:
    return FilterCompiler().compile(spec, sort_key=sort_key)
