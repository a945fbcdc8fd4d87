"""Map raw listing rows from either query path onto one summary shape."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable, Mapping, Sequence

from app.logic.columns import VIEW_BEST_AD_FIELDS, VIEW_BEST_AD_SLOTS
from app.logic.signals import ads_change, corrected_growth_rate, parse_series

MARKET_COUNTRY_LIMIT = 3
COUNTRY_CODE_KEYS = ("CountryCode", "country", "code")
COUNTRY_SHARE_KEYS = ("Value", "share", "value")


@dataclass(slots=True)
class MarketCountry:
    code: str
    share: int


@dataclass(slots=True)
class BestProduct:
    id: int | None
    name: str | None
    handle: str | None
    price: float
    image: str | None
    currency: str


@dataclass(slots=True)
class BestAd:
    id: int | None
    type: str | None
    video_link: str | None
    video_preview_link: str | None
    image_link: str | None

    def as_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "videoLink": self.video_link,
            "videoPreviewLink": self.video_preview_link,
            "imageLink": self.image_link,
        }


@dataclass(slots=True)
class ShopSummary:
    id: int
    position: int
    url: str | None
    name: str | None
    screenshot: str | None
    country: str | None
    currency: str
    products_count: int
    active_ads: int
    ads_change: int
    ads_history: list[int]
    monthly_visits: int
    traffic_change: int
    traffic_growth: float
    traffic_data: list[int]
    traffic_dates: list[str]
    estimated_monthly: float
    market_countries: list[MarketCountry] = field(default_factory=list)
    best_product: BestProduct | None = None
    best_ads: list[BestAd] = field(default_factory=list)
    is_tracked: bool = False
    created_at: str | None = None

    @property
    def daily_revenue(self) -> int:
        return _round_half_up(self.estimated_monthly / 30)

    def as_payload(self) -> dict[str, Any]:
        product = self.best_product
        return {
            "id": self.id,
            "position": self.position,
            "url": self.url,
            "name": self.name,
            "screenshot": self.screenshot,
            "country": self.country,
            "currency": self.currency,
            "productsCount": self.products_count,
            "activeAds": self.active_ads,
            "adsChange": self.ads_change,
            "adsHistoryData": self.ads_history,
            "monthlyVisits": self.monthly_visits,
            "trafficChange": self.traffic_change,
            "trafficGrowth": self.traffic_growth,
            "trafficData": self.traffic_data,
            "trafficDates": self.traffic_dates,
            "estimatedMonthly": self.estimated_monthly,
            "dailyRevenue": self.daily_revenue,
            "marketCountries": [{"code": c.code, "share": c.share} for c in self.market_countries],
            "bestProduct": None
            if product is None
            else {
                "id": product.id,
                "name": product.name,
                "handle": product.handle,
                "price": product.price,
                "image": product.image,
                "currency": product.currency,
            },
            "bestAds": [ad.as_payload() for ad in self.best_ads],
            "isTracked": self.is_tracked,
            "createdAt": self.created_at,
        }


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _float(value: Any) -> float:
    try:
        result = float(value or 0)
    except (TypeError, ValueError):
        return 0.0
    return result if math.isfinite(result) else 0.0


def _json(value: Any) -> Any:
    if isinstance(value, (str, bytes, bytearray)):
        return json.loads(value)
    return value


def _first(entry: Mapping[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        if entry.get(key):
            return entry[key]
    return None


def _timestamp(value: Any) -> str | None:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def market_countries(raw: Any, limit: int = MARKET_COUNTRY_LIMIT) -> list[MarketCountry]:
    """Top entries of a traffic share document, as whole percentages.

    Malformed documents yield an empty list.
    """
    if not raw:
        return []
    try:
        data = _json(raw)
    except ValueError:
        return []
    if not isinstance(data, list):
        return []
    countries: list[MarketCountry] = []
    for entry in data[:limit]:
        if not isinstance(entry, Mapping):
            continue
        code = _first(entry, COUNTRY_CODE_KEYS)
        if not code:
            continue
        countries.append(MarketCountry(code=str(code), share=_round_half_up(_float(_first(entry, COUNTRY_SHARE_KEYS)) * 100)))
    return countries


def ads_history(raw: Any) -> list[int]:
    try:
        points = _json(raw) or []
    except ValueError:
        return []
    return [_int(point.get("active_ads_count")) for point in points if isinstance(point, Mapping)]


def best_product(row: Mapping[str, Any], currency: str) -> BestProduct | None:
    structured = _json(row.get("best_product"))
    if isinstance(structured, Mapping):
        source = {
            "id": structured.get("id"),
            "title": structured.get("title"),
            "handle": structured.get("handle"),
            "price": structured.get("price"),
            "image": structured.get("image"),
        }
    elif row.get("best_product_id") is not None:
        source = {
            "id": row.get("best_product_id"),
            "title": row.get("best_product_title"),
            "handle": row.get("best_product_handle"),
            "price": row.get("best_product_price"),
            "image": row.get("best_product_image"),
        }
    else:
        return None
    return BestProduct(
        id=_int(source["id"]) if source["id"] is not None else None,
        name=source["title"],
        handle=source["handle"],
        price=_float(source["price"]),
        image=source["image"] or None,
        currency=currency,
    )


def best_ads(row: Mapping[str, Any]) -> list[BestAd]:
    structured = _json(row.get("best_ads"))
    if isinstance(structured, list):
        entries = [entry for entry in structured if isinstance(entry, Mapping)]
    else:
        entries = []
        for slot in range(1, VIEW_BEST_AD_SLOTS + 1):
            entry = {name: row.get(f"best_ad_{slot}_{name}") for name in VIEW_BEST_AD_FIELDS}
            if entry["id"] is not None:
                entries.append(entry)
    return [
        BestAd(
            id=_int(entry.get("id")) if entry.get("id") is not None else None,
            type=entry.get("type"),
            video_link=entry.get("video_link"),
            video_preview_link=entry.get("video_preview_link"),
            image_link=entry.get("image_link"),
        )
        for entry in entries
    ]


def normalize_row(row: Mapping[str, Any], position: int) -> ShopSummary:
    currency = row.get("currency") or "USD"
    url = row.get("url")
    current_visits = _int(row.get("last_month_visits"))
    previous_visits = _int(row.get("last_last_month_visits"))
    active = _int(row.get("active_ads"))
    history = ads_history(row.get("ads_history"))
    return ShopSummary(
        id=int(row["id"]),
        position=position,
        url=url,
        name=row.get("merchant_name") or (url.replace("www.", "") if url else None),
        screenshot=row.get("screenshot"),
        country=row.get("country"),
        currency=currency,
        products_count=_int(row.get("products_count")),
        active_ads=active,
        ads_change=ads_change(active, history),
        ads_history=history,
        monthly_visits=current_visits,
        traffic_change=current_visits - previous_visits,
        traffic_growth=corrected_growth_rate(
            row.get("growth_rate"), row.get("last_month_visits"), row.get("last_last_month_visits")
        ),
        traffic_data=parse_series(row.get("visits"), numeric=True) if row.get("visits") else [],
        traffic_dates=parse_series(row.get("dates")) if row.get("visits") else [],
        estimated_monthly=_float(row.get("estimated_monthly")),
        market_countries=market_countries(row.get("traffic_countries")),
        best_product=best_product(row, currency),
        best_ads=best_ads(row),
        is_tracked=bool(row.get("is_tracked")),
        created_at=_timestamp(row.get("whois_at")),
    )


def normalize_rows(rows: Iterable[Mapping[str, Any]], page: int, per_page: int) -> list[ShopSummary]:
    offset = (page - 1) * per_page
    return [normalize_row(row, offset + index + 1) for index, row in enumerate(rows)]
