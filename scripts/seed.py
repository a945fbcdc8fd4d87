"""Seed the database with demo shops, traffic snapshots and ads."""

from __future__ import annotations

import json
from datetime import timedelta

from dotenv import load_dotenv
from sqlalchemy import text

from app.db.session import create_engine_from_env
from app.jobs.refresh import refresh_shop_view
from app.utils.dates import utc_now


DEMO_SHOPS = [
    {"url": "www.hexco.com", "merchant_name": "HexCo", "country": "US", "currency": "USD", "locale": "en-US", "theme": "Dawn", "apps": "Klaviyo, Judge.me", "pixels": "facebook, tiktok", "products_count": 24, "active_ads": 42},
    {"url": "lumithreads.fr", "merchant_name": "Lumi Threads", "country": "FR", "currency": "EUR", "locale": "fr-FR", "theme": "Impulse", "apps": "Loox", "pixels": "facebook", "products_count": 8, "active_ads": 12},
    {"url": "northpeak.co.uk", "merchant_name": "North Peak", "country": "GB", "currency": "GBP", "locale": "en-GB", "theme": "Dawn", "apps": "ReCharge", "pixels": "google", "products_count": 140, "active_ads": 3},
]


def main() -> None:
    load_dotenv()
    engine = create_engine_from_env()
    now = utc_now().naive()
    with engine.begin() as conn:
        for index, shop in enumerate(DEMO_SHOPS):
            shop_id = conn.execute(
                text(
                    """
                    INSERT INTO shops (url, merchant_name, country, currency, locale, theme, apps, pixels,
                                       products_count, active_ads, created_at)
                    VALUES (:url, :merchant_name, :country, :currency, :locale, :theme, :apps, :pixels,
                            :products_count, :active_ads, :created_at)
                    RETURNING id
                    """
                ),
                {**shop, "created_at": now - timedelta(days=30 * (index + 1))},
            ).scalar_one()
            conn.execute(
                text(
                    """
                    INSERT INTO traffic (shop_id, last_month_visits, last_last_month_visits, estimated_monthly,
                                         estimated_order, growth_rate, avg_price, countries, social, visits, dates)
                    VALUES (:shop_id, :visits_now, :visits_before, :revenue, :orders, :growth, 34.5,
                            CAST(:countries AS jsonb), CAST(:social AS jsonb), :series, :series_dates)
                    """
                ),
                {
                    "shop_id": shop_id,
                    "visits_now": 12000 * (index + 1),
                    "visits_before": 10000 * (index + 1),
                    "revenue": 9000 * (index + 1),
                    "orders": 250 * (index + 1),
                    "growth": 20.0,
                    "countries": json.dumps([{"CountryCode": shop["country"], "Value": 0.71}]),
                    "social": json.dumps({"data": {"Facebook": 0.6, "Instagram": 0.4}}),
                    "series": "9000,10000,12000",
                    "series_dates": "2024-01,2024-02,2024-03",
                },
            )
            for day in range(0, 90, 15):
                conn.execute(
                    text(
                        """
                        INSERT INTO shops_ads_active_history (shop_id, active_ads_count, created_at)
                        VALUES (:shop_id, :count, :created_at)
                        """
                    ),
                    {"shop_id": shop_id, "count": max(shop["active_ads"] - day // 10, 0), "created_at": now - timedelta(days=89 - day)},
                )
    refresh_shop_view(engine)
    print("Seed complete")


if __name__ == "__main__":
    main()
