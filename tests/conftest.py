from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import BigInteger, Boolean, Column, DateTime, ForeignKey, Integer, MetaData, Table, Text, create_engine
from sqlalchemy.pool import StaticPool

from app.api.main import app, get_store
from app.logic.count_cache import COUNT_CACHE
from app.utils.tokens import viewer_token

metadata = MetaData()

shops = Table(
    "shops",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("url", Text, nullable=False),
    Column("merchant_name", Text),
    Column("country", Text),
    Column("currency", Text),
    Column("products_count", Integer, default=0),
    Column("active_ads", Integer, default=0),
    Column("disabled", Boolean, default=False),
    Column("created_at", DateTime),
    Column("deleted_at", DateTime),
)

user_shops = Table(
    "user_shops",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", BigInteger, nullable=False),
    Column("shop_id", Integer, ForeignKey("shops.id"), nullable=False),
    Column("created_at", DateTime),
)


class FakeStore:
    """In-memory stand-in for ShopStore that records every query it runs."""

    def __init__(self, rows, total=None):
        self.rows = rows
        self.total = len(rows) if total is None else total
        self.candidate_queries = []
        self.enrichment_queries = []
        self.count_queries = []

    def fetch_ids(self, query):
        self.candidate_queries.append(query)
        offset = query.params["offset"]
        limit = query.params["limit"]
        return [row["id"] for row in self.rows][offset : offset + limit]

    def fetch_rows(self, query):
        self.enrichment_queries.append(query)
        wanted = set(query.params["ids"])
        # Deliberately out of candidate order.
        return [dict(row) for row in reversed(self.rows) if row["id"] in wanted]

    def count(self, query):
        self.count_queries.append(query)
        return self.total


def make_row(shop_id, **overrides):
    row = {
        "id": shop_id,
        "url": f"www.shop{shop_id}.com",
        "merchant_name": None,
        "screenshot": None,
        "country": "US",
        "currency": "USD",
        "products_count": 20,
        "active_ads": 10,
        "whois_at": datetime(2024, 1, 1),
        "last_month_visits": 1200,
        "last_last_month_visits": 1000,
        "estimated_monthly": 3000,
        "estimated_order": 40,
        "growth_rate": 20,
        "visits": "1000,1200",
        "dates": "2024-01,2024-02",
        "traffic_countries": [{"CountryCode": "US", "Value": 0.6}],
        "best_product": {"id": 7, "title": "Serum", "handle": "serum", "price": "19.90", "image": "img.png"},
        "best_ads": [{"id": 3, "type": "video", "video_link": "v.mp4", "video_preview_link": None, "image_link": None}],
        "ads_history": [{"active_ads_count": 4, "date": "2024-01-01"}, {"active_ads_count": 8, "date": "2024-02-01"}],
        "is_tracked": False,
    }
    row.update(overrides)
    return row


@pytest.fixture(autouse=True)
def _reset_state(monkeypatch):
    monkeypatch.setenv("SIGNING_SECRET", "secret")
    COUNT_CACHE.clear()
    yield
    COUNT_CACHE.clear()
    app.dependency_overrides.clear()


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def seeded_engine(engine):
    with engine.begin() as conn:
        conn.execute(shops.insert(), [
            {"url": "www.hexco.com", "merchant_name": "HexCo", "country": "US", "currency": "USD", "products_count": 24, "active_ads": 42},
            {"url": "lumithreads.fr", "merchant_name": "Lumi Threads", "country": "FR", "currency": "EUR", "products_count": 8, "active_ads": 12},
        ])
    return engine


@pytest.fixture()
def auth_headers():
    return {"Authorization": f"Bearer {viewer_token(42)}"}


@pytest.fixture()
def fake_store():
    return FakeStore([make_row(shop_id) for shop_id in range(1, 46)])


@pytest.fixture()
def client(fake_store):
    app.dependency_overrides[get_store] = lambda: fake_store
    return TestClient(app)


@pytest.fixture()
def shop_row():
    return make_row
