from app.db.migrate import SCHEMA_PATH, load_statements
from app.jobs import celery_app as jobs
from app.utils import tokens


def test_schema_splits_into_statements():
    statements = list(load_statements(SCHEMA_PATH.read_text()))
    assert all(stmt.rstrip().endswith(";") for stmt in statements)
    view = [stmt for stmt in statements if "CREATE MATERIALIZED VIEW" in stmt]
    assert len(view) == 1
    assert "best_ad_2_image_link" in view[0]


def test_load_statements_skips_comments():
    sql = "-- header\nCREATE TABLE a (\n  id INT\n);\n\nSELECT 1;"
    assert list(load_statements(sql)) == ["CREATE TABLE a (\n  id INT\n);", "SELECT 1;"]


def test_view_refresh_is_scheduled():
    entry = jobs.celery_app.conf.beat_schedule["refresh-shop-view"]
    assert entry["task"] == "app.jobs.celery_app.refresh_shop_view_task"
    assert jobs.celery_app.tasks[entry["task"]].name == jobs.refresh_shop_view_task.name


def test_refresh_task_runs_refresh(monkeypatch):
    calls = []
    monkeypatch.setattr(jobs, "run_refresh", lambda: calls.append(1))
    jobs.refresh_shop_view_task()
    assert calls == [1]


def test_viewer_token_round_trip():
    token = tokens.viewer_token(42)
    assert tokens.load_viewer_id(token) == 42
