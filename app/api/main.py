"""FastAPI application for shop discovery."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any, AsyncIterator

import uvicorn
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from itsdangerous import BadSignature
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from app.db.session import create_engine_from_env
from app.db.store import ShopStore, StoreUnavailableError
from app.logic.columns import validate_view_columns
from app.logic.discovery import search_shops
from app.utils.tokens import load_viewer_id

logger = logging.getLogger(__name__)

VALIDATE_VIEW_SCHEMA = os.environ.get("VALIDATE_VIEW_SCHEMA", "1") == "1"
API_HOST = os.environ.get("API_HOST", "0.0.0.0")
API_PORT = int(os.environ.get("API_PORT", "8000"))
LIST_CACHE_CONTROL = "private, max-age=30, stale-while-revalidate=60"


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_engine_from_env()


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    if VALIDATE_VIEW_SCHEMA:
        try:
            validate_view_columns(get_engine())
        except SQLAlchemyError as exc:
            logger.warning("Skipping view schema validation: %s", exc)
    yield


app = FastAPI(title="Shop Discovery API", lifespan=lifespan)


class Pagination(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    page: int
    per_page: int = Field(alias="perPage")
    total: int
    total_pages: int = Field(alias="totalPages")
    has_more: bool = Field(alias="hasMore")


class ShopListResponse(BaseModel):
    success: bool
    data: list[dict[str, Any]]
    pagination: Pagination


class TrackRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    shop_id: int = Field(alias="shopId")


def get_viewer(authorization: str | None = Header(default=None)) -> int:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Unauthorized")
    try:
        return load_viewer_id(token.strip())
    except BadSignature as exc:
        raise HTTPException(status_code=401, detail="Unauthorized") from exc


def get_store(engine: Engine = Depends(get_engine)) -> ShopStore:
    store = ShopStore(engine)
    try:
        store.ping()
    except StoreUnavailableError as exc:
        logger.error("Shop database unavailable: %s", exc)
        raise HTTPException(status_code=503, detail="Database not available") from exc
    return store


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/shops", response_model=ShopListResponse, response_model_by_alias=True)
def list_shops(
    request: Request,
    response: Response,
    viewer_id: int = Depends(get_viewer),
    store: ShopStore = Depends(get_store),
) -> Any:
    try:
        result = search_shops(store, request.query_params, viewer_id)
    except Exception:
        logger.exception("Failed to fetch shops")
        return JSONResponse({"success": False, "error": "Failed to fetch shops"}, status_code=500)
    response.headers["Cache-Control"] = LIST_CACHE_CONTROL
    return ShopListResponse(success=True, data=result.shops, pagination=Pagination(**result.pagination()))


@app.post("/shops/track")
def track_shop(
    payload: TrackRequest,
    viewer_id: int = Depends(get_viewer),
    store: ShopStore = Depends(get_store),
) -> JSONResponse:
    try:
        tracked = store.toggle_tracking(viewer_id, payload.shop_id)
    except SQLAlchemyError:
        logger.exception("Failed to update tracking for shop %s", payload.shop_id)
        return JSONResponse({"success": False, "error": "Failed to update tracking"}, status_code=500)
    return JSONResponse(
        {
            "success": True,
            "data": {"shopId": payload.shop_id, "isTracked": tracked},
            "message": "Shop added to tracking" if tracked else "Shop removed from tracking",
        }
    )


def run() -> None:
    load_dotenv()
    logging.basicConfig(level=logging.INFO)
    uvicorn.run(app, host=API_HOST, port=API_PORT)


if __name__ == "__main__":
    run()
