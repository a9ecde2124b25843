from __future__ import annotations

import logging
import sqlite3
import time
import uuid
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from audible import is_valid_audible_url, parse_audible_url
from config import Config
from errors import (
    BOOK_NOT_FOUND,
    CONFLICT,
    INTERNAL_ERROR,
    VALIDATION_ERROR,
    ApiError,
    classify_database_error,
    error_envelope,
    get_error_status,
    success_envelope,
)
from ids import is_valid_id
from wishlist import WishlistStore

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Application setup
# -----------------------------------------------------------------------------

app = FastAPI(title="Audiobook Wishlist API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173", "*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_store() -> WishlistStore:
    if not hasattr(get_store, "_instance"):
        get_store._instance = WishlistStore(Config.from_env().db_path)
    return get_store._instance  # type: ignore[attr-defined]


@app.on_event("shutdown")
def _shutdown() -> None:
    store = getattr(get_store, "_instance", None)
    if isinstance(store, WishlistStore):
        store.close()


@app.middleware("http")
async def _request_context(request: Request, call_next):
    request_id = uuid.uuid4().hex[:12]
    request.state.request_id = request_id
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    response.headers["X-Request-ID"] = request_id
    logger.info(
        "%s %s -> %s (%.1fms) [%s]",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
        request_id,
    )
    return response


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


# -----------------------------------------------------------------------------
# Error handlers
# -----------------------------------------------------------------------------


@app.exception_handler(ApiError)
async def _handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    logger.warning("%s: %s [%s]", exc.code, exc.message, _request_id(request))
    return JSONResponse(exc.to_envelope(_request_id(request)), status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def _handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": [str(part) for part in error.get("loc", ())], "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]
    logger.warning("Validation failed for %s: %s", request.url.path, errors)
    body = error_envelope(
        VALIDATION_ERROR,
        "Invalid data provided",
        {"errors": errors},
        _request_id(request),
    )
    return JSONResponse(body, status_code=status.HTTP_400_BAD_REQUEST)


@app.exception_handler(sqlite3.Error)
async def _handle_database_error(request: Request, exc: sqlite3.Error) -> JSONResponse:
    code = classify_database_error(exc)
    logger.error("Database error on %s: %s", request.url.path, exc)
    body = error_envelope(code, "Database operation failed", {"originalError": str(exc)}, _request_id(request))
    return JSONResponse(body, status_code=get_error_status(code))


@app.exception_handler(Exception)
async def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s", request.url.path)
    body = error_envelope(INTERNAL_ERROR, "An unexpected error occurred", None, _request_id(request))
    return JSONResponse(body, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


# -----------------------------------------------------------------------------
# Pydantic models
# -----------------------------------------------------------------------------


def _not_blank(value: Optional[str]) -> str:
    if value is None or not value.strip():
        raise ValueError("must not be empty")
    return value.strip()


class TagRef(BaseModel):
    id: str = Field(..., min_length=1)
    name: str
    color: str = Field(..., min_length=1)

    @field_validator("name")
    @classmethod
    def check_name(cls, value: str) -> str:
        return _not_blank(value)


class BookCreate(BaseModel):
    title: str
    author: str
    tags: List[TagRef] = Field(default_factory=list)
    narratorRating: Optional[float] = Field(default=None, ge=0, le=5)
    performanceRating: Optional[float] = Field(default=None, ge=0, le=5)
    description: Optional[str] = None
    coverImageUrl: Optional[str] = None
    audibleUrl: Optional[str] = None
    queuePosition: Optional[int] = Field(default=None, ge=0)

    @field_validator("title", "author")
    @classmethod
    def check_text(cls, value: str) -> str:
        return _not_blank(value)


class BookUpdate(BaseModel):
    """Partial update; only fields present in the request body are applied."""

    title: Optional[str] = None
    author: Optional[str] = None
    tags: Optional[List[TagRef]] = None
    narratorRating: Optional[float] = Field(default=None, ge=0, le=5)
    performanceRating: Optional[float] = Field(default=None, ge=0, le=5)
    description: Optional[str] = None
    coverImageUrl: Optional[str] = None
    audibleUrl: Optional[str] = None
    queuePosition: Optional[int] = Field(default=None, ge=0)

    @field_validator("title", "author")
    @classmethod
    def check_text(cls, value: Optional[str]) -> str:
        return _not_blank(value)


class TagCreate(BaseModel):
    name: str
    color: str
    id: Optional[str] = Field(default=None, min_length=1)

    @field_validator("name", "color")
    @classmethod
    def check_text(cls, value: str) -> str:
        return _not_blank(value)


# -----------------------------------------------------------------------------
# Helper utilities
# -----------------------------------------------------------------------------


def _require_valid_id(book_id: str) -> None:
    if not is_valid_id(book_id):
        raise ApiError(VALIDATION_ERROR, "Invalid book ID format", {"providedId": book_id})


def _book_or_404(store: WishlistStore, book_id: str) -> Dict[str, Any]:
    book = store.get_book(book_id)
    if book is None:
        raise ApiError(BOOK_NOT_FOUND, "Book not found", {"bookId": book_id})
    return book


def _envelope(request: Request, data: Any, message: Optional[str] = None, status_code: int = 200) -> JSONResponse:
    return JSONResponse(success_envelope(data, message, _request_id(request)), status_code=status_code)


# -----------------------------------------------------------------------------
# Routes
# -----------------------------------------------------------------------------


@app.get("/api/ping")
def ping(request: Request) -> JSONResponse:
    return _envelope(request, {"status": "ok", "message": "Server is running"}, "Pong")


@app.get("/api/health")
def health(request: Request, store: WishlistStore = Depends(get_store)) -> JSONResponse:
    store.ping()
    return _envelope(request, {"status": "healthy", "database": "ok"})


@app.get("/api/books")
def list_books(
    request: Request,
    filter_: Optional[str] = Query(None, alias="filter"),
    tag: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    store: WishlistStore = Depends(get_store),
) -> JSONResponse:
    target_tag = "next" if filter_ == "next" else (tag or None)
    books = store.list_books(tag=target_tag, limit=limit, offset=offset)
    if target_tag:
        message = f'Retrieved {len(books)} books with tag "{target_tag}"'
    else:
        message = f"Retrieved {len(books)} books"
    return _envelope(request, books, message)


@app.get("/api/books/{book_id}")
def get_book(book_id: str, request: Request, store: WishlistStore = Depends(get_store)) -> JSONResponse:
    _require_valid_id(book_id)
    return _envelope(request, _book_or_404(store, book_id), "Book retrieved successfully")


@app.post("/api/books")
def create_book(
    payload: BookCreate,
    request: Request,
    store: WishlistStore = Depends(get_store),
) -> JSONResponse:
    book = store.create_book(payload.model_dump())
    logger.info("Created book %s (%s)", book["title"], book["id"])
    return _envelope(request, book, "Book created successfully", status.HTTP_201_CREATED)


@app.put("/api/books/{book_id}")
def update_book(
    book_id: str,
    payload: BookUpdate,
    request: Request,
    store: WishlistStore = Depends(get_store),
) -> JSONResponse:
    _require_valid_id(book_id)
    book = store.update_book(book_id, payload.model_dump(exclude_unset=True))
    if book is None:
        raise ApiError(BOOK_NOT_FOUND, "Book not found", {"bookId": book_id})
    logger.info("Updated book %s (%s)", book["title"], book_id)
    return _envelope(request, book, "Book updated successfully")


@app.delete("/api/books/{book_id}")
def delete_book(book_id: str, request: Request, store: WishlistStore = Depends(get_store)) -> JSONResponse:
    _require_valid_id(book_id)
    if not store.delete_book(book_id):
        raise ApiError(BOOK_NOT_FOUND, "Book not found", {"bookId": book_id})
    logger.info("Deleted book %s", book_id)
    return _envelope(request, {"id": book_id}, "Book deleted successfully")


@app.get("/api/tags")
def list_tags(request: Request, store: WishlistStore = Depends(get_store)) -> JSONResponse:
    tags = store.list_tags()
    return _envelope(request, tags, f"Retrieved {len(tags)} tags")


@app.post("/api/tags")
def create_tag(
    payload: TagCreate,
    request: Request,
    store: WishlistStore = Depends(get_store),
) -> JSONResponse:
    if store.get_tag_by_name(payload.name) is not None:
        raise ApiError(CONFLICT, "A tag with this name already exists", {"tagName": payload.name})
    tag = store.create_tag(payload.name, payload.color, payload.id)
    return _envelope(request, tag, "Tag created successfully", status.HTTP_201_CREATED)


@app.get("/api/audible")
def audible_metadata(request: Request, url: str = Query(..., min_length=1)) -> JSONResponse:
    if not is_valid_audible_url(url):
        raise ApiError(VALIDATION_ERROR, "Invalid Audible URL format", {"url": url})
    result = parse_audible_url(url)
    return _envelope(request, result.to_dict(), result.error)
