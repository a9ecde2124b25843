from __future__ import annotations

import copy
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from errors import (
    BOOK_NOT_FOUND,
    CONFLICT,
    HTTP_ERROR,
    NETWORK_ERROR,
    TAG_NOT_FOUND,
    VALIDATION_ERROR,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://127.0.0.1:8000/api"
DEFAULT_TIMEOUT = 10.0
DEFAULT_RETRY_ATTEMPTS = 2
DEFAULT_RETRY_DELAY = 0.5
DEFAULT_CACHE_TTL = 5.0

# Collection GETs that may be served from the short-lived cache.
CACHEABLE_COLLECTIONS = ("/books", "/tags")

NOT_FOUND_CODES = {"books": BOOK_NOT_FOUND, "tags": TAG_NOT_FOUND}


class ApiClientError(Exception):
    """Failure reported by :class:`WishlistApiClient`, classified by ``code``."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        status_code: Optional[int] = None,
        details: Any = None,
        request_id: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        self.request_id = request_id
        self.cause = cause

    @property
    def is_client_error(self) -> bool:
        return self.status_code is not None and 400 <= self.status_code < 500

    def __repr__(self) -> str:
        return f"ApiClientError(code={self.code!r}, message={self.message!r}, status_code={self.status_code!r})"


def is_network_error(error: BaseException) -> bool:
    return isinstance(error, ApiClientError) and error.code == NETWORK_ERROR


def is_validation_error(error: BaseException) -> bool:
    return isinstance(error, ApiClientError) and error.code == VALIDATION_ERROR


def is_not_found_error(error: BaseException) -> bool:
    return isinstance(error, ApiClientError) and error.code.endswith("_NOT_FOUND")


def is_server_error(error: BaseException) -> bool:
    return (
        isinstance(error, ApiClientError)
        and error.status_code is not None
        and error.status_code >= 500
    )


def _collection_of(endpoint: str) -> str:
    path = endpoint.split("?", 1)[0]
    parts = [part for part in path.split("/") if part]
    return f"/{parts[0]}" if parts else "/"


def _code_for_status(status_code: int, endpoint: str) -> str:
    if status_code == 404:
        resource = _collection_of(endpoint).strip("/")
        return NOT_FOUND_CODES.get(resource, f"{resource.rstrip('s').upper() or 'RESOURCE'}_NOT_FOUND")
    if status_code == 409:
        return CONFLICT
    if status_code in (400, 422):
        return VALIDATION_ERROR
    return HTTP_ERROR


class WishlistApiClient:
    """Client for the wishlist REST API with timeouts, retries and a collection cache."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        retry_attempts: int = DEFAULT_RETRY_ATTEMPTS,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        cache_ttl: float = DEFAULT_CACHE_TTL,
        session: Optional[Any] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if retry_attempts < 0:
            raise ValueError("retry_attempts must be non-negative.")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self.cache_ttl = cache_ttl
        self._session = session if session is not None else requests.Session()
        self._sleep = sleep
        self._clock = clock
        self._cache: Dict[str, Tuple[float, Any]] = {}
        self._cache_lock = threading.Lock()

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "WishlistApiClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --------------------------------------------------------------------- #
    # Cache
    # --------------------------------------------------------------------- #
    def _cache_get(self, key: str) -> Tuple[bool, Any]:
        if self.cache_ttl <= 0:
            return False, None
        with self._cache_lock:
            entry = self._cache.get(key)
            if entry is None:
                return False, None
            stored_at, data = entry
            if self._clock() - stored_at > self.cache_ttl:
                del self._cache[key]
                return False, None
        return True, copy.deepcopy(data)

    def _cache_set(self, key: str, data: Any) -> None:
        if self.cache_ttl <= 0:
            return
        with self._cache_lock:
            self._cache[key] = (self._clock(), copy.deepcopy(data))

    def invalidate(self, *collections: str) -> None:
        """Drop cached entries for the given collections (all when none given)."""
        with self._cache_lock:
            if not collections:
                self._cache.clear()
                return
            for key in list(self._cache):
                if _collection_of(key) in collections:
                    del self._cache[key]

    # --------------------------------------------------------------------- #
    # Core request
    # --------------------------------------------------------------------- #
    def _send(self, method: str, endpoint: str, payload: Any, timeout: float) -> Any:
        url = f"{self.base_url}{endpoint}"
        kwargs: Dict[str, Any] = {
            "headers": {"Content-Type": "application/json"},
            "timeout": timeout,
        }
        if payload is not None:
            kwargs["json"] = payload
        try:
            response = self._session.request(method, url, **kwargs)
        except requests.Timeout as exc:
            raise ApiClientError(NETWORK_ERROR, f"Request timed out after {timeout}s", cause=exc) from exc
        except requests.RequestException as exc:
            raise ApiClientError(NETWORK_ERROR, str(exc) or "Connection failed", cause=exc) from exc

        status_code = response.status_code
        try:
            body = response.json()
        except ValueError as exc:
            raise ApiClientError(
                HTTP_ERROR,
                f"HTTP {status_code}: response was not valid JSON",
                status_code=status_code,
                cause=exc,
            ) from exc

        if not isinstance(body, dict) or "success" not in body:
            raise ApiClientError(
                HTTP_ERROR,
                f"HTTP {status_code}: response was not a valid envelope",
                status_code=status_code,
            )

        if status_code >= 400 or not body.get("success"):
            code = body.get("error") or _code_for_status(status_code, endpoint)
            raise ApiClientError(
                code,
                body.get("message") or code,
                status_code=status_code,
                details=body.get("details"),
                request_id=body.get("requestId"),
            )
        return body.get("data")

    def request(
        self,
        endpoint: str,
        *,
        method: str = "GET",
        payload: Any = None,
        timeout: Optional[float] = None,
        use_cache: bool = False,
    ) -> Any:
        """Issue a request and return the envelope's ``data``.

        Client errors (4xx) fail immediately. Anything else is retried up to
        ``retry_attempts`` more times with a delay of ``retry_delay * attempt``;
        when the budget is exhausted a ``NETWORK_ERROR`` wrapping the last
        failure is raised.
        """
        method = method.upper()
        collection = _collection_of(endpoint)
        cacheable = use_cache and method == "GET" and endpoint in CACHEABLE_COLLECTIONS
        if cacheable:
            hit, data = self._cache_get(endpoint)
            if hit:
                logger.debug("Cache hit for %s", endpoint)
                return data

        effective_timeout = self.timeout if timeout is None else timeout
        total_attempts = self.retry_attempts + 1
        last_error: Optional[ApiClientError] = None

        for attempt in range(1, total_attempts + 1):
            try:
                data = self._send(method, endpoint, payload, effective_timeout)
            except ApiClientError as error:
                if error.is_client_error:
                    logger.debug("%s %s failed with %s", method, endpoint, error.code)
                    raise
                last_error = error
                if attempt < total_attempts:
                    delay = self.retry_delay * attempt
                    logger.warning(
                        "%s %s failed (attempt %s/%s): %s. Retrying in %.2fs",
                        method,
                        endpoint,
                        attempt,
                        total_attempts,
                        error.message,
                        delay,
                    )
                    self._sleep(delay)
                continue

            if method != "GET":
                self.invalidate(collection)
                if collection == "/books":
                    # Book writes can create tags and change usage counts.
                    self.invalidate("/tags")
            elif cacheable:
                self._cache_set(endpoint, data)
            return data

        assert last_error is not None
        logger.error("%s %s failed after %s attempts: %s", method, endpoint, total_attempts, last_error.message)
        raise ApiClientError(
            NETWORK_ERROR,
            f"Request failed after {total_attempts} attempts: {last_error.message}",
            status_code=last_error.status_code,
            details=last_error.details,
            request_id=last_error.request_id,
            cause=last_error,
        ) from last_error

    # --------------------------------------------------------------------- #
    # Books
    # --------------------------------------------------------------------- #
    def get_books(self, *, use_cache: bool = True) -> List[Dict[str, Any]]:
        return self.request("/books", use_cache=use_cache) or []

    def get_book(self, book_id: str) -> Dict[str, Any]:
        return self.request(f"/books/{book_id}")

    def create_book(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self.request("/books", method="POST", payload=data)

    def update_book(self, book_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        return self.request(f"/books/{book_id}", method="PUT", payload=changes)

    def delete_book(self, book_id: str) -> Dict[str, Any]:
        return self.request(f"/books/{book_id}", method="DELETE")

    # --------------------------------------------------------------------- #
    # Tags and health
    # --------------------------------------------------------------------- #
    def get_tags(self, *, use_cache: bool = True) -> List[Dict[str, Any]]:
        return self.request("/tags", use_cache=use_cache) or []

    def create_tag(self, name: str, color: str, tag_id: Optional[str] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"name": name, "color": color}
        if tag_id:
            payload["id"] = tag_id
        return self.request("/tags", method="POST", payload=payload)

    def health_check(self) -> Dict[str, Any]:
        return self.request("/ping")
