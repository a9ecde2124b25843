from __future__ import annotations

from pathlib import Path
from typing import Any, List

import pytest
import requests
from fastapi.testclient import TestClient

from api import (
    ApiClientError,
    WishlistApiClient,
    is_network_error,
    is_not_found_error,
    is_server_error,
    is_validation_error,
)
from server import app, get_store
from wishlist import WishlistStore


class FakeResponse:
    def __init__(self, status_code: int, body: Any):
        self.status_code = status_code
        self._body = body

    def json(self) -> Any:
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class FakeSession:
    """Replays scripted responses (or raises scripted exceptions) in order."""

    def __init__(self, *outcomes: Any):
        self.outcomes = list(outcomes)
        self.calls: List[tuple] = []
        self.closed = False

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append((method, url, kwargs))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def close(self) -> None:
        self.closed = True


def ok(data: Any, status_code: int = 200) -> FakeResponse:
    return FakeResponse(status_code, {"success": True, "data": data, "timestamp": "t"})


def fail(code: str, status_code: int, message: str = "nope") -> FakeResponse:
    return FakeResponse(status_code, {"success": False, "error": code, "message": message, "timestamp": "t"})


def make_client(session: FakeSession, sleeps: List[float], **kwargs: Any) -> WishlistApiClient:
    kwargs.setdefault("retry_attempts", 2)
    kwargs.setdefault("retry_delay", 0.5)
    return WishlistApiClient("http://test/api", session=session, sleep=sleeps.append, **kwargs)


def test_successful_request_unwraps_data() -> None:
    session = FakeSession(ok({"id": "1"}))
    client = make_client(session, [])

    assert client.get_book("1") == {"id": "1"}
    method, url, kwargs = session.calls[0]
    assert (method, url) == ("GET", "http://test/api/books/1")
    assert kwargs["timeout"] == client.timeout


def test_client_errors_are_not_retried() -> None:
    sleeps: List[float] = []
    session = FakeSession(fail("VALIDATION_ERROR", 400, "Invalid data provided"))
    client = make_client(session, sleeps)

    with pytest.raises(ApiClientError) as excinfo:
        client.create_book({"title": ""})

    assert excinfo.value.code == "VALIDATION_ERROR"
    assert excinfo.value.message == "Invalid data provided"
    assert is_validation_error(excinfo.value)
    assert len(session.calls) == 1
    assert sleeps == []


def test_not_found_without_code_is_named_after_resource() -> None:
    session = FakeSession(FakeResponse(404, {"success": False, "message": "gone"}))
    client = make_client(session, [])

    with pytest.raises(ApiClientError) as excinfo:
        client.get_book("1700000000000-abcdef")

    assert excinfo.value.code == "BOOK_NOT_FOUND"
    assert is_not_found_error(excinfo.value)


def test_server_errors_retry_with_linear_backoff() -> None:
    sleeps: List[float] = []
    session = FakeSession(
        fail("DATABASE_ERROR", 500),
        fail("DATABASE_ERROR", 500),
        ok([{"id": "1"}]),
    )
    client = make_client(session, sleeps, cache_ttl=0)

    assert client.get_books() == [{"id": "1"}]
    assert len(session.calls) == 3
    assert sleeps == [0.5, 1.0]


def test_exhausted_retries_raise_network_error_with_last_cause() -> None:
    sleeps: List[float] = []
    session = FakeSession(
        requests.ConnectionError("refused"),
        fail("DATABASE_ERROR", 500, "disk full"),
        fail("DATABASE_ERROR", 503, "still broken"),
    )
    client = make_client(session, sleeps)

    with pytest.raises(ApiClientError) as excinfo:
        client.delete_book("1700000000000-abcdef")

    error = excinfo.value
    assert error.code == "NETWORK_ERROR"
    assert "still broken" in error.message
    assert is_network_error(error)
    assert is_server_error(error)
    assert sleeps == [0.5, 1.0]


def test_timeout_is_a_network_error() -> None:
    session = FakeSession(requests.Timeout("slow"))
    client = make_client(session, [], retry_attempts=0)

    with pytest.raises(ApiClientError) as excinfo:
        client.health_check()

    assert excinfo.value.code == "NETWORK_ERROR"
    assert "timed out" in excinfo.value.message


def test_unsuccessful_envelope_with_ok_status_is_retried() -> None:
    sleeps: List[float] = []
    session = FakeSession(fail("INTERNAL_ERROR", 200, "odd"), ok({"status": "ok"}))
    client = make_client(session, sleeps)

    assert client.health_check() == {"status": "ok"}
    assert sleeps == [0.5]


def test_non_envelope_body_is_http_error() -> None:
    session = FakeSession(FakeResponse(502, ValueError("not json")))
    client = make_client(session, [], retry_attempts=0)

    with pytest.raises(ApiClientError) as excinfo:
        client.get_tags()

    assert excinfo.value.code == "NETWORK_ERROR"
    assert isinstance(excinfo.value.cause, ApiClientError)
    assert excinfo.value.cause.code == "HTTP_ERROR"


def test_collection_cache_and_invalidation() -> None:
    session = FakeSession(
        ok([{"id": "1"}]),
        ok({"id": "2"}, status_code=201),
        ok([{"id": "1"}, {"id": "2"}]),
    )
    client = make_client(session, [])

    first = client.get_books()
    first.append({"id": "mutated"})
    assert client.get_books() == [{"id": "1"}]
    assert len(session.calls) == 1

    client.create_book({"title": "B", "author": "Y"})
    assert client.get_books() == [{"id": "1"}, {"id": "2"}]
    assert len(session.calls) == 3


def test_cache_entries_expire() -> None:
    now = [0.0]
    session = FakeSession(ok([]), ok([{"id": "t"}]))
    client = make_client(session, [], cache_ttl=5.0, clock=lambda: now[0])

    assert client.get_tags() == []
    now[0] = 6.0
    assert client.get_tags() == [{"id": "t"}]


def test_context_manager_closes_session() -> None:
    session = FakeSession()
    with make_client(session, []):
        pass
    assert session.closed


@pytest.fixture
def live_client(tmp_path: Path) -> WishlistApiClient:
    store = WishlistStore(db_path=tmp_path / "wishlist.db")
    app.dependency_overrides[get_store] = lambda: store
    with TestClient(app) as test_client:
        yield WishlistApiClient("http://testserver/api", session=test_client, retry_attempts=0)
    app.dependency_overrides.pop(get_store, None)
    store.close()


def test_client_against_running_app(live_client: WishlistApiClient) -> None:
    created = live_client.create_book(
        {"title": "Dune", "author": "Frank Herbert", "tags": [{"id": "n", "name": "next", "color": "#10b981"}]}
    )
    updated = live_client.update_book(created["id"], {"narratorRating": 5})

    assert updated["narratorRating"] == 5
    assert [book["id"] for book in live_client.get_books()] == [created["id"]]
    assert live_client.get_tags()[0]["usageCount"] == 1

    live_client.delete_book(created["id"])
    assert live_client.get_books() == []

    with pytest.raises(ApiClientError) as excinfo:
        live_client.get_book(created["id"])
    assert excinfo.value.code == "BOOK_NOT_FOUND"
    assert excinfo.value.status_code == 404
