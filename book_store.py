"""Client-side book state with optimistic mutations.

Every action applies its optimistic change synchronously, then awaits the
HTTP call in a worker thread, so several actions can interleave on one event
loop. Actions never raise: each returns a result or a failure indicator and
reports the outcome through the notification center.
"""
from __future__ import annotations

import asyncio
import copy
import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from api import WishlistApiClient
from config import Config
from errors import get_error_message
from filters import FilterStore, filtered_books
from ids import generate_temp_id, utc_now
from notifications import NotificationCenter
from state import Derived, Writable
from wishlist import tag_color

logger = logging.getLogger(__name__)

NEXT_TAG = "next"
FRESHNESS_WINDOW = 30.0


@dataclass(frozen=True)
class BookStoreState:
    books: List[Dict[str, Any]] = field(default_factory=list)
    loading: bool = False
    error: Optional[str] = None
    last_updated: Optional[datetime] = None
    updating: FrozenSet[str] = frozenset()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _has_tag(book: Dict[str, Any], name: str) -> bool:
    return any(tag.get("name") == name for tag in book.get("tags") or [])


class BookStore:
    def __init__(
        self,
        api: WishlistApiClient,
        notifications: NotificationCenter,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.api = api
        self.notifications = notifications
        self._now = now or _utcnow
        self.state: Writable[BookStoreState] = Writable(BookStoreState())

        self.all_books = Derived([self.state], lambda s: s.books)
        self.next_books = Derived(
            [self.state], lambda s: [book for book in s.books if _has_tag(book, NEXT_TAG)]
        )
        self.is_loading = Derived([self.state], lambda s: s.loading)
        self.store_error = Derived([self.state], lambda s: s.error)
        self.updating_books = Derived([self.state], lambda s: s.updating)

    # --------------------------------------------------------------------- #
    # Helpers
    # --------------------------------------------------------------------- #
    def _set(self, **changes: Any) -> None:
        self.state.update(lambda s: replace(s, **changes))

    def _find(self, book_id: str) -> Optional[Dict[str, Any]]:
        for book in self.state.get().books:
            if book.get("id") == book_id:
                return book
        return None

    def _replace_book(self, book_id: str, record: Dict[str, Any]) -> None:
        self.state.update(
            lambda s: replace(s, books=[record if b.get("id") == book_id else b for b in s.books])
        )

    def _mark(self, book_id: str) -> None:
        self.state.update(lambda s: replace(s, updating=s.updating | {book_id}))

    def _unmark(self, book_id: str) -> None:
        self.state.update(lambda s: replace(s, updating=s.updating - {book_id}))

    def get_state(self) -> BookStoreState:
        return self.state.get()

    # --------------------------------------------------------------------- #
    # Actions
    # --------------------------------------------------------------------- #
    async def load(self, force_refresh: bool = False) -> bool:
        current = self.state.get()
        if current.loading:
            logger.debug("Load already in progress")
            return False
        if not force_refresh and current.books and current.last_updated is not None:
            age = (self._now() - current.last_updated).total_seconds()
            if age < FRESHNESS_WINDOW:
                logger.debug("Using cached book data (%.1fs old)", age)
                return True

        self._set(loading=True, error=None)
        started = time.perf_counter()
        try:
            books = await asyncio.to_thread(self.api.get_books, use_cache=not force_refresh)
        except Exception as exc:
            message = get_error_message(exc)
            self._set(loading=False, error=message)
            logger.error("Failed to load books: %s", exc)
            self.notifications.error("Load Error", message)
            return False

        self._set(books=list(books), loading=False, error=None, last_updated=self._now())
        logger.debug("Loaded %s books in %.1fms", len(books), (time.perf_counter() - started) * 1000)
        if force_refresh:
            self.notifications.info("Data Refreshed", f"Loaded {len(books)} books")
        return True

    async def add(self, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        temp_id = generate_temp_id()
        optimistic = {
            "id": temp_id,
            "title": data.get("title"),
            "author": data.get("author"),
            "tags": copy.deepcopy(data.get("tags") or []),
            "narratorRating": data.get("narratorRating"),
            "performanceRating": data.get("performanceRating"),
            "description": data.get("description"),
            "coverImageUrl": data.get("coverImageUrl"),
            "audibleUrl": data.get("audibleUrl"),
            "queuePosition": data.get("queuePosition"),
            "dateAdded": utc_now(),
        }
        self.state.update(lambda s: replace(s, books=s.books + [optimistic]))

        try:
            record = await asyncio.to_thread(self.api.create_book, data)
        except Exception as exc:
            self.state.update(
                lambda s: replace(s, books=[b for b in s.books if b.get("id") != temp_id])
            )
            message = get_error_message(exc)
            logger.error("Failed to add book %r: %s", data.get("title"), exc)
            self.notifications.operation_feedback("create", False, data.get("title"), message)
            return None

        self._replace_book(temp_id, record)
        logger.info("Added book %s (%s)", record.get("title"), record.get("id"))
        self.notifications.operation_feedback("create", True, record.get("title"))
        return record

    async def update(self, book_id: str, patch: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return await self._apply_update(book_id, patch, notify=True)

    async def _apply_update(
        self,
        book_id: str,
        patch: Dict[str, Any],
        notify: bool,
    ) -> Optional[Dict[str, Any]]:
        original = self._find(book_id)
        if original is None:
            logger.error("Book not found: %s", book_id)
            return None

        snapshot = copy.deepcopy(original)
        self._mark(book_id)
        self._replace_book(book_id, {**snapshot, **copy.deepcopy(patch)})

        try:
            record = await asyncio.to_thread(self.api.update_book, book_id, patch)
        except Exception as exc:
            self._replace_book(book_id, snapshot)
            self._unmark(book_id)
            message = get_error_message(exc)
            logger.error("Failed to update book %s: %s", book_id, exc)
            self.notifications.error("Update Failed", message)
            return None

        self._replace_book(book_id, record)
        self._unmark(book_id)
        logger.info("Updated book %s (%s)", record.get("title"), book_id)
        if notify:
            self.notifications.operation_feedback("update", True, record.get("title"))
        return record

    async def toggle_tag_by_name(self, book_id: str, name: str) -> bool:
        book = self._find(book_id)
        if book is None:
            logger.error("Book not found: %s", book_id)
            return False
        return await self._toggle(book, name, notify=True) is not None

    async def toggle_next_tag(self, book_id: str) -> bool:
        book = self._find(book_id)
        if book is None:
            logger.error("Book not found: %s", book_id)
            return False
        had_tag = _has_tag(book, NEXT_TAG)
        record = await self._toggle(book, NEXT_TAG, notify=False)
        if record is None:
            return False
        action = "removed from" if had_tag else "added to"
        self.notifications.info("Queue Updated", f"{book.get('title')} {action} reading queue")
        return True

    async def _toggle(self, book: Dict[str, Any], name: str, notify: bool) -> Optional[Dict[str, Any]]:
        tags = [dict(tag) for tag in book.get("tags") or []]
        if _has_tag(book, name):
            tags = [tag for tag in tags if tag.get("name") != name]
        else:
            tags.append(
                {"id": f"tag-{name}-{int(time.time() * 1000)}", "name": name, "color": tag_color(name)}
            )
        return await self._apply_update(book["id"], {"tags": tags}, notify=notify)

    async def remove(self, book_id: str) -> bool:
        books = self.state.get().books
        index = next((i for i, b in enumerate(books) if b.get("id") == book_id), None)
        if index is None:
            logger.error("Book not found: %s", book_id)
            return False

        removed = copy.deepcopy(books[index])
        title = removed.get("title")
        self._mark(book_id)
        self.state.update(lambda s: replace(s, books=[b for b in s.books if b.get("id") != book_id]))

        try:
            await asyncio.to_thread(self.api.delete_book, book_id)
        except Exception as exc:
            # Put the book back where it was; other books are left as they are now.
            def restore(s: BookStoreState) -> BookStoreState:
                restored = list(s.books)
                restored.insert(min(index, len(restored)), removed)
                return replace(s, books=restored, updating=s.updating - {book_id})

            self.state.update(restore)
            message = get_error_message(exc)
            logger.error("Failed to delete book %s: %s", book_id, exc)
            self.notifications.operation_feedback("delete", False, title, message)
            return False

        self._unmark(book_id)
        logger.info("Deleted book %s (%s)", title, book_id)
        self.notifications.operation_feedback("delete", True, title)
        return True

    def clear_error(self) -> None:
        self._set(error=None)

    def initialize_with_data(self, books: List[Dict[str, Any]]) -> None:
        self._set(books=copy.deepcopy(list(books)), loading=False, error=None, last_updated=self._now())
        logger.debug("Initialized book store with %s books", len(books))


@dataclass
class WishlistSession:
    """Everything one running client needs, built once at start-up."""

    config: Config
    api: WishlistApiClient
    notifications: NotificationCenter
    books: BookStore
    filters: FilterStore
    visible_books: Derived

    def close(self) -> None:
        self.visible_books.dispose()
        self.api.close()


def create_session(config: Optional[Config] = None) -> WishlistSession:
    config = config or Config.from_env()
    api = WishlistApiClient(
        config.api_url,
        timeout=config.request_timeout,
        retry_attempts=config.retry_attempts,
        retry_delay=config.retry_delay,
        cache_ttl=config.cache_ttl,
    )
    notifications = NotificationCenter()
    books = BookStore(api, notifications)
    filters = FilterStore()
    return WishlistSession(
        config=config,
        api=api,
        notifications=notifications,
        books=books,
        filters=filters,
        visible_books=filtered_books(books.all_books, filters),
    )
