from __future__ import annotations

import locale
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Sequence, Tuple

from ids import parse_timestamp
from state import Derived, Writable

SORT_KEYS = ("title", "author", "dateAdded", "narratorRating", "performanceRating")
SORT_ORDERS = ("asc", "desc")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class FilterState:
    search_query: str = ""
    selected_tags: Tuple[str, ...] = ()
    sort_by: str = "title"
    sort_order: str = "asc"


DEFAULT_FILTER_STATE = FilterState()


class FilterStore:
    def __init__(self) -> None:
        self.state: Writable[FilterState] = Writable(DEFAULT_FILTER_STATE)

    def get(self) -> FilterState:
        return self.state.get()

    def get_state(self) -> FilterState:
        return self.state.get()

    def subscribe(self, callback):
        return self.state.subscribe(callback)

    def set_search_query(self, query: str) -> None:
        self.state.update(lambda s: replace(s, search_query=query))

    def toggle_tag(self, name: str) -> None:
        def apply(s: FilterState) -> FilterState:
            if name in s.selected_tags:
                return replace(s, selected_tags=tuple(t for t in s.selected_tags if t != name))
            return replace(s, selected_tags=s.selected_tags + (name,))

        self.state.update(apply)

    def set_sort_by(self, sort_by: str) -> None:
        if sort_by not in SORT_KEYS:
            raise ValueError(f"Unknown sort key: {sort_by!r}")
        self.state.update(lambda s: replace(s, sort_by=sort_by))

    def set_sort_order(self, sort_order: str) -> None:
        if sort_order not in SORT_ORDERS:
            raise ValueError(f"Unknown sort order: {sort_order!r}")
        self.state.update(lambda s: replace(s, sort_order=sort_order))

    def clear_filters(self) -> None:
        self.state.set(DEFAULT_FILTER_STATE)


def _text_key(value: Any) -> str:
    return locale.strxfrm(str(value or "").casefold())


def _date_key(value: Any) -> datetime:
    return parse_timestamp(value) or _EPOCH


def _rating_key(value: Any) -> float:
    return float(value) if value is not None else 0.0


SORT_FUNCTIONS: Dict[str, Callable[[Dict[str, Any]], Any]] = {
    "title": lambda book: _text_key(book.get("title")),
    "author": lambda book: _text_key(book.get("author")),
    "dateAdded": lambda book: _date_key(book.get("dateAdded")),
    "narratorRating": lambda book: _rating_key(book.get("narratorRating")),
    "performanceRating": lambda book: _rating_key(book.get("performanceRating")),
}


def filter_and_sort(books: Sequence[Dict[str, Any]], state: FilterState) -> List[Dict[str, Any]]:
    """Return the books matching ``state``, sorted by its key and direction."""
    result = list(books)

    query = state.search_query.strip().casefold()
    if query:
        result = [
            book
            for book in result
            if query in str(book.get("title") or "").casefold()
            or query in str(book.get("author") or "").casefold()
        ]

    if state.selected_tags:
        result = [
            book
            for book in result
            if all(
                any(tag.get("name") == name for tag in book.get("tags") or [])
                for name in state.selected_tags
            )
        ]

    key = SORT_FUNCTIONS.get(state.sort_by, SORT_FUNCTIONS["title"])
    return sorted(result, key=key, reverse=state.sort_order == "desc")


def filtered_books(book_source: Any, filter_store: FilterStore) -> Derived:
    """Live view over ``book_source`` that follows the filter store."""
    return Derived([book_source, filter_store.state], filter_and_sort)
