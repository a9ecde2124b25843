from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from ids import is_valid_id
from wishlist import DEFAULT_TAG_COLOR, WishlistStore


def _create_legacy_schema(db_path: Path) -> None:
    conn = sqlite3.connect(db_path)
    try:
        conn.execute(
            """
            CREATE TABLE books (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                author TEXT NOT NULL,
                narrator_rating REAL,
                performance_rating REAL,
                description TEXT,
                cover_image_url TEXT,
                date_added TEXT NOT NULL
            );
            """
        )
        conn.execute(
            "INSERT INTO books (id, title, author, date_added) VALUES (?, ?, ?, ?);",
            ("1700000000000-abc123", "Old Book", "Old Author", "2023-11-14T22:13:20.000Z"),
        )
        conn.commit()
    finally:
        conn.close()


@pytest.fixture
def store(tmp_path: Path) -> WishlistStore:
    test_store = WishlistStore(db_path=tmp_path / "wishlist.db")
    yield test_store
    test_store.close()


def test_create_book_returns_canonical_record(store: WishlistStore) -> None:
    book = store.create_book(
        {
            "title": "  Dune ",
            "author": "Frank Herbert",
            "narratorRating": 4.5,
            "description": "   ",
            "tags": [{"id": "t1", "name": "series", "color": "#8b5cf6"}],
        }
    )

    assert is_valid_id(book["id"])
    assert book["title"] == "Dune"
    assert book["narratorRating"] == 4.5
    assert book["description"] is None
    assert [tag["name"] for tag in book["tags"]] == ["series"]
    assert book["dateAdded"] == book["createdAt"]
    assert store.get_book(book["id"]) == book


def test_tags_are_reused_by_name(store: WishlistStore) -> None:
    first = store.create_book(
        {"title": "A", "author": "X", "tags": [{"id": "tag-a", "name": "next", "color": "#10b981"}]}
    )
    second = store.create_book(
        {"title": "B", "author": "Y", "tags": [{"id": "tag-b", "name": "next", "color": "badge"}]}
    )

    assert first["tags"][0]["id"] == second["tags"][0]["id"] == "tag-a"
    tags = store.list_tags()
    assert len(tags) == 1
    assert tags[0]["usageCount"] == 2


def test_new_tag_without_color_gets_predefined_or_default(store: WishlistStore) -> None:
    book = store.create_book(
        {"title": "A", "author": "X", "tags": [{"name": "thriller"}, {"name": "cozy"}]}
    )

    colors = {tag["name"]: tag["color"] for tag in book["tags"]}
    assert colors == {"thriller": "#dc2626", "cozy": DEFAULT_TAG_COLOR}


def test_update_applies_only_provided_fields(store: WishlistStore) -> None:
    book = store.create_book(
        {"title": "A", "author": "X", "performanceRating": 3, "tags": [{"name": "funny"}]}
    )

    updated = store.update_book(book["id"], {"author": "Z"})

    assert updated is not None
    assert updated["author"] == "Z"
    assert updated["title"] == "A"
    assert updated["performanceRating"] == 3
    assert [tag["name"] for tag in updated["tags"]] == ["funny"]


def test_update_replaces_tags_and_keeps_order(store: WishlistStore) -> None:
    book = store.create_book({"title": "A", "author": "X", "tags": [{"name": "funny"}]})

    updated = store.update_book(
        book["id"], {"tags": [{"name": "series"}, {"name": "next"}, {"name": "series"}]}
    )

    assert [tag["name"] for tag in updated["tags"]] == ["series", "next"]


def test_update_and_delete_missing_book(store: WishlistStore) -> None:
    assert store.update_book("1700000000000-zzzzzz", {"title": "Nope"}) is None
    assert store.delete_book("1700000000000-zzzzzz") is False


def test_delete_cascades_tag_links(store: WishlistStore) -> None:
    book = store.create_book({"title": "A", "author": "X", "tags": [{"name": "next"}]})

    assert store.delete_book(book["id"]) is True
    assert store.get_book(book["id"]) is None
    assert store.list_tags()[0]["usageCount"] == 0


def test_list_books_filters_by_tag_and_pages(store: WishlistStore) -> None:
    first = store.create_book({"title": "First", "author": "X", "tags": [{"name": "next"}]})
    second = store.create_book({"title": "Second", "author": "Y"})
    third = store.create_book({"title": "Third", "author": "Z", "tags": [{"name": "next"}]})

    assert [book["id"] for book in store.list_books()] == [third["id"], second["id"], first["id"]]
    assert [book["id"] for book in store.list_books(tag="next")] == [third["id"], first["id"]]
    assert [book["id"] for book in store.list_books(limit=1, offset=1)] == [second["id"]]


def test_duplicate_tag_name_raises_integrity_error(store: WishlistStore) -> None:
    store.create_tag("series", "#8b5cf6")

    with pytest.raises(sqlite3.IntegrityError):
        store.create_tag("series", "#000000")


def test_legacy_database_is_migrated(tmp_path: Path) -> None:
    db_path = tmp_path / "legacy.db"
    _create_legacy_schema(db_path)

    store = WishlistStore(db_path=db_path)
    try:
        book = store.get_book("1700000000000-abc123")
        assert book is not None
        assert book["audibleUrl"] is None
        assert book["queuePosition"] is None
        assert book["createdAt"] == "2023-11-14T22:13:20.000Z"
        assert book["updatedAt"] == "2023-11-14T22:13:20.000Z"

        updated = store.update_book(book["id"], {"queuePosition": 2, "tags": [{"name": "next"}]})
        assert updated["queuePosition"] == 2
        assert [tag["name"] for tag in updated["tags"]] == ["next"]
    finally:
        store.close()
