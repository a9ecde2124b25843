from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from config import DEFAULT_DB_PATH
from ids import generate_id, generate_tag_id, utc_now

logger = logging.getLogger(__name__)

# Wire field -> books column. Timestamps are managed by the store itself.
BOOK_FIELDS: Dict[str, str] = {
    "title": "title",
    "author": "author",
    "audibleUrl": "audible_url",
    "narratorRating": "narrator_rating",
    "performanceRating": "performance_rating",
    "description": "description",
    "coverImageUrl": "cover_image_url",
    "queuePosition": "queue_position",
}

TEXT_FIELDS = {"description", "coverImageUrl", "audibleUrl"}

PREDEFINED_TAG_COLORS: Dict[str, str] = {
    "funny": "#fbbf24",
    "action": "#ef4444",
    "series": "#8b5cf6",
    "standalone": "#06b6d4",
    "thriller": "#dc2626",
    "next": "#10b981",
}
DEFAULT_TAG_COLOR = "#6b7280"

# Columns added after the first release; older databases are migrated in place.
LATE_BOOK_COLUMNS: Dict[str, str] = {
    "audible_url": "TEXT",
    "queue_position": "INTEGER",
    "date_updated": "TEXT",
    "created_at": "TEXT",
    "updated_at": "TEXT",
}


def tag_color(name: str) -> str:
    return PREDEFINED_TAG_COLORS.get(name, DEFAULT_TAG_COLOR)


def _clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class WishlistStore:
    """SQLite-backed store for wishlist books and their tags."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path or DEFAULT_DB_PATH)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self._conn:
            self._conn.execute("PRAGMA foreign_keys = ON;")
        self._ensure_schema()

    # --------------------------------------------------------------------- #
    # Schema
    # --------------------------------------------------------------------- #
    def _ensure_schema(self) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS books (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    author TEXT NOT NULL,
                    audible_url TEXT,
                    narrator_rating REAL,
                    performance_rating REAL,
                    description TEXT,
                    cover_image_url TEXT,
                    queue_position INTEGER,
                    date_added TEXT NOT NULL,
                    date_updated TEXT,
                    created_at TEXT,
                    updated_at TEXT
                );
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS tags (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL UNIQUE,
                    color TEXT NOT NULL,
                    created_at TEXT
                );
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS book_tags (
                    book_id TEXT NOT NULL,
                    tag_id TEXT NOT NULL,
                    PRIMARY KEY (book_id, tag_id),
                    FOREIGN KEY(book_id) REFERENCES books(id) ON DELETE CASCADE,
                    FOREIGN KEY(tag_id) REFERENCES tags(id) ON DELETE CASCADE
                );
                """
            )
            self._ensure_book_columns()
            for statement in (
                "CREATE INDEX IF NOT EXISTS books_title_idx ON books(title COLLATE NOCASE);",
                "CREATE INDEX IF NOT EXISTS books_author_idx ON books(author COLLATE NOCASE);",
                "CREATE INDEX IF NOT EXISTS books_date_added_idx ON books(date_added);",
                "CREATE INDEX IF NOT EXISTS books_queue_position_idx ON books(queue_position);",
                "CREATE INDEX IF NOT EXISTS book_tags_book_id_idx ON book_tags(book_id);",
                "CREATE INDEX IF NOT EXISTS book_tags_tag_id_idx ON book_tags(tag_id);",
            ):
                self._conn.execute(statement)

    def _ensure_book_columns(self) -> None:
        """Add columns that databases from older releases are missing."""
        existing = {
            row["name"] for row in self._conn.execute("PRAGMA table_info('books');").fetchall()
        }
        missing = [name for name in LATE_BOOK_COLUMNS if name not in existing]
        if not missing:
            return

        logger.info("Migrating books table, adding columns: %s", ", ".join(missing))
        for name in missing:
            self._conn.execute(f"ALTER TABLE books ADD COLUMN {name} {LATE_BOOK_COLUMNS[name]};")
        self._conn.execute(
            """
            UPDATE books
            SET created_at = COALESCE(created_at, date_added),
                date_updated = COALESCE(date_updated, date_added),
                updated_at = COALESCE(updated_at, created_at, date_added);
            """
        )

    # --------------------------------------------------------------------- #
    # Utility helpers
    # --------------------------------------------------------------------- #
    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def ping(self) -> bool:
        with self._lock:
            row = self._conn.execute("SELECT 1;").fetchone()
        return row is not None and row[0] == 1

    def _tags_for(self, book_ids: Iterable[str]) -> Dict[str, List[Dict[str, Any]]]:
        ids = list(book_ids)
        grouped: Dict[str, List[Dict[str, Any]]] = {book_id: [] for book_id in ids}
        if not ids:
            return grouped
        placeholders = ", ".join("?" for _ in ids)
        rows = self._conn.execute(
            f"""
            SELECT bt.book_id, t.id, t.name, t.color
            FROM book_tags bt
            JOIN tags t ON t.id = bt.tag_id
            WHERE bt.book_id IN ({placeholders})
            ORDER BY bt.rowid;
            """,
            ids,
        ).fetchall()
        for row in rows:
            grouped[row["book_id"]].append(
                {"id": row["id"], "name": row["name"], "color": row["color"]}
            )
        return grouped

    @staticmethod
    def _to_record(row: sqlite3.Row, tags: List[Dict[str, Any]]) -> Dict[str, Any]:
        return {
            "id": row["id"],
            "title": row["title"],
            "author": row["author"],
            "tags": tags,
            "narratorRating": row["narrator_rating"],
            "performanceRating": row["performance_rating"],
            "description": row["description"],
            "coverImageUrl": row["cover_image_url"],
            "audibleUrl": row["audible_url"],
            "queuePosition": row["queue_position"],
            "dateAdded": row["date_added"],
            "dateUpdated": row["date_updated"],
            "createdAt": row["created_at"],
            "updatedAt": row["updated_at"],
        }

    def _fetch_book(self, book_id: str) -> Optional[Dict[str, Any]]:
        row = self._conn.execute("SELECT * FROM books WHERE id = ?;", (book_id,)).fetchone()
        if row is None:
            return None
        return self._to_record(row, self._tags_for([book_id])[book_id])

    def _resolve_tags(self, tags: Iterable[Dict[str, Any]], now: str) -> List[str]:
        """Return tag ids for the given references, reusing existing tags by name."""
        resolved: List[str] = []
        for tag in tags:
            name = str(tag.get("name") or "").strip()
            if not name:
                continue
            existing = self._conn.execute(
                "SELECT id FROM tags WHERE name = ?;", (name,)
            ).fetchone()
            if existing is not None:
                tag_id = existing["id"]
            else:
                tag_id = str(tag.get("id") or "").strip() or generate_tag_id()
                taken = self._conn.execute("SELECT 1 FROM tags WHERE id = ?;", (tag_id,)).fetchone()
                if taken is not None:
                    tag_id = generate_tag_id()
                color = str(tag.get("color") or "").strip() or tag_color(name)
                self._conn.execute(
                    "INSERT INTO tags (id, name, color, created_at) VALUES (?, ?, ?, ?);",
                    (tag_id, name, color, now),
                )
                logger.debug("Created tag %s (%s)", name, tag_id)
            if tag_id not in resolved:
                resolved.append(tag_id)
        return resolved

    def _link_tags(self, book_id: str, tag_ids: List[str]) -> None:
        self._conn.executemany(
            "INSERT OR IGNORE INTO book_tags (book_id, tag_id) VALUES (?, ?);",
            [(book_id, tag_id) for tag_id in tag_ids],
        )

    # --------------------------------------------------------------------- #
    # Book management
    # --------------------------------------------------------------------- #
    def list_books(
        self,
        tag: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        """Books with their tags, most recently added first."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM books ORDER BY date_added DESC, rowid DESC;"
            ).fetchall()
            tags = self._tags_for(row["id"] for row in rows)
        books = [self._to_record(row, tags[row["id"]]) for row in rows]
        if tag:
            books = [book for book in books if any(t["name"] == tag for t in book["tags"])]
        if limit is not None and limit > 0:
            books = books[offset : offset + limit]
        elif offset:
            books = books[offset:]
        return books

    def get_book(self, book_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._fetch_book(book_id)

    def create_book(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a book and return its canonical record."""
        book_id = generate_id()
        now = utc_now()
        values = {
            column: (_clean_text(data.get(field)) if field in TEXT_FIELDS else data.get(field))
            for field, column in BOOK_FIELDS.items()
        }
        values["title"] = str(data["title"]).strip()
        values["author"] = str(data["author"]).strip()
        columns = ["id", *values.keys(), "date_added", "date_updated", "created_at", "updated_at"]
        params = [book_id, *values.values(), now, now, now, now]
        placeholders = ", ".join("?" for _ in columns)

        with self._lock, self._conn:
            self._conn.execute(
                f"INSERT INTO books ({', '.join(columns)}) VALUES ({placeholders});",
                params,
            )
            self._link_tags(book_id, self._resolve_tags(data.get("tags") or [], now))
            record = self._fetch_book(book_id)
        if record is None:
            raise sqlite3.DatabaseError("Failed to retrieve created book")
        return record

    def update_book(self, book_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Apply the provided fields only. Returns None when the book does not exist."""
        now = utc_now()
        assignments: List[str] = []
        values: List[Any] = []
        for field, column in BOOK_FIELDS.items():
            if field not in changes:
                continue
            value = changes[field]
            if field in ("title", "author"):
                value = str(value).strip()
            elif field in TEXT_FIELDS:
                value = _clean_text(value)
            assignments.append(f"{column} = ?")
            values.append(value)
        assignments.extend(["date_updated = ?", "updated_at = ?"])
        values.extend([now, now, book_id])

        with self._lock, self._conn:
            exists = self._conn.execute("SELECT 1 FROM books WHERE id = ?;", (book_id,)).fetchone()
            if exists is None:
                return None
            self._conn.execute(
                f"UPDATE books SET {', '.join(assignments)} WHERE id = ?;",
                values,
            )
            if changes.get("tags") is not None:
                self._conn.execute("DELETE FROM book_tags WHERE book_id = ?;", (book_id,))
                self._link_tags(book_id, self._resolve_tags(changes["tags"], now))
            return self._fetch_book(book_id)

    def delete_book(self, book_id: str) -> bool:
        with self._lock, self._conn:
            cursor = self._conn.execute("DELETE FROM books WHERE id = ?;", (book_id,))
        return cursor.rowcount > 0

    # ------------------------------------------------------------------ #
    # Tags
    # ------------------------------------------------------------------ #
    def list_tags(self) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT t.id, t.name, t.color, t.created_at, COUNT(bt.book_id) AS usage_count
                FROM tags t
                LEFT JOIN book_tags bt ON bt.tag_id = t.id
                GROUP BY t.id
                ORDER BY usage_count DESC, t.name;
                """
            ).fetchall()
        return [
            {
                "id": row["id"],
                "name": row["name"],
                "color": row["color"],
                "createdAt": row["created_at"],
                "usageCount": row["usage_count"] or 0,
            }
            for row in rows
        ]

    def get_tag_by_name(self, name: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM tags WHERE name = ?;", (name.strip(),)
            ).fetchone()
        if row is None:
            return None
        return {"id": row["id"], "name": row["name"], "color": row["color"], "createdAt": row["created_at"]}

    def create_tag(self, name: str, color: str, tag_id: Optional[str] = None) -> Dict[str, Any]:
        """Insert a tag. A duplicate name raises ``sqlite3.IntegrityError``."""
        now = utc_now()
        new_id = (tag_id or "").strip() or generate_id()
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT INTO tags (id, name, color, created_at) VALUES (?, ?, ?, ?);",
                (new_id, name.strip(), color.strip(), now),
            )
        return {"id": new_id, "name": name.strip(), "color": color.strip(), "createdAt": now, "usageCount": 0}


# ------------------------------------------------------------------------------
# Convenience factory
# ------------------------------------------------------------------------------
def get_store(db_path: Optional[Path] = None) -> WishlistStore:
    return WishlistStore(db_path=db_path)
