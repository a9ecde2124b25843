"""JSON backup and restore for the wishlist, going through the HTTP client."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from api import ApiClientError, WishlistApiClient
from ids import parse_timestamp, utc_now

logger = logging.getLogger(__name__)

MAX_IMPORT_BYTES = 10 * 1024 * 1024
STRATEGIES = ("replace", "merge", "skip-duplicates")

# Fields sent when recreating a book; ids and timestamps are assigned by the server.
WRITABLE_FIELDS = (
    "title",
    "author",
    "tags",
    "narratorRating",
    "performanceRating",
    "queuePosition",
    "coverImageUrl",
    "description",
    "audibleUrl",
)


@dataclass
class ImportResult:
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


def default_export_name(today: Optional[date] = None) -> str:
    return f"audiobook-wishlist-{(today or date.today()).isoformat()}.json"


def build_export(books: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"books": books, "lastUpdated": utc_now()}


def export_to_file(client: WishlistApiClient, path: Optional[Path] = None) -> Path:
    target = Path(path) if path else Path.cwd() / default_export_name()
    if target.is_dir():
        target = target / default_export_name()
    data = build_export(client.get_books(use_cache=False))
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(data, indent=2), encoding="utf-8")
    logger.info("Exported %s books to %s", len(data["books"]), target)
    return target


def export_stats(client: WishlistApiClient) -> Dict[str, Any]:
    data = build_export(client.get_books(use_cache=False))
    size = len(json.dumps(data, indent=2).encode("utf-8"))
    return {
        "bookCount": len(data["books"]),
        "dataSize": f"{size / 1024:.1f} KB",
        "lastUpdated": data["lastUpdated"],
    }


# ------------------------------------------------------------------------------
# Validation
# ------------------------------------------------------------------------------
def _valid_rating(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return 0 <= value <= 5


def validate_book(book: Any) -> Tuple[bool, List[str]]:
    if not isinstance(book, dict):
        return False, ["Book must be an object"]

    errors: List[str] = []
    for name in ("id", "title", "author"):
        value = book.get(name)
        if not isinstance(value, str) or not value.strip():
            errors.append(f"Missing or invalid {name}")

    for name in ("narratorRating", "performanceRating"):
        if not _valid_rating(book.get(name)):
            errors.append(f"Invalid {name} (must be number between 0-5)")

    for name in ("description", "coverImageUrl", "audibleUrl"):
        value = book.get(name)
        if value is not None and not isinstance(value, str):
            errors.append(f"Invalid {name}")

    tags = book.get("tags")
    if not isinstance(tags, list):
        errors.append("Missing or invalid tags array")
    else:
        for index, tag in enumerate(tags):
            if not isinstance(tag, dict) or not all(tag.get(key) for key in ("id", "name", "color")):
                errors.append(f"Invalid tag at index {index}")

    if not book.get("dateAdded"):
        errors.append("Missing dateAdded")
    elif parse_timestamp(book.get("dateAdded")) is None:
        errors.append("Invalid dateAdded format")

    return not errors, errors


def parse_import(text: str) -> ImportResult:
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        return ImportResult(success=False, error=f"Invalid JSON format: {exc.msg}")

    if not isinstance(parsed, dict):
        return ImportResult(success=False, error="Invalid JSON format: root must be an object")
    if "books" not in parsed:
        return ImportResult(success=False, error='Invalid format: missing "books" field')
    if not isinstance(parsed["books"], list):
        return ImportResult(success=False, error='Invalid format: "books" must be an array')

    valid: List[Dict[str, Any]] = []
    warnings: List[str] = []
    for index, book in enumerate(parsed["books"]):
        ok, errors = validate_book(book)
        if ok:
            valid.append(book)
        else:
            warnings.append(f"Book at index {index} is invalid: {', '.join(errors)}")

    if parsed["books"] and not valid:
        return ImportResult(success=False, error="No valid books found in the import file", warnings=warnings)
    if warnings:
        warnings.append(f"{len(warnings)} invalid books were skipped during import")

    data = {"books": valid, "lastUpdated": parsed.get("lastUpdated") or utc_now()}
    return ImportResult(success=True, data=data, warnings=warnings)


def import_from_file(path: Path) -> ImportResult:
    path = Path(path)
    if path.suffix.lower() != ".json":
        return ImportResult(success=False, error="Please select a valid JSON file")
    try:
        if path.stat().st_size > MAX_IMPORT_BYTES:
            return ImportResult(success=False, error="File is too large. Maximum size is 10MB")
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        logger.error("Could not read %s: %s", path, exc)
        return ImportResult(success=False, error=f"Failed to read file: {exc}")
    return parse_import(text)


# ------------------------------------------------------------------------------
# Merge
# ------------------------------------------------------------------------------
def _payload(book: Dict[str, Any]) -> Dict[str, Any]:
    return {name: book[name] for name in WRITABLE_FIELDS if book.get(name) is not None}


def _pair(book: Dict[str, Any]) -> Tuple[str, str]:
    return (str(book.get("title", "")).strip().casefold(), str(book.get("author", "")).strip().casefold())


def _create_all(client: WishlistApiClient, books: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Create every book, or none: a failure deletes the ones already created."""
    created: List[Dict[str, Any]] = []
    try:
        for book in books:
            created.append(client.create_book(_payload(book)))
    except ApiClientError:
        for record in created:
            try:
                client.delete_book(record["id"])
            except ApiClientError as exc:
                logger.warning("Could not remove partially imported book %s: %s", record["id"], exc.message)
        raise
    return created


def merge_imported(client: WishlistApiClient, data: Dict[str, Any], strategy: str = "replace") -> ImportResult:
    """Write imported books to the server.

    ``replace`` creates every imported book and then deletes the previous
    ones, ``merge`` updates books whose id already exists and creates the
    rest, ``skip-duplicates`` only creates books whose id and title/author
    pair are both new.
    """
    if strategy not in STRATEGIES:
        return ImportResult(success=False, error=f"Unknown import strategy: {strategy}")
    try:
        return _merge(client, data.get("books") or [], strategy)
    except ApiClientError as exc:
        logger.error("Import failed with strategy %s: %s", strategy, exc.message)
        return ImportResult(success=False, error=exc.message)


def _merge(client: WishlistApiClient, books: List[Dict[str, Any]], strategy: str) -> ImportResult:
    warnings: List[str] = []

    if strategy == "replace":
        previous = client.get_books(use_cache=False)
        created = _create_all(client, books)
        for existing in previous:
            client.delete_book(existing["id"])
        logger.info("Replaced wishlist with %s imported books", len(created))
        return ImportResult(success=True, data=build_export(created))

    existing = client.get_books(use_cache=False)
    existing_ids = {book["id"] for book in existing}
    existing_pairs = {_pair(book) for book in existing}

    for book in books:
        if strategy == "merge":
            if book["id"] in existing_ids:
                client.update_book(book["id"], _payload(book))
            else:
                client.create_book(_payload(book))
            continue

        if book["id"] in existing_ids or _pair(book) in existing_pairs:
            warnings.append(f"Skipped duplicate book: {book.get('title')}")
            continue
        client.create_book(_payload(book))
        existing_pairs.add(_pair(book))

    final = client.get_books(use_cache=False)
    logger.info("Imported %s books with strategy %s (%s skipped)", len(books), strategy, len(warnings))
    return ImportResult(success=True, data=build_export(final), warnings=warnings)
