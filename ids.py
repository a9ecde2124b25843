"""Identifier and timestamp helpers."""
from __future__ import annotations

import random
import re
import string
import time
from datetime import datetime, timezone
from typing import Optional

TEMP_ID_PREFIX = "temp_"

_ALPHABET = string.ascii_lowercase + string.digits
_BOOK_ID_RE = re.compile(r"^\d{13}-[a-z0-9]{6}$")
_SHORT_ID_RE = re.compile(r"^[a-z0-9]{6}$")


def _token(length: int = 6) -> str:
    return "".join(random.choice(_ALPHABET) for _ in range(length))


def generate_id() -> str:
    """Return a backend id such as ``1694520000000-abc123``."""
    return f"{int(time.time() * 1000)}-{_token()}"


def generate_tag_id() -> str:
    return _token()


def generate_temp_id() -> str:
    return f"{TEMP_ID_PREFIX}{int(time.time() * 1000)}_{_token()}"


def is_temp_id(value: str) -> bool:
    return isinstance(value, str) and value.startswith(TEMP_ID_PREFIX)


def is_valid_id(value: Optional[str]) -> bool:
    if not isinstance(value, str):
        return False
    return bool(_BOOK_ID_RE.match(value) or _SHORT_ID_RE.match(value))


def timestamp_from_id(value: str) -> Optional[datetime]:
    match = re.match(r"^(\d{13})-", value or "")
    if not match:
        return None
    return datetime.fromtimestamp(int(match.group(1)) / 1000, tz=timezone.utc)


def utc_now() -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a ``Z`` suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: object) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
