"""Best-effort metadata extraction from Audible product URLs.

Only the URL itself is inspected; product pages are never fetched, so the
title guessed from the path is the most that can be recovered. Callers fall
back to manual entry when parsing fails.
"""
from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional
from urllib.parse import unquote, urlparse

logger = logging.getLogger(__name__)

AUDIBLE_DOMAINS = (
    "audible.com",
    "audible.co.uk",
    "audible.ca",
    "audible.com.au",
    "audible.de",
    "audible.fr",
)

_ASIN_RE = re.compile(r"^[A-Z0-9]+$")


@dataclass
class AudibleMetadata:
    title: Optional[str] = None
    author: Optional[str] = None
    narrator_rating: Optional[float] = None
    description: Optional[str] = None
    cover_image_url: Optional[str] = None


@dataclass
class ParseResult:
    success: bool
    metadata: AudibleMetadata = field(default_factory=AudibleMetadata)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        meta = asdict(self.metadata)
        return {
            "success": self.success,
            "metadata": {
                "title": meta["title"],
                "author": meta["author"],
                "narratorRating": meta["narrator_rating"],
                "description": meta["description"],
                "coverImageUrl": meta["cover_image_url"],
            },
            "error": self.error,
        }


def is_valid_audible_url(url: Optional[str]) -> bool:
    if not url or not isinstance(url, str):
        return False
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return False
    if parsed.scheme not in ("http", "https"):
        return False
    host = (parsed.hostname or "").lower()
    on_audible = any(host == domain or host.endswith("." + domain) for domain in AUDIBLE_DOMAINS)
    return on_audible and "/pd/" in parsed.path


def _title_from_path(path: str) -> Optional[str]:
    parts = path.split("/")
    try:
        index = parts.index("pd")
    except ValueError:
        return None
    if index + 1 >= len(parts):
        return None
    segment = unquote(parts[index + 1]).strip()
    if not segment or _ASIN_RE.match(segment):
        return None
    # Audible slugs end in "-Audiobook".
    segment = re.sub(r"-Audiobook$", "", segment, flags=re.IGNORECASE)
    title = re.sub(r"\b\w", lambda match: match.group(0).upper(), segment.replace("-", " ")).strip()
    return title if len(title) > 3 else None


def parse_audible_url(url: str) -> ParseResult:
    if not is_valid_audible_url(url):
        return ParseResult(success=False, error="Invalid Audible URL format")

    title = _title_from_path(urlparse(url.strip()).path)
    if title:
        logger.debug("Extracted title %r from %s", title, url)
        return ParseResult(success=True, metadata=AudibleMetadata(title=title))
    return ParseResult(
        success=False,
        error="Unable to extract metadata from URL. Please enter details manually.",
    )
