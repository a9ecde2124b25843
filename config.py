"""Environment driven settings shared by the server, client and CLI."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

APP_DIR = Path.home() / ".audiobook_wishlist"
DEFAULT_DB_PATH = APP_DIR / "wishlist.db"
DEFAULT_API_URL = "http://127.0.0.1:8000/api"
DEFAULT_LOG_LEVEL = "INFO"
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


@dataclass(frozen=True)
class Config:
    db_path: Path = DEFAULT_DB_PATH
    api_url: str = DEFAULT_API_URL
    request_timeout: float = 10.0
    retry_attempts: int = 2
    retry_delay: float = 0.5
    cache_ttl: float = 5.0
    log_level: str = DEFAULT_LOG_LEVEL
    host: str = "127.0.0.1"
    port: int = 8000

    @classmethod
    def from_env(cls) -> "Config":
        db_path = os.getenv("WISHLIST_DB_PATH")
        return cls(
            db_path=Path(db_path).expanduser() if db_path else DEFAULT_DB_PATH,
            api_url=os.getenv("WISHLIST_API_URL", DEFAULT_API_URL).rstrip("/"),
            request_timeout=_env_float("WISHLIST_REQUEST_TIMEOUT", 10.0),
            retry_attempts=_env_int("WISHLIST_RETRY_ATTEMPTS", 2),
            retry_delay=_env_float("WISHLIST_RETRY_DELAY", 0.5),
            cache_ttl=_env_float("WISHLIST_CACHE_TTL", 5.0),
            log_level=os.getenv("WISHLIST_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper(),
            host=os.getenv("HOST", "127.0.0.1"),
            port=_env_int("PORT", 8000),
        )


def configure_logging(level: Optional[str] = None) -> None:
    """Install the root handler once; later calls only adjust the level."""
    level_name = (level or os.getenv("WISHLIST_LOG_LEVEL") or DEFAULT_LOG_LEVEL).upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO), format=LOG_FORMAT)
    logging.getLogger().setLevel(getattr(logging, level_name, logging.INFO))
