"""Error taxonomy, response envelopes and user-facing error text."""
from __future__ import annotations

import sqlite3
from typing import Any, Dict, Optional

from ids import utc_now

NETWORK_ERROR = "NETWORK_ERROR"
VALIDATION_ERROR = "VALIDATION_ERROR"
BAD_REQUEST = "BAD_REQUEST"
BOOK_NOT_FOUND = "BOOK_NOT_FOUND"
TAG_NOT_FOUND = "TAG_NOT_FOUND"
CONFLICT = "CONFLICT"
DATABASE_ERROR = "DATABASE_ERROR"
HTTP_ERROR = "HTTP_ERROR"
INTERNAL_ERROR = "INTERNAL_ERROR"

ERROR_STATUS_MAP: Dict[str, int] = {
    VALIDATION_ERROR: 400,
    BAD_REQUEST: 400,
    BOOK_NOT_FOUND: 404,
    TAG_NOT_FOUND: 404,
    CONFLICT: 409,
    DATABASE_ERROR: 500,
    NETWORK_ERROR: 500,
    INTERNAL_ERROR: 500,
    HTTP_ERROR: 502,
}

ERROR_MESSAGES: Dict[str, str] = {
    NETWORK_ERROR: "Unable to reach the server. Check your connection and try again.",
    VALIDATION_ERROR: "Some of the information provided is not valid. Please review it and try again.",
    BAD_REQUEST: "The request could not be understood by the server.",
    BOOK_NOT_FOUND: "That book no longer exists. It may have been deleted elsewhere.",
    TAG_NOT_FOUND: "That tag no longer exists.",
    CONFLICT: "This change conflicts with existing data.",
    DATABASE_ERROR: "The server could not save your changes. Please try again shortly.",
    HTTP_ERROR: "The server returned an unexpected response.",
    INTERNAL_ERROR: "Something went wrong on the server. Please try again.",
}

SENSITIVE_FIELDS = ("password", "token", "secret", "key", "auth")


class ApiError(Exception):
    """Application error raised inside request handlers and rendered as an envelope."""

    def __init__(self, code: str, message: str, details: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details

    @property
    def status_code(self) -> int:
        return get_error_status(self.code)

    def to_envelope(self, request_id: Optional[str] = None) -> Dict[str, Any]:
        return error_envelope(self.code, self.message, self.details, request_id)


def get_error_status(code: str) -> int:
    return ERROR_STATUS_MAP.get(code, 500)


def success_envelope(
    data: Any,
    message: Optional[str] = None,
    request_id: Optional[str] = None,
) -> Dict[str, Any]:
    envelope: Dict[str, Any] = {"success": True, "data": data, "timestamp": utc_now()}
    if message is not None:
        envelope["message"] = message
    if request_id is not None:
        envelope["requestId"] = request_id
    return envelope


def error_envelope(
    code: str,
    message: str,
    details: Any = None,
    request_id: Optional[str] = None,
) -> Dict[str, Any]:
    envelope: Dict[str, Any] = {
        "success": False,
        "error": code,
        "message": message,
        "timestamp": utc_now(),
    }
    if details is not None:
        envelope["details"] = sanitize_details(details)
    if request_id is not None:
        envelope["requestId"] = request_id
    return envelope


def classify_database_error(error: Exception) -> str:
    """Map a SQLite failure onto an API error code."""
    message = str(error).lower()
    if isinstance(error, sqlite3.IntegrityError):
        if "unique constraint" in message:
            return CONFLICT
        return VALIDATION_ERROR
    if "unique constraint" in message or "duplicate" in message:
        return CONFLICT
    if "syntax error" in message:
        return INTERNAL_ERROR
    return DATABASE_ERROR


def sanitize_details(details: Any) -> Any:
    if isinstance(details, list):
        return [sanitize_details(item) for item in details]
    if not isinstance(details, dict):
        return details
    cleaned: Dict[str, Any] = {}
    for key, value in details.items():
        if any(field in str(key).lower() for field in SENSITIVE_FIELDS):
            cleaned[key] = "[REDACTED]"
        else:
            cleaned[key] = sanitize_details(value)
    return cleaned


def get_error_message(error: BaseException) -> str:
    """Human-readable text for an error, looked up by its code when it has one."""
    code = getattr(error, "code", None)
    if code in ERROR_MESSAGES:
        return ERROR_MESSAGES[code]
    text = str(error).strip()
    return text or "An unknown error occurred."
