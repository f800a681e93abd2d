import sqlite3
from typing import Optional


class PasteError(Exception):
    kind = "error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"message": self.message, "kind": self.kind}


class NotFound(PasteError):
    kind = "not_found"
    status_code = 404

    def __init__(self, message: str = "Paste not found"):
        super().__init__(message)


class AccessDenied(PasteError):
    """Wrong or missing password. ``paste_info`` is the only paste data a
    caller without the password ever sees."""

    kind = "access_denied"
    status_code = 403

    def __init__(self, message: str, paste_info: Optional[dict] = None):
        super().__init__(message)
        self.paste_info = paste_info

    def to_dict(self) -> dict:
        payload = super().to_dict()
        if self.paste_info is not None:
            payload["pasteInfo"] = self.paste_info
        return payload


class NotEditable(PasteError):
    kind = "not_editable"
    status_code = 403

    def __init__(self, message: str = "This paste is not editable"):
        super().__init__(message)


class ValidationFailed(PasteError):
    kind = "validation_failed"
    status_code = 400


class Conflict(PasteError):
    kind = "conflict"
    status_code = 409


class StorageUnavailable(PasteError):
    kind = "storage_unavailable"
    status_code = 503

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class PersistenceInvariantViolation(PasteError):
    kind = "persistence_invariant_violation"
    status_code = 500


class RateLimited(PasteError):
    kind = "rate_limited"
    status_code = 429

    def __init__(self, message: str = "Rate limit exceeded"):
        super().__init__(message)


# Database error classification. The drivers disagree on exception types
# (sqlite3 vs asyncpg vs aiomysql), so fall back to message inspection.

_SCHEMA_ERROR_MARKERS = (
    "no such column", "no such table", "has no column named",
    "does not exist", "unknown column", "doesn't exist",
)


def is_schema_error(exc: BaseException) -> bool:
    name = type(exc).__name__
    if name in ("UndefinedColumnError", "UndefinedTableError"):
        return True
    text = str(exc).lower()
    return any(marker in text for marker in _SCHEMA_ERROR_MARKERS)


def is_unique_violation(exc: BaseException, *constraints: str) -> bool:
    """True for a unique-constraint failure; with ``constraints``, only when
    the driver's message names one of them."""
    text = str(exc).lower()
    if isinstance(exc, sqlite3.IntegrityError):
        unique = "unique" in text
    else:
        name = type(exc).__name__
        unique = name == "UniqueViolationError" or (name == "IntegrityError" and "unique" in text)
    if not unique:
        return False
    return not constraints or any(c.lower() in text for c in constraints)


def is_lock_error(exc: BaseException) -> bool:
    text = str(exc).lower()
    return "database is locked" in text or type(exc).__name__ in (
        "LockNotAvailableError", "DeadlockDetectedError",
    )
