"""Identity error taxonomy.

Every failure the identity layer reports to a caller is one of the
``IdentityErrorKind`` variants. Routes never branch on message text; the
exception handler in ``lumen.main`` maps ``kind`` to a status code and a
user-facing remedy through ``ERROR_STATUS``.
"""

import sqlite3
from enum import Enum
from typing import Optional

from sqlalchemy.exc import DBAPIError


class IdentityErrorKind(str, Enum):
    DEVICE_UNIDENTIFIED = "device_unidentified"
    INVALID_IDENTITY_KEY = "invalid_identity_key"
    IDENTITY_KEY_NOT_FOUND = "identity_key_not_found"
    JOURNEY_NOT_FOUND = "journey_not_found"
    MIGRATION_INVALID_FORMAT = "migration_invalid_format"
    MIGRATION_NOT_FOUND = "migration_not_found"
    MIGRATION_ALREADY_USED = "migration_already_used"
    MIGRATION_EXPIRED = "migration_expired"
    STORAGE_UNAVAILABLE = "storage_unavailable"


ERROR_STATUS: dict[IdentityErrorKind, int] = {
    IdentityErrorKind.DEVICE_UNIDENTIFIED: 400,
    IdentityErrorKind.INVALID_IDENTITY_KEY: 400,
    IdentityErrorKind.IDENTITY_KEY_NOT_FOUND: 404,
    IdentityErrorKind.JOURNEY_NOT_FOUND: 500,
    IdentityErrorKind.MIGRATION_INVALID_FORMAT: 400,
    IdentityErrorKind.MIGRATION_NOT_FOUND: 404,
    IdentityErrorKind.MIGRATION_ALREADY_USED: 409,
    IdentityErrorKind.MIGRATION_EXPIRED: 410,
    IdentityErrorKind.STORAGE_UNAVAILABLE: 503,
}

ERROR_MESSAGES: dict[IdentityErrorKind, str] = {
    IdentityErrorKind.DEVICE_UNIDENTIFIED: "We couldn't recognize your device. Try refreshing the page.",
    IdentityErrorKind.INVALID_IDENTITY_KEY: "That key doesn't look right. Check it and try again.",
    IdentityErrorKind.IDENTITY_KEY_NOT_FOUND: "We couldn't find that key. Check that you typed it correctly.",
    IdentityErrorKind.JOURNEY_NOT_FOUND: "Your journey couldn't be restored right now. Try again later.",
    IdentityErrorKind.MIGRATION_INVALID_FORMAT: "That transfer code is malformed. Check it for typos.",
    IdentityErrorKind.MIGRATION_NOT_FOUND: "We couldn't find that transfer code. Check the link.",
    IdentityErrorKind.MIGRATION_ALREADY_USED: "This transfer link was already used. Nothing else to do.",
    IdentityErrorKind.MIGRATION_EXPIRED: "This transfer link has expired. Create a new one.",
    IdentityErrorKind.STORAGE_UNAVAILABLE: "Your data is temporarily unavailable. Try again in a few minutes.",
}

if set(ERROR_STATUS) != set(IdentityErrorKind) or set(ERROR_MESSAGES) != set(IdentityErrorKind):
    raise RuntimeError("Every IdentityErrorKind needs a status code and a message")


class IdentityError(Exception):
    """Base class for all identity-layer failures."""

    kind: IdentityErrorKind

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail
        super().__init__(detail or self.kind.value)

    @property
    def status_code(self) -> int:
        return ERROR_STATUS[self.kind]

    @property
    def message(self) -> str:
        return ERROR_MESSAGES[self.kind]


class DeviceUnidentified(IdentityError):
    kind = IdentityErrorKind.DEVICE_UNIDENTIFIED


class InvalidIdentityKey(IdentityError):
    kind = IdentityErrorKind.INVALID_IDENTITY_KEY


class IdentityKeyNotFound(IdentityError):
    kind = IdentityErrorKind.IDENTITY_KEY_NOT_FOUND


class JourneyNotFound(IdentityError):
    kind = IdentityErrorKind.JOURNEY_NOT_FOUND


class MigrationTokenInvalidFormat(IdentityError):
    kind = IdentityErrorKind.MIGRATION_INVALID_FORMAT


class MigrationTokenNotFound(IdentityError):
    kind = IdentityErrorKind.MIGRATION_NOT_FOUND


class MigrationTokenAlreadyUsed(IdentityError):
    kind = IdentityErrorKind.MIGRATION_ALREADY_USED


class MigrationTokenExpired(IdentityError):
    kind = IdentityErrorKind.MIGRATION_EXPIRED


class StorageUnavailable(IdentityError):
    kind = IdentityErrorKind.STORAGE_UNAVAILABLE

    retry_after_seconds = 60


# --- Storage error classification ---

# sqlite3 primary result codes
SQLITE_BUSY = 5
SQLITE_LOCKED = 6
SQLITE_NOMEM = 7
SQLITE_FULL = 13

_CONTENTION_CODES = {SQLITE_BUSY, SQLITE_LOCKED}
_EXHAUSTION_CODES = {SQLITE_BUSY, SQLITE_LOCKED, SQLITE_NOMEM, SQLITE_FULL}

# gRPC-style RESOURCE_EXHAUSTED reported by document-store drivers
_RESOURCE_EXHAUSTED_CODES = {8, "8", "RESOURCE_EXHAUSTED"}

_EXHAUSTION_MARKERS = (
    "database or disk is full",
    "database is locked",
    "out of memory",
    "quota exceeded",
    "resource_exhausted",
)


def _driver_error(exc: BaseException) -> BaseException:
    if isinstance(exc, DBAPIError) and exc.orig is not None:
        return exc.orig
    return exc


def _sqlite_code(exc: BaseException) -> Optional[int]:
    error = _driver_error(exc)
    if isinstance(error, sqlite3.Error):
        code = getattr(error, "sqlite_errorcode", None)
        if code is not None:
            return code & 0xFF
    return None


def is_contention_error(exc: BaseException) -> bool:
    """True when the store rejected a write because another writer holds the lock."""
    code = _sqlite_code(exc)
    if code is not None:
        return code in _CONTENTION_CODES
    return "database is locked" in str(_driver_error(exc)).lower()


def is_storage_exhausted(exc: BaseException) -> bool:
    """True for quota/resource-exhaustion failures that are worth retrying later.

    Error codes are checked first; message matching only covers drivers that
    do not expose one.
    """
    code = _sqlite_code(exc)
    if code is not None:
        return code in _EXHAUSTION_CODES

    error = _driver_error(exc)
    if getattr(error, "code", None) in _RESOURCE_EXHAUSTED_CODES:
        return True

    text = f"{error} {getattr(error, 'details', '') or ''}".lower()
    return any(marker in text for marker in _EXHAUSTION_MARKERS)
