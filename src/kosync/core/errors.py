"""Exception taxonomy shared by the store, the engine, and the HTTP layer.

Every error carries the numeric ``code`` and HTTP ``status`` that KOSync
clients expect in an error response body.
"""

from __future__ import annotations


class KosyncError(Exception):
    """Base class for all kosync errors."""

    code: int = 2000
    status: int = 500


class StorageError(KosyncError):
    """The store could not be opened, locked, read, or committed."""


class SerializationError(KosyncError):
    """A stored record is corrupt or does not match the expected schema."""


class VersionConflict(KosyncError):
    """The caller's base version is stale; re-read and merge again."""

    code = 2005
    status = 409

    def __init__(self, base_version: int, current_version: int) -> None:
        super().__init__("Version conflict")
        self.base_version = base_version
        self.current_version = current_version


class Unauthorized(KosyncError):
    code = 2001
    status = 401

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class UserExists(KosyncError):
    code = 2002
    status = 402

    def __init__(self, message: str = "User already exists") -> None:
        super().__init__(message)


class InvalidRequest(KosyncError):
    code = 2003
    status = 403

    def __init__(self, message: str) -> None:
        super().__init__(f"Invalid request: {message}")


class DocumentMissing(KosyncError):
    code = 2004
    status = 403

    def __init__(self, message: str = "Document field missing") -> None:
        super().__init__(message)
