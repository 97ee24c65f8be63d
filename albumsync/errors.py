"""Error taxonomy for AlbumSync.

Every error carries the HTTP status the sync server answers with, so the
exporters and the API raise the same types.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for all AlbumSync errors."""

    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class NotFoundError(SyncError, FileNotFoundError):
    """Missing database, root folder or artifact."""

    status_code = 404


class ValidationError(SyncError, ValueError):
    """Malformed id, path-escape attempt or invalid request input."""

    status_code = 400


class UnsupportedFormatError(SyncError):
    """Thumbnail source extension is not a recognized image format."""

    status_code = 400


class AuthError(SyncError):
    status_code = 401


class ConflictError(SyncError):
    """Server lifecycle transition already in progress, or upload collision."""

    status_code = 409


class PayloadTooLargeError(SyncError):
    status_code = 413


class NotRunningError(SyncError):
    status_code = 503
