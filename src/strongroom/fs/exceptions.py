"""Custom exception hierarchy for the Strongroom storage layer.

Every error carries a short ``code`` so the HTTP layer can map it to a
status without string matching.
"""


class StrongroomError(Exception):
    """Base exception for all Strongroom storage errors."""

    code = "error"


class PathInvalidError(StrongroomError, ValueError):
    """Raised when a path escapes the storage root or has a malformed segment."""

    code = "path_invalid"


class NotFoundError(StrongroomError):
    """Raised when a referenced path, trash entry, version or share does not exist."""

    code = "not_found"


PathNotFoundError = NotFoundError


class ConflictError(StrongroomError):
    """Raised when the destination of a rename or move is already occupied."""

    code = "conflict"


class StorageError(StrongroomError):
    """Raised on underlying filesystem failures (disk I/O, permissions, etc.)."""

    code = "io_failure"


class ConsistencyError(StrongroomError):
    """Raised when metadata and bytes on disk have drifted apart."""

    code = "consistency"


class ShareAccessDenied(StrongroomError):
    """Base class for share-link policy denials."""

    code = "denied"

    def __init__(self, share_id: str, message: str | None = None) -> None:
        self.share_id = share_id
        super().__init__(message or f"Access to share {share_id} denied: {self.code}")


class ShareExpiredError(ShareAccessDenied):
    """The share link's expiry timestamp is in the past."""

    code = "expired"


class ShareQuotaExhaustedError(ShareAccessDenied):
    """The share link has reached its download limit."""

    code = "quota_exhausted"


class ShareUnauthorizedError(ShareAccessDenied):
    """A password is required and the supplied one does not match."""

    code = "unauthorized"


class ShareForbiddenError(ShareAccessDenied):
    """The requested kind of access is not allowed by the link."""

    code = "forbidden"
