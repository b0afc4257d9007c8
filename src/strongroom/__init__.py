"""Strongroom: an integrity layer for a self-hosted file store.

Path confinement, side-car metadata, trash, versions and share links —
kept consistent with the bytes on disk.
"""

__version__ = "0.1.0"

from strongroom._strongroom import Strongroom
from strongroom._strongroom_async import StrongroomAsync
from strongroom.config import StrongroomConfig
from strongroom.events import EventBus, EventType, FileEvent
from strongroom.fs.exceptions import (
    ConflictError,
    ConsistencyError,
    NotFoundError,
    PathInvalidError,
    ShareAccessDenied,
    ShareExpiredError,
    ShareForbiddenError,
    ShareQuotaExhaustedError,
    ShareUnauthorizedError,
    StorageError,
    StrongroomError,
)
from strongroom.fs.types import (
    AccessGrant,
    AccessMode,
    MoveResult,
    RestoreResult,
    ShareInfo,
    StorageUsage,
    WriteResult,
)
from strongroom.models import ShareLink, TrashEntry, VersionEntry

__all__ = [
    "AccessGrant",
    "AccessMode",
    "ConflictError",
    "ConsistencyError",
    "EventBus",
    "EventType",
    "FileEvent",
    "MoveResult",
    "NotFoundError",
    "PathInvalidError",
    "RestoreResult",
    "ShareAccessDenied",
    "ShareExpiredError",
    "ShareForbiddenError",
    "ShareInfo",
    "ShareLink",
    "ShareQuotaExhaustedError",
    "ShareUnauthorizedError",
    "StorageError",
    "StorageUsage",
    "Strongroom",
    "StrongroomAsync",
    "StrongroomConfig",
    "StrongroomError",
    "TrashEntry",
    "VersionEntry",
    "WriteResult",
    "__version__",
]
