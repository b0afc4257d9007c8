"""Storage layer — path confinement, metadata documents, trash, versions, shares."""

from strongroom.fs.annotations import AnnotationService, compute_checksum
from strongroom.fs.exceptions import (
    ConflictError,
    ConsistencyError,
    NotFoundError,
    PathInvalidError,
    PathNotFoundError,
    ShareAccessDenied,
    ShareExpiredError,
    ShareForbiddenError,
    ShareQuotaExhaustedError,
    ShareUnauthorizedError,
    StorageError,
    StrongroomError,
)
from strongroom.fs.metadata import DocumentKind, MetadataStore
from strongroom.fs.migration import MetadataMigrator
from strongroom.fs.paths import PathResolver, normalize_relative, validate_name
from strongroom.fs.sharing import SharingService
from strongroom.fs.trash import TrashService
from strongroom.fs.types import (
    AccessGrant,
    AccessMode,
    MoveResult,
    RestoreResult,
    ShareInfo,
    StorageUsage,
    WriteResult,
)
from strongroom.fs.versioning import VersioningService

__all__ = [
    "AccessGrant",
    "AccessMode",
    "AnnotationService",
    "ConflictError",
    "ConsistencyError",
    "DocumentKind",
    "MetadataMigrator",
    "MetadataStore",
    "MoveResult",
    "NotFoundError",
    "PathInvalidError",
    "PathNotFoundError",
    "PathResolver",
    "RestoreResult",
    "ShareAccessDenied",
    "ShareExpiredError",
    "ShareForbiddenError",
    "ShareInfo",
    "ShareQuotaExhaustedError",
    "ShareUnauthorizedError",
    "SharingService",
    "StorageError",
    "StorageUsage",
    "StrongroomError",
    "TrashService",
    "VersioningService",
    "WriteResult",
    "compute_checksum",
    "normalize_relative",
    "validate_name",
]
