"""Result types: WriteResult, MoveResult, AccessGrant, ShareInfo, etc."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime
    from pathlib import Path

    from strongroom.models.shares import ShareLink
    from strongroom.models.versions import VersionEntry


class AccessMode(Enum):
    """What a share-link visitor is trying to do."""

    DOWNLOAD = "download"
    UPLOAD = "upload"


@dataclass
class WriteResult:
    """Result of a write operation."""

    path: str
    size_bytes: int
    created: bool
    checksum: str
    version: VersionEntry | None = None


@dataclass
class MoveResult:
    """Result of a rename or move."""

    old_path: str
    new_path: str
    migrated: int = 0


@dataclass
class RestoreResult:
    """Result of restoring an item from trash."""

    trash_id: str
    path: str
    renamed: bool = False


@dataclass
class AccessGrant:
    """Share access that passed every policy check."""

    share: ShareLink
    mode: AccessMode
    path: Path
    relative_path: str
    is_directory: bool


@dataclass
class ShareInfo:
    """Public description of a share link (what a visitor sees before access)."""

    id: str
    name: str
    is_directory: bool
    size_bytes: int
    requires_password: bool
    upload_only: bool
    expires_at: datetime | None = None


@dataclass
class StorageUsage:
    """Bytes used under the storage root against the configured quota."""

    used: int
    total: int

    @property
    def free(self) -> int:
        return max(0, self.total - self.used)
