"""SQLModel record models for Strongroom's JSON metadata documents."""

from strongroom.models.shares import ShareLink
from strongroom.models.trash import TrashEntry
from strongroom.models.versions import VersionEntry

__all__ = [
    "ShareLink",
    "TrashEntry",
    "VersionEntry",
]
