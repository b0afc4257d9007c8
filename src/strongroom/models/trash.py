"""TrashEntry model — one soft-deleted item sitting in quarantine.

Stored in the ``trash`` document keyed by ``id``; the quarantined bytes
live at ``<trash_dir>/<id>``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlmodel import Field, SQLModel


class TrashEntry(SQLModel):
    """Record of a soft-deleted file or directory."""

    id: str
    original_path: str
    original_name: str
    deleted_at: datetime
    size_bytes: int = 0
    is_folder: bool = False
    deleted_by: str | None = None
    detached: dict[str, Any] = Field(default_factory=dict)

    def age(self, now: datetime) -> float:
        """Seconds since deletion."""
        return (now - self.deleted_at).total_seconds()
