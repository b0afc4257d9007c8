"""VersionEntry model — one snapshot of a file's previous contents.

Stored newest-first in the ``versions`` document under the file's
relative path; the bytes live at ``<versions_dir>/<id><extension>``.
"""

from __future__ import annotations

from datetime import datetime

from sqlmodel import SQLModel


class VersionEntry(SQLModel):
    """Record of a stored file version."""

    id: str
    extension: str = ""
    size_bytes: int = 0
    created_at: datetime

    @property
    def filename(self) -> str:
        return f"{self.id}{self.extension}"
