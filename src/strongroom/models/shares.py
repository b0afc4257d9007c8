"""ShareLink model — an opaque token bound to a path and an access policy.

Stored in the ``shares`` document keyed by ``id``. The password is only
ever kept as a one-way hash.
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import field_validator
from sqlmodel import Field, SQLModel


class ShareLink(SQLModel):
    """Base fields for a share link record.

    Timestamps without a timezone are taken to be UTC, so expiry checks
    always compare aware datetimes.
    """

    id: str
    path: str
    password_hash: str | None = None
    expires_at: datetime | None = None
    max_downloads: int | None = None
    download_count: int = Field(default=0, ge=0)
    upload_only: bool = False
    created_at: datetime
    created_by: str = "anonymous"

    @field_validator("expires_at", "created_at")
    @classmethod
    def assume_utc(cls, v: datetime | None) -> datetime | None:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v

    @property
    def requires_password(self) -> bool:
        return self.password_hash is not None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at < now

    def is_exhausted(self) -> bool:
        return self.max_downloads is not None and self.download_count >= self.max_downloads
