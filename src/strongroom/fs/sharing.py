"""SharingService — share-link issue, policy enforcement and cleanup.

Share links are opaque tokens bound to a relative path and a policy
(password, expiry, download quota, upload-only). Records live in the
``shares`` document keyed by token.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from werkzeug.security import check_password_hash, generate_password_hash

from strongroom.models.shares import ShareLink

from .annotations import DOWNLOADS_DOCUMENT
from .exceptions import (
    NotFoundError,
    ShareExpiredError,
    ShareForbiddenError,
    ShareQuotaExhaustedError,
    ShareUnauthorizedError,
)
from .paths import item_size
from .types import AccessGrant, AccessMode, ShareInfo

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import timedelta
    from typing import Any

    from .metadata import MetadataStore
    from .paths import PathResolver

logger = logging.getLogger(__name__)

SHARES_DOCUMENT = "shares"
TOKEN_ATTEMPTS = 16


def default_token() -> str:
    """Short URL-safe token from a cryptographic source (8 characters)."""
    return secrets.token_urlsafe(6)


class SharingService:
    """Manages share links and enforces their policy on every access.

    The password hasher pair is injectable; by default werkzeug's
    salted ``generate_password_hash`` / ``check_password_hash`` are used,
    run in a worker thread since they are deliberately slow.
    """

    def __init__(
        self,
        resolver: PathResolver,
        store: MetadataStore,
        *,
        clock: Callable[[], datetime] | None = None,
        token_factory: Callable[[], str] | None = None,
        hash_password: Callable[[str], str] = generate_password_hash,
        check_password: Callable[[str, str], bool] = check_password_hash,
    ) -> None:
        self._resolver = resolver
        self._store = store
        self._clock = clock or (lambda: datetime.now(UTC))
        self._token_factory = token_factory or default_token
        self._hash_password = hash_password
        self._check_password = check_password

    # =========================================================================
    # CRUD
    # =========================================================================

    async def create(
        self,
        path: str,
        *,
        password: str | None = None,
        expires_at: datetime | None = None,
        expires_in: timedelta | None = None,
        max_downloads: int | None = None,
        upload_only: bool = False,
        created_by: str = "anonymous",
    ) -> ShareLink:
        """Issue a share link for an existing file or directory."""
        if expires_at is not None and expires_in is not None:
            raise ValueError("Pass either expires_at or expires_in, not both")
        if max_downloads is not None and max_downloads < 1:
            raise ValueError(f"max_downloads must be positive, got {max_downloads}")

        rel = self._resolver.normalize(path)
        self._resolver.resolve_existing(rel)

        now = self._clock()
        if expires_in is not None:
            expires_at = now + expires_in

        password_hash = None
        if password:
            password_hash = await asyncio.to_thread(self._hash_password, password)

        share = ShareLink(
            id="",
            path=rel,
            password_hash=password_hash,
            expires_at=expires_at,
            max_downloads=max_downloads,
            upload_only=upload_only,
            created_at=now,
            created_by=created_by,
        )
        share.id = self._allocate(share)
        await self._store.persist(SHARES_DOCUMENT)

        logger.info("Created share %s for %s", share.id, rel)
        return share

    def _allocate(self, share: ShareLink) -> str:
        for _ in range(TOKEN_ATTEMPTS):
            token = self._token_factory()
            share.id = token
            if self._store.insert(SHARES_DOCUMENT, token, share.model_dump(mode="json")):
                return token
        raise RuntimeError("Could not allocate a unique share token")

    def get(self, share_id: str) -> ShareLink:
        raw = self._store.get(SHARES_DOCUMENT, share_id)
        if raw is None:
            raise NotFoundError(f"Share not found: {share_id}")
        return ShareLink.model_validate(raw)

    def list_shares(self, *, created_by: str | None = None) -> list[ShareLink]:
        """All share links, newest first, optionally filtered by creator."""
        shares = [ShareLink.model_validate(raw) for _, raw in self._store.items(SHARES_DOCUMENT)]
        if created_by is not None:
            shares = [s for s in shares if s.created_by == created_by]
        shares.sort(key=lambda s: s.created_at, reverse=True)
        return shares

    async def delete(self, share_id: str) -> bool:
        """Remove a share link. Returns True if it existed."""
        removed = self._store.delete(SHARES_DOCUMENT, share_id)
        if removed:
            await self._store.persist(SHARES_DOCUMENT)
            logger.info("Deleted share %s", share_id)
        return removed

    # =========================================================================
    # Policy enforcement
    # =========================================================================

    def _live(self, share_id: str) -> ShareLink:
        """Checks 1-3: unknown, expired, quota exhausted."""
        share = self.get(share_id)
        if share.is_expired(self._clock()):
            raise ShareExpiredError(share_id, "Share link has expired")
        if share.is_exhausted():
            raise ShareQuotaExhaustedError(share_id, "Download limit reached")
        return share

    async def resolve_for_access(
        self,
        share_id: str,
        password: str | None = None,
        *,
        mode: AccessMode = AccessMode.DOWNLOAD,
    ) -> AccessGrant:
        """Enforce the link's policy and return what the visitor may touch.

        Checks run in a fixed order, each a hard stop: unknown id,
        expiry, download quota, password, then the access mode (an
        upload-only link never serves downloads; only upload-only links
        accept uploads, and only into a directory).
        """
        share = self._live(share_id)

        if share.password_hash is not None:
            matches = await asyncio.to_thread(
                self._check_password, share.password_hash, password or ""
            )
            if not matches:
                raise ShareUnauthorizedError(share_id, "Invalid password")

        if mode is AccessMode.DOWNLOAD and share.upload_only:
            raise ShareForbiddenError(share_id, "This is an upload-only share")
        if mode is AccessMode.UPLOAD and not share.upload_only:
            raise ShareForbiddenError(share_id, "Uploads not allowed")

        target = self._resolver.resolve_existing(share.path)
        is_directory = target.is_dir()
        if mode is AccessMode.UPLOAD and not is_directory:
            raise ShareForbiddenError(share_id, "Upload destination is not a directory")

        return AccessGrant(
            share=share,
            mode=mode,
            path=target,
            relative_path=share.path,
            is_directory=is_directory,
        )

    async def record_download(self, share_id: str) -> int:
        """Charge one download to the link (and to the path's download count).

        Call once the response has started streaming; an abandoned
        transfer is not refunded. Returns the new count.
        """
        path: list[str] = []

        def bump(current: dict[str, Any] | None) -> dict[str, Any] | None:
            if current is None:
                return None
            current["download_count"] = current.get("download_count", 0) + 1
            path.append(current["path"])
            return current

        updated = self._store.update(SHARES_DOCUMENT, share_id, bump)
        if updated is None:
            raise NotFoundError(f"Share not found: {share_id}")

        self._store.update(DOWNLOADS_DOCUMENT, path[0], lambda count: (count or 0) + 1)
        await self._store.persist(SHARES_DOCUMENT, DOWNLOADS_DOCUMENT)
        return updated["download_count"]

    async def describe(self, share_id: str) -> ShareInfo:
        """Public info for a live link; applies the expiry and quota checks."""
        share = self._live(share_id)
        target = self._resolver.resolve_existing(share.path)
        is_directory = target.is_dir()
        size = await asyncio.to_thread(item_size, target)
        return ShareInfo(
            id=share.id,
            name=target.name,
            is_directory=is_directory,
            size_bytes=size,
            requires_password=share.requires_password,
            upload_only=share.upload_only,
            expires_at=share.expires_at,
        )

    # =========================================================================
    # Cleanup
    # =========================================================================

    def collect_expired(self) -> list[str]:
        """Ids of links that are expired or have exhausted their quota. No mutation."""
        now = self._clock()
        return [
            share.id
            for share in self.list_shares()
            if share.is_expired(now) or share.is_exhausted()
        ]

    async def cleanup(self) -> list[str]:
        """Delete every link :meth:`collect_expired` reports. Safe to repeat."""
        removed = [sid for sid in self.collect_expired() if self._store.delete(SHARES_DOCUMENT, sid)]
        if removed:
            await self._store.persist(SHARES_DOCUMENT)
            logger.info("Cleaned up %d dead share links", len(removed))
        return removed
