"""AnnotationService — per-path annotations, checksums, download counts and recent files."""

from __future__ import annotations

import hashlib
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from .exceptions import NotFoundError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from .metadata import MetadataStore
    from .paths import PathResolver

TAGS_DOCUMENT = "tags"
FAVORITES_DOCUMENT = "favorites"
COMMENTS_DOCUMENT = "comments"
CHECKSUMS_DOCUMENT = "checksums"
DOWNLOADS_DOCUMENT = "downloads"
RECENT_DOCUMENT = "recent"

MAX_RECENT = 50


def compute_checksum(data: bytes) -> tuple[str, int]:
    """Return (sha256_hex, size_bytes) for *data*."""
    return hashlib.sha256(data).hexdigest(), len(data)


class AnnotationService:
    """Per-path side-car metadata.

    Keys are canonical relative paths. Annotating a path that does not
    exist is rejected; reading annotations of any path is allowed.
    """

    def __init__(
        self,
        resolver: PathResolver,
        store: MetadataStore,
        *,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
        max_recent: int = MAX_RECENT,
    ) -> None:
        self._resolver = resolver
        self._store = store
        self.max_recent = max_recent
        self._clock = clock or (lambda: datetime.now(UTC))
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))

    def _existing(self, path: str) -> str:
        rel = self._resolver.normalize(path)
        if not rel:
            raise NotFoundError("The storage root cannot be annotated")
        self._resolver.resolve_existing(rel)
        return rel

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    def tags(self, path: str) -> list[str]:
        return self._store.get(TAGS_DOCUMENT, self._resolver.normalize(path), [])

    def all_tags(self) -> dict[str, list[str]]:
        return dict(self._store.items(TAGS_DOCUMENT))

    def add_tag(self, path: str, tag: str) -> list[str]:
        tag = tag.strip()
        if not tag:
            raise ValueError("Tag must not be empty")
        rel = self._existing(path)

        def add(current: list[str] | None) -> list[str]:
            current = current or []
            if tag not in current:
                current.append(tag)
            return current

        return self._store.update(TAGS_DOCUMENT, rel, add)

    def remove_tag(self, path: str, tag: str) -> list[str]:
        """Remove *tag*; the key is dropped once no tags remain."""
        rel = self._resolver.normalize(path)
        remaining = self._store.update(
            TAGS_DOCUMENT,
            rel,
            lambda current: [t for t in current or [] if t != tag] or None,
        )
        return remaining or []

    # ------------------------------------------------------------------
    # Favorites
    # ------------------------------------------------------------------

    def favorites(self) -> list[str]:
        return self._store.members(FAVORITES_DOCUMENT)

    def is_favorite(self, path: str) -> bool:
        return self._store.is_member(FAVORITES_DOCUMENT, self._resolver.normalize(path))

    def add_favorite(self, path: str) -> bool:
        return self._store.add_member(FAVORITES_DOCUMENT, self._existing(path))

    def remove_favorite(self, path: str) -> bool:
        return self._store.discard_member(FAVORITES_DOCUMENT, self._resolver.normalize(path))

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def comments(self, path: str) -> list[dict[str, Any]]:
        return self._store.get(COMMENTS_DOCUMENT, self._resolver.normalize(path), [])

    def add_comment(self, path: str, text: str, *, author: str = "anonymous") -> dict[str, Any]:
        text = text.strip()
        if not text:
            raise ValueError("Comment must not be empty")
        rel = self._existing(path)
        comment = {
            "id": self._id_factory(),
            "text": text,
            "author": author,
            "created_at": self._clock().isoformat(),
        }
        self._store.update(COMMENTS_DOCUMENT, rel, lambda current: [*(current or []), comment])
        return comment

    def delete_comment(self, path: str, comment_id: str) -> bool:
        rel = self._resolver.normalize(path)
        found: list[bool] = []

        def remove(current: list[dict[str, Any]] | None) -> list[dict[str, Any]] | None:
            current = current or []
            kept = [c for c in current if c["id"] != comment_id]
            found.append(len(kept) != len(current))
            return kept or None

        self._store.update(COMMENTS_DOCUMENT, rel, remove)
        return found[0]

    # ------------------------------------------------------------------
    # Checksums
    # ------------------------------------------------------------------

    def checksum(self, path: str) -> dict[str, Any] | None:
        return self._store.get(CHECKSUMS_DOCUMENT, self._resolver.normalize(path))

    def record_checksum(self, path: str, data: bytes) -> dict[str, Any]:
        rel = self._resolver.normalize(path)
        digest, size = compute_checksum(data)
        record = {
            "sha256": digest,
            "size_bytes": size,
            "updated_at": self._clock().isoformat(),
        }
        self._store.set(CHECKSUMS_DOCUMENT, rel, record)
        return record

    # ------------------------------------------------------------------
    # Download counts
    # ------------------------------------------------------------------

    def download_count(self, path: str) -> int:
        return self._store.get(DOWNLOADS_DOCUMENT, self._resolver.normalize(path), 0)

    def increment_downloads(self, path: str) -> int:
        rel = self._resolver.normalize(path)
        return self._store.update(DOWNLOADS_DOCUMENT, rel, lambda count: (count or 0) + 1)

    # ------------------------------------------------------------------
    # Recent files
    # ------------------------------------------------------------------

    def recent(self) -> list[dict[str, Any]]:
        """Recently touched paths, newest first."""
        ranked = _newest_first(self._store.items(RECENT_DOCUMENT))
        return [{"path": key, **value} for key, value in ranked]

    def add_recent(self, path: str, action: str = "opened") -> dict[str, Any]:
        """Record *action* on *path*, replacing any earlier entry for it."""
        rel = self._existing(path)
        entry = {"action": action, "timestamp": self._clock().isoformat()}

        def push(data: dict[str, Any]) -> dict[str, Any]:
            data.pop(rel, None)
            data[rel] = entry
            return dict(_newest_first(data.items())[: self.max_recent])

        self._store.transform(RECENT_DOCUMENT, push)
        return {"path": rel, **entry}

    def clear_recent(self) -> int:
        cleared = len(self._store.keys(RECENT_DOCUMENT))
        self._store.clear(RECENT_DOCUMENT)
        return cleared


def _newest_first(items: Iterable[tuple[str, dict[str, Any]]]) -> list[tuple[str, dict[str, Any]]]:
    # Later insertions win ties on timestamp.
    return sorted(reversed(list(items)), key=lambda item: item[1]["timestamp"], reverse=True)
