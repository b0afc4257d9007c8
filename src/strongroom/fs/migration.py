"""MetadataMigrator — keeps side-car metadata attached to items as they move."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .paths import is_within, normalize_relative, rebase

if TYPE_CHECKING:
    from .metadata import MetadataStore

logger = logging.getLogger(__name__)

KEYED_DOCUMENTS = ("tags", "checksums", "comments", "versions", "downloads", "recent")
SET_DOCUMENTS = ("favorites",)
SHARE_DOCUMENT = "shares"


class MetadataMigrator:
    """Re-keys every metadata document when an item changes path.

    Never touches the filesystem. Directory moves carry their
    descendants: a key equal to the old path, or below ``old/``, is
    re-rooted under the new path. Share links are id-keyed, so their
    ``path`` field is rewritten instead.
    """

    def __init__(
        self,
        store: MetadataStore,
        *,
        keyed: tuple[str, ...] = KEYED_DOCUMENTS,
        sets: tuple[str, ...] = SET_DOCUMENTS,
        shares: str | None = SHARE_DOCUMENT,
    ) -> None:
        self._store = store
        self._keyed = keyed
        self._sets = sets
        self._shares = shares

    def migrate(self, old_path: str, new_path: str) -> int:
        """Move all metadata from *old_path* to *new_path*. Returns entries moved."""
        old_path = normalize_relative(old_path)
        new_path = normalize_relative(new_path)
        if not old_path:
            raise ValueError("Cannot migrate metadata of the storage root")
        if old_path == new_path:
            return 0

        moved = 0
        for name in self._keyed:
            moved += self._store.rekey_prefix(name, old_path, new_path)
        for name in self._sets:
            moved += self._store.replace_members_under(name, old_path, new_path)
        if self._shares is not None:
            moved += self._store.update_where(
                self._shares,
                lambda share: is_within(share["path"], old_path),
                lambda share: {**share, "path": rebase(share["path"], old_path, new_path)},
            )

        if moved:
            logger.debug("Migrated %d metadata entries: %s -> %s", moved, old_path, new_path)
        return moved

    def detach(self, path: str) -> dict[str, Any]:
        """Remove and return every metadata entry for *path* and its descendants.

        The returned snapshot is JSON-shaped so it can be stored in a
        trash entry and handed back to :meth:`attach` later.
        """
        path = normalize_relative(path)
        documents: dict[str, Any] = {}
        for name in self._keyed:
            removed = self._store.pop_prefix(name, path)
            if removed:
                documents[name] = removed
        for name in self._sets:
            removed_members = self._store.discard_members_under(name, path)
            if removed_members:
                documents[name] = removed_members
        if self._shares is not None:
            shares = self._pop_shares(path)
            if shares:
                documents[self._shares] = shares
        return {"root": path, "documents": documents}

    def attach(self, path: str, snapshot: dict[str, Any]) -> int:
        """Re-insert a :meth:`detach` snapshot, re-rooted at *path*."""
        path = normalize_relative(path)
        root = snapshot.get("root", "")
        documents = snapshot.get("documents", {})
        attached = 0
        for name, entries in documents.items():
            if name == self._shares:
                for share_id, share in entries.items():
                    share = {**share, "path": rebase(share["path"], root, path)}
                    self._store.set(name, share_id, share)
                    attached += 1
            elif name in self._sets:
                attached += self._store.extend_members(
                    name, [rebase(m, root, path) for m in entries]
                )
            else:
                for key, value in entries.items():
                    self._store.set(name, rebase(key, root, path), value)
                    attached += 1
        return attached

    def drop(self, path: str) -> dict[str, Any]:
        """Delete every metadata entry for *path* and its descendants.

        Returns the removed ``versions`` entries (key -> list of version
        records) so their backing blobs can be deleted by the caller.
        """
        snapshot = self.detach(path)
        return snapshot["documents"].get("versions", {})

    def _pop_shares(self, path: str) -> dict[str, Any]:
        assert self._shares is not None
        matching = self._store.values_where(
            self._shares, lambda share: is_within(share["path"], path)
        )
        removed = {}
        for share_id in matching:
            share = self._store.pop(self._shares, share_id)
            if share is not None:
                removed[share_id] = share
        return removed
