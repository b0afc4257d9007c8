"""TrashService — soft-delete into quarantine, restore, purge and empty."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from strongroom.models.trash import TrashEntry

from .exceptions import ConsistencyError, NotFoundError, PathInvalidError, StorageError
from .paths import disambiguate, item_size
from .types import RestoreResult

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import timedelta

    from .metadata import MetadataStore
    from .migration import MetadataMigrator
    from .paths import PathResolver
    from .versioning import VersioningService

logger = logging.getLogger(__name__)

TRASH_DOCUMENT = "trash"


def remove_path(path: Path) -> None:
    """Delete a file, symlink or directory tree. A missing path is not an error."""
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
        return
    try:
        path.unlink()
    except FileNotFoundError:
        pass


class TrashService:
    """Trash management: soft delete, list, restore, purge and empty.

    Quarantined bytes live at ``<trash_dir>/<id>``; the ``trash``
    document holds one :class:`TrashEntry` per id. Each mutation writes
    the index in memory first, then moves bytes, then persists the
    index, so a crash leaves "recorded but not yet moved" rather than
    orphaned bytes. Side-car metadata of a trashed item is detached into
    its entry and re-attached on restore.

    Depends on ``MetadataMigrator`` for detaching metadata and on
    ``VersioningService`` for deleting version blobs on purge.
    """

    def __init__(
        self,
        resolver: PathResolver,
        store: MetadataStore,
        migrator: MetadataMigrator,
        versioning: VersioningService,
        trash_dir: Path | str,
        *,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._resolver = resolver
        self._store = store
        self._migrator = migrator
        self._versioning = versioning
        self.trash_dir = Path(trash_dir)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, trash_id: str) -> TrashEntry:
        raw = self._store.get(TRASH_DOCUMENT, trash_id)
        if raw is None:
            raise NotFoundError(f"Item not found in trash: {trash_id}")
        return TrashEntry.model_validate(raw)

    def entries(self) -> list[TrashEntry]:
        """Every index record, including ones whose bytes have gone missing."""
        return [TrashEntry.model_validate(raw) for _, raw in self._store.items(TRASH_DOCUMENT)]

    async def list_trash(self) -> list[TrashEntry]:
        """Trashed items whose quarantined bytes still exist, newest first."""
        entries = self.entries()
        present = await asyncio.to_thread(
            lambda: [e for e in entries if os.path.lexists(self.trash_dir / e.id)]
        )
        present.sort(key=lambda e: e.deleted_at, reverse=True)
        return present

    # =========================================================================
    # Soft delete
    # =========================================================================

    async def soft_delete(self, path: str, *, deleted_by: str | None = None) -> TrashEntry:
        """Move the item at *path* into quarantine and record how to bring it back."""
        rel = self._resolver.normalize(path)
        if not rel:
            raise PathInvalidError("Cannot delete the storage root")

        source = self._resolver.resolve_existing(rel)
        is_folder = source.is_dir()
        try:
            size = await asyncio.to_thread(item_size, source)
        except OSError as e:
            raise StorageError(f"Cannot read {rel}: {e}") from e

        entry = TrashEntry(
            id=self._id_factory(),
            original_path=rel,
            original_name=source.name,
            deleted_at=self._clock(),
            size_bytes=size,
            is_folder=is_folder,
            deleted_by=deleted_by,
        )
        entry.detached = self._migrator.detach(rel)
        self._store.set(TRASH_DOCUMENT, entry.id, entry.model_dump(mode="json"))

        try:
            await asyncio.to_thread(self._move_in, source, self.trash_dir / entry.id)
        except OSError as e:
            self._store.delete(TRASH_DOCUMENT, entry.id)
            self._migrator.attach(rel, entry.detached)
            raise StorageError(f"Could not move {rel} to trash: {e}") from e

        await self._store.persist()
        logger.info("Moved to trash: %s (%s, %d bytes)", rel, entry.id, size)
        return entry

    def _move_in(self, source: Path, quarantined: Path) -> None:
        self.trash_dir.mkdir(parents=True, exist_ok=True)
        shutil.move(os.fspath(source), os.fspath(quarantined))

    # =========================================================================
    # Restore
    # =========================================================================

    async def restore(self, trash_id: str) -> RestoreResult:
        """Move a trashed item back to its original location.

        Missing parent directories are recreated. If the original name
        is taken, ``" (restored N)"`` is inserted before the extension
        until a free name is found.
        """
        raw = self._store.pop(TRASH_DOCUMENT, trash_id)
        if raw is None:
            raise NotFoundError(f"Item not found in trash: {trash_id}")
        entry = TrashEntry.model_validate(raw)

        try:
            original = self._resolver.resolve(entry.original_path)
            target = await asyncio.to_thread(self._move_out, self.trash_dir / trash_id, original)
        except (ConsistencyError, PathInvalidError):
            self._store.set(TRASH_DOCUMENT, trash_id, raw)
            raise
        except OSError as e:
            self._store.set(TRASH_DOCUMENT, trash_id, raw)
            raise StorageError(f"Could not restore {entry.original_path}: {e}") from e

        restored = self._resolver.to_relative(target)
        if entry.detached:
            self._migrator.attach(restored, entry.detached)
        await self._store.persist()

        renamed = restored != entry.original_path
        logger.info("Restored from trash: %s -> %s", trash_id, restored)
        return RestoreResult(trash_id=trash_id, path=restored, renamed=renamed)

    @staticmethod
    def _move_out(quarantined: Path, original: Path) -> Path:
        if not os.path.lexists(quarantined):
            raise ConsistencyError(f"Trashed bytes are missing: {quarantined.name}")
        original.parent.mkdir(parents=True, exist_ok=True)
        target = disambiguate(original.parent, original.name)
        shutil.move(os.fspath(quarantined), os.fspath(target))
        return target

    # =========================================================================
    # Purge
    # =========================================================================

    async def purge(self, trash_id: str) -> bool:
        """Permanently delete a trashed item. Unknown ids are a no-op (False)."""
        raw = self._store.pop(TRASH_DOCUMENT, trash_id)
        if raw is None:
            return False
        entry = TrashEntry.model_validate(raw)

        try:
            await asyncio.to_thread(remove_path, self.trash_dir / trash_id)
        except OSError as e:
            self._store.set(TRASH_DOCUMENT, trash_id, raw)
            raise StorageError(f"Could not purge {trash_id}: {e}") from e

        versions = entry.detached.get("documents", {}).get("versions", {})
        for records in versions.values():
            await self._versioning.delete_entries(records)

        await self._store.persist(TRASH_DOCUMENT)
        logger.info("Purged from trash: %s (%s)", entry.original_path, trash_id)
        return True

    async def purge_expired(self, retention: timedelta) -> list[str]:
        """Purge every entry deleted at least *retention* ago. Returns purged ids."""
        now = self._clock()
        purged = []
        for entry in self.entries():
            if now - entry.deleted_at >= retention and await self.purge(entry.id):
                purged.append(entry.id)
        if purged:
            logger.info("Purged %d expired trash items", len(purged))
        return purged

    async def empty_all(self) -> int:
        """Purge every entry, then clear stray quarantine files with no record."""
        count = 0
        for entry in self.entries():
            if await self.purge(entry.id):
                count += 1

        known = set(self._store.keys(TRASH_DOCUMENT))
        await asyncio.to_thread(self._remove_strays, known)
        return count

    def _remove_strays(self, known: set[str]) -> None:
        if not self.trash_dir.is_dir():
            return
        for child in self.trash_dir.iterdir():
            if child.name.startswith(".") or child.name in known:
                continue
            try:
                remove_path(child)
            except OSError:
                logger.warning("Failed to remove stray trash item %s", child, exc_info=True)
