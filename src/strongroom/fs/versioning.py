"""VersioningService — snapshot, list, restore and delete file versions."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import shutil
import stat
import tempfile
import uuid
from datetime import UTC, datetime
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any

from strongroom.models.versions import VersionEntry

from .exceptions import ConsistencyError, NotFoundError, StorageError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from .metadata import MetadataStore
    from .paths import PathResolver

logger = logging.getLogger(__name__)

MAX_VERSIONS = 20
MAX_VERSION_SIZE = 10 * 1024 * 1024  # 10 MiB

VERSIONS_DOCUMENT = "versions"


class VersioningService:
    """Whole-file snapshots kept in a flat blob directory.

    Blobs are named ``<id><extension>``; the ``versions`` document maps
    each relative path to its entries, newest first, capped at
    ``max_versions``. Versioning is best-effort: files above
    ``max_size`` are never snapshotted, so large edits are never blocked.
    """

    def __init__(
        self,
        resolver: PathResolver,
        store: MetadataStore,
        versions_dir: Path | str,
        *,
        max_versions: int = MAX_VERSIONS,
        max_size: int = MAX_VERSION_SIZE,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        if max_versions < 1:
            raise ValueError("max_versions must be at least 1")
        self._resolver = resolver
        self._store = store
        self.versions_dir = Path(versions_dir)
        self.max_versions = max_versions
        self.max_size = max_size
        self._clock = clock or (lambda: datetime.now(UTC))
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))

    def list_versions(self, path: str) -> list[VersionEntry]:
        """All stored versions for *path*, newest first."""
        rel = self._resolver.normalize(path)
        raw = self._store.get(VERSIONS_DOCUMENT, rel, [])
        return [VersionEntry.model_validate(v) for v in raw]

    def get_version(self, path: str, version_id: str) -> VersionEntry:
        for entry in self.list_versions(path):
            if entry.id == version_id:
                return entry
        raise NotFoundError(f"Version {version_id} not found for {self._resolver.normalize(path)}")

    def version_path(self, path: str, version_id: str) -> Path:
        """Location of the blob holding *version_id*."""
        return self.versions_dir / self.get_version(path, version_id).filename

    async def snapshot(self, path: str) -> VersionEntry | None:
        """Copy the current bytes of *path* into the version store.

        Call immediately before overwriting an existing file. Returns the
        new entry, or None when skipped (missing, not a regular file, or
        larger than ``max_size``).
        """
        rel = self._resolver.normalize(path)
        live = self._resolver.resolve(rel)

        try:
            st = await asyncio.to_thread(live.stat)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Cannot stat {rel}: {e}") from e

        if not stat.S_ISREG(st.st_mode):
            return None
        if st.st_size > self.max_size:
            logger.debug(
                "Skipping version snapshot of %s (%d bytes > %d)", rel, st.st_size, self.max_size
            )
            return None

        entry = VersionEntry(
            id=self._id_factory(),
            extension=PurePosixPath(rel).suffix,
            size_bytes=st.st_size,
            created_at=self._clock(),
        )
        record = entry.model_dump(mode="json")
        evicted: list[dict[str, Any]] = []

        def prepend(current: list[dict[str, Any]] | None) -> list[dict[str, Any]]:
            entries = [record, *(current or [])]
            evicted.extend(entries[self.max_versions:])
            return entries[: self.max_versions]

        self._store.update(VERSIONS_DOCUMENT, rel, prepend)

        blob = self.versions_dir / entry.filename
        try:
            await asyncio.to_thread(self._copy_blob, live, blob)
        except OSError as e:
            self._store.update(
                VERSIONS_DOCUMENT,
                rel,
                lambda current: [v for v in current or [] if v["id"] != entry.id] + evicted or None,
            )
            raise StorageError(f"Cannot snapshot {rel}: {e}") from e

        if evicted:
            await self.delete_entries(evicted)
        await self._store.persist(VERSIONS_DOCUMENT)

        logger.debug("Snapshot %s of %s (%d bytes)", entry.id, rel, entry.size_bytes)
        return entry

    def _copy_blob(self, source: Path, blob: Path) -> None:
        self.versions_dir.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, blob)

    async def restore(self, path: str, version_id: str) -> VersionEntry | None:
        """Replace the live content of *path* with *version_id*.

        The current content is snapshotted first and that snapshot is
        returned. It is None when skipped: a live file larger than
        ``max_size`` is overwritten without being kept, which is logged
        at INFO. The restored file keeps the live file's permission bits.

        The version's bytes are staged beside the live file before the
        snapshot, because the snapshot may evict the very version being
        restored.
        """
        rel = self._resolver.normalize(path)
        entry = self.get_version(rel, version_id)
        blob = self.versions_dir / entry.filename
        live = self._resolver.resolve(rel)

        if not blob.is_file():
            raise ConsistencyError(f"Version {version_id} of {rel} has no stored bytes")

        try:
            staged = await asyncio.to_thread(self._stage, blob, live)
        except OSError as e:
            raise StorageError(f"Cannot restore {rel}: {e}") from e

        try:
            before = await self.snapshot(rel)
            if before is None:
                logger.info("No pre-restore snapshot of %s; its current content is not kept", rel)
            await asyncio.to_thread(os.replace, staged, live)
        except OSError as e:
            with contextlib.suppress(OSError):
                staged.unlink()
            raise StorageError(f"Cannot restore {rel}: {e}") from e
        except BaseException:
            with contextlib.suppress(OSError):
                staged.unlink()
            raise

        logger.info("Restored %s to version %s", rel, version_id)
        return before

    @staticmethod
    def _stage(blob: Path, live: Path) -> Path:
        live.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=live.parent, prefix=".restore_")
        os.close(fd)
        shutil.copyfile(blob, tmp)
        if live.exists():
            shutil.copymode(live, tmp)
        return Path(tmp)

    async def delete_all(self, path: str) -> int:
        """Delete every version of *path* and its index entry. Returns the count."""
        rel = self._resolver.normalize(path)
        removed = self._store.pop(VERSIONS_DOCUMENT, rel) or []
        if removed:
            await self.delete_entries(removed)
            await self._store.persist(VERSIONS_DOCUMENT)
        return len(removed)

    async def delete_entries(self, entries: Iterable[dict[str, Any] | VersionEntry]) -> int:
        """Delete the blobs behind *entries* (already removed from the index)."""
        blobs = []
        for raw in entries:
            entry = raw if isinstance(raw, VersionEntry) else VersionEntry.model_validate(raw)
            blobs.append(self.versions_dir / entry.filename)
        return await asyncio.to_thread(self._unlink_all, blobs)

    @staticmethod
    def _unlink_all(blobs: list[Path]) -> int:
        deleted = 0
        for blob in blobs:
            try:
                blob.unlink()
                deleted += 1
            except FileNotFoundError:
                continue
            except OSError:
                logger.warning("Failed to delete version blob %s", blob, exc_info=True)
        return deleted
