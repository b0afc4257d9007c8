"""StrongroomAsync — primary async class wiring the storage integrity layer."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import shutil
import tempfile
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from strongroom.config import StrongroomConfig
from strongroom.events import EventBus, EventType, FileEvent
from strongroom.fs.annotations import AnnotationService, compute_checksum
from strongroom.fs.exceptions import ConflictError, NotFoundError, PathInvalidError, StorageError
from strongroom.fs.metadata import MetadataStore
from strongroom.fs.migration import MetadataMigrator
from strongroom.fs.paths import PathResolver, directory_size, is_within, join_relative, validate_name
from strongroom.fs.sharing import SharingService
from strongroom.fs.trash import TrashService, remove_path
from strongroom.fs.types import AccessMode, MoveResult, StorageUsage, WriteResult
from strongroom.fs.versioning import VersioningService

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import timedelta

    from strongroom.fs.types import AccessGrant, RestoreResult, ShareInfo
    from strongroom.models.shares import ShareLink
    from strongroom.models.trash import TrashEntry
    from strongroom.models.versions import VersionEntry

logger = logging.getLogger(__name__)


class StrongroomAsync:
    """Async facade over path confinement, metadata, trash, versions and shares.

    Every operation takes caller-supplied relative paths, confines them
    to ``root``, and keeps side-car metadata consistent with the bytes
    on disk. Publishes notable changes to an :class:`EventBus`.

    Usage::

        async with StrongroomAsync("/srv/files") as room:
            await room.write("notes/todo.txt", b"buy milk")
            entry = await room.delete("notes/todo.txt")
            await room.restore_from_trash(entry.id)
    """

    def __init__(
        self,
        root: str | Path,
        *,
        config: StrongroomConfig | None = None,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
        token_factory: Callable[[], str] | None = None,
        hash_password: Callable[[str], str] | None = None,
        check_password: Callable[[str, str], bool] | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self.config = config or StrongroomConfig()
        root_path = Path(root).expanduser().resolve()
        self.data_dir = self.config.resolve_data_dir(root_path)
        self.data_dir.mkdir(parents=True, exist_ok=True)

        self._clock = clock or (lambda: datetime.now(UTC))
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self._closed = False
        self._opened = False
        self._flush_task: asyncio.Task[None] | None = None

        self.resolver = PathResolver(root_path, reserved=[self.data_dir])
        self.events = event_bus or EventBus()
        self.store = MetadataStore(self.data_dir)
        self.migrator = MetadataMigrator(self.store)
        self.versions = VersioningService(
            self.resolver,
            self.store,
            self.data_dir / "versions",
            max_versions=self.config.max_versions,
            max_size=self.config.max_version_size,
            clock=self._clock,
            id_factory=self._id_factory,
        )
        self.trash = TrashService(
            self.resolver,
            self.store,
            self.migrator,
            self.versions,
            self.data_dir / "trash",
            clock=self._clock,
            id_factory=self._id_factory,
        )
        sharing_kw: dict[str, Any] = {}
        if hash_password is not None:
            sharing_kw["hash_password"] = hash_password
        if check_password is not None:
            sharing_kw["check_password"] = check_password
        self.shares = SharingService(
            self.resolver,
            self.store,
            clock=self._clock,
            token_factory=token_factory,
            **sharing_kw,
        )
        self.annotations = AnnotationService(
            self.resolver, self.store, clock=self._clock, id_factory=self._id_factory
        )

    @property
    def root(self) -> Path:
        return self.resolver.root

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> StrongroomAsync:
        """Load metadata from disk and start the periodic flush."""
        if self._opened:
            return self
        self._opened = True
        await asyncio.to_thread(self.store.load)
        if self.config.flush_interval > 0:
            self._flush_task = asyncio.create_task(
                self.store.autoflush(self.config.flush_interval)
            )
        logger.debug("Opened strongroom at %s (data in %s)", self.root, self.data_dir)
        return self

    async def close(self) -> None:
        """Stop the periodic flush and write out all pending metadata."""
        if self._closed:
            return
        self._closed = True

        if self._flush_task is not None:
            self._flush_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._flush_task
            self._flush_task = None

        await asyncio.to_thread(self.store.flush)

    async def __aenter__(self) -> StrongroomAsync:
        return await self.open()

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        await self.close()

    async def _emit(self, event_type: EventType, path: str, **kwargs: Any) -> None:
        await self.events.emit(FileEvent(event_type=event_type, path=path, **kwargs))

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def resolve(self, path: str) -> Path:
        """Absolute path for *path*, confined to the storage root."""
        return self.resolver.resolve(path)

    def exists(self, path: str) -> bool:
        try:
            return self.resolver.resolve(path).exists()
        except PathInvalidError:
            return False

    # ------------------------------------------------------------------
    # File operations
    # ------------------------------------------------------------------

    async def write(self, path: str, data: bytes, *, user_id: str | None = None) -> WriteResult:
        """Create or overwrite a file, snapshotting the previous content first."""
        rel = self.resolver.normalize(path)
        if not rel:
            raise PathInvalidError("Cannot write to the storage root")
        target = self.resolver.resolve(rel)
        if target.is_dir():
            raise ConflictError(f"A directory exists at {rel}")

        created = not target.exists()
        version = None if created else await self.versions.snapshot(rel)

        try:
            await asyncio.to_thread(self._write_atomic, target, data)
        except OSError as e:
            raise StorageError(f"Could not write {rel}: {e}") from e

        record = self.annotations.record_checksum(rel, data)
        await self.store.persist("checksums")
        await self._emit(EventType.FILE_WRITTEN, rel, user_id=user_id)
        return WriteResult(
            path=rel,
            size_bytes=record["size_bytes"],
            created=created,
            checksum=record["sha256"],
            version=version,
        )

    @staticmethod
    def _write_atomic(target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=target.parent, prefix=".write_")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            if target.exists():
                shutil.copymode(target, tmp)
            os.replace(tmp, target)
        except BaseException:
            with contextlib.suppress(OSError):
                os.unlink(tmp)
            raise

    async def read(self, path: str) -> bytes:
        target = self.resolver.resolve_existing(path)
        if target.is_dir():
            raise PathInvalidError(f"Not a file: {self.resolver.normalize(path)}")
        try:
            return await asyncio.to_thread(target.read_bytes)
        except OSError as e:
            raise StorageError(f"Could not read {path}: {e}") from e

    async def verify_checksum(self, path: str) -> bool:
        """Whether the bytes on disk still match the last recorded checksum."""
        rel = self.resolver.normalize(path)
        record = self.annotations.checksum(rel)
        if record is None:
            raise NotFoundError(f"No checksum recorded for {rel}")
        digest, _ = compute_checksum(await self.read(rel))
        return digest == record["sha256"]

    async def mkdir(self, parent: str, name: str) -> str:
        """Create directory *name* inside *parent*. Returns its relative path."""
        validate_name(name)
        parent_dir = self.resolver.resolve_existing(parent)
        if not parent_dir.is_dir():
            raise PathInvalidError(f"Not a directory: {self.resolver.normalize(parent)}")
        rel = join_relative(self.resolver.normalize(parent), name)
        target = self.resolver.resolve(rel)
        if target.exists():
            raise ConflictError(f"A folder with this name already exists: {rel}")
        try:
            await asyncio.to_thread(target.mkdir)
        except FileExistsError as e:
            raise ConflictError(f"A folder with this name already exists: {rel}") from e
        except OSError as e:
            raise StorageError(f"Could not create folder {rel}: {e}") from e
        return rel

    async def rename(self, path: str, new_name: str, *, user_id: str | None = None) -> MoveResult:
        """Rename an item in place; *new_name* must be a flat name."""
        validate_name(new_name)
        rel = self.resolver.normalize(path)
        parent = rel.rpartition("/")[0]
        return await self._relocate(rel, join_relative(parent, new_name), user_id)

    async def move(
        self,
        source: str,
        destination: str,
        name: str | None = None,
        *,
        user_id: str | None = None,
    ) -> MoveResult:
        """Move *source* into the directory *destination*, optionally renaming it."""
        rel = self.resolver.normalize(source)
        dest_dir = self.resolver.normalize(destination)
        dest_path = self.resolver.resolve_existing(dest_dir)
        if not dest_path.is_dir():
            raise PathInvalidError(f"Destination is not a directory: {dest_dir or '/'}")
        item_name = validate_name(name) if name else rel.rpartition("/")[2]
        return await self._relocate(rel, join_relative(dest_dir, item_name), user_id)

    async def _relocate(self, old: str, new: str, user_id: str | None) -> MoveResult:
        if not old:
            raise PathInvalidError("Cannot move the storage root")
        if is_within(new, old) and new != old:
            raise PathInvalidError(f"Cannot move {old} into itself")

        source = self.resolver.resolve_existing(old)
        target = self.resolver.resolve(new)
        if old == new:
            return MoveResult(old_path=old, new_path=new)
        if target.exists() or target.is_symlink():
            raise ConflictError(f"An item with this name already exists: {new}")

        try:
            await asyncio.to_thread(shutil.move, os.fspath(source), os.fspath(target))
        except OSError as e:
            raise StorageError(f"Could not move {old} to {new}: {e}") from e

        migrated = self.migrator.migrate(old, new)
        await self.store.persist()
        await self._emit(EventType.ITEM_MOVED, new, old_path=old, user_id=user_id)
        logger.info("Moved %s -> %s (%d metadata entries)", old, new, migrated)
        return MoveResult(old_path=old, new_path=new, migrated=migrated)

    async def delete(self, path: str, *, user_id: str | None = None) -> TrashEntry:
        """Soft-delete: move the item to trash."""
        entry = await self.trash.soft_delete(path, deleted_by=user_id)
        await self._emit(
            EventType.ITEM_TRASHED, entry.original_path, item_id=entry.id, user_id=user_id
        )
        return entry

    async def delete_permanent(self, path: str, *, user_id: str | None = None) -> None:
        """Delete an item immediately, along with its metadata and versions."""
        rel = self.resolver.normalize(path)
        if not rel:
            raise PathInvalidError("Cannot delete the storage root")
        target = self.resolver.resolve_existing(rel)

        try:
            await asyncio.to_thread(remove_path, target)
        except OSError as e:
            raise StorageError(f"Could not delete {rel}: {e}") from e

        removed_versions = self.migrator.drop(rel)
        for records in removed_versions.values():
            await self.versions.delete_entries(records)
        await self.store.persist()
        await self._emit(EventType.ITEM_PURGED, rel, user_id=user_id)

    async def storage_usage(self) -> StorageUsage:
        used = await asyncio.to_thread(directory_size, self.root, self.resolver.reserved)
        return StorageUsage(used=used, total=self.config.total_quota)

    # ------------------------------------------------------------------
    # Trash
    # ------------------------------------------------------------------

    async def list_trash(self) -> list[TrashEntry]:
        return await self.trash.list_trash()

    async def restore_from_trash(self, trash_id: str, *, user_id: str | None = None) -> RestoreResult:
        entry = self.trash.get(trash_id)
        result = await self.trash.restore(trash_id)
        await self._emit(
            EventType.ITEM_RESTORED,
            result.path,
            old_path=entry.original_path if result.renamed else None,
            item_id=trash_id,
            user_id=user_id,
        )
        return result

    async def purge(self, trash_id: str) -> bool:
        entry = self._trash_entry_or_none(trash_id)
        purged = await self.trash.purge(trash_id)
        if purged and entry is not None:
            await self._emit(EventType.ITEM_PURGED, entry.original_path, item_id=trash_id)
        return purged

    def _trash_entry_or_none(self, trash_id: str) -> TrashEntry | None:
        try:
            return self.trash.get(trash_id)
        except NotFoundError:
            return None

    async def purge_expired_trash(self, retention: timedelta | None = None) -> list[str]:
        return await self.trash.purge_expired(retention or self.config.trash_retention)

    async def empty_trash(self) -> int:
        return await self.trash.empty_all()

    # ------------------------------------------------------------------
    # Versions
    # ------------------------------------------------------------------

    def list_versions(self, path: str) -> list[VersionEntry]:
        return self.versions.list_versions(path)

    async def read_version(self, path: str, version_id: str) -> bytes:
        blob = self.versions.version_path(path, version_id)
        try:
            return await asyncio.to_thread(blob.read_bytes)
        except OSError as e:
            raise StorageError(f"Could not read version {version_id}: {e}") from e

    async def restore_version(
        self, path: str, version_id: str, *, user_id: str | None = None
    ) -> VersionEntry | None:
        rel = self.resolver.normalize(path)
        before = await self.versions.restore(rel, version_id)
        data = await self.read(rel)
        self.annotations.record_checksum(rel, data)
        await self.store.persist("checksums")
        await self._emit(EventType.VERSION_RESTORED, rel, item_id=version_id, user_id=user_id)
        return before

    async def delete_versions(self, path: str) -> int:
        return await self.versions.delete_all(path)

    # ------------------------------------------------------------------
    # Shares
    # ------------------------------------------------------------------

    async def create_share(self, path: str, **policy: Any) -> ShareLink:
        """Issue a share link; see :meth:`SharingService.create` for the policy options."""
        share = await self.shares.create(path, **policy)
        await self._emit(
            EventType.SHARE_CREATED, share.path, item_id=share.id, user_id=share.created_by
        )
        return share

    async def share_info(self, share_id: str) -> ShareInfo:
        return await self.shares.describe(share_id)

    async def access_share(
        self,
        share_id: str,
        password: str | None = None,
        *,
        mode: AccessMode = AccessMode.DOWNLOAD,
    ) -> AccessGrant:
        return await self.shares.resolve_for_access(share_id, password, mode=mode)

    async def record_share_download(self, share_id: str) -> int:
        count = await self.shares.record_download(share_id)
        share = self.shares.get(share_id)
        await self._emit(EventType.SHARE_DOWNLOADED, share.path, item_id=share_id)
        return count

    def list_shares(self, *, created_by: str | None = None) -> list[ShareLink]:
        return self.shares.list_shares(created_by=created_by)

    async def delete_share(self, share_id: str) -> bool:
        share = None
        with contextlib.suppress(NotFoundError):
            share = self.shares.get(share_id)
        deleted = await self.shares.delete(share_id)
        if deleted and share is not None:
            await self._emit(EventType.SHARE_DELETED, share.path, item_id=share_id)
        return deleted

    async def cleanup_shares(self) -> list[str]:
        return await self.shares.cleanup()

    # ------------------------------------------------------------------
    # Annotations
    # ------------------------------------------------------------------

    async def add_tag(self, path: str, tag: str) -> list[str]:
        tags = self.annotations.add_tag(path, tag)
        await self.store.persist("tags")
        return tags

    async def remove_tag(self, path: str, tag: str) -> list[str]:
        tags = self.annotations.remove_tag(path, tag)
        await self.store.persist("tags")
        return tags

    def tags(self, path: str) -> list[str]:
        return self.annotations.tags(path)

    async def add_favorite(self, path: str) -> bool:
        added = self.annotations.add_favorite(path)
        await self.store.persist("favorites")
        return added

    async def remove_favorite(self, path: str) -> bool:
        removed = self.annotations.remove_favorite(path)
        await self.store.persist("favorites")
        return removed

    def favorites(self) -> list[str]:
        return self.annotations.favorites()

    async def add_comment(self, path: str, text: str, *, author: str = "anonymous") -> dict[str, Any]:
        comment = self.annotations.add_comment(path, text, author=author)
        await self.store.persist("comments")
        return comment

    def comments(self, path: str) -> list[dict[str, Any]]:
        return self.annotations.comments(path)

    async def delete_comment(self, path: str, comment_id: str) -> bool:
        deleted = self.annotations.delete_comment(path, comment_id)
        await self.store.persist("comments")
        return deleted

    def download_count(self, path: str) -> int:
        return self.annotations.download_count(path)

    async def add_recent(self, path: str, action: str = "opened") -> dict[str, Any]:
        entry = self.annotations.add_recent(path, action)
        await self.store.persist("recent")
        return entry

    def recent(self) -> list[dict[str, Any]]:
        return self.annotations.recent()

    async def clear_recent(self) -> int:
        cleared = self.annotations.clear_recent()
        await self.store.persist("recent")
        return cleared

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def run_maintenance(self) -> dict[str, int]:
        """Purge expired trash and drop dead share links. For external schedulers."""
        purged = await self.purge_expired_trash()
        cleaned = await self.cleanup_shares()
        return {"trash_purged": len(purged), "shares_removed": len(cleaned)}
