"""Main Strongroom class — lifecycle and sync wrappers over StrongroomAsync."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import TYPE_CHECKING, Any

from strongroom._strongroom_async import StrongroomAsync
from strongroom.fs.types import AccessMode

if TYPE_CHECKING:
    from datetime import timedelta
    from pathlib import Path

    from strongroom.events import EventBus
    from strongroom.fs.types import (
        AccessGrant,
        MoveResult,
        RestoreResult,
        ShareInfo,
        StorageUsage,
        WriteResult,
    )
    from strongroom.models.shares import ShareLink
    from strongroom.models.trash import TrashEntry
    from strongroom.models.versions import VersionEntry

logger = logging.getLogger(__name__)


class Strongroom:
    """Blocking facade for request handlers that are not async.

    Presents a synchronous API backed by a private event loop in a
    background thread. Every call is submitted to that loop, so calls
    from many request threads are serialised through one place while the
    periodic metadata flush keeps running between them.

    Usage::

        with Strongroom("/srv/files") as room:
            room.write("hello.txt", b"hi")
            entry = room.delete("hello.txt")
            room.restore_from_trash(entry.id)
    """

    def __init__(self, root: str | Path, **kwargs: Any) -> None:
        self._closed = False

        # Private event loop in a daemon thread
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._loop.run_forever, daemon=True)
        self._thread.start()

        try:
            self._async = self._run(self._async_init(root, kwargs))
        except BaseException:
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join(timeout=5)
            raise

    async def _async_init(self, root: str | Path, kwargs: dict[str, Any]) -> StrongroomAsync:
        room = StrongroomAsync(root, **kwargs)
        return await room.open()

    def _run(self, coro: Any) -> Any:
        """Submit *coro* to the private loop and block for the result."""
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Flush metadata, stop the event loop and join the thread."""
        if self._closed:
            return
        self._closed = True

        try:
            self._run(self._async.close())
        finally:
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join(timeout=5)
        logger.debug("Closed strongroom at %s", self._async.root)

    def __enter__(self) -> Strongroom:
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.close()

    def flush(self) -> int:
        """Write pending metadata now instead of waiting for the next interval."""
        return self._async.store.flush()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def root(self) -> Path:
        return self._async.root

    @property
    def events(self) -> EventBus:
        """The event bus; handlers run on the private loop."""
        return self._async.events

    @property
    def aio(self) -> StrongroomAsync:
        """The underlying ``StrongroomAsync`` (for advanced async use)."""
        return self._async

    # ------------------------------------------------------------------
    # File operations
    # ------------------------------------------------------------------

    def resolve(self, path: str) -> Path:
        return self._async.resolve(path)

    def exists(self, path: str) -> bool:
        return self._async.exists(path)

    def write(self, path: str, data: bytes, *, user_id: str | None = None) -> WriteResult:
        return self._run(self._async.write(path, data, user_id=user_id))

    def read(self, path: str) -> bytes:
        return self._run(self._async.read(path))

    def verify_checksum(self, path: str) -> bool:
        return self._run(self._async.verify_checksum(path))

    def mkdir(self, parent: str, name: str) -> str:
        return self._run(self._async.mkdir(parent, name))

    def rename(self, path: str, new_name: str, *, user_id: str | None = None) -> MoveResult:
        return self._run(self._async.rename(path, new_name, user_id=user_id))

    def move(
        self,
        source: str,
        destination: str,
        name: str | None = None,
        *,
        user_id: str | None = None,
    ) -> MoveResult:
        return self._run(self._async.move(source, destination, name, user_id=user_id))

    def delete(self, path: str, *, user_id: str | None = None) -> TrashEntry:
        """Soft-delete *path* into the trash."""
        return self._run(self._async.delete(path, user_id=user_id))

    def delete_permanent(self, path: str, *, user_id: str | None = None) -> None:
        self._run(self._async.delete_permanent(path, user_id=user_id))

    def storage_usage(self) -> StorageUsage:
        return self._run(self._async.storage_usage())

    # ------------------------------------------------------------------
    # Trash
    # ------------------------------------------------------------------

    def list_trash(self) -> list[TrashEntry]:
        return self._run(self._async.list_trash())

    def restore_from_trash(self, trash_id: str, *, user_id: str | None = None) -> RestoreResult:
        return self._run(self._async.restore_from_trash(trash_id, user_id=user_id))

    def purge(self, trash_id: str) -> bool:
        return self._run(self._async.purge(trash_id))

    def purge_expired_trash(self, retention: timedelta | None = None) -> list[str]:
        return self._run(self._async.purge_expired_trash(retention))

    def empty_trash(self) -> int:
        return self._run(self._async.empty_trash())

    # ------------------------------------------------------------------
    # Versions
    # ------------------------------------------------------------------

    def list_versions(self, path: str) -> list[VersionEntry]:
        return self._async.list_versions(path)

    def read_version(self, path: str, version_id: str) -> bytes:
        return self._run(self._async.read_version(path, version_id))

    def restore_version(
        self, path: str, version_id: str, *, user_id: str | None = None
    ) -> VersionEntry | None:
        return self._run(self._async.restore_version(path, version_id, user_id=user_id))

    def delete_versions(self, path: str) -> int:
        return self._run(self._async.delete_versions(path))

    # ------------------------------------------------------------------
    # Shares
    # ------------------------------------------------------------------

    def create_share(self, path: str, **policy: Any) -> ShareLink:
        return self._run(self._async.create_share(path, **policy))

    def share_info(self, share_id: str) -> ShareInfo:
        return self._run(self._async.share_info(share_id))

    def access_share(
        self,
        share_id: str,
        password: str | None = None,
        *,
        mode: AccessMode = AccessMode.DOWNLOAD,
    ) -> AccessGrant:
        return self._run(self._async.access_share(share_id, password, mode=mode))

    def record_share_download(self, share_id: str) -> int:
        return self._run(self._async.record_share_download(share_id))

    def list_shares(self, *, created_by: str | None = None) -> list[ShareLink]:
        return self._async.list_shares(created_by=created_by)

    def delete_share(self, share_id: str) -> bool:
        return self._run(self._async.delete_share(share_id))

    def cleanup_shares(self) -> list[str]:
        return self._run(self._async.cleanup_shares())

    # ------------------------------------------------------------------
    # Annotations
    # ------------------------------------------------------------------

    def add_tag(self, path: str, tag: str) -> list[str]:
        return self._run(self._async.add_tag(path, tag))

    def remove_tag(self, path: str, tag: str) -> list[str]:
        return self._run(self._async.remove_tag(path, tag))

    def tags(self, path: str) -> list[str]:
        return self._async.tags(path)

    def add_favorite(self, path: str) -> bool:
        return self._run(self._async.add_favorite(path))

    def remove_favorite(self, path: str) -> bool:
        return self._run(self._async.remove_favorite(path))

    def favorites(self) -> list[str]:
        return self._async.favorites()

    def add_comment(self, path: str, text: str, *, author: str = "anonymous") -> dict[str, Any]:
        return self._run(self._async.add_comment(path, text, author=author))

    def comments(self, path: str) -> list[dict[str, Any]]:
        return self._async.comments(path)

    def delete_comment(self, path: str, comment_id: str) -> bool:
        return self._run(self._async.delete_comment(path, comment_id))

    def download_count(self, path: str) -> int:
        return self._async.download_count(path)

    def add_recent(self, path: str, action: str = "opened") -> dict[str, Any]:
        return self._run(self._async.add_recent(path, action))

    def recent(self) -> list[dict[str, Any]]:
        return self._async.recent()

    def clear_recent(self) -> int:
        return self._run(self._async.clear_recent())

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def run_maintenance(self) -> dict[str, int]:
        return self._run(self._async.run_maintenance())
