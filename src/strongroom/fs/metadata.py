"""MetadataStore — JSON side-car documents held in memory, flushed periodically."""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .paths import is_within, rebase

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

logger = logging.getLogger(__name__)


class DocumentKind(Enum):
    """Shape of a metadata document."""

    MAPPING = "mapping"
    SET = "set"


# Built-in documents: name -> (kind, path relative to data_dir)
DEFAULT_DOCUMENTS: dict[str, tuple[DocumentKind, str]] = {
    "tags": (DocumentKind.MAPPING, "tags.json"),
    "favorites": (DocumentKind.SET, "favorites.json"),
    "checksums": (DocumentKind.MAPPING, "checksums.json"),
    "comments": (DocumentKind.MAPPING, "comments.json"),
    "versions": (DocumentKind.MAPPING, "versions/index.json"),
    "downloads": (DocumentKind.MAPPING, "downloads.json"),
    "shares": (DocumentKind.MAPPING, "shares.json"),
    "trash": (DocumentKind.MAPPING, "trash/.index.json"),
    "recent": (DocumentKind.MAPPING, "recent.json"),
}


@dataclass
class _Document:
    name: str
    kind: DocumentKind
    path: Path
    data: Any = None
    dirty: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock)
    # Serialises writers; held from snapshot through os.replace.
    write_lock: threading.Lock = field(default_factory=threading.Lock)

    def empty(self) -> Any:
        return [] if self.kind is DocumentKind.SET else {}


class MetadataStore:
    """Named JSON documents keyed by relative path (or by id).

    Each document is loaded fully into memory and written back by
    :meth:`flush`. Writes between flushes are not durable. Every
    document has its own lock, held for the whole of each
    read-modify-write, so concurrent callers never interleave partially.

    Values passed in and handed out are deep copies; mutating a returned
    value never changes the store.
    """

    def __init__(
        self,
        data_dir: Path | str,
        *,
        documents: dict[str, tuple[DocumentKind, str]] | None = None,
    ) -> None:
        self.data_dir = Path(data_dir)
        self._documents: dict[str, _Document] = {}
        for name, (kind, rel) in (documents or DEFAULT_DOCUMENTS).items():
            self.register(name, kind=kind, path=self.data_dir / rel)

    def register(
        self,
        name: str,
        *,
        kind: DocumentKind = DocumentKind.MAPPING,
        path: Path | str | None = None,
    ) -> None:
        """Declare a document. Re-registering an existing name is an error."""
        if name in self._documents:
            raise ValueError(f"Document already registered: {name!r}")
        doc_path = Path(path) if path is not None else self.data_dir / f"{name}.json"
        doc = _Document(name=name, kind=kind, path=doc_path)
        doc.data = doc.empty()
        self._documents[name] = doc

    @property
    def names(self) -> list[str]:
        return list(self._documents)

    def path_of(self, name: str) -> Path:
        return self._doc(name).path

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def load(self) -> None:
        """Read every registered document from disk, replacing in-memory state."""
        for doc in self._documents.values():
            data = self._read(doc)
            with doc.lock:
                doc.data = data
                doc.dirty = False

    def _read(self, doc: _Document) -> Any:
        if not doc.path.exists():
            return doc.empty()
        try:
            with doc.path.open(encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError):
            logger.warning("Could not load metadata document %s", doc.path, exc_info=True)
            return doc.empty()

        expected = list if doc.kind is DocumentKind.SET else dict
        if not isinstance(data, expected):
            logger.warning(
                "Metadata document %s has unexpected shape %s; starting empty",
                doc.path,
                type(data).__name__,
            )
            return doc.empty()
        return data

    def flush(self, *names: str) -> int:
        """Write dirty documents (all, or just *names*) to disk. Returns the count written.

        Raises ``OSError`` on the first failure; the failing document
        stays dirty so the next flush retries it. Concurrent flushes of
        one document are serialised, so an older snapshot can never land
        on disk after a newer one.
        """
        docs = [self._doc(n) for n in names] if names else list(self._documents.values())
        written = 0
        for doc in docs:
            with doc.write_lock:
                with doc.lock:
                    if not doc.dirty:
                        continue
                    payload = json.dumps(doc.data, indent=2, sort_keys=True)
                    doc.dirty = False
                try:
                    self._write_atomic(doc.path, payload)
                except OSError:
                    with doc.lock:
                        doc.dirty = True
                    raise
            written += 1
        return written

    @staticmethod
    def _write_atomic(path: Path, payload: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".tmp_", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    async def persist(self, *names: str) -> bool:
        """Flush in a worker thread. Failures are logged and left for the next interval."""
        try:
            await asyncio.to_thread(self.flush, *names)
        except OSError:
            logger.warning("Metadata flush failed for %s", ", ".join(names) or "all documents", exc_info=True)
            return False
        return True

    async def autoflush(self, interval: float) -> None:
        """Flush every *interval* seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            await self.persist()

    def is_dirty(self, name: str) -> bool:
        doc = self._doc(name)
        with doc.lock:
            return doc.dirty

    # =========================================================================
    # Mapping documents
    # =========================================================================

    def get(self, name: str, key: str, default: Any = None) -> Any:
        doc = self._mapping(name)
        with doc.lock:
            if key not in doc.data:
                return default
            return copy.deepcopy(doc.data[key])

    def contains(self, name: str, key: str) -> bool:
        doc = self._mapping(name)
        with doc.lock:
            return key in doc.data

    def set(self, name: str, key: str, value: Any) -> None:
        doc = self._mapping(name)
        value = copy.deepcopy(value)
        with doc.lock:
            doc.data[key] = value
            doc.dirty = True

    def insert(self, name: str, key: str, value: Any) -> bool:
        """Set *key* only if it is absent. Returns True if inserted."""
        doc = self._mapping(name)
        value = copy.deepcopy(value)
        with doc.lock:
            if key in doc.data:
                return False
            doc.data[key] = value
            doc.dirty = True
            return True

    def delete(self, name: str, key: str) -> bool:
        """Remove *key*. Returns True if it was present."""
        return self.pop(name, key) is not None

    def pop(self, name: str, key: str) -> Any:
        """Remove and return the value at *key*, or None."""
        doc = self._mapping(name)
        with doc.lock:
            if key not in doc.data:
                return None
            doc.dirty = True
            return doc.data.pop(key)

    def update(self, name: str, key: str, func: Callable[[Any], Any]) -> Any:
        """Atomically replace the value at *key* with ``func(current)``.

        *current* is None when the key is absent. Returning None deletes
        the key. Returns the new value.
        """
        doc = self._mapping(name)
        with doc.lock:
            current = copy.deepcopy(doc.data.get(key))
            new = func(current)
            if new is None:
                if key in doc.data:
                    del doc.data[key]
                    doc.dirty = True
                return None
            doc.data[key] = copy.deepcopy(new)
            doc.dirty = True
            return new

    def rekey(self, name: str, old_key: str, new_key: str) -> bool:
        """Move the value at *old_key* to *new_key* (overwriting). Absent *old_key* is a no-op."""
        doc = self._mapping(name)
        with doc.lock:
            if old_key not in doc.data:
                return False
            if old_key == new_key:
                return True
            doc.data[new_key] = doc.data.pop(old_key)
            doc.dirty = True
            return True

    def rekey_prefix(self, name: str, old_prefix: str, new_prefix: str) -> int:
        """Re-key *old_prefix* and every key below it to sit under *new_prefix*."""
        doc = self._mapping(name)
        with doc.lock:
            moving = [k for k in doc.data if is_within(k, old_prefix)]
            if not moving or old_prefix == new_prefix:
                return 0
            values = {k: doc.data.pop(k) for k in moving}
            for key, value in values.items():
                doc.data[rebase(key, old_prefix, new_prefix)] = value
            doc.dirty = True
            return len(values)

    def pop_prefix(self, name: str, prefix: str) -> dict[str, Any]:
        """Remove and return every entry at or below *prefix*."""
        doc = self._mapping(name)
        with doc.lock:
            removed = {k: doc.data.pop(k) for k in [k for k in doc.data if is_within(k, prefix)]}
            if removed:
                doc.dirty = True
            return removed

    def items(self, name: str) -> list[tuple[str, Any]]:
        doc = self._mapping(name)
        with doc.lock:
            return copy.deepcopy(list(doc.data.items()))

    def keys(self, name: str) -> list[str]:
        doc = self._mapping(name)
        with doc.lock:
            return list(doc.data)

    def values_where(self, name: str, predicate: Callable[[Any], bool]) -> dict[str, Any]:
        """Snapshot of the entries whose value satisfies *predicate*."""
        doc = self._mapping(name)
        with doc.lock:
            return {k: copy.deepcopy(v) for k, v in doc.data.items() if predicate(v)}

    def update_where(
        self,
        name: str,
        predicate: Callable[[Any], bool],
        func: Callable[[Any], Any],
    ) -> int:
        """Apply *func* to every value satisfying *predicate*, in one critical section."""
        doc = self._mapping(name)
        with doc.lock:
            count = 0
            for key, value in list(doc.data.items()):
                if predicate(value):
                    doc.data[key] = func(copy.deepcopy(value))
                    count += 1
            if count:
                doc.dirty = True
            return count

    def transform(self, name: str, func: Callable[[dict[str, Any]], dict[str, Any]]) -> None:
        """Replace the whole mapping with ``func(copy)`` in one critical section."""
        doc = self._mapping(name)
        with doc.lock:
            doc.data = copy.deepcopy(func(copy.deepcopy(doc.data)))
            doc.dirty = True

    def clear(self, name: str) -> None:
        doc = self._doc(name)
        with doc.lock:
            doc.data = doc.empty()
            doc.dirty = True

    # =========================================================================
    # Set documents
    # =========================================================================

    def members(self, name: str) -> list[str]:
        doc = self._set(name)
        with doc.lock:
            return list(doc.data)

    def is_member(self, name: str, value: str) -> bool:
        doc = self._set(name)
        with doc.lock:
            return value in doc.data

    def add_member(self, name: str, value: str) -> bool:
        """Append *value* if absent. Returns True if it was added."""
        doc = self._set(name)
        with doc.lock:
            if value in doc.data:
                return False
            doc.data.append(value)
            doc.dirty = True
            return True

    def discard_member(self, name: str, value: str) -> bool:
        doc = self._set(name)
        with doc.lock:
            if value not in doc.data:
                return False
            doc.data = [m for m in doc.data if m != value]
            doc.dirty = True
            return True

    def replace_member(self, name: str, old: str, new: str) -> bool:
        """Replace *old* with *new* in place, keeping its position."""
        doc = self._set(name)
        with doc.lock:
            if old not in doc.data:
                return False
            replaced: list[str] = []
            for member in doc.data:
                value = new if member == old else member
                if value not in replaced:
                    replaced.append(value)
            doc.data = replaced
            doc.dirty = True
            return True

    def replace_members_under(self, name: str, old_prefix: str, new_prefix: str) -> int:
        """Re-root every member at or below *old_prefix*, preserving order."""
        doc = self._set(name)
        with doc.lock:
            count = 0
            replaced: list[str] = []
            for member in doc.data:
                if is_within(member, old_prefix):
                    member = rebase(member, old_prefix, new_prefix)
                    count += 1
                if member not in replaced:
                    replaced.append(member)
            if count:
                doc.data = replaced
                doc.dirty = True
            return count

    def discard_members_under(self, name: str, prefix: str) -> list[str]:
        """Remove and return every member at or below *prefix*."""
        doc = self._set(name)
        with doc.lock:
            removed = [m for m in doc.data if is_within(m, prefix)]
            if removed:
                doc.data = [m for m in doc.data if not is_within(m, prefix)]
                doc.dirty = True
            return removed

    def extend_members(self, name: str, values: Iterable[str]) -> int:
        doc = self._set(name)
        with doc.lock:
            added = 0
            for value in values:
                if value not in doc.data:
                    doc.data.append(value)
                    added += 1
            if added:
                doc.dirty = True
            return added

    # =========================================================================
    # Internal
    # =========================================================================

    def _doc(self, name: str) -> _Document:
        try:
            return self._documents[name]
        except KeyError:
            raise KeyError(f"Unknown metadata document: {name!r}") from None

    def _mapping(self, name: str) -> _Document:
        doc = self._doc(name)
        if doc.kind is not DocumentKind.MAPPING:
            raise TypeError(f"Metadata document {name!r} is not a mapping")
        return doc

    def _set(self, name: str) -> _Document:
        doc = self._doc(name)
        if doc.kind is not DocumentKind.SET:
            raise TypeError(f"Metadata document {name!r} is not a set")
        return doc
