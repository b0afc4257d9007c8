"""Tests for MetadataStore — JSON documents, locking discipline, flush lifecycle."""

from __future__ import annotations

import json
import logging
import threading
from typing import TYPE_CHECKING

import pytest

from strongroom.fs.metadata import DocumentKind, MetadataStore

if TYPE_CHECKING:
    from pathlib import Path


# ---------------------------------------------------------------------------
# Mapping documents
# ---------------------------------------------------------------------------


class TestMappingDocuments:
    def test_get_default(self, store: MetadataStore) -> None:
        assert store.get("tags", "a.txt") is None
        assert store.get("tags", "a.txt", []) == []

    def test_set_and_get(self, store: MetadataStore) -> None:
        store.set("tags", "a.txt", ["x"])
        assert store.get("tags", "a.txt") == ["x"]
        assert store.contains("tags", "a.txt")
        assert store.is_dirty("tags")

    def test_values_are_copied(self, store: MetadataStore) -> None:
        value = ["x"]
        store.set("tags", "a.txt", value)
        value.append("mutated")
        got = store.get("tags", "a.txt")
        got.append("also mutated")
        assert store.get("tags", "a.txt") == ["x"]

    def test_insert_only_if_absent(self, store: MetadataStore) -> None:
        assert store.insert("shares", "tok", {"path": "a"})
        assert not store.insert("shares", "tok", {"path": "b"})
        assert store.get("shares", "tok") == {"path": "a"}

    def test_pop_and_delete(self, store: MetadataStore) -> None:
        store.set("tags", "a.txt", ["x"])
        assert store.pop("tags", "a.txt") == ["x"]
        assert store.pop("tags", "a.txt") is None
        assert not store.delete("tags", "a.txt")

    def test_update_creates_and_deletes(self, store: MetadataStore) -> None:
        assert store.update("downloads", "a.txt", lambda c: (c or 0) + 1) == 1
        assert store.update("downloads", "a.txt", lambda c: (c or 0) + 1) == 2
        assert store.update("downloads", "a.txt", lambda c: None) is None
        assert not store.contains("downloads", "a.txt")

    def test_rekey(self, store: MetadataStore) -> None:
        store.set("tags", "a.txt", ["x"])
        assert store.rekey("tags", "a.txt", "b.txt")
        assert store.get("tags", "b.txt") == ["x"]
        assert not store.contains("tags", "a.txt")
        assert not store.rekey("tags", "missing", "other")

    def test_rekey_prefix_respects_segment_boundary(self, store: MetadataStore) -> None:
        store.set("tags", "docs", ["dir"])
        store.set("tags", "docs/a.txt", ["a"])
        store.set("tags", "docs2/b.txt", ["b"])
        assert store.rekey_prefix("tags", "docs", "papers") == 2
        assert sorted(store.keys("tags")) == ["docs2/b.txt", "papers", "papers/a.txt"]

    def test_pop_prefix(self, store: MetadataStore) -> None:
        store.set("tags", "d/a", ["a"])
        store.set("tags", "d/b", ["b"])
        store.set("tags", "e", ["e"])
        assert store.pop_prefix("tags", "d") == {"d/a": ["a"], "d/b": ["b"]}
        assert store.keys("tags") == ["e"]

    def test_values_where_and_update_where(self, store: MetadataStore) -> None:
        store.set("shares", "t1", {"path": "a"})
        store.set("shares", "t2", {"path": "b"})
        assert store.values_where("shares", lambda s: s["path"] == "a") == {"t1": {"path": "a"}}
        count = store.update_where("shares", lambda s: s["path"] == "b", lambda s: {**s, "path": "c"})
        assert count == 1
        assert store.get("shares", "t2") == {"path": "c"}

    def test_kind_mismatch(self, store: MetadataStore) -> None:
        with pytest.raises(TypeError):
            store.get("favorites", "a")
        with pytest.raises(TypeError):
            store.members("tags")

    def test_unknown_document(self, store: MetadataStore) -> None:
        with pytest.raises(KeyError, match="Unknown metadata document"):
            store.get("nope", "a")


# ---------------------------------------------------------------------------
# Set documents
# ---------------------------------------------------------------------------


class TestSetDocuments:
    def test_add_and_discard(self, store: MetadataStore) -> None:
        assert store.add_member("favorites", "a.txt")
        assert not store.add_member("favorites", "a.txt")
        assert store.is_member("favorites", "a.txt")
        assert store.discard_member("favorites", "a.txt")
        assert not store.discard_member("favorites", "a.txt")
        assert store.members("favorites") == []

    def test_replace_member_keeps_position(self, store: MetadataStore) -> None:
        store.extend_members("favorites", ["a", "b", "c"])
        assert store.replace_member("favorites", "b", "z")
        assert store.members("favorites") == ["a", "z", "c"]

    def test_replace_members_under(self, store: MetadataStore) -> None:
        store.extend_members("favorites", ["d", "d/x", "dd/y"])
        assert store.replace_members_under("favorites", "d", "e") == 2
        assert store.members("favorites") == ["e", "e/x", "dd/y"]

    def test_discard_members_under(self, store: MetadataStore) -> None:
        store.extend_members("favorites", ["d/x", "d/y", "z"])
        assert store.discard_members_under("favorites", "d") == ["d/x", "d/y"]
        assert store.members("favorites") == ["z"]


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestFlushAndLoad:
    def test_flush_writes_json(self, store: MetadataStore, data_dir: Path) -> None:
        store.set("tags", "a.txt", ["x"])
        store.add_member("favorites", "a.txt")
        assert store.flush() == 2
        assert json.loads((data_dir / "tags.json").read_text()) == {"a.txt": ["x"]}
        assert json.loads((data_dir / "favorites.json").read_text()) == ["a.txt"]
        assert not store.is_dirty("tags")

    def test_flush_skips_clean(self, store: MetadataStore) -> None:
        assert store.flush() == 0

    def test_flush_named_only(self, store: MetadataStore, data_dir: Path) -> None:
        store.set("tags", "a", ["x"])
        store.set("checksums", "a", {"sha256": "0"})
        assert store.flush("tags") == 1
        assert store.is_dirty("checksums")
        assert not (data_dir / "checksums.json").exists()

    def test_nested_document_paths(self, store: MetadataStore, data_dir: Path) -> None:
        store.set("versions", "a.txt", [])
        store.set("trash", "id1", {"original_path": "a"})
        store.flush()
        assert (data_dir / "versions" / "index.json").is_file()
        assert (data_dir / "trash" / ".index.json").is_file()

    def test_round_trip_through_disk(self, store: MetadataStore, data_dir: Path) -> None:
        store.set("comments", "a.txt", [{"id": "c1", "text": "hi"}])
        store.flush()
        fresh = MetadataStore(data_dir)
        fresh.load()
        assert fresh.get("comments", "a.txt") == [{"id": "c1", "text": "hi"}]

    def test_corrupt_document_starts_empty(
        self, data_dir: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        data_dir.mkdir(parents=True)
        (data_dir / "tags.json").write_text("{not json")
        store = MetadataStore(data_dir)
        with caplog.at_level(logging.WARNING, logger="strongroom.fs.metadata"):
            store.load()
        assert store.keys("tags") == []
        assert "Could not load metadata document" in caplog.text

    def test_wrong_shape_starts_empty(
        self, data_dir: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        data_dir.mkdir(parents=True)
        (data_dir / "favorites.json").write_text('{"a": 1}')
        store = MetadataStore(data_dir)
        with caplog.at_level(logging.WARNING, logger="strongroom.fs.metadata"):
            store.load()
        assert store.members("favorites") == []
        assert "unexpected shape" in caplog.text

    def test_failed_flush_stays_dirty(self, store: MetadataStore, data_dir: Path) -> None:
        data_dir.mkdir(parents=True)
        (data_dir / "tags.json").mkdir()  # os.replace onto a directory fails
        store.set("tags", "a", ["x"])
        with pytest.raises(OSError):
            store.flush("tags")
        assert store.is_dirty("tags")

    async def test_persist_logs_failure(
        self, store: MetadataStore, data_dir: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        data_dir.mkdir(parents=True)
        (data_dir / "tags.json").mkdir()
        store.set("tags", "a", ["x"])
        with caplog.at_level(logging.WARNING, logger="strongroom.fs.metadata"):
            assert await store.persist("tags") is False
        assert "Metadata flush failed" in caplog.text

    async def test_persist_success(self, store: MetadataStore) -> None:
        store.set("tags", "a", ["x"])
        assert await store.persist() is True
        assert not store.is_dirty("tags")


class TestRegistration:
    def test_register_custom_document(self, data_dir: Path) -> None:
        store = MetadataStore(data_dir, documents={})
        store.register("notes", kind=DocumentKind.MAPPING)
        assert store.names == ["notes"]
        assert store.path_of("notes") == data_dir / "notes.json"

    def test_register_twice(self, store: MetadataStore) -> None:
        with pytest.raises(ValueError, match="already registered"):
            store.register("tags")


class TestConcurrency:
    def test_concurrent_updates_do_not_lose_writes(self, store: MetadataStore) -> None:
        def bump() -> None:
            for _ in range(200):
                store.update("downloads", "a.txt", lambda c: (c or 0) + 1)

        threads = [threading.Thread(target=bump) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert store.get("downloads", "a.txt") == 1600

    def test_overlapping_flushes_keep_newest(
        self, store: MetadataStore, data_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        entered = threading.Event()
        release = threading.Event()
        real_write = MetadataStore._write_atomic
        payloads: list[str] = []

        def held_first_write(path: Path, payload: str) -> None:
            payloads.append(payload)
            if len(payloads) == 1:
                entered.set()
                release.wait(timeout=5)
            real_write(path, payload)

        monkeypatch.setattr(store, "_write_atomic", held_first_write)

        store.set("tags", "a.txt", ["v1"])
        first = threading.Thread(target=store.flush, args=("tags",))
        first.start()
        assert entered.wait(timeout=5)

        store.set("tags", "a.txt", ["v2"])
        second = threading.Thread(target=store.flush, args=("tags",))
        second.start()
        release.set()
        first.join(timeout=5)
        second.join(timeout=5)

        assert json.loads((data_dir / "tags.json").read_text()) == {"a.txt": ["v2"]}
        assert not store.is_dirty("tags")
        assert store.flush() == 0

    def test_transform_replaces_whole_mapping(self, store: MetadataStore) -> None:
        store.set("recent", "a", {"n": 1})
        store.set("recent", "b", {"n": 2})
        store.transform("recent", lambda data: {k: v for k, v in data.items() if v["n"] > 1})
        assert store.keys("recent") == ["b"]
        assert store.is_dirty("recent")
